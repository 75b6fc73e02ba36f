"""Detached process spawning and liveness checks."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Protocol

import psutil

from wikidata_filter_runner.orchestrator.models import ProcessHandle, TaskInvocation

logger = logging.getLogger(__name__)

# psutil reports create_time with limited precision; allow for rounding.
CREATE_TIME_TOLERANCE_SECONDS = 1.0
GROUP_POLL_SECONDS = 0.2


class ProcessFacility(Protocol):
    """Spawn, check, and terminate processes that outlive the caller."""

    def spawn(self, invocation: TaskInvocation, *, log_path: Path) -> ProcessHandle:
        """Start the invocation detached and return its handle. Raises ``OSError``."""

    def is_alive(self, handle: ProcessHandle) -> bool:
        """Return True while the task referenced by the handle still runs."""

    def terminate(
        self,
        handle: ProcessHandle,
        *,
        sig: signal.Signals,
        timeout_seconds: float,
    ) -> bool:
        """Signal the task and wait for exit; return True when SIGKILL was needed."""


class DetachedProcessManager:
    """Local process facility built on ``subprocess`` and ``psutil``.

    Each task is started as the leader of a new session, so the task is the whole
    process group: wrapper scripts such as ``background.sh`` and the programs they
    run are checked and signalled together. Handles carry the leader's create time
    so a recycled pid is never mistaken for the original task.
    """

    def __init__(self) -> None:
        self._children: dict[int, subprocess.Popen[bytes]] = {}
        self._children_lock = threading.Lock()

    def spawn(self, invocation: TaskInvocation, *, log_path: Path) -> ProcessHandle:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        env = os.environ.copy()
        env.update(invocation.env)

        with log_path.open("ab") as log_handle:
            process = subprocess.Popen(  # noqa: S603
                invocation.argv,
                cwd=str(invocation.working_dir),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                start_new_session=True,
                close_fds=True,
            )
        with self._children_lock:
            self._children[process.pid] = process

        created_at: float | None
        try:
            created_at = psutil.Process(process.pid).create_time()
        except psutil.NoSuchProcess:
            created_at = None
        logger.info(
            "Spawned detached process pid=%s argv=%s cwd=%s log=%s",
            process.pid,
            invocation.argv,
            invocation.working_dir,
            log_path,
        )
        return ProcessHandle(pid=process.pid, created_at=created_at)

    def is_alive(self, handle: ProcessHandle) -> bool:
        self._reap(handle.pid)
        leader, recycled = _lookup(handle)
        if recycled:
            return False
        if leader is not None and _running(leader):
            return True
        # The leader may be gone while programs it started still run in its group.
        return bool(_group_members(handle.pid))

    def terminate(
        self,
        handle: ProcessHandle,
        *,
        sig: signal.Signals,
        timeout_seconds: float,
    ) -> bool:
        if not self.is_alive(handle):
            return False
        _signal_group(handle.pid, sig)
        if self._wait_gone(handle, timeout_seconds):
            return False

        logger.warning(
            "Process group %s ignored %s for %.1fs; sending SIGKILL.",
            handle.pid,
            sig.name,
            timeout_seconds,
        )
        _signal_group(handle.pid, signal.SIGKILL)
        self._wait_gone(handle, timeout_seconds)
        return True

    def _wait_gone(self, handle: ProcessHandle, timeout_seconds: float) -> bool:
        deadline = time.monotonic() + timeout_seconds
        while self.is_alive(handle):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            members = _group_members(handle.pid)
            if members:
                psutil.wait_procs(members, timeout=min(remaining, GROUP_POLL_SECONDS))
            else:
                time.sleep(min(remaining, GROUP_POLL_SECONDS))
        self._reap(handle.pid)
        return True

    def _reap(self, pid: int) -> None:
        with self._children_lock:
            child = self._children.get(pid)
            if child is not None and child.poll() is not None:
                del self._children[pid]


def _lookup(handle: ProcessHandle) -> tuple[psutil.Process | None, bool]:
    """Return the leader if it still exists, and whether its pid now names another process."""

    try:
        process = psutil.Process(handle.pid)
        if handle.created_at is not None:
            drift = abs(process.create_time() - handle.created_at)
            if drift > CREATE_TIME_TOLERANCE_SECONDS:
                return None, True
    except psutil.NoSuchProcess:
        return None, False
    except psutil.AccessDenied:
        pass
    return process, False


def _running(process: psutil.Process) -> bool:
    try:
        return process.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


def _group_members(pgid: int) -> list[psutil.Process]:
    """Live, non-zombie processes whose process group is ``pgid``."""

    members: list[psutil.Process] = []
    for process in psutil.process_iter():
        try:
            if os.getpgid(process.pid) != pgid:
                continue
        except ProcessLookupError:
            continue
        if _running(process):
            members.append(process)
    return members


def _signal_group(pgid: int, sig: signal.Signals) -> None:
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        logger.info("Process group %s already gone before %s.", pgid, sig.name)
