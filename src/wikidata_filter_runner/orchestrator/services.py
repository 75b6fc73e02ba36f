"""Idempotent start/status/stop of long-running background tasks."""

from __future__ import annotations

import errno
import logging
import signal
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import NoReturn

from wikidata_filter_runner.errors import SpawnError, StopError
from wikidata_filter_runner.orchestrator.models import (
    JobRecord,
    ProcessHandle,
    StaleTokenReclaimed,
    StartResult,
    StartStatus,
    StopResult,
    TaskInvocation,
    TaskRunStatus,
    TaskStatus,
    TokenState,
)
from wikidata_filter_runner.orchestrator.process import ProcessFacility
from wikidata_filter_runner.orchestrator.tokens import TrackingTokenStore
from wikidata_filter_runner.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT_SECONDS = 30.0
DEFAULT_RESERVATION_TIMEOUT = timedelta(seconds=60)


class JobOrchestrator:
    """Keeps at most one live background process per run identifier.

    The read-check-write sequence on the tracking token is serialized twice:
    a per-identifier lock covers threads of this process, and the token's
    primary key covers every process sharing the same store.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: TrackingTokenStore,
        processes: ProcessFacility,
        log_dir: Path,
        stop_signal: signal.Signals = signal.SIGINT,
        stop_timeout_seconds: float = DEFAULT_STOP_TIMEOUT_SECONDS,
        reservation_timeout: timedelta = DEFAULT_RESERVATION_TIMEOUT,
    ) -> None:
        if stop_timeout_seconds <= 0:
            raise ValueError("stop_timeout_seconds must be > 0")
        if reservation_timeout.total_seconds() <= 0:
            raise ValueError("reservation_timeout must be > 0")
        self.store = store
        self.processes = processes
        self.log_dir = log_dir
        self.stop_signal = stop_signal
        self.stop_timeout_seconds = stop_timeout_seconds
        self.reservation_timeout = reservation_timeout
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def start_task(
        self,
        run_id: str,
        executable: str,
        args: Sequence[str] = (),
        working_dir: Path | str = ".",
        *,
        env: dict[str, str] | None = None,
    ) -> StartResult:
        """Launch the task unless a live process already owns ``run_id``."""

        validate_run_id(run_id)
        invocation = TaskInvocation(
            executable=executable,
            args=tuple(args),
            working_dir=Path(working_dir),
            env=dict(env or {}),
        )
        reclaimed: list[StaleTokenReclaimed] = []

        with self._run_lock(run_id):
            while True:
                record = self.store.reserve(
                    run_id,
                    invocation,
                    log_path=self.log_path(run_id),
                )
                if record is not None:
                    break

                existing = self.store.get(run_id)
                if existing is None:
                    continue
                stale_reason = self._stale_reason(existing)
                if stale_reason is None:
                    logger.info(
                        "Task already running (run_id=%s pid=%s state=%s).",
                        run_id,
                        existing.pid,
                        existing.state.value,
                    )
                    return StartResult(
                        run_id=run_id,
                        status=StartStatus.ALREADY_RUNNING,
                        record=existing,
                        reclaimed=reclaimed,
                    )
                if self.store.remove(
                    run_id,
                    existing.token_id,
                    status=TaskRunStatus.STALE,
                    error_summary=stale_reason,
                ):
                    event = StaleTokenReclaimed(
                        run_id=run_id,
                        token_id=existing.token_id,
                        pid=existing.pid,
                        reason=stale_reason,
                    )
                    reclaimed.append(event)
                    logger.warning(
                        "Reclaimed stale tracking token (run_id=%s pid=%s reason=%s).",
                        run_id,
                        existing.pid,
                        stale_reason,
                    )

            handle = self._spawn(record, invocation)
            active = self.store.activate(run_id, record.token_id, handle)
            if active is None:
                self._abandon(run_id, handle)
            return StartResult(
                run_id=run_id,
                status=StartStatus.STARTED,
                record=active,
                reclaimed=reclaimed,
            )

    def query_status(self, run_id: str) -> TaskStatus:
        """Single liveness check; never waits on the task."""

        validate_run_id(run_id)
        record = self.store.get(run_id)
        if record is None:
            if self.store.has_history(run_id):
                return TaskStatus.STOPPED
            return TaskStatus.NOT_STARTED
        if self._stale_reason(record) is None:
            return TaskStatus.RUNNING
        return TaskStatus.STOPPED

    def stop_task(self, run_id: str) -> StopResult:
        """Terminate the tracked process, if any, and drop its token."""

        validate_run_id(run_id)
        with self._run_lock(run_id):
            record = self.store.get(run_id)
            if record is None:
                return StopResult(run_id=run_id, was_running=False)

            handle = record.handle
            if handle is None:
                if self._stale_reason(record) is None:
                    logger.warning(
                        "Task is still being launched elsewhere; not stopping (run_id=%s).",
                        run_id,
                    )
                    return StopResult(run_id=run_id, was_running=False)
                self.store.remove(
                    run_id,
                    record.token_id,
                    status=TaskRunStatus.STALE,
                    error_summary="reservation expired without a process",
                )
                return StopResult(run_id=run_id, was_running=False)

            was_running = self.processes.is_alive(handle)
            escalated = False
            if was_running:
                logger.info(
                    "Stopping task (run_id=%s pid=%s signal=%s).",
                    run_id,
                    handle.pid,
                    self.stop_signal.name,
                )
                escalated = self.processes.terminate(
                    handle,
                    sig=self.stop_signal,
                    timeout_seconds=self.stop_timeout_seconds,
                )
                if self.processes.is_alive(handle):
                    raise StopError(
                        f"Task process survived termination (run_id={run_id}, pid={handle.pid}).",
                        run_id=run_id,
                        pid=handle.pid,
                    )

            self.store.remove(run_id, record.token_id, status=TaskRunStatus.STOPPED)
            return StopResult(
                run_id=run_id,
                was_running=was_running,
                pid=handle.pid,
                escalated=escalated,
            )

    def get_record(self, run_id: str) -> JobRecord | None:
        validate_run_id(run_id)
        return self.store.get(run_id)

    def log_path(self, run_id: str) -> Path:
        return self.log_dir / f"{run_id}.log"

    def _spawn(self, record: JobRecord, invocation: TaskInvocation) -> ProcessHandle:
        error: OSError
        if not invocation.working_dir.is_dir():
            error = FileNotFoundError(
                errno.ENOENT,
                "working directory does not exist",
                str(invocation.working_dir),
            )
        else:
            try:
                return self.processes.spawn(
                    invocation,
                    log_path=record.log_path or self.log_path(record.run_id),
                )
            except OSError as spawn_error:
                error = spawn_error

        self.store.remove(
            record.run_id,
            record.token_id,
            status=TaskRunStatus.SPAWN_FAILED,
            error_summary=str(error),
        )
        logger.error(
            "Failed to spawn task (run_id=%s executable=%s): %s",
            record.run_id,
            invocation.executable,
            error,
        )
        raise SpawnError(
            f"Failed to start task {record.run_id!r} ({invocation.executable}): {error}",
            run_id=record.run_id,
        ) from error

    def _abandon(self, run_id: str, handle: ProcessHandle) -> NoReturn:
        """Kill a process whose reservation was reclaimed while it was being spawned."""

        self.processes.terminate(
            handle,
            sig=self.stop_signal,
            timeout_seconds=self.stop_timeout_seconds,
        )
        logger.error(
            "Tracking token vanished before activation; terminated pid %s (run_id=%s).",
            handle.pid,
            run_id,
        )
        raise SpawnError(
            f"Tracking token for {run_id!r} vanished before activation; "
            f"terminated pid {handle.pid}.",
            run_id=run_id,
        )

    def _stale_reason(self, record: JobRecord) -> str | None:
        if record.state is TokenState.ACTIVE:
            handle = record.handle
            if handle is not None and self.processes.is_alive(handle):
                return None
            return f"process {record.pid} is no longer running"

        if utc_now() - record.reserved_at <= self.reservation_timeout:
            return None
        return "reservation expired without a process"

    @contextmanager
    def _run_lock(self, run_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(run_id, threading.Lock())
        with lock:
            yield


def validate_run_id(run_id: str) -> None:
    """Run identifiers end up in file names, so keep them to one path segment."""

    if not run_id or not run_id.strip():
        raise ValueError("Run identifier must not be empty.")
    if run_id in {".", ".."} or any(char in run_id for char in "/\\") or run_id != run_id.strip():
        raise ValueError(f"Invalid run identifier: {run_id!r}")
    if any(char.isspace() for char in run_id):
        raise ValueError(f"Run identifier must not contain whitespace: {run_id!r}")
