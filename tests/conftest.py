"""Shared test fixtures."""

from __future__ import annotations

import os
import signal
import sys
import time
from collections.abc import Callable, Iterator, Sequence
from datetime import timedelta
from pathlib import Path

import psutil
import pytest

from wikidata_filter_runner.orchestrator.models import ProcessHandle, TaskInvocation
from wikidata_filter_runner.orchestrator.process import DetachedProcessManager
from wikidata_filter_runner.orchestrator.repository import SQLiteTokenStore
from wikidata_filter_runner.orchestrator.services import JobOrchestrator
from wikidata_filter_runner.provisioning.runner import CmdResult

SLEEPER_ARGS = ("-c", "import time; time.sleep(60)")
# A wrapper that keeps a child running, the way background.sh runs the filter.
WRAPPER_ARGS = ("-c", "sleep 300; echo finished")
ENV_PREFIX = "WIKIDATA_FILTER_"
PYTHON = sys.executable


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer WIKIDATA_FILTER_* variables out of tests."""
    for name in list(os.environ):
        if name.startswith(ENV_PREFIX):
            monkeypatch.delenv(name)


@pytest.fixture()
def base_dir(tmp_path: Path) -> Path:
    path = tmp_path / "wikidata-filter"
    path.mkdir()
    return path


@pytest.fixture()
def settings_env(tmp_path: Path, base_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point Settings.from_env at tmp_path; returns the DB path."""

    db_path = tmp_path / "runner.db"
    monkeypatch.setenv("WIKIDATA_FILTER_DB_PATH", str(db_path))
    monkeypatch.setenv("WIKIDATA_FILTER_BASE_DIR", str(base_dir))
    monkeypatch.setenv("WIKIDATA_FILTER_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("WIKIDATA_FILTER_STOP_TIMEOUT_SECONDS", "5")
    return db_path


@pytest.fixture()
def token_store(tmp_path: Path) -> Iterator[SQLiteTokenStore]:
    store = SQLiteTokenStore(tmp_path / "tokens.db")
    store.init_schema()
    yield store
    store.close()


@pytest.fixture()
def orchestrator(tmp_path: Path, token_store: SQLiteTokenStore) -> Iterator[JobOrchestrator]:
    service = JobOrchestrator(
        store=token_store,
        processes=DetachedProcessManager(),
        log_dir=tmp_path / "logs",
        stop_timeout_seconds=5.0,
        reservation_timeout=timedelta(seconds=60),
    )
    yield service
    _stop_everything(service, token_store)


def _stop_everything(service: JobOrchestrator, store: SQLiteTokenStore) -> None:
    for run in store.list_runs(limit=1000):
        if store.get(run.run_id) is not None:
            service.stop_task(run.run_id)


def wait_until(predicate: Callable[[], bool], *, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class FakeRunner:
    """Records commands; answers with the first matching rule."""

    def __init__(self, rules: Sequence[tuple[str, CmdResult]] = ()) -> None:
        self.rules = list(rules)
        self.calls: list[tuple[str, Path | None, dict[str, str] | None]] = []

    def run(
        self,
        cmd: Sequence[str] | str,
        *,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> CmdResult:
        text = cmd if isinstance(cmd, str) else " ".join(cmd)
        self.calls.append((text, cwd, env))
        for needle, result in self.rules:
            if needle in text:
                return result
        return CmdResult(0, "", "")

    @property
    def commands(self) -> list[str]:
        return [text for text, _, _ in self.calls]


class FakePackageManager:
    def __init__(self, installed: set[str] | None = None) -> None:
        self.installed = set(installed or ())
        self.install_calls: list[list[str]] = []
        self.remove_calls: list[list[str]] = []

    def is_installed(self, name: str) -> bool:
        return name in self.installed

    def install(self, names: Sequence[str]) -> None:
        self.install_calls.append(list(names))
        self.installed.update(names)

    def remove(self, names: Sequence[str]) -> None:
        self.remove_calls.append(list(names))
        self.installed.difference_update(names)


def process_gone(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


class StubbornProcesses:
    """Process facility whose task never dies; records terminate calls."""

    def __init__(self) -> None:
        self.terminated: list[int] = []

    def spawn(self, invocation: TaskInvocation, *, log_path: Path) -> ProcessHandle:
        return ProcessHandle(pid=4242, created_at=1.0)

    def is_alive(self, handle: ProcessHandle) -> bool:
        return True

    def terminate(
        self,
        handle: ProcessHandle,
        *,
        sig: signal.Signals,
        timeout_seconds: float,
    ) -> bool:
        self.terminated.append(handle.pid)
        return True
