"""Controllers for background task CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from wikidata_filter_runner.config import Settings, resolve_signal
from wikidata_filter_runner.orchestrator.models import StartStatus, TaskStatus
from wikidata_filter_runner.orchestrator.process import DetachedProcessManager
from wikidata_filter_runner.orchestrator.repository import SQLiteTokenStore
from wikidata_filter_runner.orchestrator.services import JobOrchestrator


@dataclass(slots=True)
class TaskStartCommand:
    """CLI input for an idempotent task start."""

    db_path: Path | None
    run_id: str
    executable: str | None = None
    working_dir: Path | None = None
    args: tuple[str, ...] = ()


@dataclass(slots=True)
class TaskRefCommand:
    """CLI input for status and stop."""

    db_path: Path | None
    run_id: str


@dataclass(slots=True)
class TaskListCommand:
    db_path: Path | None
    limit: int = 20
    run_id: str | None = None


class OrchestratorCliController:
    """Start, check, stop, and list background filter runs."""

    def start(self, command: TaskStartCommand) -> list[str]:
        settings = load_settings(command.db_path)
        if command.executable is None and not command.args:
            # The run identifier doubles as the dump date for the default filter run.
            args = settings.filter_args_for(command.run_id)
        else:
            args = command.args
        with open_orchestrator(settings) as orchestrator:
            result = orchestrator.start_task(
                command.run_id,
                command.executable or settings.task_executable,
                args,
                command.working_dir or settings.base_dir,
            )
            log_path = orchestrator.log_path(command.run_id)

        lines = [
            f"Reclaimed stale token: run_id={event.run_id} pid={event.pid or '-'} "
            f"reason={event.reason}"
            for event in result.reclaimed
        ]
        if result.status is StartStatus.STARTED:
            lines.append(f"Task started: run_id={result.run_id} pid={result.record.pid}")
        else:
            lines.append(
                f"Task already running: run_id={result.run_id} pid={result.record.pid or '-'}",
            )
        lines.append(f"Log: {result.record.log_path or log_path}")
        return lines

    def status(self, command: TaskRefCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_orchestrator(settings) as orchestrator:
            status = orchestrator.query_status(command.run_id)
            record = orchestrator.get_record(command.run_id)

        line = f"Task {command.run_id}: {status.value}"
        if status is TaskStatus.RUNNING and record is not None:
            line += f" pid={record.pid or '-'}"
        return [line]

    def stop(self, command: TaskRefCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_orchestrator(settings) as orchestrator:
            result = orchestrator.stop_task(command.run_id)

        if not result.was_running:
            return [f"Task not running: run_id={result.run_id}"]
        suffix = " (escalated to SIGKILL)" if result.escalated else ""
        return [f"Task stopped: run_id={result.run_id} pid={result.pid}{suffix}"]

    def list_runs(self, command: TaskListCommand) -> list[str]:
        settings = load_settings(command.db_path)
        store = SQLiteTokenStore(settings.db_path)
        store.init_schema()
        try:
            runs = store.list_runs(limit=command.limit, run_id=command.run_id)
        finally:
            store.close()

        lines = [f"Task runs: {len(runs)}"]
        for run in runs:
            finished = run.finished_at.isoformat() if run.finished_at else "-"
            lines.append(
                f"  {run.run_id} status={run.status.value} pid={run.pid or '-'} "
                f"started_at={run.started_at.isoformat()} finished_at={finished} "
                f"error={run.error_summary or '-'}",
            )
        return lines


def load_settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def open_orchestrator(settings: Settings) -> Iterator[JobOrchestrator]:
    store = SQLiteTokenStore(settings.db_path)
    store.init_schema()
    try:
        yield JobOrchestrator(
            store=store,
            processes=DetachedProcessManager(),
            log_dir=settings.effective_log_dir,
            stop_signal=resolve_signal(settings.task.stop_signal),
            stop_timeout_seconds=settings.task.stop_timeout_seconds,
            reservation_timeout=timedelta(seconds=settings.task.reservation_timeout_seconds),
        )
    finally:
        store.close()
