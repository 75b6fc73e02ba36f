"""Domain models for the background task orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class TaskStatus(str, Enum):
    """Externally visible lifecycle of one run identifier."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"


class StartStatus(str, Enum):
    """Outcome of an idempotent start request."""

    STARTED = "started"
    ALREADY_RUNNING = "already_running"


class TokenState(str, Enum):
    """Tracking token lifecycle: reserved while spawning, active once the pid is known."""

    RESERVED = "reserved"
    ACTIVE = "active"


class TaskRunStatus(str, Enum):
    """History row states, one row per launch attempt."""

    RUNNING = "running"
    STOPPED = "stopped"
    STALE = "stale"
    SPAWN_FAILED = "spawn_failed"


@dataclass(slots=True)
class TaskInvocation:
    """Executable, ordered arguments, and working directory passed to the spawner."""

    executable: str
    args: tuple[str, ...] = ()
    working_dir: Path = Path()
    env: dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]


@dataclass(slots=True)
class ProcessHandle:
    """Liveness-checkable reference to a spawned process."""

    pid: int
    created_at: float | None


@dataclass(slots=True)
class JobRecord:
    """Runtime view of a tracking token."""

    run_id: str
    token_id: str
    state: TokenState
    invocation: TaskInvocation
    reserved_at: datetime
    pid: int | None = None
    process_created_at: float | None = None
    started_at: datetime | None = None
    log_path: Path | None = None

    @property
    def handle(self) -> ProcessHandle | None:
        if self.pid is None:
            return None
        return ProcessHandle(pid=self.pid, created_at=self.process_created_at)


@dataclass(slots=True)
class TaskRunView:
    """Read model for one launch in the run history."""

    run_id: str
    status: TaskRunStatus
    pid: int | None
    executable: str
    args: tuple[str, ...]
    working_dir: Path
    started_at: datetime
    finished_at: datetime | None
    error_summary: str | None


@dataclass(slots=True)
class StaleTokenReclaimed:
    """Informational event: a token pointed at a process that no longer exists."""

    run_id: str
    token_id: str
    pid: int | None
    reason: str


@dataclass(slots=True)
class StartResult:
    """Result of ``JobOrchestrator.start_task``."""

    run_id: str
    status: StartStatus
    record: JobRecord
    reclaimed: list[StaleTokenReclaimed] = field(default_factory=list)


@dataclass(slots=True)
class StopResult:
    """Result of ``JobOrchestrator.stop_task``."""

    run_id: str
    was_running: bool
    pid: int | None = None
    escalated: bool = False
