"""Tracking-token store interface."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from wikidata_filter_runner.orchestrator.models import (
    JobRecord,
    ProcessHandle,
    TaskInvocation,
    TaskRunStatus,
    TaskRunView,
)


class TrackingTokenStore(Protocol):
    """Durable mapping from run identifier to at most one tracked process."""

    def reserve(
        self,
        run_id: str,
        invocation: TaskInvocation,
        *,
        log_path: Path | None,
    ) -> JobRecord | None:
        """Atomically create a reserved token; return None if one already exists."""

    def get(self, run_id: str) -> JobRecord | None:
        """Return the current token for the run identifier, if any."""

    def activate(self, run_id: str, token_id: str, handle: ProcessHandle) -> JobRecord | None:
        """Record the spawned process on a reserved token; None if the token is gone."""

    def remove(
        self,
        run_id: str,
        token_id: str,
        *,
        status: TaskRunStatus,
        error_summary: str | None = None,
    ) -> bool:
        """Delete the token only if it still carries ``token_id``; close its history row."""

    def has_history(self, run_id: str) -> bool:
        """True when the run identifier was launched at least once."""

    def list_runs(self, *, limit: int, run_id: str | None = None) -> list[TaskRunView]:
        """Most recent launches first."""
