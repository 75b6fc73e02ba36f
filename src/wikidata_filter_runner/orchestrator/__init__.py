"""Background task orchestrator for the dump filter.

A run identifier (the dump date) names one logical filter run. Starting a run
writes a tracking token to SQLite and spawns the filter detached from the
caller; starting it again while the process lives is a successful no-op.
Tokens whose process died (crash, reboot) are reclaimed on the next start.
"""

from wikidata_filter_runner.orchestrator.models import (
    JobRecord,
    StartResult,
    StartStatus,
    StopResult,
    TaskStatus,
)
from wikidata_filter_runner.orchestrator.services import JobOrchestrator

__all__ = [
    "JobOrchestrator",
    "JobRecord",
    "StartResult",
    "StartStatus",
    "StopResult",
    "TaskStatus",
]
