"""Run-book step and run results."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class StepOutcome:
    """What a successful step reports back."""

    detail: str | None = None


@dataclass(slots=True)
class PipelineStep:
    name: str
    action: Callable[[], StepOutcome]


@dataclass(slots=True)
class PipelineStepResult:
    """Result of a single pipeline step."""

    step_name: str
    status: StepStatus
    detail: str | None = None
    error: str | None = None


@dataclass(slots=True)
class PipelineRunResult:
    """Result of a complete pipeline run."""

    pipeline_id: str
    steps: list[PipelineStepResult] = field(default_factory=list)
    status: str = "running"
    error: str | None = None

    @property
    def failed_step(self) -> str | None:
        for step in self.steps:
            if step.status is StepStatus.FAILED:
                return step.step_name
        return None


class PipelineStepError(RuntimeError):
    """Pipeline step failure."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"Step {step} failed: {message}")
        self.step = step
