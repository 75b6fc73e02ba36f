"""Ordered, resumable run-book for one dump date."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

from wikidata_filter_runner.config import Settings
from wikidata_filter_runner.errors import (
    ProvisioningError,
    SpawnError,
    TransferError,
)
from wikidata_filter_runner.http.fetcher import ArtifactFetcher
from wikidata_filter_runner.orchestrator.services import JobOrchestrator
from wikidata_filter_runner.provisioning.build import build_component, checkout_source
from wikidata_filter_runner.provisioning.models import ProvisioningSpec
from wikidata_filter_runner.provisioning.packages import PackageManager, ensure_prerequisites
from wikidata_filter_runner.provisioning.runner import CommandRunner
from wikidata_filter_runner.runbook.models import (
    PipelineRunResult,
    PipelineStep,
    PipelineStepError,
    PipelineStepResult,
    StepOutcome,
    StepStatus,
)
from wikidata_filter_runner.runbook.repository import SQLitePipelineStore

logger = logging.getLogger(__name__)

STEP_NAMES = ("provision", "checkout", "build", "fetch", "filter")
STEP_ERRORS = (ProvisioningError, TransferError, SpawnError, PipelineStepError)


class RunbookPipeline:
    """Runs steps in order, persisting each result under the pipeline id.

    A rerun skips steps already completed for the same pipeline id and resumes
    at the first one that is not; ``from_step`` discards results from that step
    onwards first.
    """

    def __init__(
        self,
        *,
        steps: Sequence[PipelineStep],
        store: SQLitePipelineStore,
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        names = [step.name for step in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate step names: {names}")
        self._steps = list(steps)
        self._store = store
        self._on_progress = on_progress or (lambda _msg: None)

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    def _emit(self, msg: str) -> None:
        """Log and notify progress callback."""
        logger.info(msg)
        self._on_progress(msg)

    def run(self, pipeline_id: str, *, from_step: str | None = None) -> PipelineRunResult:
        if from_step is not None:
            if from_step not in self.step_names:
                raise ValueError(
                    f"Unknown step {from_step!r}; expected one of {', '.join(self.step_names)}.",
                )
            self._store.reset_from(pipeline_id, self.step_names.index(from_step))

        result = PipelineRunResult(pipeline_id=pipeline_id)
        completed = self._store.completed_steps(pipeline_id)
        pipeline_start = time.monotonic()

        for position, step in enumerate(self._steps):
            if step.name in completed:
                result.steps.append(
                    PipelineStepResult(step_name=step.name, status=StepStatus.SKIPPED),
                )
                self._emit(f"Step {step.name}: already completed, skipping")
                continue

            self._emit(f"Step {step.name}: running")
            step_result = self._run_step(step)
            self._store.record(pipeline_id, position, step_result)
            result.steps.append(step_result)
            if step_result.status is StepStatus.FAILED:
                result.status = "failed"
                result.error = step_result.error
                logger.error("Pipeline %s failed at %s: %s", pipeline_id, step.name, result.error)
                return result
            self._emit(f"Step {step.name}: {step_result.detail or 'done'}")

        result.status = "completed"
        elapsed = time.monotonic() - pipeline_start
        self._emit(f"Pipeline {pipeline_id} completed in {elapsed:.1f}s")
        return result

    def _run_step(self, step: PipelineStep) -> PipelineStepResult:
        try:
            outcome = step.action()
        except STEP_ERRORS as exc:
            return PipelineStepResult(
                step_name=step.name,
                status=StepStatus.FAILED,
                error=str(exc),
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Step %s unexpected error", step.name)
            return PipelineStepResult(
                step_name=step.name,
                status=StepStatus.FAILED,
                error=f"Unexpected error: {exc}",
            )
        return PipelineStepResult(
            step_name=step.name,
            status=StepStatus.COMPLETED,
            detail=outcome.detail,
        )


def build_runbook_steps(  # noqa: PLR0913
    settings: Settings,
    dump_date: str,
    *,
    orchestrator: JobOrchestrator,
    fetcher: ArtifactFetcher,
    runner: CommandRunner | None = None,
    package_manager: PackageManager | None = None,
) -> list[PipelineStep]:
    """Wire the run-book for ``dump_date``; the run identifier is the dump date."""

    spec = ProvisioningSpec.from_settings(settings)

    def provision() -> StepOutcome:
        report = ensure_prerequisites(spec, runner=runner, package_manager=package_manager)
        return StepOutcome(
            detail=(
                f"installed={len(report.installed)} removed={len(report.removed)} "
                f"toolchains_installed={len(report.toolchains_installed)}"
            ),
        )

    def checkout() -> StepOutcome:
        if spec.source is None:
            raise PipelineStepError("checkout", "no source configured")
        checkout_result = checkout_source(spec.source, runner=runner)
        return StepOutcome(detail=f"revision={checkout_result.revision or '?'}")

    def build() -> StepOutcome:
        if spec.build is None or spec.source is None:
            raise PipelineStepError("build", "no build configured")
        build_component(spec.build, cwd=spec.source.destination, runner=runner)
        return StepOutcome(detail="build succeeded")

    def fetch() -> StepOutcome:
        fetched = fetcher.fetch(settings.dump_url(dump_date), settings.dump_path(dump_date))
        if fetched.skipped:
            return StepOutcome(detail=f"{fetched.destination.name} already present")
        return StepOutcome(detail=f"{fetched.bytes_written} bytes fetched")

    def start_filter() -> StepOutcome:
        started = orchestrator.start_task(
            dump_date,
            settings.task_executable,
            settings.filter_args_for(dump_date),
            settings.base_dir,
        )
        return StepOutcome(detail=f"{started.status.value} pid={started.record.pid}")

    actions: dict[str, Callable[[], StepOutcome]] = {
        "provision": provision,
        "checkout": checkout,
        "build": build,
        "fetch": fetch,
        "filter": start_filter,
    }
    return [PipelineStep(name=name, action=actions[name]) for name in STEP_NAMES]
