"""CLI controller for run-book pipeline commands."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import httpx

from wikidata_filter_runner.http.fetcher import ArtifactFetcher
from wikidata_filter_runner.orchestrator.controllers import load_settings, open_orchestrator
from wikidata_filter_runner.provisioning.packages import PackageManager
from wikidata_filter_runner.provisioning.runner import CommandRunner
from wikidata_filter_runner.runbook.models import PipelineRunResult
from wikidata_filter_runner.runbook.pipeline import RunbookPipeline, build_runbook_steps
from wikidata_filter_runner.runbook.repository import SQLitePipelineStore


@dataclass(slots=True)
class PipelineRunCommand:
    """Input for pipeline run CLI command."""

    db_path: Path | None
    dump_date: str
    from_step: str | None = None


@dataclass(slots=True)
class PipelineStatusCommand:
    db_path: Path | None
    dump_date: str


class RunbookCliController:
    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        package_manager: PackageManager | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._runner = runner
        self._package_manager = package_manager
        self._transport = transport

    def run(
        self,
        command: PipelineRunCommand,
        *,
        on_progress: Callable[[str], None] | None = None,
    ) -> PipelineRunResult:
        settings = load_settings(command.db_path)
        store = SQLitePipelineStore(settings.db_path)
        store.init_schema()
        try:
            with (
                open_orchestrator(settings) as orchestrator,
                ArtifactFetcher(
                    timeout_seconds=settings.http.timeout_seconds,
                    transport=self._transport,
                ) as fetcher,
            ):
                steps = build_runbook_steps(
                    settings,
                    command.dump_date,
                    orchestrator=orchestrator,
                    fetcher=fetcher,
                    runner=self._runner,
                    package_manager=self._package_manager,
                )
                pipeline = RunbookPipeline(steps=steps, store=store, on_progress=on_progress)
                return pipeline.run(command.dump_date, from_step=command.from_step)
        finally:
            store.close()

    def status(self, command: PipelineStatusCommand) -> list[str]:
        settings = load_settings(command.db_path)
        store = SQLitePipelineStore(settings.db_path)
        store.init_schema()
        try:
            steps = store.list_steps(command.dump_date)
        finally:
            store.close()

        if not steps:
            return [f"Pipeline {command.dump_date}: no steps recorded"]
        lines = [f"Pipeline {command.dump_date}:"]
        for step in steps:
            lines.append(
                f"  {step.step_name}: {step.status.value}"
                f"{f' ({step.detail})' if step.detail else ''}"
                f"{f' error={step.error}' if step.error else ''}",
            )
        return lines


def render_run_result(result: PipelineRunResult) -> list[str]:
    lines = [f"Pipeline {result.pipeline_id}: {result.status}"]
    for step in result.steps:
        detail = step.error or step.detail
        lines.append(f"  {step.step_name}: {step.status.value}{f' ({detail})' if detail else ''}")
    return lines
