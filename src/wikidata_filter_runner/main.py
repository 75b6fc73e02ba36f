"""CLI entrypoint for wikidata-filter-runner."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from wikidata_filter_runner import __version__
from wikidata_filter_runner.errors import (
    ProvisioningError,
    SpawnError,
    StopError,
    TransferError,
    UploadError,
)
from wikidata_filter_runner.http.controllers import (
    FetchCommand,
    PropertiesCommand,
    TransferCliController,
    UploadCommand,
)
from wikidata_filter_runner.orchestrator.controllers import (
    OrchestratorCliController,
    TaskListCommand,
    TaskRefCommand,
    TaskStartCommand,
)
from wikidata_filter_runner.provisioning.controllers import (
    ProvisionCommand,
    ProvisioningCliController,
)
from wikidata_filter_runner.runbook.controllers import (
    PipelineRunCommand,
    PipelineStatusCommand,
    RunbookCliController,
    render_run_result,
)
from wikidata_filter_runner.runbook.models import PipelineStepError
from wikidata_filter_runner.runbook.pipeline import STEP_NAMES

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()
PROVISIONING_CONTROLLER = ProvisioningCliController()
TRANSFER_CONTROLLER = TransferCliController()
RUNBOOK_CONTROLLER = RunbookCliController()

DOMAIN_ERRORS = (
    ProvisioningError,
    TransferError,
    SpawnError,
    StopError,
    UploadError,
    PipelineStepError,
    ValueError,
)
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path. Defaults to WIKIDATA_FILTER_DB_PATH.",
)
run_id_option = click.option(
    "--run-id",
    required=True,
    help="Run identifier, usually the dump date, for example 20201230.",
)


@click.group()
@click.version_option(version=__version__, prog_name="wikidata-filter-runner")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for diagnostics on stderr.",
)
def wikidata_filter_runner(log_level: str) -> None:
    """Provision a host, fetch Wikidata dumps, and run the filter in the background."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@wikidata_filter_runner.command("provision")
@db_path_option
@click.option("--skip-build", is_flag=True, default=False, help="Only install and check out.")
def provision(db_path: Path | None, skip_build: bool) -> None:
    """Install packages and toolchain, check out and build the filter."""

    _emit_call(
        lambda: PROVISIONING_CONTROLLER.provision(
            ProvisionCommand(db_path=db_path, skip_build=skip_build),
        ),
    )


@wikidata_filter_runner.command("fetch")
@db_path_option
@click.option("--dump-date", required=True, help="Dump date, for example 20201230.")
@click.option(
    "--output",
    "destination",
    type=click.Path(path_type=Path),
    default=None,
    help="Destination file. Defaults to the dump name inside the base dir.",
)
def fetch(db_path: Path | None, dump_date: str, destination: Path | None) -> None:
    """Download the truthy N-Triples dump unless it is already present."""

    _emit_call(
        lambda: TRANSFER_CONTROLLER.fetch(
            FetchCommand(db_path=db_path, dump_date=dump_date, destination=destination),
        ),
    )


@wikidata_filter_runner.command("properties")
@db_path_option
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Destination file. Defaults to identifier-properties inside the base dir.",
)
def properties(db_path: Path | None, output_path: Path | None) -> None:
    """Write the sorted list of identifier-typed property ids."""

    _emit_call(
        lambda: TRANSFER_CONTROLLER.properties(
            PropertiesCommand(db_path=db_path, output_path=output_path),
        ),
    )


@wikidata_filter_runner.group()
def task() -> None:
    """Background filter task commands."""


@task.command("start", context_settings={"ignore_unknown_options": True})
@db_path_option
@run_id_option
@click.option("--executable", default=None, help="Program to run. Defaults to background.sh.")
@click.option(
    "--workdir",
    "working_dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Working directory. Defaults to the base dir.",
)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def task_start(
    db_path: Path | None,
    run_id: str,
    executable: str | None,
    working_dir: Path | None,
    args: tuple[str, ...],
) -> None:
    """Start the task unless it already runs. Arguments after `--` are passed through."""

    _emit_call(
        lambda: ORCHESTRATOR_CONTROLLER.start(
            TaskStartCommand(
                db_path=db_path,
                run_id=run_id,
                executable=executable,
                working_dir=working_dir,
                args=args,
            ),
        ),
    )


@task.command("status")
@db_path_option
@run_id_option
def task_status(db_path: Path | None, run_id: str) -> None:
    """Report not_started, running, or stopped."""

    _emit_call(
        lambda: ORCHESTRATOR_CONTROLLER.status(TaskRefCommand(db_path=db_path, run_id=run_id)),
    )


@task.command("stop")
@db_path_option
@run_id_option
def task_stop(db_path: Path | None, run_id: str) -> None:
    """Stop the task if it runs. Stopping an idle run is a no-op."""

    _emit_call(
        lambda: ORCHESTRATOR_CONTROLLER.stop(TaskRefCommand(db_path=db_path, run_id=run_id)),
    )


@task.command("list")
@db_path_option
@click.option("--run-id", default=None, help="Only show launches of this run identifier.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of launches to print.",
)
def task_list(db_path: Path | None, run_id: str | None, limit: int) -> None:
    """List recent task launches, newest first."""

    _emit_call(
        lambda: ORCHESTRATOR_CONTROLLER.list_runs(
            TaskListCommand(db_path=db_path, limit=limit, run_id=run_id),
        ),
    )


@wikidata_filter_runner.group()
def pipeline() -> None:
    """Run-book pipeline commands."""


@pipeline.command("run")
@db_path_option
@click.option("--dump-date", required=True, help="Dump date, also used as the run identifier.")
@click.option(
    "--from-step",
    type=click.Choice(STEP_NAMES),
    default=None,
    help="Discard recorded results from this step onwards and rerun them.",
)
def pipeline_run(db_path: Path | None, dump_date: str, from_step: str | None) -> None:
    """Provision, check out, build, fetch, and start the filter, resuming where it stopped."""

    try:
        result = RUNBOOK_CONTROLLER.run(
            PipelineRunCommand(db_path=db_path, dump_date=dump_date, from_step=from_step),
            on_progress=click.echo,
        )
    except DOMAIN_ERRORS as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(render_run_result(result))
    if result.status != "completed":
        raise click.ClickException(
            f"Pipeline failed at step {result.failed_step}: {result.error}",
        )


@pipeline.command("status")
@db_path_option
@click.option("--dump-date", required=True, help="Dump date used as the pipeline id.")
def pipeline_status(db_path: Path | None, dump_date: str) -> None:
    """Show recorded step results for a dump date."""

    _emit_call(
        lambda: RUNBOOK_CONTROLLER.status(
            PipelineStatusCommand(db_path=db_path, dump_date=dump_date),
        ),
    )


@wikidata_filter_runner.command("upload")
@db_path_option
@run_id_option
@click.option(
    "--workdir",
    "working_dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory holding the filter outputs. Defaults to the base dir.",
)
@click.option(
    "--pattern",
    "patterns",
    multiple=True,
    help="Glob for output files. Can be repeated. Defaults to WIKIDATA_FILTER_OUTPUT_PATTERNS.",
)
@click.option(
    "--item",
    default=None,
    help="Archive item. Defaults to WIKIDATA_FILTER_ARCHIVE_ITEM.",
)
def upload(
    db_path: Path | None,
    run_id: str,
    working_dir: Path | None,
    patterns: tuple[str, ...],
    item: str | None,
) -> None:
    """Upload outputs of a stopped run to the archive."""

    _emit_call(
        lambda: TRANSFER_CONTROLLER.upload(
            UploadCommand(
                db_path=db_path,
                run_id=run_id,
                working_dir=working_dir,
                patterns=patterns,
                item=item,
            ),
        ),
    )


def _emit_call(call: Callable[[], list[str]]) -> None:
    try:
        lines = call()
    except DOMAIN_ERRORS as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    wikidata_filter_runner()
