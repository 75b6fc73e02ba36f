"""Git checkout and build of the external filter project."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from wikidata_filter_runner.errors import ProvisioningError
from wikidata_filter_runner.provisioning.models import (
    BuildResult,
    BuildSpec,
    CheckoutResult,
    SourceSpec,
)
from wikidata_filter_runner.provisioning.runner import (
    CmdResult,
    CommandRunner,
    SubprocessRunner,
    format_command,
)

logger = logging.getLogger(__name__)


def checkout_source(source: SourceSpec, *, runner: CommandRunner | None = None) -> CheckoutResult:
    """Clone the repository, or bring an existing clone up to date."""

    runner = runner or SubprocessRunner()
    destination = source.destination.expanduser()
    cloned = False

    if (destination / ".git").is_dir():
        _git(runner, ["git", "-C", str(destination), "fetch", "--tags", "origin"])
        if source.ref is None:
            _git(runner, ["git", "-C", str(destination), "pull", "--ff-only"])
    else:
        destination.parent.mkdir(parents=True, exist_ok=True)
        _git(runner, ["git", "clone", source.repo_url, str(destination)])
        cloned = True

    if source.ref is not None:
        _git(runner, ["git", "-C", str(destination), "checkout", source.ref])

    revision = _git(runner, ["git", "-C", str(destination), "rev-parse", "HEAD"]).stdout.strip()
    logger.info(
        "Checked out %s at %s (%s).",
        source.repo_url,
        revision or "?",
        "cloned" if cloned else "updated",
    )
    return CheckoutResult(destination=destination, cloned=cloned, revision=revision or None)


def build_component(
    build: BuildSpec,
    *,
    cwd: Path,
    runner: CommandRunner | None = None,
) -> BuildResult:
    """Run the build command inside ``cwd`` with the configured env overrides."""

    runner = runner or SubprocessRunner()
    command = _expand_command(build.command)
    try:
        result = runner.run(command, cwd=cwd.expanduser(), env=build.env)
    except OSError as error:
        raise ProvisioningError(
            f"Build command could not be started: {format_command(command)}: {error}",
            step="build",
            command=format_command(command),
        ) from error
    if not result.ok:
        raise ProvisioningError(
            f"Build failed (rc={result.returncode}): {format_command(command)}\n"
            f"{result.stderr.strip()}",
            step="build",
            command=format_command(command),
            returncode=result.returncode,
        )
    return BuildResult(command=command, cwd=cwd.expanduser())


def _expand_command(command: Sequence[str]) -> tuple[str, ...]:
    if not command:
        raise ProvisioningError("Build command is empty.", step="build")
    head, *rest = command
    return (str(Path(head).expanduser()) if head.startswith("~") else head, *rest)


def _git(runner: CommandRunner, cmd: list[str]) -> CmdResult:
    try:
        result = runner.run(cmd)
    except OSError as error:
        raise ProvisioningError(
            f"git could not be started: {error}",
            step="checkout",
            command=format_command(cmd),
        ) from error
    if not result.ok:
        raise ProvisioningError(
            f"git failed (rc={result.returncode}): {format_command(cmd)}\n{result.stderr.strip()}",
            step="checkout",
            command=format_command(cmd),
            returncode=result.returncode,
        )
    return result
