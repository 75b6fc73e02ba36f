"""Controller for the provision CLI command."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from wikidata_filter_runner.orchestrator.controllers import load_settings
from wikidata_filter_runner.provisioning.build import build_component, checkout_source
from wikidata_filter_runner.provisioning.models import ProvisioningSpec
from wikidata_filter_runner.provisioning.packages import PackageManager, ensure_prerequisites
from wikidata_filter_runner.provisioning.runner import CommandRunner, SubprocessRunner


@dataclass(slots=True)
class ProvisionCommand:
    """CLI input for host provisioning."""

    db_path: Path | None = None
    skip_build: bool = False


class ProvisioningCliController:
    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        package_manager: PackageManager | None = None,
    ) -> None:
        self._runner = runner
        self._package_manager = package_manager

    def provision(self, command: ProvisionCommand) -> list[str]:
        settings = load_settings(command.db_path)
        spec = ProvisioningSpec.from_settings(settings)
        runner = self._runner or SubprocessRunner()

        report = ensure_prerequisites(
            spec,
            runner=runner,
            package_manager=self._package_manager,
        )
        lines = [
            f"Packages: installed={_names(report.installed)} removed={_names(report.removed)} "
            f"unchanged={_names(report.unchanged)}",
            f"Toolchains: installed={_names(report.toolchains_installed)} "
            f"present={_names(report.toolchains_present)}",
        ]

        if spec.source is not None:
            checkout = checkout_source(spec.source, runner=runner)
            lines.append(
                f"Source: {checkout.destination} revision={checkout.revision or '?'} "
                f"{'cloned' if checkout.cloned else 'updated'}",
            )
            if spec.build is not None and not command.skip_build:
                build = build_component(spec.build, cwd=checkout.destination, runner=runner)
                lines.append(f"Build: {' '.join(build.command)} in {build.cwd}")
        return lines


def _names(values: list[str]) -> str:
    return ",".join(values) if values else "-"
