"""Package state reconciliation and toolchain installation."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from wikidata_filter_runner.errors import ProvisioningError
from wikidata_filter_runner.provisioning.models import (
    PackageState,
    ProvisioningReport,
    ProvisioningSpec,
    ToolchainSpec,
)
from wikidata_filter_runner.provisioning.runner import (
    CmdResult,
    CommandRunner,
    SubprocessRunner,
    format_command,
)

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class PackageManager(Protocol):
    def is_installed(self, name: str) -> bool: ...

    def install(self, names: Sequence[str]) -> None: ...

    def remove(self, names: Sequence[str]) -> None: ...


class AptPackageManager:
    """Debian/Ubuntu package manager via ``dpkg-query`` and ``apt-get``."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def is_installed(self, name: str) -> bool:
        result = self._run(["dpkg-query", "-W", "-f=${Status}", name], check=False)
        return result.ok and "install ok installed" in result.stdout

    def install(self, names: Sequence[str]) -> None:
        self._run(["apt-get", "install", "-y", *names])

    def remove(self, names: Sequence[str]) -> None:
        self._run(["apt-get", "remove", "-y", *names])

    def _run(self, cmd: list[str], *, check: bool = True) -> CmdResult:
        try:
            result = self.runner.run(cmd, env=APT_ENV)
        except OSError as error:
            raise ProvisioningError(
                f"Package command could not be started: {format_command(cmd)}: {error}",
                step="packages",
                command=format_command(cmd),
            ) from error
        if check and not result.ok:
            raise ProvisioningError(
                f"Package command failed (rc={result.returncode}): {format_command(cmd)}\n"
                f"{result.stderr.strip()}",
                step="packages",
                command=format_command(cmd),
                returncode=result.returncode,
            )
        return result


def ensure_prerequisites(
    spec: ProvisioningSpec,
    *,
    runner: CommandRunner | None = None,
    package_manager: PackageManager | None = None,
) -> ProvisioningReport:
    """Install missing packages and toolchains; remove packages declared absent."""

    runner = runner or SubprocessRunner()
    package_manager = package_manager or AptPackageManager(runner)
    report = ProvisioningReport()

    to_install: list[str] = []
    to_remove: list[str] = []
    for package in spec.packages:
        installed = package_manager.is_installed(package.name)
        if package.state is PackageState.PRESENT and not installed:
            to_install.append(package.name)
        elif package.state is PackageState.ABSENT and installed:
            to_remove.append(package.name)
        else:
            report.unchanged.append(package.name)

    if to_install:
        logger.info("Installing packages: %s", ", ".join(to_install))
        package_manager.install(to_install)
        report.installed.extend(to_install)
    if to_remove:
        logger.info("Removing packages: %s", ", ".join(to_remove))
        package_manager.remove(to_remove)
        report.removed.extend(to_remove)

    for toolchain in spec.toolchains:
        if install_toolchain(toolchain, runner=runner):
            report.toolchains_installed.append(toolchain.name)
        else:
            report.toolchains_present.append(toolchain.name)
    return report


def install_toolchain(toolchain: ToolchainSpec, *, runner: CommandRunner) -> bool:
    """Run the installer unless its marker exists; True when it ran."""

    marker = toolchain.creates.expanduser()
    if marker.exists():
        logger.info("Toolchain %s already present (%s).", toolchain.name, marker)
        return False

    try:
        result = runner.run(toolchain.install_command)
    except OSError as error:
        raise ProvisioningError(
            f"Toolchain installer for {toolchain.name} could not be started: {error}",
            step="toolchain",
            command=toolchain.install_command,
        ) from error
    if not result.ok:
        raise ProvisioningError(
            f"Toolchain installer for {toolchain.name} failed (rc={result.returncode}).\n"
            f"{result.stderr.strip()}",
            step="toolchain",
            command=toolchain.install_command,
            returncode=result.returncode,
        )
    return True
