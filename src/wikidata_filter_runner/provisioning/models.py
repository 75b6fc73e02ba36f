"""Declarative provisioning inputs and step reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from wikidata_filter_runner.config import Settings


class PackageState(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"


@dataclass(slots=True)
class PackageSpec:
    name: str
    state: PackageState = PackageState.PRESENT


@dataclass(slots=True)
class ToolchainSpec:
    """Shell installer guarded by a marker file, like Ansible's ``creates``."""

    name: str
    install_command: str
    creates: Path


@dataclass(slots=True)
class SourceSpec:
    repo_url: str
    destination: Path
    ref: str | None = None


@dataclass(slots=True)
class BuildSpec:
    command: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class ProvisioningSpec:
    """Everything the host needs before the filter can run."""

    packages: tuple[PackageSpec, ...] = ()
    toolchains: tuple[ToolchainSpec, ...] = ()
    source: SourceSpec | None = None
    build: BuildSpec | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> ProvisioningSpec:
        prov = settings.provisioning
        return cls(
            packages=tuple(
                PackageSpec(name=name, state=PackageState(state))
                for name, state in prov.packages.items()
            ),
            toolchains=(
                ToolchainSpec(
                    name="rustup",
                    install_command=prov.rustup_command,
                    creates=prov.rustup_creates,
                ),
            ),
            source=SourceSpec(
                repo_url=prov.repo_url,
                destination=settings.base_dir,
                ref=prov.repo_ref,
            ),
            build=BuildSpec(
                command=prov.build_command,
                env={"RUSTFLAGS": prov.rustflags} if prov.rustflags else {},
            ),
        )


@dataclass(slots=True)
class ProvisioningReport:
    installed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    toolchains_installed: list[str] = field(default_factory=list)
    toolchains_present: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.installed or self.removed or self.toolchains_installed)


@dataclass(slots=True)
class CheckoutResult:
    destination: Path
    cloned: bool
    revision: str | None


@dataclass(slots=True)
class BuildResult:
    command: tuple[str, ...]
    cwd: Path
