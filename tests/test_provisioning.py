from __future__ import annotations

from pathlib import Path

import allure
import pytest
from conftest import FakePackageManager, FakeRunner

from wikidata_filter_runner.config import ProvisioningSettings, Settings
from wikidata_filter_runner.errors import ProvisioningError
from wikidata_filter_runner.provisioning.build import build_component, checkout_source
from wikidata_filter_runner.provisioning.models import (
    BuildSpec,
    PackageSpec,
    PackageState,
    ProvisioningSpec,
    SourceSpec,
    ToolchainSpec,
)
from wikidata_filter_runner.provisioning.packages import (
    AptPackageManager,
    ensure_prerequisites,
    install_toolchain,
)
from wikidata_filter_runner.provisioning.runner import CmdResult

pytestmark = [
    allure.epic("Provisioning"),
    allure.feature("Packages, Toolchain, Checkout, Build"),
]


def test_spec_from_settings_uses_run_book_defaults(tmp_path: Path) -> None:
    spec = ProvisioningSpec.from_settings(Settings(base_dir=tmp_path))

    assert [(p.name, p.state) for p in spec.packages] == [
        ("git", PackageState.PRESENT),
        ("build-essential", PackageState.PRESENT),
    ]
    assert spec.toolchains[0].name == "rustup"
    assert spec.toolchains[0].creates == Path("~/.cargo/env")
    assert spec.source is not None
    assert spec.source.destination == tmp_path
    assert spec.build is not None
    assert spec.build.command == ("~/.cargo/bin/cargo", "build", "--release")
    assert spec.build.env == {"RUSTFLAGS": "-C target-cpu=native"}


def test_empty_rustflags_produce_no_env_override(tmp_path: Path) -> None:
    settings = Settings(base_dir=tmp_path, provisioning=ProvisioningSettings(rustflags=""))

    spec = ProvisioningSpec.from_settings(settings)

    assert spec.build is not None
    assert spec.build.env == {}


def test_ensure_prerequisites_reconciles_declared_state(tmp_path: Path) -> None:
    marker = tmp_path / "cargo-env"
    marker.write_text("")
    packages = FakePackageManager(installed={"git", "nano"})
    spec = ProvisioningSpec(
        packages=(
            PackageSpec("git"),
            PackageSpec("build-essential"),
            PackageSpec("nano", PackageState.ABSENT),
            PackageSpec("vim", PackageState.ABSENT),
        ),
        toolchains=(ToolchainSpec("rustup", "exit 1", creates=marker),),
    )

    report = ensure_prerequisites(spec, runner=FakeRunner(), package_manager=packages)

    assert report.installed == ["build-essential"]
    assert report.removed == ["nano"]
    assert sorted(report.unchanged) == ["git", "vim"]
    assert report.toolchains_present == ["rustup"]
    assert report.changed
    assert packages.install_calls == [["build-essential"]]


def test_ensure_prerequisites_is_idempotent(tmp_path: Path) -> None:
    marker = tmp_path / "cargo-env"
    marker.write_text("")
    packages = FakePackageManager(installed={"git", "build-essential"})
    spec = ProvisioningSpec(
        packages=(PackageSpec("git"), PackageSpec("build-essential")),
        toolchains=(ToolchainSpec("rustup", "installer", creates=marker),),
    )
    runner = FakeRunner()

    report = ensure_prerequisites(spec, runner=runner, package_manager=packages)

    assert not report.changed
    assert packages.install_calls == []
    assert runner.calls == []


def test_toolchain_installer_runs_when_marker_is_missing(tmp_path: Path) -> None:
    runner = FakeRunner()
    installer = "curl https://sh.rustup.rs -sSf | sh -s -- -y"
    toolchain = ToolchainSpec("rustup", installer, tmp_path / "env")

    assert install_toolchain(toolchain, runner=runner) is True
    assert runner.commands == [installer]


def test_toolchain_installer_failure_is_fatal(tmp_path: Path) -> None:
    runner = FakeRunner([("rustup", CmdResult(1, "", "network down"))])
    toolchain = ToolchainSpec("rustup", "sh rustup-init", tmp_path / "env")

    with pytest.raises(ProvisioningError) as excinfo:
        install_toolchain(toolchain, runner=runner)

    assert excinfo.value.step == "toolchain"
    assert excinfo.value.returncode == 1
    assert "network down" in str(excinfo.value)


def test_apt_package_manager_reads_dpkg_status() -> None:
    runner = FakeRunner(
        [
            ("dpkg-query -W -f=${Status} git", CmdResult(0, "install ok installed", "")),
            ("dpkg-query -W -f=${Status} nano", CmdResult(1, "", "no packages found")),
        ],
    )
    apt = AptPackageManager(runner)

    assert apt.is_installed("git") is True
    assert apt.is_installed("nano") is False
    apt.install(["build-essential"])
    assert runner.commands[-1] == "apt-get install -y build-essential"
    assert runner.calls[-1][2] == {"DEBIAN_FRONTEND": "noninteractive"}


def test_apt_install_failure_raises_provisioning_error() -> None:
    runner = FakeRunner([("apt-get install", CmdResult(100, "", "E: Unable to locate package"))])

    with pytest.raises(ProvisioningError) as excinfo:
        AptPackageManager(runner).install(["nope"])

    assert excinfo.value.step == "packages"
    assert excinfo.value.returncode == 100


def test_checkout_clones_fresh_destination(tmp_path: Path) -> None:
    destination = tmp_path / "wikidata-filter"
    runner = FakeRunner([("rev-parse HEAD", CmdResult(0, "abc123\n", ""))])

    result = checkout_source(
        SourceSpec("https://github.com/turbolent/wikidata-filter.git", destination),
        runner=runner,
    )

    assert result.cloned is True
    assert result.revision == "abc123"
    assert runner.commands[0] == (
        f"git clone https://github.com/turbolent/wikidata-filter.git {destination}"
    )


def test_checkout_updates_existing_clone_and_pins_ref(tmp_path: Path) -> None:
    destination = tmp_path / "wikidata-filter"
    (destination / ".git").mkdir(parents=True)
    runner = FakeRunner([("rev-parse HEAD", CmdResult(0, "def456\n", ""))])

    result = checkout_source(
        SourceSpec("https://example.org/repo.git", destination, ref="v1.0"),
        runner=runner,
    )

    assert result.cloned is False
    assert result.revision == "def456"
    assert runner.commands == [
        f"git -C {destination} fetch --tags origin",
        f"git -C {destination} checkout v1.0",
        f"git -C {destination} rev-parse HEAD",
    ]


def test_checkout_failure_reports_git_stderr(tmp_path: Path) -> None:
    runner = FakeRunner([("git clone", CmdResult(128, "", "fatal: repository not found"))])

    with pytest.raises(ProvisioningError, match="repository not found") as excinfo:
        checkout_source(
            SourceSpec("https://example.org/missing.git", tmp_path / "x"),
            runner=runner,
        )

    assert excinfo.value.step == "checkout"


def test_build_runs_in_checkout_with_rustflags(tmp_path: Path) -> None:
    runner = FakeRunner()

    result = build_component(
        BuildSpec(
            command=("~/.cargo/bin/cargo", "build", "--release"),
            env={"RUSTFLAGS": "-C target-cpu=native"},
        ),
        cwd=tmp_path,
        runner=runner,
    )

    command, cwd, env = runner.calls[0]
    assert command == f"{Path('~/.cargo/bin/cargo').expanduser()} build --release"
    assert cwd == tmp_path
    assert env == {"RUSTFLAGS": "-C target-cpu=native"}
    assert result.cwd == tmp_path


def test_build_failure_is_fatal(tmp_path: Path) -> None:
    runner = FakeRunner([("cargo", CmdResult(101, "", "error[E0425]"))])

    with pytest.raises(ProvisioningError) as excinfo:
        build_component(BuildSpec(command=("cargo", "build")), cwd=tmp_path, runner=runner)

    assert excinfo.value.step == "build"
    assert excinfo.value.returncode == 101
