"""Runtime configuration for provisioning, dump transfer, and filter runs."""

from __future__ import annotations

import os
import shlex
import signal
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_BASE_DIR = Path("/root/wikidata-filter")
DEFAULT_PACKAGES = {"git": "present", "build-essential": "present"}
DEFAULT_REPO_URL = "https://github.com/turbolent/wikidata-filter.git"
DEFAULT_DUMP_MIRROR = "http://dumps.wikimedia.your.org"
DEFAULT_DUMP_NAME_TEMPLATE = "wikidata-{dump_date}-truthy-BETA.nt.bz2"
DEFAULT_SPARQL_ENDPOINT = "https://query.wikidata.org/sparql"
DEFAULT_ARCHIVE_ENDPOINT = "https://s3.us.archive.org"
DEFAULT_OUTPUT_PATTERNS = ("[0-9]*.nt.bz2", "labels_*.bz2")
PACKAGE_STATES = frozenset({"present", "absent"})


@dataclass(slots=True)
class ProvisioningSettings:
    """Host packages, toolchain installer, and build of the external filter."""

    packages: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PACKAGES))
    repo_url: str = DEFAULT_REPO_URL
    repo_ref: str | None = None
    rustflags: str = "-C target-cpu=native"
    build_command: tuple[str, ...] = ("~/.cargo/bin/cargo", "build", "--release")
    rustup_command: str = "curl https://sh.rustup.rs -sSf | sh -s -- -y"
    rustup_creates: Path = Path("~/.cargo/env")


@dataclass(slots=True)
class DumpSettings:
    """Where Wikidata truthy dumps are downloaded from."""

    mirror: str = DEFAULT_DUMP_MIRROR
    name_template: str = DEFAULT_DUMP_NAME_TEMPLATE


@dataclass(slots=True)
class TaskSettings:
    """Background filter task invocation and lifecycle tunables."""

    executable: str | None = None
    filter_args: tuple[str, ...] = ("--labels", "--statement-counts")
    stop_signal: str = "INT"
    stop_timeout_seconds: float = 30.0
    reservation_timeout_seconds: int = 60


@dataclass(slots=True)
class HttpSettings:
    """HTTP client settings shared by dump, SPARQL, and archive transfers."""

    timeout_seconds: float = 60.0
    sparql_endpoint: str = DEFAULT_SPARQL_ENDPOINT


@dataclass(slots=True)
class ArchiveSettings:
    """Upload target for filter outputs."""

    endpoint: str = DEFAULT_ARCHIVE_ENDPOINT
    item: str | None = None
    access_key: str | None = None
    secret_key: str | None = None
    output_patterns: tuple[str, ...] = DEFAULT_OUTPUT_PATTERNS


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".wikidata_filter_runner.db")
    base_dir: Path = DEFAULT_BASE_DIR
    log_dir: Path | None = None
    provisioning: ProvisioningSettings = field(default_factory=ProvisioningSettings)
    dump: DumpSettings = field(default_factory=DumpSettings)
    task: TaskSettings = field(default_factory=TaskSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    archive: ArchiveSettings = field(default_factory=ArchiveSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults matching the ansible run-book."""

        base_dir = Path(os.getenv("WIKIDATA_FILTER_BASE_DIR", str(DEFAULT_BASE_DIR)))
        log_dir_raw = os.getenv("WIKIDATA_FILTER_LOG_DIR", "").strip()
        return cls(
            db_path=db_path
            or Path(os.getenv("WIKIDATA_FILTER_DB_PATH", ".wikidata_filter_runner.db")),
            base_dir=base_dir,
            log_dir=Path(log_dir_raw) if log_dir_raw else None,
            provisioning=ProvisioningSettings(
                packages=_parse_packages(os.getenv("WIKIDATA_FILTER_PACKAGES")),
                repo_url=os.getenv("WIKIDATA_FILTER_REPO_URL", DEFAULT_REPO_URL),
                repo_ref=os.getenv("WIKIDATA_FILTER_REPO_REF") or None,
                rustflags=os.getenv("WIKIDATA_FILTER_RUSTFLAGS", "-C target-cpu=native"),
                build_command=tuple(
                    shlex.split(
                        os.getenv(
                            "WIKIDATA_FILTER_BUILD_COMMAND",
                            "~/.cargo/bin/cargo build --release",
                        ),
                    ),
                ),
                rustup_command=os.getenv(
                    "WIKIDATA_FILTER_RUSTUP_COMMAND",
                    "curl https://sh.rustup.rs -sSf | sh -s -- -y",
                ),
                rustup_creates=Path(os.getenv("WIKIDATA_FILTER_RUSTUP_CREATES", "~/.cargo/env")),
            ),
            dump=DumpSettings(
                mirror=os.getenv("WIKIDATA_FILTER_DUMP_MIRROR", DEFAULT_DUMP_MIRROR),
                name_template=os.getenv(
                    "WIKIDATA_FILTER_DUMP_NAME_TEMPLATE",
                    DEFAULT_DUMP_NAME_TEMPLATE,
                ),
            ),
            task=TaskSettings(
                executable=os.getenv("WIKIDATA_FILTER_EXECUTABLE") or None,
                filter_args=tuple(
                    shlex.split(
                        os.getenv("WIKIDATA_FILTER_FILTER_ARGS", "--labels --statement-counts"),
                    ),
                ),
                stop_signal=os.getenv("WIKIDATA_FILTER_STOP_SIGNAL", "INT"),
                stop_timeout_seconds=float(
                    os.getenv("WIKIDATA_FILTER_STOP_TIMEOUT_SECONDS", "30"),
                ),
                reservation_timeout_seconds=int(
                    os.getenv("WIKIDATA_FILTER_RESERVATION_TIMEOUT_SECONDS", "60"),
                ),
            ),
            http=HttpSettings(
                timeout_seconds=float(os.getenv("WIKIDATA_FILTER_HTTP_TIMEOUT_SECONDS", "60")),
                sparql_endpoint=os.getenv(
                    "WIKIDATA_FILTER_SPARQL_ENDPOINT",
                    DEFAULT_SPARQL_ENDPOINT,
                ),
            ),
            archive=ArchiveSettings(
                endpoint=os.getenv("WIKIDATA_FILTER_ARCHIVE_ENDPOINT", DEFAULT_ARCHIVE_ENDPOINT),
                item=os.getenv("WIKIDATA_FILTER_ARCHIVE_ITEM") or None,
                access_key=os.getenv("WIKIDATA_FILTER_ARCHIVE_ACCESS_KEY") or None,
                secret_key=os.getenv("WIKIDATA_FILTER_ARCHIVE_SECRET_KEY") or None,
                output_patterns=_parse_csv(
                    os.getenv("WIKIDATA_FILTER_OUTPUT_PATTERNS"),
                    default=DEFAULT_OUTPUT_PATTERNS,
                ),
            ),
        )

    @property
    def effective_log_dir(self) -> Path:
        return self.log_dir if self.log_dir is not None else self.base_dir / "logs"

    @property
    def task_executable(self) -> str:
        return self.task.executable or str(self.base_dir / "background.sh")

    def dump_name(self, dump_date: str) -> str:
        return self.dump.name_template.format(dump_date=dump_date)

    def dump_url(self, dump_date: str) -> str:
        mirror = self.dump.mirror.rstrip("/")
        return (
            f"{mirror}/other/wikibase/wikidatawiki/{dump_date}/{self.dump_name(dump_date)}"
        )

    def dump_path(self, dump_date: str) -> Path:
        return self.base_dir / self.dump_name(dump_date)

    def filter_args_for(self, dump_date: str) -> tuple[str, ...]:
        return (*self.task.filter_args, self.dump_name(dump_date))

    def validate(self) -> None:
        """Raise configuration error on invalid tunables or URLs."""

        if self.task.stop_timeout_seconds <= 0:
            raise ValueError("WIKIDATA_FILTER_STOP_TIMEOUT_SECONDS must be > 0.")
        if self.task.reservation_timeout_seconds <= 0:
            raise ValueError("WIKIDATA_FILTER_RESERVATION_TIMEOUT_SECONDS must be > 0.")
        if self.http.timeout_seconds <= 0:
            raise ValueError("WIKIDATA_FILTER_HTTP_TIMEOUT_SECONDS must be > 0.")
        resolve_signal(self.task.stop_signal)
        _validate_url(self.dump.mirror, "WIKIDATA_FILTER_DUMP_MIRROR")
        _validate_url(self.http.sparql_endpoint, "WIKIDATA_FILTER_SPARQL_ENDPOINT")
        _validate_url(self.archive.endpoint, "WIKIDATA_FILTER_ARCHIVE_ENDPOINT")
        if "{dump_date}" not in self.dump.name_template:
            raise ValueError("WIKIDATA_FILTER_DUMP_NAME_TEMPLATE must contain {dump_date}.")
        if not self.provisioning.build_command:
            raise ValueError("WIKIDATA_FILTER_BUILD_COMMAND must not be empty.")


def resolve_signal(name: str) -> signal.Signals:
    """Map ``INT``/``SIGINT``/``2`` style names to a signal."""

    normalized = name.strip().upper()
    if normalized.isdigit():
        try:
            return signal.Signals(int(normalized))
        except ValueError as error:
            raise ValueError(f"Unknown stop signal: {name!r}") from error
    if not normalized.startswith("SIG"):
        normalized = f"SIG{normalized}"
    try:
        return signal.Signals[normalized]
    except KeyError as error:
        raise ValueError(f"Unknown stop signal: {name!r}") from error


def _parse_packages(raw: str | None) -> dict[str, str]:
    if raw is None or not raw.strip():
        return dict(DEFAULT_PACKAGES)

    packages: dict[str, str] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        name, _, state = token.partition("=")
        name = name.strip()
        state = (state.strip() or "present").lower()
        if not name:
            raise ValueError(f"Invalid WIKIDATA_FILTER_PACKAGES entry: {token!r}")
        if state not in PACKAGE_STATES:
            raise ValueError(
                f"Invalid WIKIDATA_FILTER_PACKAGES state for {name!r}: {state!r} "
                "(expected present or absent)",
            )
        packages[name] = state
    return packages


def _parse_csv(raw: str | None, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if raw is None:
        return default
    values = tuple(part.strip() for part in raw.split(",") if part.strip())
    return values or default


def _validate_url(value: str, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
