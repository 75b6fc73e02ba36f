"""Hand filter outputs to an archive once the task has stopped."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

import httpx

from wikidata_filter_runner.errors import UploadError
from wikidata_filter_runner.http.fetcher import (
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    build_client,
)
from wikidata_filter_runner.orchestrator.models import TaskStatus
from wikidata_filter_runner.orchestrator.services import JobOrchestrator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UploadReceipt:
    """One uploaded file."""

    path: Path
    url: str
    bytes_sent: int


class ArchiveUploader(Protocol):
    def upload(self, path: Path) -> UploadReceipt:
        """Upload one file. Raises ``UploadError``."""


class InternetArchiveUploader:
    """PUTs files into an item of an Internet-Archive-style S3 endpoint."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        endpoint: str,
        item: str,
        access_key: str,
        secret_key: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not item:
            raise ValueError("Archive item name must not be empty.")
        self.endpoint = endpoint.rstrip("/")
        self.item = item
        self._client = build_client(
            timeout_seconds=timeout_seconds,
            user_agent=user_agent,
            headers={
                "authorization": f"LOW {access_key}:{secret_key}",
                "x-archive-auto-make-bucket": "1",
            },
            transport=transport,
        )

    def url_for(self, path: Path) -> str:
        return f"{self.endpoint}/{quote(self.item)}/{quote(path.name)}"

    def upload(self, path: Path) -> UploadReceipt:
        url = self.url_for(path)
        try:
            size = path.stat().st_size
            with path.open("rb") as handle:
                response = self._client.put(
                    url,
                    content=handle,
                    headers={"Content-Length": str(size)},
                )
        except httpx.HTTPError as error:
            raise UploadError(
                f"Upload of {path} to {url} failed: {error}",
                path=str(path),
            ) from error
        except OSError as error:
            raise UploadError(f"Cannot read {path}: {error}", path=str(path)) from error
        if not response.is_success:
            raise UploadError(
                f"Upload of {path} to {url} failed: HTTP {response.status_code}",
                path=str(path),
            )
        logger.info("Uploaded %s -> %s (%d bytes).", path, url, size)
        return UploadReceipt(path=path, url=url, bytes_sent=size)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> InternetArchiveUploader:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def collect_outputs(working_dir: Path, patterns: Sequence[str]) -> list[Path]:
    """Non-empty files in ``working_dir`` matching any pattern, sorted by name."""

    found: dict[str, Path] = {}
    for pattern in patterns:
        for path in working_dir.glob(pattern):
            if path.is_file() and path.stat().st_size > 0:
                found[path.name] = path
    return [found[name] for name in sorted(found)]


def upload_outputs(
    orchestrator: JobOrchestrator,
    run_id: str,
    uploader: ArchiveUploader,
    *,
    working_dir: Path,
    patterns: Sequence[str],
) -> list[UploadReceipt]:
    """Upload every output of a stopped run. Outputs of a running task are incomplete."""

    status = orchestrator.query_status(run_id)
    if status is not TaskStatus.STOPPED:
        raise UploadError(
            f"Task {run_id!r} is {status.value}; outputs can only be uploaded once it stopped.",
        )
    outputs = collect_outputs(working_dir, patterns)
    if not outputs:
        raise UploadError(
            f"No outputs matching {', '.join(patterns)} in {working_dir}.",
            path=str(working_dir),
        )
    logger.info("Uploading %d output file(s) for run_id=%s.", len(outputs), run_id)
    return [uploader.upload(path) for path in outputs]
