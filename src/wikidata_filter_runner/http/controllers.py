"""Controllers for dump fetch, identifier properties, and output upload."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import httpx

from wikidata_filter_runner.errors import UploadError
from wikidata_filter_runner.http.archive import InternetArchiveUploader, upload_outputs
from wikidata_filter_runner.http.fetcher import ArtifactFetcher
from wikidata_filter_runner.http.properties import (
    IDENTIFIER_PROPERTIES_FILENAME,
    IdentifierPropertiesClient,
)
from wikidata_filter_runner.orchestrator.controllers import load_settings, open_orchestrator


@dataclass(slots=True)
class FetchCommand:
    """CLI input for a dump download."""

    db_path: Path | None
    dump_date: str
    destination: Path | None = None


@dataclass(slots=True)
class PropertiesCommand:
    db_path: Path | None
    output_path: Path | None = None


@dataclass(slots=True)
class UploadCommand:
    """CLI input for uploading outputs of a finished run."""

    db_path: Path | None
    run_id: str
    working_dir: Path | None = None
    patterns: tuple[str, ...] = ()
    item: str | None = None


class TransferCliController:
    """HTTP transfers. ``transport`` lets tests substitute the network."""

    def __init__(self, *, transport: httpx.BaseTransport | None = None) -> None:
        self._transport = transport

    def fetch(self, command: FetchCommand) -> list[str]:
        settings = load_settings(command.db_path)
        url = settings.dump_url(command.dump_date)
        destination = command.destination or settings.dump_path(command.dump_date)
        with ArtifactFetcher(
            timeout_seconds=settings.http.timeout_seconds,
            transport=self._transport,
        ) as fetcher:
            result = fetcher.fetch(url, destination)

        if result.skipped:
            return [f"Already present: {result.destination}"]
        return [
            f"Fetched: {result.url}",
            f"Saved: {result.destination} ({result.bytes_written} bytes)",
        ]

    def properties(self, command: PropertiesCommand) -> list[str]:
        settings = load_settings(command.db_path)
        destination = command.output_path or settings.base_dir / IDENTIFIER_PROPERTIES_FILENAME
        with IdentifierPropertiesClient(
            endpoint=settings.http.sparql_endpoint,
            timeout_seconds=settings.http.timeout_seconds,
            transport=self._transport,
        ) as client:
            ids = client.refresh(destination)
        return [f"Identifier properties: {len(ids)}", f"Saved: {destination}"]

    def upload(self, command: UploadCommand) -> list[str]:
        settings = load_settings(command.db_path)
        archive = settings.archive
        item = command.item or archive.item
        if not item or not archive.access_key or not archive.secret_key:
            raise UploadError(
                "Archive item and credentials are required: set WIKIDATA_FILTER_ARCHIVE_ITEM, "
                "WIKIDATA_FILTER_ARCHIVE_ACCESS_KEY and WIKIDATA_FILTER_ARCHIVE_SECRET_KEY.",
            )

        with (
            open_orchestrator(settings) as orchestrator,
            InternetArchiveUploader(
                endpoint=archive.endpoint,
                item=item,
                access_key=archive.access_key,
                secret_key=archive.secret_key,
                timeout_seconds=settings.http.timeout_seconds,
                transport=self._transport,
            ) as uploader,
        ):
            receipts = upload_outputs(
                orchestrator,
                command.run_id,
                uploader,
                working_dir=command.working_dir or settings.base_dir,
                patterns=command.patterns or archive.output_patterns,
            )

        lines = [f"Uploaded: {len(receipts)} file(s)"]
        lines.extend(f"  {receipt.path.name} -> {receipt.url}" for receipt in receipts)
        return lines
