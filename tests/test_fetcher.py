"""Dump download: streaming, skip-if-present, and failure cleanup."""

from __future__ import annotations

from pathlib import Path

import allure
import httpx
import pytest

from wikidata_filter_runner.errors import TransferError
from wikidata_filter_runner.http.fetcher import ArtifactFetcher

pytestmark = [
    allure.epic("Artifact Transfer"),
    allure.feature("Dump Fetch"),
]

DUMP_URL = (
    "http://dumps.wikimedia.your.org/other/wikibase/wikidatawiki/20201230/"
    "wikidata-20201230-truthy-BETA.nt.bz2"
)


class _CountingHandler:
    def __init__(self, status_code: int = 200, body: bytes = b"BZh91AY&SY dump bytes") -> None:
        self.status_code = status_code
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, content=self.body)


def test_fetch_writes_destination(tmp_path: Path) -> None:
    handler = _CountingHandler()
    destination = tmp_path / "wikidata-20201230-truthy-BETA.nt.bz2"

    with ArtifactFetcher(transport=httpx.MockTransport(handler)) as fetcher:
        result = fetcher.fetch(DUMP_URL, destination)

    assert result.skipped is False
    assert result.bytes_written == len(handler.body)
    assert destination.read_bytes() == handler.body
    assert not destination.with_name(destination.name + ".part").exists()
    assert str(handler.requests[0].url) == DUMP_URL
    assert handler.requests[0].headers["User-Agent"].startswith("wikidata-filter-runner/")


def test_second_fetch_makes_no_request(tmp_path: Path) -> None:
    handler = _CountingHandler()
    destination = tmp_path / "dump.nt.bz2"

    with ArtifactFetcher(transport=httpx.MockTransport(handler)) as fetcher:
        fetcher.fetch(DUMP_URL, destination)
        second = fetcher.fetch(DUMP_URL, destination)

    assert second.skipped is True
    assert second.bytes_written == 0
    assert len(handler.requests) == 1


def test_empty_existing_file_is_fetched_again(tmp_path: Path) -> None:
    handler = _CountingHandler()
    destination = tmp_path / "dump.nt.bz2"
    destination.write_bytes(b"")

    with ArtifactFetcher(transport=httpx.MockTransport(handler)) as fetcher:
        result = fetcher.fetch(DUMP_URL, destination)

    assert result.skipped is False
    assert destination.read_bytes() == handler.body


def test_http_error_status_raises_and_leaves_nothing_behind(tmp_path: Path) -> None:
    destination = tmp_path / "dump.nt.bz2"
    handler = _CountingHandler(status_code=404, body=b"not found")

    with (
        ArtifactFetcher(transport=httpx.MockTransport(handler)) as fetcher,
        pytest.raises(TransferError, match="HTTP 404") as excinfo,
    ):
        fetcher.fetch(DUMP_URL, destination)

    assert excinfo.value.url == DUMP_URL
    assert not destination.exists()
    assert list(tmp_path.iterdir()) == []


def test_connection_error_is_wrapped(tmp_path: Path) -> None:
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with (
        ArtifactFetcher(transport=httpx.MockTransport(_refuse)) as fetcher,
        pytest.raises(TransferError) as excinfo,
    ):
        fetcher.fetch(DUMP_URL, tmp_path / "dump.nt.bz2")

    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)
    assert list(tmp_path.iterdir()) == []


def test_empty_body_is_a_transfer_error(tmp_path: Path) -> None:
    handler = _CountingHandler(body=b"")

    with (
        ArtifactFetcher(transport=httpx.MockTransport(handler)) as fetcher,
        pytest.raises(TransferError, match="empty response body"),
    ):
        fetcher.fetch(DUMP_URL, tmp_path / "dump.nt.bz2")

    assert list(tmp_path.iterdir()) == []
