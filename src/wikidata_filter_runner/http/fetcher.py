"""Streaming artifact download with skip-if-present semantics."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import httpx

from wikidata_filter_runner import __version__
from wikidata_filter_runner.errors import TransferError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_USER_AGENT = (
    f"wikidata-filter-runner/{__version__} (+https://github.com/turbolent/wikidata-filter)"
)
CHUNK_SIZE = 4 * 1024 * 1024


@dataclass(slots=True)
class ArtifactFetchResult:
    """Result of one artifact fetch."""

    url: str
    destination: Path
    bytes_written: int
    skipped: bool


def build_client(
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    user_agent: str = DEFAULT_USER_AGENT,
    headers: dict[str, str] | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """HTTP client shared by transfer helpers. No retries: callers decide."""

    base_headers = {"User-Agent": user_agent}
    if headers:
        base_headers.update(headers)
    return httpx.Client(
        timeout=httpx.Timeout(timeout_seconds, connect=10.0),
        headers=base_headers,
        transport=transport,
        follow_redirects=True,
    )


class ArtifactFetcher:
    """Downloads large opaque blobs to local storage."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = build_client(
            timeout_seconds=timeout_seconds,
            user_agent=user_agent,
            transport=transport,
        )

    def fetch(self, url: str, destination: Path) -> ArtifactFetchResult:
        """Fetch ``url`` into ``destination`` unless a non-empty file is already there.

        Presence is the only completeness signal; no checksum is verified.
        """

        if destination.is_file() and destination.stat().st_size > 0:
            logger.info("Skipping fetch, %s already exists.", destination)
            return ArtifactFetchResult(
                url=url,
                destination=destination,
                bytes_written=0,
                skipped=True,
            )

        partial = destination.with_name(destination.name + ".part")
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            written = self._stream_to(url, partial)
            partial.replace(destination)
        except httpx.HTTPError as error:
            raise TransferError(f"Failed to fetch {url}: {error}", url=url) from error
        except OSError as error:
            raise TransferError(
                f"Failed to write {destination} while fetching {url}: {error}",
                url=url,
            ) from error
        finally:
            partial.unlink(missing_ok=True)

        logger.info("Fetched %s -> %s (%d bytes).", url, destination, written)
        return ArtifactFetchResult(
            url=url,
            destination=destination,
            bytes_written=written,
            skipped=False,
        )

    def _stream_to(self, url: str, partial: Path) -> int:
        written = 0
        with self._client.stream("GET", url) as response:
            if not response.is_success:
                raise TransferError(
                    f"Failed to fetch {url}: HTTP {response.status_code}",
                    url=url,
                )
            with partial.open("wb") as handle:
                for chunk in response.iter_bytes(CHUNK_SIZE):
                    handle.write(chunk)
                    written += len(chunk)
        if written == 0:
            raise TransferError(f"Failed to fetch {url}: empty response body", url=url)
        return written

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ArtifactFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
