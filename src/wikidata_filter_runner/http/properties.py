"""Identifier-typed Wikidata property list, fetched over SPARQL."""

from __future__ import annotations

import csv
import io
import logging
from pathlib import Path

import httpx

from wikidata_filter_runner.errors import TransferError
from wikidata_filter_runner.http.fetcher import (
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    build_client,
)

logger = logging.getLogger(__name__)

IDENTIFIER_PROPERTIES_FILENAME = "identifier-properties"
ENTITY_PREFIX = "http://www.wikidata.org/entity/P"
IDENTIFIER_PROPERTIES_QUERY = """\
SELECT ?property WHERE {
  ?property wikibase:propertyType wikibase:ExternalId .
}
"""


def parse_identifier_properties(csv_text: str) -> list[int]:
    """Extract sorted, de-duplicated numeric property ids from a SPARQL CSV result.

    The header row is dropped; rows whose first cell is not a property entity URI
    are ignored.
    """

    rows = csv.reader(io.StringIO(csv_text))
    next(rows, None)
    ids: set[int] = set()
    for row in rows:
        if not row:
            continue
        value = row[0].strip()
        if not value.startswith(ENTITY_PREFIX):
            continue
        suffix = value[len(ENTITY_PREFIX) :]
        if suffix.isdigit():
            ids.add(int(suffix))
    return sorted(ids)


def write_identifier_properties(ids: list[int], destination: Path) -> Path:
    """One id per line, replaced atomically."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + ".part")
    partial.write_text("".join(f"{value}\n" for value in ids), encoding="utf-8")
    partial.replace(destination)
    return destination


class IdentifierPropertiesClient:
    """Runs the identifier-property query against a SPARQL endpoint."""

    def __init__(
        self,
        *,
        endpoint: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self._client = build_client(
            timeout_seconds=timeout_seconds,
            user_agent=user_agent,
            headers={"Accept": "text/csv"},
            transport=transport,
        )

    def fetch_ids(self, query: str = IDENTIFIER_PROPERTIES_QUERY) -> list[int]:
        try:
            response = self._client.post(self.endpoint, data={"query": query})
        except httpx.HTTPError as error:
            raise TransferError(
                f"SPARQL query failed at {self.endpoint}: {error}",
                url=self.endpoint,
            ) from error
        if not response.is_success:
            raise TransferError(
                f"SPARQL query failed at {self.endpoint}: HTTP {response.status_code}",
                url=self.endpoint,
            )
        ids = parse_identifier_properties(response.text)
        logger.info("SPARQL endpoint returned %d identifier properties.", len(ids))
        return ids

    def refresh(self, destination: Path) -> list[int]:
        """Fetch the current list and write it to ``destination``."""

        ids = self.fetch_ids()
        try:
            write_identifier_properties(ids, destination)
        except OSError as error:
            raise TransferError(
                f"Failed to write {destination}: {error}",
                url=self.endpoint,
            ) from error
        return ids

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> IdentifierPropertiesClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
