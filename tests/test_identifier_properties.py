from __future__ import annotations

from pathlib import Path
from urllib.parse import parse_qs

import allure
import httpx
import pytest

from wikidata_filter_runner.errors import TransferError
from wikidata_filter_runner.http.properties import (
    IDENTIFIER_PROPERTIES_QUERY,
    IdentifierPropertiesClient,
    parse_identifier_properties,
)

pytestmark = [
    allure.epic("Artifact Transfer"),
    allure.feature("Identifier Properties"),
]

ENDPOINT = "https://query.wikidata.org/sparql"
CSV_ANSWER = (
    "property\r\n"
    "http://www.wikidata.org/entity/P214\r\n"
    "http://www.wikidata.org/entity/P1006\r\n"
    "http://www.wikidata.org/entity/P214\r\n"
    "http://www.wikidata.org/entity/P31\r\n"
    "http://www.wikidata.org/entity/Q42\r\n"
)


def test_parse_drops_header_sorts_numerically_and_dedups() -> None:
    assert parse_identifier_properties(CSV_ANSWER) == [31, 214, 1006]


def test_parse_of_header_only_answer_is_empty() -> None:
    assert parse_identifier_properties("property\n") == []


def test_refresh_posts_query_and_writes_one_id_per_line(tmp_path: Path) -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=CSV_ANSWER, headers={"Content-Type": "text/csv"})

    destination = tmp_path / "identifier-properties"
    with IdentifierPropertiesClient(
        endpoint=ENDPOINT,
        transport=httpx.MockTransport(_handler),
    ) as client:
        ids = client.refresh(destination)

    assert ids == [31, 214, 1006]
    assert destination.read_text() == "31\n214\n1006\n"
    request = seen[0]
    assert request.method == "POST"
    assert request.headers["Accept"] == "text/csv"
    assert parse_qs(request.content.decode())["query"] == [IDENTIFIER_PROPERTIES_QUERY]


def test_endpoint_failure_raises_transfer_error(tmp_path: Path) -> None:
    destination = tmp_path / "identifier-properties"

    with (
        IdentifierPropertiesClient(
            endpoint=ENDPOINT,
            transport=httpx.MockTransport(lambda _request: httpx.Response(503)),
        ) as client,
        pytest.raises(TransferError, match="HTTP 503"),
    ):
        client.refresh(destination)

    assert not destination.exists()
