"""Integration test fixtures — live search engines seeded with place documents.

Expects engines to be reachable locally, for example:
    docker run -p 7700:7700 -e MEILI_MASTER_KEY=test-master-key getmeili/meilisearch
    docker run -p 9200:9200 -e discovery.type=single-node -e xpack.security.enabled=false elasticsearch:8.12.0

Tests are skipped when an engine is not available.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import pytest

from searchindex.models.field_mapping import FieldMapping, FieldType
from searchindex.models.index import Index

T = TypeVar("T")

PLACE_DOCUMENTS: list[dict[str, Any]] = [
    {"objectID": "1", "title": "Lisbon", "body": "Capital on the Tagus estuary", "country": "PT", "population": 544851},
    {"objectID": "2", "title": "Porto", "body": "Port wine and the Douro river", "country": "PT", "population": 231800},
    {"objectID": "3", "title": "Madrid", "body": "Capital in the centre of Spain", "country": "ES", "population": 3223334},
    {"objectID": "4", "title": "Seville", "body": "Andalusian city on the Guadalquivir", "country": "ES", "population": 684234},
    {"objectID": "5", "title": "Lyon", "body": "Confluence of the Rhone and Saone", "country": "FR", "population": 516092},
]

PLACE_MAPPINGS = [
    FieldMapping(index_field_name="title", field_type=FieldType.TEXT, weight=10, sort_order=0),
    FieldMapping(index_field_name="body", field_type=FieldType.TEXT, weight=3, sort_order=1),
    FieldMapping(index_field_name="country", field_type=FieldType.FACET, sort_order=2),
    FieldMapping(index_field_name="population", field_type=FieldType.INTEGER, sort_order=3),
]


def _wait_for_service(url: str, timeout: float = 60.0) -> bool:
    """Block until *url* returns HTTP 200, or timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            if httpx.get(url, timeout=10).status_code == 200:
                return True
        except httpx.HTTPError:
            pass
        time.sleep(2)
    return False


async def eventually(
    fetch: Callable[[], Awaitable[T]],
    predicate: Callable[[T], bool],
    timeout: float = 15.0,
) -> T:
    """Poll *fetch* until *predicate* holds; engines apply writes asynchronously."""
    deadline = time.monotonic() + timeout
    value = await fetch()
    while not predicate(value) and time.monotonic() < deadline:
        await asyncio.sleep(0.25)
        value = await fetch()
    return value


def place_index(engine_type: str, handle: str = "it_places") -> Index:
    return Index(handle=handle, name="Places", engine_type=engine_type, field_mappings=PLACE_MAPPINGS)


# ── Meilisearch ─────────────────────────────────────────────────


@pytest.fixture(scope="session")
def meilisearch_ready() -> str:
    host = "http://localhost:7700"
    if not _wait_for_service(f"{host}/health", timeout=10.0):
        pytest.skip("Meilisearch not available at localhost:7700")
    return host


# ── Elasticsearch ───────────────────────────────────────────────


@pytest.fixture(scope="session")
def elasticsearch_ready() -> str:
    host = "http://localhost:9200"
    if not _wait_for_service(host, timeout=10.0):
        pytest.skip("Elasticsearch not available at localhost:9200")
    return host


@pytest.fixture
def place_documents() -> list[dict[str, Any]]:
    return [dict(doc) for doc in PLACE_DOCUMENTS]


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[Any]]:
    return eventually


@pytest.fixture
def make_index() -> Callable[..., Index]:
    return place_index
