"""Tests for the search, facet-value and document endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from searchindex.api.app import create_app
from searchindex.api.deps import set_service
from searchindex.config.settings import Settings
from searchindex.core.service import SearchIndexService
from searchindex.engines.base.exceptions import QueryError
from searchindex.models.result import SearchOutcome, SearchResult

# ── Helpers ──────────────────────────────────────────────────────────────────


def _mock_search_result() -> SearchResult:
    return SearchResult(
        hits=[{"objectID": "42", "title": "Lisbon", "_score": 0.9, "_highlights": {}}],
        total_hits=1,
        page=1,
        per_page=20,
        processing_time_ms=3,
        facets={"country": [{"value": "PT", "count": 1}]},
    )


@pytest.fixture
def service(settings: Settings) -> SearchIndexService:
    return SearchIndexService(settings)


@pytest.fixture
def client(settings: Settings, service: SearchIndexService) -> TestClient:
    app = create_app(settings)
    set_service(service)
    yield TestClient(app)
    set_service(None)


# ── Search ───────────────────────────────────────────────────────────────────


class TestSearchEndpoint:
    def test_search(self, client: TestClient, service: SearchIndexService) -> None:
        outcome = SearchOutcome(success=True, result=_mock_search_result())
        with patch.object(service, "search", new_callable=AsyncMock, return_value=outcome) as search:
            response = client.post(
                "/v1/indexes/places/search",
                json={"query": "lisbon", "options": {"facets": ["country"], "perPage": 20}},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["total_hits"] == 1
        assert data["total_pages"] == 1
        assert data["hits"][0]["objectID"] == "42"
        assert data["facets"]["country"][0] == {"value": "PT", "count": 1}
        search.assert_awaited_once_with("places", "lisbon", {"facets": ["country"], "perPage": 20})

    def test_unknown_index(self, client: TestClient) -> None:
        response = client.post("/v1/indexes/nowhere/search", json={"query": "x"})
        assert response.status_code == 404
        assert "nowhere" in response.json()["detail"]

    def test_engine_failure_returns_502(self, client: TestClient, service: SearchIndexService) -> None:
        outcome = SearchOutcome(success=False, message="Meilisearch POST /indexes/places/search failed")
        with patch.object(service, "search", new_callable=AsyncMock, return_value=outcome):
            response = client.post("/v1/indexes/places/search", json={"query": "x"})
        assert response.status_code == 502
        assert "failed" in response.json()["detail"]

    def test_empty_body_defaults(self, client: TestClient, service: SearchIndexService) -> None:
        outcome = SearchOutcome(success=True, result=SearchResult.empty())
        with patch.object(service, "search", new_callable=AsyncMock, return_value=outcome) as search:
            response = client.post("/v1/indexes/places/search", json={})
        assert response.status_code == 200
        search.assert_awaited_once_with("places", "", {})


# ── Facets ───────────────────────────────────────────────────────────────────


class TestFacetEndpoint:
    def test_facet_search(self, client: TestClient, service: SearchIndexService) -> None:
        facets = {"country": [{"value": "Portugal", "count": 3}]}
        with patch.object(service, "search_facet_values", new_callable=AsyncMock, return_value=facets) as lookup:
            response = client.post(
                "/v1/indexes/places/facets",
                json={"fields": ["country"], "query": "port", "max_per_field": 3},
            )
        assert response.status_code == 200
        assert response.json() == {"facets": facets}
        lookup.assert_awaited_once_with("places", ["country"], "port", 3, {})

    def test_fields_required(self, client: TestClient) -> None:
        response = client.post("/v1/indexes/places/facets", json={"fields": []})
        assert response.status_code == 422

    def test_engine_error(self, client: TestClient, service: SearchIndexService) -> None:
        with patch.object(service, "search_facet_values", new_callable=AsyncMock, side_effect=QueryError("boom")):
            response = client.post("/v1/indexes/places/facets", json={"fields": ["country"]})
        assert response.status_code == 502


# ── Documents ────────────────────────────────────────────────────────────────


class TestDocumentEndpoint:
    def test_get_document(self, client: TestClient, service: SearchIndexService) -> None:
        document = {"objectID": "42", "title": "Lisbon"}
        with patch.object(service, "get_document", new_callable=AsyncMock, return_value=document):
            response = client.get("/v1/indexes/places/documents/42")
        assert response.status_code == 200
        assert response.json()["title"] == "Lisbon"

    def test_missing_document(self, client: TestClient, service: SearchIndexService) -> None:
        with patch.object(service, "get_document", new_callable=AsyncMock, return_value=None):
            response = client.get("/v1/indexes/places/documents/404")
        assert response.status_code == 404

    def test_unknown_index(self, client: TestClient) -> None:
        assert client.get("/v1/indexes/nowhere/documents/1").status_code == 404
