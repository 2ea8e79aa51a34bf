"""Tests for the SearchIndexService facade."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from searchindex.config.settings import Settings
from searchindex.core.indexes import IndexNotFoundError
from searchindex.core.service import SearchIndexService
from searchindex.engines.base.exceptions import QueryError
from searchindex.engines.meilisearch.engine import MeilisearchEngine
from searchindex.models.result import ConnectionStatus, SearchResult


@pytest.fixture
def service(settings: Settings) -> SearchIndexService:
    return SearchIndexService(settings)


@pytest.fixture
def engine() -> MagicMock:
    return MagicMock(spec=MeilisearchEngine)


class TestSearch:
    async def test_success(self, service: SearchIndexService, engine: MagicMock) -> None:
        engine.search.return_value = SearchResult(hits=[{"objectID": "1"}], total_hits=1)
        with patch.object(service.engines, "get_engine", new_callable=AsyncMock, return_value=engine):
            outcome = await service.search("places", "lisbon", {"perPage": 5})

        assert outcome.success is True
        assert outcome.result is not None
        assert outcome.result.total_hits == 1
        index, query, options = engine.search.call_args.args
        assert index.handle == "places"
        assert query == "lisbon"
        assert options == {"perPage": 5}

    async def test_engine_error_becomes_failed_outcome(self, service: SearchIndexService, engine: MagicMock) -> None:
        engine.search.side_effect = QueryError("index_not_found")
        with patch.object(service.engines, "get_engine", new_callable=AsyncMock, return_value=engine):
            outcome = await service.search("places", "x")

        assert outcome.success is False
        assert outcome.result is None
        assert "index_not_found" in outcome.message

    async def test_unknown_handle(self, service: SearchIndexService) -> None:
        with pytest.raises(IndexNotFoundError):
            await service.search("nowhere", "x")

    async def test_vector_search_without_embedding_field_passes_through(
        self, service: SearchIndexService, engine: MagicMock
    ) -> None:
        engine.search.return_value = SearchResult.empty()
        with patch.object(service.engines, "get_engine", new_callable=AsyncMock, return_value=engine):
            await service.search("places", "lisbon", {"vectorSearch": True})

        options = engine.search.call_args.args[2]
        assert "embedding" not in options
        assert "embeddingField" not in options


class TestLookups:
    async def test_get_document(self, service: SearchIndexService, engine: MagicMock) -> None:
        engine.get_document.return_value = {"objectID": "42"}
        with patch.object(service.engines, "get_engine", new_callable=AsyncMock, return_value=engine):
            assert await service.get_document("places", "42") == {"objectID": "42"}

    async def test_facet_values(self, service: SearchIndexService, engine: MagicMock) -> None:
        engine.search_facet_values.return_value = {"country": []}
        with patch.object(service.engines, "get_engine", new_callable=AsyncMock, return_value=engine):
            values = await service.search_facet_values("places", ["country"], "po", 3)

        assert values == {"country": []}
        assert engine.search_facet_values.call_args.args[1:] == (["country"], "po", 3, None)


class TestHealth:
    async def test_health_per_enabled_index(self, service: SearchIndexService) -> None:
        status = ConnectionStatus(success=False, message="Meilisearch connection failed")
        with patch.object(service.engines, "test_connection", new_callable=AsyncMock, return_value=status):
            report = await service.health()

        assert list(report) == ["places"]
        assert report["places"].success is False

    async def test_test_connection_unknown_handle(self, service: SearchIndexService) -> None:
        with pytest.raises(IndexNotFoundError):
            await service.test_connection("nowhere")

    async def test_shutdown_closes_components(self, service: SearchIndexService) -> None:
        with (
            patch.object(service.engines, "shutdown_all", new_callable=AsyncMock) as shutdown_all,
            patch.object(service.embeddings, "close", new_callable=AsyncMock) as close,
            patch.object(service.cache, "shutdown", new_callable=AsyncMock) as cache_shutdown,
        ):
            await service.shutdown()

        shutdown_all.assert_awaited_once()
        close.assert_awaited_once()
        cache_shutdown.assert_awaited_once()
