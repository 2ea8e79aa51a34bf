"""Tests for the embedding client and vector-search option resolution."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError

from searchindex.cache.manager import CacheManager
from searchindex.config.settings import EmbeddingSettings
from searchindex.embeddings.client import EmbeddingClient, embedding_cache_key, resolve_embedding_options
from searchindex.models.index import Index

# ── Helpers ──────────────────────────────────────────────────────────────────


def _embedding_response(vector: list[float]) -> SimpleNamespace:
    return SimpleNamespace(data=[SimpleNamespace(embedding=vector)] if vector else [])


@pytest.fixture
def cache() -> CacheManager:
    return CacheManager()


@pytest.fixture
def client(cache: CacheManager) -> EmbeddingClient:
    client = EmbeddingClient(EmbeddingSettings(api_key="pa-test", model="voyage-3"), cache)
    client._client = MagicMock()
    client._client.embeddings.create = AsyncMock(return_value=_embedding_response([0.1, 0.2, 0.3]))
    return client


# ── EmbeddingClient ──────────────────────────────────────────────────────────


class TestEmbeddingClient:
    def test_disabled_without_api_key(self) -> None:
        client = EmbeddingClient(EmbeddingSettings())
        assert client.enabled is False
        assert client.default_model == "voyage-3"

    async def test_disabled_client_returns_none(self) -> None:
        assert await EmbeddingClient(EmbeddingSettings()).embed("lisbon") is None

    async def test_blank_text_returns_none(self, client: EmbeddingClient) -> None:
        assert await client.embed("   ") is None
        client._client.embeddings.create.assert_not_awaited()

    async def test_embed(self, client: EmbeddingClient) -> None:
        vector = await client.embed("lisbon", input_type="document")
        assert vector == [0.1, 0.2, 0.3]
        kwargs = client._client.embeddings.create.call_args.kwargs
        assert kwargs["model"] == "voyage-3"
        assert kwargs["input"] == ["lisbon"]
        assert kwargs["encoding_format"] == "float"
        assert kwargs["extra_body"] == {"input_type": "document"}

    async def test_cached_vectors_reused(self, client: EmbeddingClient, cache: CacheManager) -> None:
        await client.embed("lisbon")
        await client.embed("lisbon")
        assert client._client.embeddings.create.await_count == 1
        assert await cache.get(embedding_cache_key("lisbon", "voyage-3", "query")) == [0.1, 0.2, 0.3]

    async def test_cache_key_depends_on_input_type(self) -> None:
        assert embedding_cache_key("a", "m", "query") != embedding_cache_key("a", "m", "document")
        assert embedding_cache_key("a", "m", "query").startswith("searchindex:embedding:")

    async def test_provider_error_returns_none(self, client: EmbeddingClient) -> None:
        client._client.embeddings.create.side_effect = OpenAIError("rate limited")
        assert await client.embed("lisbon") is None

    async def test_empty_response_returns_none(self, client: EmbeddingClient) -> None:
        client._client.embeddings.create.return_value = _embedding_response([])
        assert await client.embed("lisbon") is None


# ── Option resolution ────────────────────────────────────────────────────────


class TestResolveEmbeddingOptions:
    async def test_untouched_without_vector_search(self, embedding_index: Index, client: EmbeddingClient) -> None:
        options = {"perPage": 5}
        assert await resolve_embedding_options(embedding_index, "lisbon", options, client) == options

    async def test_precomputed_embedding_kept(self, embedding_index: Index, client: EmbeddingClient) -> None:
        options = {"vectorSearch": True, "embedding": [1.0, 0.0, 0.0]}
        resolved = await resolve_embedding_options(embedding_index, "lisbon", options, client)
        assert resolved["embedding"] == [1.0, 0.0, 0.0]
        client._client.embeddings.create.assert_not_awaited()

    async def test_field_detected_and_query_embedded(self, embedding_index: Index, client: EmbeddingClient) -> None:
        resolved = await resolve_embedding_options(
            embedding_index, "coastal city", {"vectorSearch": True, "embeddingModel": "voyage-3-lite"}, client
        )
        assert resolved["embeddingField"] == "vector"
        assert resolved["embedding"] == [0.1, 0.2, 0.3]
        assert client._client.embeddings.create.call_args.kwargs["model"] == "voyage-3-lite"

    async def test_no_embedding_field(self, index: Index, client: EmbeddingClient) -> None:
        resolved = await resolve_embedding_options(index, "lisbon", {"vectorSearch": True}, client)
        assert "embedding" not in resolved
        assert "embeddingField" not in resolved

    async def test_blank_query_skipped(self, embedding_index: Index, client: EmbeddingClient) -> None:
        resolved = await resolve_embedding_options(embedding_index, "", {"vectorSearch": True}, client)
        assert "embedding" not in resolved
