"""Embedding Client — text-to-vector conversion for vector and hybrid search.

Talks to an OpenAI-compatible embeddings endpoint (Voyage AI by default)
through the ``openai`` SDK. Vectors are cached for several days keyed by
(text, model, input type) so repeated queries never re-embed.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from openai import AsyncOpenAI, OpenAIError

if TYPE_CHECKING:
    from searchindex.cache.manager import CacheManager
    from searchindex.config.settings import EmbeddingSettings
    from searchindex.models.index import Index

logger = logging.getLogger(__name__)

CACHE_PREFIX = "searchindex:embedding:"


def embedding_cache_key(text: str, model: str, input_type: str) -> str:
    """Cache key for one embedding request."""
    digest = hashlib.md5(f"{text}|{model}|{input_type}".encode()).hexdigest()
    return CACHE_PREFIX + digest


class EmbeddingClient:
    """Async embedding client wrapping the OpenAI-compatible API.

    Every failure mode (no API key, blank text, provider error, empty
    response) yields None, so callers can fall back to keyword search.

    Args:
        settings: Embedding configuration with api_key, base_url, model, etc.
        cache: Optional cache for computed vectors.
    """

    def __init__(self, settings: EmbeddingSettings, cache: CacheManager | None = None) -> None:
        self._settings = settings
        self._cache = cache
        self._client: AsyncOpenAI | None = None
        if settings.api_key:
            self._client = AsyncOpenAI(
                api_key=settings.api_key,
                base_url=settings.base_url,
                timeout=settings.timeout,
            )
            logger.info("Embedding client created: base_url=%s, model=%s", settings.base_url, settings.model)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    @property
    def default_model(self) -> str:
        return self._settings.model

    async def embed(self, text: str, model: str | None = None, input_type: str = "query") -> list[float] | None:
        """Generate an embedding vector for ``text``.

        Args:
            text: The text to embed.
            model: Model override (defaults to settings).
            input_type: ``query`` for search queries, ``document`` for indexing.

        Returns:
            The vector, or None when unavailable.
        """
        if self._client is None or not text.strip():
            return None

        model = model or self._settings.model
        key = embedding_cache_key(text, model, input_type)
        if self._cache is not None:
            cached = await self._cache.get(key)
            if cached:
                return cached

        try:
            response = await self._client.embeddings.create(
                model=model,
                input=[text],
                encoding_format="float",
                extra_body={"input_type": input_type},
            )
        except OpenAIError as e:
            logger.warning("Embedding request failed: model=%s, error=%s", model, e)
            return None

        embedding = list(response.data[0].embedding) if response.data else []
        if not embedding:
            logger.warning("Embedding provider returned an empty vector: model=%s", model)
            return None

        if self._cache is not None:
            await self._cache.set(key, embedding, ttl=self._settings.cache_ttl)
        return embedding

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


async def resolve_embedding_options(
    index: Index,
    query: str,
    options: Mapping[str, Any] | None,
    client: EmbeddingClient | None,
) -> dict[str, Any]:
    """Inject ``embedding`` and ``embeddingField`` for a ``vectorSearch`` request.

    When ``vectorSearch`` is set but no precomputed ``embedding`` is given,
    the target field is auto-detected (first ``embedding`` mapping on the
    index) and the query text is embedded. Options are returned unchanged
    when vector search was not requested or no vector could be produced.
    """
    resolved = dict(options or {})
    if not resolved.get("vectorSearch") or resolved.get("embedding") or not query.strip():
        return resolved

    if not resolved.get("embeddingField"):
        resolved.pop("embeddingField", None)
        field_name = index.embedding_field()
        if field_name is None:
            logger.warning("vectorSearch requested but no embedding field found on index %s", index.handle)
            return resolved
        resolved["embeddingField"] = field_name

    if client is None:
        return resolved
    model = resolved.get("embeddingModel")
    vector = await client.embed(query, model if isinstance(model, str) and model else None)
    if vector is not None:
        resolved["embedding"] = vector
    return resolved
