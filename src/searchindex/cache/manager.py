"""Cache Manager — Redis-backed caching for embedding vectors.

Provides a unified caching interface with per-entry TTL over either a Redis
server or a process-local dictionary.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import redis.asyncio as aioredis

from searchindex.config.settings import CacheSettings

logger = logging.getLogger(__name__)


class CacheManager:
    """Manages caching for searchindex components.

    Supports Redis and in-memory backends. The in-memory backend honours
    TTLs lazily (expired entries are dropped on read).

    Attributes:
        settings: Cache configuration.
    """

    def __init__(self, settings: CacheSettings | None = None) -> None:
        self.settings = settings or CacheSettings()
        self._client: Any = None
        self._memory_cache: dict[str, tuple[Any, float | None]] = {}

    @property
    def backend(self) -> str:
        """Active backend name (``redis`` or ``memory``)."""
        return "redis" if self._client is not None else "memory"

    async def initialize(self) -> None:
        """Initialize the cache backend."""
        if self.settings.backend != "redis":
            logger.info("Using in-memory cache backend")
            return
        try:
            client = aioredis.from_url(self.settings.redis_url, decode_responses=True)
            await client.ping()
        except (aioredis.RedisError, OSError):
            logger.warning("Failed to connect to Redis, falling back to memory cache", exc_info=True)
            return
        self._client = client
        logger.info("Connected to Redis cache at %s", self.settings.redis_url)

    async def shutdown(self) -> None:
        """Close cache connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, key: str) -> Any | None:
        """Retrieve a value from cache.

        Args:
            key: Cache key.

        Returns:
            Cached value or None if not found or expired.
        """
        if self._client is not None:
            try:
                value = await self._client.get(key)
            except aioredis.RedisError:
                logger.debug("Cache get failed for key: %s", key, exc_info=True)
                return None
            return json.loads(value) if value else None

        entry = self._memory_cache.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._memory_cache[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store a value in cache.

        Args:
            key: Cache key.
            value: Value to cache (must be JSON-serializable for Redis).
            ttl: Time-to-live in seconds (None = no expiry).
        """
        if self._client is not None:
            serialized = json.dumps(value, default=str)
            try:
                if ttl:
                    await self._client.setex(key, ttl, serialized)
                else:
                    await self._client.set(key, serialized)
            except aioredis.RedisError:
                logger.debug("Cache set failed for key: %s", key, exc_info=True)
            return

        expires_at = time.monotonic() + ttl if ttl else None
        self._memory_cache[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        """Delete a value from cache.

        Args:
            key: Cache key to delete.
        """
        if self._client is not None:
            try:
                await self._client.delete(key)
            except aioredis.RedisError:
                logger.debug("Cache delete failed for key: %s", key, exc_info=True)
            return
        self._memory_cache.pop(key, None)

    async def clear(self) -> None:
        """Clear all cached values."""
        if self._client is not None:
            try:
                await self._client.flushdb()
            except aioredis.RedisError:
                logger.debug("Cache clear failed", exc_info=True)
            return
        self._memory_cache.clear()
