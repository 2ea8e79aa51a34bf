"""Tests for the cache manager (in-memory backend)."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from searchindex.cache.manager import CacheManager
from searchindex.config.settings import CacheSettings


@pytest.fixture
async def cache() -> CacheManager:
    manager = CacheManager(CacheSettings(backend="memory"))
    await manager.initialize()
    return manager


class TestMemoryCache:
    async def test_backend(self, cache: CacheManager) -> None:
        assert cache.backend == "memory"

    async def test_set_get_delete(self, cache: CacheManager) -> None:
        await cache.set("k", [0.5, 1.5])
        assert await cache.get("k") == [0.5, 1.5]
        await cache.delete("k")
        assert await cache.get("k") is None

    async def test_missing_key(self, cache: CacheManager) -> None:
        assert await cache.get("nope") is None

    async def test_ttl_expiry(self, cache: CacheManager) -> None:
        with patch("searchindex.cache.manager.time.monotonic", return_value=100.0):
            await cache.set("k", "v", ttl=10)
        with patch("searchindex.cache.manager.time.monotonic", return_value=105.0):
            assert await cache.get("k") == "v"
        with patch("searchindex.cache.manager.time.monotonic", return_value=111.0):
            assert await cache.get("k") is None

    async def test_clear(self, cache: CacheManager) -> None:
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.clear()
        assert await cache.get("a") is None


class TestRedisFallback:
    async def test_unreachable_redis_falls_back_to_memory(self) -> None:
        manager = CacheManager(CacheSettings(backend="redis", redis_url="redis://127.0.0.1:1/0"))
        await manager.initialize()
        assert manager.backend == "memory"
