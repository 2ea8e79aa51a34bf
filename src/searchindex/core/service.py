"""SearchIndex Service — application facade over engines, indexes and sync.

The service wires the long-lived components together:
  1. Index repository (definitions from settings)
  2. Engine registry (engine classes plus the client cache)
  3. Cache and embedding client (query-time vector search)
  4. Sync service (document resolution and job orchestration)

Read paths report engine failures as ``SearchOutcome`` / ``ConnectionStatus``
values instead of raising, so callers can render an error state.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from searchindex.cache.manager import CacheManager
from searchindex.core.indexes import IndexRepository
from searchindex.embeddings.client import EmbeddingClient, resolve_embedding_options
from searchindex.engines.base.exceptions import EngineError
from searchindex.engines.base.registry import EngineRegistry
from searchindex.models.result import ConnectionStatus, SearchOutcome
from searchindex.resolvers.mapper import FieldMapper
from searchindex.resolvers.registry import ResolverRegistry
from searchindex.sync.queue import InMemoryJobQueue, JobQueue
from searchindex.sync.service import SyncService
from searchindex.sync.source import ContentSource, InMemoryContentSource

if TYPE_CHECKING:
    from searchindex.config.settings import Settings

logger = logging.getLogger(__name__)


class SearchIndexService:
    """Entry point for querying and syncing search indexes.

    Attributes:
        settings: Application configuration.
        indexes: Index definitions served by this process.
        engines: Engine registry.
        cache: Cache backing the embedding client.
        embeddings: Query/document embedding client.
        sync: Sync orchestrator.
    """

    def __init__(
        self,
        settings: Settings,
        source: ContentSource | None = None,
        queue: JobQueue | None = None,
    ) -> None:
        self.settings = settings
        self.indexes = IndexRepository(settings.indexes)
        self.engines = EngineRegistry(settings.engines)
        self.engines.register_builtin_engines()
        self.cache = CacheManager(settings.cache)
        self.embeddings = EmbeddingClient(settings.embedding, self.cache)
        self.sync = SyncService(
            indexes=self.indexes,
            engines=self.engines,
            source=source or InMemoryContentSource(),
            queue=queue or InMemoryJobQueue(),
            mapper=FieldMapper(ResolverRegistry(self.embeddings)),
            settings=settings.sync,
        )

    async def initialize(self) -> None:
        await self.cache.initialize()
        logger.info("searchindex service initialized with %d indexes", len(self.indexes.all()))

    async def shutdown(self) -> None:
        """Close engine clients, the embedding client and the cache."""
        await self.engines.shutdown_all()
        await self.embeddings.close()
        await self.cache.shutdown()
        logger.info("searchindex service shut down")

    # ── Read paths ───────────────────────────────────────────────────────────

    async def search(self, handle: str, query: str, options: Mapping[str, Any] | None = None) -> SearchOutcome:
        """Search one index with unified options.

        Vector search options are resolved (query embedded, field detected)
        before the engine sees them. Engine failures become a failed outcome.

        Raises:
            IndexNotFoundError: If the handle is unknown.
        """
        index = self.indexes.get(handle)
        resolved = await resolve_embedding_options(index, query, options, self.embeddings)
        try:
            engine = await self.engines.get_engine(index)
            result = await engine.search(index, query, resolved)
        except EngineError as e:
            logger.warning("Search failed on index %s: %s", handle, e)
            return SearchOutcome(success=False, message=str(e))
        return SearchOutcome(success=True, result=result)

    async def get_document(self, handle: str, doc_id: str) -> dict[str, Any] | None:
        index = self.indexes.get(handle)
        engine = await self.engines.get_engine(index)
        return await engine.get_document(index, doc_id)

    async def search_facet_values(
        self,
        handle: str,
        fields: Sequence[str],
        query: str = "",
        max_per_field: int = 5,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, list[dict[str, Any]]]:
        index = self.indexes.get(handle)
        engine = await self.engines.get_engine(index)
        return await engine.search_facet_values(index, fields, query, max_per_field, filters)

    async def test_connection(self, handle: str) -> ConnectionStatus:
        """Connectivity of the engine behind ``handle``; never raises for engine errors."""
        return await self.engines.test_connection(self.indexes.get(handle))

    async def health(self) -> dict[str, ConnectionStatus]:
        """Connection status for every enabled index."""
        return {index.handle: await self.engines.test_connection(index) for index in self.indexes.enabled()}
