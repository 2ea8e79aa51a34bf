"""Sync Service — keeps engine indexes in step with the content source.

Real-time events (save, delete) become single-document jobs. Full imports
are queued as one generation: fixed-size batch jobs followed by a trailing
orphan cleanup, or, on engines that can swap atomically, batch jobs
writing into a private swap generation followed by the swap itself.
"""

from __future__ import annotations

import logging

from searchindex.config.settings import SyncSettings
from searchindex.core.indexes import IndexRepository, ensure_writable
from searchindex.engines.base.engine import Engine
from searchindex.engines.base.exceptions import EngineError, SwapError
from searchindex.engines.base.registry import EngineRegistry
from searchindex.models.content import ContentItem
from searchindex.models.index import Index
from searchindex.models.result import SwapVerification
from searchindex.resolvers.mapper import FieldMapper
from searchindex.sync.jobs import (
    AtomicSwapJob,
    BulkImportJob,
    CleanupOrphansJob,
    DeindexDocumentJob,
    IndexDocumentJob,
    Job,
)
from searchindex.sync.queue import JobQueue
from searchindex.sync.scope import SyncRequestScope
from searchindex.sync.source import ContentSource, in_scope

logger = logging.getLogger(__name__)


class SyncService:
    """Orchestrates document synchronization.

    The service is also the execution context handed to every job, so jobs
    reach the index repository, engines, source and mapper through it.

    Args:
        indexes: Index definitions.
        engines: Engine registry (owns the client cache).
        source: Authoritative content source.
        queue: Where jobs are enqueued.
        mapper: Document resolver.
        settings: Sync behaviour (batch size, sync-on-save, relation cascade).
    """

    def __init__(
        self,
        indexes: IndexRepository,
        engines: EngineRegistry,
        source: ContentSource,
        queue: JobQueue,
        mapper: FieldMapper | None = None,
        settings: SyncSettings | None = None,
    ) -> None:
        self.indexes = indexes
        self.engines = engines
        self.source = source
        self.queue = queue
        self.mapper = mapper or FieldMapper()
        self.settings = settings or SyncSettings()

    async def get_engine(self, index: Index) -> Engine:
        return await self.engines.get_engine(index)

    def indexes_for(self, item: ContentItem) -> list[Index]:
        """Enabled, writable indexes whose scope includes ``item``."""
        return [i for i in self.indexes.enabled() if not i.is_read_only and in_scope(i, item)]

    # ── Real-time events ─────────────────────────────────────────────────────

    async def handle_save(self, item: ContentItem, scope: SyncRequestScope | None = None) -> None:
        """Queue an upsert (live item) or a delete (anything else) per matching index.

        With relation indexing on, every live item that references ``item``
        is re-queued as well.
        """
        if not self.settings.sync_on_save:
            return
        scope = scope or SyncRequestScope()

        for index in self.indexes_for(item):
            if item.is_live:
                await self._push_index_job(index, item, scope)
            else:
                await self.queue.push(DeindexDocumentJob(index_handle=index.handle, item_id=item.id))

        if self.settings.index_relations:
            await self._reindex_related(item, scope)

    async def handle_delete(self, item: ContentItem, scope: SyncRequestScope | None = None) -> None:
        """Queue a delete per matching index, then cascade to related items."""
        scope = scope or SyncRequestScope()
        for index in self.indexes_for(item):
            await self.queue.push(DeindexDocumentJob(index_handle=index.handle, item_id=item.id))

        if self.settings.sync_on_save and self.settings.index_relations:
            await self._reindex_related(item, scope)

    async def _reindex_related(self, item: ContentItem, scope: SyncRequestScope) -> None:
        for related in await self.source.related(item):
            for index in self.indexes_for(related):
                await self._push_index_job(index, related, scope)

    async def _push_index_job(self, index: Index, item: ContentItem, scope: SyncRequestScope) -> None:
        if not scope.claim(index.handle, item.id, item.site_id):
            return
        await self.queue.push(IndexDocumentJob(index_handle=index.handle, item_id=item.id, site_id=item.site_id))

    # ── Bulk operations ──────────────────────────────────────────────────────

    def _batch_jobs(self, index: Index, total: int, target_handle: str | None = None) -> list[Job]:
        batch_size = self.settings.batch_size
        return [
            BulkImportJob(index_handle=index.handle, offset=offset, limit=batch_size, target_handle=target_handle)
            for offset in range(0, total, batch_size)
        ]

    async def import_index(self, index: Index) -> list[Job]:
        """Queue a full import of ``index``.

        Engines that support atomic swap rebuild into a swap generation;
        others import in place and clean up orphans afterwards.

        Returns:
            The queued generation of jobs.

        Raises:
            ReadOnlyIndexError: If the index is read-only.
        """
        ensure_writable(index)
        engine = await self.get_engine(index)
        if engine.supports_atomic_swap():
            return await self.import_index_for_swap(index)

        if not await engine.index_exists(index):
            await engine.create_index(index)
        await engine.update_index_settings(index)

        total = await self.source.count(index)
        jobs = [*self._batch_jobs(index, total), CleanupOrphansJob(index_handle=index.handle)]
        await self.queue.submit_generation(jobs)
        logger.info("Queued import of %d items into %s in %d jobs", total, index.handle, len(jobs))
        return jobs

    async def import_index_for_swap(self, index: Index) -> list[Job]:
        """Queue a rebuild into the swap generation followed by the swap."""
        ensure_writable(index)
        engine = await self.get_engine(index)
        swap_index = index.with_handle(engine.build_swap_handle(index))

        if await engine.index_exists(swap_index):
            await engine.flush_index(swap_index)
        else:
            await engine.create_index(swap_index)
        await engine.update_index_settings(swap_index)

        total = await self.source.count(index)
        jobs = [
            *self._batch_jobs(index, total, target_handle=swap_index.handle),
            AtomicSwapJob(index_handle=index.handle, swap_handle=swap_index.handle),
        ]
        await self.queue.submit_generation(jobs)
        logger.info("Queued swap import of %d items into %s via %s", total, index.handle, swap_index.handle)
        return jobs

    async def flush_index(self, index: Index) -> None:
        ensure_writable(index)
        engine = await self.get_engine(index)
        await engine.flush_index(index)

    async def refresh_index(self, index: Index) -> list[Job]:
        """Flush, then queue a full import."""
        await self.flush_index(index)
        return await self.import_index(index)

    async def perform_atomic_swap(self, index: Index, swap_handle: str | None = None) -> SwapVerification:
        """Swap the populated swap generation into production and read the result back.

        Raises:
            SwapError: If the swap fails; the cycle must not be retried.
        """
        ensure_writable(index)
        engine = await self.get_engine(index)
        swap_index = index.with_handle(swap_handle or engine.build_swap_handle(index))
        expected_count = await self.source.count(index)

        try:
            await engine.swap_index(index, swap_index)
        except SwapError:
            raise
        except EngineError as e:
            raise SwapError(f"Atomic swap failed for index '{index.handle}': {e}") from e
        logger.info("Atomic swap completed for index %s", index.handle)

        return await engine.verify_swap(index, expected_count)
