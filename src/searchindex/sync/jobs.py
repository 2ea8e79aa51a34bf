"""Sync jobs — discrete, idempotent units of indexing work.

Jobs are plain pydantic records (so a durable queue can serialise them)
with an ``execute`` coroutine that receives the :class:`SyncService` as
its context. Jobs address indexes by handle and re-read the definition at
execution time; a job whose index has since been removed or disabled is a
no-op.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from searchindex.sync.service import SyncService

logger = logging.getLogger(__name__)

ORPHAN_DELETE_BATCH_SIZE = 500


class Job(BaseModel, ABC):
    """Base class for queued sync work.

    Attributes:
        retryable: Whether the queue may re-run the job after a failure.
    """

    retryable: ClassVar[bool] = True

    index_handle: str

    def description(self) -> str:
        return f"{type(self).__name__} for {self.index_handle}"

    @abstractmethod
    async def execute(self, ctx: SyncService) -> None:
        """Perform the work; errors propagate so the queue can retry."""


class IndexDocumentJob(Job):
    """Resolve one content item and upsert it, or deindex it if no longer live."""

    item_id: int | str
    site_id: int | None = None

    def description(self) -> str:
        return f"Indexing item #{self.item_id} into {self.index_handle}"

    async def execute(self, ctx: SyncService) -> None:
        index = ctx.indexes.find(self.index_handle)
        if index is None or not index.enabled or index.is_read_only:
            return

        item = await ctx.source.get(self.item_id, self.site_id)
        if item is None:
            return
        if not item.is_live:
            await ctx.queue.push(DeindexDocumentJob(index_handle=self.index_handle, item_id=self.item_id))
            return

        document = await ctx.mapper.resolve(item, index)
        engine = await ctx.get_engine(index)
        await engine.index_document(index, str(self.item_id), document)


class DeindexDocumentJob(Job):
    """Remove one document from an index."""

    item_id: int | str

    def description(self) -> str:
        return f"Removing item #{self.item_id} from {self.index_handle}"

    async def execute(self, ctx: SyncService) -> None:
        index = ctx.indexes.find(self.index_handle)
        if index is None or index.is_read_only:
            return
        engine = await ctx.get_engine(index)
        await engine.delete_document(index, str(self.item_id))


class BulkImportJob(Job):
    """Resolve and import one offset/limit window of the index's live content.

    ``target_handle`` redirects the writes to another generation of the
    index (the swap generation during an atomic rebuild).
    """

    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=500, ge=1)
    target_handle: str | None = None

    def description(self) -> str:
        target = self.target_handle or self.index_handle
        return f"Bulk indexing {target} (offset: {self.offset}, limit: {self.limit})"

    async def execute(self, ctx: SyncService) -> None:
        index = ctx.indexes.find(self.index_handle)
        if index is None or not index.enabled or index.is_read_only:
            return

        items = await ctx.source.fetch(index, self.offset, self.limit)
        if not items:
            return

        documents = [await ctx.mapper.resolve(item, index) for item in items]
        target = index.with_handle(self.target_handle) if self.target_handle else index
        engine = await ctx.get_engine(index)
        await engine.index_documents(target, documents)
        logger.info("Indexed %d documents into %s (offset %d)", len(documents), target.handle, self.offset)


class CleanupOrphansJob(Job):
    """Delete every engine-side document whose id is absent from the source."""

    def description(self) -> str:
        return f"Cleaning up orphan documents from {self.index_handle}"

    async def execute(self, ctx: SyncService) -> None:
        index = ctx.indexes.find(self.index_handle)
        if index is None or not index.enabled or index.is_read_only:
            return

        engine = await ctx.get_engine(index)
        if not await engine.index_exists(index):
            return
        engine_ids = await engine.get_all_document_ids(index)
        if not engine_ids:
            return

        live_ids = set(await ctx.source.ids(index))
        orphan_ids = [doc_id for doc_id in engine_ids if doc_id not in live_ids]
        if not orphan_ids:
            logger.info("No orphan documents found in index %s", index.handle)
            return

        logger.info("Removing %d orphan document(s) from index %s", len(orphan_ids), index.handle)
        for start in range(0, len(orphan_ids), ORPHAN_DELETE_BATCH_SIZE):
            await engine.delete_documents(index, orphan_ids[start : start + ORPHAN_DELETE_BATCH_SIZE])


class AtomicSwapJob(Job):
    """Exchange a fully populated swap generation with production.

    Never retried: after a failed swap the live generation is ambiguous,
    and recovery is a fresh import cycle.
    """

    retryable: ClassVar[bool] = False

    swap_handle: str

    def description(self) -> str:
        return f"Atomic swap for {self.index_handle}"

    async def execute(self, ctx: SyncService) -> None:
        index = ctx.indexes.find(self.index_handle)
        if index is None or not index.enabled:
            return
        await ctx.perform_atomic_swap(index, self.swap_handle)
