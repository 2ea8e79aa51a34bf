"""Tests for sync orchestration: events, imports, jobs and the in-memory queue."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from searchindex.config.settings import SyncSettings
from searchindex.core.indexes import IndexRepository, ReadOnlyIndexError
from searchindex.engines.base.exceptions import IndexingError, QueryError, SwapError
from searchindex.engines.base.registry import EngineRegistry
from searchindex.engines.meilisearch.engine import MeilisearchEngine
from searchindex.models.content import ContentItem
from searchindex.models.index import Index, IndexMode
from searchindex.sync.jobs import (
    ORPHAN_DELETE_BATCH_SIZE,
    AtomicSwapJob,
    BulkImportJob,
    CleanupOrphansJob,
    DeindexDocumentJob,
    IndexDocumentJob,
    Job,
)
from searchindex.sync.queue import InMemoryJobQueue
from searchindex.sync.scope import SyncRequestScope
from searchindex.sync.service import SyncService
from searchindex.sync.source import InMemoryContentSource, in_scope

# ── Fixtures ──────────────────────────────────────────────────────────────────


def _item(item_id: int, **kwargs: object) -> ContentItem:
    defaults: dict[str, object] = {"section": "places", "section_id": 1, "entry_type": "city", "title": f"City {item_id}"}
    defaults.update(kwargs)
    return ContentItem(id=item_id, **defaults)


@pytest.fixture
def engine() -> MagicMock:
    engine = MagicMock(spec=MeilisearchEngine)
    engine.supports_atomic_swap.return_value = False
    engine.build_swap_handle.side_effect = lambda index: f"{index.handle}_swap"
    engine.index_exists.return_value = True
    engine.get_all_document_ids.return_value = []
    return engine


@pytest.fixture
def source() -> InMemoryContentSource:
    return InMemoryContentSource([_item(1), _item(2), _item(3)])


@pytest.fixture
def queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def service(index: Index, engine: MagicMock, source: InMemoryContentSource, queue: InMemoryJobQueue) -> SyncService:
    engines = MagicMock(spec=EngineRegistry)
    engines.get_engine.return_value = engine
    return SyncService(
        IndexRepository([index]),
        engines,
        source,
        queue,
        settings=SyncSettings(batch_size=2),
    )


# ── Scope ────────────────────────────────────────────────────────────────────


class TestScope:
    def test_in_scope(self, item: ContentItem) -> None:
        assert in_scope(Index(handle="a", engine_type="algolia"), item)
        assert in_scope(Index(handle="a", engine_type="algolia", section_ids=[1], entry_type_ids=[5]), item)
        assert not in_scope(Index(handle="a", engine_type="algolia", section_ids=[2]), item)
        assert not in_scope(Index(handle="a", engine_type="algolia", site_id=2), item)

    def test_request_scope_claims_once(self) -> None:
        scope = SyncRequestScope()
        assert scope.claim("places", 42, 1) is True
        assert scope.claim("places", "42", 1) is False
        assert scope.claim("places", 42, 2) is True
        assert len(scope) == 2


# ── Real-time events ─────────────────────────────────────────────────────────


class TestRealtimeEvents:
    async def test_save_live_item(self, service: SyncService, queue: InMemoryJobQueue, item: ContentItem) -> None:
        await service.handle_save(item)
        assert queue.pending == [IndexDocumentJob(index_handle="places", item_id=42, site_id=1)]

    async def test_save_non_live_item_deindexes(
        self, service: SyncService, queue: InMemoryJobQueue, item: ContentItem
    ) -> None:
        await service.handle_save(item.model_copy(update={"status": "expired"}))
        assert queue.pending == [DeindexDocumentJob(index_handle="places", item_id=42)]

    async def test_sync_on_save_disabled(self, service: SyncService, queue: InMemoryJobQueue, item: ContentItem) -> None:
        service.settings = SyncSettings(sync_on_save=False)
        await service.handle_save(item)
        assert len(queue) == 0

    async def test_read_only_and_disabled_indexes_skipped(
        self, service: SyncService, queue: InMemoryJobQueue, item: ContentItem
    ) -> None:
        service.indexes = IndexRepository(
            [
                Index(handle="external", engine_type="algolia", mode=IndexMode.READONLY),
                Index(handle="off", engine_type="algolia", enabled=False),
            ]
        )
        await service.handle_save(item)
        assert len(queue) == 0

    async def test_related_items_reindexed_once(
        self,
        service: SyncService,
        queue: InMemoryJobQueue,
        source: InMemoryContentSource,
        item: ContentItem,
    ) -> None:
        source.put(_item(7, related_ids=[42]))
        scope = SyncRequestScope()

        await service.handle_save(item, scope)
        await service.handle_save(item, scope)

        assert [job.item_id for job in queue.pending] == [42, 7]

    async def test_delete_cascades_to_related(
        self,
        service: SyncService,
        queue: InMemoryJobQueue,
        source: InMemoryContentSource,
        item: ContentItem,
    ) -> None:
        source.put(_item(7, related_ids=[42]))
        await service.handle_delete(item)
        assert queue.pending == [
            DeindexDocumentJob(index_handle="places", item_id=42),
            IndexDocumentJob(index_handle="places", item_id=7, site_id=1),
        ]


# ── Imports ──────────────────────────────────────────────────────────────────


class TestImport:
    async def test_import_generation_order(self, service: SyncService, engine: MagicMock, index: Index) -> None:
        engine.index_exists.return_value = False

        jobs = await service.import_index(index)

        engine.create_index.assert_awaited_once_with(index)
        engine.update_index_settings.assert_awaited_once_with(index)
        assert jobs == [
            BulkImportJob(index_handle="places", offset=0, limit=2),
            BulkImportJob(index_handle="places", offset=2, limit=2),
            CleanupOrphansJob(index_handle="places"),
        ]

    async def test_run_import(
        self, service: SyncService, engine: MagicMock, queue: InMemoryJobQueue, index: Index
    ) -> None:
        await service.import_index(index)
        completed = await queue.run_pending(service)

        assert completed == 3
        assert engine.index_documents.await_count == 2
        first_batch = engine.index_documents.await_args_list[0].args[1]
        assert [doc["objectID"] for doc in first_batch] == ["1", "2"]
        assert first_batch[0]["sectionHandle"] == "places"

    async def test_orphan_cleanup(self, service: SyncService, engine: MagicMock, index: Index) -> None:
        service.source = InMemoryContentSource([_item(1), _item(3)])
        engine.get_all_document_ids.return_value = ["1", "2", "3", "4"]

        await CleanupOrphansJob(index_handle="places").execute(service)

        engine.delete_documents.assert_awaited_once_with(index, ["2", "4"])

    async def test_orphan_cleanup_batches(self, service: SyncService, engine: MagicMock) -> None:
        service.source = InMemoryContentSource()
        engine.get_all_document_ids.return_value = [str(i) for i in range(ORPHAN_DELETE_BATCH_SIZE * 2 + 1)]

        await CleanupOrphansJob(index_handle="places").execute(service)

        assert engine.delete_documents.await_count == 3

    async def test_orphan_cleanup_skips_missing_index(self, service: SyncService, engine: MagicMock) -> None:
        engine.index_exists.return_value = False
        await CleanupOrphansJob(index_handle="places").execute(service)
        engine.get_all_document_ids.assert_not_awaited()

    async def test_read_only_import_rejected(self, service: SyncService) -> None:
        with pytest.raises(ReadOnlyIndexError):
            await service.import_index(Index(handle="external", engine_type="algolia", mode=IndexMode.READONLY))

    async def test_failed_batch_cancels_cleanup_only_for_its_generation(
        self, service: SyncService, engine: MagicMock, queue: InMemoryJobQueue, index: Index
    ) -> None:
        engine.index_documents.side_effect = IndexingError("503")
        await service.import_index(index)
        await queue.push(DeindexDocumentJob(index_handle="places", item_id=9))

        completed = await queue.run_pending(service)

        assert completed == 1
        assert engine.index_documents.await_count == 3
        assert queue.cancelled == [
            BulkImportJob(index_handle="places", offset=2, limit=2),
            CleanupOrphansJob(index_handle="places"),
        ]
        engine.get_all_document_ids.assert_not_awaited()
        engine.delete_document.assert_awaited_once_with(index, "9")

    async def test_refresh_flushes_first(self, service: SyncService, engine: MagicMock, index: Index) -> None:
        await service.refresh_index(index)
        engine.flush_index.assert_awaited_once_with(index)
        assert len(service.queue) == 3


# ── Atomic swap ──────────────────────────────────────────────────────────────


class TestSwapImport:
    async def test_swap_generation(
        self, service: SyncService, engine: MagicMock, queue: InMemoryJobQueue, index: Index
    ) -> None:
        engine.supports_atomic_swap.return_value = True
        engine.index_exists.return_value = False

        jobs = await service.import_index(index)

        assert engine.create_index.await_args.args[0].handle == "places_swap"
        assert jobs[-1] == AtomicSwapJob(index_handle="places", swap_handle="places_swap")
        assert all(job.target_handle == "places_swap" for job in jobs[:-1])

        await queue.run_pending(service)

        targets = {call.args[0].handle for call in engine.index_documents.await_args_list}
        assert targets == {"places_swap"}
        swapped_from, swapped_to = engine.swap_index.await_args.args
        assert (swapped_from.handle, swapped_to.handle) == ("places", "places_swap")
        engine.verify_swap.assert_awaited_once_with(index, 3)

    async def test_existing_swap_generation_flushed(self, service: SyncService, engine: MagicMock, index: Index) -> None:
        engine.supports_atomic_swap.return_value = True
        await service.import_index(index)
        assert engine.flush_index.await_args.args[0].handle == "places_swap"
        engine.create_index.assert_not_awaited()

    async def test_failed_batch_cancels_swap(
        self, service: SyncService, engine: MagicMock, queue: InMemoryJobQueue, index: Index
    ) -> None:
        engine.supports_atomic_swap.return_value = True
        engine.index_documents.side_effect = [None, IndexingError("503"), IndexingError("503"), IndexingError("503")]

        await service.import_index(index)
        completed = await queue.run_pending(service)

        assert completed == 1
        assert [type(job) for job, _ in queue.failed] == [BulkImportJob]
        assert queue.cancelled == [AtomicSwapJob(index_handle="places", swap_handle="places_swap")]
        engine.swap_index.assert_not_awaited()
        engine.verify_swap.assert_not_awaited()

    async def test_swap_failure_not_retried(
        self, service: SyncService, engine: MagicMock, queue: InMemoryJobQueue
    ) -> None:
        engine.swap_index.side_effect = SwapError("move failed")
        await queue.push(AtomicSwapJob(index_handle="places", swap_handle="places_swap"))

        completed = await queue.run_pending(service)

        assert completed == 0
        assert engine.swap_index.await_count == 1
        assert isinstance(queue.failed[0][1], SwapError)

    async def test_engine_error_wrapped_as_swap_error(self, service: SyncService, engine: MagicMock, index: Index) -> None:
        engine.swap_index.side_effect = QueryError("timeout")
        with pytest.raises(SwapError, match="places"):
            await service.perform_atomic_swap(index)


# ── Jobs and queue ───────────────────────────────────────────────────────────


class TestJobs:
    async def test_index_job(self, service: SyncService, engine: MagicMock, source: InMemoryContentSource) -> None:
        await IndexDocumentJob(index_handle="places", item_id=1, site_id=1).execute(service)
        doc_id, document = engine.index_document.await_args.args[1:]
        assert doc_id == "1"
        assert document["title"] == "City 1"

    async def test_index_job_for_non_live_item_requeues_delete(
        self, service: SyncService, engine: MagicMock, source: InMemoryContentSource, queue: InMemoryJobQueue
    ) -> None:
        source.put(_item(9, enabled=False))
        await IndexDocumentJob(index_handle="places", item_id=9).execute(service)
        engine.index_document.assert_not_awaited()
        assert queue.pending == [DeindexDocumentJob(index_handle="places", item_id=9)]

    async def test_job_for_removed_index_is_noop(self, service: SyncService, engine: MagicMock) -> None:
        await BulkImportJob(index_handle="gone").execute(service)
        await DeindexDocumentJob(index_handle="gone", item_id=1).execute(service)
        service.engines.get_engine.assert_not_awaited()

    def test_job_without_execute_cannot_be_created(self) -> None:
        class IncompleteJob(Job):
            pass

        with pytest.raises(TypeError):
            IncompleteJob(index_handle="places")

    async def test_retryable_job_retried(self, service: SyncService, engine: MagicMock, queue: InMemoryJobQueue) -> None:
        engine.delete_document.side_effect = [IndexingError("503"), None]
        await queue.push(DeindexDocumentJob(index_handle="places", item_id=1))

        assert await queue.run_pending(service) == 1
        assert engine.delete_document.await_count == 2
        assert queue.failed == []

    async def test_exhausted_retries_recorded(
        self, service: SyncService, engine: MagicMock, queue: InMemoryJobQueue
    ) -> None:
        engine.delete_document.side_effect = IndexingError("503")
        await queue.push(DeindexDocumentJob(index_handle="places", item_id=1))
        await queue.push(DeindexDocumentJob(index_handle="places", item_id=2))

        assert await queue.run_pending(service) == 0
        assert engine.delete_document.await_count == 6
        assert len(queue.failed) == 2

    def test_job_descriptions(self) -> None:
        assert "offset: 500" in BulkImportJob(index_handle="places", offset=500).description()
        assert AtomicSwapJob.retryable is False
        assert BulkImportJob.retryable is True
