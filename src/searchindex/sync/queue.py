"""Job queues — where sync jobs wait for execution.

:class:`JobQueue` is the contract a durable queue backend implements.
:class:`InMemoryJobQueue` runs jobs in-process, in FIFO order, and is used
for synchronous imports and in tests.
"""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Sequence
from typing import TYPE_CHECKING

from searchindex.observability.logging import bind_context, clear_context
from searchindex.sync.jobs import Job

if TYPE_CHECKING:
    from searchindex.sync.service import SyncService

logger = logging.getLogger(__name__)


class JobQueue(ABC):
    """Destination for sync jobs with at-least-once execution."""

    @abstractmethod
    async def push(self, job: Job) -> None:
        """Enqueue one job."""

    @abstractmethod
    async def submit_generation(self, jobs: Sequence[Job]) -> None:
        """Enqueue a whole import generation at once, preserving order.

        Either every job is enqueued or none is. A trailing cleanup or swap
        job therefore always runs after the batch jobs before it, and never
        runs once an earlier job of the same generation has failed for good.
        """


class InMemoryJobQueue(JobQueue):
    """Process-local FIFO queue.

    A failing retryable job is re-run in place up to ``max_attempts`` times
    before it is recorded in :attr:`failed`; non-retryable jobs fail on the
    first error. A failed job cancels the jobs queued after it in the same
    generation (recorded in :attr:`cancelled`), so a partial swap generation
    is never swapped in and cleanup never runs after an incomplete import.
    Other jobs still run.

    Args:
        max_attempts: Attempts per retryable job.
    """

    def __init__(self, max_attempts: int = 3) -> None:
        self.max_attempts = max(1, max_attempts)
        self._pending: deque[tuple[Job, int | None]] = deque()
        self._generations = itertools.count(1)
        self.failed: list[tuple[Job, Exception]] = []
        self.cancelled: list[Job] = []

    async def push(self, job: Job) -> None:
        self._pending.append((job, None))
        logger.debug("Queued job: %s", job.description())

    async def submit_generation(self, jobs: Sequence[Job]) -> None:
        generation = next(self._generations)
        self._pending.extend((job, generation) for job in jobs)
        logger.debug("Queued generation %d of %d jobs", generation, len(jobs))

    @property
    def pending(self) -> list[Job]:
        return [job for job, _ in self._pending]

    def __len__(self) -> int:
        return len(self._pending)

    async def run_pending(self, ctx: SyncService) -> int:
        """Execute queued jobs (including any they enqueue) until the queue drains.

        Returns:
            Number of jobs that completed successfully.
        """
        completed = 0
        while self._pending:
            job, generation = self._pending.popleft()
            if await self._run(job, ctx):
                completed += 1
            elif generation is not None:
                self._cancel_generation(generation, job)
        return completed

    def _cancel_generation(self, generation: int, failed_job: Job) -> None:
        dropped = [job for job, gen in self._pending if gen == generation]
        if not dropped:
            return
        self._pending = deque((job, gen) for job, gen in self._pending if gen != generation)
        self.cancelled.extend(dropped)
        logger.error(
            "Cancelled %d remaining job(s) of %s's generation after: %s",
            len(dropped),
            failed_job.index_handle,
            failed_job.description(),
        )

    async def _run(self, job: Job, ctx: SyncService) -> bool:
        attempts = self.max_attempts if job.retryable else 1
        bind_context(job=type(job).__name__, index=job.index_handle)
        try:
            for attempt in range(1, attempts + 1):
                try:
                    await job.execute(ctx)
                    return True
                except Exception as e:
                    if attempt < attempts:
                        logger.warning("%s failed (attempt %d/%d): %s", job.description(), attempt, attempts, e)
                        continue
                    logger.error("%s failed: %s", job.description(), e, exc_info=True)
                    self.failed.append((job, e))
            return False
        finally:
            clear_context()
