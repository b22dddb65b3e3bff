"""Bounded background execution of ingestion runs."""

from __future__ import annotations

import asyncio
import logging

from docchat.config import settings
from docchat.ingestion.pipeline import IngestionPipeline, IngestionReport

logger = logging.getLogger(__name__)


class IngestionWorker:
    """Fire-and-forget task pool for :class:`IngestionPipeline` runs.

    ``submit`` schedules a run on the current event loop and returns the
    task immediately; callers are not expected to await it.  At most
    ``max_concurrent`` runs execute at once, the rest wait for a slot.
    The document record is the only channel through which a run reports
    back.  Call :meth:`drain` on shutdown.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        *,
        max_concurrent: int = settings.max_concurrent_ingestions,
    ) -> None:
        self._pipeline = pipeline
        self._slots = asyncio.Semaphore(max_concurrent)
        self._tasks: set[asyncio.Task[IngestionReport]] = set()

    @property
    def pending(self) -> int:
        """Number of submitted runs that have not finished."""
        return len(self._tasks)

    def submit(self, document_id: str, data: bytes) -> asyncio.Task[IngestionReport]:
        """Schedule ingestion of *data* for *document_id*.  Must be called from a running loop."""
        task = asyncio.get_running_loop().create_task(
            self._run(document_id, data), name=f"ingest-{document_id}"
        )
        # Keep a strong reference until the task is done.
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Queued ingestion of %s (%d pending)", document_id, len(self._tasks))
        return task

    async def drain(self) -> None:
        """Wait for every submitted run to finish."""
        if not self._tasks:
            return
        results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                logger.error("Background ingestion task failed", exc_info=result)

    async def _run(self, document_id: str, data: bytes) -> IngestionReport:
        async with self._slots:
            return await self._pipeline.ingest(document_id, data)
