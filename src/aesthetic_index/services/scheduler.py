"""Periodic batch loop."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from aesthetic_index.core.config import BatchConfig
    from aesthetic_index.services.collection import CollectionService
    from aesthetic_index.services.worker import BatchResult, BatchWorker

logger = structlog.get_logger()


class BatchScheduler:
    """Run a batch, refresh stale collection indices, then wait for the next interval."""

    def __init__(
        self,
        config: BatchConfig,
        worker: BatchWorker,
        collections: CollectionService,
    ) -> None:
        self.config = config
        self.worker = worker
        self.collections = collections
        self._stop = asyncio.Event()
        self.runs = 0

    async def run_once(self) -> BatchResult:
        result = await self.worker.run_batch()
        refreshed = await self.collections.refresh_stale()
        self.runs += 1
        logger.info(
            "scheduled_run_complete",
            run=self.runs,
            processed=result.processed,
            collections_refreshed=len(refreshed),
        )
        return result

    async def run_forever(self, max_runs: int | None = None) -> None:
        """Loop until `stop()` is called or `max_runs` runs have completed.

        A failing run is logged and the loop carries on with the next interval.
        """
        interval = self.config.interval_minutes * 60
        logger.info("scheduler_start", interval_seconds=interval)
        completed = 0
        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error("scheduled_run_failed", error=str(e), error_type=type(e).__name__)
            completed += 1
            if max_runs is not None and completed >= max_runs:
                break
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except TimeoutError:
                continue
        logger.info("scheduler_stopped", runs=completed)

    def stop(self) -> None:
        self._stop.set()
