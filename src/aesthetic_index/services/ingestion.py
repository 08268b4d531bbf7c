"""Event ingestion: append, mark dirty, and trigger priority batches."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError

from aesthetic_index.core.timeutil import utc_now
from aesthetic_index.services.storage.event_store import (
    count_comparisons,
    insert_comparison,
    insert_favorite,
    insert_slider,
)
from aesthetic_index.services.storage.queue_repository import upsert_dirty

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from sqlmodel import Session

    from aesthetic_index.core.config import ScoringConfig
    from aesthetic_index.services.storage import ScoringStore
    from aesthetic_index.services.worker import BatchResult, BatchWorker

logger = structlog.get_logger()


class IngestionService:
    """Record user actions without doing any scoring work inline.

    Each call appends the event and raises the dirty marker of the affected
    items in one transaction, then returns. Events whose priority reaches the
    trigger threshold also start a small priority batch in the background; an
    item that hits a vote milestone or a burst of activity is escalated to
    that priority.
    """

    def __init__(
        self,
        config: ScoringConfig,
        store: ScoringStore,
        worker: BatchWorker | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.worker = worker
        self._now = clock or utc_now
        self._pending: set[asyncio.Task[BatchResult]] = set()

    async def record_comparison(
        self,
        item_a_id: str,
        item_b_id: str,
        winner_id: str | None,
        voter_id: str,
        weight: int | None = None,
    ) -> int:
        """Record a pairwise vote; `winner_id=None` records a no-preference vote."""
        rating = self.config.rating
        weight = weight or rating.normal_vote_weight
        priorities = self.config.batch.priorities
        base = (
            priorities.super_comparison
            if weight >= rating.super_vote_weight
            else priorities.comparison
        )
        now = self._now()

        def _record(session: Session) -> tuple[int, int]:
            event = insert_comparison(
                session,
                item_a_id,
                item_b_id,
                winner_id,
                voter_id,
                weight,
                self.store.events.default_rating,
                created_at=now,
            )
            raised = [
                self._mark(session, item_id, base, now, escalate=True)
                for item_id in (item_a_id, item_b_id)
            ]
            return int(event.id), max(raised)

        event_id, priority = await self._write(_record)
        logger.debug("comparison_recorded", event_id=event_id, a=item_a_id, b=item_b_id)
        self._maybe_trigger(priority)
        return event_id

    async def record_slider(self, voter_id: str, item_id: str, raw_score: float) -> int:
        """Record a raw 0-100 slider rating."""
        priority = self.config.batch.priorities.slider
        now = self._now()

        def _record(session: Session) -> tuple[int, int]:
            event = insert_slider(session, voter_id, item_id, raw_score, created_at=now)
            return int(event.id), self._mark(session, item_id, priority, now)

        event_id, priority = await self._write(_record)
        self._maybe_trigger(priority)
        return event_id

    async def record_favorite(self, voter_id: str, item_id: str) -> int:
        """Record a favorite signal."""
        priority = self.config.batch.priorities.favorite
        now = self._now()

        def _record(session: Session) -> tuple[int, int]:
            event = insert_favorite(session, voter_id, item_id, created_at=now)
            return int(event.id), self._mark(session, item_id, priority, now)

        event_id, priority = await self._write(_record)
        self._maybe_trigger(priority)
        return event_id

    async def _write(self, record: Callable[[Session], tuple[int, int]]) -> tuple[int, int]:
        """Run an append plus its dirty markers as one transaction.

        Not retried on timeout: a timed-out attempt may still commit the event.
        """

        def _run(session: Session) -> tuple[int, int]:
            try:
                outcome = record(session)
                session.commit()
            except IntegrityError:
                # Lost a dirty-row insert race; nothing was committed, so replay.
                session.rollback()
                outcome = record(session)
                session.commit()
            return outcome

        return await self.store.run_in_session(_run, retry_timeouts=False)

    def _mark(
        self,
        session: Session,
        item_id: str,
        priority: int,
        now: datetime,
        escalate: bool = False,
    ) -> int:
        if escalate:
            reason = self._escalation_reason(session, item_id, now)
            if reason is not None and priority < self.config.batch.trigger_priority:
                priority = self.config.batch.trigger_priority
                logger.info("item_escalated", item_id=item_id, reason=reason)
        upsert_dirty(session, item_id, priority, now)
        return priority

    def _escalation_reason(self, session: Session, item_id: str, now: datetime) -> str | None:
        """Return why an item's latest vote warrants a priority batch, if it does."""
        batch = self.config.batch
        if batch.vote_milestones:
            votes = count_comparisons(session, item_id)
            if votes in batch.vote_milestones:
                return f"milestone:{votes}"
        if batch.high_activity_threshold is not None:
            since = now - timedelta(hours=batch.high_activity_window_hours)
            if count_comparisons(session, item_id, since=since) >= batch.high_activity_threshold:
                return "high_activity"
        return None

    def _maybe_trigger(self, priority: int) -> None:
        if self.worker is None or priority < self.config.batch.trigger_priority:
            return
        task = asyncio.create_task(self.worker.run_priority_batch())
        self._pending.add(task)
        task.add_done_callback(self._on_trigger_done)
        logger.debug("priority_batch_triggered", priority=priority)

    def _on_trigger_done(self, task: asyncio.Task[BatchResult]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("priority_batch_failed", error=str(error), error_type=type(error).__name__)

    @property
    def pending_triggers(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for in-flight priority batches, e.g. before shutdown."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
