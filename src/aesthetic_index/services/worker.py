"""Batch worker: drains the dirty queue with per-item failure isolation."""

from __future__ import annotations

import asyncio
import random
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from aesthetic_index.core.errors import DataIntegrityError
from aesthetic_index.core.timeutil import utc_now
from aesthetic_index.models import EventStream, Item, PublishedScore, VoterCalibration
from aesthetic_index.ranking.engine import (
    advance_watermark,
    apply_comparison,
    apply_favorite,
    apply_slider,
    watermark,
)
from aesthetic_index.services.scoring import Evidence, PublishGate, ScoreComposer
from aesthetic_index.services.storage.event_store import select_events_since
from aesthetic_index.services.storage.queue_repository import Claim, finish_claim
from aesthetic_index.services.storage.score_repository import write_published_score
from aesthetic_index.services.storage.state_repository import (
    load_item_state,
    load_voter_calibration,
    record_opponent,
    record_slider_rater,
)

if TYPE_CHECKING:
    from sqlmodel import Session

    from aesthetic_index.core.config import ScoringConfig
    from aesthetic_index.models import ItemRatingState
    from aesthetic_index.services.storage import ScoringStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class ItemOutcome:
    """Result of processing one claimed item."""

    item_id: str
    applied_events: int = 0
    skipped_events: int = 0
    published: bool = False
    reason: str = ""
    score: float | None = None
    skipped_item: bool = False


@dataclass
class BatchResult:
    """Summary of one batch run.

    Attributes:
        claimed: Items claimed from the queue.
        processed: Items processed and committed.
        published: Items whose published score was written.
        skipped: Items dropped because they are not in the catalog.
        errors: One message per failed item (or failed claim).
        duration_ms: Wall-clock duration.
        stopped_early: True when the soft time cap stopped further claims.
        success: False when the error share exceeded the systemic threshold.
    """

    claimed: int = 0
    processed: int = 0
    published: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: float = 0.0
    stopped_early: bool = False
    success: bool = True

    def as_dict(self) -> dict[str, Any]:
        return {
            "claimed": self.claimed,
            "processed": self.processed,
            "published": self.published,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "duration_ms": round(self.duration_ms, 1),
            "stopped_early": self.stopped_early,
            "success": self.success,
        }


class BatchWorker:
    """Claims dirty items and folds, composes, gates and persists each one.

    Instances hold their own counters and collaborators, so several workers
    can run side by side against the same store.
    """

    def __init__(
        self,
        config: ScoringConfig,
        store: ScoringStore,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            config: Scoring configuration.
            store: Storage layer.
            clock: Returns the current naive UTC time; defaults to utc_now.
            rng: Random source for jitter.
            sleep: Async sleep used for jitter; defaults to asyncio.sleep.
        """
        self.config = config
        self.store = store
        self.composer = ScoreComposer(config.composer, config.rating)
        self.gate = PublishGate(config.publish_gate)
        self._now = clock or utc_now
        self._rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep
        self.totals = {"batches": 0, "processed": 0, "published": 0, "errors": 0}

    # ==================== Batch loop ====================

    async def run_batch(self, limit: int | None = None, min_priority: int | None = None) -> BatchResult:
        """Claim and process up to `limit` dirty items.

        Claims happen in chunks so the soft wall-clock cap can stop further
        claims while in-flight items finish. Failed items keep their claim
        until the loop ends, so one run never retries the same item; they are
        released for the next run afterwards.

        Args:
            limit: Maximum items to claim (defaults to batch_size).
            min_priority: Only claim items at or above this priority.

        Returns:
            BatchResult summary.
        """
        batch = self.config.batch
        limit = limit or batch.batch_size
        started = time.monotonic()
        result = BatchResult()
        semaphore = asyncio.Semaphore(batch.max_concurrency)
        failed: list[Claim] = []
        logger.info("batch_start", limit=limit, min_priority=min_priority)

        try:
            while result.claimed < limit:
                if time.monotonic() - started >= batch.max_batch_seconds:
                    result.stopped_early = True
                    logger.warning("batch_time_cap_reached", claimed=result.claimed)
                    break

                token = uuid.uuid4().hex
                try:
                    claims = await self.store.queue.claim(
                        min(batch.claim_chunk_size, limit - result.claimed),
                        token,
                        timedelta(minutes=batch.claim_timeout_minutes),
                        min_priority=min_priority,
                        now=self._now(),
                    )
                except Exception as e:
                    logger.error("claim_failed", error=str(e), error_type=type(e).__name__)
                    result.errors.append(f"claim: {e}")
                    break
                if not claims:
                    break

                result.claimed += len(claims)
                await asyncio.gather(
                    *(
                        self._run_claim(claim, result, semaphore, failed, jitter=index > 0)
                        for index, claim in enumerate(claims)
                    )
                )
        finally:
            if failed:
                await asyncio.shield(self._release_all(failed))

        result.duration_ms = (time.monotonic() - started) * 1000
        result.success = len(result.errors) <= result.claimed * batch.failure_ratio
        self._record_totals(result)

        log = logger.info if result.success else logger.error
        log(
            "batch_complete",
            claimed=result.claimed,
            processed=result.processed,
            published=result.published,
            errors=len(result.errors),
            success=result.success,
            duration_ms=round(result.duration_ms, 1),
        )
        return result

    async def run_priority_batch(self) -> BatchResult:
        """Small batch restricted to high-priority items, for opportunistic triggers."""
        batch = self.config.batch
        return await self.run_batch(limit=batch.trigger_batch_size, min_priority=batch.trigger_priority)

    def _record_totals(self, result: BatchResult) -> None:
        self.totals["batches"] += 1
        self.totals["processed"] += result.processed
        self.totals["published"] += result.published
        self.totals["errors"] += len(result.errors)

    async def _jitter(self) -> None:
        batch = self.config.batch
        delay_ms = self._rng.uniform(batch.jitter_min_ms, batch.jitter_max_ms)
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)

    async def _run_claim(
        self,
        claim: Claim,
        result: BatchResult,
        semaphore: asyncio.Semaphore,
        failed: list[Claim],
        jitter: bool,
    ) -> None:
        try:
            async with semaphore:
                if jitter:
                    await self._jitter()
                outcome = await asyncio.wait_for(
                    self.process_item(claim),
                    timeout=self.config.batch.item_timeout_seconds,
                )
        except asyncio.CancelledError:
            await asyncio.shield(self._release(claim))
            raise
        except Exception as e:
            logger.warning(
                "item_failed",
                item_id=claim.item_id,
                error=str(e) or type(e).__name__,
                error_type=type(e).__name__,
            )
            result.errors.append(f"{claim.item_id}: {str(e) or type(e).__name__}")
            failed.append(claim)
            return

        result.processed += 1
        if outcome.published:
            result.published += 1
        if outcome.skipped_item:
            result.skipped += 1

    async def _release_all(self, claims: list[Claim]) -> None:
        for claim in claims:
            await self._release(claim)

    async def _release(self, claim: Claim) -> None:
        """Return a failed item to the queue; the claim timeout covers a failed release."""
        try:
            await self.store.queue.release(claim)
        except Exception as e:
            logger.error("claim_release_failed", item_id=claim.item_id, error=str(e))

    # ==================== Per-item processing ====================

    async def process_item(self, claim: Claim) -> ItemOutcome:
        """Process one claimed item in a single transaction."""
        now = self._now()
        outcome = await self.store.run_in_session(
            lambda session: self._process_item_sync(session, claim, now),
            retry_timeouts=False,
        )
        logger.debug(
            "item_processed",
            item_id=outcome.item_id,
            applied=outcome.applied_events,
            skipped=outcome.skipped_events,
            published=outcome.published,
            reason=outcome.reason,
        )
        return outcome

    def _process_item_sync(self, session: Session, claim: Claim, now: datetime) -> ItemOutcome:
        item_id = claim.item_id
        if session.get(Item, item_id) is None:
            logger.warning("unknown_item_skipped", item_id=item_id)
            finish_claim(session, claim)
            session.commit()
            return ItemOutcome(item_id=item_id, reason="unknown_item", skipped_item=True)

        state = load_item_state(session, item_id, self.config)
        voters: dict[str, VoterCalibration | None] = {}

        def voter(voter_id: str) -> VoterCalibration:
            if voter_id not in voters:
                voters[voter_id] = load_voter_calibration(session, voter_id, self.config)
            calibration = voters[voter_id]
            if calibration is None:
                msg = f"unknown voter {voter_id}"
                raise DataIntegrityError(msg)
            return calibration

        applied = skipped = 0
        page_size = self.config.batch.events_page_size
        for stream in EventStream:
            after_id = watermark(state, stream)
            while True:
                events = select_events_since(session, item_id, stream, after_id, page_size)
                for event in events:
                    try:
                        if self._fold(session, state, stream, event, voter):
                            applied += 1
                    except DataIntegrityError as e:
                        logger.warning(
                            "event_skipped",
                            item_id=item_id,
                            stream=stream.value,
                            event_id=event.id,
                            reason=str(e),
                        )
                        advance_watermark(state, stream, event.id)
                        skipped += 1
                    after_id = event.id
                if len(events) < page_size:
                    break

        candidate = self.composer.compose(state)
        previous = session.get(PublishedScore, item_id)
        decision = self.gate.evaluate(candidate, Evidence.from_state(state), previous, now)
        if decision.publish:
            write_published_score(
                session,
                item_id,
                candidate,
                self.gate.confidence_tier(candidate.confidence),
                state.rating_mean,
                state.rating_uncertainty,
                now,
            )
            logger.info(
                "score_published",
                item_id=item_id,
                score=candidate.score,
                confidence=candidate.confidence,
                provisional=candidate.provisional,
                reason=decision.reason,
            )

        state.publish_state = decision.next_state.value
        state.updated_at = now
        session.add(state)
        for calibration in voters.values():
            if calibration is not None:
                session.add(calibration)

        finish_claim(session, claim, defer_until=decision.retry_after)
        session.commit()
        return ItemOutcome(
            item_id=item_id,
            applied_events=applied,
            skipped_events=skipped,
            published=decision.publish,
            reason=decision.reason,
            score=candidate.score,
        )

    def _fold(
        self,
        session: Session,
        state: ItemRatingState,
        stream: EventStream,
        event: Any,
        voter: Callable[[str], VoterCalibration],
    ) -> bool:
        if stream == EventStream.COMPARISONS:
            opponent_id = event.item_b_id if event.item_a_id == state.item_id else event.item_a_id
            if session.get(Item, opponent_id) is None:
                msg = f"unknown opponent {opponent_id}"
                raise DataIntegrityError(msg)
            applied = apply_comparison(
                state,
                event,
                voter(event.voter_id),
                self.config,
                update_voter=event.item_a_id == state.item_id,
            )
            if applied and record_opponent(session, state.item_id, opponent_id):
                state.distinct_opponents += 1
            return applied

        if stream == EventStream.SLIDERS:
            applied = apply_slider(state, event, voter(event.voter_id), self.config)
            if applied and record_slider_rater(session, state.item_id, event.voter_id):
                state.distinct_slider_raters += 1
            return applied

        return apply_favorite(state, event, voter(event.voter_id), self.config)
