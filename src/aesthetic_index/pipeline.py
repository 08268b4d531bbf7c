"""Pipeline facade: the operations exposed to the rest of the product."""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from aesthetic_index.core.timeutil import utc_now
from aesthetic_index.models import PublishState
from aesthetic_index.ranking.engine import new_item_state
from aesthetic_index.services.collection import CollectionIndexView, CollectionService
from aesthetic_index.services.ingestion import IngestionService
from aesthetic_index.services.scheduler import BatchScheduler
from aesthetic_index.services.scoring import Evidence
from aesthetic_index.services.storage import ScoringStore
from aesthetic_index.services.worker import BatchResult, BatchWorker

if TYPE_CHECKING:
    from collections.abc import Callable

    from aesthetic_index.core.config import ScoringConfig

logger = structlog.get_logger()


@dataclass(frozen=True)
class PublishedScoreView:
    """Externally visible score of one item."""

    item_id: str
    score: float
    confidence: float
    provisional: bool
    state: str = PublishState.UNSCORED.value
    rating_component: float | None = None
    slider_component: float | None = None
    favorite_component: float | None = None
    updated_at: datetime | None = None

    @classmethod
    def unscored(cls, item_id: str, neutral_score: float) -> PublishedScoreView:
        return cls(item_id=item_id, score=neutral_score, confidence=0.0, provisional=True)


@dataclass(frozen=True)
class UnscoredProgress:
    """How far an item is from meeting the first-publish minimums.

    Counters reflect events folded by the last batch that processed the item.

    Attributes:
        item_id: Item inspected.
        state: Current publish state.
        have: Counter values per requirement.
        required: Configured minimum per requirement.
        needed: Remaining shortfall per unmet requirement.
        confidence: Confidence the item's current candidate score would carry.
    """

    item_id: str
    state: str
    have: dict[str, int]
    required: dict[str, int]
    needed: dict[str, int]
    confidence: float

    @property
    def ready(self) -> bool:
        return not self.needed


class AestheticIndexPipeline:
    """Wires storage, worker, ingestion and collection services together."""

    def __init__(
        self,
        config: ScoringConfig,
        store: ScoringStore,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Scoring configuration.
            store: Storage layer.
            clock: Returns the current naive UTC time; defaults to utc_now.
            rng: Random source for batch jitter.
        """
        self.config = config
        self.store = store
        self._now = clock or utc_now
        self.worker = BatchWorker(config, store, clock=self._now, rng=rng)
        self.collections = CollectionService(config.collection, store, clock=self._now)
        self.ingestion = IngestionService(config, store, self.worker, clock=self._now)
        self.scheduler = BatchScheduler(config.batch, self.worker, self.collections)

    async def get_published_score(self, item_id: str) -> PublishedScoreView:
        """Return the published score, or the neutral default when nothing is published."""
        published = await self.store.scores.get_published_score(item_id)
        state = await self.store.states.get_item_state(item_id)
        publish_state = state.publish_state if state else PublishState.UNSCORED.value
        if published is None:
            view = PublishedScoreView.unscored(item_id, self.config.composer.neutral_score)
            return replace(view, state=publish_state)
        return PublishedScoreView(
            item_id=item_id,
            score=published.score,
            confidence=published.confidence,
            provisional=published.provisional,
            state=publish_state,
            rating_component=published.rating_component,
            slider_component=published.slider_component,
            favorite_component=published.favorite_component,
            updated_at=published.updated_at,
        )

    async def get_unscored_progress(self, item_id: str) -> UnscoredProgress:
        """Report each first-publish minimum the item has met or still lacks."""
        state = await self.store.states.get_item_state(item_id)
        if state is None:
            state = new_item_state(item_id, self.config)
        gate = self.worker.gate
        evidence = Evidence.from_state(state)
        requirements = gate.requirements(evidence)
        return UnscoredProgress(
            item_id=item_id,
            state=state.publish_state,
            have={name: have for name, (have, _) in requirements.items()},
            required={name: need for name, (_, need) in requirements.items()},
            needed=gate.missing_requirements(evidence),
            confidence=self.worker.composer.compose(state).confidence,
        )

    async def get_collection_index(
        self, collection_id: str, refresh: bool = False
    ) -> CollectionIndexView:
        return await self.collections.get_collection_index(collection_id, refresh=refresh)

    async def mark_dirty(self, item_id: str, priority: int = 0) -> None:
        await self.store.queue.mark_dirty(item_id, priority, now=self._now())

    async def run_batch(self, limit: int | None = None) -> BatchResult:
        return await self.worker.run_batch(limit=limit)

    async def record_comparison(
        self,
        item_a_id: str,
        item_b_id: str,
        winner_id: str | None,
        voter_id: str,
        weight: int | None = None,
    ) -> int:
        return await self.ingestion.record_comparison(
            item_a_id, item_b_id, winner_id, voter_id, weight
        )

    async def record_slider(self, voter_id: str, item_id: str, raw_score: float) -> int:
        return await self.ingestion.record_slider(voter_id, item_id, raw_score)

    async def record_favorite(self, voter_id: str, item_id: str) -> int:
        return await self.ingestion.record_favorite(voter_id, item_id)

    async def refresh_collections(self) -> list[str]:
        return await self.collections.refresh_stale()

    async def status(self) -> dict[str, Any]:
        """Queue depth, publication counts and this process's worker totals."""
        queue = await self.store.queue.stats(self.config.batch.trigger_priority, now=self._now())
        published = await self.store.scores.count_published()
        return {
            **queue,
            **published,
            "batches_run": self.worker.totals["batches"],
            "items_processed": self.worker.totals["processed"],
            "item_errors": self.worker.totals["errors"],
        }

    async def close(self) -> None:
        await self.ingestion.drain()
        await self.store.close()


def open_pipeline(
    config: ScoringConfig,
    clock: Callable[[], datetime] | None = None,
    rng: random.Random | None = None,
) -> AestheticIndexPipeline:
    """Convenience constructor: create the store and the pipeline in one call."""
    store = ScoringStore(config)
    logger.info("pipeline_open", batch_size=config.batch.batch_size)
    return AestheticIndexPipeline(config, store, clock=clock, rng=rng)
