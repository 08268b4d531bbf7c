"""Collection Aesthetic Index (CAI) computation and refresh."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog

from aesthetic_index.core.errors import DataIntegrityError
from aesthetic_index.core.timeutil import utc_now

if TYPE_CHECKING:
    from collections.abc import Callable

    from aesthetic_index.core.config import CollectionConfig
    from aesthetic_index.models import CollectionIndex
    from aesthetic_index.services.storage import CollectionInputs, ScoringStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class CollectionIndexResult:
    """Every intermediate of one CAI computation."""

    collection_id: str
    mean: float
    std: float
    trimmed_mean: float
    trimmed_std: float
    cohesion_penalty: float
    coverage_fraction: float
    depth_fraction: float
    coverage_score: float
    uncertainty_factor: float
    confidence: float
    index_score: float
    provisional: bool
    scored_items: int
    total_items: int
    total_votes: int
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def as_record(self) -> dict[str, Any]:
        """Fields persisted on the collection index row."""
        record = asdict(self)
        record.pop("warnings")
        return record


@dataclass(frozen=True)
class CollectionIndexView:
    """Externally exposed collection index."""

    collection_id: str
    index: float
    confidence: float
    provisional: bool
    scored_items: int = 0
    computed_at: datetime | None = None

    @classmethod
    def unscored(cls, collection_id: str) -> CollectionIndexView:
        return cls(collection_id=collection_id, index=0.0, confidence=0.0, provisional=True)

    @classmethod
    def from_record(cls, record: CollectionIndex) -> CollectionIndexView:
        return cls(
            collection_id=record.collection_id,
            index=record.index_score,
            confidence=record.confidence,
            provisional=record.provisional,
            scored_items=record.scored_items,
            computed_at=record.computed_at,
        )


def trim_scores(scores: np.ndarray, trim_fraction: float, min_sample: int) -> np.ndarray:
    """Drop `floor(n * trim_fraction)` values from each tail once n >= min_sample."""
    ordered = np.sort(scores)
    n = len(ordered)
    if n < min_sample:
        return ordered
    cut = math.floor(n * trim_fraction)
    if cut == 0:
        return ordered
    return ordered[cut : n - cut]


def compute_collection_index(
    inputs: CollectionInputs, config: CollectionConfig
) -> CollectionIndexResult:
    """Compute the Collection Aesthetic Index from published item scores.

    The trimmed mean is penalized multiplicatively by spread (cohesion
    penalty), then blended with a coverage score reflecting how much of the
    collection is scored and how deeply.

    Args:
        inputs: Published scores, vote counts and collection size.
        config: CAI configuration.

    Returns:
        CollectionIndexResult with all intermediates.

    Raises:
        ValueError: If there are no published scores.
        DataIntegrityError: If a score is outside 0-100.
    """
    if not inputs.scores:
        msg = f"Collection {inputs.collection_id} has no published scores"
        raise ValueError(msg)

    scores = np.asarray(inputs.scores, dtype=float)
    if np.any(~np.isfinite(scores)) or scores.min() < 0 or scores.max() > 100:
        msg = f"Collection {inputs.collection_id} has scores outside 0-100"
        raise DataIntegrityError(msg)

    warnings: list[str] = []
    n = len(scores)
    if n < config.min_trim_sample:
        warnings.append(f"Only {n} scored items; outlier trimming skipped")

    trimmed = trim_scores(scores, config.trim_fraction, config.min_trim_sample)
    trimmed_mean = float(np.mean(trimmed))
    trimmed_std = float(np.std(trimmed))

    cohesion_penalty = config.cohesion_max_penalty * min(
        1.0, trimmed_std / config.cohesion_std_scale
    )

    total_items = inputs.total_items
    if total_items < n:
        warnings.append(f"{n} scored items exceed collection size {total_items}")
        total_items = n
    coverage_fraction = min(1.0, n / total_items)
    total_votes = int(sum(inputs.votes))
    depth_fraction = min(1.0, (total_votes / n) / config.target_votes_per_item)
    coverage_score = (
        config.coverage_weight * coverage_fraction + config.depth_weight * depth_fraction
    ) * 100

    standard_error = trimmed_std / math.sqrt(len(trimmed))
    uncertainty_factor = max(0.0, min(1.0, 1.0 - standard_error / config.standard_error_scale))
    confidence = round(
        100
        * (
            config.confidence_coverage_weight * coverage_fraction
            + config.confidence_depth_weight * depth_fraction
            + config.confidence_uncertainty_weight * uncertainty_factor
        )
    )

    index_score = config.index_mean_weight * (
        trimmed_mean * (1 - cohesion_penalty)
    ) + config.index_coverage_weight * coverage_score

    if coverage_fraction < config.provisional_min_coverage:
        warnings.append(f"Coverage {coverage_fraction:.0%} is below the provisional floor")
    provisional = (
        confidence < config.provisional_min_confidence
        or coverage_fraction < config.provisional_min_coverage
    )

    return CollectionIndexResult(
        collection_id=inputs.collection_id,
        mean=float(np.mean(scores)),
        std=float(np.std(scores)),
        trimmed_mean=trimmed_mean,
        trimmed_std=trimmed_std,
        cohesion_penalty=cohesion_penalty,
        coverage_fraction=coverage_fraction,
        depth_fraction=depth_fraction,
        coverage_score=coverage_score,
        uncertainty_factor=uncertainty_factor,
        confidence=float(confidence),
        index_score=round(index_score, 2),
        provisional=provisional,
        scored_items=n,
        total_items=total_items,
        total_votes=total_votes,
        warnings=tuple(warnings),
    )


def describe_index(result: CollectionIndexResult) -> str:
    """One-paragraph human explanation of an index result."""
    if result.index_score >= 80:
        label = "exceptional"
    elif result.index_score >= 65:
        label = "strong"
    elif result.index_score >= 50:
        label = "solid"
    elif result.index_score >= 35:
        label = "mixed"
    else:
        label = "weak"

    parts = [
        f"Index {result.index_score:.1f} ({label}) from {result.scored_items} of "
        f"{result.total_items} items, trimmed mean {result.trimmed_mean:.1f}."
    ]
    if result.cohesion_penalty >= 0.15:
        parts.append(
            f"Wide spread between items costs {result.cohesion_penalty:.0%} of the mean."
        )
    elif result.cohesion_penalty > 0:
        parts.append(f"Cohesion penalty {result.cohesion_penalty:.0%}.")
    if result.provisional:
        parts.append(f"Provisional: confidence {result.confidence:.0f}.")
    return " ".join(parts)


class CollectionService:
    """Recompute and serve collection indices."""

    def __init__(
        self,
        config: CollectionConfig,
        store: ScoringStore,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self._now = clock or utc_now

    async def refresh(self, collection_id: str) -> CollectionIndexResult | None:
        """Recompute and store the index for one collection.

        Returns:
            The new result, or None when the collection has no published scores.
        """
        inputs = await self.store.collections.get_inputs(collection_id)
        if not inputs.scores:
            logger.info("collection_unscored", collection_id=collection_id)
            return None

        result = compute_collection_index(inputs, self.config)
        for warning in result.warnings:
            logger.warning("collection_index_warning", collection_id=collection_id, warning=warning)
        await self.store.collections.save_index(result, self._now())
        logger.info(
            "collection_index_refreshed",
            collection_id=collection_id,
            index=result.index_score,
            confidence=result.confidence,
            provisional=result.provisional,
        )
        return result

    async def get_collection_index(
        self, collection_id: str, refresh: bool = False
    ) -> CollectionIndexView:
        """Return the stored index, computing it on demand when missing."""
        stored = None if refresh else await self.store.collections.get_index(collection_id)
        if stored is not None:
            return CollectionIndexView.from_record(stored)

        result = await self.refresh(collection_id)
        if result is None:
            return CollectionIndexView.unscored(collection_id)
        stored = await self.store.collections.get_index(collection_id)
        return CollectionIndexView.from_record(stored)

    async def refresh_stale(self) -> list[str]:
        """Recompute every collection whose index is missing or older than the staleness window.

        Returns:
            Ids of collections that received a new index.
        """
        cutoff = self._now() - timedelta(hours=self.config.staleness_hours)
        refreshed = []
        for collection_id in await self.store.collections.stale_collection_ids(cutoff):
            try:
                if await self.refresh(collection_id) is not None:
                    refreshed.append(collection_id)
            except DataIntegrityError as e:
                logger.error("collection_refresh_failed", collection_id=collection_id, error=str(e))
        return refreshed
