"""Publish gate: decides when a composed score becomes externally visible.

States per item::

    unscored -> provisional_published / published -> stale_pending_republish

An item leaves `unscored` the first time all four minimum-data thresholds
hold together, and never returns to it. After that, republishing is
suppressed inside the grace period and otherwise requires a meaningful score
change, a confidence tier change, or the first full-confidence result.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from aesthetic_index.core.timeutil import as_naive_utc
from aesthetic_index.models import PublishState

if TYPE_CHECKING:
    from aesthetic_index.core.config import PublishGateConfig
    from aesthetic_index.models import ItemRatingState, PublishedScore
    from aesthetic_index.services.scoring.composer import ComposedScore


@dataclass(frozen=True)
class Evidence:
    """Data-volume counters the minimum thresholds are checked against.

    `comparisons` counts comparison events, so a super vote counts once here
    even though its weight feeds the confidence depth.
    """

    comparisons: int
    distinct_opponents: int
    slider_ratings: int
    distinct_slider_raters: int

    @classmethod
    def from_state(cls, state: ItemRatingState) -> Evidence:
        return cls(
            comparisons=state.comparison_events,
            distinct_opponents=state.distinct_opponents,
            slider_ratings=state.total_slider_ratings,
            distinct_slider_raters=state.distinct_slider_raters,
        )


@dataclass(frozen=True)
class GateDecision:
    """Outcome of one gate evaluation.

    Attributes:
        publish: Whether the candidate should overwrite the published score.
        next_state: Publish state to persist on the item.
        reason: Short machine-friendly reason.
        retry_after: When a suppressed republish may be retried, if deferred.
        missing: Per-threshold shortfall while minimums are unmet.
    """

    publish: bool
    next_state: PublishState
    reason: str
    retry_after: datetime | None = None
    missing: dict[str, int] = field(default_factory=dict)


class PublishGate:
    """Pure publish policy; holds configuration only."""

    def __init__(self, config: PublishGateConfig) -> None:
        self.config = config

    def requirements(self, evidence: Evidence) -> dict[str, tuple[int, int]]:
        """Pair each first-publish counter with its configured minimum."""
        return {
            "comparisons": (evidence.comparisons, self.config.min_comparisons),
            "distinct_opponents": (evidence.distinct_opponents, self.config.min_distinct_opponents),
            "slider_ratings": (evidence.slider_ratings, self.config.min_slider_ratings),
            "distinct_slider_raters": (
                evidence.distinct_slider_raters,
                self.config.min_distinct_slider_raters,
            ),
        }

    def missing_requirements(self, evidence: Evidence) -> dict[str, int]:
        """Return how far each unmet minimum is from its threshold."""
        required = self.requirements(evidence)
        return {name: need - have for name, (have, need) in required.items() if have < need}

    def meets_minimums(self, evidence: Evidence) -> bool:
        return not self.missing_requirements(evidence)

    def confidence_tier(self, confidence: float) -> int:
        """Number of tier boundaries at or below `confidence`."""
        return bisect.bisect_right(self.config.confidence_tiers, confidence)

    @staticmethod
    def _published_state(candidate: ComposedScore) -> PublishState:
        if candidate.provisional:
            return PublishState.PROVISIONAL_PUBLISHED
        return PublishState.PUBLISHED

    def _republish_reason(self, previous: PublishedScore, candidate: ComposedScore) -> str | None:
        if abs(candidate.score - previous.score) >= self.config.min_score_change:
            return "score_changed"
        if self.confidence_tier(candidate.confidence) != self.confidence_tier(previous.confidence):
            return "confidence_tier_changed"
        if not candidate.provisional and not previous.ever_full_confidence:
            return "first_full_confidence"
        return None

    def evaluate(
        self,
        candidate: ComposedScore,
        evidence: Evidence,
        previous: PublishedScore | None,
        now: datetime,
    ) -> GateDecision:
        """Decide whether `candidate` should be published.

        Args:
            candidate: Freshly composed score.
            evidence: Data-volume counters for the item.
            previous: Currently published score, if any.
            now: Evaluation time.

        Returns:
            GateDecision describing whether to publish and the next state.
        """
        if previous is None:
            missing = self.missing_requirements(evidence)
            if missing:
                return GateDecision(
                    publish=False,
                    next_state=PublishState.UNSCORED,
                    reason="insufficient_data",
                    missing=missing,
                )
            return GateDecision(
                publish=True,
                next_state=self._published_state(candidate),
                reason="first_publish",
            )

        settled_state = (
            PublishState.PROVISIONAL_PUBLISHED if previous.provisional else PublishState.PUBLISHED
        )
        reason = self._republish_reason(previous, candidate)

        grace_ends = as_naive_utc(previous.published_at) + timedelta(
            minutes=self.config.grace_period_minutes
        )
        if as_naive_utc(now) < grace_ends:
            if reason is None:
                return GateDecision(publish=False, next_state=settled_state, reason="unchanged")
            return GateDecision(
                publish=False,
                next_state=PublishState.STALE_PENDING_REPUBLISH,
                reason="grace_period",
                retry_after=grace_ends,
            )

        if reason is None:
            return GateDecision(publish=False, next_state=settled_state, reason="unchanged")
        return GateDecision(publish=True, next_state=self._published_state(candidate), reason=reason)
