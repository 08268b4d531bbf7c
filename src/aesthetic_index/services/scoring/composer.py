"""Score composition from item rating state."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aesthetic_index.core.config import ComposerConfig, RatingConfig
    from aesthetic_index.models import ItemRatingState


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class ComposedScore:
    """Candidate score for an item, before the publish gate sees it.

    Attributes:
        score: Final 0-100 score.
        confidence: 0-100 confidence.
        provisional: True while data or confidence minimums are unmet.
        rating_component: Rescaled rating mean (0-100), before reliability.
        slider_component: Weighted normalized slider mean (0-100), before reliability.
        favorite_component: Diminishing-returns favorite curve (0-100), before reliability.
        reliability_factor: Multiplier applied to every component.
    """

    score: float
    confidence: float
    provisional: bool
    rating_component: float
    slider_component: float
    favorite_component: float
    reliability_factor: float


class ScoreComposer:
    """Derive a bounded score, a confidence and a provisional flag from item state."""

    def __init__(self, config: ComposerConfig, rating_config: RatingConfig) -> None:
        """Initialize the composer.

        Args:
            config: Composer weights, domains and provisional thresholds.
            rating_config: Rating bounds, used to normalize uncertainty.
        """
        self.config = config
        self.rating_config = rating_config

    def rating_component(self, rating_mean: float) -> float:
        """Linear rescale of the rating mean from [rating_min, rating_max] into 0-100."""
        span = self.config.rating_max - self.config.rating_min
        return _clamp((rating_mean - self.config.rating_min) / span * 100)

    def slider_component(self, weighted_sum: float, weight: float) -> float:
        """Reliability-weighted mean of normalized slider values, or neutral without data."""
        if weight <= 0:
            return self.config.neutral_slider
        return _clamp(weighted_sum / weight)

    def favorite_component(self, weighted_count: float) -> float:
        """Logarithmic curve: early favorites count far more than later ones."""
        if weighted_count <= 0:
            return 0.0
        return min(100.0, math.log1p(weighted_count) / math.log(self.config.favorite_log_base) * 100)

    def confidence(self, state: ItemRatingState) -> float:
        """Blend of uncertainty, comparison sufficiency and slider sufficiency (0-100)."""
        floor = self.rating_config.uncertainty_floor
        ceiling = self.rating_config.uncertainty_ceiling
        uncertainty_conf = _clamp((ceiling - state.rating_uncertainty) / (ceiling - floor) * 100)
        comparison_conf = min(100.0, state.total_comparisons / self.config.comparison_target * 100)
        slider_conf = min(100.0, state.total_slider_ratings / self.config.slider_target * 100)

        weights = self.config.confidence_weights
        return _clamp(
            weights.uncertainty * uncertainty_conf
            + weights.comparisons * comparison_conf
            + weights.sliders * slider_conf
        )

    def is_provisional(self, state: ItemRatingState, confidence: float) -> bool:
        return (
            state.total_comparisons < self.config.provisional_min_comparisons
            or state.total_slider_ratings < self.config.provisional_min_sliders
            or confidence < self.config.provisional_min_confidence
        )

    def compose(self, state: ItemRatingState) -> ComposedScore:
        """Compose the candidate score for an item.

        Args:
            state: Current item rating state.

        Returns:
            ComposedScore with score and confidence rounded to two decimals.
        """
        rating = self.rating_component(state.rating_mean)
        slider = self.slider_component(state.slider_weighted_sum, state.slider_weight)
        favorite = self.favorite_component(state.favorite_weighted_sum)
        reliability = state.avg_voter_reliability

        weights = self.config.weights
        raw = (
            weights.rating * rating * reliability
            + weights.slider * slider * reliability
            + weights.favorite * favorite * reliability
        )
        confidence = self.confidence(state)

        return ComposedScore(
            score=round(_clamp(raw), 2),
            confidence=round(confidence, 2),
            provisional=self.is_provisional(state, confidence),
            rating_component=round(rating, 2),
            slider_component=round(slider, 2),
            favorite_component=round(favorite, 2),
            reliability_factor=round(reliability, 4),
        )
