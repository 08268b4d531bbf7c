"""Incremental update engine.

Folds one event at a time into item and voter state. Every fold is gated on
the per-stream watermark of the item, so re-delivered events are no-ops.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from aesthetic_index.core.errors import DataIntegrityError
from aesthetic_index.core.timeutil import utc_now
from aesthetic_index.models import (
    ComparisonEvent,
    EventStream,
    FavoriteEvent,
    ItemRatingState,
    SliderEvent,
    VoterCalibration,
)
from aesthetic_index.ranking.calibration import (
    comparison_difficulty,
    exponential_moving_average,
    normalize_slider,
    sample_variance,
    update_reliability,
    welford_update,
)
from aesthetic_index.ranking.elo import update_rating

if TYPE_CHECKING:
    from aesthetic_index.core.config import CalibrationConfig, ScoringConfig


_WATERMARK_FIELDS = {
    EventStream.COMPARISONS: "last_comparison_event_id",
    EventStream.SLIDERS: "last_slider_event_id",
    EventStream.FAVORITES: "last_favorite_event_id",
}


def new_item_state(item_id: str, config: ScoringConfig) -> ItemRatingState:
    """Create a fresh item state seeded with configured defaults."""
    return ItemRatingState(
        item_id=item_id,
        rating_mean=config.rating.default_mean,
        rating_uncertainty=config.rating.default_uncertainty,
        avg_voter_reliability=config.calibration.default_reliability,
    )


def new_voter_calibration(voter_id: str, config: ScoringConfig) -> VoterCalibration:
    """Create a fresh voter calibration seeded with configured defaults."""
    return VoterCalibration(
        voter_id=voter_id,
        slider_variance=config.calibration.default_slider_std**2,
        reliability_score=config.calibration.default_reliability,
    )


def watermark(state: ItemRatingState, stream: EventStream) -> int:
    """Return the last applied event id for a stream."""
    return getattr(state, _WATERMARK_FIELDS[stream])


def advance_watermark(state: ItemRatingState, stream: EventStream, event_id: int) -> None:
    """Move a stream watermark forward; never moves it backwards."""
    field = _WATERMARK_FIELDS[stream]
    if event_id > getattr(state, field):
        setattr(state, field, event_id)


def _touch_reliability(state: ItemRatingState, voter: VoterCalibration, alpha: float) -> None:
    state.avg_voter_reliability = exponential_moving_average(
        state.avg_voter_reliability, voter.reliability_score, alpha
    )


def apply_voter_alignment(
    voter: VoterCalibration, event: ComparisonEvent, config: CalibrationConfig
) -> bool:
    """Update a voter's reliability from one resolved comparison.

    Args:
        voter: Calibration state of the voter who cast the vote.
        event: Resolved comparison with pre-vote rating snapshots.
        config: Calibration configuration.

    Returns:
        False when the snapshots were tied and no consensus existed.
    """
    if event.winner_id is None or event.rating_a_before == event.rating_b_before:
        return False

    higher_id = event.item_a_id if event.rating_a_before > event.rating_b_before else event.item_b_id
    aligned = event.winner_id == higher_id
    difficulty = comparison_difficulty(event.rating_a_before, event.rating_b_before)
    voter.reliability_score = update_reliability(
        voter.reliability_score, aligned, difficulty, config
    )
    voter.total_comparisons += 1
    if aligned:
        voter.aligned_comparisons += 1
    voter.updated_at = utc_now()
    return True


def apply_comparison(
    state: ItemRatingState,
    event: ComparisonEvent,
    voter: VoterCalibration | None,
    config: ScoringConfig,
    update_voter: bool = False,
) -> bool:
    """Fold a comparison event into an item's state.

    No-preference votes only add the vote weight to the comparison counter.
    Resolved votes also move the rating mean and shrink the uncertainty.

    Args:
        state: State of one of the two compared items.
        event: Comparison event.
        voter: Calibration of the voter, or None if the voter is unknown.
        config: Scoring configuration.
        update_voter: Apply the reliability feedback. Callers set this on
            exactly one side of each comparison.

    Returns:
        True if the event was applied, False if it was at or below the watermark.

    Raises:
        DataIntegrityError: If the event does not involve this item or names
            a winner outside the pair.
    """
    if event.id is None or event.id <= state.last_comparison_event_id:
        return False

    if state.item_id == event.item_a_id:
        opponent_rating = event.rating_b_before
    elif state.item_id == event.item_b_id:
        opponent_rating = event.rating_a_before
    else:
        msg = f"Comparison {event.id} does not involve item {state.item_id}"
        raise DataIntegrityError(msg)

    if event.winner_id is not None and event.winner_id not in (event.item_a_id, event.item_b_id):
        msg = f"Comparison {event.id} names winner {event.winner_id} outside the pair"
        raise DataIntegrityError(msg)

    state.total_comparisons += event.weight
    state.comparison_events += 1

    if voter is not None:
        _touch_reliability(state, voter, config.calibration.reliability_ema_alpha)

    if event.winner_id is not None:
        update = update_rating(
            state.rating_mean,
            state.rating_uncertainty,
            opponent_rating,
            won=event.winner_id == state.item_id,
            weight=event.weight,
            config=config.rating,
        )
        state.rating_mean = update.mean
        state.rating_uncertainty = update.uncertainty
        if voter is not None and update_voter:
            apply_voter_alignment(voter, event, config.calibration)

    state.last_comparison_event_id = event.id
    state.updated_at = utc_now()
    return True


def apply_slider(
    state: ItemRatingState,
    event: SliderEvent,
    voter: VoterCalibration,
    config: ScoringConfig,
) -> bool:
    """Fold a slider rating into the voter's statistics and the item's slider signal.

    The voter's Welford statistics are updated first, then the raw value is
    normalized against them and weighted by the voter's reliability.

    Args:
        state: Item state.
        event: Slider event for this item.
        voter: Calibration of the voter who submitted the rating.
        config: Scoring configuration.

    Returns:
        True if the event was applied, False if it was at or below the watermark.
    """
    if event.id is None or event.id <= state.last_slider_event_id:
        return False

    calibration = config.calibration
    count, mean, m2 = welford_update(
        voter.slider_sample_count, voter.slider_mean, voter.slider_m2, event.raw_score
    )
    variance = sample_variance(count, m2, calibration.default_slider_std**2)
    voter.slider_sample_count = count
    voter.slider_mean = mean
    voter.slider_m2 = m2
    voter.slider_variance = variance
    voter.updated_at = utc_now()

    normalized = normalize_slider(event.raw_score, mean, variance, calibration)
    weight = voter.reliability_score
    state.slider_weighted_sum += normalized * weight
    state.slider_weight += weight
    state.total_slider_ratings += 1
    _touch_reliability(state, voter, calibration.reliability_ema_alpha)

    state.last_slider_event_id = event.id
    state.updated_at = utc_now()
    return True


def apply_favorite(
    state: ItemRatingState,
    event: FavoriteEvent,
    voter: VoterCalibration,
    config: ScoringConfig,
) -> bool:
    """Fold a favorite signal, weighted by the voter's reliability.

    Returns:
        True if the event was applied, False if it was at or below the watermark.
    """
    if event.id is None or event.id <= state.last_favorite_event_id:
        return False

    state.favorite_weighted_sum += voter.reliability_score
    state.total_favorites += 1
    _touch_reliability(state, voter, config.calibration.reliability_ema_alpha)

    state.last_favorite_event_id = event.id
    state.updated_at = utc_now()
    return True
