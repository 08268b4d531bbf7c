"""Elo rating calculations with a per-item uncertainty companion."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aesthetic_index.core.config import RatingConfig


@dataclass(frozen=True)
class RatingUpdate:
    """Result of folding one resolved comparison into an item's rating.

    Attributes:
        mean: New rating mean.
        uncertainty: New rating uncertainty.
        delta: Change applied to the mean.
        expected: Expected score the item had before the comparison.
    """

    mean: float
    uncertainty: float
    delta: float
    expected: float


def calculate_expected_win_chance(rating_a: float, rating_b: float) -> float:
    """Calculate expected win probability for item A against item B.

    Uses the standard Elo formula:
    E_A = 1 / (1 + 10^((R_B - R_A) / 400))

    Args:
        rating_a: Rating of item A.
        rating_b: Rating of item B.

    Returns:
        Probability that A wins (0.0 to 1.0).
    """
    return 1.0 / (1.0 + 10 ** ((rating_b - rating_a) / 400))


def rating_delta(rating: float, opponent_rating: float, outcome: float, k_factor: float) -> float:
    """Rating change for one side of a comparison.

    Args:
        rating: Own rating before the comparison.
        opponent_rating: Opponent rating before the comparison.
        outcome: 1.0 for a win, 0.0 for a loss.
        k_factor: K-factor to scale the surprise by.

    Returns:
        Signed change to apply to `rating`.
    """
    expected = calculate_expected_win_chance(rating, opponent_rating)
    return k_factor * (outcome - expected)


def update_uncertainty(uncertainty: float, config: RatingConfig) -> float:
    """Shrink uncertainty after one comparison.

    The decay term is added in quadrature before shrinking, so sigma drifts
    towards a fixed point just under the floor and never collapses to zero.

    Args:
        uncertainty: Current sigma.
        config: Rating configuration with decay, shrink and bounds.

    Returns:
        New sigma clamped to [uncertainty_floor, uncertainty_ceiling].
    """
    grown = math.sqrt(uncertainty**2 + config.uncertainty_decay**2)
    shrunk = grown * config.uncertainty_shrink
    return min(config.uncertainty_ceiling, max(config.uncertainty_floor, shrunk))


def k_factor_for_weight(weight: int, config: RatingConfig) -> float:
    """Return the K-factor for a vote of the given weight."""
    if weight >= config.super_vote_weight:
        return config.super_k_factor
    return config.k_factor


def update_rating(
    mean: float,
    uncertainty: float,
    opponent_rating: float,
    won: bool,
    weight: int,
    config: RatingConfig,
) -> RatingUpdate:
    """Update one item's rating after a resolved comparison.

    Args:
        mean: Item's current rating mean.
        uncertainty: Item's current rating uncertainty.
        opponent_rating: Opponent's rating as seen when the vote was cast.
        won: Whether this item was chosen.
        weight: Vote weight; super votes use the super K-factor.
        config: Rating configuration.

    Returns:
        RatingUpdate with the new mean and uncertainty.
    """
    k_factor = k_factor_for_weight(weight, config)
    delta = rating_delta(mean, opponent_rating, 1.0 if won else 0.0, k_factor)
    expected = calculate_expected_win_chance(mean, opponent_rating)
    return RatingUpdate(
        mean=mean + delta,
        uncertainty=update_uncertainty(uncertainty, config),
        delta=delta,
        expected=expected,
    )
