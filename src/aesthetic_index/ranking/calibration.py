"""Per-voter slider calibration and reliability feedback."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from aesthetic_index.ranking.elo import calculate_expected_win_chance

if TYPE_CHECKING:
    from aesthetic_index.core.config import CalibrationConfig


def welford_update(count: int, mean: float, m2: float, value: float) -> tuple[int, float, float]:
    """Fold one observation into running mean / sum of squared deviations.

    Args:
        count: Observations folded so far.
        mean: Running mean.
        m2: Running sum of squared deviations from the mean.
        value: New observation.

    Returns:
        Tuple of (count, mean, m2) after the observation.
    """
    n = count + 1
    delta = value - mean
    new_mean = mean + delta / n
    new_m2 = m2 + delta * (value - new_mean)
    return n, new_mean, new_m2


def sample_variance(count: int, m2: float, default_variance: float) -> float:
    """Sample variance (n - 1 denominator), or a prior while fewer than two samples exist."""
    if count < 2:
        return default_variance
    return m2 / (count - 1)


def normalize_slider(raw: float, mean: float, variance: float, config: CalibrationConfig) -> float:
    """Map a voter's raw slider value onto a shared 0-100 scale.

    The value is z-scored against the voter's own history, clamped to
    +/- `z_clamp` standard deviations and rescaled linearly into 0-100.

    Args:
        raw: Raw slider value (0-100) on the voter's personal scale.
        mean: Voter's running slider mean.
        variance: Voter's running slider variance.
        config: Calibration configuration.

    Returns:
        Normalized value in [0, 100].
    """
    std = max(config.min_slider_std, math.sqrt(max(variance, 0.0)))
    z = (raw - mean) / std
    z = max(-config.z_clamp, min(config.z_clamp, z))
    return (z + config.z_clamp) / (2 * config.z_clamp) * 100


def comparison_difficulty(rating_a: float, rating_b: float) -> float:
    """How close a matchup was, from 0.0 (foregone) to 1.0 (coin flip)."""
    expected_higher = calculate_expected_win_chance(max(rating_a, rating_b), min(rating_a, rating_b))
    return 1.0 - abs(2 * expected_higher - 1.0)


def update_reliability(
    reliability: float,
    aligned: bool,
    difficulty: float,
    config: CalibrationConfig,
) -> float:
    """Nudge a voter's reliability toward the aligned or misaligned target.

    Close calls move reliability more than obvious ones: the learning rate is
    scaled by 0.5 + 0.5 * difficulty.

    Args:
        reliability: Current reliability score.
        aligned: Whether the voter chose the item that was already rated higher.
        difficulty: Matchup difficulty in [0, 1].
        config: Calibration configuration.

    Returns:
        New reliability clamped to [reliability_min, reliability_max].
    """
    target = config.aligned_target if aligned else config.misaligned_target
    alpha = config.reliability_learning_rate * (0.5 + 0.5 * difficulty)
    updated = reliability + alpha * (target - reliability)
    return min(config.reliability_max, max(config.reliability_min, updated))


def exponential_moving_average(current: float, value: float, alpha: float) -> float:
    """Blend `value` into `current` with smoothing factor `alpha`."""
    return current + alpha * (value - current)
