"""Rating, calibration and incremental fold logic."""

from aesthetic_index.ranking.calibration import (
    comparison_difficulty,
    exponential_moving_average,
    normalize_slider,
    sample_variance,
    update_reliability,
    welford_update,
)
from aesthetic_index.ranking.elo import (
    RatingUpdate,
    calculate_expected_win_chance,
    k_factor_for_weight,
    rating_delta,
    update_rating,
    update_uncertainty,
)
from aesthetic_index.ranking.engine import (
    advance_watermark,
    apply_comparison,
    apply_favorite,
    apply_slider,
    apply_voter_alignment,
    new_item_state,
    new_voter_calibration,
    watermark,
)

__all__ = [
    "RatingUpdate",
    "advance_watermark",
    "apply_comparison",
    "apply_favorite",
    "apply_slider",
    "apply_voter_alignment",
    "calculate_expected_win_chance",
    "comparison_difficulty",
    "exponential_moving_average",
    "k_factor_for_weight",
    "new_item_state",
    "new_voter_calibration",
    "normalize_slider",
    "rating_delta",
    "sample_variance",
    "update_rating",
    "update_reliability",
    "update_uncertainty",
    "watermark",
    "welford_update",
]
