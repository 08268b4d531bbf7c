"""Tests for Elo rating calculations."""

import math

import pytest

from aesthetic_index.core.config import RatingConfig
from aesthetic_index.ranking.elo import (
    calculate_expected_win_chance,
    k_factor_for_weight,
    rating_delta,
    update_rating,
    update_uncertainty,
)


class TestCalculateExpectedWinChance:
    """Tests for expected win probability calculation."""

    def test_equal_ratings(self):
        """Test equal ratings produce 0.5 expected."""
        assert calculate_expected_win_chance(1200, 1200) == pytest.approx(0.5)

    def test_400_point_difference(self):
        """Test 400 point difference produces ~91% expected."""
        expected = calculate_expected_win_chance(1600, 1200)
        assert expected == pytest.approx(10 / 11, abs=1e-6)

    def test_symmetry(self):
        """Test expectations of both sides sum to one."""
        a = calculate_expected_win_chance(1350, 1110)
        b = calculate_expected_win_chance(1110, 1350)
        assert a + b == pytest.approx(1.0)


class TestRatingDelta:
    """Tests for single-side rating changes."""

    def test_even_win_gains_half_k(self):
        """Test a win between equals moves the rating by K/2."""
        assert rating_delta(1200, 1200, 1.0, 32) == pytest.approx(16.0)

    def test_upset_win_larger_change(self):
        """Test an underdog win moves more than a favorite win."""
        underdog = rating_delta(1000, 1400, 1.0, 32)
        favorite = rating_delta(1400, 1000, 1.0, 32)
        assert underdog > favorite > 0

    def test_loss_is_negative(self):
        """Test a loss always lowers the rating."""
        assert rating_delta(1500, 900, 0.0, 32) < 0


class TestUpdateUncertainty:
    """Tests for uncertainty shrinkage."""

    def test_shrinks_from_default(self):
        """Test sigma decreases from the starting value."""
        config = RatingConfig()
        new = update_uncertainty(350.0, config)
        assert new == pytest.approx(math.sqrt(350**2 + 10**2) * 0.98)
        assert new < 350.0

    def test_respects_floor(self):
        """Test sigma never drops below the floor."""
        config = RatingConfig()
        sigma = 350.0
        for _ in range(1000):
            sigma = update_uncertainty(sigma, config)
        assert sigma == pytest.approx(config.uncertainty_floor)

    def test_respects_ceiling(self):
        """Test sigma is clamped to the ceiling."""
        config = RatingConfig(uncertainty_shrink=1.0)
        assert update_uncertainty(400.0, config) == config.uncertainty_ceiling


class TestUpdateRating:
    """Tests for full rating updates."""

    def test_winner_gains_loser_loses(self):
        """Test winner gains, loser loses by the same amount."""
        config = RatingConfig()
        winner = update_rating(1200, 350, 1200, won=True, weight=1, config=config)
        loser = update_rating(1200, 350, 1200, won=False, weight=1, config=config)
        assert winner.mean > 1200 > loser.mean
        assert winner.delta == pytest.approx(-loser.delta)

    def test_super_vote_doubles_delta(self):
        """Test a super vote applies the larger K-factor."""
        config = RatingConfig()
        normal = update_rating(1200, 350, 1250, won=True, weight=1, config=config)
        super_vote = update_rating(1200, 350, 1250, won=True, weight=5, config=config)
        assert super_vote.delta == pytest.approx(2 * normal.delta)

    def test_expected_reported(self):
        """Test the pre-update expectation is reported."""
        config = RatingConfig()
        update = update_rating(1600, 200, 1200, won=True, weight=1, config=config)
        assert update.expected == pytest.approx(10 / 11, abs=1e-6)


class TestKFactorForWeight:
    """Tests for K-factor selection."""

    @pytest.mark.parametrize(("weight", "expected"), [(1, 32.0), (4, 32.0), (5, 64.0), (9, 64.0)])
    def test_threshold(self, weight, expected):
        """Test weights at or above the super weight use the super K-factor."""
        assert k_factor_for_weight(weight, RatingConfig()) == expected
