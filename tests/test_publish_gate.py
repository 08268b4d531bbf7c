"""Tests for the publish gate."""

from datetime import datetime, timedelta

import pytest

from aesthetic_index.core.config import PublishGateConfig
from aesthetic_index.models import ItemRatingState, PublishedScore, PublishState
from aesthetic_index.services.scoring import ComposedScore, Evidence, PublishGate

NOW = datetime(2026, 1, 1, 12, 0, 0)
ENOUGH = Evidence(comparisons=5, distinct_opponents=3, slider_ratings=2, distinct_slider_raters=2)


def _candidate(score=60.0, confidence=55.0, provisional=False):
    return ComposedScore(
        score=score,
        confidence=confidence,
        provisional=provisional,
        rating_component=50.0,
        slider_component=50.0,
        favorite_component=50.0,
        reliability_factor=1.0,
    )


def _published(score=60.0, confidence=55.0, provisional=False, age=timedelta(hours=1), full=True):
    return PublishedScore(
        item_id="a",
        score=score,
        confidence=confidence,
        provisional=provisional,
        ever_full_confidence=full,
        published_at=NOW - age,
    )


@pytest.fixture
def gate():
    return PublishGate(PublishGateConfig())


class TestMinimums:
    """Tests for minimum-data thresholds."""

    def test_unscored_until_all_minimums_hold(self, gate):
        """Test one missing threshold keeps the item unscored."""
        evidence = Evidence(comparisons=9, distinct_opponents=2, slider_ratings=4, distinct_slider_raters=2)
        decision = gate.evaluate(_candidate(), evidence, None, NOW)

        assert not decision.publish
        assert decision.next_state == PublishState.UNSCORED
        assert decision.missing == {"distinct_opponents": 1}

    def test_first_publish(self, gate):
        """Test meeting every minimum publishes immediately."""
        decision = gate.evaluate(_candidate(), ENOUGH, None, NOW)
        assert decision.publish
        assert decision.reason == "first_publish"
        assert decision.next_state == PublishState.PUBLISHED

    def test_first_publish_provisional(self, gate):
        """Test a provisional candidate publishes as provisional."""
        decision = gate.evaluate(_candidate(provisional=True), ENOUGH, None, NOW)
        assert decision.next_state == PublishState.PROVISIONAL_PUBLISHED

    def test_no_regression_to_unscored(self, gate):
        """Test a published item is never sent back to unscored."""
        thin = Evidence(comparisons=0, distinct_opponents=0, slider_ratings=0, distinct_slider_raters=0)
        decision = gate.evaluate(_candidate(), thin, _published(), NOW)
        assert decision.next_state != PublishState.UNSCORED

    def test_evidence_counts_events_not_weight(self, gate):
        """Test weighted comparisons do not stand in for missing votes."""
        state = ItemRatingState(
            item_id="a",
            total_comparisons=7,
            comparison_events=3,
            distinct_opponents=3,
            total_slider_ratings=2,
            distinct_slider_raters=2,
        )
        evidence = Evidence.from_state(state)

        assert evidence.comparisons == 3
        assert gate.missing_requirements(evidence) == {"comparisons": 2}
        assert gate.requirements(evidence)["comparisons"] == (3, 5)


class TestRepublish:
    """Tests for republish policy."""

    def test_small_change_suppressed(self, gate):
        """Test a change below the threshold is not republished."""
        decision = gate.evaluate(_candidate(score=60.3), ENOUGH, _published(), NOW)
        assert not decision.publish
        assert decision.reason == "unchanged"
        assert decision.next_state == PublishState.PUBLISHED

    def test_threshold_is_inclusive(self, gate):
        """Test a change of exactly the threshold republishes."""
        decision = gate.evaluate(_candidate(score=60.5), ENOUGH, _published(), NOW)
        assert decision.publish
        assert decision.reason == "score_changed"

    def test_tier_change(self, gate):
        """Test crossing a confidence tier republishes without a score change."""
        decision = gate.evaluate(_candidate(confidence=61.0), ENOUGH, _published(), NOW)
        assert decision.publish
        assert decision.reason == "confidence_tier_changed"

    def test_first_full_confidence(self, gate):
        """Test the first non-provisional result republishes."""
        previous = _published(provisional=True, full=False)
        decision = gate.evaluate(_candidate(), ENOUGH, previous, NOW)
        assert decision.publish
        assert decision.reason == "first_full_confidence"

    def test_grace_period_defers_change(self, gate):
        """Test a meaningful change inside the grace period is deferred."""
        previous = _published(age=timedelta(minutes=1))
        decision = gate.evaluate(_candidate(score=70.0), ENOUGH, previous, NOW)

        assert not decision.publish
        assert decision.next_state == PublishState.STALE_PENDING_REPUBLISH
        assert decision.retry_after == previous.published_at + timedelta(minutes=5)

    def test_grace_period_small_change(self, gate):
        """Test a tiny change inside the grace period is simply unchanged."""
        previous = _published(age=timedelta(minutes=1))
        decision = gate.evaluate(_candidate(score=60.1), ENOUGH, previous, NOW)
        assert not decision.publish
        assert decision.reason == "unchanged"
        assert decision.retry_after is None


class TestConfidenceTier:
    """Tests for confidence tier bucketing."""

    @pytest.mark.parametrize(("confidence", "tier"), [(0, 0), (19.9, 0), (20, 1), (55, 4), (95, 8)])
    def test_bucket(self, gate, confidence, tier):
        """Test boundaries count as reached."""
        assert gate.confidence_tier(confidence) == tier
