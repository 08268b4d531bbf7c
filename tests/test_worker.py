"""Tests for the batch worker."""

import asyncio
from datetime import timedelta

import pytest

from aesthetic_index.models import PublishState
from aesthetic_index.services.worker import BatchWorker

from conftest import CATALOG, seed_publishable


class FailingWorker(BatchWorker):
    """Worker that raises for a chosen set of items."""

    def __init__(self, *args, failing=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.failing = set(failing)

    async def process_item(self, claim):
        if claim.item_id in self.failing:
            msg = f"boom {claim.item_id}"
            raise RuntimeError(msg)
        return await super().process_item(claim)


class SlowWorker(BatchWorker):
    """Worker that sleeps before processing and records what it handled."""

    def __init__(self, *args, delay=0.0, slow=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.delay = delay
        self.slow = set(slow) if slow is not None else None
        self.handled = []
        self.active = 0
        self.peak = 0

    async def process_item(self, claim):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.slow is None or claim.item_id in self.slow:
                await asyncio.sleep(self.delay)
            outcome = await super().process_item(claim)
        finally:
            self.active -= 1
        self.handled.append(claim.item_id)
        return outcome


async def _queue_catalog(store, clock):
    await store.catalog.import_catalog(CATALOG)
    for item_id in ("a", "b", "c", "d"):
        await store.queue.mark_dirty(item_id, now=clock())


class TestRunBatch:
    """Tests for end-to-end batch processing."""

    async def test_publishes_item_with_enough_evidence(self, pipeline):
        """Test an item meeting every minimum is published and others stay neutral."""
        await seed_publishable(pipeline)

        result = await pipeline.run_batch()

        assert result.success
        assert result.claimed == 4
        assert result.processed == 4
        assert result.published == 1

        view = await pipeline.get_published_score("a")
        assert view.state in (PublishState.PUBLISHED, PublishState.PROVISIONAL_PUBLISHED)
        assert 0 <= view.score <= 100
        assert view.confidence > 0

        unscored = await pipeline.get_published_score("b")
        assert unscored.score == 50.0
        assert unscored.confidence == 0.0
        assert unscored.provisional
        assert unscored.state == PublishState.UNSCORED

        state = await pipeline.store.states.get_item_state("a")
        assert state.total_comparisons == 5
        assert state.distinct_opponents == 3
        assert state.distinct_slider_raters == 2

    async def test_rerun_is_idempotent(self, pipeline):
        """Test reprocessing an item without new events changes nothing."""
        await seed_publishable(pipeline)
        await pipeline.run_batch()
        before = await pipeline.get_published_score("a")
        state_before = await pipeline.store.states.get_item_state("a")

        await pipeline.mark_dirty("a")
        result = await pipeline.run_batch()

        assert result.processed == 1
        assert result.published == 0
        assert await pipeline.get_published_score("a") == before
        state_after = await pipeline.store.states.get_item_state("a")
        assert state_after.rating_mean == state_before.rating_mean
        assert state_after.total_comparisons == state_before.total_comparisons

    async def test_super_vote_counts_once_toward_minimum(self, pipeline):
        """Test the comparison minimum counts votes, not vote weight."""
        await pipeline.store.catalog.import_catalog(CATALOG)
        await pipeline.record_comparison("a", "b", "a", "v1", weight=5)
        await pipeline.record_comparison("a", "c", "a", "v1")
        await pipeline.record_comparison("a", "d", "a", "v2")
        await pipeline.record_slider("v1", "a", 80)
        await pipeline.record_slider("v2", "a", 70)
        await pipeline.ingestion.drain()

        await pipeline.run_batch()

        state = await pipeline.store.states.get_item_state("a")
        assert state.comparison_events == 3
        assert state.total_comparisons == 7
        assert state.publish_state == PublishState.UNSCORED
        assert await pipeline.store.scores.get_published_score("a") is None

    async def test_empty_queue(self, pipeline):
        """Test a batch over an empty queue succeeds with nothing claimed."""
        result = await pipeline.run_batch()
        assert result.success
        assert result.claimed == 0

    async def test_unknown_item_dropped(self, pipeline):
        """Test a dirty item missing from the catalog is skipped and dequeued."""
        await pipeline.mark_dirty("ghost")
        result = await pipeline.run_batch()

        assert result.skipped == 1
        assert await pipeline.store.queue.get("ghost") is None

    async def test_unknown_voter_event_skipped(self, pipeline):
        """Test an event from an unregistered voter is skipped without blocking the item."""
        await pipeline.store.catalog.import_catalog(CATALOG)
        await pipeline.record_slider("stranger", "a", 90)
        await pipeline.record_slider("v1", "a", 40)

        result = await pipeline.run_batch()

        assert result.success
        state = await pipeline.store.states.get_item_state("a")
        assert state.total_slider_ratings == 1
        assert state.last_slider_event_id == 2


class TestFailureIsolation:
    """Tests for per-item failure handling."""

    async def test_one_failure_does_not_stop_batch(self, config, store, clock):
        """Test a failing item is released while the rest are processed."""
        await store.catalog.import_catalog(CATALOG)
        for item_id in ("a", "b", "c", "d"):
            await store.queue.mark_dirty(item_id, now=clock())
        worker = FailingWorker(config, store, clock=clock, failing={"b"})

        result = await worker.run_batch()

        assert result.success
        assert result.claimed == 4
        assert result.processed == 3
        assert result.errors == ["b: boom b"]
        row = await store.queue.get("b")
        assert row is not None
        assert row.claim_token is None

        retry = await BatchWorker(config, store, clock=clock).run_batch()
        assert retry.claimed == 1
        assert retry.processed == 1

    async def test_majority_failure_marks_batch_failed(self, config, store, clock):
        """Test more than half the items failing flags a systemic problem."""
        await store.catalog.import_catalog(CATALOG)
        for item_id in ("a", "b", "c", "d"):
            await store.queue.mark_dirty(item_id, now=clock())
        worker = FailingWorker(config, store, clock=clock, failing={"a", "b", "c"})

        result = await worker.run_batch()

        assert not result.success
        assert result.claimed == 4
        assert len(result.errors) == 3
        assert worker.totals["errors"] == 3

    async def test_crashed_claim_not_double_processed(self, pipeline, clock):
        """Test items held by a crashed run wait for the claim timeout."""
        await seed_publishable(pipeline)
        await pipeline.store.queue.claim(10, "crashed", timedelta(minutes=15), now=clock())

        clock.advance(minutes=5)
        assert (await pipeline.run_batch()).claimed == 0

        clock.advance(minutes=11)
        result = await pipeline.run_batch()
        assert result.claimed == 4
        assert result.published == 1


class TestGracePeriod:
    """Tests for deferred republishing."""

    async def test_change_inside_grace_is_deferred(self, pipeline, clock):
        """Test a quick follow-up change waits for the grace period, then publishes."""
        await seed_publishable(pipeline)
        await pipeline.run_batch()
        first = await pipeline.get_published_score("a")

        clock.advance(minutes=1)
        # Favorites are urgent enough to trigger a priority batch immediately
        await pipeline.record_favorite("v3", "a")
        await pipeline.ingestion.drain()

        state = await pipeline.store.states.get_item_state("a")
        assert state.publish_state == PublishState.STALE_PENDING_REPUBLISH
        assert (await pipeline.get_published_score("a")).score == first.score

        clock.advance(minutes=1)
        assert (await pipeline.run_batch()).claimed == 0

        clock.advance(minutes=4)
        result = await pipeline.run_batch()
        assert result.published == 1
        assert (await pipeline.get_published_score("a")).score > first.score


class TestPacing:
    """Tests for per-item timeouts, the batch time cap and concurrency."""

    async def test_item_timeout_releases_claim(self, config, store, clock):
        """Test an item exceeding its time limit fails alone and goes back to the queue."""
        await _queue_catalog(store, clock)
        config.batch.item_timeout_seconds = 0.2
        worker = SlowWorker(config, store, clock=clock, delay=2.0, slow={"b"})

        result = await worker.run_batch()

        assert result.success
        assert result.claimed == 4
        assert result.processed == 3
        assert result.errors == ["b: TimeoutError"]
        row = await store.queue.get("b")
        assert row is not None
        assert row.claim_token is None

    async def test_time_cap_stops_claiming(self, config, store, clock):
        """Test no new chunk is claimed once the soft time cap has passed."""
        await _queue_catalog(store, clock)
        config.batch.max_batch_seconds = 0.1
        config.batch.claim_chunk_size = 1
        worker = SlowWorker(config, store, clock=clock, delay=0.2)

        result = await worker.run_batch()

        assert result.stopped_early
        assert result.success
        assert result.claimed == 1
        assert result.processed == 1
        stats = await store.queue.stats(high_priority=10, now=clock())
        assert stats["dirty"] == 3
        assert stats["claimed"] == 0

    async def test_items_processed_concurrently(self, config, store, clock):
        """Test max_concurrency bounds how many items are in flight at once."""
        await _queue_catalog(store, clock)
        config.batch.max_concurrency = 3
        worker = SlowWorker(config, store, clock=clock, delay=0.1)

        result = await worker.run_batch()

        assert result.processed == 4
        assert worker.peak == 3

    async def test_sequential_by_default(self, config, store, clock):
        """Test items are processed one at a time unless concurrency is raised."""
        await _queue_catalog(store, clock)
        worker = SlowWorker(config, store, clock=clock, delay=0.01)

        await worker.run_batch()

        assert worker.peak == 1
        assert sorted(worker.handled) == ["a", "b", "c", "d"]


class TestCancellation:
    """Tests for shutting down mid-batch."""

    async def test_cancel_releases_claims(self, config, store, clock):
        """Test cancelling a run returns every claimed item to the queue."""
        await _queue_catalog(store, clock)
        worker = SlowWorker(config, store, clock=clock, delay=30.0)

        task = asyncio.create_task(worker.run_batch())
        for _ in range(200):
            if worker.active:
                break
            await asyncio.sleep(0.01)
        assert worker.active == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        for item_id in ("a", "b", "c", "d"):
            row = await store.queue.get(item_id)
            assert row is not None
            assert row.claim_token is None
        assert worker.handled == []


class TestParallelBatches:
    """Tests for several batch runs sharing one queue."""

    async def test_runs_process_disjoint_items(self, config, store, clock):
        """Test two concurrent runs never process the same item."""
        await _queue_catalog(store, clock)
        config.batch.claim_chunk_size = 1
        first = SlowWorker(config, store, clock=clock, delay=0.05)
        second = SlowWorker(config, store, clock=clock, delay=0.05)

        results = await asyncio.gather(first.run_batch(), second.run_batch())

        assert not set(first.handled) & set(second.handled)
        assert sorted(first.handled + second.handled) == ["a", "b", "c", "d"]
        assert sum(r.claimed for r in results) == 4
        assert all(r.success for r in results)
        assert await store.queue.stats(high_priority=10, now=clock()) == {
            "dirty": 0,
            "claimed": 0,
            "high_priority": 0,
            "oldest_age_seconds": 0.0,
        }


class TestUnscoredProgress:
    """Tests for reporting how far an item is from its first publish."""

    async def test_fresh_item_needs_everything(self, pipeline):
        """Test an item with no folded events lacks every minimum."""
        progress = await pipeline.get_unscored_progress("a")

        assert not progress.ready
        assert progress.state == PublishState.UNSCORED
        assert progress.needed == progress.required
        assert progress.required == {
            "comparisons": 5,
            "distinct_opponents": 3,
            "slider_ratings": 2,
            "distinct_slider_raters": 2,
        }

    async def test_shortfall_after_partial_evidence(self, pipeline):
        """Test the shortfall shrinks as events are folded."""
        await pipeline.store.catalog.import_catalog(CATALOG)
        await pipeline.record_comparison("a", "b", "a", "v1")
        await pipeline.record_comparison("a", "c", "c", "v2")
        await pipeline.record_slider("v1", "a", 60)
        await pipeline.run_batch()

        progress = await pipeline.get_unscored_progress("a")

        assert progress.have["comparisons"] == 2
        assert progress.needed == {
            "comparisons": 3,
            "distinct_opponents": 1,
            "slider_ratings": 1,
            "distinct_slider_raters": 1,
        }
        assert progress.confidence > 0

    async def test_published_item_is_ready(self, pipeline):
        """Test an item meeting every minimum reports nothing missing."""
        await seed_publishable(pipeline)
        await pipeline.run_batch()

        progress = await pipeline.get_unscored_progress("a")

        assert progress.ready
        assert progress.needed == {}
