"""Tests for collection index refresh and retrieval."""

from conftest import seed_publishable


class TestCollectionService:
    """Tests for collection index persistence."""

    async def test_unscored_collection(self, pipeline):
        """Test a collection without published scores returns a neutral view."""
        view = await pipeline.get_collection_index("nothing-here")
        assert view.index == 0.0
        assert view.provisional
        assert view.scored_items == 0

    async def test_refresh_after_publish(self, pipeline):
        """Test the index is computed on demand and history is kept."""
        await seed_publishable(pipeline)
        await pipeline.run_batch()

        view = await pipeline.get_collection_index("genesis")
        published = await pipeline.get_published_score("a")

        assert view.scored_items == 1
        assert view.provisional
        assert 0 < view.index <= 100
        # Single score: no spread penalty, coverage 1 of 4 items
        index = await pipeline.store.collections.get_index("genesis")
        assert index.trimmed_mean == published.score
        assert index.cohesion_penalty == 0.0
        assert index.coverage_fraction == 0.25

        await pipeline.get_collection_index("genesis", refresh=True)
        history = await pipeline.store.collections.get_history("genesis")
        assert len(history) == 2

    async def test_refresh_stale(self, pipeline, clock):
        """Test only missing or outdated indices are refreshed."""
        await seed_publishable(pipeline)
        await pipeline.run_batch()

        assert await pipeline.refresh_collections() == ["genesis"]
        assert await pipeline.refresh_collections() == []

        clock.advance(hours=25)
        assert await pipeline.refresh_collections() == ["genesis"]
