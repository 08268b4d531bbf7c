"""Tests for report formatting and the DuckDB snapshot."""

from aesthetic_index.models import CollectionIndex, PublishedScore
from aesthetic_index.pipeline import UnscoredProgress
from aesthetic_index.services.reporting import (
    format_batch_result,
    format_collection_indices,
    format_leaderboard,
    format_status,
    format_unscored_progress,
)
from aesthetic_index.services.storage import SnapshotDB
from aesthetic_index.services.worker import BatchResult


def _score(item_id, score, provisional=False):
    return PublishedScore(
        item_id=item_id,
        score=score,
        confidence=72.5,
        provisional=provisional,
        rating_mean=1340.0,
        rating_uncertainty=88.0,
    )


class TestFormatting:
    """Tests for markdown tables."""

    def test_leaderboard_table(self):
        """Test leaderboard rows are ranked in the given order."""
        text = format_leaderboard([(_score("a", 81.25), "genesis"), (_score("b", 64.0, True), "dunes")])

        assert text.startswith("# Leaderboard")
        assert "| Rank" in text
        lines = [line for line in text.splitlines() if line.startswith("|")]
        assert "a" in lines[2] and "81.25" in lines[2]
        assert "b" in lines[3] and "yes" in lines[3]
        assert "64.00" in lines[3]

    def test_empty_leaderboard(self):
        """Test an empty leaderboard says so."""
        assert "No published scores yet" in format_leaderboard([])

    def test_collection_table(self):
        """Test collection indices render with penalty as a percentage."""
        index = CollectionIndex(
            collection_id="genesis",
            index_score=66.4,
            confidence=81,
            provisional=False,
            trimmed_mean=70.0,
            cohesion_penalty=0.1,
            scored_items=9,
            total_items=10,
        )
        text = format_collection_indices([index])
        assert "66.40" in text
        assert "10.0%" in text
        assert "9/10" in text

    def test_batch_result(self):
        """Test a failed batch is flagged."""
        text = format_batch_result(BatchResult(claimed=4, processed=1, errors=["x", "y", "z"], success=False))
        assert "FAILED" in text
        assert "Errors" in text

    def test_status(self):
        """Test status keys become readable labels."""
        text = format_status({"dirty": 3, "oldest_age_seconds": 12.0})
        assert "oldest age seconds" in text

    def test_preformatted_numbers_kept(self):
        """Test fixed-precision cells are printed as formatted, not re-parsed."""
        index = CollectionIndex(
            collection_id="dunes",
            index_score=50.0,
            confidence=40,
            provisional=True,
            trimmed_mean=52.1,
            cohesion_penalty=0.0,
            scored_items=2,
            total_items=10,
        )
        text = format_collection_indices([index])
        assert "50.00" in text
        assert "52.10" in text

    def test_unscored_progress(self):
        """Test the progress table lists every requirement and the shortfall."""
        progress = UnscoredProgress(
            item_id="a",
            state="unscored",
            have={"comparisons": 3, "slider_ratings": 2},
            required={"comparisons": 5, "slider_ratings": 2},
            needed={"comparisons": 2},
            confidence=31.0,
        )
        text = format_unscored_progress(progress)

        assert text.startswith("# a: awaiting data")
        lines = [line for line in text.splitlines() if line.startswith("|")]
        assert "comparisons" in lines[2] and "| 2 " in lines[2]
        assert "slider ratings" in lines[3] and "| 0 " in lines[3]


class TestSnapshotDB:
    """Tests for the DuckDB analytics snapshot."""

    async def test_write_replaces_contents(self, tmp_path):
        """Test each export replaces the previous snapshot."""
        snapshot = SnapshotDB(tmp_path / "snapshot.duckdb")

        counts = await snapshot.write([(_score("a", 40.0), "genesis"), (_score("b", 90.0), "genesis")], [])
        assert counts == {"published_scores": 2, "collection_indices": 0}
        assert await snapshot.top_scores() == [("b", 90.0), ("a", 40.0)]

        await snapshot.write([(_score("c", 55.0), "dunes")], [])
        assert await snapshot.top_scores() == [("c", 55.0)]
