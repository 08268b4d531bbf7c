"""DuckDB analytics snapshot of published scores and collection indices."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import duckdb
import structlog

if TYPE_CHECKING:
    from aesthetic_index.models import CollectionIndex, PublishedScore

logger = structlog.get_logger()


class SnapshotDB:
    """Point-in-time DuckDB copy of the externally visible results.

    Each export replaces the previous snapshot tables, so the file always
    mirrors one consistent read of the scoring database.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize snapshot database.

        Args:
            db_path: Path to DuckDB database file.
        """
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        """Create snapshot tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = duckdb.connect(str(self.db_path))
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS published_scores (
                    item_id VARCHAR PRIMARY KEY,
                    collection_id VARCHAR,
                    score DOUBLE NOT NULL,
                    confidence DOUBLE NOT NULL,
                    provisional BOOLEAN NOT NULL,
                    rating_mean DOUBLE,
                    rating_uncertainty DOUBLE,
                    published_at TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS collection_indices (
                    collection_id VARCHAR PRIMARY KEY,
                    index_score DOUBLE NOT NULL,
                    confidence DOUBLE NOT NULL,
                    provisional BOOLEAN NOT NULL,
                    trimmed_mean DOUBLE,
                    cohesion_penalty DOUBLE,
                    coverage_score DOUBLE,
                    scored_items INTEGER,
                    total_items INTEGER,
                    computed_at TIMESTAMP
                )
                """
            )
        finally:
            conn.close()

    async def write(
        self,
        scores: list[tuple[PublishedScore, str]],
        indices: list[CollectionIndex],
    ) -> dict[str, int]:
        """Replace the snapshot contents (async).

        Args:
            scores: Published scores paired with their collection id.
            indices: Stored collection indices.

        Returns:
            Row counts written per table.
        """

        def _write() -> dict[str, int]:
            conn = duckdb.connect(str(self.db_path))
            try:
                conn.execute("BEGIN TRANSACTION")
                conn.execute("DELETE FROM published_scores")
                conn.execute("DELETE FROM collection_indices")
                if scores:
                    conn.executemany(
                        "INSERT INTO published_scores VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        [
                            [
                                s.item_id,
                                collection_id,
                                s.score,
                                s.confidence,
                                s.provisional,
                                s.rating_mean,
                                s.rating_uncertainty,
                                s.published_at,
                            ]
                            for s, collection_id in scores
                        ],
                    )
                if indices:
                    conn.executemany(
                        "INSERT INTO collection_indices VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        [
                            [
                                c.collection_id,
                                c.index_score,
                                c.confidence,
                                c.provisional,
                                c.trimmed_mean,
                                c.cohesion_penalty,
                                c.coverage_score,
                                c.scored_items,
                                c.total_items,
                                c.computed_at,
                            ]
                            for c in indices
                        ],
                    )
                conn.execute("COMMIT")
            finally:
                conn.close()
            logger.info(
                "snapshot_written",
                path=str(self.db_path),
                scores=len(scores),
                collections=len(indices),
            )
            return {"published_scores": len(scores), "collection_indices": len(indices)}

        return await asyncio.to_thread(_write)

    async def top_scores(self, limit: int = 10) -> list[tuple[str, float]]:
        """Read back the highest published scores from the snapshot."""

        def _get() -> list[tuple[str, float]]:
            conn = duckdb.connect(str(self.db_path))
            try:
                rows = conn.execute(
                    "SELECT item_id, score FROM published_scores ORDER BY score DESC LIMIT ?",
                    [limit],
                ).fetchall()
                return [(str(item_id), float(score)) for item_id, score in rows]
            finally:
                conn.close()

        return await asyncio.to_thread(_get)
