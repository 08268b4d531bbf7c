"""Collection index inputs and persistence."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import or_
from sqlmodel import Session, col, select

from aesthetic_index.models import (
    Collection,
    CollectionIndex,
    CollectionIndexHistory,
    Item,
    ItemRatingState,
    PublishedScore,
)

from .catalog_repository import collection_size
from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from aesthetic_index.core.config import StorageConfig
    from aesthetic_index.services.collection import CollectionIndexResult


@dataclass(frozen=True)
class CollectionInputs:
    """Published scores of a collection plus the data needed for coverage."""

    collection_id: str
    scores: list[float]
    votes: list[int]
    total_items: int


class CollectionRepository(AsyncRepository):
    """Read collection inputs and store computed indices."""

    def __init__(self, engine: Engine, config: StorageConfig | None = None) -> None:
        super().__init__(engine, config)

    async def get_inputs(self, collection_id: str) -> CollectionInputs:
        """Collect published scores and vote depth for a collection's items."""

        def _get(session: Session) -> CollectionInputs:
            statement = (
                select(PublishedScore.score, ItemRatingState.total_comparisons)
                .join(Item, col(Item.id) == col(PublishedScore.item_id))
                .join(
                    ItemRatingState,
                    col(ItemRatingState.item_id) == col(PublishedScore.item_id),
                    isouter=True,
                )
                .where(Item.collection_id == collection_id)
            )
            rows = session.exec(statement).all()
            return CollectionInputs(
                collection_id=collection_id,
                scores=[float(score) for score, _ in rows],
                votes=[int(votes or 0) for _, votes in rows],
                total_items=collection_size(session, collection_id),
            )

        return await self._run_session(_get)

    async def save_index(self, result: CollectionIndexResult, now: datetime) -> None:
        """Replace the stored index for a collection and append a history row."""

        def _save(session: Session) -> None:
            stored = session.get(CollectionIndex, result.collection_id)
            if stored is None:
                stored = CollectionIndex(collection_id=result.collection_id)
            for field, value in result.as_record().items():
                setattr(stored, field, value)
            stored.computed_at = now
            session.add(stored)
            session.add(
                CollectionIndexHistory(
                    collection_id=result.collection_id,
                    index_score=result.index_score,
                    confidence=result.confidence,
                    provisional=result.provisional,
                    trimmed_mean=result.trimmed_mean,
                    cohesion_penalty=result.cohesion_penalty,
                    coverage_score=result.coverage_score,
                    scored_items=result.scored_items,
                    computed_at=now,
                )
            )
            session.commit()

        await self._run_session(_save)

    async def get_index(self, collection_id: str) -> CollectionIndex | None:
        return await self._run_session(lambda session: session.get(CollectionIndex, collection_id))

    async def get_history(self, collection_id: str, limit: int = 20) -> list[CollectionIndexHistory]:
        def _get(session: Session) -> list[CollectionIndexHistory]:
            statement = (
                select(CollectionIndexHistory)
                .where(CollectionIndexHistory.collection_id == collection_id)
                .order_by(col(CollectionIndexHistory.id).desc())
                .limit(limit)
            )
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def list_indices(self) -> list[CollectionIndex]:
        def _get(session: Session) -> list[CollectionIndex]:
            statement = select(CollectionIndex).order_by(col(CollectionIndex.index_score).desc())
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def stale_collection_ids(self, cutoff: datetime) -> list[str]:
        """Collections with no index or an index computed before `cutoff`."""

        def _get(session: Session) -> list[str]:
            statement = (
                select(Collection.id)
                .join(
                    CollectionIndex,
                    col(CollectionIndex.collection_id) == col(Collection.id),
                    isouter=True,
                )
                .where(
                    or_(
                        col(CollectionIndex.collection_id).is_(None),
                        col(CollectionIndex.computed_at) < cutoff,
                    )
                )
                .order_by(col(Collection.id))
            )
            return list(session.exec(statement).all())

        return await self._run_session(_get)
