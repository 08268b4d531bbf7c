"""Published score persistence."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlmodel import Session, col, select

from aesthetic_index.models import Item, PublishedScore

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from aesthetic_index.core.config import StorageConfig
    from aesthetic_index.services.scoring.composer import ComposedScore


def write_published_score(
    session: Session,
    item_id: str,
    candidate: ComposedScore,
    confidence_tier: int,
    rating_mean: float,
    rating_uncertainty: float,
    now: datetime,
) -> PublishedScore:
    """Overwrite an item's published score (no commit).

    Only the publish path of the batch worker calls this.
    """
    published = session.get(PublishedScore, item_id)
    if published is None:
        published = PublishedScore(
            item_id=item_id,
            score=candidate.score,
            confidence=candidate.confidence,
            provisional=candidate.provisional,
        )

    published.score = candidate.score
    published.confidence = candidate.confidence
    published.provisional = candidate.provisional
    published.confidence_tier = confidence_tier
    published.rating_component = candidate.rating_component
    published.slider_component = candidate.slider_component
    published.favorite_component = candidate.favorite_component
    published.reliability_factor = candidate.reliability_factor
    published.rating_mean = rating_mean
    published.rating_uncertainty = rating_uncertainty
    published.ever_full_confidence = published.ever_full_confidence or not candidate.provisional
    published.publish_count += 1
    published.published_at = now
    published.updated_at = now
    session.add(published)
    return published


class ScoreRepository(AsyncRepository):
    """Query published scores."""

    def __init__(self, engine: Engine, config: StorageConfig | None = None) -> None:
        super().__init__(engine, config)

    async def get_published_score(self, item_id: str) -> PublishedScore | None:
        return await self._run_session(lambda session: session.get(PublishedScore, item_id))

    async def get_leaderboard(
        self, collection_id: str | None = None, limit: int = 20
    ) -> list[tuple[PublishedScore, str]]:
        """Published scores sorted by score, with each item's collection id."""

        def _get(session: Session) -> list[tuple[PublishedScore, str]]:
            statement = select(PublishedScore, Item.collection_id).join(
                Item, col(Item.id) == col(PublishedScore.item_id)
            )
            if collection_id is not None:
                statement = statement.where(Item.collection_id == collection_id)
            statement = statement.order_by(col(PublishedScore.score).desc()).limit(limit)
            return [(score, coll) for score, coll in session.exec(statement).all()]

        return await self._run_session(_get)

    async def count_published(self) -> dict[str, int]:
        def _count(session: Session) -> dict[str, int]:
            rows = session.exec(
                select(PublishedScore.provisional, func.count()).group_by(
                    PublishedScore.provisional
                )
            ).all()
            counts = {bool(provisional): int(n) for provisional, n in rows}
            return {"published": counts.get(False, 0), "provisional": counts.get(True, 0)}

        return await self._run_session(_count)
