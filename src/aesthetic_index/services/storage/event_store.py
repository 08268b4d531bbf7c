"""Append-only comparison, slider and favorite event streams."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func
from sqlmodel import Session, col, select

from aesthetic_index.core.timeutil import utc_now
from aesthetic_index.models import (
    ComparisonEvent,
    EventStream,
    FavoriteEvent,
    ItemRatingState,
    SliderEvent,
)

from .repository import AsyncRepository

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from sqlalchemy import Engine

    from aesthetic_index.core.config import StorageConfig

logger = structlog.get_logger()

StreamEvent = ComparisonEvent | SliderEvent | FavoriteEvent


def select_events_since(
    session: Session,
    item_id: str,
    stream: EventStream,
    after_id: int,
    limit: int,
) -> list[Any]:
    """Read events for an item with id greater than `after_id`, oldest first.

    Args:
        session: Open session.
        item_id: Item whose events to read.
        stream: Which event stream to read.
        after_id: Exclusive lower bound on event id.
        limit: Maximum events to return.

    Returns:
        Events ordered by ascending id.
    """
    if stream == EventStream.COMPARISONS:
        statement = select(ComparisonEvent).where(
            (ComparisonEvent.item_a_id == item_id) | (ComparisonEvent.item_b_id == item_id),
            col(ComparisonEvent.id) > after_id,
        )
        model: type[StreamEvent] = ComparisonEvent
    elif stream == EventStream.SLIDERS:
        statement = select(SliderEvent).where(
            SliderEvent.item_id == item_id, col(SliderEvent.id) > after_id
        )
        model = SliderEvent
    else:
        statement = select(FavoriteEvent).where(
            FavoriteEvent.item_id == item_id, col(FavoriteEvent.id) > after_id
        )
        model = FavoriteEvent

    statement = statement.order_by(col(model.id)).limit(limit)
    return list(session.exec(statement).all())


def count_comparisons(session: Session, item_id: str, since: datetime | None = None) -> int:
    """Count comparison events involving an item, optionally only those since a time."""
    statement = (
        select(func.count())
        .select_from(ComparisonEvent)
        .where((ComparisonEvent.item_a_id == item_id) | (ComparisonEvent.item_b_id == item_id))
    )
    if since is not None:
        statement = statement.where(col(ComparisonEvent.created_at) >= since)
    return int(session.exec(statement).one())


def _current_rating(session: Session, item_id: str, default_rating: float) -> float:
    state = session.get(ItemRatingState, item_id)
    return state.rating_mean if state else default_rating


def insert_comparison(
    session: Session,
    item_a_id: str,
    item_b_id: str,
    winner_id: str | None,
    voter_id: str,
    weight: int = 1,
    default_rating: float = 1200.0,
    created_at: datetime | None = None,
) -> ComparisonEvent:
    """Add a pairwise vote with both items' current ratings (flush, no commit).

    Args:
        session: Open session.
        item_a_id: First item shown.
        item_b_id: Second item shown.
        winner_id: Chosen item, or None for a no-preference vote.
        voter_id: Voter who cast the vote.
        weight: Vote weight (1 for normal, 5 for super).
        default_rating: Snapshot used for an item that was never folded.
        created_at: Event time; defaults to now.

    Returns:
        The flushed event, with its id assigned.

    Raises:
        ValueError: If both sides are the same item or the weight is not positive.
    """
    if item_a_id == item_b_id:
        msg = "A comparison needs two different items"
        raise ValueError(msg)
    if weight < 1:
        msg = f"Vote weight must be positive, got {weight}"
        raise ValueError(msg)

    event = ComparisonEvent(
        item_a_id=item_a_id,
        item_b_id=item_b_id,
        winner_id=winner_id,
        voter_id=voter_id,
        weight=weight,
        rating_a_before=_current_rating(session, item_a_id, default_rating),
        rating_b_before=_current_rating(session, item_b_id, default_rating),
        created_at=created_at or utc_now(),
    )
    session.add(event)
    session.flush()
    return event


def insert_slider(
    session: Session,
    voter_id: str,
    item_id: str,
    raw_score: float,
    created_at: datetime | None = None,
) -> SliderEvent:
    """Add a raw 0-100 slider rating (flush, no commit)."""
    if not 0 <= raw_score <= 100:
        msg = f"Slider score must be within 0-100, got {raw_score}"
        raise ValueError(msg)
    event = SliderEvent(
        item_id=item_id,
        voter_id=voter_id,
        raw_score=float(raw_score),
        created_at=created_at or utc_now(),
    )
    session.add(event)
    session.flush()
    return event


def insert_favorite(
    session: Session,
    voter_id: str,
    item_id: str,
    created_at: datetime | None = None,
) -> FavoriteEvent:
    """Add a favorite signal (flush, no commit)."""
    event = FavoriteEvent(item_id=item_id, voter_id=voter_id, created_at=created_at or utc_now())
    session.add(event)
    session.flush()
    return event


class EventStore(AsyncRepository):
    """Append and read raw voting events.

    Ids are strictly increasing per stream. Appends do no validation against
    the catalog; unknown items or voters are caught when events are folded.
    An append that times out is not retried, since its thread may still commit.
    """

    def __init__(
        self,
        engine: Engine,
        config: StorageConfig | None = None,
        default_rating: float = 1200.0,
    ) -> None:
        super().__init__(engine, config)
        self.default_rating = default_rating

    async def _append(self, insert: Callable[[Session], StreamEvent]) -> int:
        def _write(session: Session) -> int:
            event = insert(session)
            session.commit()
            return int(event.id)

        return await self._run_session(_write, retry_timeouts=False)

    async def append_comparison(
        self,
        item_a_id: str,
        item_b_id: str,
        winner_id: str | None,
        voter_id: str,
        weight: int = 1,
    ) -> int:
        """Append a pairwise vote and snapshot both items' current ratings.

        Returns:
            New event id.
        """
        event_id = await self._append(
            lambda session: insert_comparison(
                session, item_a_id, item_b_id, winner_id, voter_id, weight, self.default_rating
            )
        )
        logger.debug("comparison_appended", event_id=event_id, a=item_a_id, b=item_b_id)
        return event_id

    async def append_slider(self, voter_id: str, item_id: str, raw_score: float) -> int:
        """Append a raw 0-100 slider rating and return its id."""
        return await self._append(
            lambda session: insert_slider(session, voter_id, item_id, raw_score)
        )

    async def append_favorite(self, voter_id: str, item_id: str) -> int:
        """Append a favorite signal and return its id."""
        return await self._append(lambda session: insert_favorite(session, voter_id, item_id))

    async def count_comparisons(self, item_id: str, since: datetime | None = None) -> int:
        return await self._run_session(lambda session: count_comparisons(session, item_id, since))

    async def read_events_since(
        self,
        item_id: str,
        stream: EventStream,
        after_id: int = 0,
        limit: int = 500,
    ) -> list[Any]:
        """Read events for an item newer than `after_id`, oldest first."""
        return await self._run_session(
            lambda session: select_events_since(session, item_id, stream, after_id, limit)
        )
