from enum import StrEnum

from pydantic import NaiveDatetime
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from aesthetic_index.core.timeutil import utc_now


class EventStream(StrEnum):
    """Append-only event streams, each with its own id sequence and watermark."""

    COMPARISONS = "comparisons"
    SLIDERS = "sliders"
    FAVORITES = "favorites"


class ComparisonEvent(SQLModel, table=True):
    """A pairwise vote; `winner_id` is None for a no-preference vote.

    Both items' rating means are snapshotted at append time so consensus can be
    judged against what the voter actually saw.
    """

    __tablename__ = "comparison_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id: int | None = Field(default=None, primary_key=True)
    item_a_id: str = Field(index=True)
    item_b_id: str = Field(index=True)
    winner_id: str | None = None
    voter_id: str = Field(index=True)
    weight: int = 1
    rating_a_before: float
    rating_b_before: float
    created_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)


class SliderEvent(SQLModel, table=True):
    """A raw 0-100 slider rating from one voter for one item."""

    __tablename__ = "slider_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id: int | None = Field(default=None, primary_key=True)
    item_id: str = Field(index=True)
    voter_id: str = Field(index=True)
    raw_score: float
    created_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)


class FavoriteEvent(SQLModel, table=True):
    """A favorite ("fire") signal from one voter for one item."""

    __tablename__ = "favorite_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id: int | None = Field(default=None, primary_key=True)
    item_id: str = Field(index=True)
    voter_id: str = Field(index=True)
    created_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)
