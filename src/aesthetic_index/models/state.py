from enum import StrEnum

from pydantic import NaiveDatetime
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from aesthetic_index.core.timeutil import utc_now


class PublishState(StrEnum):
    """Publish lifecycle of an item's externally visible score."""

    UNSCORED = "unscored"
    PROVISIONAL_PUBLISHED = "provisional_published"
    PUBLISHED = "published"
    STALE_PENDING_REPUBLISH = "stale_pending_republish"


class ItemRatingState(SQLModel, table=True):
    """Running aggregates for one item; mutated only by the batch worker."""

    __tablename__ = "item_rating_states"

    item_id: str = Field(primary_key=True)
    rating_mean: float = 1200.0
    rating_uncertainty: float = 350.0
    slider_weighted_sum: float = 0.0
    slider_weight: float = 0.0
    favorite_weighted_sum: float = 0.0
    avg_voter_reliability: float = 1.0
    total_comparisons: int = 0
    comparison_events: int = 0
    total_slider_ratings: int = 0
    total_favorites: int = 0
    distinct_opponents: int = 0
    distinct_slider_raters: int = 0
    last_comparison_event_id: int = 0
    last_slider_event_id: int = 0
    last_favorite_event_id: int = 0
    publish_state: str = PublishState.UNSCORED.value
    updated_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)


class VoterCalibration(SQLModel, table=True):
    """Per-voter slider statistics (Welford) and reliability multiplier."""

    __tablename__ = "voter_calibrations"

    voter_id: str = Field(primary_key=True)
    slider_mean: float = 0.0
    slider_m2: float = 0.0
    slider_variance: float = 225.0
    slider_sample_count: int = 0
    reliability_score: float = 1.0
    aligned_comparisons: int = 0
    total_comparisons: int = 0
    updated_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)


class ItemOpponent(SQLModel, table=True):
    """Distinct opponent seen by an item."""

    __tablename__ = "item_opponents"

    item_id: str = Field(primary_key=True)
    opponent_id: str = Field(primary_key=True)


class ItemSliderRater(SQLModel, table=True):
    """Distinct voter who submitted a slider rating for an item."""

    __tablename__ = "item_slider_raters"

    item_id: str = Field(primary_key=True)
    voter_id: str = Field(primary_key=True)
