from pydantic import NaiveDatetime
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from aesthetic_index.core.timeutil import utc_now


class PublishedScore(SQLModel, table=True):
    """Externally visible score for an item, written only when the publish gate allows."""

    __tablename__ = "published_scores"

    item_id: str = Field(primary_key=True)
    score: float
    confidence: float
    provisional: bool
    confidence_tier: int = 0
    rating_component: float = 0.0
    slider_component: float = 0.0
    favorite_component: float = 0.0
    reliability_factor: float = 1.0
    rating_mean: float = 0.0
    rating_uncertainty: float = 0.0
    ever_full_confidence: bool = False
    publish_count: int = 0
    published_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)
    updated_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)


class CollectionIndex(SQLModel, table=True):
    """Latest Collection Aesthetic Index for a collection."""

    __tablename__ = "collection_indices"

    collection_id: str = Field(primary_key=True)
    mean: float = 0.0
    std: float = 0.0
    trimmed_mean: float = 0.0
    trimmed_std: float = 0.0
    cohesion_penalty: float = 0.0
    coverage_fraction: float = 0.0
    depth_fraction: float = 0.0
    coverage_score: float = 0.0
    uncertainty_factor: float = 0.0
    confidence: float = 0.0
    index_score: float = 0.0
    provisional: bool = True
    scored_items: int = 0
    total_items: int = 0
    total_votes: int = 0
    computed_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)


class CollectionIndexHistory(SQLModel, table=True):
    """One row per index recomputation."""

    __tablename__ = "collection_index_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id: int | None = Field(default=None, primary_key=True)
    collection_id: str = Field(index=True)
    index_score: float
    confidence: float
    provisional: bool
    trimmed_mean: float
    cohesion_penalty: float
    coverage_score: float
    scored_items: int
    computed_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)
