from pydantic import NaiveDatetime
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from aesthetic_index.core.timeutil import utc_now


class DirtyItem(SQLModel, table=True):
    """Deduplicated "needs re-scoring" marker for one item.

    `version` is bumped every time the item is raised again, so a worker that
    finishes an item can tell whether new events arrived while it held the claim.
    """

    __tablename__ = "dirty_items"

    item_id: str = Field(primary_key=True)
    priority: int = Field(default=0, index=True)
    first_dirty_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)
    last_event_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)
    available_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)
    version: int = 1
    claim_token: str | None = Field(default=None, index=True)
    claimed_at: NaiveDatetime | None = Field(default=None, sa_type=DateTime)
    claimed_version: int | None = None
