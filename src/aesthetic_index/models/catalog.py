from sqlmodel import Field, SQLModel


class Collection(SQLModel, table=True):
    """A collection of items; `total_supply` overrides the registered item count."""

    __tablename__ = "collections"

    id: str = Field(primary_key=True)
    name: str = ""
    total_supply: int | None = None


class Item(SQLModel, table=True):
    """A scorable item belonging to one collection."""

    __tablename__ = "items"

    id: str = Field(primary_key=True)
    collection_id: str = Field(index=True, foreign_key="collections.id")
    name: str = ""


class Voter(SQLModel, table=True):
    """A registered voter."""

    __tablename__ = "voters"

    id: str = Field(primary_key=True)
