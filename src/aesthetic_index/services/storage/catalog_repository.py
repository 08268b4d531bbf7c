"""Collections, items and voters known to the pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func
from sqlmodel import Session, select

from aesthetic_index.models import Collection, Item, Voter

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from aesthetic_index.core.config import StorageConfig

logger = structlog.get_logger()


def collection_size(session: Session, collection_id: str) -> int:
    """Declared supply of a collection, falling back to its registered item count."""
    collection = session.get(Collection, collection_id)
    if collection is not None and collection.total_supply:
        return collection.total_supply
    statement = select(func.count()).select_from(Item).where(Item.collection_id == collection_id)
    return int(session.exec(statement).one())


class CatalogRepository(AsyncRepository):
    """Register and look up collections, items and voters."""

    def __init__(self, engine: Engine, config: StorageConfig | None = None) -> None:
        super().__init__(engine, config)

    async def register_collection(
        self, collection_id: str, name: str = "", total_supply: int | None = None
    ) -> None:
        """Create or update a collection."""

        def _save(session: Session) -> None:
            existing = session.get(Collection, collection_id)
            if existing:
                existing.name = name or existing.name
                existing.total_supply = total_supply
                session.add(existing)
            else:
                session.add(Collection(id=collection_id, name=name, total_supply=total_supply))
            session.commit()

        await self._run_session(_save)

    async def register_items(self, collection_id: str, item_ids: list[str]) -> int:
        """Register items under a collection; returns how many were new."""

        def _save(session: Session) -> int:
            if session.get(Collection, collection_id) is None:
                session.add(Collection(id=collection_id))
            added = 0
            for item_id in item_ids:
                if session.get(Item, item_id) is None:
                    session.add(Item(id=item_id, collection_id=collection_id))
                    added += 1
            session.commit()
            return added

        return await self._run_session(_save)

    async def register_voters(self, voter_ids: list[str]) -> int:
        """Register voters; returns how many were new."""

        def _save(session: Session) -> int:
            added = 0
            for voter_id in voter_ids:
                if session.get(Voter, voter_id) is None:
                    session.add(Voter(id=voter_id))
                    added += 1
            session.commit()
            return added

        return await self._run_session(_save)

    async def import_catalog(self, data: dict[str, Any]) -> dict[str, int]:
        """Load a catalog document.

        Args:
            data: Mapping with a `collections` list (each with `id`, optional
                `name`, `total_supply` and `items`) and a `voters` list.

        Returns:
            Counts of collections, new items and new voters.
        """
        collections = data.get("collections") or []
        items_added = 0
        for entry in collections:
            await self.register_collection(
                entry["id"], entry.get("name", ""), entry.get("total_supply")
            )
            items_added += await self.register_items(entry["id"], list(entry.get("items") or []))
        voters_added = await self.register_voters(list(data.get("voters") or []))

        logger.info(
            "catalog_imported",
            collections=len(collections),
            items=items_added,
            voters=voters_added,
        )
        return {"collections": len(collections), "items": items_added, "voters": voters_added}

    async def get_item(self, item_id: str) -> Item | None:
        return await self._run_session(lambda session: session.get(Item, item_id))

    async def list_collection_ids(self) -> list[str]:
        def _get(session: Session) -> list[str]:
            return list(session.exec(select(Collection.id).order_by(Collection.id)).all())

        return await self._run_session(_get)
