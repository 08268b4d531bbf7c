"""Deduplicated dirty-item queue with atomic claims."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from aesthetic_index.core.errors import ClaimLostError
from aesthetic_index.core.timeutil import utc_now
from aesthetic_index.models import DirtyItem

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from aesthetic_index.core.config import StorageConfig

logger = structlog.get_logger()


@dataclass(frozen=True)
class Claim:
    """An item held by one batch run.

    Attributes:
        item_id: Claimed item.
        token: Claim token shared by all items claimed in one round trip.
        priority: Queue priority at claim time.
        version: Queue entry version at claim time.
    """

    item_id: str
    token: str
    priority: int
    version: int


def upsert_dirty(
    session: Session,
    item_id: str,
    priority: int,
    now: datetime,
    not_before: datetime | None = None,
) -> None:
    """Raise or refresh the dirty marker for an item (no commit).

    Repeated raises collapse into one entry: priority keeps the maximum,
    availability keeps the earliest time, and the version is bumped.
    """
    available_at = not_before or now
    row = session.get(DirtyItem, item_id)
    if row is None:
        session.add(
            DirtyItem(
                item_id=item_id,
                priority=priority,
                first_dirty_at=now,
                last_event_at=now,
                available_at=available_at,
            )
        )
        return

    row.priority = max(row.priority, priority)
    row.last_event_at = now
    row.available_at = min(row.available_at, available_at)
    row.version += 1
    session.add(row)


def finish_claim(
    session: Session,
    claim: Claim,
    defer_until: datetime | None = None,
) -> bool:
    """Settle a claim inside the item's processing transaction (no commit).

    If no new events arrived while the claim was held, the entry is removed,
    or kept unclaimed until `defer_until` when a republish was deferred. If the
    item was raised again meanwhile, the entry is released for the next run.

    Returns:
        True if the entry was removed.

    Raises:
        ClaimLostError: If the claim was released or reclaimed by another run.
    """
    statement = select(DirtyItem).where(DirtyItem.item_id == claim.item_id).with_for_update()
    row = session.exec(statement).first()
    if row is None or row.claim_token != claim.token:
        raise ClaimLostError(claim.item_id, claim.token)

    if row.version == claim.version and defer_until is None:
        session.delete(row)
        return True

    if row.version == claim.version:
        row.available_at = defer_until
    row.claim_token = None
    row.claimed_at = None
    row.claimed_version = None
    session.add(row)
    return False


class DirtyQueueRepository(AsyncRepository):
    """Mark, claim, and release dirty items."""

    def __init__(self, engine: Engine, config: StorageConfig | None = None) -> None:
        super().__init__(engine, config)

    async def mark_dirty(
        self,
        item_id: str,
        priority: int = 0,
        not_before: datetime | None = None,
        now: datetime | None = None,
    ) -> None:
        """Raise the dirty marker for an item.

        Args:
            item_id: Item needing re-scoring.
            priority: Queue priority; the entry keeps the highest priority raised.
            not_before: Earliest time the item may be claimed.
            now: Override for the current time.
        """
        timestamp = now or utc_now()

        def _mark(session: Session) -> None:
            upsert_dirty(session, item_id, priority, timestamp, not_before)
            try:
                session.commit()
            except IntegrityError:
                # Lost an insert race; the row exists now, so update it.
                session.rollback()
                upsert_dirty(session, item_id, priority, timestamp, not_before)
                session.commit()

        await self._run_session(_mark)

    async def claim(
        self,
        limit: int,
        token: str,
        claim_timeout: timedelta,
        min_priority: int | None = None,
        now: datetime | None = None,
    ) -> list[Claim]:
        """Atomically claim up to `limit` available items.

        A single conditional UPDATE takes unclaimed entries (or entries whose
        claim is older than `claim_timeout`), highest priority first, then
        oldest first. Rows are read back by token in the same transaction.

        Args:
            limit: Maximum items to claim.
            token: Token identifying this claim.
            claim_timeout: Age after which a claim is considered abandoned.
            min_priority: Only claim entries at or above this priority.
            now: Override for the current time.

        Returns:
            Claims in processing order.
        """
        timestamp = now or utc_now()
        cutoff = timestamp - claim_timeout
        claimable = or_(col(DirtyItem.claim_token).is_(None), col(DirtyItem.claimed_at) < cutoff)

        def _claim(session: Session) -> list[Claim]:
            candidates = (
                select(DirtyItem.item_id)
                .where(claimable, col(DirtyItem.available_at) <= timestamp)
                .order_by(col(DirtyItem.priority).desc(), col(DirtyItem.first_dirty_at))
                .limit(limit)
            )
            if min_priority is not None:
                candidates = candidates.where(col(DirtyItem.priority) >= min_priority)

            statement = (
                update(DirtyItem)
                .where(col(DirtyItem.item_id).in_(candidates), claimable)
                .values(
                    claim_token=token,
                    claimed_at=timestamp,
                    claimed_version=col(DirtyItem.version),
                )
            )
            session.connection().execute(statement)

            rows = session.exec(
                select(DirtyItem)
                .where(DirtyItem.claim_token == token)
                .order_by(col(DirtyItem.priority).desc(), col(DirtyItem.first_dirty_at))
            ).all()
            claims = [
                Claim(
                    item_id=row.item_id,
                    token=token,
                    priority=row.priority,
                    version=row.claimed_version if row.claimed_version is not None else row.version,
                )
                for row in rows
            ]
            session.commit()
            return claims

        claims = await self._run_session(_claim)
        if claims:
            logger.debug("items_claimed", token=token, count=len(claims))
        return claims

    async def release(self, claim: Claim) -> bool:
        """Drop a claim so the item is picked up by the next run.

        Returns:
            True if the claim was still held and has been released.
        """

        def _release(session: Session) -> bool:
            statement = (
                update(DirtyItem)
                .where(
                    col(DirtyItem.item_id) == claim.item_id,
                    col(DirtyItem.claim_token) == claim.token,
                )
                .values(claim_token=None, claimed_at=None, claimed_version=None)
            )
            result = session.connection().execute(statement)
            session.commit()
            return result.rowcount == 1

        return await self._run_session(_release)

    async def get(self, item_id: str) -> DirtyItem | None:
        return await self._run_session(lambda session: session.get(DirtyItem, item_id))

    async def stats(self, high_priority: int, now: datetime | None = None) -> dict[str, Any]:
        """Summarize queue depth for status reporting."""
        timestamp = now or utc_now()

        def _stats(session: Session) -> dict[str, Any]:
            total = session.exec(select(func.count()).select_from(DirtyItem)).one()
            claimed = session.exec(
                select(func.count())
                .select_from(DirtyItem)
                .where(col(DirtyItem.claim_token).is_not(None))
            ).one()
            urgent = session.exec(
                select(func.count())
                .select_from(DirtyItem)
                .where(col(DirtyItem.priority) >= high_priority)
            ).one()
            oldest = session.exec(select(func.min(DirtyItem.first_dirty_at))).one()
            return {
                "dirty": int(total),
                "claimed": int(claimed),
                "high_priority": int(urgent),
                "oldest_age_seconds": (timestamp - oldest).total_seconds() if oldest else 0.0,
            }

        return await self._run_session(_stats)
