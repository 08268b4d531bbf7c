"""Item rating state and voter calibration persistence."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlmodel import Session

from aesthetic_index.models import (
    ItemOpponent,
    ItemRatingState,
    ItemSliderRater,
    Voter,
    VoterCalibration,
)
from aesthetic_index.ranking.engine import new_item_state, new_voter_calibration

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from aesthetic_index.core.config import ScoringConfig, StorageConfig


def load_item_state(session: Session, item_id: str, config: ScoringConfig) -> ItemRatingState:
    """Fetch an item's state, creating it lazily with configured defaults."""
    state = session.get(ItemRatingState, item_id, with_for_update=True)
    if state is None:
        state = new_item_state(item_id, config)
        session.add(state)
    return state


def load_voter_calibration(
    session: Session, voter_id: str, config: ScoringConfig
) -> VoterCalibration | None:
    """Fetch a registered voter's calibration, creating it on first use.

    Returns:
        None if the voter is not registered.
    """
    calibration = session.get(VoterCalibration, voter_id, with_for_update=True)
    if calibration is not None:
        return calibration
    if session.get(Voter, voter_id) is None:
        return None
    calibration = new_voter_calibration(voter_id, config)
    session.add(calibration)
    return calibration


def record_opponent(session: Session, item_id: str, opponent_id: str) -> bool:
    """Remember an opponent; returns True the first time it is seen for this item."""
    if session.get(ItemOpponent, (item_id, opponent_id)) is not None:
        return False
    session.add(ItemOpponent(item_id=item_id, opponent_id=opponent_id))
    session.flush()
    return True


def record_slider_rater(session: Session, item_id: str, voter_id: str) -> bool:
    """Remember a slider rater; returns True the first time they rate this item."""
    if session.get(ItemSliderRater, (item_id, voter_id)) is not None:
        return False
    session.add(ItemSliderRater(item_id=item_id, voter_id=voter_id))
    session.flush()
    return True


class StateRepository(AsyncRepository):
    """Read-side access to item and voter state."""

    def __init__(self, engine: Engine, config: StorageConfig | None = None) -> None:
        super().__init__(engine, config)

    async def get_item_state(self, item_id: str) -> ItemRatingState | None:
        return await self._run_session(lambda session: session.get(ItemRatingState, item_id))

    async def get_voter_calibration(self, voter_id: str) -> VoterCalibration | None:
        return await self._run_session(lambda session: session.get(VoterCalibration, voter_id))
