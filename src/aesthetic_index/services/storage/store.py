"""Storage entry point: engine setup and repository wiring."""

from __future__ import annotations

import gc
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.pool import NullPool
from sqlmodel import Session, SQLModel, create_engine

import aesthetic_index.models  # noqa: F401  (registers tables on SQLModel.metadata)
from aesthetic_index.core.config import ScoringConfig

from .catalog_repository import CatalogRepository
from .collection_repository import CollectionRepository
from .event_store import EventStore
from .queue_repository import DirtyQueueRepository
from .repository import AsyncRepository
from .score_repository import ScoreRepository
from .state_repository import StateRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()

T = TypeVar("T")


def _enable_immediate_transactions(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite defers BEGIN until the first write, which lets two sessions read
    the same voter row and both write it back. BEGIN IMMEDIATE serializes
    writers for the whole transaction instead.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(database_url: str, busy_timeout: float = 30.0, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine for the scoring database.

    Args:
        database_url: SQLAlchemy database URL.
        busy_timeout: Seconds SQLite waits on a locked database.
        echo: Log emitted SQL.

    Returns:
        Configured engine.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, poolclass=NullPool, echo=echo)

    if url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        database_url,
        poolclass=NullPool,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": busy_timeout},
    )
    _enable_immediate_transactions(engine)
    return engine


class ScoringStore(AsyncRepository):
    """Persistence layer for the scoring pipeline.

    Owns the engine and exposes one repository per concern. Work that must
    span several tables in one transaction goes through `run_in_session`.
    """

    def __init__(self, config: ScoringConfig) -> None:
        """Initialize the store and create tables.

        Args:
            config: Scoring configuration; storage settings and the default
                rating used for comparison snapshots are read from it.
        """
        self.config = config
        storage = config.storage
        engine = create_db_engine(storage.database_url, storage.busy_timeout_seconds, storage.echo)
        super().__init__(engine, storage)
        SQLModel.metadata.create_all(engine)
        logger.info("store_init", url=make_url(storage.database_url).render_as_string())

        self.catalog = CatalogRepository(engine, storage)
        self.events = EventStore(engine, storage, default_rating=config.rating.default_mean)
        self.queue = DirtyQueueRepository(engine, storage)
        self.states = StateRepository(engine, storage)
        self.scores = ScoreRepository(engine, storage)
        self.collections = CollectionRepository(engine, storage)

    @property
    def engine(self) -> Engine:
        return self._engine

    async def run_in_session(self, fn: Callable[[Session], T], retry_timeouts: bool = True) -> T:
        """Run multi-table work in one session, with timeout and transient retry."""
        return await self._run_session(fn, retry_timeouts)

    # ==================== Lifecycle ====================

    async def close(self) -> None:
        """Dispose of the database engine."""
        self._engine.dispose()

    def close_sync(self) -> None:
        """Synchronously dispose of the database engine."""
        self._engine.dispose()
        gc.collect()
