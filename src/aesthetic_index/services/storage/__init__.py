from .catalog_repository import CatalogRepository
from .collection_repository import CollectionInputs, CollectionRepository
from .event_store import EventStore
from .queue_repository import Claim, DirtyQueueRepository
from .score_repository import ScoreRepository
from .snapshot import SnapshotDB
from .state_repository import StateRepository
from .store import ScoringStore, create_db_engine

__all__ = [
    "CatalogRepository",
    "Claim",
    "CollectionInputs",
    "CollectionRepository",
    "DirtyQueueRepository",
    "EventStore",
    "ScoreRepository",
    "ScoringStore",
    "SnapshotDB",
    "StateRepository",
    "create_db_engine",
]
