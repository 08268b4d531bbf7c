from aesthetic_index.models.catalog import Collection, Item, Voter
from aesthetic_index.models.events import (
    ComparisonEvent,
    EventStream,
    FavoriteEvent,
    SliderEvent,
)
from aesthetic_index.models.queue import DirtyItem
from aesthetic_index.models.scores import (
    CollectionIndex,
    CollectionIndexHistory,
    PublishedScore,
)
from aesthetic_index.models.state import (
    ItemOpponent,
    ItemRatingState,
    ItemSliderRater,
    PublishState,
    VoterCalibration,
)

__all__ = [
    "Collection",
    "CollectionIndex",
    "CollectionIndexHistory",
    "ComparisonEvent",
    "DirtyItem",
    "EventStream",
    "FavoriteEvent",
    "Item",
    "ItemOpponent",
    "ItemRatingState",
    "ItemSliderRater",
    "PublishState",
    "PublishedScore",
    "SliderEvent",
    "Voter",
    "VoterCalibration",
]
