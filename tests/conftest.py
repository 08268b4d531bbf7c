"""Shared fixtures: temporary SQLite store and a controllable clock."""

import os
from datetime import datetime, timedelta

import pytest

from aesthetic_index.core.config import ScoringConfig
from aesthetic_index.pipeline import AestheticIndexPipeline
from aesthetic_index.services.storage import ScoringStore

# Wide terminal so Rich does not wrap CLI output around long tmp paths.
os.environ.setdefault("COLUMNS", "200")

START = datetime(2026, 3, 1, 9, 0, 0)


class FakeClock:
    """Naive UTC clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return ScoringConfig.model_validate(
        {
            "batch": {
                "jitter_min_ms": 0,
                "jitter_max_ms": 0,
                "vote_milestones": [],
                "high_activity_threshold": None,
            },
            "storage": {"database_url": f"sqlite:///{tmp_path / 'scores.db'}"},
        }
    )


@pytest.fixture
def store(config):
    store = ScoringStore(config)
    yield store
    store.close_sync()


@pytest.fixture
def pipeline(config, store, clock):
    return AestheticIndexPipeline(config, store, clock=clock)


CATALOG = {
    "collections": [
        {"id": "genesis", "name": "Genesis", "total_supply": 4, "items": ["a", "b", "c", "d"]},
    ],
    "voters": ["v1", "v2", "v3"],
}


async def seed_publishable(pipeline: AestheticIndexPipeline) -> None:
    """Give item `a` exactly enough evidence to publish."""
    await pipeline.store.catalog.import_catalog(CATALOG)
    for opponent in ("b", "c", "d", "b", "c"):
        await pipeline.record_comparison("a", opponent, "a", "v1")
    await pipeline.record_slider("v1", "a", 80)
    await pipeline.record_slider("v2", "a", 70)
