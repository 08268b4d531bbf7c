"""UTC timestamp helpers.

Timestamps are stored as naive UTC datetimes: model fields are annotated
NaiveDatetime over a plain DateTime column, since SQLite drops tzinfo on the
way back out. Everything in the package compares naive UTC values.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current time as a naive UTC datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)
