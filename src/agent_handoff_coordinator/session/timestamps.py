"""Timestamp adapter.

The in-memory model uses timezone-aware ``datetime`` values; every persisted
document stores epoch milliseconds.  These two functions are the only place
where the conversion happens.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    """Convert an aware (or naive UTC) datetime to epoch milliseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int | float) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return _EPOCH + timedelta(milliseconds=int(value))


def utc_now() -> datetime:
    """Return the current UTC time truncated to millisecond precision."""
    return from_epoch_ms(to_epoch_ms(datetime.now(timezone.utc)))
