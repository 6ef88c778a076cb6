"""Time helpers.

Database timestamps are naive datetimes that are always UTC, so SQLite
round-trips them unchanged and comparisons never mix aware and naive values.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    """Naive UTC datetime (tzinfo stripped)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utcnow_after(previous: datetime | None) -> datetime:
    """Current UTC time, nudged forward so it is strictly after ``previous``.

    Coarse system clocks can return the same reading twice in a row; appends
    to a conversation rely on strictly increasing timestamps for ordering.
    """
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + _TICK
    return now
