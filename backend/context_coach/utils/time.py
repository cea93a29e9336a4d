"""Time helpers."""

from __future__ import annotations

import time
from datetime import datetime, timezone


def now_ms() -> int:
    """Return current timestamp in milliseconds."""
    return int(time.time() * 1000)


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime truncated to millisecond precision."""
    return from_ms(now_ms())


def to_ms(value: datetime | None) -> int | None:
    """Convert a datetime to epoch milliseconds for storage."""
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def from_ms(value: int | None) -> datetime | None:
    """Convert stored epoch milliseconds back to an aware datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
