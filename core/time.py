# PATH: core/time.py
"""
Time utilities for HEAVENBOT.

All timestamps are UTC. Ages are computed in milliseconds.
"""

import time
from datetime import date, datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Get current UTC datetime as ISO string."""
    return now_utc().isoformat()


def now_ms() -> int:
    """Get current Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


def today_utc() -> date:
    return now_utc().date()


def age_ms(since: datetime, current: Optional[datetime] = None) -> int:
    """
    Milliseconds elapsed since a timestamp.

    Args:
        since: Earlier timestamp (timezone-aware)
        current: Reference time (defaults to now)

    Returns:
        Non-negative age in milliseconds
    """
    current = current or now_utc()
    delta = current - since
    return max(0, int(delta.total_seconds() * 1000))


def parse_timestamp(value) -> datetime:
    """
    Parse a timestamp from an adapter payload.

    Accepts datetime, ISO strings and Unix seconds or milliseconds.
    Naive values are assumed to be UTC.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # Values past year 2286 in seconds are really milliseconds
        seconds = value / 1000 if value > 10_000_000_000 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")
