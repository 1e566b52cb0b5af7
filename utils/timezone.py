"""UTC-everywhere time handling. Eliminates timezone bugs at the source."""

import math
from datetime import datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 datetime string to UTC datetime.

    Raises ValueError if string has no timezone info.
    """
    dt = datetime.fromisoformat(iso_string)
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot parse naive datetime string. "
            "Include timezone offset (e.g., 'Z' or '+00:00')."
        )
    return to_utc(dt)


def seconds_until(moment: datetime, now: datetime | None = None) -> int:
    """Whole seconds from now until moment, rounded up, never below 1.

    Used for Retry-After values, which must be positive integers.
    """
    now = now or now_utc()
    remaining = (to_utc(moment) - to_utc(now)).total_seconds()
    return max(math.ceil(remaining), 1)
