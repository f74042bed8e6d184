"""Centralized datetime utilities for consistent timezone handling.

Database columns hold naive UTC datetimes (see ``utc_now``). Scheduler
decisions use aware datetimes so that persisted RFC3339 timestamps, which
carry an offset, compare correctly.

Usage:
    from catalog_sync.core.datetime_utils import utc_now, get_cutoff

    cutoff = get_cutoff(days=30)
    stmt = delete(Job).where(Job.created_at < cutoff)
"""

import re
from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo

TIME_OF_DAY_PATTERN = re.compile(r"^\d{2}:\d{2}$")


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def get_cutoff(hours: int = 0, days: int = 0) -> datetime:
    """Get cutoff datetime for filtering queries.

    Args:
        hours: Hours to subtract from now
        days: Days to subtract from now

    Returns:
        Naive UTC datetime representing the cutoff point
    """
    delta = timedelta(hours=hours, days=days)
    return utc_now() - delta


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def to_aware_utc(dt: datetime) -> datetime:
    """Convert a datetime to aware UTC, reading naive values as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def local_now(timezone: str) -> datetime:
    """Get current time in the given IANA timezone.

    Falls back to UTC for an invalid timezone name.
    """
    try:
        tz = ZoneInfo(timezone)
    except (KeyError, ValueError):
        tz = ZoneInfo("UTC")

    return datetime.now(tz)


def is_time_literal(value: str) -> bool:
    """True if ``value`` looks like a literal ``HH:MM`` rather than a settings key."""
    return bool(TIME_OF_DAY_PATTERN.match(value))


def parse_time_of_day(value: str) -> time:
    """Parse a strict ``HH:MM`` string.

    Raises:
        ValueError: if the value is not a valid 24h time
    """
    value = value.strip()
    if not is_time_literal(value):
        raise ValueError(f"Invalid time format: {value!r} (expected HH:MM)")
    hour, minute = (int(part) for part in value.split(":"))
    return time(hour=hour, minute=minute)


def is_in_time_window(target: time, now: datetime, window_minutes: int = 5) -> bool:
    """Check if ``now`` falls in ``[target, target + window_minutes)``.

    Compares minutes since midnight, so the window does not wrap past
    midnight: a 23:58 target only matches 23:58 and 23:59.
    """
    current_minutes = now.hour * 60 + now.minute
    target_minutes = target.hour * 60 + target.minute
    return target_minutes <= current_minutes < target_minutes + window_minutes
