"""
Clock and quota-window helpers.

All instants are handled as timezone-aware UTC datetimes and stored as
ISO 8601 strings with a ``Z`` suffix. Calendar days for the daily quota
are evaluated in the configured quota timezone.
"""

from datetime import UTC, date, datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

MINUTE_WINDOW = timedelta(seconds=60)


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_iso(value: datetime) -> str:
    """
    Serialize an instant for storage.

    Every stored timestamp goes through this function so that equality
    conditions against stored window starts compare identical strings.
    Fixed microsecond width keeps lexicographic order equal to time order.
    """
    return ensure_utc(value).isoformat(timespec="microseconds").replace("+00:00", "Z")


def from_iso(value: str) -> datetime:
    """Parse a stored ISO 8601 timestamp into an aware UTC datetime."""
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


@lru_cache(maxsize=32)
def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name (cached)."""
    return ZoneInfo(name)


def calendar_day(value: datetime, tz_name: str) -> date:
    """Calendar date of an instant in the quota timezone."""
    return ensure_utc(value).astimezone(get_zone(tz_name)).date()


def _midnight(day: date, tz_name: str) -> datetime:
    return datetime.combine(day, time.min, tzinfo=get_zone(tz_name)).astimezone(UTC)


def start_of_day(value: datetime, tz_name: str) -> datetime:
    """Midnight opening the calendar day of ``value``, returned in UTC."""
    return _midnight(calendar_day(value, tz_name), tz_name)


def start_of_next_day(value: datetime, tz_name: str) -> datetime:
    """Midnight following ``value`` in the quota timezone, returned in UTC."""
    return _midnight(calendar_day(value, tz_name) + timedelta(days=1), tz_name)


def start_of_month(value: datetime, tz_name: str) -> datetime:
    """Midnight opening the calendar month of ``value``, returned in UTC."""
    return _midnight(calendar_day(value, tz_name).replace(day=1), tz_name)


def minute_window_elapsed(window_start: datetime, now: datetime) -> bool:
    """True once 60 seconds have passed since the minute window opened."""
    return ensure_utc(now) - ensure_utc(window_start) >= MINUTE_WINDOW


def day_window_elapsed(window_start: datetime, now: datetime, tz_name: str) -> bool:
    """
    True when ``now`` falls on a later calendar day than the window start.

    A window start dated after ``now`` (written by a request that finished
    first) is not elapsed, so a window is never moved backwards.
    """
    return calendar_day(now, tz_name) > calendar_day(window_start, tz_name)


def unix_timestamp(value: datetime) -> int:
    """Whole seconds since the epoch."""
    return int(ensure_utc(value).timestamp())
