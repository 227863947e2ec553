"""
Timezone utilities for slot matching.

Slots are declared as a calendar date plus a time-of-day range in the
platform timezone. Booking instants are split into those two parts before
any slot lookup.
"""

from datetime import date, datetime, time, timezone
from typing import Optional, Tuple

import pytz

from .config import settings


def get_platform_timezone(tz_name: Optional[str] = None) -> pytz.BaseTzInfo:
    """Return the configured platform timezone as a pytz timezone."""
    return pytz.timezone(tz_name or settings.platform_timezone)


def ensure_utc(instant: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite returns stored instants without tzinfo)."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def to_platform_local(instant: datetime, tz_name: Optional[str] = None) -> datetime:
    """
    Express an instant as naive wall-clock time in the platform timezone.

    Naive datetimes are already wall-clock time and are returned unchanged.
    """
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(get_platform_timezone(tz_name)).replace(tzinfo=None)


def local_to_utc(instant: datetime, tz_name: Optional[str] = None) -> datetime:
    """
    Convert a booking instant to an aware UTC datetime for storage.

    Naive values are read as platform wall-clock time.
    """
    if instant.tzinfo is None:
        instant = get_platform_timezone(tz_name).localize(instant)
    return instant.astimezone(timezone.utc)


def time_of_day(value: datetime) -> time:
    """Time-of-day at second precision, detached from any date."""
    return time(value.hour, value.minute, value.second)


def split_instant(instant: datetime, tz_name: Optional[str] = None) -> Tuple[date, time]:
    """
    Split a booking instant into its slot date and time-of-day.

    Args:
        instant: Booking start, aware or naive
        tz_name: Optional timezone override

    Returns:
        (calendar date, time-of-day) in the platform timezone
    """
    local = to_platform_local(instant, tz_name)
    return local.date(), time_of_day(local)


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)
