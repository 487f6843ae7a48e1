"""
Time helpers.
Everything is stored and compared in UTC; SQLite hands back naive datetimes,
which are treated as UTC.
"""
import math
from datetime import datetime, timedelta
from typing import Optional
import pytz
from ..config import settings


def now_utc() -> datetime:
    return datetime.now(pytz.UTC)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to timezone-aware UTC.

    Args:
        dt: Datetime (naive values are assumed to already be UTC)

    Returns:
        Aware UTC datetime, or None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def iso(dt: Optional[datetime]) -> Optional[str]:
    dt = as_utc(dt)
    return dt.isoformat() if dt else None


def days_until(target: datetime, now: Optional[datetime] = None) -> int:
    """Whole days until ``target``, rounded up (a partial day counts as one)."""
    now = now or now_utc()
    delta = as_utc(target) - now
    return math.ceil(delta.total_seconds() / 86400)


def minutes_between(start: datetime, end: datetime) -> int:
    return round((as_utc(end) - as_utc(start)).total_seconds() / 60)


def hours_between(start: datetime, end: datetime) -> int:
    return round((as_utc(end) - as_utc(start)).total_seconds() / 3600)


def start_of_today(timezone_str: Optional[str] = None) -> datetime:
    """
    Midnight of the current day in the given timezone, returned in UTC.

    Args:
        timezone_str: Timezone name (default from settings)
    """
    try:
        tz = pytz.timezone(timezone_str or settings.tz_default)
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    local_now = now_utc().astimezone(tz)
    local_midnight = tz.localize(datetime(local_now.year, local_now.month, local_now.day))
    return local_midnight.astimezone(pytz.UTC)


def days_ago(days: int) -> datetime:
    return now_utc() - timedelta(days=days)


def days_from_now(days: int) -> datetime:
    return now_utc() + timedelta(days=days)
