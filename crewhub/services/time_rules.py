"""
Time rules for clocking and reporting.
Handles the 15-minute reporting rounding, UTC normalization, and local-time display.
"""
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional
import pytz

from ..config import settings


ROUNDING_INCREMENT_MIN = 15
MIN_WORK_PERIOD = timedelta(minutes=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Return an aware UTC datetime.
    Naive values are treated as UTC (SQLite hands them back without tzinfo).
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def round_time(dt: datetime, direction: str) -> datetime:
    """
    Round datetime to a 15-minute boundary.

    Args:
        dt: Datetime to round
        direction: "down" for clock-ins, "up" for clock-outs

    Returns:
        Rounded datetime (seconds and microseconds cleared)
    """
    base = dt.replace(minute=0, second=0, microsecond=0)
    offset = dt - base
    step = timedelta(minutes=ROUNDING_INCREMENT_MIN)
    steps = offset // step
    if direction == "up" and offset % step:
        steps += 1
    elif direction not in ("up", "down"):
        raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
    return base + steps * step


def rounded_minutes(clock_in: datetime, clock_out: datetime) -> int:
    """Worked minutes for one closed entry, clock-in rounded down and clock-out rounded up."""
    start = round_time(ensure_utc(clock_in), "down")
    end = round_time(ensure_utc(clock_out), "up")
    return max(0, int((end - start).total_seconds() // 60))


def total_rounded_minutes(entries: Iterable) -> int:
    """
    Sum rounded minutes over closed entries.
    Open entries (no clock_out) are skipped; stored timestamps are never modified.
    """
    total = 0
    for entry in entries:
        if entry.clock_in is None or entry.clock_out is None:
            continue
        total += rounded_minutes(entry.clock_in, entry.clock_out)
    return total


def minutes_to_hours(minutes: int) -> float:
    return round(minutes / 60.0, 2)


def utc_to_local(utc_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert UTC datetime to local timezone.

    Args:
        utc_datetime: UTC datetime (aware or naive UTC)
        timezone_str: Timezone string (e.g., "America/Los_Angeles"); defaults to TZ_DEFAULT

    Returns:
        Local datetime (timezone-aware)
    """
    try:
        tz = pytz.timezone(timezone_str or settings.tz_default)
    except pytz.UnknownTimeZoneError:
        tz = pytz.timezone(settings.tz_default)
    return ensure_utc(utc_datetime).astimezone(tz)


def format_local(utc_datetime: datetime, timezone_str: Optional[str] = None) -> str:
    local = utc_to_local(utc_datetime, timezone_str)
    return local.strftime("%b %d, %Y %I:%M %p %Z")
