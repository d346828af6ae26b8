"""Timezone-aware date helpers for webcam-local calendars."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from webcam_timelapse.exceptions import FormatError

LOGGER = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_date_string(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string, raising ``FormatError`` otherwise."""
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise FormatError(f"Invalid date '{value}': must be YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise FormatError(f"Invalid date '{value}': {exc}") from exc


def determine_timezone(tz_name: Optional[str]) -> Optional[ZoneInfo]:
    """Resolve an IANA timezone name, returning None when unknown."""
    if not tz_name:
        return None
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        LOGGER.warning("Unknown timezone '%s'", tz_name)
        return None


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_millis(timestamp_ms: float) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)


def to_millis(value: datetime) -> float:
    return to_utc(value).timestamp() * 1000.0


def local_noon(day: date, tz: ZoneInfo) -> datetime:
    """Return 12:00 local time on ``day``, an instant inside that local day."""
    return datetime.combine(day, time(12, 0), tzinfo=tz)


def local_date_key(value: datetime, tz: ZoneInfo) -> str:
    """Return the webcam-local ``YYYY-MM-DD`` for an instant."""
    return to_utc(value).astimezone(tz).strftime("%Y-%m-%d")


def local_days_between(start_seconds: float, end_seconds: float, tz: ZoneInfo) -> List[date]:
    """Enumerate every local calendar day overlapping ``[start, end]``."""
    if end_seconds < start_seconds:
        return []
    first = datetime.fromtimestamp(start_seconds, tz=tz).date()
    last = datetime.fromtimestamp(end_seconds, tz=tz).date()
    days: List[date] = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days


def crossed_local_time(
    now: datetime,
    tz: ZoneInfo,
    clock: Tuple[int, int],
    step: timedelta = timedelta(minutes=1),
) -> bool:
    """True when local wall-clock ``clock`` fell in ``(now - step, now]`` in ``tz``.

    Compared as instants, so a clock time skipped or repeated by a DST
    change still fires exactly once.
    """
    current = to_utc(now)
    previous = current - step
    days = {current.astimezone(tz).date(), previous.astimezone(tz).date()}
    for day in days:
        target = datetime.combine(day, time(*clock), tzinfo=tz).timestamp()
        if previous.timestamp() < target <= current.timestamp():
            return True
    return False


__all__ = [
    "DATE_PATTERN",
    "crossed_local_time",
    "determine_timezone",
    "from_millis",
    "local_date_key",
    "local_days_between",
    "local_noon",
    "parse_date_string",
    "to_millis",
    "to_utc",
]
