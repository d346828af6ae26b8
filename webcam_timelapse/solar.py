"""Solar event calculations for sunrise, sunset, and twilight windows.

All returned instants are UTC epoch milliseconds. Events that do not happen
on a given day (polar day or night) are reported as ``nan`` rather than
raising, and callers are expected to check before using a value.

First and last light are nautical twilight bounds (sun 12 degrees below the
horizon). The scheduler, the daylight check, and the retention policies all
derive their windows from these two values.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from astral import Observer
from astral.sun import dawn, dusk, sunrise, sunset
from zoneinfo import ZoneInfo

from webcam_timelapse.exceptions import FormatError, ValidationError
from webcam_timelapse.models import SolarTimes
from webcam_timelapse.timezones import from_millis, local_noon, to_millis

LOGGER = logging.getLogger(__name__)

NAUTICAL_DEPRESSION = 12.0
TWILIGHT_PADDING = 0.25
MS_PER_HOUR = 60 * 60 * 1000


@dataclass(frozen=True)
class LightWindow:
    """Twilight-padded bounds derived from a day's solar events (UTC ms)."""

    light_start: float
    sunrise_end: float
    sunset_start: float
    light_end: float


def _validate_coordinates(latitude: float, longitude: float) -> None:
    if not -90.0 <= latitude <= 90.0:
        raise ValidationError(f"Invalid latitude: {latitude}. Must be between -90 and 90.")
    if not -180.0 <= longitude <= 180.0:
        raise ValidationError(f"Invalid longitude: {longitude}. Must be between -180 and 180.")


def _mean_solar_timezone(longitude: float) -> timezone:
    """Fixed offset following the sun: four minutes per degree of longitude."""
    return timezone(timedelta(seconds=round(longitude * 240)))


def _event_millis(
    event: Callable[..., datetime],
    observer: Observer,
    solar_date: date,
    tzinfo: timezone,
    **kwargs: float,
) -> float:
    try:
        return to_millis(event(observer, date=solar_date, tzinfo=tzinfo, **kwargs))
    except ValueError:
        # astral raises when the sun never crosses the requested elevation.
        return math.nan


def calculate_solar_times(latitude: float, longitude: float, timestamp_ms: float) -> SolarTimes:
    """Calculate solar events for the day containing ``timestamp_ms``.

    The day is reckoned in local mean solar time so that one day's events are
    always ordered ``first_light < sunrise < sunset < last_light``.
    """
    _validate_coordinates(latitude, longitude)

    solar_tz = _mean_solar_timezone(longitude)
    solar_date = from_millis(timestamp_ms).astimezone(solar_tz).date()
    observer = Observer(latitude=latitude, longitude=longitude)

    rise = _event_millis(sunrise, observer, solar_date, solar_tz)
    set_ = _event_millis(sunset, observer, solar_date, solar_tz)
    first_light = _event_millis(
        dawn, observer, solar_date, solar_tz, depression=NAUTICAL_DEPRESSION
    )
    last_light = _event_millis(
        dusk, observer, solar_date, solar_tz, depression=NAUTICAL_DEPRESSION
    )

    return SolarTimes(
        sunrise=rise,
        sunset=set_,
        first_light=first_light,
        last_light=last_light,
        day_length=(set_ - rise) / MS_PER_HOUR,
    )


def parse_lat_lon(text: Optional[str]) -> Tuple[float, float]:
    """Parse a ``"lat,lon"`` string into a ``(latitude, longitude)`` pair."""
    if not text or not text.strip():
        raise FormatError("Latitude/longitude string is required")

    parts = [part.strip() for part in text.strip().split(",")]
    if len(parts) != 2:
        raise FormatError(f'Invalid lat/lon format: {text}. Expected format: "lat,lon"')

    try:
        latitude = float(parts[0])
        longitude = float(parts[1])
    except ValueError as exc:
        raise ValidationError(f"Invalid numeric values in lat/lon: {text}") from exc

    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise ValidationError(f"Invalid numeric values in lat/lon: {text}")

    return latitude, longitude


def calculate_webcam_solar_times(
    lat_lon: Optional[str],
    timestamp_ms: float,
) -> Optional[SolarTimes]:
    """Resilient variant used by scheduling code; returns None instead of raising."""
    if not lat_lon:
        return None

    try:
        latitude, longitude = parse_lat_lon(lat_lon)
        return calculate_solar_times(latitude, longitude, timestamp_ms)
    except ValueError as exc:
        LOGGER.warning("Could not calculate solar times for '%s': %s", lat_lon, exc)
        return None


def solar_times_for_local_date(
    lat_lon: Optional[str],
    day: date,
    tz: ZoneInfo,
) -> Optional[SolarTimes]:
    """Solar events for a webcam-local calendar day, anchored at local noon."""
    return calculate_webcam_solar_times(lat_lon, to_millis(local_noon(day, tz)))


def light_window(solar: SolarTimes) -> LightWindow:
    """Pad first/last light outward by a quarter of each twilight's duration."""
    sunrise_duration = solar.sunrise - solar.first_light
    sunset_duration = solar.last_light - solar.sunset
    return LightWindow(
        light_start=solar.first_light - TWILIGHT_PADDING * sunrise_duration,
        sunrise_end=solar.sunrise + TWILIGHT_PADDING * sunrise_duration,
        sunset_start=solar.sunset - TWILIGHT_PADDING * sunset_duration,
        light_end=solar.last_light + TWILIGHT_PADDING * sunset_duration,
    )


def is_daylight(lat_lon: Optional[str], timestamp_ms: float) -> bool:
    """Return True when ``timestamp_ms`` falls inside the padded twilight window.

    Defaults to True whenever the window cannot be computed.
    """
    solar = calculate_webcam_solar_times(lat_lon, timestamp_ms)
    if solar is None or not solar.has("first_light", "last_light"):
        return True

    window = light_window(solar)
    return window.light_start <= timestamp_ms <= window.light_end


__all__ = [
    "LightWindow",
    "NAUTICAL_DEPRESSION",
    "calculate_solar_times",
    "calculate_webcam_solar_times",
    "is_daylight",
    "light_window",
    "parse_lat_lon",
    "solar_times_for_local_date",
]
