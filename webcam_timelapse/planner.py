"""Daily animation planning from solar windows.

``plan_day`` is pure: it turns webcams and a local calendar date into
``AnimationJob`` objects. ``schedule_day`` persists them through the store,
which ignores reference keys it has already seen.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from zoneinfo import ZoneInfo

from webcam_timelapse.animations import build_reference_key, build_storage_key
from webcam_timelapse.exceptions import TransientIOError
from webcam_timelapse.models import AnimationJob, AnimationType, JobStatus, Webcam
from webcam_timelapse.solar import light_window, solar_times_for_local_date
from webcam_timelapse.store import Store
from webcam_timelapse.timezones import determine_timezone, local_date_key, parse_date_string

LOGGER = logging.getLogger(__name__)

WINDOW_DELAY = timedelta(minutes=1)
HOURLY_DELAY = timedelta(minutes=5)
HOUR_MS = 60 * 60 * 1000


@dataclass
class ScheduleSummary:
    """Outcome of one scheduling run."""

    date: str
    planned: int = 0
    created: int = 0
    duplicates: int = 0
    failed: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    skipped_webcams: List[str] = field(default_factory=list)


def _utc(ms: float) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def _make_job(
    webcam: Webcam,
    tz: ZoneInfo,
    animation_type: AnimationType,
    start_ms: float,
    end_ms: float,
    scheduled_time: datetime,
    extension: str,
) -> AnimationJob:
    start_seconds = math.floor(start_ms / 1000)
    local_start = datetime.fromtimestamp(start_seconds, tz=tz)
    return AnimationJob(
        webcam_id=webcam.id,
        reference_key=build_reference_key(webcam.id, animation_type, local_start),
        animation_type=animation_type,
        scheduled_time=scheduled_time,
        date_key=local_date_key(scheduled_time, tz),
        start_time=start_seconds,
        end_time=math.floor(end_ms / 1000),
        storage_key=build_storage_key(
            webcam.national_park, webcam.name, animation_type, local_start, extension
        ),
        image_list=[],
        status=JobStatus.AWAITING_IMAGES,
    )


def _first_hour_ms(light_start: float, first_light: float, tz: ZoneInfo) -> float:
    """Floor ``light_start`` to the local hour; step forward when that precedes first light."""
    floored = _utc(light_start).astimezone(tz).replace(minute=0, second=0, microsecond=0)
    floored_ms = floored.timestamp() * 1000.0
    if floored_ms < first_light:
        floored_ms += HOUR_MS
    return floored_ms


def plan_webcam_day(
    webcam: Webcam,
    day: date,
    tz: ZoneInfo,
    extension: str = "mp4",
) -> List[AnimationJob]:
    """Plan sunrise, sunset, full-day, and hourly jobs for one webcam."""
    solar = solar_times_for_local_date(webcam.lat_lon, day, tz)
    if solar is None:
        return []

    window = light_window(solar)
    jobs: List[AnimationJob] = []

    def finite(*values: float) -> bool:
        return all(not math.isnan(value) for value in values)

    if finite(window.light_start, window.sunrise_end):
        jobs.append(
            _make_job(
                webcam, tz, AnimationType.SUNRISE,
                window.light_start, window.sunrise_end,
                _utc(window.sunrise_end) + WINDOW_DELAY, extension,
            )
        )

    if finite(window.sunset_start, window.light_end):
        jobs.append(
            _make_job(
                webcam, tz, AnimationType.SUNSET,
                window.sunset_start, window.light_end,
                _utc(window.light_end) + WINDOW_DELAY, extension,
            )
        )

    if finite(window.light_start, window.light_end):
        jobs.append(
            _make_job(
                webcam, tz, AnimationType.FULL_DAY,
                window.light_start, window.light_end,
                _utc(window.light_end) + WINDOW_DELAY, extension,
            )
        )

        current = _first_hour_ms(window.light_start, solar.first_light, tz)
        while current + HOUR_MS <= window.light_end:
            hour_end = current + HOUR_MS
            jobs.append(
                _make_job(
                    webcam, tz, AnimationType.HOURLY,
                    current, hour_end,
                    _utc(hour_end) + HOURLY_DELAY, extension,
                )
            )
            current = hour_end

    return jobs


def plan_day(
    webcams: Iterable[Webcam],
    date_string: str,
    extension: str = "mp4",
    skipped: Optional[List[str]] = None,
) -> List[AnimationJob]:
    """Plan every enabled webcam's jobs for the local calendar date ``date_string``.

    Raises ``FormatError`` before doing any work when the date is malformed.
    Webcams without a location or a resolvable timezone are skipped and, when
    ``skipped`` is given, their names are appended to it.
    """
    day = parse_date_string(date_string)
    jobs: List[AnimationJob] = []

    for webcam in webcams:
        if not webcam.enabled:
            continue
        tz = determine_timezone(webcam.timezone)
        if not webcam.lat_lon or tz is None:
            LOGGER.info(
                "Skipping webcam %s (%s): missing location or timezone",
                webcam.id,
                webcam.label,
            )
            if skipped is not None:
                skipped.append(webcam.name)
            continue

        webcam_jobs = plan_webcam_day(webcam, day, tz, extension)
        LOGGER.debug("Planned %d jobs for webcam %s on %s", len(webcam_jobs), webcam.label, date_string)
        jobs.extend(webcam_jobs)

    return jobs


def schedule_day(
    store: Store,
    date_string: str,
    now: datetime,
    extension: str = "mp4",
) -> ScheduleSummary:
    """Plan ``date_string`` for all enabled webcams and persist new jobs."""
    skipped: List[str] = []
    jobs = plan_day(store.webcams.list_enabled(), date_string, extension, skipped)

    summary = ScheduleSummary(date=date_string, planned=len(jobs), skipped_webcams=skipped)
    created_types: Counter = Counter()
    for job in jobs:
        job.created_at = now
        try:
            inserted = store.jobs.insert_if_absent(job)
        except TransientIOError as exc:
            LOGGER.error("Failed to persist job %s: %s", job.reference_key, exc)
            summary.failed += 1
            continue
        if inserted:
            summary.created += 1
            created_types[job.animation_type.value] += 1
        else:
            summary.duplicates += 1

    summary.by_type = dict(created_types)
    LOGGER.info(
        "Scheduled %s: %d planned, %d created, %d already present, %d webcams skipped",
        date_string,
        summary.planned,
        summary.created,
        summary.duplicates,
        len(skipped),
    )
    return summary


__all__ = ["ScheduleSummary", "plan_day", "plan_webcam_day", "schedule_day"]
