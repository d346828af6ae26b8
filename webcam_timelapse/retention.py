"""Retention tagging: keep one representative frame per solar landmark per day."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

import numpy as np

from webcam_timelapse.exceptions import TransientIOError
from webcam_timelapse.models import CapturedImage, RetentionTag, SolarTimes, Webcam
from webcam_timelapse.solar import solar_times_for_local_date
from webcam_timelapse.store import Store
from webcam_timelapse.timezones import determine_timezone, local_days_between, parse_date_string

LOGGER = logging.getLogger(__name__)


def _midpoint(solar: SolarTimes, first: str, second: str) -> float:
    if not solar.has(first, second):
        return math.nan
    return (getattr(solar, first) + getattr(solar, second)) / 2.0


@dataclass
class RetentionSummary:
    days: int = 0
    selected: int = 0
    tags_added: int = 0
    tags_removed: int = 0
    write_failures: int = 0

    def merge(self, other: "RetentionSummary") -> None:
        self.days += other.days
        self.selected += other.selected
        self.tags_added += other.tags_added
        self.tags_removed += other.tags_removed
        self.write_failures += other.write_failures


@dataclass(frozen=True)
class RetentionPolicy:
    """Tag the frame closest to a solar target inside ``[target - before, target + after]``."""

    tag: RetentionTag
    target: Callable[[SolarTimes], float]
    minutes_before: int
    minutes_after: int

    @property
    def name(self) -> str:
        return self.tag.label

    def search_window(self, target_ms: float) -> Tuple[int, int]:
        """Search bounds in Unix seconds for a target in epoch milliseconds."""
        target_seconds = target_ms / 1000.0
        start = math.floor(target_seconds - self.minutes_before * 60)
        end = math.ceil(target_seconds + self.minutes_after * 60)
        return start, end

    def _persist(self, store: Store, image: CapturedImage, summary: RetentionSummary) -> bool:
        try:
            store.images.update_tags(image.id, image.tags)
        except TransientIOError as exc:
            LOGGER.error(
                "Failed to persist %s tag change for %s: %s",
                self.name,
                image.object_name,
                exc,
            )
            summary.write_failures += 1
            return False
        return True

    def _select(self, store: Store, webcam: Webcam, target_ms: float) -> RetentionSummary:
        summary = RetentionSummary()
        start, end = self.search_window(target_ms)
        images = store.images.in_range(webcam.id, start, end)
        if not images:
            LOGGER.debug("No %s candidates for %s in [%d, %d]", self.name, webcam.label, start, end)
            return summary

        distances = np.abs(np.array([image.timestamp for image in images], dtype=np.float64) * 1000.0 - target_ms)
        chosen = images[int(np.argmin(distances))]
        summary.selected = 1

        for image in images:
            if image is chosen:
                continue
            if image.remove_tag(self.tag) and self._persist(store, image, summary):
                summary.tags_removed += 1

        if chosen.add_tag(self.tag) and self._persist(store, chosen, summary):
            summary.tags_added += 1
            LOGGER.info("Tagged %s as %s for %s", chosen.object_name, self.name, webcam.label)

        return summary

    def apply(
        self,
        store: Store,
        start_seconds: float,
        end_seconds: float,
        webcams: Optional[Iterable[Webcam]] = None,
    ) -> RetentionSummary:
        """Select one image per webcam for every local day overlapping the range."""
        summary = RetentionSummary()
        candidates = store.webcams.list_all() if webcams is None else webcams

        for webcam in candidates:
            tz = determine_timezone(webcam.timezone)
            if not webcam.lat_lon or tz is None:
                continue

            for day in local_days_between(start_seconds, end_seconds, tz):
                summary.days += 1
                solar = solar_times_for_local_date(webcam.lat_lon, day, tz)
                if solar is None:
                    continue
                target_ms = self.target(solar)
                if math.isnan(target_ms):
                    LOGGER.debug("No %s on %s for %s", self.name, day.isoformat(), webcam.label)
                    continue
                try:
                    summary.merge(self._select(store, webcam, target_ms))
                except TransientIOError as exc:
                    LOGGER.error(
                        "%s retention failed for %s on %s: %s",
                        self.name,
                        webcam.label,
                        day.isoformat(),
                        exc,
                    )
                    summary.write_failures += 1

        return summary


SUNRISE_POLICY = RetentionPolicy(
    tag=RetentionTag.SUNRISE,
    target=lambda solar: _midpoint(solar, "first_light", "sunrise"),
    minutes_before=5,
    minutes_after=15,
)

SOLAR_NOON_POLICY = RetentionPolicy(
    tag=RetentionTag.SOLAR_NOON,
    target=lambda solar: _midpoint(solar, "sunrise", "sunset"),
    minutes_before=15,
    minutes_after=15,
)

SUNSET_POLICY = RetentionPolicy(
    tag=RetentionTag.SUNSET,
    target=lambda solar: _midpoint(solar, "sunset", "last_light"),
    minutes_before=15,
    minutes_after=5,
)

POLICIES: Tuple[RetentionPolicy, ...] = (SUNRISE_POLICY, SOLAR_NOON_POLICY, SUNSET_POLICY)


def apply_webcam_retention(
    store: Store,
    webcam: Webcam,
    day: date,
    policies: Iterable[RetentionPolicy] = POLICIES,
) -> RetentionSummary:
    """Apply every policy to one webcam's local calendar ``day``.

    Webcams without a location or a resolvable timezone are left alone.
    """
    summary = RetentionSummary()
    tz = determine_timezone(webcam.timezone)
    if not webcam.lat_lon or tz is None:
        return summary

    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
    for policy in policies:
        summary.merge(policy.apply(store, start.timestamp(), end.timestamp() - 1, webcams=[webcam]))
    return summary


def apply_retention_policies(
    store: Store,
    date_string: str,
    policies: Iterable[RetentionPolicy] = POLICIES,
) -> RetentionSummary:
    """Apply every policy to the webcam-local calendar day ``date_string``."""
    day = parse_date_string(date_string)
    policies = list(policies)
    summary = RetentionSummary()
    skipped: List[str] = []

    for webcam in store.webcams.list_all():
        if not webcam.lat_lon or determine_timezone(webcam.timezone) is None:
            skipped.append(webcam.name)
            continue
        summary.merge(apply_webcam_retention(store, webcam, day, policies))

    LOGGER.info(
        "Retention for %s: %d selections, %d tags added, %d removed, %d write failures, %d webcams skipped",
        date_string,
        summary.selected,
        summary.tags_added,
        summary.tags_removed,
        summary.write_failures,
        len(skipped),
    )
    return summary


__all__ = [
    "POLICIES",
    "RetentionPolicy",
    "RetentionSummary",
    "SOLAR_NOON_POLICY",
    "SUNRISE_POLICY",
    "SUNSET_POLICY",
    "apply_retention_policies",
    "apply_webcam_retention",
]
