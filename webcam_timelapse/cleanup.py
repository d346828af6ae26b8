"""Removal of expired images and finished animations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from webcam_timelapse.config import GlobalSettings
from webcam_timelapse.exceptions import TransientIOError
from webcam_timelapse.models import AnimationType
from webcam_timelapse.object_store import LocalObjectStore
from webcam_timelapse.store import Store
from webcam_timelapse.timezones import to_utc

LOGGER = logging.getLogger(__name__)

NON_HOURLY_TYPES = tuple(kind for kind in AnimationType if kind is not AnimationType.HOURLY)


# Frames of a local day stay untagged until retention runs the next local
# morning: up to a full day, plus the retention clock, plus a DST hour.
RETENTION_LAG_HOURS = 24 + 1


def minimum_image_age_hours(retention_time: Tuple[int, int]) -> int:
    """Youngest cutoff that never removes frames retention has not seen yet."""
    hour, minute = retention_time
    return RETENTION_LAG_HOURS + hour + (1 if minute else 0)


@dataclass
class CleanupSummary:
    removed: int = 0
    errors: int = 0


def remove_old_images(
    store: Store,
    objects: LocalObjectStore,
    now: datetime,
    max_age_hours: int = 24,
) -> CleanupSummary:
    """Delete images older than ``max_age_hours`` unless a retention tag protects them.

    The stored object is only removed once no other image row refers to it.
    """
    summary = CleanupSummary()
    cutoff = int((to_utc(now) - timedelta(hours=max_age_hours)).timestamp())

    for image in store.images.untagged_before(cutoff):
        try:
            if store.images.count_references(image.object_name) <= 1:
                objects.delete(image.object_name)
            else:
                LOGGER.debug("Keeping %s, still referenced by another image", image.object_name)
            store.images.delete(image.id)
        except TransientIOError as exc:
            LOGGER.error("Failed to remove image %s: %s", image.object_name, exc)
            summary.errors += 1
            continue
        summary.removed += 1

    if summary.removed or summary.errors:
        LOGGER.info(
            "Image cleanup: removed %d images older than %s (%d errors)",
            summary.removed,
            datetime.fromtimestamp(cutoff, tz=timezone.utc).isoformat(),
            summary.errors,
        )
    return summary


def cleanup_old_animations(
    store: Store,
    objects: LocalObjectStore,
    now: datetime,
    settings: Optional[GlobalSettings] = None,
) -> CleanupSummary:
    """Delete finished hourly jobs past their short retention and all others past the long one."""
    settings = settings or GlobalSettings()
    summary = CleanupSummary()
    now_utc = to_utc(now)

    expired = store.jobs.finished_before(
        now_utc - timedelta(hours=settings.hourly_animation_retention_hours),
        [AnimationType.HOURLY],
    )
    expired += store.jobs.finished_before(
        now_utc - timedelta(days=settings.animation_retention_days),
        NON_HOURLY_TYPES,
    )

    for job in expired:
        try:
            if job.storage_key:
                objects.delete(job.storage_key)
            store.jobs.delete(job.id)
        except TransientIOError as exc:
            LOGGER.error("Failed to remove animation %s: %s", job.reference_key, exc)
            summary.errors += 1
            continue
        summary.removed += 1

    if summary.removed or summary.errors:
        LOGGER.info(
            "Animation cleanup: removed %d finished animations (%d errors)",
            summary.removed,
            summary.errors,
        )
    return summary


__all__ = [
    "CleanupSummary",
    "cleanup_old_animations",
    "minimum_image_age_hours",
    "remove_old_images",
]
