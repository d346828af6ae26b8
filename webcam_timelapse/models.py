"""Data models used across the webcam timelapse system."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, Flag
from typing import List, Optional


class AnimationType(str, Enum):
    """Kinds of animation produced from captured images."""

    SUNRISE = "sunrise"
    SUNSET = "sunset"
    FULL_DAY = "full_day"
    HOURLY = "hourly"
    ON_DEMAND = "on_demand"


class JobStatus(str, Enum):
    """Lifecycle states of an animation job."""

    AWAITING_IMAGES = "awaiting_images"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


class RetentionTag(Flag):
    """Solar landmarks that protect an image from cleanup."""

    NONE = 0
    SUNRISE = 1
    SOLAR_NOON = 2
    SUNSET = 4

    @property
    def label(self) -> str:
        return _TAG_LABELS.get(self, self.name or "")


_TAG_LABELS = {
    RetentionTag.SUNRISE: "Sunrise",
    RetentionTag.SOLAR_NOON: "SolarNoon",
    RetentionTag.SUNSET: "Sunset",
}


@dataclass
class Webcam:
    """A configured webcam and its capture bookkeeping."""

    id: int
    name: str
    url: str
    display_name: Optional[str] = None
    enabled: bool = True
    interval_minutes: int = 1
    lat_lon: Optional[str] = None
    timezone: Optional[str] = None
    national_park: Optional[str] = None
    last_active_at: Optional[datetime] = None
    last_image_hash: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True)
class SolarTimes:
    """Solar events for one day as UTC epoch milliseconds (``nan`` when absent)."""

    sunrise: float
    sunset: float
    first_light: float
    last_light: float
    day_length: float

    def has(self, *names: str) -> bool:
        """Return True when every named event occurs on this day."""
        return all(not math.isnan(getattr(self, name)) for name in names)


@dataclass
class AnimationJob:
    """Queue entry describing one animation to build."""

    webcam_id: int
    reference_key: str
    animation_type: AnimationType
    scheduled_time: datetime
    date_key: str
    start_time: int
    end_time: int
    storage_key: Optional[str] = None
    image_list: List[str] = field(default_factory=list)
    status: JobStatus = JobStatus.AWAITING_IMAGES
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    id: Optional[int] = None


@dataclass
class CapturedImage:
    """A stored webcam frame and the retention tags protecting it."""

    id: Optional[int]
    webcam_id: int
    timestamp: int
    object_name: str
    tags: RetentionTag = RetentionTag.NONE

    def has_tag(self, tag: RetentionTag) -> bool:
        return bool(self.tags & tag)

    def add_tag(self, tag: RetentionTag) -> bool:
        """Add ``tag``; return True when the tag set changed."""
        if self.has_tag(tag):
            return False
        self.tags = self.tags | tag
        return True

    def remove_tag(self, tag: RetentionTag) -> bool:
        """Remove ``tag``; return True when the tag set changed."""
        if not self.has_tag(tag):
            return False
        self.tags = self.tags & ~tag
        return True


__all__ = [
    "AnimationJob",
    "AnimationType",
    "CapturedImage",
    "JobStatus",
    "RetentionTag",
    "SolarTimes",
    "Webcam",
]
