"""Animation sizing rules and deterministic key builders."""

from __future__ import annotations

from datetime import datetime
from typing import Mapping, Optional, Union

from webcam_timelapse.models import AnimationType

AnimationTypeLike = Union[AnimationType, str]

MINIMUM_IMAGES: Mapping[AnimationType, int] = {
    AnimationType.HOURLY: 5,
    AnimationType.SUNRISE: 3,
    AnimationType.SUNSET: 3,
    AnimationType.FULL_DAY: 10,
    AnimationType.ON_DEMAND: 3,
}

DEFAULT_FPS = 15

# Playback length in seconds; None keeps every captured image.
DEFAULT_DURATIONS: Mapping[AnimationType, Optional[int]] = {
    AnimationType.FULL_DAY: 10,
    AnimationType.HOURLY: 4,
    AnimationType.SUNRISE: 8,
    AnimationType.SUNSET: 8,
    AnimationType.ON_DEMAND: None,
}

UNKNOWN_PARK = "unknown"


def has_minimum_images(animation_type: AnimationTypeLike, image_count: int) -> bool:
    """Return True when ``image_count`` meets the type's minimum."""
    return image_count >= MINIMUM_IMAGES[AnimationType(animation_type)]


def frame_cap(
    animation_type: AnimationTypeLike,
    available: int,
    *,
    fps: int = DEFAULT_FPS,
    durations: Optional[Mapping[AnimationType, Optional[int]]] = None,
) -> int:
    """Number of frames to keep: ``fps * seconds`` capped at what exists."""
    seconds = (durations or DEFAULT_DURATIONS).get(AnimationType(animation_type))
    if seconds is None:
        return available
    return min(fps * seconds, available)


def build_reference_key(
    webcam_id: int,
    animation_type: AnimationTypeLike,
    local_start: datetime,
) -> str:
    """``{webcamId}_{type}_{yyyyMMdd}`` with ``_{HH}`` appended for hourly jobs."""
    kind = AnimationType(animation_type)
    key = f"{webcam_id}_{kind.value}_{local_start:%Y%m%d}"
    if kind is AnimationType.HOURLY:
        key = f"{key}_{local_start:%H}"
    return key


def build_storage_key(
    national_park: Optional[str],
    webcam_name: str,
    animation_type: AnimationTypeLike,
    local_start: datetime,
    extension: str = "mp4",
) -> str:
    """``gifs/{park}/{webcam}/{type}/{yyyyMMdd}[_{HH}].{ext}``."""
    kind = AnimationType(animation_type)
    stamp = f"{local_start:%Y%m%d}"
    if kind is AnimationType.HOURLY:
        stamp = f"{stamp}_{local_start:%H}"
    park = national_park or UNKNOWN_PARK
    return f"gifs/{park}/{webcam_name}/{kind.value}/{stamp}.{extension.lstrip('.')}"


__all__ = [
    "DEFAULT_DURATIONS",
    "DEFAULT_FPS",
    "MINIMUM_IMAGES",
    "build_reference_key",
    "build_storage_key",
    "frame_cap",
    "has_minimum_images",
]
