"""Configuration dataclasses and loading helpers for the webcam timelapse system."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from webcam_timelapse.animations import DEFAULT_DURATIONS, DEFAULT_FPS
from webcam_timelapse.models import AnimationType

_CLOCK_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def _default_capture_workers() -> int:
    """Determine a sensible default for concurrent webcam fetches."""
    return max(1, min(8, (os.cpu_count() or 1) * 2))


def _parse_bool(value: Any, default: bool) -> bool:
    """Parse truthy/falsy values from multiple input types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return value != 0
    return default


def _parse_positive_int(value: Any, default: int) -> int:
    """Parse a positive integer with fallback to default."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _parse_float(value: Any, default: float) -> float:
    """Parse a floating point number with fallback to default."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_clock(value: Any, default: Tuple[int, int]) -> Tuple[int, int]:
    """Parse an ``HH:MM`` string into an ``(hour, minute)`` pair."""
    if isinstance(value, str):
        match = _CLOCK_PATTERN.match(value.strip())
        if match:
            return int(match.group(1)), int(match.group(2))
    return default


def _parse_durations(raw: Any) -> Dict[AnimationType, Optional[int]]:
    """Merge per-type playback seconds over the defaults."""
    durations: Dict[AnimationType, Optional[int]] = dict(DEFAULT_DURATIONS)
    if not isinstance(raw, Mapping):
        return durations
    for name, value in raw.items():
        try:
            kind = AnimationType(name)
        except ValueError:
            continue
        if value is None:
            durations[kind] = None
            continue
        parsed = _parse_positive_int(value, 0)
        if parsed:
            durations[kind] = parsed
    return durations


@dataclass(frozen=True)
class GlobalSettings:
    """Top-level configuration shared by every webcam."""

    database_path: Path = Path("data/webcams.duckdb")
    storage_dir: Path = Path("data/objects")
    public_base_url: str = ""
    http_timeout: float = 10.0
    capture_workers: int = 4
    queue_batch_size: int = 50
    animation_extension: str = "mp4"
    animation_fps: int = DEFAULT_FPS
    animation_durations: Dict[AnimationType, Optional[int]] = field(
        default_factory=lambda: dict(DEFAULT_DURATIONS)
    )
    schedule_time: Tuple[int, int] = (23, 57)
    # Local wall-clock time at each webcam; the previous local day is tagged.
    retention_time: Tuple[int, int] = (1, 0)
    image_retention_hours: int = 24
    hourly_animation_retention_hours: int = 48
    animation_retention_days: int = 30
    log_file: Optional[Path] = Path("logs/webcam_timelapse.log")
    log_level: str = "INFO"


@dataclass(frozen=True)
class WebcamConfig:
    """Configuration for a single webcam, imported into the store by name."""

    name: str
    url: str
    display_name: Optional[str] = None
    enabled: bool = True
    interval_minutes: int = 1
    lat_lon: Optional[str] = None
    timezone: Optional[str] = None
    national_park: Optional[str] = None


@dataclass(frozen=True)
class Config:
    """Root configuration object for the webcam timelapse system."""

    webcams: Tuple[WebcamConfig, ...]
    global_settings: GlobalSettings


def _parse_log_file(value: Any, default: Optional[Path]) -> Optional[Path]:
    if value is None:
        return default
    text = str(value).strip()
    if not text or text.lower() in {"none", "off", "false"}:
        return None
    return Path(text)


def _parse_global_settings(data: Mapping[str, Any]) -> GlobalSettings:
    default = GlobalSettings()
    return GlobalSettings(
        database_path=Path(data.get("database_path", default.database_path)),
        storage_dir=Path(data.get("storage_dir", default.storage_dir)),
        public_base_url=str(data.get("public_base_url", default.public_base_url)),
        http_timeout=_parse_float(data.get("http_timeout"), default.http_timeout),
        capture_workers=_parse_positive_int(
            data.get("capture_workers"),
            _default_capture_workers(),
        ),
        queue_batch_size=_parse_positive_int(data.get("queue_batch_size"), default.queue_batch_size),
        animation_extension=str(data.get("animation_extension", default.animation_extension)).lstrip("."),
        animation_fps=_parse_positive_int(data.get("animation_fps"), default.animation_fps),
        animation_durations=_parse_durations(data.get("animation_durations")),
        schedule_time=_parse_clock(data.get("schedule_time"), default.schedule_time),
        retention_time=_parse_clock(data.get("retention_time"), default.retention_time),
        image_retention_hours=_parse_positive_int(
            data.get("image_retention_hours"),
            default.image_retention_hours,
        ),
        hourly_animation_retention_hours=_parse_positive_int(
            data.get("hourly_animation_retention_hours"),
            default.hourly_animation_retention_hours,
        ),
        animation_retention_days=_parse_positive_int(
            data.get("animation_retention_days"),
            default.animation_retention_days,
        ),
        log_file=_parse_log_file(data.get("log_file"), default.log_file),
        log_level=str(data.get("log_level", default.log_level)).upper(),
    )


def _parse_webcams(raw_list: Iterable[Any]) -> Tuple[WebcamConfig, ...]:
    webcams: list[WebcamConfig] = []
    for entry in raw_list or []:
        if not isinstance(entry, Mapping):
            continue
        name = str(entry.get("name", "")).strip()
        url = str(entry.get("url", "")).strip()
        if not name or not url:
            continue
        webcams.append(
            WebcamConfig(
                name=name,
                url=url,
                display_name=_parse_optional_str(entry.get("display_name")),
                enabled=_parse_bool(entry.get("enabled"), True),
                interval_minutes=_parse_positive_int(entry.get("interval_minutes"), 1),
                lat_lon=_parse_optional_str(entry.get("lat_lon")),
                timezone=_parse_optional_str(entry.get("timezone")),
                national_park=_parse_optional_str(entry.get("national_park")),
            )
        )
    return tuple(webcams)


def _load_env_config(env: Mapping[str, str]) -> Config:
    """Fallback configuration derived from environment variables."""
    global_settings = _parse_global_settings({
        key: value
        for key, value in {
            "database_path": env.get("DATABASE_PATH"),
            "storage_dir": env.get("STORAGE_DIR"),
            "public_base_url": env.get("PUBLIC_BASE_URL"),
            "http_timeout": env.get("HTTP_TIMEOUT"),
            "capture_workers": env.get("CAPTURE_WORKERS"),
            "queue_batch_size": env.get("QUEUE_BATCH_SIZE"),
            "animation_extension": env.get("ANIMATION_EXTENSION"),
            "animation_fps": env.get("ANIMATION_FPS"),
            "schedule_time": env.get("SCHEDULE_TIME"),
            "retention_time": env.get("RETENTION_TIME"),
            "image_retention_hours": env.get("IMAGE_RETENTION_HOURS"),
            "hourly_animation_retention_hours": env.get("HOURLY_ANIMATION_RETENTION_HOURS"),
            "animation_retention_days": env.get("ANIMATION_RETENTION_DAYS"),
            "log_file": env.get("LOG_FILE"),
            "log_level": env.get("LOG_LEVEL"),
        }.items()
        if value is not None
    })

    webcams: Tuple[WebcamConfig, ...] = ()
    webcams_file = env.get("WEBCAMS_FILE")
    if webcams_file and Path(webcams_file).exists():
        with Path(webcams_file).open("r", encoding="utf-8") as handle:
            webcams = _parse_webcams(json.load(handle))

    return Config(webcams=webcams, global_settings=global_settings)


def load_config(config_path: Path | str, env: Mapping[str, str] | None = None) -> Config:
    """Load configuration from a JSON file or environment defaults."""
    source_env = env if env is not None else os.environ
    path = Path(config_path)

    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        return Config(
            webcams=_parse_webcams(data.get("webcams", [])),
            global_settings=_parse_global_settings(data.get("global_settings", {})),
        )

    return _load_env_config(source_env)


__all__ = [
    "Config",
    "GlobalSettings",
    "WebcamConfig",
    "load_config",
    "_parse_bool",
    "_parse_clock",
    "_parse_positive_int",
]
