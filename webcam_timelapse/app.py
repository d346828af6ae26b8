"""
Webcam Timelapse Service
Captures park webcam frames every minute, plans daily sunrise/sunset/full-day/hourly
animations from solar windows, and moves animation jobs through their queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar, Union

from dotenv import load_dotenv

from webcam_timelapse.capture import CaptureSummary, WebcamCapture
from webcam_timelapse.cleanup import (
    CleanupSummary,
    cleanup_old_animations,
    minimum_image_age_hours,
    remove_old_images,
)
from webcam_timelapse.config import Config, WebcamConfig, load_config
from webcam_timelapse.exceptions import ConflictError, NotFoundError, ValidationError
from webcam_timelapse.logging_setup import configure_logging
from webcam_timelapse.models import AnimationJob, SolarTimes, Webcam
from webcam_timelapse.object_store import LocalObjectStore
from webcam_timelapse.planner import ScheduleSummary, schedule_day
from webcam_timelapse.queue import AdvanceSummary, AnimationQueue
from webcam_timelapse.retention import (
    RetentionSummary,
    apply_retention_policies,
    apply_webcam_retention,
)
from webcam_timelapse.solar import solar_times_for_local_date
from webcam_timelapse.store import Store
from webcam_timelapse.timezones import (
    crossed_local_time,
    determine_timezone,
    parse_date_string,
    to_utc,
)
from webcam_timelapse import scheduler as scheduler_module

# Load environment variables
load_dotenv()

T = TypeVar("T")

REASON_COMPLETED = "completed"
REASON_NOT_FOUND = "not_found"
REASON_CONFLICT = "conflict"
REASON_ERROR = "error"


@dataclass(frozen=True)
class CompletionResult:
    success: bool
    message: str
    reason: str


@dataclass
class TickReport:
    """What each step of one tick did; ``errors`` maps step name to message."""

    now: datetime
    capture: Optional[CaptureSummary] = None
    advance: Optional[AdvanceSummary] = None
    schedule: Optional[ScheduleSummary] = None
    cleanup: Optional[Tuple[CleanupSummary, CleanupSummary]] = None
    retention: Optional[RetentionSummary] = None
    errors: Dict[str, str] = field(default_factory=dict)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnimationService:
    """Facade over capture, scheduling, queue, retention, and cleanup."""

    def __init__(
        self,
        config: Config,
        *,
        store: Optional[Store] = None,
        objects: Optional[LocalObjectStore] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.settings = config.global_settings
        self.logger = logger or logging.getLogger(__name__)
        self.store = store or Store.open(self.settings.database_path)
        self.objects = objects or LocalObjectStore(
            self.settings.storage_dir,
            self.settings.public_base_url,
        )
        self.queue = AnimationQueue(self.store, self.settings)
        self.capture = WebcamCapture(
            self.store,
            self.objects,
            http_timeout=self.settings.http_timeout,
            max_workers=self.settings.capture_workers,
        )

    @classmethod
    def from_config_file(cls, config_file: Union[str, Path] = "config.json") -> "AnimationService":
        """Load configuration, set up logging, and sync configured webcams."""
        config = load_config(config_file)
        settings = config.global_settings
        logger = configure_logging(
            logger_name=__name__,
            level=settings.log_level,
            log_file=settings.log_file,
        )
        service = cls(config, logger=logger)
        service.import_webcams()
        return service

    # ------------------------------------------------------------------
    # Webcams
    # ------------------------------------------------------------------

    def import_webcams(self, webcams: Optional[Iterable[WebcamConfig]] = None) -> List[Webcam]:
        """Upsert configured webcams by name."""
        entries = list(self.config.webcams if webcams is None else webcams)
        imported: List[Webcam] = []
        for entry in entries:
            imported.append(
                self.store.webcams.upsert_by_name(
                    Webcam(
                        id=0,
                        name=entry.name,
                        url=entry.url,
                        display_name=entry.display_name,
                        enabled=entry.enabled,
                        interval_minutes=entry.interval_minutes,
                        lat_lon=entry.lat_lon,
                        timezone=entry.timezone,
                        national_park=entry.national_park,
                    )
                )
            )
        if imported:
            self.logger.info("Imported %d webcams from configuration", len(imported))
        return imported

    def get_webcam_solar_times(self, webcam_id: int, date_string: str) -> SolarTimes:
        """Solar events for a webcam's local calendar day.

        Raises ``NotFoundError`` for an unknown webcam and ``ValidationError``
        when the webcam has no usable location or timezone.
        """
        day = parse_date_string(date_string)
        webcam = self.store.webcams.get(webcam_id)
        if webcam is None:
            raise NotFoundError(f"Webcam {webcam_id} not found")
        if not webcam.lat_lon:
            raise ValidationError(f"Webcam {webcam_id} has no location")
        tz = determine_timezone(webcam.timezone)
        if tz is None:
            raise ValidationError(f"Webcam {webcam_id} has no valid timezone")

        solar = solar_times_for_local_date(webcam.lat_lon, day, tz)
        if solar is None:
            raise ValidationError(f"Webcam {webcam_id} has an invalid location: {webcam.lat_lon}")
        return solar

    # ------------------------------------------------------------------
    # Scheduling and queue
    # ------------------------------------------------------------------

    def schedule_day(self, date_string: str, now: Optional[datetime] = None) -> ScheduleSummary:
        return schedule_day(
            self.store,
            date_string,
            now or _utcnow(),
            self.settings.animation_extension,
        )

    def advance_queue(self, now: Optional[datetime] = None) -> AdvanceSummary:
        return self.queue.advance(now or _utcnow(), limit=self.settings.queue_batch_size)

    def claim_jobs(self, limit: int, now: Optional[datetime] = None) -> List[AnimationJob]:
        return self.queue.claim_ready(limit, now or _utcnow())

    def mark_job_complete(self, job_id: int, now: Optional[datetime] = None) -> CompletionResult:
        """Complete an in-progress job, reporting failures as a result instead of raising."""
        try:
            job = self.queue.mark_complete(job_id, now or _utcnow())
        except NotFoundError as exc:
            return CompletionResult(False, str(exc), REASON_NOT_FOUND)
        except ConflictError as exc:
            return CompletionResult(False, str(exc), REASON_CONFLICT)
        except Exception as exc:
            self.logger.error("Failed to complete animation job %s: %s", job_id, exc)
            return CompletionResult(False, f"Internal error: {exc}", REASON_ERROR)

        self.logger.info("Animation job %s (%s) completed", job.id, job.reference_key)
        return CompletionResult(True, f"Animation job {job_id} marked as done", REASON_COMPLETED)

    def mark_job_failed(
        self,
        job_id: int,
        message: str,
        now: Optional[datetime] = None,
    ) -> AnimationJob:
        return self.queue.mark_failed(job_id, message, now or _utcnow())

    def delete_job(self, job_id: int) -> None:
        self.queue.delete(job_id)
        self.logger.info("Deleted animation job %s", job_id)

    # ------------------------------------------------------------------
    # Capture, retention, cleanup
    # ------------------------------------------------------------------

    def capture_webcams(self, now: Optional[datetime] = None) -> CaptureSummary:
        webcams = self.store.webcams.list_enabled()
        self.logger.debug("Found %d enabled webcams", len(webcams))
        summary = CaptureSummary()
        for result in self.capture.capture_all(webcams, now or _utcnow()):
            summary.add(result)
        return summary

    def apply_retention(self, date_string: str) -> RetentionSummary:
        return apply_retention_policies(self.store, date_string)

    def retention_due(self, now: datetime) -> List[Tuple[Webcam, date]]:
        """Webcams whose local clock just reached ``retention_time``, with the local day to finish."""
        due: List[Tuple[Webcam, date]] = []
        for webcam in self.store.webcams.list_all():
            tz = determine_timezone(webcam.timezone)
            if not webcam.lat_lon or tz is None:
                continue
            if crossed_local_time(now, tz, self.settings.retention_time):
                due.append((webcam, to_utc(now).astimezone(tz).date() - timedelta(days=1)))
        return due

    def apply_due_retention(self, due: Iterable[Tuple[Webcam, date]]) -> RetentionSummary:
        summary = RetentionSummary()
        for webcam, day in due:
            result = apply_webcam_retention(self.store, webcam, day)
            self.logger.info(
                "Retention for %s on %s: %d selections, %d tags added, %d removed",
                webcam.label,
                day.isoformat(),
                result.selected,
                result.tags_added,
                result.tags_removed,
            )
            summary.merge(result)
        return summary

    def cleanup(self, now: Optional[datetime] = None) -> Tuple[CleanupSummary, CleanupSummary]:
        current = now or _utcnow()
        max_age = max(
            self.settings.image_retention_hours,
            minimum_image_age_hours(self.settings.retention_time),
        )
        images = remove_old_images(self.store, self.objects, current, max_age)
        animations = cleanup_old_animations(self.store, self.objects, current, self.settings)
        return images, animations

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def _run_step(self, report: TickReport, name: str, step: Callable[[], T]) -> Optional[T]:
        try:
            return step()
        except Exception as exc:
            self.logger.exception("Tick step '%s' failed", name)
            report.errors[name] = str(exc)
            return None

    @staticmethod
    def _at(now: datetime, clock: Tuple[int, int]) -> bool:
        return (now.hour, now.minute) == clock

    def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Run one minute of work; a failing step never stops the steps after it."""
        current = to_utc(now) if now is not None else _utcnow()
        report = TickReport(now=current)

        report.capture = self._run_step(report, "capture", lambda: self.capture_webcams(current))
        report.advance = self._run_step(report, "advance", lambda: self.advance_queue(current))

        if self._at(current, self.settings.schedule_time):
            next_day = (current + timedelta(days=1)).strftime("%Y-%m-%d")
            report.schedule = self._run_step(
                report, "schedule", lambda: self.schedule_day(next_day, current)
            )

        if current.minute == 0:
            report.cleanup = self._run_step(report, "cleanup", lambda: self.cleanup(current))

        due = self._run_step(report, "retention", lambda: self.retention_due(current))
        if due:
            report.retention = self._run_step(
                report, "retention", lambda: self.apply_due_retention(due)
            )

        return report

    def run(self) -> None:
        """Start the blocking scheduler loop."""
        scheduler_module.run(self)

    def close(self) -> None:
        self.store.close()


__all__ = ["AnimationService", "CompletionResult", "TickReport"]
