"""Animation job state machine.

Jobs move ``awaiting_images -> ready -> in_progress -> done``; ``failed`` is
reachable from every non-terminal state. Each move is a conditional update
on the current status, so two writers racing on one job cannot both win.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from webcam_timelapse.animations import MINIMUM_IMAGES, frame_cap, has_minimum_images
from webcam_timelapse.config import GlobalSettings
from webcam_timelapse.desample import desample
from webcam_timelapse.exceptions import ConflictError, NotFoundError
from webcam_timelapse.models import AnimationJob, JobStatus
from webcam_timelapse.store import Store

LOGGER = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.AWAITING_IMAGES: frozenset({JobStatus.READY, JobStatus.FAILED}),
    JobStatus.READY: frozenset({JobStatus.IN_PROGRESS, JobStatus.FAILED}),
    JobStatus.IN_PROGRESS: frozenset({JobStatus.DONE, JobStatus.FAILED}),
    JobStatus.DONE: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return JobStatus(target) in ALLOWED_TRANSITIONS[JobStatus(current)]


@dataclass
class AdvanceSummary:
    processed: int = 0
    moved_to_ready: int = 0
    failed: int = 0


class AnimationQueue:
    """Drive animation jobs through their lifecycle."""

    def __init__(self, store: Store, settings: Optional[GlobalSettings] = None) -> None:
        self.store = store
        self.settings = settings or GlobalSettings()

    def _fail(self, job: AnimationJob, message: str, now: datetime) -> bool:
        updated = self.store.jobs.transition(
            job.id,
            job.status,
            JobStatus.FAILED,
            image_list=[],
            error_message=message,
            processed_at=now,
        )
        return updated is not None

    def _prepare(self, job: AnimationJob, now: datetime) -> bool:
        """Gather and desample images for ``job``; return True when it became ready."""
        webcam = self.store.webcams.get(job.webcam_id)
        if webcam is None:
            LOGGER.error("Webcam not found for job %s (webcam_id: %s)", job.id, job.webcam_id)
            self._fail(job, "Webcam not found", now)
            return False

        images = self.store.images.in_range(webcam.id, job.start_time, job.end_time)
        image_keys = [image.object_name for image in images]
        wanted = frame_cap(
            job.animation_type,
            len(image_keys),
            fps=self.settings.animation_fps,
            durations=self.settings.animation_durations,
        )
        selected = desample(image_keys, wanted)

        if has_minimum_images(job.animation_type, len(selected)):
            updated = self.store.jobs.transition(
                job.id,
                JobStatus.AWAITING_IMAGES,
                JobStatus.READY,
                image_list=selected,
            )
            if updated is None:
                LOGGER.warning("Job %s changed state while being prepared", job.id)
                return False
            LOGGER.info(
                "Job %s (%s) ready with %d of %d images",
                job.id,
                job.reference_key,
                len(selected),
                len(image_keys),
            )
            return True

        message = (
            f"Insufficient images: found {len(selected)} after desampling from "
            f"{len(image_keys)}, required minimum for {job.animation_type.value} "
            f"is {MINIMUM_IMAGES[job.animation_type]}"
        )
        LOGGER.info("Job %s (%s) failed: %s", job.id, job.reference_key, message)
        self._fail(job, message, now)
        return False

    def advance(self, now: datetime, limit: Optional[int] = None) -> AdvanceSummary:
        """Move due ``awaiting_images`` jobs to ``ready`` or ``failed``."""
        summary = AdvanceSummary()
        candidates = self.store.jobs.list_due(now, limit)
        if not candidates:
            LOGGER.debug("No awaiting jobs due at %s", now.isoformat())
            return summary

        for job in candidates:
            summary.processed += 1
            try:
                if self._prepare(job, now):
                    summary.moved_to_ready += 1
                else:
                    summary.failed += 1
            except Exception as exc:
                LOGGER.exception("Failed to process job %s", job.id)
                summary.failed += 1
                try:
                    self._fail(job, f"Processing error: {exc}", now)
                except Exception:
                    LOGGER.exception("Could not mark job %s as failed", job.id)

        LOGGER.info(
            "Queue advance: %d processed, %d ready, %d failed",
            summary.processed,
            summary.moved_to_ready,
            summary.failed,
        )
        return summary

    def claim_ready(self, limit: int, now: datetime) -> List[AnimationJob]:
        """Move up to ``limit`` ready jobs to ``in_progress``, earliest scheduled first."""
        claimed: List[AnimationJob] = []
        for job in self.store.jobs.list_by_status(JobStatus.READY, limit):
            updated = self.store.jobs.transition(job.id, JobStatus.READY, JobStatus.IN_PROGRESS)
            if updated is not None:
                claimed.append(updated)
        LOGGER.debug("Claimed %d ready jobs at %s", len(claimed), now.isoformat())
        return claimed

    def _require(self, job_id: int) -> AnimationJob:
        job = self.store.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Animation job {job_id} not found")
        return job

    def mark_complete(self, job_id: int, now: datetime) -> AnimationJob:
        job = self._require(job_id)
        if not can_transition(job.status, JobStatus.DONE):
            raise ConflictError(
                f"Animation job {job_id} is '{job.status.value}', expected 'in_progress'",
                actual_status=job.status.value,
            )
        updated = self.store.jobs.transition(
            job_id, JobStatus.IN_PROGRESS, JobStatus.DONE, processed_at=now
        )
        if updated is None:
            actual = self._require(job_id).status.value
            raise ConflictError(
                f"Animation job {job_id} is '{actual}', expected 'in_progress'",
                actual_status=actual,
            )
        return updated

    def mark_failed(self, job_id: int, message: str, now: datetime) -> AnimationJob:
        job = self._require(job_id)
        if not can_transition(job.status, JobStatus.FAILED):
            raise ConflictError(
                f"Animation job {job_id} is already '{job.status.value}'",
                actual_status=job.status.value,
            )
        updated = self.store.jobs.transition(
            job_id, job.status, JobStatus.FAILED, error_message=message, processed_at=now
        )
        if updated is None:
            actual = self._require(job_id).status.value
            raise ConflictError(
                f"Animation job {job_id} changed to '{actual}' before it could be failed",
                actual_status=actual,
            )
        return updated

    def delete(self, job_id: int) -> None:
        if not self.store.jobs.delete(job_id):
            raise NotFoundError(f"Animation job {job_id} not found")


__all__ = ["ALLOWED_TRANSITIONS", "AdvanceSummary", "AnimationQueue", "can_transition"]
