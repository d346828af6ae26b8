"""Webcam frame capture with per-camera failure isolation."""

from __future__ import annotations

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import cv2
import numpy as np
import requests

from webcam_timelapse.animations import UNKNOWN_PARK
from webcam_timelapse.exceptions import TransientIOError, ValidationError
from webcam_timelapse.models import CapturedImage, Webcam
from webcam_timelapse.object_store import LocalObjectStore
from webcam_timelapse.solar import calculate_webcam_solar_times, is_daylight
from webcam_timelapse.store import Store
from webcam_timelapse.timezones import to_millis, to_utc

LOGGER = logging.getLogger(__name__)

CAPTURED = "captured"
SKIPPED = "skipped"
FAILED = "failed"

_EXTENSIONS = (
    ("jpeg", ".jpg"),
    ("jpg", ".jpg"),
    ("png", ".png"),
    ("gif", ".gif"),
    ("webp", ".webp"),
)
DEFAULT_EXTENSION = ".jpg"


@dataclass(frozen=True)
class CaptureDecision:
    should_capture: bool
    reason: str


@dataclass(frozen=True)
class CaptureResult:
    webcam_id: int
    status: str
    reason: str = ""
    object_name: Optional[str] = None


@dataclass(frozen=True)
class _Download:
    webcam: Webcam
    content: bytes
    digest: str
    extension: str


@dataclass
class CaptureSummary:
    captured: int = 0
    skipped: int = 0
    failed: int = 0

    def add(self, result: CaptureResult) -> None:
        if result.status == CAPTURED:
            self.captured += 1
        elif result.status == SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


def should_capture(webcam: Webcam, now: datetime) -> CaptureDecision:
    """Decide whether ``webcam`` is due for a new frame at ``now``."""
    if webcam.last_active_at is None:
        return CaptureDecision(True, "first capture")

    elapsed = to_utc(now) - to_utc(webcam.last_active_at)
    if elapsed <= timedelta(minutes=webcam.interval_minutes or 1):
        return CaptureDecision(False, "webcam interval")

    if not webcam.lat_lon:
        return CaptureDecision(True, "interval elapsed")

    now_ms = to_millis(now)
    if calculate_webcam_solar_times(webcam.lat_lon, now_ms) is None:
        return CaptureDecision(True, "interval elapsed and no usable location")

    if is_daylight(webcam.lat_lon, now_ms):
        return CaptureDecision(True, "interval elapsed and sun is up")
    return CaptureDecision(False, "sun below horizon")


def guess_ext(content_type: Optional[str]) -> str:
    """Map an image content type to a file extension."""
    lowered = (content_type or "").lower()
    for marker, extension in _EXTENSIONS:
        if marker in lowered:
            return extension
    return DEFAULT_EXTENSION


def image_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def validate_image(data: bytes) -> None:
    """Raise ``ValidationError`` when ``data`` cannot be decoded as an image."""
    if not data:
        raise ValidationError("Empty image payload")
    decoded = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if decoded is None:
        raise ValidationError("Payload is not a decodable image")


def image_key(webcam: Webcam, timestamp: int, extension: str) -> str:
    park = webcam.national_park or UNKNOWN_PARK
    return f"images/{park}/{webcam.name}/{timestamp}{extension}"


class WebcamCapture:
    """Fetch, deduplicate, and store frames for configured webcams."""

    def __init__(
        self,
        store: Store,
        objects: LocalObjectStore,
        *,
        http_timeout: float = 10.0,
        max_workers: int = 4,
    ) -> None:
        self.store = store
        self.objects = objects
        self.http_timeout = http_timeout
        self.max_workers = max(1, max_workers)

    def fetch(self, webcam: Webcam) -> Optional[requests.Response]:
        """GET the webcam URL; return None when the server reports no change."""
        try:
            response = requests.get(
                webcam.url,
                headers={"Cache-Control": "no-cache"},
                timeout=self.http_timeout,
            )
        except requests.RequestException as exc:
            raise TransientIOError(f"Fetch failed for {webcam.name}: {exc}") from exc

        if response.status_code == 304:
            return None
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise TransientIOError(
                f"Fetch failed for {webcam.name}: {response.status_code} {response.reason}"
            ) from exc
        return response

    def download(self, webcam: Webcam, now: datetime) -> CaptureResult | _Download:
        """Network half of a capture: decide, fetch, deduplicate, and validate."""
        decision = should_capture(webcam, now)
        if not decision.should_capture:
            LOGGER.debug("Skipping %s - %s", webcam.label, decision.reason)
            return CaptureResult(webcam.id, SKIPPED, decision.reason)

        response = self.fetch(webcam)
        if response is None:
            LOGGER.info("%s: image not modified (304)", webcam.label)
            return CaptureResult(webcam.id, SKIPPED, "not modified")

        content = response.content
        digest = image_hash(content)
        if webcam.last_image_hash and digest == webcam.last_image_hash:
            LOGGER.info("%s: image unchanged (hash: %s...), skipping save", webcam.label, digest[:8])
            return CaptureResult(webcam.id, SKIPPED, "duplicate image")

        validate_image(content)
        return _Download(
            webcam=webcam,
            content=content,
            digest=digest,
            extension=guess_ext(response.headers.get("Content-Type")),
        )

    def persist(self, download: _Download, now: datetime) -> CaptureResult:
        """Storage half of a capture: write the object, the image row, and webcam status."""
        webcam = download.webcam
        timestamp = int(to_utc(now).timestamp())
        key = image_key(webcam, timestamp, download.extension)

        self.objects.put(key, download.content)
        self.store.images.add(
            CapturedImage(id=None, webcam_id=webcam.id, timestamp=timestamp, object_name=key)
        )
        self.store.webcams.update_status(webcam.id, now, download.digest)
        LOGGER.info("%s: captured %s (%d bytes)", webcam.label, key, len(download.content))
        return CaptureResult(webcam.id, CAPTURED, "image saved", key)

    def capture(self, webcam: Webcam, now: datetime) -> CaptureResult:
        outcome = self.download(webcam, now)
        if isinstance(outcome, CaptureResult):
            return outcome
        return self.persist(outcome, now)

    def _download_isolated(self, webcam: Webcam, now: datetime) -> CaptureResult | _Download:
        try:
            return self.download(webcam, now)
        except Exception as exc:
            LOGGER.error("%s: capture failed: %s", webcam.label, exc)
            return CaptureResult(webcam.id, FAILED, str(exc))

    def capture_all(self, webcams: Sequence[Webcam], now: datetime) -> List[CaptureResult]:
        """Capture every webcam; one failure never cancels the rest.

        Downloads run concurrently on a thread pool. Store writes happen on
        the calling thread because a DuckDB connection is not shared across
        threads.
        """
        if not webcams:
            return []

        results: List[CaptureResult] = []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(webcams))) as executor:
            futures = [
                executor.submit(self._download_isolated, webcam, now)
                for webcam in webcams
            ]
            for future in as_completed(futures):
                outcome = future.result()
                if isinstance(outcome, CaptureResult):
                    results.append(outcome)
                    continue
                try:
                    results.append(self.persist(outcome, now))
                except Exception as exc:
                    LOGGER.error("%s: storing capture failed: %s", outcome.webcam.label, exc)
                    results.append(CaptureResult(outcome.webcam.id, FAILED, str(exc)))

        summary = CaptureSummary()
        for result in results:
            summary.add(result)
        LOGGER.info(
            "Webcam capture complete: %d captured, %d skipped, %d failed",
            summary.captured,
            summary.skipped,
            summary.failed,
        )
        return results


__all__ = [
    "CAPTURED",
    "FAILED",
    "SKIPPED",
    "CaptureDecision",
    "CaptureResult",
    "CaptureSummary",
    "WebcamCapture",
    "guess_ext",
    "image_hash",
    "image_key",
    "should_capture",
    "validate_image",
]
