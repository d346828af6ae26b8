import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import duckdb
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from webcam_timelapse.cleanup import (  # noqa: E402
    cleanup_old_animations,
    minimum_image_age_hours,
    remove_old_images,
)
from webcam_timelapse.models import (  # noqa: E402
    AnimationJob,
    AnimationType,
    CapturedImage,
    JobStatus,
    RetentionTag,
    Webcam,
)
from webcam_timelapse.object_store import LocalObjectStore  # noqa: E402
from webcam_timelapse.store import Store  # noqa: E402

NOW = datetime(2025, 9, 24, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    store = Store(duckdb.connect(":memory:"))
    store.webcams.upsert_by_name(Webcam(id=0, name="cam", url="http://example.org"))
    yield store
    store.close()


@pytest.fixture
def objects(tmp_path):
    return LocalObjectStore(tmp_path / "objects")


def _image(store, objects, age, tags=RetentionTag.NONE, key=None):
    timestamp = int((NOW - age).timestamp())
    key = key or f"images/unknown/cam/{timestamp}.jpg"
    objects.put(key, b"frame")
    return store.images.add(CapturedImage(None, 1, timestamp, key, tags))


def _finished_job(store, objects, kind, age, status=JobStatus.DONE):
    scheduled = NOW - age
    key = f"gifs/unknown/cam/{kind.value}/{scheduled:%Y%m%d_%H%M}.mp4"
    job = AnimationJob(
        webcam_id=1,
        reference_key=f"cam_{kind.value}_{scheduled:%Y%m%d_%H%M}",
        animation_type=kind,
        scheduled_time=scheduled,
        date_key=scheduled.strftime("%Y-%m-%d"),
        start_time=int(scheduled.timestamp()) - 3600,
        end_time=int(scheduled.timestamp()),
        storage_key=key,
    )
    assert store.jobs.insert_if_absent(job)
    objects.put(key, b"animation")
    store.jobs.transition(job.id, JobStatus.AWAITING_IMAGES, status, processed_at=scheduled)
    return job


def test_remove_old_images_keeps_recent_and_tagged(store, objects):
    expired = _image(store, objects, timedelta(hours=30))
    tagged = _image(store, objects, timedelta(hours=30, minutes=1), RetentionTag.SUNSET)
    recent = _image(store, objects, timedelta(hours=2))

    summary = remove_old_images(store, objects, NOW, max_age_hours=24)

    assert summary.removed == 1
    assert summary.errors == 0
    assert store.images.get(expired.id) is None
    assert not objects.exists(expired.object_name)
    assert store.images.get(tagged.id) is not None
    assert objects.exists(tagged.object_name)
    assert store.images.get(recent.id) is not None


def test_remove_old_images_keeps_objects_other_rows_still_use(store, objects):
    shared = "images/unknown/cam/shared.jpg"
    expired = _image(store, objects, timedelta(hours=30), key=shared)
    kept = _image(store, objects, timedelta(hours=31), RetentionTag.SUNRISE, key=shared)

    summary = remove_old_images(store, objects, NOW, max_age_hours=24)

    assert summary.removed == 1
    assert store.images.get(expired.id) is None
    assert store.images.get(kept.id) is not None
    assert objects.exists(shared)


def test_minimum_image_age_covers_the_retention_lag():
    assert minimum_image_age_hours((1, 0)) == 26
    assert minimum_image_age_hours((3, 30)) == 29
    assert minimum_image_age_hours((0, 0)) == 25


def test_remove_old_images_tolerates_missing_objects(store, objects):
    image = _image(store, objects, timedelta(days=3))
    objects.delete(image.object_name)

    summary = remove_old_images(store, objects, NOW)

    assert summary.removed == 1
    assert store.images.get(image.id) is None


def test_cleanup_old_animations_uses_per_type_retention(store, objects):
    old_hourly = _finished_job(store, objects, AnimationType.HOURLY, timedelta(hours=50))
    fresh_hourly = _finished_job(store, objects, AnimationType.HOURLY, timedelta(hours=10))
    month_old_sunset = _finished_job(
        store, objects, AnimationType.SUNSET, timedelta(days=31), JobStatus.FAILED
    )
    week_old_sunrise = _finished_job(store, objects, AnimationType.SUNRISE, timedelta(days=7))

    summary = cleanup_old_animations(store, objects, NOW)

    assert summary.removed == 2
    assert store.jobs.get(old_hourly.id) is None
    assert not objects.exists(old_hourly.storage_key)
    assert store.jobs.get(month_old_sunset.id) is None
    assert store.jobs.get(fresh_hourly.id) is not None
    assert store.jobs.get(week_old_sunrise.id) is not None
    assert objects.exists(week_old_sunrise.storage_key)


def test_cleanup_old_animations_leaves_unfinished_jobs(store, objects):
    job = _finished_job(store, objects, AnimationType.HOURLY, timedelta(days=5), JobStatus.READY)

    summary = cleanup_old_animations(store, objects, NOW)

    assert summary.removed == 0
    assert store.jobs.get(job.id).status is JobStatus.READY
