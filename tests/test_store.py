import sys
from datetime import datetime, timezone
from pathlib import Path

import duckdb
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from webcam_timelapse.exceptions import StorageError  # noqa: E402
from webcam_timelapse.models import (  # noqa: E402
    AnimationJob,
    AnimationType,
    CapturedImage,
    JobStatus,
    RetentionTag,
    Webcam,
)
from webcam_timelapse.store import Store  # noqa: E402

NOW = datetime(2025, 9, 24, 18, 0, tzinfo=timezone.utc)


def _store():
    return Store(duckdb.connect(":memory:"))


def _job(reference_key="1_sunrise_20250924", scheduled=NOW):
    return AnimationJob(
        webcam_id=1,
        reference_key=reference_key,
        animation_type=AnimationType.SUNRISE,
        scheduled_time=scheduled,
        date_key="2025-09-24",
        start_time=1000,
        end_time=2000,
        storage_key="gifs/romo/cam/sunrise/20250924.mp4",
    )


def test_webcam_upsert_by_name_keeps_id():
    store = _store()
    first = store.webcams.upsert_by_name(Webcam(id=0, name="cam", url="http://a"))
    second = store.webcams.upsert_by_name(
        Webcam(id=0, name="cam", url="http://b", lat_lon="1,2", enabled=False)
    )
    assert first.id == second.id
    assert second.url == "http://b"
    assert second.lat_lon == "1,2"
    assert store.webcams.list_enabled() == []
    assert [webcam.name for webcam in store.webcams.list_all()] == ["cam"]


def test_webcam_status_round_trips_aware_datetime():
    store = _store()
    webcam = store.webcams.upsert_by_name(Webcam(id=0, name="cam", url="http://a"))
    store.webcams.update_status(webcam.id, NOW, "abc123")
    loaded = store.webcams.get(webcam.id)
    assert loaded.last_active_at == NOW
    assert loaded.last_image_hash == "abc123"


def test_images_in_range_is_inclusive_and_ordered():
    store = _store()
    for timestamp in (300, 100, 200, 400):
        store.images.add(CapturedImage(None, 1, timestamp, f"images/x/cam/{timestamp}.jpg"))
    store.images.add(CapturedImage(None, 2, 150, "images/x/other/150.jpg"))

    images = store.images.in_range(1, 100, 300)
    assert [image.timestamp for image in images] == [100, 200, 300]


def test_image_tags_persist_as_bitset():
    store = _store()
    image = store.images.add(CapturedImage(None, 1, 100, "images/x/cam/100.jpg"))
    store.images.update_tags(image.id, RetentionTag.SUNRISE | RetentionTag.SUNSET)
    loaded = store.images.get(image.id)
    assert loaded.has_tag(RetentionTag.SUNRISE)
    assert loaded.has_tag(RetentionTag.SUNSET)
    assert not loaded.has_tag(RetentionTag.SOLAR_NOON)
    assert store.images.untagged_before(1000) == []


def test_insert_if_absent_is_idempotent_on_reference_key():
    store = _store()
    job = _job()
    assert store.jobs.insert_if_absent(job) is True
    assert job.id is not None
    assert store.jobs.insert_if_absent(_job()) is False
    assert store.conn.execute("SELECT COUNT(*) FROM animation_jobs").fetchone()[0] == 1

    loaded = store.jobs.get(job.id)
    assert loaded.reference_key == job.reference_key
    assert loaded.scheduled_time == NOW
    assert loaded.status is JobStatus.AWAITING_IMAGES
    assert loaded.image_list == []


def test_transition_is_conditional_on_current_status():
    store = _store()
    job = _job()
    store.jobs.insert_if_absent(job)

    updated = store.jobs.transition(
        job.id, JobStatus.AWAITING_IMAGES, JobStatus.READY, image_list=["a/1.jpg", "a/2.jpg"]
    )
    assert updated.status is JobStatus.READY
    assert updated.image_list == ["a/1.jpg", "a/2.jpg"]

    assert store.jobs.transition(job.id, JobStatus.AWAITING_IMAGES, JobStatus.FAILED) is None
    assert store.jobs.get(job.id).status is JobStatus.READY


def test_list_due_respects_time_and_limit():
    store = _store()
    for hour in (15, 16, 17, 19):
        store.jobs.insert_if_absent(_job(f"1_hourly_20250924_{hour}", NOW.replace(hour=hour)))
    due = store.jobs.list_due(NOW)
    assert [job.reference_key for job in due] == [
        "1_hourly_20250924_15",
        "1_hourly_20250924_16",
        "1_hourly_20250924_17",
    ]
    assert len(store.jobs.list_due(NOW, limit=2)) == 2


def test_storage_errors_are_wrapped():
    store = _store()
    store.conn.execute("DROP TABLE images")
    with pytest.raises(StorageError):
        store.images.in_range(1, 0, 10)
