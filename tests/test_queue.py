import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import duckdb
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import webcam_timelapse.queue as queue_module  # noqa: E402
from webcam_timelapse.exceptions import ConflictError, NotFoundError  # noqa: E402
from webcam_timelapse.models import (  # noqa: E402
    AnimationJob,
    AnimationType,
    CapturedImage,
    JobStatus,
    Webcam,
)
from webcam_timelapse.queue import AnimationQueue, can_transition  # noqa: E402
from webcam_timelapse.store import Store  # noqa: E402

NOW = datetime(2025, 9, 24, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    store = Store(duckdb.connect(":memory:"))
    yield store
    store.close()


def _webcam(store, name="cam"):
    return store.webcams.upsert_by_name(Webcam(id=0, name=name, url="http://example.org"))


def _add_images(store, webcam_id, timestamps):
    for timestamp in timestamps:
        store.images.add(
            CapturedImage(None, webcam_id, timestamp, f"images/romo/cam/{timestamp}.jpg")
        )


def _job(store, webcam_id, key, kind=AnimationType.HOURLY, scheduled=None, start=1000, end=2000):
    job = AnimationJob(
        webcam_id=webcam_id,
        reference_key=key,
        animation_type=kind,
        scheduled_time=scheduled or NOW - timedelta(minutes=5),
        date_key="2025-09-24",
        start_time=start,
        end_time=end,
        storage_key=f"gifs/romo/cam/{kind.value}/{key}.mp4",
    )
    assert store.jobs.insert_if_absent(job)
    return job


def test_transition_table():
    assert can_transition(JobStatus.AWAITING_IMAGES, JobStatus.READY)
    assert can_transition(JobStatus.READY, JobStatus.FAILED)
    assert can_transition(JobStatus.IN_PROGRESS, JobStatus.DONE)
    assert not can_transition(JobStatus.AWAITING_IMAGES, JobStatus.IN_PROGRESS)
    assert not can_transition(JobStatus.READY, JobStatus.DONE)
    assert not can_transition(JobStatus.DONE, JobStatus.FAILED)


def test_advance_moves_job_with_enough_images_to_ready(store):
    webcam = _webcam(store)
    _add_images(store, webcam.id, [1000, 1100, 1200, 1300, 1400, 2500])
    job = _job(store, webcam.id, "1_hourly_20250924_06")

    summary = AnimationQueue(store).advance(NOW)

    assert (summary.processed, summary.moved_to_ready, summary.failed) == (1, 1, 0)
    loaded = store.jobs.get(job.id)
    assert loaded.status is JobStatus.READY
    assert loaded.image_list == [f"images/romo/cam/{ts}.jpg" for ts in (1000, 1100, 1200, 1300, 1400)]


def test_advance_fails_job_below_minimum(store):
    webcam = _webcam(store)
    _add_images(store, webcam.id, [1000, 1100, 1200, 1300])
    job = _job(store, webcam.id, "1_hourly_20250924_07")

    summary = AnimationQueue(store).advance(NOW)

    assert summary.failed == 1
    loaded = store.jobs.get(job.id)
    assert loaded.status is JobStatus.FAILED
    assert "found 4 after desampling from 4" in loaded.error_message
    assert "hourly" in loaded.error_message
    assert loaded.processed_at == NOW


def test_advance_fails_job_for_missing_webcam(store):
    job = _job(store, 999, "999_sunrise_20250924", kind=AnimationType.SUNRISE)
    AnimationQueue(store).advance(NOW)
    loaded = store.jobs.get(job.id)
    assert loaded.status is JobStatus.FAILED
    assert loaded.error_message == "Webcam not found"


def test_advance_ignores_jobs_not_yet_due_and_honours_limit(store):
    webcam = _webcam(store)
    future = _job(store, webcam.id, "future", scheduled=NOW + timedelta(minutes=1))
    for index in range(3):
        _job(store, webcam.id, f"due-{index}", scheduled=NOW - timedelta(minutes=10 - index))

    summary = AnimationQueue(store).advance(NOW, limit=2)

    assert summary.processed == 2
    assert store.jobs.get(future.id).status is JobStatus.AWAITING_IMAGES
    assert store.jobs.get_by_reference("due-2").status is JobStatus.AWAITING_IMAGES


def test_advance_isolates_per_job_errors(store, monkeypatch):
    webcam = _webcam(store)
    _add_images(store, webcam.id, [1000, 1100, 1200, 1300, 1400])
    broken = _job(store, webcam.id, "broken", scheduled=NOW - timedelta(minutes=2))
    healthy = _job(store, webcam.id, "healthy", scheduled=NOW - timedelta(minutes=1))

    real_desample = queue_module.desample
    calls = []

    def flaky_desample(keys, wanted):
        calls.append(wanted)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return real_desample(keys, wanted)

    monkeypatch.setattr(queue_module, "desample", flaky_desample)
    summary = AnimationQueue(store).advance(NOW)

    assert (summary.processed, summary.moved_to_ready, summary.failed) == (2, 1, 1)
    assert store.jobs.get(broken.id).status is JobStatus.FAILED
    assert store.jobs.get(broken.id).error_message == "Processing error: boom"
    assert store.jobs.get(healthy.id).status is JobStatus.READY


def _ready_job(store, webcam_id, key, scheduled):
    job = _job(store, webcam_id, key, scheduled=scheduled)
    store.jobs.transition(job.id, JobStatus.AWAITING_IMAGES, JobStatus.READY, image_list=["a/1.jpg"])
    return job


def test_claim_ready_orders_by_schedule_and_limits(store):
    webcam = _webcam(store)
    later = _ready_job(store, webcam.id, "later", NOW - timedelta(minutes=1))
    earlier = _ready_job(store, webcam.id, "earlier", NOW - timedelta(minutes=30))
    _job(store, webcam.id, "awaiting")

    claimed = AnimationQueue(store).claim_ready(1, NOW)

    assert [job.id for job in claimed] == [earlier.id]
    assert claimed[0].status is JobStatus.IN_PROGRESS
    assert store.jobs.get(later.id).status is JobStatus.READY


def test_mark_complete_requires_in_progress(store):
    webcam = _webcam(store)
    job = _ready_job(store, webcam.id, "ready", NOW)
    queue = AnimationQueue(store)

    with pytest.raises(ConflictError) as excinfo:
        queue.mark_complete(job.id, NOW)
    assert excinfo.value.actual_status == "ready"
    assert "ready" in str(excinfo.value)

    queue.claim_ready(5, NOW)
    done = queue.mark_complete(job.id, NOW)
    assert done.status is JobStatus.DONE
    assert done.processed_at == NOW

    with pytest.raises(NotFoundError):
        queue.mark_complete(12345, NOW)


def test_mark_failed_from_non_terminal_states_only(store):
    webcam = _webcam(store)
    job = _job(store, webcam.id, "awaiting")
    queue = AnimationQueue(store)

    failed = queue.mark_failed(job.id, "encoder crashed", NOW)
    assert failed.status is JobStatus.FAILED
    assert failed.error_message == "encoder crashed"

    with pytest.raises(ConflictError) as excinfo:
        queue.mark_failed(job.id, "again", NOW)
    assert excinfo.value.actual_status == "failed"


def test_delete_removes_row_regardless_of_state(store):
    webcam = _webcam(store)
    job = _ready_job(store, webcam.id, "ready", NOW)
    queue = AnimationQueue(store)

    queue.delete(job.id)
    assert store.jobs.get(job.id) is None
    with pytest.raises(NotFoundError):
        queue.delete(job.id)
