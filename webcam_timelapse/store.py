"""DuckDB-backed relational store for webcams, captured images, and animation jobs."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import duckdb

from webcam_timelapse.exceptions import StorageError
from webcam_timelapse.models import (
    AnimationJob,
    AnimationType,
    CapturedImage,
    JobStatus,
    RetentionTag,
    Webcam,
)
from webcam_timelapse.timezones import to_utc

LOGGER = logging.getLogger(__name__)


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create tables, sequences, and indexes if they do not exist."""
    conn.execute("CREATE SEQUENCE IF NOT EXISTS webcams_id_seq START 1")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS webcams (
            id               INTEGER PRIMARY KEY DEFAULT nextval('webcams_id_seq'),
            name             VARCHAR NOT NULL UNIQUE,
            url              VARCHAR NOT NULL,
            display_name     VARCHAR,
            enabled          BOOLEAN DEFAULT TRUE,
            interval_minutes INTEGER DEFAULT 1,
            lat_lon          VARCHAR,
            timezone         VARCHAR,
            national_park    VARCHAR,
            last_active_at   TIMESTAMP,
            last_image_hash  VARCHAR
        )
    """)

    conn.execute("CREATE SEQUENCE IF NOT EXISTS images_id_seq START 1")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS images (
            id             INTEGER PRIMARY KEY DEFAULT nextval('images_id_seq'),
            webcam_id      INTEGER NOT NULL,
            timestamp      BIGINT NOT NULL,
            object_name    VARCHAR NOT NULL,
            retention_tags INTEGER DEFAULT 0
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_images_webcam_time ON images(webcam_id, timestamp)")

    conn.execute("CREATE SEQUENCE IF NOT EXISTS animation_jobs_id_seq START 1")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS animation_jobs (
            id             INTEGER PRIMARY KEY DEFAULT nextval('animation_jobs_id_seq'),
            webcam_id      INTEGER NOT NULL,
            reference_key  VARCHAR NOT NULL UNIQUE,
            animation_type VARCHAR NOT NULL,
            scheduled_time TIMESTAMP NOT NULL,
            date_key       VARCHAR NOT NULL,
            start_time     BIGINT NOT NULL,
            end_time       BIGINT NOT NULL,
            storage_key    VARCHAR,
            image_list     VARCHAR DEFAULT '[]',
            status         VARCHAR NOT NULL,
            created_at     TIMESTAMP,
            processed_at   TIMESTAMP,
            error_message  VARCHAR
        )
    """)
    # status is rewritten on every transition; DuckDB updates indexed columns
    # as delete+insert, so the jobs table is only indexed on its keys.
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_jobs_scheduled ON animation_jobs(scheduled_time)"
    )


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except duckdb.Error as exc:
        raise StorageError(f"Failed to {action}: {exc}") from exc


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    """DuckDB TIMESTAMP columns hold naive UTC values."""
    if value is None:
        return None
    return to_utc(value).replace(tzinfo=None)


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


_WEBCAM_COLUMNS = (
    "id, name, url, display_name, enabled, interval_minutes, lat_lon, "
    "timezone, national_park, last_active_at, last_image_hash"
)

_IMAGE_COLUMNS = "id, webcam_id, timestamp, object_name, retention_tags"

_JOB_COLUMNS = (
    "id, webcam_id, reference_key, animation_type, scheduled_time, date_key, "
    "start_time, end_time, storage_key, image_list, status, created_at, "
    "processed_at, error_message"
)


def _row_to_webcam(row: tuple) -> Webcam:
    return Webcam(
        id=row[0],
        name=row[1],
        url=row[2],
        display_name=row[3],
        enabled=bool(row[4]),
        interval_minutes=row[5] or 1,
        lat_lon=row[6],
        timezone=row[7],
        national_park=row[8],
        last_active_at=_from_db(row[9]),
        last_image_hash=row[10],
    )


def _row_to_image(row: tuple) -> CapturedImage:
    return CapturedImage(
        id=row[0],
        webcam_id=row[1],
        timestamp=int(row[2]),
        object_name=row[3],
        tags=RetentionTag(row[4] or 0),
    )


def _row_to_job(row: tuple) -> AnimationJob:
    return AnimationJob(
        id=row[0],
        webcam_id=row[1],
        reference_key=row[2],
        animation_type=AnimationType(row[3]),
        scheduled_time=_from_db(row[4]),
        date_key=row[5],
        start_time=int(row[6]),
        end_time=int(row[7]),
        storage_key=row[8],
        image_list=json.loads(row[9]) if row[9] else [],
        status=JobStatus(row[10]),
        created_at=_from_db(row[11]),
        processed_at=_from_db(row[12]),
        error_message=row[13],
    )


class WebcamRepository:
    """CRUD operations for webcam rows."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn

    def upsert_by_name(self, webcam: Webcam) -> Webcam:
        """Insert a webcam or update the configured fields of an existing one."""
        with _storage_errors(f"upsert webcam '{webcam.name}'"):
            row = self._conn.execute(
                f"""
                INSERT INTO webcams (
                    name, url, display_name, enabled, interval_minutes,
                    lat_lon, timezone, national_park
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (name) DO UPDATE SET
                    url = EXCLUDED.url,
                    display_name = EXCLUDED.display_name,
                    enabled = EXCLUDED.enabled,
                    interval_minutes = EXCLUDED.interval_minutes,
                    lat_lon = EXCLUDED.lat_lon,
                    timezone = EXCLUDED.timezone,
                    national_park = EXCLUDED.national_park
                RETURNING {_WEBCAM_COLUMNS}
                """,
                [
                    webcam.name,
                    webcam.url,
                    webcam.display_name,
                    webcam.enabled,
                    webcam.interval_minutes,
                    webcam.lat_lon,
                    webcam.timezone,
                    webcam.national_park,
                ],
            ).fetchone()
        return _row_to_webcam(row)

    def get(self, webcam_id: int) -> Optional[Webcam]:
        with _storage_errors(f"load webcam {webcam_id}"):
            row = self._conn.execute(
                f"SELECT {_WEBCAM_COLUMNS} FROM webcams WHERE id = ?", [webcam_id]
            ).fetchone()
        return _row_to_webcam(row) if row else None

    def list_all(self) -> List[Webcam]:
        with _storage_errors("list webcams"):
            rows = self._conn.execute(
                f"SELECT {_WEBCAM_COLUMNS} FROM webcams ORDER BY id"
            ).fetchall()
        return [_row_to_webcam(row) for row in rows]

    def list_enabled(self) -> List[Webcam]:
        with _storage_errors("list enabled webcams"):
            rows = self._conn.execute(
                f"SELECT {_WEBCAM_COLUMNS} FROM webcams WHERE enabled ORDER BY id"
            ).fetchall()
        return [_row_to_webcam(row) for row in rows]

    def update_status(
        self,
        webcam_id: int,
        last_active_at: datetime,
        last_image_hash: Optional[str],
    ) -> None:
        with _storage_errors(f"update webcam {webcam_id}"):
            self._conn.execute(
                "UPDATE webcams SET last_active_at = ?, last_image_hash = ? WHERE id = ?",
                [_to_db(last_active_at), last_image_hash, webcam_id],
            )


class ImageRepository:
    """Captured image rows and their retention tag bitsets."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn

    def add(self, image: CapturedImage) -> CapturedImage:
        with _storage_errors(f"record image '{image.object_name}'"):
            row = self._conn.execute(
                f"""
                INSERT INTO images (webcam_id, timestamp, object_name, retention_tags)
                VALUES (?, ?, ?, ?)
                RETURNING {_IMAGE_COLUMNS}
                """,
                [image.webcam_id, image.timestamp, image.object_name, image.tags.value],
            ).fetchone()
        return _row_to_image(row)

    def in_range(self, webcam_id: int, start: int, end: int) -> List[CapturedImage]:
        """Images for a webcam with ``start <= timestamp <= end``, oldest first."""
        with _storage_errors(f"query images for webcam {webcam_id}"):
            rows = self._conn.execute(
                f"""
                SELECT {_IMAGE_COLUMNS} FROM images
                WHERE webcam_id = ? AND timestamp BETWEEN ? AND ?
                ORDER BY timestamp, id
                """,
                [webcam_id, int(start), int(end)],
            ).fetchall()
        return [_row_to_image(row) for row in rows]

    def get(self, image_id: int) -> Optional[CapturedImage]:
        with _storage_errors(f"load image {image_id}"):
            row = self._conn.execute(
                f"SELECT {_IMAGE_COLUMNS} FROM images WHERE id = ?", [image_id]
            ).fetchone()
        return _row_to_image(row) if row else None

    def update_tags(self, image_id: int, tags: RetentionTag) -> None:
        with _storage_errors(f"update tags for image {image_id}"):
            self._conn.execute(
                "UPDATE images SET retention_tags = ? WHERE id = ?", [tags.value, image_id]
            )

    def untagged_before(self, cutoff: int) -> List[CapturedImage]:
        """Images older than ``cutoff`` (Unix seconds) that carry no retention tag."""
        with _storage_errors("query expired images"):
            rows = self._conn.execute(
                f"""
                SELECT {_IMAGE_COLUMNS} FROM images
                WHERE timestamp < ? AND COALESCE(retention_tags, 0) = 0
                ORDER BY timestamp, id
                """,
                [int(cutoff)],
            ).fetchall()
        return [_row_to_image(row) for row in rows]

    def count_references(self, object_name: str) -> int:
        with _storage_errors(f"count references to '{object_name}'"):
            row = self._conn.execute(
                "SELECT COUNT(*) FROM images WHERE object_name = ?", [object_name]
            ).fetchone()
        return int(row[0])

    def delete(self, image_id: int) -> None:
        with _storage_errors(f"delete image {image_id}"):
            self._conn.execute("DELETE FROM images WHERE id = ?", [image_id])


class JobRepository:
    """Animation job rows with guarded status transitions."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn

    def insert_if_absent(self, job: AnimationJob) -> bool:
        """Insert ``job`` unless its reference key exists; return True when inserted."""
        with _storage_errors(f"insert job '{job.reference_key}'"):
            row = self._conn.execute(
                """
                INSERT INTO animation_jobs (
                    webcam_id, reference_key, animation_type, scheduled_time,
                    date_key, start_time, end_time, storage_key, image_list,
                    status, created_at, processed_at, error_message
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (reference_key) DO NOTHING
                RETURNING id
                """,
                [
                    job.webcam_id,
                    job.reference_key,
                    AnimationType(job.animation_type).value,
                    _to_db(job.scheduled_time),
                    job.date_key,
                    int(job.start_time),
                    int(job.end_time),
                    job.storage_key,
                    json.dumps(list(job.image_list)),
                    JobStatus(job.status).value,
                    _to_db(job.created_at),
                    _to_db(job.processed_at),
                    job.error_message,
                ],
            ).fetchone()
        if row is None:
            return False
        job.id = row[0]
        return True

    def get(self, job_id: int) -> Optional[AnimationJob]:
        with _storage_errors(f"load job {job_id}"):
            row = self._conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM animation_jobs WHERE id = ?", [job_id]
            ).fetchone()
        return _row_to_job(row) if row else None

    def get_by_reference(self, reference_key: str) -> Optional[AnimationJob]:
        with _storage_errors(f"load job '{reference_key}'"):
            row = self._conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM animation_jobs WHERE reference_key = ?",
                [reference_key],
            ).fetchone()
        return _row_to_job(row) if row else None

    def list_due(self, now: datetime, limit: Optional[int] = None) -> List[AnimationJob]:
        """``awaiting_images`` jobs scheduled at or before ``now``, earliest first."""
        query = f"""
            SELECT {_JOB_COLUMNS} FROM animation_jobs
            WHERE status = ? AND scheduled_time <= ?
            ORDER BY scheduled_time, id
        """
        params: list = [JobStatus.AWAITING_IMAGES.value, _to_db(now)]
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        with _storage_errors("list due jobs"):
            rows = self._conn.execute(query, params).fetchall()
        return [_row_to_job(row) for row in rows]

    def list_by_status(self, status: JobStatus, limit: Optional[int] = None) -> List[AnimationJob]:
        query = f"""
            SELECT {_JOB_COLUMNS} FROM animation_jobs
            WHERE status = ?
            ORDER BY scheduled_time, id
        """
        params: list = [JobStatus(status).value]
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        with _storage_errors(f"list {JobStatus(status).value} jobs"):
            rows = self._conn.execute(query, params).fetchall()
        return [_row_to_job(row) for row in rows]

    def transition(
        self,
        job_id: int,
        expected: JobStatus,
        target: JobStatus,
        *,
        image_list: Optional[Sequence[str]] = None,
        error_message: Optional[str] = None,
        processed_at: Optional[datetime] = None,
    ) -> Optional[AnimationJob]:
        """Move a job from ``expected`` to ``target``.

        The update only applies while the row is still in ``expected``;
        returns the updated job, or None when another writer got there first
        or the job does not exist.
        """
        assignments = ["status = ?"]
        params: list = [JobStatus(target).value]
        if image_list is not None:
            assignments.append("image_list = ?")
            params.append(json.dumps(list(image_list)))
        if error_message is not None:
            assignments.append("error_message = ?")
            params.append(error_message)
        if processed_at is not None:
            assignments.append("processed_at = ?")
            params.append(_to_db(processed_at))
        params.extend([job_id, JobStatus(expected).value])

        with _storage_errors(f"update job {job_id}"):
            row = self._conn.execute(
                f"""
                UPDATE animation_jobs SET {", ".join(assignments)}
                WHERE id = ? AND status = ?
                RETURNING {_JOB_COLUMNS}
                """,
                params,
            ).fetchone()
        return _row_to_job(row) if row else None

    def delete(self, job_id: int) -> bool:
        with _storage_errors(f"delete job {job_id}"):
            row = self._conn.execute(
                "DELETE FROM animation_jobs WHERE id = ? RETURNING id", [job_id]
            ).fetchone()
        return row is not None

    def finished_before(
        self,
        cutoff: datetime,
        animation_types: Sequence[AnimationType],
    ) -> List[AnimationJob]:
        """``done``/``failed`` jobs of the given types scheduled before ``cutoff``."""
        if not animation_types:
            return []
        placeholders = ", ".join("?" for _ in animation_types)
        params: list = [JobStatus.DONE.value, JobStatus.FAILED.value, _to_db(cutoff)]
        params.extend(AnimationType(kind).value for kind in animation_types)
        with _storage_errors("list finished jobs"):
            rows = self._conn.execute(
                f"""
                SELECT {_JOB_COLUMNS} FROM animation_jobs
                WHERE status IN (?, ?) AND scheduled_time < ?
                  AND animation_type IN ({placeholders})
                ORDER BY scheduled_time, id
                """,
                params,
            ).fetchall()
        return [_row_to_job(row) for row in rows]


class Store:
    """Bundle of repositories sharing one DuckDB connection."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self.conn = conn
        ensure_schema(conn)
        self.webcams = WebcamRepository(conn)
        self.images = ImageRepository(conn)
        self.jobs = JobRepository(conn)

    @classmethod
    def open(cls, database_path: Path | str) -> "Store":
        """Open (and create if needed) the database at ``database_path``."""
        path = str(database_path)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        LOGGER.debug("Opening DuckDB database at %s", path)
        with _storage_errors(f"open database '{path}'"):
            conn = duckdb.connect(path)
        return cls(conn)

    def close(self) -> None:
        self.conn.close()


__all__ = [
    "ImageRepository",
    "JobRepository",
    "Store",
    "WebcamRepository",
    "ensure_schema",
]
