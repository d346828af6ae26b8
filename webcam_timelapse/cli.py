"""
Command line entry points for the webcam timelapse service.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from webcam_timelapse.app import AnimationService
from webcam_timelapse.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
    WebcamTimelapseError,
)

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Unserializable value: {value!r}")


def _emit(payload: Any) -> None:
    if is_dataclass(payload) and not isinstance(payload, type):
        payload = asdict(payload)
    elif isinstance(payload, (list, tuple)):
        payload = [asdict(item) if is_dataclass(item) else item for item in payload]
    print(json.dumps(payload, default=_json_default, indent=2, sort_keys=True))


def _default_date(offset_days: int) -> str:
    return (datetime.now(timezone.utc).date() + timedelta(days=offset_days)).isoformat()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Park webcam capture and time-lapse animation scheduling.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.json"),
        help="Path to the JSON configuration file (default: config.json).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Run the per-minute scheduler loop.")
    subparsers.add_parser("import-webcams", help="Upsert configured webcams into the database.")

    schedule_parser = subparsers.add_parser(
        "schedule", help="Create animation jobs for a webcam-local date."
    )
    schedule_parser.add_argument(
        "--date",
        default=None,
        help="Date to schedule as YYYY-MM-DD (default: tomorrow, UTC).",
    )

    subparsers.add_parser("advance", help="Advance due animation jobs once.")

    retention_parser = subparsers.add_parser(
        "retention", help="Tag sunrise, solar noon, and sunset frames for a date."
    )
    retention_parser.add_argument(
        "--date",
        default=None,
        help="Date to process as YYYY-MM-DD (default: yesterday, UTC).",
    )

    solar_parser = subparsers.add_parser("solar", help="Print solar events for a webcam.")
    solar_parser.add_argument("--webcam-id", type=int, required=True)
    solar_parser.add_argument("--date", default=None, help="YYYY-MM-DD (default: today, UTC).")

    claim_parser = subparsers.add_parser("claim", help="Claim ready jobs for encoding.")
    claim_parser.add_argument("--limit", type=int, default=1)

    complete_parser = subparsers.add_parser("complete", help="Mark an in-progress job as done.")
    complete_parser.add_argument("--job-id", type=int, required=True)

    fail_parser = subparsers.add_parser("fail", help="Mark a job as failed.")
    fail_parser.add_argument("--job-id", type=int, required=True)
    fail_parser.add_argument("--message", required=True)

    delete_parser = subparsers.add_parser("delete", help="Delete an animation job.")
    delete_parser.add_argument("--job-id", type=int, required=True)

    subparsers.add_parser("cleanup", help="Remove expired images and animations.")

    return parser


def _dispatch(service: AnimationService, args: argparse.Namespace) -> int:
    if args.command == "run":
        service.run()
        return EXIT_OK
    if args.command == "import-webcams":
        _emit(service.import_webcams())
        return EXIT_OK
    if args.command == "schedule":
        _emit(service.schedule_day(args.date or _default_date(1)))
        return EXIT_OK
    if args.command == "advance":
        _emit(service.advance_queue())
        return EXIT_OK
    if args.command == "retention":
        _emit(service.apply_retention(args.date or _default_date(-1)))
        return EXIT_OK
    if args.command == "solar":
        _emit(service.get_webcam_solar_times(args.webcam_id, args.date or _default_date(0)))
        return EXIT_OK
    if args.command == "claim":
        _emit(service.claim_jobs(args.limit))
        return EXIT_OK
    if args.command == "complete":
        result = service.mark_job_complete(args.job_id)
        _emit(result)
        return EXIT_OK if result.success else EXIT_FAILURE
    if args.command == "fail":
        _emit(service.mark_job_failed(args.job_id, args.message))
        return EXIT_OK
    if args.command == "delete":
        service.delete_job(args.job_id)
        return EXIT_OK
    if args.command == "cleanup":
        images, animations = service.cleanup()
        _emit({"images": asdict(images), "animations": asdict(animations)})
        return EXIT_OK
    raise ValueError(f"Unhandled command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    service = AnimationService.from_config_file(args.config)
    try:
        return _dispatch(service, args)
    except ValidationError as exc:
        LOGGER.error("%s", exc)
        return EXIT_USAGE
    except (NotFoundError, ConflictError) as exc:
        LOGGER.error("%s", exc)
        return EXIT_FAILURE
    except WebcamTimelapseError as exc:
        LOGGER.error("Command '%s' failed: %s", args.command, exc)
        return EXIT_FAILURE
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())
