"""Scheduling orchestration for the webcam timelapse service."""

from __future__ import annotations

from typing import Any

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

TICK_JOB_ID = "tick"


def run(service: Any) -> None:
    """Drive ``service.tick`` once a minute until interrupted.

    ``max_instances=1`` with ``coalesce=True`` keeps ticks from overlapping:
    a tick that overruns its minute absorbs the missed runs instead of
    starting a second copy.
    """
    scheduler = BlockingScheduler(timezone="UTC")

    scheduler.add_job(
        service.tick,
        trigger=IntervalTrigger(minutes=1),
        id=TICK_JOB_ID,
        name="Webcam Timelapse Tick",
        max_instances=1,
        coalesce=True,
    )

    settings = service.settings
    webcams = service.store.webcams.list_enabled()
    service.logger.info("Webcam timelapse service started")
    service.logger.info("Monitoring %s enabled webcams:", len(webcams))
    for webcam in webcams:
        service.logger.info(
            "  - '%s' (%s): every %s min, lat/lon %s, tz %s",
            webcam.label,
            webcam.name,
            webcam.interval_minutes,
            webcam.lat_lon or "-",
            webcam.timezone or "-",
        )
    service.logger.info(
        "Daily scheduling at %02d:%02d UTC, retention at %02d:%02d webcam-local time",
        settings.schedule_time[0],
        settings.schedule_time[1],
        settings.retention_time[0],
        settings.retention_time[1],
    )

    try:
        service.tick()
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        service.logger.info("Webcam timelapse service stopped")
        scheduler.shutdown()


__all__ = ["TICK_JOB_ID", "run"]
