# backend/workers/retention.py
"""
Notification retention sweep.

``python -m backend.workers.retention`` runs it once; the API process runs it
on an interval when ``RETENTION_SWEEP_ENABLED`` is set.
"""
from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from backend.config import settings
from backend.logging_config import configure_logging
from backend.workers.jobs import purge_old_notifications

logger = logging.getLogger(__name__)


def run_once(days: Optional[int] = None) -> int:
    deleted = purge_old_notifications(days)
    logger.info("Retention sweep removed %s notifications", deleted)
    return deleted


def _guarded_sweep() -> None:
    try:
        run_once()
    except Exception:
        logger.exception("Retention sweep failed")


def start_scheduler() -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        _guarded_sweep,
        "interval",
        hours=settings.RETENTION_SWEEP_INTERVAL_HOURS,
        id="notification_retention",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Retention sweep scheduled every %s hours (keep %s days)",
        settings.RETENTION_SWEEP_INTERVAL_HOURS,
        settings.NOTIFICATION_RETENTION_DAYS,
    )
    return scheduler


if __name__ == "__main__":
    configure_logging()
    run_once()
