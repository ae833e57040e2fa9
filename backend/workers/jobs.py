# backend/workers/jobs.py
"""
Side-effect jobs. They take plain ids so they can be pickled onto the RQ
queue, and open their own session because the request's session is gone by
the time they run.
"""
from __future__ import annotations

import logging
from typing import Optional

from backend.config import settings
from backend.db import SessionLocal
from backend.models import Report, User
from backend.models.enums import ReportStatus, Role
from backend.services import achievements, notifications

logger = logging.getLogger(__name__)


def notify_authorities_new_report(report_id: int) -> int:
    db = SessionLocal()
    try:
        report = db.query(Report).filter(Report.id == report_id).first()
        if report is None:
            logger.warning("Report %s vanished before authorities were notified", report_id)
            return 0
        recipients = notifications.active_user_ids(db, Role.AUTHORITY)
        if not recipients:
            return 0
        author = db.query(User).filter(User.id == report.user_id).first()
        message = notifications.new_report_message(report, author.display_name if author else "un ciudadano")
        created = notifications.notify_many(
            db,
            recipients,
            message.title,
            message.body,
            payload={
                "report_id": report.id,
                "tipo_estimado": report.waste_type,
                "latitud": report.latitude,
                "longitud": report.longitude,
            },
            type=message.type,
            report_id=report.id,
        )
        return len(created)
    finally:
        db.close()


def notify_report_status_change(report_id: int, new_status: str, comment: Optional[str] = None) -> None:
    db = SessionLocal()
    try:
        report = db.query(Report).filter(Report.id == report_id).first()
        if report is None:
            logger.warning("Report %s vanished before its owner was notified", report_id)
            return
        status = ReportStatus(new_status)
        message = notifications.status_change_message(report, status, comment)
        notifications.notify(
            db,
            report.user_id,
            message.type,
            message.title,
            message.body,
            payload={
                "report_id": report.id,
                "estado": status.value,
                "comentario_autoridad": comment,
            },
            report_id=report.id,
        )
    finally:
        db.close()


def evaluate_user_achievements(user_id: str) -> int:
    db = SessionLocal()
    try:
        return len(achievements.evaluate(db, user_id))
    finally:
        db.close()


def notify_level_up(user_id: str, level: int) -> None:
    db = SessionLocal()
    try:
        message = notifications.level_up_message(level)
        notifications.notify(
            db,
            user_id,
            message.type,
            message.title,
            message.body,
            payload={"level": level},
        )
    finally:
        db.close()


def purge_old_notifications(days: Optional[int] = None) -> int:
    db = SessionLocal()
    try:
        return notifications.purge_older_than(db, days or settings.NOTIFICATION_RETENTION_DAYS)
    finally:
        db.close()
