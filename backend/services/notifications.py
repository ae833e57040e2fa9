"""
Notification dispatcher.

Creates and persists user-visible messages. Delivery beyond durable storage
(push, e-mail) is not part of this module. Ownership checks answer with
NotFoundError so callers cannot probe for other users' notification ids.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import NotFoundError, ValidationError
from ..models import Notification, Report, User
from ..models.enums import AchievementKey, NotificationType, ReportStatus, Role

logger = logging.getLogger(__name__)


@dataclass
class Message:
    type: NotificationType
    title: str
    body: str


def _coerce_type(value) -> NotificationType:
    try:
        return NotificationType(value)
    except ValueError:
        raise ValidationError(f"Unknown notification type: {value}", code="INVALID_NOTIFICATION_TYPE")


def notify(
    db: Session,
    user_id: str,
    type,
    title: str,
    body: str,
    payload: Optional[Dict[str, Any]] = None,
    report_id: Optional[int] = None,
    commit: bool = True,
) -> Notification:
    ntype = _coerce_type(type)
    notification = Notification(
        user_id=user_id,
        report_id=report_id,
        type=ntype.value,
        title=title,
        body=body,
        payload=payload or {},
    )
    db.add(notification)
    if commit:
        db.commit()
        db.refresh(notification)
    else:
        db.flush()
    logger.info("Notification %s created for user %s", ntype.value, user_id)
    return notification


def notify_many(
    db: Session,
    user_ids: Iterable[str],
    title: str,
    body: str,
    payload: Optional[Dict[str, Any]] = None,
    type=NotificationType.URGENT,
    report_id: Optional[int] = None,
) -> List[Notification]:
    """One notification per distinct recipient, committed together."""
    ntype = _coerce_type(type)
    data = dict(payload or {})
    if ntype == NotificationType.URGENT:
        data["urgent"] = True

    created = []
    seen = set()
    for uid in user_ids:
        if uid in seen:
            continue
        seen.add(uid)
        created.append(
            notify(db, uid, ntype, title, body, payload=data, report_id=report_id, commit=False)
        )
    db.commit()
    logger.info("Broadcast %s notification to %s users", ntype.value, len(created))
    return created


def active_user_ids(db: Session, role: Role) -> List[str]:
    rows = db.query(User.id).filter(User.role == role.value, User.is_active.is_(True)).all()
    return [r[0] for r in rows]


# ---------- Reads ----------

def list_for_user(
    db: Session,
    user_id: str,
    page: int = 1,
    page_size: int = 20,
    unread_only: bool = False,
) -> Tuple[List[Notification], int]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    total = q.count()
    items = (
        q.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def unread_count(db: Session, user_id: str) -> int:
    return (
        db.query(func.count(Notification.id))
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .scalar()
        or 0
    )


# ---------- Mutations ----------

def _owned(db: Session, notification_id: int, user_id: str) -> Notification:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if notification is None:
        raise NotFoundError("Notification not found", code="NOTIFICATION_NOT_FOUND")
    return notification


def mark_read(db: Session, notification_id: int, user_id: str) -> Notification:
    notification = _owned(db, notification_id, user_id)
    if not notification.is_read:
        notification.is_read = True
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: str) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update(
            {Notification.is_read: True, Notification.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    return updated


def delete(db: Session, notification_id: int, user_id: str) -> None:
    notification = _owned(db, notification_id, user_id)
    db.delete(notification)
    db.commit()


def purge_older_than(db: Session, days: int) -> int:
    """Retention sweep; not meant for request paths."""
    if days < 1:
        raise ValidationError("Retention must be at least one day", code="INVALID_RETENTION")
    cutoff = datetime.utcnow() - timedelta(days=days)
    deleted = (
        db.query(Notification)
        .filter(Notification.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info("Purged %s notifications older than %s days", deleted, days)
    return deleted


def stats(db: Session) -> dict:
    today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    week_ago = datetime.utcnow() - timedelta(days=7)
    base = db.query(func.count(Notification.id))
    by_type = dict(
        db.query(Notification.type, func.count(Notification.id)).group_by(Notification.type).all()
    )
    return {
        "total": base.scalar() or 0,
        "unread": base.filter(Notification.is_read.is_(False)).scalar() or 0,
        "today": db.query(func.count(Notification.id)).filter(Notification.created_at >= today).scalar() or 0,
        "this_week": db.query(func.count(Notification.id)).filter(Notification.created_at >= week_ago).scalar() or 0,
        "by_type": by_type,
    }


# ---------- Message builders ----------

def _waste_label(report: Report, fallback: str) -> str:
    return report.waste_type or fallback


def status_change_message(report: Report, new_status: ReportStatus, comment: Optional[str] = None) -> Message:
    if new_status == ReportStatus.IN_PROGRESS:
        return Message(
            NotificationType.STATUS_UPDATE,
            "🔄 Tu reporte está siendo procesado",
            f'Tu reporte "{_waste_label(report, "de residuos")}" está ahora en proceso de resolución.',
        )
    if new_status == ReportStatus.RESOLVED:
        return Message(
            NotificationType.REPORT_RESOLVED,
            "✅ ¡Tu reporte ha sido resuelto!",
            f'El problema de "{_waste_label(report, "residuos")}" que reportaste ya ha sido solucionado. '
            "¡Gracias por contribuir a una ciudad más limpia!",
        )
    if new_status == ReportStatus.REJECTED:
        reason = f" Motivo: {comment}" if comment else ""
        return Message(
            NotificationType.REPORT_REJECTED,
            "❌ Tu reporte ha sido rechazado",
            f'Tu reporte de "{_waste_label(report, "residuos")}" ha sido rechazado.{reason}',
        )
    return Message(
        NotificationType.STATUS_UPDATE,
        "📋 Estado de tu reporte actualizado",
        f"El estado de tu reporte ha sido actualizado a: {new_status.value}",
    )


def new_report_message(report: Report, author_name: str) -> Message:
    where = f" en {report.address}" if report.address else ""
    return Message(
        NotificationType.NEW_REPORT,
        "📋 Nuevo reporte recibido",
        f'Nuevo reporte de "{_waste_label(report, "residuos")}" creado por {author_name}{where}.',
    )


_ACHIEVEMENT_TEXT = {
    AchievementKey.FIRST_REPORT: (
        "🎉 ¡Primer Reporte!",
        "¡Felicidades! Has creado tu primer reporte. Has ganado {points} puntos.",
    ),
    AchievementKey.ACTIVE_REPORTER: (
        "🏆 EcoReporter Activo",
        '¡Excelente! Has creado 5 reportes. Has ganado {points} puntos y desbloqueado el logro "EcoReporter Activo".',
    ),
    AchievementKey.COMMITTED_REPORTER: (
        "🌟 EcoReporter Comprometido",
        '¡Impresionante! Has creado 10 reportes. Has ganado {points} puntos y alcanzado el nivel "EcoReporter Comprometido".',
    ),
    AchievementKey.PROBLEM_SOLVER: (
        "✨ Solucionador de Problemas",
        "¡Increíble! Ya tienes {milestone} reportes resueltos. Has ganado {points} puntos adicionales.",
    ),
}


def achievement_message(key: str, name: str, points: int, milestone: int) -> Message:
    try:
        title, template = _ACHIEVEMENT_TEXT[AchievementKey(key)]
    except (KeyError, ValueError):
        title, template = f"🏅 {name}", "¡Logro desbloqueado! Has ganado {points} puntos."
    return Message(
        NotificationType.ACHIEVEMENT,
        title,
        template.format(points=points, milestone=milestone),
    )


def level_up_message(level: int) -> Message:
    return Message(
        NotificationType.LEVEL_UP,
        "📈 ¡Subiste de Nivel!",
        f"¡Felicidades! Has alcanzado el nivel {level}.",
    )
