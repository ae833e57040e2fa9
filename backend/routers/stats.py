# backend/routers/stats.py
from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user
from ..models import Report, User
from ..models.enums import ReportStatus, Role

router = APIRouter(prefix="/stats", tags=["stats"])


def _status_counts(q) -> Dict[str, int]:
    rows = dict(q.with_entities(Report.status, func.count(Report.id)).group_by(Report.status).all())
    counts = {s.value: rows.get(s.value, 0) for s in ReportStatus}
    counts["total"] = sum(rows.values())
    return counts


def _avg_resolution_hours(q) -> Optional[float]:
    rows = (
        q.with_entities(Report.created_at, Report.resolved_at)
        .filter(Report.status == ReportStatus.RESOLVED.value, Report.resolved_at.isnot(None))
        .all()
    )
    if not rows:
        return None
    total = sum((resolved - created).total_seconds() for created, resolved in rows)
    return round(total / len(rows) / 3600, 2)


@router.get("/dashboard")
def dashboard(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    active = db.query(Report).filter(Report.is_active.is_(True))
    mine = active.filter(Report.user_id == current_user.id)
    result = {
        "mis_reportes": _status_counts(mine),
        "tiempo_promedio_resolucion_horas": _avg_resolution_hours(mine),
        "puntos": current_user.points,
        "nivel": current_user.level,
    }

    if current_user.role in (Role.AUTHORITY.value, Role.ADMIN.value):
        top_types = (
            active.with_entities(Report.waste_type, func.count(Report.id).label("n"))
            .filter(Report.waste_type.isnot(None))
            .group_by(Report.waste_type)
            .order_by(func.count(Report.id).desc())
            .limit(5)
            .all()
        )
        result["global"] = {
            "reportes": _status_counts(active),
            "tiempo_promedio_resolucion_horas": _avg_resolution_hours(active),
            "tipos_frecuentes": [{"tipo": t, "cantidad": n} for t, n in top_types],
            "ciudadanos_activos": db.query(func.count(User.id))
            .filter(User.role == Role.CITIZEN.value, User.is_active.is_(True))
            .scalar()
            or 0,
        }
    return result
