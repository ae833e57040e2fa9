# backend/routers/authority.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import pagination_params, require_staff
from ..models import Report, User
from ..models.enums import ReportStatus, Role
from ..schemas.auth import UserOut
from ..schemas.reports import (
    AssignIn,
    BulkActionIn,
    BulkActionOut,
    BulkItemOut,
    ReportList,
    ReportOut,
)
from ..services import lifecycle

router = APIRouter(prefix="/authority", tags=["authority"])


@router.get("/stats")
def authority_stats(
    db: Session = Depends(get_db),
    actor: User = Depends(require_staff),
):
    active = db.query(Report).filter(Report.is_active.is_(True))
    by_status = dict(
        active.with_entities(Report.status, func.count(Report.id)).group_by(Report.status).all()
    )
    week_ago = datetime.utcnow() - timedelta(days=7)
    return {
        "total": sum(by_status.values()),
        "por_estado": {s.value: by_status.get(s.value, 0) for s in ReportStatus},
        "asignados_a_mi": active.filter(Report.assigned_authority_id == actor.id).count(),
        "resueltos_por_mi": active.filter(
            Report.assigned_authority_id == actor.id,
            Report.status == ReportStatus.RESOLVED.value,
        ).count(),
        "nuevos_semana": active.filter(Report.created_at >= week_ago).count(),
    }


@router.get("/reports", response_model=ReportList)
def authority_reports(
    estado: Optional[str] = Query(None),
    asignados_a_mi: bool = Query(False),
    search: Optional[str] = Query(None, max_length=100),
    page: dict = Depends(pagination_params),
    db: Session = Depends(get_db),
    actor: User = Depends(require_staff),
):
    items, total = lifecycle.search_reports(
        db,
        estado=estado,
        assigned_to=actor.id if asignados_a_mi else None,
        search=search,
        limit=page["limit"],
        offset=page["offset"],
    )
    return ReportList(reportes=[ReportOut.from_report(r) for r in items], total=total)


@router.put("/reports/{report_id}/assign", response_model=ReportOut)
def assign_report(
    report_id: int,
    payload: AssignIn,
    db: Session = Depends(get_db),
    actor: User = Depends(require_staff),
):
    report = lifecycle.assign_report(db, report_id, payload.autoridad_id or actor.id)
    return ReportOut.from_report(report)


@router.get("/authorities", response_model=List[UserOut])
def list_authorities(
    db: Session = Depends(get_db),
    _actor: User = Depends(require_staff),
):
    return (
        db.query(User)
        .filter(User.role == Role.AUTHORITY.value, User.is_active.is_(True))
        .order_by(User.full_name.asc())
        .all()
    )


@router.post("/bulk-action", response_model=BulkActionOut)
def bulk_action(
    payload: BulkActionIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: User = Depends(require_staff),
):
    result = lifecycle.bulk_transition(
        db,
        payload.report_ids,
        payload.estado,
        payload.comentario_autoridad,
        actor=actor,
        background_tasks=background_tasks,
    )
    return BulkActionOut(
        procesados=len(result.items),
        exitosos=result.succeeded,
        fallidos=result.failed,
        resultados=[
            BulkItemOut(report_id=i.report_id, ok=i.ok, code=i.code, message=i.message)
            for i in result.items
        ],
    )
