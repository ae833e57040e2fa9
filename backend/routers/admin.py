# backend/routers/admin.py
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..deps import pagination_params, require_admin
from ..errors import NotFoundError, ValidationError
from ..models import Notification, PointsLedgerEntry, Report, User
from ..models.enums import ReportStatus, Role
from ..schemas.admin import MismatchOut, PurgeIn, ReconcileOut, UserPage, UserUpdateIn
from ..schemas.auth import AdminUserCreate, UserOut
from ..schemas.notifications import UrgentBroadcastIn
from ..security import get_password_hash
from ..services import ledger, notifications

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


# ---------- Helpers ----------
def _count_admins(db: Session) -> int:
    return db.query(User).filter(User.role == Role.ADMIN.value, User.is_active.is_(True)).count()


def _get_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


def _removes_admin(target: User, role: Optional[Role], is_active: Optional[bool]) -> bool:
    if target.role != Role.ADMIN.value or not target.is_active:
        return False
    demoted = role is not None and role != Role.ADMIN
    return demoted or is_active is False


# ---------- Routes ----------
@router.get("/stats")
def admin_stats(db: Session = Depends(get_db), _admin: User = Depends(require_admin)):
    users_by_role = dict(
        db.query(User.role, func.count(User.id)).filter(User.is_active.is_(True)).group_by(User.role).all()
    )
    reports_by_status = dict(
        db.query(Report.status, func.count(Report.id))
        .filter(Report.is_active.is_(True))
        .group_by(Report.status)
        .all()
    )
    return {
        "usuarios": {
            "total": db.query(func.count(User.id)).scalar() or 0,
            "activos": sum(users_by_role.values()),
            "por_rol": {r.value: users_by_role.get(r.value, 0) for r in Role},
        },
        "reportes": {
            "total": sum(reports_by_status.values()),
            "por_estado": {s.value: reports_by_status.get(s.value, 0) for s in ReportStatus},
        },
        "puntos_otorgados": int(
            db.query(func.coalesce(func.sum(PointsLedgerEntry.points), 0)).scalar()
        ),
        "notificaciones": db.query(func.count(Notification.id)).scalar() or 0,
    }


@router.get("/users", response_model=UserPage)
def list_users(
    role: Optional[Role] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: dict = Depends(pagination_params),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    q = db.query(User)
    if role is not None:
        q = q.filter(User.role == role.value)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(User.email.ilike(like), User.full_name.ilike(like)))
    total = q.count()
    users = q.order_by(User.created_at.desc()).offset(page["offset"]).limit(page["limit"]).all()
    return UserPage(users=[UserOut.model_validate(u) for u in users], total=total)


@router.post("/users", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: AdminUserCreate,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    email = payload.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise ValidationError("Email already registered", code="EMAIL_ALREADY_REGISTERED")
    user = User(
        email=email,
        full_name=payload.full_name.strip(),
        phone=payload.phone,
        hashed_password=get_password_hash(payload.password),
        role=payload.role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Admin created %s user %s", user.role, user.id)
    return user


@router.patch("/users/{user_id}", response_model=UserOut)
def update_user(
    user_id: str,
    payload: UserUpdateIn,
    db: Session = Depends(get_db),
    actor: User = Depends(require_admin),
):
    target = _get_user(db, user_id)

    if actor.id == target.id and (payload.role is not None or payload.is_active is not None):
        raise HTTPException(status_code=403, detail="You cannot change your own role or status")
    if _removes_admin(target, payload.role, payload.is_active) and _count_admins(db) <= 1:
        raise ValidationError("Cannot demote or disable the last active admin", code="LAST_ADMIN")

    if payload.full_name is not None:
        target.full_name = payload.full_name.strip()
    if payload.role is not None:
        target.role = payload.role
    if payload.is_active is not None:
        target.is_active = payload.is_active
    db.commit()
    db.refresh(target)
    return target


@router.delete("/users/{user_id}")
def disable_user(
    user_id: str,
    db: Session = Depends(get_db),
    actor: User = Depends(require_admin),
):
    target = _get_user(db, user_id)
    if actor.id == target.id:
        raise HTTPException(status_code=403, detail="You cannot disable your own account")
    if _removes_admin(target, None, False) and _count_admins(db) <= 1:
        raise ValidationError("Cannot disable the last active admin", code="LAST_ADMIN")
    target.is_active = False
    db.commit()
    logger.info("User %s disabled by %s", target.id, actor.id)
    return {"status": "ok", "id": target.id, "is_active": False}


@router.post("/notifications/urgent", status_code=status.HTTP_201_CREATED)
def urgent_broadcast(
    payload: UrgentBroadcastIn,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    if payload.user_ids:
        recipients: List[str] = [
            uid
            for (uid,) in db.query(User.id)
            .filter(User.id.in_(payload.user_ids), User.is_active.is_(True))
            .all()
        ]
    elif payload.role is not None:
        recipients = notifications.active_user_ids(db, payload.role)
    else:
        raise ValidationError("Provide user_ids or role", code="NO_RECIPIENTS")

    created = notifications.notify_many(db, recipients, payload.title, payload.body, payload.payload)
    return {"message": "Notificación urgente enviada", "enviadas": len(created)}


@router.get("/notifications/stats")
def notification_stats(db: Session = Depends(get_db), _admin: User = Depends(require_admin)):
    return notifications.stats(db)


@router.post("/maintenance/purge-notifications")
def purge_notifications(
    payload: PurgeIn,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    days = payload.days or settings.NOTIFICATION_RETENTION_DAYS
    deleted = notifications.purge_older_than(db, days)
    return {"deleted": deleted, "days": days}


@router.get("/ledger/reconcile", response_model=ReconcileOut)
def reconcile_ledger(db: Session = Depends(get_db), _admin: User = Depends(require_admin)):
    mismatches = ledger.reconcile(db)
    return ReconcileOut(
        status="ok" if not mismatches else "inconsistent",
        mismatches=[MismatchOut(**m.__dict__) for m in mismatches],
    )
