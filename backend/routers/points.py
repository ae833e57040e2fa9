# backend/routers/points.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..deps import get_current_user, pagination_params, require_admin
from ..models.enums import LedgerAction
from ..models.user import User
from ..schemas.points import (
    AchievementProgress,
    LeaderboardEntry,
    LedgerEntryOut,
    ManualGrantIn,
    PointsRuleOut,
    PointsRuleUpdate,
    PointsStats,
)
from ..services import achievements, ledger
from ..services.side_effects import fire_and_forget
from ..workers import jobs

router = APIRouter(prefix="/points", tags=["points"])


@router.get("/historial", response_model=List[LedgerEntryOut])
def points_history(
    page: dict = Depends(pagination_params),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return ledger.history(db, current_user.id, limit=page["limit"], offset=page["offset"])


@router.get("/logros", response_model=List[AchievementProgress])
def my_achievements(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return achievements.catalog_with_progress(db, current_user.id)


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
def leaderboard(
    period: str = Query("all"),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    return ledger.leaderboard(db, period=period, limit=limit)


@router.get("/stats", response_model=PointsStats)
def my_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    stats = achievements.user_stats(db, current_user.id)
    step = settings.LEVEL_POINTS_STEP
    return PointsStats(
        puntos=current_user.points,
        nivel=current_user.level,
        puntos_siguiente_nivel=step - (current_user.points % step),
        posicion=ledger.rank_of(db, current_user),
        reportes_total=stats.report_count,
        reportes_resueltos=stats.resolved_count,
        historial_reciente=[LedgerEntryOut.model_validate(e) for e in ledger.history(db, current_user.id, limit=5)],
        logros=[a for a in achievements.catalog_with_progress(db, current_user.id) if a["unlocked"]],
    )


@router.post("/manual", response_model=LedgerEntryOut, status_code=status.HTTP_201_CREATED)
def manual_grant(
    payload: ManualGrantIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    target = db.query(User).filter(User.id == payload.user_id).first()
    level_before = target.level if target else None
    entry = ledger.award(
        db,
        payload.user_id,
        payload.points,
        LedgerAction.MANUAL_GRANT,
        description=payload.description or f"Otorgado por {admin.display_name}",
    )
    if target is not None and target.level > level_before:
        fire_and_forget(background_tasks, jobs.notify_level_up, target.id, target.level)
    return entry


@router.get("/config", response_model=List[PointsRuleOut])
def points_config(
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    return ledger.list_rules(db)


@router.put("/config/{key}", response_model=PointsRuleOut)
def update_points_config(
    key: str,
    payload: PointsRuleUpdate,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    return ledger.update_rule(db, key, payload.points, payload.description, payload.is_active)
