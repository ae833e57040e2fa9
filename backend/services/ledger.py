"""
Points ledger: append-only point events plus the running ``users.points``.

Both writes happen in the caller's transaction. The balance is bumped with a
single ``UPDATE users SET points = points + :delta`` so concurrent awards for
the same user never lose an increment. The ledger never triggers achievement
evaluation; only the report lifecycle does that.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import DuplicateAwardError, InactiveUserError, NotFoundError, ValidationError
from ..models import PointsLedgerEntry, PointsRule, User
from ..models.enums import LedgerAction, PointsRuleKey, Role

logger = logging.getLogger(__name__)


@dataclass
class Mismatch:
    user_id: str
    balance: int
    ledger_total: int


def level_for(points: int) -> int:
    return points // settings.LEVEL_POINTS_STEP + 1


def award(
    db: Session,
    user_id: str,
    delta: int,
    action_type,
    description: Optional[str] = None,
    report_id: Optional[int] = None,
    reference: Optional[str] = None,
    commit: bool = True,
) -> PointsLedgerEntry:
    """Insert one ledger row and increment the user's balance by ``delta``."""
    if isinstance(delta, bool) or not isinstance(delta, int) or delta <= 0:
        raise ValidationError("Points delta must be a positive integer", code="INVALID_POINTS")
    try:
        action = LedgerAction(action_type)
    except ValueError:
        raise ValidationError(f"Unknown action type: {action_type}", code="INVALID_ACTION_TYPE")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise ValidationError("User not found", code="UNKNOWN_USER")
    if not user.is_active:
        raise InactiveUserError("Cannot award points to an inactive user")

    if reference and has_reference(db, user_id, reference):
        raise DuplicateAwardError(f"Points for '{reference}' were already awarded")

    entry = PointsLedgerEntry(
        user_id=user_id,
        points=delta,
        action_type=action.value,
        description=description,
        report_id=report_id,
        reference=reference,
    )
    db.add(entry)
    db.flush()

    step = settings.LEVEL_POINTS_STEP
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            points=User.points + delta,
            level=(User.points + delta) // step + 1,
        )
        .execution_options(synchronize_session=False)
    )

    if commit:
        db.commit()
    else:
        db.flush()
    db.refresh(user)

    logger.info("Awarded %s points to user %s (%s)", delta, user_id, action.value)
    return entry


def has_reference(db: Session, user_id: str, reference: str) -> bool:
    return (
        db.query(PointsLedgerEntry.id)
        .filter(
            PointsLedgerEntry.user_id == user_id,
            PointsLedgerEntry.reference == reference,
        )
        .first()
        is not None
    )


def balance(db: Session, user_id: str) -> int:
    value = db.query(User.points).filter(User.id == user_id).scalar()
    if value is None:
        raise ValidationError("User not found", code="UNKNOWN_USER")
    return int(value)


def ledger_total(db: Session, user_id: str) -> int:
    return int(
        db.query(func.coalesce(func.sum(PointsLedgerEntry.points), 0))
        .filter(PointsLedgerEntry.user_id == user_id)
        .scalar()
    )


def history(db: Session, user_id: str, limit: int = 50, offset: int = 0) -> List[PointsLedgerEntry]:
    return (
        db.query(PointsLedgerEntry)
        .filter(PointsLedgerEntry.user_id == user_id)
        .order_by(PointsLedgerEntry.created_at.desc(), PointsLedgerEntry.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )


def reconcile(db: Session, user_id: Optional[str] = None) -> List[Mismatch]:
    """Users whose stored balance differs from the sum of their ledger."""
    totals = (
        db.query(
            PointsLedgerEntry.user_id.label("user_id"),
            func.sum(PointsLedgerEntry.points).label("total"),
        )
        .group_by(PointsLedgerEntry.user_id)
        .subquery()
    )
    q = db.query(User.id, User.points, func.coalesce(totals.c.total, 0)).outerjoin(
        totals, totals.c.user_id == User.id
    )
    if user_id is not None:
        q = q.filter(User.id == user_id)

    return [
        Mismatch(user_id=uid, balance=int(points or 0), ledger_total=int(total))
        for uid, points, total in q.all()
        if int(points or 0) != int(total)
    ]


# ---------- Points policy ----------

def default_rules() -> dict:
    return {
        PointsRuleKey.REPORT_WITHOUT_PHOTO: (
            settings.POINTS_REPORT_WITHOUT_PHOTO,
            "Reporte creado sin foto",
        ),
        PointsRuleKey.REPORT_WITH_PHOTO: (
            settings.POINTS_REPORT_WITH_PHOTO,
            "Reporte creado con foto",
        ),
        PointsRuleKey.REPORT_RESOLVED: (
            settings.POINTS_REPORT_RESOLVED,
            "Reporte resuelto",
        ),
    }


def rule_points(db: Session, key: PointsRuleKey) -> int:
    """Configured amount for ``key``; 0 when the rule is disabled."""
    rule = db.query(PointsRule).filter(PointsRule.key == key.value).first()
    if rule is None:
        return default_rules()[key][0]
    return rule.points if rule.is_active else 0


def list_rules(db: Session) -> List[PointsRule]:
    return db.query(PointsRule).order_by(PointsRule.key).all()


def update_rule(
    db: Session,
    key: str,
    points: int,
    description: Optional[str] = None,
    is_active: bool = True,
) -> PointsRule:
    try:
        rule_key = PointsRuleKey(key)
    except ValueError:
        raise NotFoundError(f"Unknown points rule: {key}", code="POINTS_RULE_NOT_FOUND")
    rule = db.query(PointsRule).filter(PointsRule.key == rule_key.value).first()
    if rule is None:
        rule = PointsRule(key=rule_key.value)
        db.add(rule)
    rule.points = points
    rule.is_active = is_active
    if description is not None:
        rule.description = description
    db.commit()
    db.refresh(rule)
    logger.info("Points rule %s set to %s (active=%s)", rule_key.value, points, is_active)
    return rule


# ---------- Rankings ----------

_PERIODS = {"week": 7, "month": 30}


def leaderboard(db: Session, period: str = "all", limit: int = 10) -> List[dict]:
    """Active citizens ranked by balance, or by points earned within ``period``."""
    citizens = [User.role == Role.CITIZEN.value, User.is_active.is_(True)]
    if period == "all":
        rows = (
            db.query(User.id, User.full_name, User.email, User.points, User.level)
            .filter(*citizens)
            .order_by(User.points.desc(), User.created_at.asc())
            .limit(limit)
            .all()
        )
    elif period in _PERIODS:
        since = datetime.utcnow() - timedelta(days=_PERIODS[period])
        earned = func.sum(PointsLedgerEntry.points).label("earned")
        rows = (
            db.query(User.id, User.full_name, User.email, earned, User.level)
            .join(PointsLedgerEntry, PointsLedgerEntry.user_id == User.id)
            .filter(*citizens, PointsLedgerEntry.created_at >= since)
            .group_by(User.id, User.full_name, User.email, User.level)
            .order_by(earned.desc())
            .limit(limit)
            .all()
        )
    else:
        raise ValidationError("period must be one of: all, week, month", code="INVALID_PERIOD")

    return [
        {
            "posicion": position,
            "user_id": uid,
            "nombre": name or email,
            "puntos": int(points or 0),
            "nivel": level,
        }
        for position, (uid, name, email, points, level) in enumerate(rows, start=1)
    ]


def rank_of(db: Session, user: User) -> Optional[int]:
    if user.role != Role.CITIZEN.value:
        return None
    ahead = (
        db.query(func.count(User.id))
        .filter(
            User.role == Role.CITIZEN.value,
            User.is_active.is_(True),
            User.points > user.points,
        )
        .scalar()
        or 0
    )
    return ahead + 1
