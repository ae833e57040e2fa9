"""
Achievement evaluator.

Reads a user's aggregate stats and unlocks whatever the catalog says newly
qualifies. One-shot achievements are guarded by the ``user_achievements``
row; recurring ones (``every_n_resolved``) by the ledger reference of the
milestone they paid out for. Bonus points go through the ledger, but the
ledger never calls back in here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import DuplicateAwardError, ValidationError
from ..models import Achievement, Report, User, UserAchievement
from ..models.enums import AchievementCondition, LedgerAction, ReportStatus
from . import ledger, notifications

logger = logging.getLogger(__name__)


@dataclass
class UserStats:
    report_count: int
    resolved_count: int
    points: int


@dataclass
class Unlock:
    achievement: Achievement
    milestone: int
    bonus: int


def user_stats(db: Session, user_id: str) -> UserStats:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise ValidationError("User not found", code="UNKNOWN_USER")
    report_count = (
        db.query(func.count(Report.id)).filter(Report.user_id == user_id).scalar() or 0
    )
    resolved_count = (
        db.query(func.count(Report.id))
        .filter(Report.user_id == user_id, Report.status == ReportStatus.RESOLVED.value)
        .scalar()
        or 0
    )
    return UserStats(report_count=report_count, resolved_count=resolved_count, points=user.points or 0)


def _reference(achievement: Achievement, milestone: Optional[int] = None) -> str:
    if milestone is None:
        return f"achievement:{achievement.key}"
    return f"achievement:{achievement.key}:{milestone}"


def _milestones(achievement: Achievement, stats: UserStats) -> List[int]:
    """Milestones this achievement has reached; already-paid ones are filtered later."""
    condition = AchievementCondition(achievement.condition)
    if condition == AchievementCondition.REPORT_COUNT:
        # Fires on the exact count, as a report is added.
        required = achievement.reports_required or 0
        return [required] if required > 0 and stats.report_count == required else []
    if condition == AchievementCondition.POINTS:
        required = achievement.points_required or 0
        return [required] if required > 0 and stats.points >= required else []
    if condition == AchievementCondition.EVERY_N_RESOLVED:
        # Every multiple passed so far, so a batch of resolutions evaluated
        # once still pays 5, 10, ... individually.
        step = achievement.resolved_required or 0
        if step <= 0:
            return []
        return list(range(step, stats.resolved_count + 1, step))
    return []


def _is_recurring(achievement: Achievement) -> bool:
    return achievement.condition == AchievementCondition.EVERY_N_RESOLVED.value


def _already_unlocked(db: Session, user_id: str, achievement: Achievement) -> bool:
    return (
        db.query(UserAchievement.id)
        .filter(
            UserAchievement.user_id == user_id,
            UserAchievement.achievement_id == achievement.id,
        )
        .first()
        is not None
    )


def _unlock(db: Session, user: User, achievement: Achievement, milestone: int) -> Optional[Unlock]:
    """Record and pay one milestone; None if it was already paid."""
    recurring = _is_recurring(achievement)
    reference = _reference(achievement, milestone if recurring else None)
    first_time = not _already_unlocked(db, user.id, achievement)
    if not recurring and not first_time:
        return None
    if recurring and ledger.has_reference(db, user.id, reference):
        return None

    bonus = (achievement.bonus_points or 0) * (milestone if recurring else 1)
    level_before = user.level
    if first_time:
        db.add(UserAchievement(user_id=user.id, achievement_id=achievement.id))
    try:
        if bonus > 0:
            ledger.award(
                db,
                user.id,
                bonus,
                LedgerAction.ACHIEVEMENT_BONUS,
                description=f"Logro: {achievement.name}",
                reference=reference,
                commit=False,
            )
        db.commit()
    except (DuplicateAwardError, IntegrityError):
        # Another evaluation paid this milestone first.
        db.rollback()
        return None

    db.refresh(user)
    logger.info(
        "User %s unlocked %s (milestone %s, +%s points)",
        user.id,
        achievement.key,
        milestone,
        bonus,
    )

    try:
        message = notifications.achievement_message(achievement.key, achievement.name, bonus, milestone)
        notifications.notify(
            db,
            user.id,
            message.type,
            message.title,
            message.body,
            payload={
                "achievement": achievement.key,
                "milestone": milestone,
                "points": bonus,
            },
        )
        if user.level > level_before:
            level_message = notifications.level_up_message(user.level)
            notifications.notify(
                db,
                user.id,
                level_message.type,
                level_message.title,
                level_message.body,
                payload={"level": user.level, "points": user.points},
            )
    except Exception:
        logger.exception("Failed to notify user %s about achievement %s", user.id, achievement.key)
        db.rollback()

    return Unlock(achievement=achievement, milestone=milestone, bonus=bonus)


def evaluate(db: Session, user_id: str) -> List[Unlock]:
    """Unlock newly qualifying achievements, pay their bonus, notify the user."""
    stats = user_stats(db, user_id)
    user = db.query(User).filter(User.id == user_id).first()
    if not user.is_active:
        logger.info("Skipping achievement evaluation for inactive user %s", user_id)
        return []

    catalog = (
        db.query(Achievement)
        .filter(Achievement.is_active.is_(True))
        .order_by(Achievement.id)
        .all()
    )

    unlocked: List[Unlock] = []
    for achievement in catalog:
        for milestone in _milestones(achievement, stats):
            unlock = _unlock(db, user, achievement, milestone)
            if unlock is not None:
                unlocked.append(unlock)
    return unlocked


def unlocked_for_user(db: Session, user_id: str) -> List[UserAchievement]:
    return (
        db.query(UserAchievement)
        .filter(UserAchievement.user_id == user_id)
        .order_by(UserAchievement.unlocked_at.desc())
        .all()
    )


def catalog_with_progress(db: Session, user_id: str) -> List[dict]:
    """Every active achievement with the caller's unlock state."""
    unlocked = {ua.achievement_id: ua for ua in unlocked_for_user(db, user_id)}
    items = []
    for achievement in (
        db.query(Achievement).filter(Achievement.is_active.is_(True)).order_by(Achievement.id).all()
    ):
        ua = unlocked.get(achievement.id)
        items.append(
            {
                "key": achievement.key,
                "name": achievement.name,
                "description": achievement.description,
                "icon": achievement.icon,
                "bonus_points": achievement.bonus_points,
                "recurring": _is_recurring(achievement),
                "unlocked": ua is not None,
                "unlocked_at": ua.unlocked_at if ua else None,
            }
        )
    return items
