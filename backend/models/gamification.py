# backend/models/gamification.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship

from ..db import Base


class PointsLedgerEntry(Base):
    """
    One immutable point-earning event. The sum of a user's deltas equals
    ``users.points``.

    ``reference`` is an optional idempotency key (e.g. ``report_resolved:42``);
    a given reference is awarded at most once per user.
    """

    __tablename__ = "points_ledger"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    points = Column(Integer, nullable=False)
    action_type = Column(String, nullable=False)
    report_id = Column(Integer, ForeignKey("reports.id"), nullable=True)
    description = Column(String, nullable=True)
    reference = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    report = relationship("Report")

    __table_args__ = (
        UniqueConstraint("user_id", "reference", name="uq_points_ledger_user_reference"),
        Index("ix_points_ledger_user_created", "user_id", "created_at"),
    )


class PointsRule(Base):
    """Configurable point amount per policy key (see PointsRuleKey)."""

    __tablename__ = "points_config"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, unique=True, nullable=False)
    points = Column(Integer, nullable=False)
    description = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )


class Achievement(Base):
    """Static catalog entry; unlock criteria are read by the evaluator."""

    __tablename__ = "achievements"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String, nullable=True)

    condition = Column(String, nullable=False)
    points_required = Column(Integer, nullable=True)
    reports_required = Column(Integer, nullable=True)
    resolved_required = Column(Integer, nullable=True)

    # Recurring achievements multiply this by the milestone reached.
    bonus_points = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)


class UserAchievement(Base):
    __tablename__ = "user_achievements"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    achievement_id = Column(Integer, ForeignKey("achievements.id"), nullable=False)
    unlocked_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    achievement = relationship("Achievement")

    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),
    )
