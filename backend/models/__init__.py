# backend/models/__init__.py

from .user import User
from .report import Report
from .gamification import (
    PointsLedgerEntry,
    PointsRule,
    Achievement,
    UserAchievement,
)
from .notification import Notification

__all__ = [
    "User",
    "Report",
    "PointsLedgerEntry",
    "PointsRule",
    "Achievement",
    "UserAchievement",
    "Notification",
]
