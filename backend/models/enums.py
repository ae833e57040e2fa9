# backend/models/enums.py
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class Role(str, Enum):
    CITIZEN = "citizen"
    AUTHORITY = "authority"
    ADMIN = "admin"


class ReportStatus(str, Enum):
    REPORTED = "Reported"
    IN_PROGRESS = "InProgress"
    RESOLVED = "Resolved"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[ReportStatus] = frozenset({ReportStatus.RESOLVED, ReportStatus.REJECTED})

# Reported -> InProgress -> Resolved | Rejected, with Reported -> Resolved | Rejected allowed too.
ALLOWED_TRANSITIONS: Dict[ReportStatus, FrozenSet[ReportStatus]] = {
    ReportStatus.REPORTED: frozenset(
        {ReportStatus.IN_PROGRESS, ReportStatus.RESOLVED, ReportStatus.REJECTED}
    ),
    ReportStatus.IN_PROGRESS: frozenset({ReportStatus.RESOLVED, ReportStatus.REJECTED}),
    ReportStatus.RESOLVED: frozenset(),
    ReportStatus.REJECTED: frozenset(),
}


class LedgerAction(str, Enum):
    REPORT_CREATED = "report_created"
    REPORT_RESOLVED = "report_resolved"
    ACHIEVEMENT_BONUS = "achievement_bonus"
    MANUAL_GRANT = "manual_grant"


class PointsRuleKey(str, Enum):
    REPORT_WITHOUT_PHOTO = "report_without_photo"
    REPORT_WITH_PHOTO = "report_with_photo"
    REPORT_RESOLVED = "report_resolved"


class NotificationType(str, Enum):
    STATUS_UPDATE = "status_update"
    REPORT_RESOLVED = "report_resolved"
    REPORT_REJECTED = "report_rejected"
    ACHIEVEMENT = "achievement"
    LEVEL_UP = "level_up"
    NEW_REPORT = "new_report"
    URGENT = "urgent"
    INFO = "info"


class AchievementKey(str, Enum):
    FIRST_REPORT = "first_report"
    ACTIVE_REPORTER = "active_reporter"
    COMMITTED_REPORTER = "committed_reporter"
    PROBLEM_SOLVER = "problem_solver"


class AchievementCondition(str, Enum):
    """How an achievement's thresholds are read.

    ``report_count`` and ``points`` unlock once; ``every_n_resolved`` fires again
    at every positive multiple of ``resolved_required``.
    """

    REPORT_COUNT = "report_count"
    POINTS = "points"
    EVERY_N_RESOLVED = "every_n_resolved"
