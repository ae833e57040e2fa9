"""Seed data for the achievement catalog and the points policy table."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..models import Achievement, PointsRule
from ..models.enums import AchievementCondition, AchievementKey
from .ledger import default_rules

logger = logging.getLogger(__name__)


ACHIEVEMENT_CATALOG = [
    {
        "key": AchievementKey.FIRST_REPORT,
        "name": "Primer Reporte",
        "description": "Creaste tu primer reporte.",
        "icon": "🎉",
        "condition": AchievementCondition.REPORT_COUNT,
        "reports_required": 1,
        "bonus_points": 10,
    },
    {
        "key": AchievementKey.ACTIVE_REPORTER,
        "name": "EcoReporter Activo",
        "description": "Creaste 5 reportes.",
        "icon": "🏆",
        "condition": AchievementCondition.REPORT_COUNT,
        "reports_required": 5,
        "bonus_points": 25,
    },
    {
        "key": AchievementKey.COMMITTED_REPORTER,
        "name": "EcoReporter Comprometido",
        "description": "Creaste 10 reportes.",
        "icon": "🌟",
        "condition": AchievementCondition.REPORT_COUNT,
        "reports_required": 10,
        "bonus_points": 50,
    },
    {
        "key": AchievementKey.PROBLEM_SOLVER,
        "name": "Solucionador de Problemas",
        "description": "Cada 5 reportes tuyos resueltos.",
        "icon": "✨",
        "condition": AchievementCondition.EVERY_N_RESOLVED,
        "resolved_required": 5,
        "bonus_points": 5,
    },
]


def seed_catalog(db: Session) -> None:
    """Insert missing catalog rows; existing rows (and admin edits) are kept."""
    existing = {a.key for a in db.query(Achievement.key).all()}
    added = 0
    for item in ACHIEVEMENT_CATALOG:
        if item["key"].value in existing:
            continue
        db.add(
            Achievement(
                key=item["key"].value,
                name=item["name"],
                description=item["description"],
                icon=item["icon"],
                condition=item["condition"].value,
                reports_required=item.get("reports_required"),
                resolved_required=item.get("resolved_required"),
                points_required=item.get("points_required"),
                bonus_points=item["bonus_points"],
                is_active=True,
            )
        )
        added += 1

    existing_rules = {r.key for r in db.query(PointsRule.key).all()}
    for key, (points, description) in default_rules().items():
        if key.value in existing_rules:
            continue
        db.add(PointsRule(key=key.value, points=points, description=description, is_active=True))
        added += 1

    if added:
        db.commit()
        logger.info("Seeded %s catalog rows", added)
