# backend/schemas/points.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class LedgerEntryOut(BaseModel):
    id: int
    points: int
    action_type: str
    description: Optional[str] = None
    report_id: Optional[int] = None
    created_at: datetime
    model_config = {"from_attributes": True}


class ManualGrantIn(BaseModel):
    user_id: str
    points: int = Field(..., gt=0, le=10000)
    description: Optional[str] = Field(default=None, max_length=255)


class PointsRuleOut(BaseModel):
    key: str
    points: int
    description: Optional[str] = None
    is_active: bool
    updated_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


class PointsRuleUpdate(BaseModel):
    points: int = Field(..., ge=0, le=10000)
    description: Optional[str] = Field(default=None, max_length=255)
    is_active: bool = True


class LeaderboardEntry(BaseModel):
    posicion: int
    user_id: str
    nombre: str
    puntos: int
    nivel: int


class AchievementProgress(BaseModel):
    key: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    bonus_points: int
    recurring: bool
    unlocked: bool
    unlocked_at: Optional[datetime] = None


class PointsStats(BaseModel):
    puntos: int
    nivel: int
    puntos_siguiente_nivel: int
    posicion: Optional[int] = None
    reportes_total: int
    reportes_resueltos: int
    historial_reciente: List[LedgerEntryOut]
    logros: List[AchievementProgress]
