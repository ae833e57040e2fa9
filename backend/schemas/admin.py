# backend/schemas/admin.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.enums import Role
from .auth import UserOut


class UserUpdateIn(BaseModel):
    full_name: Optional[str] = Field(None, min_length=2, max_length=120)
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class UserPage(BaseModel):
    users: List[UserOut]
    total: int


class PurgeIn(BaseModel):
    days: Optional[int] = Field(None, ge=1, le=3650)


class MismatchOut(BaseModel):
    user_id: str
    balance: int
    ledger_total: int


class ReconcileOut(BaseModel):
    status: str
    mismatches: List[MismatchOut]
