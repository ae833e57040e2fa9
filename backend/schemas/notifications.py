# backend/schemas/notifications.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.enums import Role


class NotificationOut(BaseModel):
    id: int
    type: str
    title: str
    body: str
    payload: Optional[Dict[str, Any]] = None
    report_id: Optional[int] = None
    is_read: bool
    created_at: datetime
    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next: bool
    has_prev: bool


class NotificationPage(BaseModel):
    notifications: List[NotificationOut]
    pagination: Pagination
    unread_count: int


class TestNotificationIn(BaseModel):
    type: str = "info"
    title: str = "Notificación de prueba"
    body: str = "Esta es una notificación de prueba"


class UrgentBroadcastIn(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    body: str = Field(..., min_length=3, max_length=2000)
    payload: Dict[str, Any] = Field(default_factory=dict)
    # Either explicit recipients or every active user holding a role.
    user_ids: Optional[List[str]] = None
    role: Optional[Role] = None
