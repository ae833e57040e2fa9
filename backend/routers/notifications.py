# backend/routers/notifications.py
from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..deps import get_current_user
from ..models.user import User
from ..schemas.notifications import (
    NotificationOut,
    NotificationPage,
    Pagination,
    TestNotificationIn,
)
from ..services import notifications

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationPage)
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, total = notifications.list_for_user(
        db, current_user.id, page=page, page_size=limit, unread_only=unread_only
    )
    total_pages = math.ceil(total / limit) if total else 0
    return NotificationPage(
        notifications=[NotificationOut.model_validate(n) for n in items],
        pagination=Pagination(
            current_page=page,
            total_pages=total_pages,
            total_items=total,
            items_per_page=limit,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
        unread_count=notifications.unread_count(db, current_user.id),
    )


@router.get("/unread-count")
def unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"unread_count": notifications.unread_count(db, current_user.id)}


@router.patch("/read-all")
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    updated = notifications.mark_all_read(db, current_user.id)
    return {"message": "Todas las notificaciones marcadas como leídas", "updated": updated}


@router.patch("/{notification_id}/read", response_model=NotificationOut)
def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return notifications.mark_read(db, notification_id, current_user.id)


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notifications.delete(db, notification_id, current_user.id)
    return {"message": "Notificación eliminada", "id": notification_id}


@router.post("/test", response_model=NotificationOut, status_code=status.HTTP_201_CREATED)
def create_test_notification(
    payload: TestNotificationIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if settings.is_production:
        raise HTTPException(status_code=404, detail="Not Found")
    return notifications.notify(
        db,
        current_user.id,
        payload.type,
        payload.title,
        payload.body,
        payload={"test": True},
    )
