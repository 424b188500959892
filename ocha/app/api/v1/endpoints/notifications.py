from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_db
from ocha.app.schemas.operations import NotificationRead
from ocha.services import notifications

router = APIRouter(prefix="/notifications")


@router.get("", response_model=list[NotificationRead])
def list_notifications(
    recipient: str | None = None,
    unread_only: bool = False,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return notifications.list_notifications(db, recipient=recipient, unread_only=unread_only, limit=limit)


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_read(notification_id: int, db: Session = Depends(get_db)):
    return notifications.mark_read(db, notification_id)
