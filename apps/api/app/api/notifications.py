from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.rbac import require_permission
from app.services.notifications import notifier


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sender_id: str
    recipient_id: str
    text: str
    priority: str
    read: bool
    created_at: datetime


@router.get("", response_model=list[NotificationRead])
def list_notifications(
    request: Request,
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[NotificationRead] | JSONResponse:
    try:
        require_permission(user, "notifications.read")
        messages = notifier.list_for_recipient(db, user.sub, unread_only=unread_only, limit=limit)
        return [NotificationRead.model_validate(message) for message in messages]
    except HTTPException as exc:
        return http_error_response(request, exc, "notifications_read_failed")
