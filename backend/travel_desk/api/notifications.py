# ruff: noqa: B008, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Query, status

from travel_desk.api.deps import AuthDep
from travel_desk.db import SessionDep
from travel_desk.schemas.notification import MarkAllReadResponse, NotificationListResponse, NotificationResponse
from travel_desk.services import notification as notification_service

notifications_router = APIRouter(prefix="/notifications", tags=["notifications"])


@notifications_router.get("", response_model=NotificationListResponse)
async def list_notifications(
    session: SessionDep,
    auth: AuthDep,
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=100),
) -> NotificationListResponse:
    """List the caller's most recent notifications."""
    return await notification_service.list_notifications(session, auth, unread_only, limit)


@notifications_router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(session: SessionDep, auth: AuthDep) -> MarkAllReadResponse:
    """Mark every notification of the caller as read."""
    return await notification_service.mark_all_read(session, auth)


@notifications_router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(notification_id: uuid.UUID, session: SessionDep, auth: AuthDep) -> NotificationResponse:
    """Mark one of the caller's notifications as read."""
    return await notification_service.mark_read(session, auth, notification_id)


@notifications_router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(notification_id: uuid.UUID, session: SessionDep, auth: AuthDep) -> None:
    """Delete one of the caller's notifications."""
    await notification_service.delete_notification(session, auth, notification_id)
