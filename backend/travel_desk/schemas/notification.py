# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel

from travel_desk.models.enums import NotificationCategory


class NotificationResponse(BaseModel):
    """Response schema for one inbox entry."""

    id: uuid.UUID
    category: NotificationCategory
    title: str
    body: str
    related_request_id: uuid.UUID | None
    related_human_id: str | None
    is_read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    """Most recent notifications plus the unread counter."""

    items: list[NotificationResponse]
    unread_count: int


class MarkAllReadResponse(BaseModel):
    """How many notifications were newly marked read."""

    updated: int
