# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field

from travel_desk.models.base import UUIDBase, now_utc


class Notification(UUIDBase, table=True):
    """Inbox entry delivered to one recipient."""

    __tablename__ = "notification"
    __table_args__ = (sa.Index("ix_notification_recipient_read", "recipient_identity", "is_read", "created_at"),)

    recipient_identity: str = Field(max_length=320)
    category: str = Field(max_length=50)
    title: str = Field(max_length=255)
    body: str
    related_request_id: uuid.UUID | None = None
    related_human_id: str | None = Field(default=None, max_length=32)
    is_read: bool = Field(default=False, sa_column_kwargs={"server_default": sa.false()})
    created_at: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )
