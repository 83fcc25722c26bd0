# ruff: noqa: TC003
from __future__ import annotations

from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from travel_desk.models.base import RequestChildMixin, UUIDBase, now_utc


class VendorMessage(UUIDBase, RequestChildMixin, table=True):
    """A vendor's response (ticket options, quotes) on an approved request."""

    __tablename__ = "vendor_message"
    __table_args__ = (sa.UniqueConstraint("request_id", "sequence", name="uq_vendor_message_sequence"),)

    message: str
    attachments: list[dict[str, Any]] = Field(default_factory=list, sa_type=sa.JSON)
    sent_by_identity: str = Field(max_length=320)
    sent_by_display_name: str = Field(max_length=255)
    sent_at: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
    )


class VendorChatMessage(UUIDBase, RequestChildMixin, table=True):
    """One turn of the private vendor/originator conversation."""

    __tablename__ = "vendor_chat_message"
    __table_args__ = (sa.UniqueConstraint("request_id", "sequence", name="uq_vendor_chat_sequence"),)

    sender_identity: str = Field(max_length=320)
    sender_display_name: str = Field(max_length=255)
    message: str
    sent_at: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
    )
