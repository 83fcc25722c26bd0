# ruff: noqa: TC003
from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field

from travel_desk.models.base import RequestChildMixin, UUIDBase, now_utc


class RequestFileAttachment(UUIDBase, RequestChildMixin, table=True):
    """Reference to a supporting document for a request; the file itself lives elsewhere."""

    __tablename__ = "request_file_attachment"
    __table_args__ = (sa.UniqueConstraint("request_id", "sequence", name="uq_request_file_attachment_sequence"),)

    file_name: str = Field(max_length=255)
    file_url: str = Field(max_length=2048)
    uploaded_by_identity: str = Field(max_length=320)
    uploaded_by_display_name: str = Field(max_length=255)
    uploaded_at: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
    )
