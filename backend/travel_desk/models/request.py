# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from travel_desk.models.base import TimestampMixin, UUIDBase
from travel_desk.models.enums import RequestStatus


class TravelRequest(UUIDBase, TimestampMixin, table=True):
    """A trip request moving through manager, POC and vendor stages."""

    __tablename__ = "travel_request"
    __table_args__ = (sa.Index("ix_travel_request_status_originator", "status", "originator_identity"),)

    human_id: str = Field(max_length=32, unique=True, index=True)
    status: str = Field(
        default=RequestStatus.PENDING, max_length=32, index=True, sa_column_kwargs={"server_default": "Pending"}
    )
    originator_identity: str = Field(max_length=320, index=True)
    originator_display_name: str = Field(max_length=255)
    created_by_identity: str = Field(max_length=320)
    trip_details: dict[str, Any] = Field(default_factory=dict, sa_type=sa.JSON)

    submitted_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    manager_approved_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    manager_approved_by: str | None = Field(default=None, max_length=320)
    manager_rejected_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    manager_rejected_by: str | None = Field(default=None, max_length=320)
    poc_edited_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    poc_approved_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    poc_approved_by: str | None = Field(default=None, max_length=320)
    poc_rejected_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    poc_rejected_by: str | None = Field(default=None, max_length=320)

    version: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
