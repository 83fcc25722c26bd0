# ruff: noqa: TC003
from __future__ import annotations

from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import event
from sqlmodel import Field

from travel_desk.models.base import RequestChildMixin, UUIDBase, now_utc


class AuditEntry(UUIDBase, RequestChildMixin, table=True):
    """Immutable, ordered record of one workflow event on a travel request."""

    __tablename__ = "travel_request_audit_entry"
    __table_args__ = (sa.UniqueConstraint("request_id", "sequence", name="uq_audit_request_sequence"),)

    action: str = Field(max_length=50)
    sender_identity: str = Field(max_length=320)
    sender_display_name: str = Field(max_length=255)
    message: str
    details_json: dict[str, Any] | None = Field(default=None, sa_type=sa.JSON)
    created_at: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )


class AuditTrailImmutableError(RuntimeError):
    """Raised when code tries to rewrite or remove an audit entry."""


@event.listens_for(AuditEntry, "before_update")
def _refuse_audit_update(mapper: Any, connection: Any, target: AuditEntry) -> None:
    msg = f"Audit entry {target.id} is append-only and cannot be updated"
    raise AuditTrailImmutableError(msg)


@event.listens_for(AuditEntry, "before_delete")
def _refuse_audit_delete(mapper: Any, connection: Any, target: AuditEntry) -> None:
    msg = f"Audit entry {target.id} is append-only and cannot be deleted"
    raise AuditTrailImmutableError(msg)
