from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlmodel import col

from travel_desk.models.audit import AuditEntry
from travel_desk.schemas.request import AuditEntryResponse

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from travel_desk.services.workflow import AuditDraft


def _json_safe(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_json_safe(v) for v in value]
    return value


def _build_audit_entry_response(entry: AuditEntry) -> AuditEntryResponse:
    return AuditEntryResponse(
        sequence=entry.sequence,
        action=entry.action,
        sender_identity=entry.sender_identity,
        sender_display_name=entry.sender_display_name,
        message=entry.message,
        details_json=entry.details_json,
        created_at=entry.created_at,
    )


async def count_audit_entries(session: AsyncSession, request_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count()).select_from(AuditEntry).where(col(AuditEntry.request_id) == request_id)
    )
    return result.scalar_one()


async def append_audit_entry(
    session: AsyncSession,
    *,
    request_id: uuid.UUID,
    sequence: int,
    draft: AuditDraft,
    created_at: datetime | None = None,
) -> AuditEntry:
    """Append an immutable audit entry within the caller's transaction.

    ``sequence`` must be the current trail length as read under the same
    serialization token as the state change the entry describes.
    """
    entry = AuditEntry(
        request_id=request_id,
        sequence=sequence,
        action=draft.action.value,
        sender_identity=draft.sender.identity,
        sender_display_name=draft.sender.display_name,
        message=draft.message,
        details_json=_json_safe(draft.details) if draft.details is not None else None,
    )
    if created_at is not None:
        entry.created_at = created_at
    session.add(entry)
    return entry


async def get_audit_trail(session: AsyncSession, request_id: uuid.UUID) -> list[AuditEntryResponse]:
    """Return the request's full audit trail in insertion order."""
    result = await session.execute(
        select(AuditEntry).where(col(AuditEntry.request_id) == request_id).order_by(col(AuditEntry.sequence))
    )
    return [_build_audit_entry_response(e) for e in result.scalars().all()]
