"""Persistence for the travel request aggregate.

Every mutation of a request goes through ``apply_plan``, which loads nothing
itself: the caller has already re-read the request with
``get_request_for_update`` (a row lock where the database supports it), and
``apply_plan`` only commits if the row's ``version`` still matches that read.
Two transitions derived from the same stale read can therefore never both
commit, whatever the backend.
"""

# ruff: noqa: TC003
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlmodel import col

from travel_desk.exceptions import ConflictError, NotFoundError
from travel_desk.models.base import now_utc
from travel_desk.models.attachment import RequestFileAttachment
from travel_desk.models.enums import RequestStatus
from travel_desk.models.message import VendorChatMessage, VendorMessage
from travel_desk.models.request import TravelRequest
from travel_desk.models.sequence import RequestSequence
from travel_desk.services.audit import append_audit_entry, count_audit_entries

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from travel_desk.services.workflow import AuditDraft, ChatTurn, TransitionPlan

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRY_BACKOFF_SECONDS = 0.05

_CONTENTION_MARKERS = (
    "database is locked",
    "deadlock",
    "could not serialize",
    "lock timeout",
    "unique constraint",
    "duplicate key",
)


# ---------------------------------------------------------------------------
# Concurrency helpers
# ---------------------------------------------------------------------------


def is_write_contention(exc: DBAPIError) -> bool:
    """True when the database refused a write because another writer got there first."""
    text = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in text for marker in _CONTENTION_MARKERS)


async def run_with_write_retry(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    what: str,
) -> T:
    """Run an append-style write, rolling back and retrying when it lost a race.

    Only for operations whose preconditions are re-evaluated on every attempt
    and which are safe to repeat (creation, chat appends). State transitions
    are never retried: a lost race there is the caller's conflict.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except ConflictError:
            await session.rollback()
            if attempt == attempts:
                raise
        except DBAPIError as exc:
            await session.rollback()
            if not is_write_contention(exc):
                raise
            if attempt == attempts:
                raise ConflictError(f"Could not {what} because of concurrent writes; retry") from None
        logger.info("Retrying %s after write contention (attempt %d/%d)", what, attempt, attempts)
        await asyncio.sleep(_RETRY_BACKOFF_SECONDS * attempt)
    msg = "attempts must be at least 1"
    raise ValueError(msg)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_request_or_404(session: AsyncSession, request_id: uuid.UUID) -> TravelRequest:
    """Fetch a request by ID. Raises 404 if not found."""
    result = await session.execute(
        select(TravelRequest)
        .where(col(TravelRequest.id) == request_id)
        .execution_options(populate_existing=True)
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError("Request not found")
    return request


async def get_request_for_update(session: AsyncSession, request_id: uuid.UUID) -> TravelRequest:
    """Re-read a request, locking its row until commit where the database supports it."""
    result = await session.execute(
        select(TravelRequest)
        .where(col(TravelRequest.id) == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError("Request not found")
    return request


async def list_requests(
    session: AsyncSession,
    *,
    originators: Sequence[str] | None = None,
    statuses: Sequence[RequestStatus] | None = None,
    order_by: str = "created_at",
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[TravelRequest], int]:
    """Snapshot listing with optional originator/status filters, newest first."""
    filters: list[Any] = []
    if originators is not None:
        filters.append(col(TravelRequest.originator_identity).in_(list(originators)))
    if statuses is not None:
        filters.append(col(TravelRequest.status).in_([s.value for s in statuses]))

    count_result = await session.execute(select(func.count()).select_from(TravelRequest).where(*filters))
    total = count_result.scalar_one()

    order_column = getattr(TravelRequest, order_by)
    result = await session.execute(
        select(TravelRequest)
        .where(*filters)
        .order_by(col(order_column).desc(), col(TravelRequest.created_at).desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def count_by_status(session: AsyncSession, originators: Sequence[str]) -> dict[str, int]:
    result = await session.execute(
        select(TravelRequest.status, func.count())
        .where(col(TravelRequest.originator_identity).in_(list(originators)))
        .group_by(col(TravelRequest.status))
    )
    return {status: count for status, count in result.all()}


async def list_vendor_messages(session: AsyncSession, request_id: uuid.UUID) -> list[VendorMessage]:
    result = await session.execute(
        select(VendorMessage)
        .where(col(VendorMessage.request_id) == request_id)
        .order_by(col(VendorMessage.sequence))
    )
    return list(result.scalars().all())


async def list_chat_messages(session: AsyncSession, request_id: uuid.UUID) -> list[VendorChatMessage]:
    result = await session.execute(
        select(VendorChatMessage)
        .where(col(VendorChatMessage.request_id) == request_id)
        .order_by(col(VendorChatMessage.sequence))
    )
    return list(result.scalars().all())


async def list_file_attachments(session: AsyncSession, request_id: uuid.UUID) -> list[RequestFileAttachment]:
    result = await session.execute(
        select(RequestFileAttachment)
        .where(col(RequestFileAttachment.request_id) == request_id)
        .order_by(col(RequestFileAttachment.sequence))
    )
    return list(result.scalars().all())


async def _count_children(
    session: AsyncSession,
    model: type[VendorMessage | VendorChatMessage | RequestFileAttachment],
    request_id: uuid.UUID,
) -> int:
    result = await session.execute(select(func.count()).select_from(model).where(col(model.request_id) == request_id))
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def next_human_id(session: AsyncSession, now: datetime) -> str:
    """Allocate ``TR-<year>-<dayOfYear:04d><sequence:03d>`` from an atomic per-day counter.

    The increment is a single ``UPDATE ... RETURNING``; the first request of a
    day inserts the counter row, and a concurrent first insert surfaces as an
    IntegrityError for the caller's retry loop.
    """
    day_of_year = now.timetuple().tm_yday
    key = f"{now.year}-{day_of_year:04d}"
    result = await session.execute(
        update(RequestSequence)
        .where(col(RequestSequence.key) == key)
        .values(value=col(RequestSequence.value) + 1)
        .returning(col(RequestSequence.value))
        .execution_options(synchronize_session=False)
    )
    value = result.scalar_one_or_none()
    if value is None:
        session.add(RequestSequence(key=key, value=1))
        await session.flush()
        value = 1
    return f"TR-{now.year}-{day_of_year:04d}{value:03d}"


async def insert_request(session: AsyncSession, request: TravelRequest, first_entry: AuditDraft) -> TravelRequest:
    """Insert a new request with its first audit entry, then commit."""
    session.add(request)
    await session.flush()
    await append_audit_entry(session, request_id=request.id, sequence=0, draft=first_entry)
    await session.commit()
    await session.refresh(request)
    return request


async def apply_plan(session: AsyncSession, request: TravelRequest, plan: TransitionPlan) -> TravelRequest:
    """Commit a transition plan if the request is still at the version it was read at.

    The status/field update, the audit append and any vendor message insert
    share one transaction; a lost race rolls all of them back and raises 409.
    """
    expected_version = request.version
    human_id = request.human_id
    values: dict[str, Any] = {
        **plan.changes,
        "status": plan.next_status.value,
        "version": expected_version + 1,
        "updated_at": now_utc(),
    }
    try:
        result = await session.execute(
            update(TravelRequest)
            .where(col(TravelRequest.id) == request.id, col(TravelRequest.version) == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Request {human_id} was modified concurrently; re-fetch and retry")

        sequence = await count_audit_entries(session, request.id)
        await append_audit_entry(session, request_id=request.id, sequence=sequence, draft=plan.audit)

        if plan.vendor_message is not None:
            session.add(
                VendorMessage(
                    request_id=request.id,
                    sequence=await _count_children(session, VendorMessage, request.id),
                    **plan.vendor_message,
                )
            )

        await session.commit()
    except ConflictError:
        await session.rollback()
        raise
    except DBAPIError as exc:
        await session.rollback()
        if isinstance(exc, IntegrityError) or is_write_contention(exc):
            raise ConflictError(f"Request {human_id} was modified concurrently; re-fetch and retry") from None
        raise

    await session.refresh(request)
    return request


async def append_chat_turn(session: AsyncSession, request_id: uuid.UUID, turn: ChatTurn) -> VendorChatMessage:
    """Append a chat turn and commit; a sequence collision surfaces as IntegrityError."""
    message = VendorChatMessage(
        request_id=request_id,
        sequence=await _count_children(session, VendorChatMessage, request_id),
        sender_identity=turn.sender.identity,
        sender_display_name=turn.sender.display_name,
        message=turn.message,
        sent_at=turn.sent_at,
    )
    session.add(message)
    await session.commit()
    return message


async def append_file_attachment(
    session: AsyncSession,
    request_id: uuid.UUID,
    attachment: dict[str, Any],
) -> RequestFileAttachment:
    """Append a file reference and commit; a sequence collision surfaces as IntegrityError."""
    row = RequestFileAttachment(
        request_id=request_id,
        sequence=await _count_children(session, RequestFileAttachment, request_id),
        **attachment,
    )
    session.add(row)
    await session.commit()
    return row
