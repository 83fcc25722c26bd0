# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import DBAPIError

from travel_desk.config import get_settings
from travel_desk.exceptions import AppError, ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from travel_desk.models.base import now_utc
from travel_desk.models.enums import Capability, RequestStatus, WorkflowAction
from travel_desk.models.request import TravelRequest
from travel_desk.schemas.request import (
    ApprovalCounts,
    ApprovalListResponse,
    AttachmentResponse,
    AuditEntryResponse,
    ChatMessageResponse,
    RequestListResponse,
    StatusResponse,
    TravelRequestResponse,
    TripDetails,
    VendorMessageResponse,
)
from travel_desk.services import audit as audit_service
from travel_desk.services import repository
from travel_desk.services.notification import get_notification_dispatcher
from travel_desk.services.roles import CHAT_PARTICIPANT, RoleResolver, ensure_allowed
from travel_desk.services.workflow import (
    INITIAL_STATUS,
    Actor,
    TransitionPlan,
    chat_rule,
    plan_chat_turn,
    plan_manager_approve,
    plan_manager_reject,
    plan_on_behalf_creation,
    plan_poc_approve,
    plan_poc_edit,
    plan_poc_reject,
    plan_submission,
    plan_vendor_respond,
    rule_for,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from travel_desk.models.attachment import RequestFileAttachment
    from travel_desk.models.message import VendorChatMessage, VendorMessage
    from travel_desk.schemas.auth import AuthContext
    from travel_desk.schemas.request import (
        AttachmentRef,
        ChatPayload,
        CreateOnBehalfPayload,
        DecisionPayload,
        RejectPayload,
        TripDetailsPatch,
        VendorResponsePayload,
    )
    from travel_desk.services.workflow import NotificationIntent

logger = logging.getLogger(__name__)

# Manager dashboard tabs; "approved" covers everything past the manager stage.
_MANAGER_TABS: dict[RequestStatus, list[RequestStatus]] = {
    RequestStatus.PENDING: [RequestStatus.PENDING],
    RequestStatus.MANAGER_APPROVED: [
        RequestStatus.MANAGER_APPROVED,
        RequestStatus.APPROVED,
        RequestStatus.POC_REJECTED,
    ],
    RequestStatus.REJECTED: [RequestStatus.REJECTED],
}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_request_response(request: TravelRequest) -> TravelRequestResponse:
    """Map a request model to its response schema."""
    return TravelRequestResponse(
        id=request.id,
        human_id=request.human_id,
        status=RequestStatus(request.status),
        originator_identity=request.originator_identity,
        originator_display_name=request.originator_display_name,
        created_by_identity=request.created_by_identity,
        trip_details=TripDetails.model_validate(request.trip_details),
        submitted_at=request.submitted_at,
        manager_approved_at=request.manager_approved_at,
        manager_approved_by=request.manager_approved_by,
        manager_rejected_at=request.manager_rejected_at,
        manager_rejected_by=request.manager_rejected_by,
        poc_edited_at=request.poc_edited_at,
        poc_approved_at=request.poc_approved_at,
        poc_approved_by=request.poc_approved_by,
        poc_rejected_at=request.poc_rejected_at,
        poc_rejected_by=request.poc_rejected_by,
        version=request.version,
        created_at=request.created_at,
        updated_at=request.updated_at,
    )


def _build_status_response(request: TravelRequest) -> StatusResponse:
    return StatusResponse(id=request.id, human_id=request.human_id, status=RequestStatus(request.status))


def _build_vendor_message_response(message: VendorMessage) -> VendorMessageResponse:
    return VendorMessageResponse(
        sequence=message.sequence,
        message=message.message,
        attachments=[AttachmentResponse.model_validate(a) for a in message.attachments],
        sent_by_identity=message.sent_by_identity,
        sent_by_display_name=message.sent_by_display_name,
        sent_at=message.sent_at,
    )


def _build_chat_message_response(message: VendorChatMessage) -> ChatMessageResponse:
    return ChatMessageResponse(
        sequence=message.sequence,
        sender_identity=message.sender_identity,
        sender_display_name=message.sender_display_name,
        message=message.message,
        sent_at=message.sent_at,
    )


def _list_response(items: list[TravelRequest], total: int) -> RequestListResponse:
    return RequestListResponse(items=[_build_request_response(r) for r in items], total=total)


async def _actor(resolver: RoleResolver, auth: AuthContext) -> Actor:
    return Actor(identity=auth.identity, display_name=await resolver.display_name(auth.identity))


async def _ensure_can_view(resolver: RoleResolver, auth: AuthContext, request: TravelRequest) -> None:
    """Originator, creator, the originator's manager, POCs, admins and vendors may read a request."""
    if auth.identity in (request.originator_identity, request.created_by_identity):
        return
    for capability in (Capability.POC, Capability.ADMIN, Capability.VENDOR):
        if await resolver.has_capability(auth.identity, capability):
            return
    if await resolver.is_manager_of(auth.identity, request.originator_identity):
        return
    raise ForbiddenError(f"You may not view request {request.human_id}")


async def _ensure_any_capability(resolver: RoleResolver, auth: AuthContext, *capabilities: Capability) -> None:
    for capability in capabilities:
        if await resolver.has_capability(auth.identity, capability):
            return
    names = " or ".join(c.value for c in capabilities)
    raise ForbiddenError(f"This view requires {names} capability")


async def _transition(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    action: WorkflowAction,
    build_plan: Callable[[TravelRequest, Actor, datetime], TransitionPlan],
) -> TravelRequest:
    """Load under lock, check state then capability, plan, commit, then notify.

    Nothing is written unless every check passes; a lost race surfaces as
    ConflictError from ``apply_plan`` and is never retried here.
    """
    resolver = RoleResolver()
    try:
        request = await repository.get_request_for_update(session, request_id)
    except DBAPIError as exc:
        await session.rollback()
        if not repository.is_write_contention(exc):
            raise
        logger.info("Lock contention loading request %s for %s", request_id, action)
        raise ConflictError("Request is being modified concurrently; re-fetch and retry") from None
    try:
        rule = rule_for(request, action)
        await ensure_allowed(rule.requirement, resolver, auth.identity, request, rule.verb)
        actor = await _actor(resolver, auth)
        plan = build_plan(request, actor, now_utc())
    except AppError as exc:
        human_id = request.human_id
        await session.rollback()
        if isinstance(exc, ConflictError):
            logger.info("Rejected %s on %s: %s", action, human_id, exc.message)
        raise

    previous = request.status
    try:
        request = await repository.apply_plan(session, request, plan)
    except ConflictError as exc:
        logger.info("Conflict applying %s: %s", action, exc.message)
        raise

    logger.info(
        "Request %s %s -> %s (%s by %s)", request.human_id, previous, request.status, action, actor.identity
    )
    get_notification_dispatcher().dispatch(plan.notifications)
    return request


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def create_request(session: AsyncSession, auth: AuthContext, payload: TripDetails) -> TravelRequestResponse:
    """Raise a new request for the caller; it starts Pending with the caller's manager."""
    settings = get_settings()
    resolver = RoleResolver()
    originator = await resolver.get_person(auth.identity)
    if originator is None:
        raise ValidationFailedError(f"{auth.identity} is not in the employee directory")
    system = Actor(identity=settings.system_identity, display_name=settings.system_display_name)
    trip_details = payload.model_dump(mode="json")

    async def _insert() -> tuple[TravelRequest, list[NotificationIntent]]:
        now = now_utc()
        request = TravelRequest(
            human_id=await repository.next_human_id(session, now),
            status=INITIAL_STATUS[WorkflowAction.SUBMIT],
            originator_identity=originator.identity,
            originator_display_name=originator.display_name,
            created_by_identity=originator.identity,
            trip_details=trip_details,
            submitted_at=now,
        )
        audit, notifications = plan_submission(request, system)
        await repository.insert_request(session, request, audit)
        return request, notifications

    request, notifications = await repository.run_with_write_retry(
        session, _insert, settings.write_retry_attempts, "create request"
    )
    logger.info("Request %s submitted by %s", request.human_id, originator.identity)
    get_notification_dispatcher().dispatch(notifications)
    return _build_request_response(request)


async def create_on_behalf(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateOnBehalfPayload,
) -> TravelRequestResponse:
    """POC raises a request for an employee; the manager stage is bypassed."""
    settings = get_settings()
    resolver = RoleResolver()
    if not await resolver.has_capability(auth.identity, Capability.POC):
        raise ForbiddenError("Only a POC may create requests on behalf of an employee")
    target = await resolver.get_person(payload.on_behalf_of)
    if target is None:
        raise NotFoundError(f"Employee {payload.on_behalf_of} not found in directory")
    poc = await _actor(resolver, auth)
    trip_details = payload.trip().model_dump(mode="json")

    async def _insert() -> tuple[TravelRequest, list[NotificationIntent]]:
        now = now_utc()
        request = TravelRequest(
            human_id=await repository.next_human_id(session, now),
            status=INITIAL_STATUS[WorkflowAction.CREATE_ON_BEHALF],
            originator_identity=target.identity,
            originator_display_name=target.display_name,
            created_by_identity=poc.identity,
            trip_details=trip_details,
            submitted_at=now,
        )
        audit, notifications = plan_on_behalf_creation(request, poc, settings.notify_manager_on_behalf)
        await repository.insert_request(session, request, audit)
        return request, notifications

    request, notifications = await repository.run_with_write_retry(
        session, _insert, settings.write_retry_attempts, "create request"
    )
    logger.info(
        "Request %s created by POC %s on behalf of %s (manager stage bypassed)",
        request.human_id,
        poc.identity,
        target.identity,
    )
    get_notification_dispatcher().dispatch(notifications)
    return _build_request_response(request)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def manager_approve(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: DecisionPayload | None = None,
) -> StatusResponse:
    comment = payload.comment if payload else None
    request = await _transition(
        session,
        auth,
        request_id,
        WorkflowAction.MANAGER_APPROVE,
        lambda r, actor, now: plan_manager_approve(r, actor, now, comment),
    )
    return _build_status_response(request)


async def manager_reject(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: DecisionPayload | None = None,
) -> StatusResponse:
    comment = payload.comment if payload else None
    request = await _transition(
        session,
        auth,
        request_id,
        WorkflowAction.MANAGER_REJECT,
        lambda r, actor, now: plan_manager_reject(r, actor, now, comment),
    )
    return _build_status_response(request)


async def poc_edit(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    patch: TripDetailsPatch,
) -> TravelRequestResponse:
    """Edit trip details while the request waits for POC review."""
    request = await _transition(
        session,
        auth,
        request_id,
        WorkflowAction.POC_EDIT,
        lambda r, actor, now: plan_poc_edit(r, actor, now, patch),
    )
    return _build_request_response(request)


async def poc_approve(session: AsyncSession, auth: AuthContext, request_id: uuid.UUID) -> StatusResponse:
    request = await _transition(session, auth, request_id, WorkflowAction.POC_APPROVE, plan_poc_approve)
    return _build_status_response(request)


async def poc_reject(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: RejectPayload | None = None,
) -> StatusResponse:
    reason = payload.reason if payload else None
    request = await _transition(
        session,
        auth,
        request_id,
        WorkflowAction.POC_REJECT,
        lambda r, actor, now: plan_poc_reject(r, actor, now, reason),
    )
    return _build_status_response(request)


async def vendor_respond(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: VendorResponsePayload,
) -> list[VendorMessageResponse]:
    """Record a vendor response; returns every vendor message on the request."""
    await _transition(
        session,
        auth,
        request_id,
        WorkflowAction.VENDOR_RESPOND,
        lambda r, actor, now: plan_vendor_respond(r, actor, now, payload.message, payload.attachments),
    )
    messages = await repository.list_vendor_messages(session, request_id)
    return [_build_vendor_message_response(m) for m in messages]


# ---------------------------------------------------------------------------
# Vendor chat
# ---------------------------------------------------------------------------


async def _chat_counterpart(
    session: AsyncSession,
    request: TravelRequest,
    vendor_messages: list[VendorMessage],
) -> str | None:
    """The vendor the originator is talking to: last responder, else last vendor in the chat."""
    if vendor_messages:
        return vendor_messages[-1].sent_by_identity
    chat = await repository.list_chat_messages(session, request.id)
    for message in reversed(chat):
        if message.sender_identity != request.originator_identity:
            return message.sender_identity
    return None


async def send_chat_message(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: ChatPayload,
) -> list[ChatMessageResponse]:
    """Append a chat turn between the originator and a vendor.

    Chat is not a status transition: it writes no audit entry and does not
    bump the request version. Concurrent turns are kept in commit order.
    """
    settings = get_settings()
    resolver = RoleResolver()
    request = await repository.get_request_or_404(session, request_id)
    vendor_messages = await repository.list_vendor_messages(session, request_id)
    requirement = chat_rule(request, bool(vendor_messages))
    await ensure_allowed(requirement, resolver, auth.identity, request, "message on")

    sender = await _actor(resolver, auth)
    counterpart = await _chat_counterpart(session, request, vendor_messages)
    turn = plan_chat_turn(request, sender, now_utc(), payload.message, counterpart)
    human_id = request.human_id

    async def _append() -> None:
        await repository.append_chat_turn(session, request_id, turn)

    await repository.run_with_write_retry(session, _append, settings.write_retry_attempts, "send chat message")
    logger.info("Chat message on %s from %s", human_id, sender.identity)
    get_notification_dispatcher().dispatch(turn.notifications)
    return await get_chat_messages(session, auth, request_id)


# ---------------------------------------------------------------------------
# File attachments
# ---------------------------------------------------------------------------


def _build_file_attachment_response(row: RequestFileAttachment) -> AttachmentResponse:
    return AttachmentResponse(
        file_name=row.file_name,
        file_url=row.file_url,
        uploaded_by_identity=row.uploaded_by_identity,
        uploaded_by_display_name=row.uploaded_by_display_name,
        uploaded_at=row.uploaded_at,
    )


async def add_file_attachment(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: AttachmentRef,
) -> list[AttachmentResponse]:
    """Record a reference to a supporting document on a request.

    Only the reference is kept; the file stays in external storage. This is not
    a transition, so it is allowed in any status and leaves the version alone.
    """
    settings = get_settings()
    resolver = RoleResolver()
    request = await repository.get_request_or_404(session, request_id)
    await _ensure_can_view(resolver, auth, request)
    uploader = await _actor(resolver, auth)
    human_id = request.human_id
    attachment = {
        "file_name": payload.file_name.strip(),
        "file_url": payload.file_url.strip(),
        "uploaded_by_identity": uploader.identity,
        "uploaded_by_display_name": uploader.display_name,
        "uploaded_at": now_utc(),
    }

    async def _append() -> None:
        await repository.append_file_attachment(session, request_id, attachment)

    await repository.run_with_write_retry(session, _append, settings.write_retry_attempts, "attach file")
    logger.info("File %s attached to %s by %s", attachment["file_name"], human_id, uploader.identity)
    return await get_file_attachments(session, auth, request_id)


async def get_file_attachments(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
) -> list[AttachmentResponse]:
    request = await repository.get_request_or_404(session, request_id)
    await _ensure_can_view(RoleResolver(), auth, request)
    return [_build_file_attachment_response(a) for a in await repository.list_file_attachments(session, request_id)]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_request(session: AsyncSession, auth: AuthContext, request_id: uuid.UUID) -> TravelRequestResponse:
    request = await repository.get_request_or_404(session, request_id)
    await _ensure_can_view(RoleResolver(), auth, request)
    return _build_request_response(request)


async def get_audit_trail(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
) -> list[AuditEntryResponse]:
    """Full audit trail in insertion order."""
    request = await repository.get_request_or_404(session, request_id)
    await _ensure_can_view(RoleResolver(), auth, request)
    return await audit_service.get_audit_trail(session, request_id)


async def get_vendor_messages(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
) -> list[VendorMessageResponse]:
    request = await repository.get_request_or_404(session, request_id)
    await _ensure_can_view(RoleResolver(), auth, request)
    return [_build_vendor_message_response(m) for m in await repository.list_vendor_messages(session, request_id)]


async def get_chat_messages(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
) -> list[ChatMessageResponse]:
    """Chat history; only the originator and vendors may read it."""
    request = await repository.get_request_or_404(session, request_id)
    await ensure_allowed(CHAT_PARTICIPANT, RoleResolver(), auth.identity, request, "read messages on")
    return [_build_chat_message_response(m) for m in await repository.list_chat_messages(session, request_id)]


async def list_my_requests(
    session: AsyncSession,
    auth: AuthContext,
    offset: int = 0,
    limit: int = 50,
) -> RequestListResponse:
    items, total = await repository.list_requests(
        session, originators=[auth.identity], offset=offset, limit=limit
    )
    return _list_response(items, total)


async def list_manager_approvals(
    session: AsyncSession,
    auth: AuthContext,
    status_filter: RequestStatus | None = None,
    offset: int = 0,
    limit: int = 50,
) -> ApprovalListResponse:
    """Requests raised by the caller's direct reports, with per-tab counters."""
    if status_filter is not None and status_filter not in _MANAGER_TABS:
        raise ValidationFailedError(f"Unsupported status filter {status_filter.value}")
    reports = await RoleResolver().reports_of(auth.identity)
    items, total = await repository.list_requests(
        session,
        originators=reports,
        statuses=_MANAGER_TABS[status_filter] if status_filter is not None else None,
        offset=offset,
        limit=limit,
    )
    by_status = await repository.count_by_status(session, reports)
    counts = ApprovalCounts(
        pending=by_status.get(RequestStatus.PENDING.value, 0),
        approved=sum(by_status.get(s.value, 0) for s in _MANAGER_TABS[RequestStatus.MANAGER_APPROVED]),
        rejected=by_status.get(RequestStatus.REJECTED.value, 0),
    )
    return ApprovalListResponse(
        items=[_build_request_response(r) for r in items],
        total=total,
        counts=counts,
    )


async def list_poc_queue(
    session: AsyncSession,
    auth: AuthContext,
    offset: int = 0,
    limit: int = 50,
) -> RequestListResponse:
    """Requests waiting for POC review."""
    await _ensure_any_capability(RoleResolver(), auth, Capability.POC)
    items, total = await repository.list_requests(
        session, statuses=[RequestStatus.MANAGER_APPROVED], offset=offset, limit=limit
    )
    return _list_response(items, total)


async def list_all_requests(
    session: AsyncSession,
    auth: AuthContext,
    status_filter: RequestStatus | None = None,
    offset: int = 0,
    limit: int = 50,
) -> RequestListResponse:
    await _ensure_any_capability(RoleResolver(), auth, Capability.POC, Capability.ADMIN)
    items, total = await repository.list_requests(
        session,
        statuses=[status_filter] if status_filter is not None else None,
        offset=offset,
        limit=limit,
    )
    return _list_response(items, total)


async def list_vendor_queue(
    session: AsyncSession,
    auth: AuthContext,
    offset: int = 0,
    limit: int = 50,
) -> RequestListResponse:
    """Fully approved requests, most recently approved first."""
    await _ensure_any_capability(RoleResolver(), auth, Capability.VENDOR)
    items, total = await repository.list_requests(
        session,
        statuses=[RequestStatus.APPROVED],
        order_by="poc_approved_at",
        offset=offset,
        limit=limit,
    )
    return _list_response(items, total)
