"""Approval state machine.

``TRANSITIONS`` is the single source of truth for which actor may move a
request from which status. The ``plan_*`` functions are pure: given the current
request snapshot, the actor and the intent they return a ``TransitionPlan``
(status and field changes, exactly one audit entry, notification intents) and
never touch the database or the notification queue.
"""

# ruff: noqa: TC001, TC003
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from travel_desk.exceptions import ConflictError, ValidationFailedError
from travel_desk.models.enums import (
    Capability,
    NotificationCategory,
    RequestStatus,
    TripNature,
    WorkflowAction,
)
from travel_desk.models.request import TravelRequest
from travel_desk.schemas.request import AttachmentRef, TripDetails, TripDetailsPatch
from travel_desk.services.roles import (
    CHAT_PARTICIPANT,
    MANAGER_OF_ORIGINATOR,
    POC,
    VENDOR,
    Requirement,
)

# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionRule:
    requirement: Requirement
    next_status: RequestStatus
    verb: str


TRANSITIONS: dict[tuple[RequestStatus, WorkflowAction], TransitionRule] = {
    (RequestStatus.PENDING, WorkflowAction.MANAGER_APPROVE): TransitionRule(
        MANAGER_OF_ORIGINATOR, RequestStatus.MANAGER_APPROVED, "approve"
    ),
    (RequestStatus.PENDING, WorkflowAction.MANAGER_REJECT): TransitionRule(
        MANAGER_OF_ORIGINATOR, RequestStatus.REJECTED, "reject"
    ),
    (RequestStatus.MANAGER_APPROVED, WorkflowAction.POC_EDIT): TransitionRule(
        POC, RequestStatus.MANAGER_APPROVED, "edit"
    ),
    (RequestStatus.MANAGER_APPROVED, WorkflowAction.POC_APPROVE): TransitionRule(
        POC, RequestStatus.APPROVED, "approve"
    ),
    (RequestStatus.MANAGER_APPROVED, WorkflowAction.POC_REJECT): TransitionRule(
        POC, RequestStatus.POC_REJECTED, "reject"
    ),
    (RequestStatus.APPROVED, WorkflowAction.VENDOR_RESPOND): TransitionRule(
        VENDOR, RequestStatus.APPROVED, "respond to"
    ),
}

# Creation paths are not edges of the graph; they fix the initial status.
INITIAL_STATUS: dict[WorkflowAction, RequestStatus] = {
    WorkflowAction.SUBMIT: RequestStatus.PENDING,
    WorkflowAction.CREATE_ON_BEHALF: RequestStatus.MANAGER_APPROVED,
}


def rule_for(request: TravelRequest, action: WorkflowAction) -> TransitionRule:
    """Return the rule for ``action`` from the request's current status, or raise 409."""
    status = RequestStatus(request.status)
    rule = TRANSITIONS.get((status, action))
    if rule is None:
        expected = sorted(s.value for (s, a) in TRANSITIONS if a == action)
        raise ConflictError(
            f"Request {request.human_id} is {status.value}; "
            f"{action.value.lower().replace('_', ' ')} requires status {' or '.join(expected)}"
        )
    return rule


def chat_rule(request: TravelRequest, has_vendor_thread: bool) -> Requirement:
    """Chat is open once the request is Approved, or once a vendor has posted on it."""
    if request.status != RequestStatus.APPROVED and not has_vendor_thread:
        raise ConflictError(
            f"Request {request.human_id} is {request.status}; vendor chat opens once the request is Approved"
        )
    return CHAT_PARTICIPANT


# ---------------------------------------------------------------------------
# Plan types
# ---------------------------------------------------------------------------


class AudienceKind(enum.StrEnum):
    IDENTITY = "IDENTITY"
    CAPABILITY = "CAPABILITY"
    MANAGER_OF = "MANAGER_OF"


@dataclass(frozen=True)
class Audience:
    """Who a notification is for; pools are expanded at delivery time."""

    kind: AudienceKind
    value: str

    @classmethod
    def identity(cls, identity: str) -> Audience:
        return cls(AudienceKind.IDENTITY, identity)

    @classmethod
    def pool(cls, capability: Capability) -> Audience:
        return cls(AudienceKind.CAPABILITY, capability.value)

    @classmethod
    def manager_of(cls, employee_identity: str) -> Audience:
        return cls(AudienceKind.MANAGER_OF, employee_identity)


@dataclass(frozen=True)
class NotificationIntent:
    audience: Audience
    category: NotificationCategory
    title: str
    body: str
    related_request_id: uuid.UUID | None = None
    related_human_id: str | None = None


@dataclass(frozen=True)
class Actor:
    identity: str
    display_name: str


@dataclass(frozen=True)
class AuditDraft:
    action: WorkflowAction
    sender: Actor
    message: str
    details: dict[str, Any] | None = None


@dataclass
class TransitionPlan:
    action: WorkflowAction
    next_status: RequestStatus
    audit: AuditDraft
    changes: dict[str, Any] = field(default_factory=dict)
    notifications: list[NotificationIntent] = field(default_factory=list)
    vendor_message: dict[str, Any] | None = None


@dataclass
class ChatTurn:
    sender: Actor
    message: str
    sent_at: datetime
    notifications: list[NotificationIntent] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stamp(request: TravelRequest, name: str, value: Any) -> dict[str, Any]:
    """Stage stamps are written exactly once."""
    if getattr(request, name) is not None:
        raise ConflictError(f"Request {request.human_id} already has {name} recorded")
    return {name: value}


def _with_comment(message: str, comment: str | None) -> str:
    if comment and comment.strip():
        return f'{message} Comment: "{comment.strip()}"'
    return message


def _notify(
    request: TravelRequest,
    audience: Audience,
    category: NotificationCategory,
    title: str,
    body: str,
) -> NotificationIntent:
    return NotificationIntent(
        audience=audience,
        category=category,
        title=title,
        body=body,
        related_request_id=request.id,
        related_human_id=request.human_id,
    )


def validate_trip(data: dict[str, Any]) -> TripDetails:
    try:
        return TripDetails.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailedError(_first_error(exc)) from None


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "__root__")
    return f"{location}: {first['msg']}" if location else first["msg"]


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def plan_submission(request: TravelRequest, system: Actor) -> tuple[AuditDraft, list[NotificationIntent]]:
    """First audit entry and notifications for a self-service request."""
    trip = request.trip_details
    destination = trip.get("destination") or "multiple destinations"
    if trip.get("trip_nature") == TripNature.MULTICITY:
        destination = "multiple destinations"
    audit = AuditDraft(
        action=WorkflowAction.SUBMIT,
        sender=system,
        message="Your travel request has been submitted and is pending approval.",
        details={"status": RequestStatus.PENDING.value, "submitted_by": request.created_by_identity},
    )
    notifications = [
        _notify(
            request,
            Audience.manager_of(request.originator_identity),
            NotificationCategory.REQUEST_CREATED,
            "New Travel Request",
            f"{request.originator_display_name} submitted a {trip.get('trip_nature', 'travel')} "
            f"travel request to {destination}",
        )
    ]
    return audit, notifications


def plan_on_behalf_creation(
    request: TravelRequest,
    poc: Actor,
    notify_bypassed_manager: bool,
) -> tuple[AuditDraft, list[NotificationIntent]]:
    """First audit entry for a POC-raised request that skips the manager stage."""
    audit = AuditDraft(
        action=WorkflowAction.CREATE_ON_BEHALF,
        sender=poc,
        message=(
            f"Request created by POC ({poc.display_name}) on behalf of {request.originator_display_name}. "
            "Manager approval was bypassed; the request starts at POC review."
        ),
        details={
            "status": RequestStatus.MANAGER_APPROVED.value,
            "bypassed_stage": RequestStatus.PENDING.value,
            "created_by": poc.identity,
        },
    )
    notifications: list[NotificationIntent] = []
    if notify_bypassed_manager:
        notifications.append(
            _notify(
                request,
                Audience.manager_of(request.originator_identity),
                NotificationCategory.REQUEST_CREATED,
                "Travel Request Raised On Behalf",
                f"POC {poc.display_name} raised travel request {request.human_id} for "
                f"{request.originator_display_name}; manager approval was not required",
            )
        )
    return audit, notifications


# ---------------------------------------------------------------------------
# Manager stage
# ---------------------------------------------------------------------------


def plan_manager_approve(
    request: TravelRequest, manager: Actor, now: datetime, comment: str | None = None
) -> TransitionPlan:
    rule = rule_for(request, WorkflowAction.MANAGER_APPROVE)
    changes = {
        **_stamp(request, "manager_approved_at", now),
        **_stamp(request, "manager_approved_by", manager.identity),
    }
    return TransitionPlan(
        action=WorkflowAction.MANAGER_APPROVE,
        next_status=rule.next_status,
        changes=changes,
        audit=AuditDraft(
            action=WorkflowAction.MANAGER_APPROVE,
            sender=manager,
            message=_with_comment(
                f"Request was approved by manager ({manager.display_name}). Awaiting POC final approval.", comment
            ),
        ),
        notifications=[
            _notify(
                request,
                Audience.identity(request.originator_identity),
                NotificationCategory.MANAGER_APPROVED,
                "Manager Approved",
                f"Your travel request {request.human_id} was approved by your manager and is now with POC",
            ),
            _notify(
                request,
                Audience.pool(Capability.POC),
                NotificationCategory.MANAGER_APPROVED,
                "Request Needs POC Review",
                f"Travel request {request.human_id} from {request.originator_display_name} needs your approval",
            ),
        ],
    )


def plan_manager_reject(
    request: TravelRequest, manager: Actor, now: datetime, comment: str | None = None
) -> TransitionPlan:
    rule = rule_for(request, WorkflowAction.MANAGER_REJECT)
    suffix = f": {comment.strip()}" if comment and comment.strip() else ""
    return TransitionPlan(
        action=WorkflowAction.MANAGER_REJECT,
        next_status=rule.next_status,
        changes={
            **_stamp(request, "manager_rejected_at", now),
            **_stamp(request, "manager_rejected_by", manager.identity),
        },
        audit=AuditDraft(
            action=WorkflowAction.MANAGER_REJECT,
            sender=manager,
            message=_with_comment(f"Request was rejected by manager ({manager.display_name}).", comment),
        ),
        notifications=[
            _notify(
                request,
                Audience.identity(request.originator_identity),
                NotificationCategory.REJECTION,
                "Request Rejected",
                f"Your travel request {request.human_id} was rejected{suffix}",
            )
        ],
    )


# ---------------------------------------------------------------------------
# POC stage
# ---------------------------------------------------------------------------


def plan_poc_edit(request: TravelRequest, poc: Actor, now: datetime, patch: TripDetailsPatch) -> TransitionPlan:
    rule = rule_for(request, WorkflowAction.POC_EDIT)

    supplied = patch.model_dump(exclude_unset=True, mode="json")
    if not supplied:
        raise ValidationFailedError("No editable trip fields supplied")

    before = validate_trip(request.trip_details).model_dump(mode="json")
    after = validate_trip({**before, **supplied}).model_dump(mode="json")
    diff = {
        key: {"before": before.get(key), "after": value} for key, value in after.items() if before.get(key) != value
    }
    if not diff:
        raise ValidationFailedError("Edit does not change any trip details")

    changes: dict[str, Any] = {"trip_details": after}
    if request.poc_edited_at is None:
        changes["poc_edited_at"] = now

    return TransitionPlan(
        action=WorkflowAction.POC_EDIT,
        next_status=rule.next_status,
        changes=changes,
        audit=AuditDraft(
            action=WorkflowAction.POC_EDIT,
            sender=poc,
            message=f"Request details were edited by POC ({poc.display_name}): {', '.join(sorted(diff))}.",
            details={"changes": diff},
        ),
    )


def plan_poc_approve(request: TravelRequest, poc: Actor, now: datetime) -> TransitionPlan:
    rule = rule_for(request, WorkflowAction.POC_APPROVE)
    return TransitionPlan(
        action=WorkflowAction.POC_APPROVE,
        next_status=rule.next_status,
        changes={
            **_stamp(request, "poc_approved_at", now),
            **_stamp(request, "poc_approved_by", poc.identity),
        },
        audit=AuditDraft(
            action=WorkflowAction.POC_APPROVE,
            sender=poc,
            message=f"Request received final approval from POC ({poc.display_name}). Ready for vendor to process.",
        ),
        notifications=[
            _notify(
                request,
                Audience.identity(request.originator_identity),
                NotificationCategory.POC_APPROVED,
                "Request Fully Approved",
                f"Your travel request {request.human_id} has been approved by POC and sent to vendor",
            ),
            _notify(
                request,
                Audience.pool(Capability.VENDOR),
                NotificationCategory.APPROVAL,
                "New Request Ready For Booking",
                f"Travel request {request.human_id} for {request.originator_display_name} is ready for booking",
            ),
        ],
    )


def plan_poc_reject(request: TravelRequest, poc: Actor, now: datetime, reason: str | None = None) -> TransitionPlan:
    rule = rule_for(request, WorkflowAction.POC_REJECT)
    reason_text = reason.strip() if reason and reason.strip() else "No reason provided"
    return TransitionPlan(
        action=WorkflowAction.POC_REJECT,
        next_status=rule.next_status,
        changes={
            **_stamp(request, "poc_rejected_at", now),
            **_stamp(request, "poc_rejected_by", poc.identity),
        },
        audit=AuditDraft(
            action=WorkflowAction.POC_REJECT,
            sender=poc,
            message=f"Request was rejected by POC ({poc.display_name}). Reason: {reason_text}",
            details={"reason": reason_text},
        ),
        notifications=[
            _notify(
                request,
                Audience.identity(request.originator_identity),
                NotificationCategory.REJECTION,
                "Request Rejected",
                f"Your travel request {request.human_id} was rejected by POC: {reason_text}",
            )
        ],
    )


# ---------------------------------------------------------------------------
# Vendor stage
# ---------------------------------------------------------------------------


def plan_vendor_respond(
    request: TravelRequest,
    vendor: Actor,
    now: datetime,
    message: str,
    attachments: list[AttachmentRef],
) -> TransitionPlan:
    rule = rule_for(request, WorkflowAction.VENDOR_RESPOND)
    stored_attachments = [
        {
            "file_name": a.file_name,
            "file_url": a.file_url,
            "uploaded_by_identity": vendor.identity,
            "uploaded_by_display_name": vendor.display_name,
            "uploaded_at": now.isoformat(),
        }
        for a in attachments
    ]
    count = len(stored_attachments)
    what = f"{count} ticket option(s)" if count else "a response"
    return TransitionPlan(
        action=WorkflowAction.VENDOR_RESPOND,
        next_status=rule.next_status,
        audit=AuditDraft(
            action=WorkflowAction.VENDOR_RESPOND,
            sender=vendor,
            message=f"Vendor ({vendor.display_name}) has sent a response with {count} attachment(s).",
            details={"attachments": count},
        ),
        vendor_message={
            "message": message.strip(),
            "attachments": stored_attachments,
            "sent_by_identity": vendor.identity,
            "sent_by_display_name": vendor.display_name,
            "sent_at": now,
        },
        notifications=[
            _notify(
                request,
                Audience.identity(request.originator_identity),
                NotificationCategory.VENDOR_RESPONSE,
                "Vendor Response Received",
                f"Vendor sent {what} for request {request.human_id}",
            ),
            _notify(
                request,
                Audience.manager_of(request.originator_identity),
                NotificationCategory.VENDOR_RESPONSE,
                "Vendor Response Available",
                f"Vendor sent a response for {request.originator_display_name}'s travel request {request.human_id}",
            ),
        ],
    )


def plan_chat_turn(
    request: TravelRequest,
    sender: Actor,
    now: datetime,
    message: str,
    counterpart: str | None,
) -> ChatTurn:
    """A chat turn notifies only the other participant, when one is known."""
    turn = ChatTurn(sender=sender, message=message.strip(), sent_at=now)
    if sender.identity == request.originator_identity:
        if counterpart is not None:
            turn.notifications.append(
                _notify(
                    request,
                    Audience.identity(counterpart),
                    NotificationCategory.COMMENT,
                    "New message from requester",
                    f"{request.originator_display_name} sent a message in request {request.human_id}",
                )
            )
    else:
        turn.notifications.append(
            _notify(
                request,
                Audience.identity(request.originator_identity),
                NotificationCategory.COMMENT,
                "New message from vendor",
                f"Vendor replied in request {request.human_id}",
            )
        )
    return turn
