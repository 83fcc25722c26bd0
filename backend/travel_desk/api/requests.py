# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Query, status

from travel_desk.api.deps import AuthDep
from travel_desk.db import SessionDep
from travel_desk.models.enums import RequestStatus
from travel_desk.schemas.request import (
    ApprovalListResponse,
    AttachmentRef,
    AttachmentResponse,
    AuditEntryResponse,
    ChatMessageResponse,
    ChatPayload,
    CreateOnBehalfPayload,
    DecisionPayload,
    RejectPayload,
    RequestListResponse,
    StatusResponse,
    TravelRequestResponse,
    TripDetails,
    TripDetailsPatch,
    VendorMessageResponse,
    VendorResponsePayload,
)
from travel_desk.services import request as request_service

requests_router = APIRouter(prefix="/requests", tags=["requests"])


# ---------------------------------------------------------------------------
# Creation and listings
# ---------------------------------------------------------------------------


@requests_router.post("", response_model=TravelRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(payload: TripDetails, session: SessionDep, auth: AuthDep) -> TravelRequestResponse:
    """Raise a travel request for the caller."""
    return await request_service.create_request(session, auth, payload)


@requests_router.post("/on-behalf", response_model=TravelRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_on_behalf(
    payload: CreateOnBehalfPayload,
    session: SessionDep,
    auth: AuthDep,
) -> TravelRequestResponse:
    """Raise a travel request for an employee, skipping manager approval (POC only)."""
    return await request_service.create_on_behalf(session, auth, payload)


@requests_router.get("", response_model=RequestListResponse)
async def list_all_requests(
    session: SessionDep,
    auth: AuthDep,
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> RequestListResponse:
    """List every request (POC or admin only)."""
    return await request_service.list_all_requests(session, auth, status_filter, offset, limit)


@requests_router.get("/mine", response_model=RequestListResponse)
async def list_my_requests(
    session: SessionDep,
    auth: AuthDep,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> RequestListResponse:
    """List requests raised for the caller."""
    return await request_service.list_my_requests(session, auth, offset, limit)


@requests_router.get("/approvals", response_model=ApprovalListResponse)
async def list_manager_approvals(
    session: SessionDep,
    auth: AuthDep,
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> ApprovalListResponse:
    """List requests from the caller's direct reports."""
    return await request_service.list_manager_approvals(session, auth, status_filter, offset, limit)


@requests_router.get("/poc-queue", response_model=RequestListResponse)
async def list_poc_queue(
    session: SessionDep,
    auth: AuthDep,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> RequestListResponse:
    """List requests awaiting POC review."""
    return await request_service.list_poc_queue(session, auth, offset, limit)


@requests_router.get("/vendor-queue", response_model=RequestListResponse)
async def list_vendor_queue(
    session: SessionDep,
    auth: AuthDep,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> RequestListResponse:
    """List fully approved requests ready for booking."""
    return await request_service.list_vendor_queue(session, auth, offset, limit)


# ---------------------------------------------------------------------------
# Single request
# ---------------------------------------------------------------------------


@requests_router.get("/{request_id}", response_model=TravelRequestResponse)
async def get_request(request_id: uuid.UUID, session: SessionDep, auth: AuthDep) -> TravelRequestResponse:
    """Get a single travel request."""
    return await request_service.get_request(session, auth, request_id)


@requests_router.patch("/{request_id}", response_model=TravelRequestResponse)
async def poc_edit(
    request_id: uuid.UUID,
    patch: TripDetailsPatch,
    session: SessionDep,
    auth: AuthDep,
) -> TravelRequestResponse:
    """Edit trip details of a manager-approved request (POC only)."""
    return await request_service.poc_edit(session, auth, request_id, patch)


@requests_router.get("/{request_id}/audit", response_model=list[AuditEntryResponse])
async def get_audit_trail(request_id: uuid.UUID, session: SessionDep, auth: AuthDep) -> list[AuditEntryResponse]:
    """Return the request's audit trail, oldest first."""
    return await request_service.get_audit_trail(session, auth, request_id)


@requests_router.post("/{request_id}/manager-approve", response_model=StatusResponse)
async def manager_approve(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    payload: DecisionPayload | None = None,
) -> StatusResponse:
    """Approve a pending request (originator's manager only)."""
    return await request_service.manager_approve(session, auth, request_id, payload)


@requests_router.post("/{request_id}/manager-reject", response_model=StatusResponse)
async def manager_reject(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    payload: DecisionPayload | None = None,
) -> StatusResponse:
    """Reject a pending request (originator's manager only)."""
    return await request_service.manager_reject(session, auth, request_id, payload)


@requests_router.post("/{request_id}/poc-approve", response_model=StatusResponse)
async def poc_approve(request_id: uuid.UUID, session: SessionDep, auth: AuthDep) -> StatusResponse:
    """Give final approval and hand the request to vendors (POC only)."""
    return await request_service.poc_approve(session, auth, request_id)


@requests_router.post("/{request_id}/poc-reject", response_model=StatusResponse)
async def poc_reject(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    payload: RejectPayload | None = None,
) -> StatusResponse:
    """Reject a manager-approved request (POC only)."""
    return await request_service.poc_reject(session, auth, request_id, payload)


# ---------------------------------------------------------------------------
# Vendor
# ---------------------------------------------------------------------------


@requests_router.post("/{request_id}/vendor-response", response_model=list[VendorMessageResponse])
async def vendor_respond(
    request_id: uuid.UUID,
    payload: VendorResponsePayload,
    session: SessionDep,
    auth: AuthDep,
) -> list[VendorMessageResponse]:
    """Send ticket options or a message for an approved request (vendor only)."""
    return await request_service.vendor_respond(session, auth, request_id, payload)


@requests_router.get("/{request_id}/vendor-messages", response_model=list[VendorMessageResponse])
async def get_vendor_messages(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> list[VendorMessageResponse]:
    """List vendor responses on a request."""
    return await request_service.get_vendor_messages(session, auth, request_id)


@requests_router.get("/{request_id}/files", response_model=list[AttachmentResponse])
async def get_file_attachments(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> list[AttachmentResponse]:
    """List file references attached to a request."""
    return await request_service.get_file_attachments(session, auth, request_id)


@requests_router.post("/{request_id}/files", response_model=list[AttachmentResponse])
async def add_file_attachment(
    request_id: uuid.UUID,
    payload: AttachmentRef,
    session: SessionDep,
    auth: AuthDep,
) -> list[AttachmentResponse]:
    """Attach a reference to an externally stored file."""
    return await request_service.add_file_attachment(session, auth, request_id, payload)


@requests_router.get("/{request_id}/chat", response_model=list[ChatMessageResponse])
async def get_chat_messages(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> list[ChatMessageResponse]:
    """Read the vendor/originator conversation."""
    return await request_service.get_chat_messages(session, auth, request_id)


@requests_router.post("/{request_id}/chat", response_model=list[ChatMessageResponse])
async def send_chat_message(
    request_id: uuid.UUID,
    payload: ChatPayload,
    session: SessionDep,
    auth: AuthDep,
) -> list[ChatMessageResponse]:
    """Post a message to the vendor/originator conversation."""
    return await request_service.send_chat_message(session, auth, request_id, payload)
