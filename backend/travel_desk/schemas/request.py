# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from travel_desk.models.enums import RequestStatus, TravelMode, TripNature

# ---------------------------------------------------------------------------
# Trip details
# ---------------------------------------------------------------------------


class ItineraryLeg(BaseModel):
    """One hop of a multi-city trip."""

    model_config = ConfigDict(str_strip_whitespace=True)

    origin: str = Field(min_length=1, max_length=120)
    destination: str = Field(min_length=1, max_length=120)
    travel_date: date
    time_slot: str | None = Field(default=None, max_length=50)


class TripDetails(BaseModel):
    """The editable part of a travel request."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    trip_nature: TripNature = TripNature.ONE_WAY
    mode: TravelMode = TravelMode.FLIGHT
    passenger_name: str | None = Field(default=None, max_length=255)
    passenger_phone: str | None = Field(default=None, max_length=50)
    dietary_preference: str | None = Field(default=None, max_length=100)
    origin: str | None = Field(default=None, max_length=120)
    destination: str | None = Field(default=None, max_length=120)
    travel_date: date | None = None
    return_date: date | None = None
    departure_time_slot: str | None = Field(default=None, max_length=50)
    itinerary_legs: list[ItineraryLeg] = Field(default_factory=list)
    travel_class: str | None = Field(default=None, max_length=50)
    purpose: str | None = Field(default=None, max_length=2000)
    accommodation_required: bool = False
    hotel_preference: str | None = Field(default=None, max_length=255)
    check_in_date: date | None = None
    check_out_date: date | None = None
    special_instructions: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _resolve_itinerary(self) -> Self:
        if self.trip_nature == TripNature.MULTICITY:
            if len(self.itinerary_legs) < 2:
                msg = "Multi-city trips require at least two legs"
                raise ValueError(msg)
            first = self.itinerary_legs[0]
            self.origin = first.origin
            self.destination = first.destination
            self.travel_date = first.travel_date
            self.return_date = None
            self.departure_time_slot = None
        else:
            self.itinerary_legs = []
            if not self.origin or not self.destination or self.travel_date is None:
                msg = "origin, destination and travel_date are required"
                raise ValueError(msg)

        if self.return_date is not None and self.travel_date is not None and self.return_date < self.travel_date:
            msg = "return_date must not be before travel_date"
            raise ValueError(msg)
        if self.check_in_date and self.check_out_date and self.check_out_date < self.check_in_date:
            msg = "check_out_date must not be before check_in_date"
            raise ValueError(msg)
        return self


class TripDetailsPatch(BaseModel):
    """Partial update applied by a POC during the edit window."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    trip_nature: TripNature | None = None
    mode: TravelMode | None = None
    passenger_name: str | None = Field(default=None, max_length=255)
    passenger_phone: str | None = Field(default=None, max_length=50)
    dietary_preference: str | None = Field(default=None, max_length=100)
    origin: str | None = Field(default=None, max_length=120)
    destination: str | None = Field(default=None, max_length=120)
    travel_date: date | None = None
    return_date: date | None = None
    departure_time_slot: str | None = Field(default=None, max_length=50)
    itinerary_legs: list[ItineraryLeg] | None = None
    travel_class: str | None = Field(default=None, max_length=50)
    purpose: str | None = Field(default=None, max_length=2000)
    accommodation_required: bool | None = None
    hotel_preference: str | None = Field(default=None, max_length=255)
    check_in_date: date | None = None
    check_out_date: date | None = None
    special_instructions: str | None = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class CreateOnBehalfPayload(TripDetails):
    """Trip details plus the employee a POC is raising the request for."""

    on_behalf_of: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")

    def trip(self) -> TripDetails:
        return TripDetails.model_validate(self.model_dump(exclude={"on_behalf_of"}))


class DecisionPayload(BaseModel):
    """Request body for manager approve/reject actions."""

    comment: str | None = Field(default=None, max_length=1000)


class RejectPayload(BaseModel):
    """Request body for POC rejection."""

    reason: str | None = Field(default=None, max_length=1000)


class AttachmentRef(BaseModel):
    """Reference to a file already placed in external storage."""

    file_name: str = Field(min_length=1, max_length=255)
    file_url: str = Field(min_length=1, max_length=2048)


class VendorResponsePayload(BaseModel):
    """Vendor response with optional ticket attachments."""

    message: str = Field(default="", max_length=5000)
    attachments: list[AttachmentRef] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_content(self) -> Self:
        if not self.message.strip() and not self.attachments:
            msg = "A vendor response needs a message or at least one attachment"
            raise ValueError(msg)
        return self


class ChatPayload(BaseModel):
    """A single chat turn."""

    model_config = ConfigDict(str_strip_whitespace=True)

    message: str = Field(min_length=1, max_length=5000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class TravelRequestResponse(BaseModel):
    """Response schema for a single travel request."""

    id: uuid.UUID
    human_id: str
    status: RequestStatus
    originator_identity: str
    originator_display_name: str
    created_by_identity: str
    trip_details: TripDetails
    submitted_at: datetime | None
    manager_approved_at: datetime | None
    manager_approved_by: str | None
    manager_rejected_at: datetime | None
    manager_rejected_by: str | None
    poc_edited_at: datetime | None
    poc_approved_at: datetime | None
    poc_approved_by: str | None
    poc_rejected_at: datetime | None
    poc_rejected_by: str | None
    version: int
    created_at: datetime
    updated_at: datetime


class StatusResponse(BaseModel):
    """Outcome of a status-changing action."""

    id: uuid.UUID
    human_id: str
    status: RequestStatus


class RequestListResponse(BaseModel):
    """Paginated list of travel requests."""

    items: list[TravelRequestResponse]
    total: int


class ApprovalCounts(BaseModel):
    """Dashboard counters for a manager's reports."""

    pending: int
    approved: int
    rejected: int


class ApprovalListResponse(RequestListResponse):
    """Requests raised by a manager's reports, with status counters."""

    counts: ApprovalCounts


class AuditEntryResponse(BaseModel):
    """One audit trail entry."""

    sequence: int
    action: str
    sender_identity: str
    sender_display_name: str
    message: str
    details_json: dict[str, Any] | None
    created_at: datetime


class AttachmentResponse(BaseModel):
    """An attachment reference as stored on a vendor message."""

    file_name: str
    file_url: str
    uploaded_by_identity: str
    uploaded_by_display_name: str
    uploaded_at: datetime


class VendorMessageResponse(BaseModel):
    """A vendor response on a request."""

    sequence: int
    message: str
    attachments: list[AttachmentResponse]
    sent_by_identity: str
    sent_by_display_name: str
    sent_at: datetime


class ChatMessageResponse(BaseModel):
    """A vendor/originator chat turn."""

    sequence: int
    sender_identity: str
    sender_display_name: str
    message: str
    sent_at: datetime
