from __future__ import annotations

import enum


class RequestStatus(enum.StrEnum):
    """State machine for travel requests."""

    PENDING = "Pending"
    MANAGER_APPROVED = "ManagerApproved"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    POC_REJECTED = "POCRejected"


TERMINAL_STATUSES = frozenset({RequestStatus.REJECTED, RequestStatus.POC_REJECTED})


class WorkflowAction(enum.StrEnum):
    """Actor intent recorded against a request."""

    SUBMIT = "SUBMIT"
    CREATE_ON_BEHALF = "CREATE_ON_BEHALF"
    MANAGER_APPROVE = "MANAGER_APPROVE"
    MANAGER_REJECT = "MANAGER_REJECT"
    POC_EDIT = "POC_EDIT"
    POC_APPROVE = "POC_APPROVE"
    POC_REJECT = "POC_REJECT"
    VENDOR_RESPOND = "VENDOR_RESPOND"


class Capability(enum.StrEnum):
    """Directory-granted capabilities."""

    POC = "POC"
    VENDOR = "VENDOR"
    ADMIN = "ADMIN"


class NotificationCategory(enum.StrEnum):
    """Category of an inbox notification."""

    APPROVAL = "approval"
    REJECTION = "rejection"
    VENDOR_RESPONSE = "vendor_response"
    REQUEST_CREATED = "request_created"
    MANAGER_APPROVED = "manager_approved"
    POC_APPROVED = "poc_approved"
    COMMENT = "comment"


class TripNature(enum.StrEnum):
    """Shape of the itinerary."""

    ONE_WAY = "One Way"
    ROUND_TRIP = "Round Trip"
    MULTICITY = "Multicity"


class TravelMode(enum.StrEnum):
    """Means of transport."""

    FLIGHT = "Flight"
    TRAIN = "Train"
    CAR = "Car"
    BUS = "Bus"
