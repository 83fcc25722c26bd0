from sqlmodel import SQLModel

from travel_desk.models.attachment import RequestFileAttachment
from travel_desk.models.audit import AuditEntry, AuditTrailImmutableError
from travel_desk.models.base import RequestChildMixin, TimestampMixin, UUIDBase
from travel_desk.models.enums import (
    TERMINAL_STATUSES,
    Capability,
    NotificationCategory,
    RequestStatus,
    TravelMode,
    TripNature,
    WorkflowAction,
)
from travel_desk.models.message import VendorChatMessage, VendorMessage
from travel_desk.models.notification import Notification
from travel_desk.models.request import TravelRequest
from travel_desk.models.sequence import RequestSequence

__all__ = [
    "TERMINAL_STATUSES",
    "AuditEntry",
    "AuditTrailImmutableError",
    "Capability",
    "Notification",
    "NotificationCategory",
    "RequestChildMixin",
    "RequestFileAttachment",
    "RequestSequence",
    "RequestStatus",
    "SQLModel",
    "TimestampMixin",
    "TravelMode",
    "TravelRequest",
    "TripNature",
    "UUIDBase",
    "VendorChatMessage",
    "VendorMessage",
    "WorkflowAction",
]
