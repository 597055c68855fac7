# poolroute/core/dispatch/notifications.py
"""Customer-facing notifications queued by scheduling actions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from poolroute.core.errors import InvalidPayloadError


class NotificationStatus(str, Enum):
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"


class NotificationEvent(str, Enum):
    SERVICE_SCHEDULED = "SERVICE_SCHEDULED"
    SERVICE_RESCHEDULED = "SERVICE_RESCHEDULED"
    ROUTE_UPDATED = "ROUTE_UPDATED"


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"


# Event types the customer dispatcher turns into email. ROUTE_UPDATED is
# written for in-app display only and never leaves the queue by email.
CUSTOMER_EMAIL_EVENTS: tuple[str, ...] = (
    NotificationEvent.SERVICE_SCHEDULED.value,
    NotificationEvent.SERVICE_RESCHEDULED.value,
)


class _NotificationPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    job_id: str = Field(alias="jobId", min_length=1)
    scheduled_date: Optional[datetime] = Field(default=None, alias="scheduledDate")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ServiceScheduledPayload(_NotificationPayload):
    technician_id: Optional[str] = Field(default=None, alias="technicianId")


class ServiceRescheduledPayload(_NotificationPayload):
    pass


class RouteUpdatedPayload(_NotificationPayload):
    technician_id: Optional[str] = Field(default=None, alias="technicianId")


NotificationPayload = Union[ServiceScheduledPayload, ServiceRescheduledPayload, RouteUpdatedPayload]

_PAYLOAD_TYPES: dict[str, type[_NotificationPayload]] = {
    NotificationEvent.SERVICE_SCHEDULED.value: ServiceScheduledPayload,
    NotificationEvent.SERVICE_RESCHEDULED.value: ServiceRescheduledPayload,
    NotificationEvent.ROUTE_UPDATED.value: RouteUpdatedPayload,
}


def decode_notification_payload(event_type: str, raw: Any) -> NotificationPayload:
    """
    Decode a stored notification payload. Every variant requires ``jobId``.

    Raises:
        InvalidPayloadError: unknown event type, payload not an object, or missing/invalid jobId
    """
    model = _PAYLOAD_TYPES.get(event_type)
    if model is None:
        raise InvalidPayloadError(f"Unknown notification event type: {event_type}")
    if not isinstance(raw, dict):
        raise InvalidPayloadError(f"{event_type} payload must be an object")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid {event_type} payload: {e.errors()[0]['msg']}") from e


@dataclass
class Notification:
    """
    A queued customer notification. ``payload`` is kept raw and decoded by
    the dispatcher, so a malformed row can be failed instead of breaking
    the whole batch read.
    """
    id: str
    customer_id: Optional[str]
    event_type: str
    status: str
    payload: Any
    severity: str = Severity.INFO.value
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None

    def decoded(self) -> NotificationPayload:
        return decode_notification_payload(self.event_type, self.payload)


@dataclass
class NewNotification:
    customer_id: str
    event_type: str
    payload: NotificationPayload
    severity: str = Severity.INFO.value
