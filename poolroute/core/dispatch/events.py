# poolroute/core/dispatch/events.py
"""
Change events (technician digest items).

A change event records one thing a technician should hear about in the
next delta digest. Its payload is a snapshot taken when the event is
written, stored as JSON and decoded at read time into a typed variant
selected by ``change_type``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from poolroute.core.errors import InvalidPayloadError


class ChangeType(str, Enum):
    ROUTE_ASSIGNED = "ROUTE_ASSIGNED"
    JOB_ASSIGNED = "JOB_ASSIGNED"
    JOB_UNASSIGNED = "JOB_UNASSIGNED"
    ROUTE_REORDERED = "ROUTE_REORDERED"
    JOB_RESCHEDULED = "JOB_RESCHEDULED"


# ============================================================================
# PAYLOAD VARIANTS
# ============================================================================

class _ChangePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    customer_name: Optional[str] = Field(default=None, alias="customerName")
    address: Optional[str] = None

    @property
    def from_time(self) -> Optional[datetime]:
        return None

    @property
    def to_time(self) -> Optional[datetime]:
        return None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AssignedPayload(_ChangePayload):
    """ROUTE_ASSIGNED / JOB_ASSIGNED. Written on creation (scheduledDate) or on reassignment (toScheduledDate)."""
    scheduled_date: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("scheduledDate", "toScheduledDate", "scheduled_date"),
        serialization_alias="scheduledDate",
    )

    @property
    def to_time(self) -> Optional[datetime]:
        return self.scheduled_date


class UnassignedPayload(_ChangePayload):
    scheduled_date: Optional[datetime] = Field(default=None, alias="scheduledDate")


class _MovePayload(_ChangePayload):
    from_scheduled_date: Optional[datetime] = Field(default=None, alias="fromScheduledDate")
    to_scheduled_date: Optional[datetime] = Field(default=None, alias="toScheduledDate")
    from_order: Optional[int] = Field(default=None, alias="fromOrder")
    to_order: Optional[int] = Field(default=None, alias="toOrder")

    @property
    def from_time(self) -> Optional[datetime]:
        return self.from_scheduled_date

    @property
    def to_time(self) -> Optional[datetime]:
        return self.to_scheduled_date


class ReorderedPayload(_MovePayload):
    pass


class RescheduledPayload(_MovePayload):
    pass


class GenericPayload(_MovePayload):
    """Anything with an unknown change type; only the common fields are read."""
    scheduled_date: Optional[datetime] = Field(default=None, alias="scheduledDate")

    @property
    def to_time(self) -> Optional[datetime]:
        return self.to_scheduled_date or self.scheduled_date


ChangePayload = Union[
    AssignedPayload, UnassignedPayload, ReorderedPayload, RescheduledPayload, GenericPayload
]

_PAYLOAD_TYPES: dict[str, type[_ChangePayload]] = {
    ChangeType.ROUTE_ASSIGNED.value: AssignedPayload,
    ChangeType.JOB_ASSIGNED.value: AssignedPayload,
    ChangeType.JOB_UNASSIGNED.value: UnassignedPayload,
    ChangeType.ROUTE_REORDERED.value: ReorderedPayload,
    ChangeType.JOB_RESCHEDULED.value: RescheduledPayload,
}


def decode_change_payload(change_type: str, raw: Any) -> ChangePayload:
    """
    Decode a stored payload into the variant for ``change_type``.

    Raises:
        InvalidPayloadError: payload is not an object or a field has the wrong type
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidPayloadError(f"{change_type} payload must be an object")
    model = _PAYLOAD_TYPES.get(change_type, GenericPayload)
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid {change_type} payload: {e.errors()[0]['msg']}") from e


# ============================================================================
# ENTITY
# ============================================================================

@dataclass
class ChangeEvent:
    """
    One unit of a technician's delta digest.

    ``digest_id`` is None until a delta pass claims the event. The ``job_*``
    fields are the live job joined in at read time, used only when the
    payload snapshot lacks a value.
    """
    id: str
    technician_id: str
    job_id: Optional[str]
    route_date: date
    change_type: str
    payload: ChangePayload
    digest_id: Optional[str] = None
    created_at: Optional[datetime] = None

    job_customer_name: Optional[str] = None
    job_address: Optional[str] = None
    job_scheduled_date: Optional[datetime] = None

    @property
    def claimed(self) -> bool:
        return self.digest_id is not None

    @property
    def customer_name(self) -> Optional[str]:
        return self.payload.customer_name or self.job_customer_name

    @property
    def address(self) -> Optional[str]:
        return self.payload.address or self.job_address

    @property
    def from_time(self) -> Optional[datetime]:
        return self.payload.from_time

    @property
    def to_time(self) -> Optional[datetime]:
        return self.payload.to_time or self.job_scheduled_date


@dataclass
class NewChangeEvent:
    """A change event about to be written."""
    technician_id: str
    job_id: str
    route_date: date
    change_type: str
    payload: ChangePayload
