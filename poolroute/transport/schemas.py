# poolroute/transport/schemas.py
"""
Wire models of the route API. Keys are camelCase on the wire; Python
attributes stay snake_case.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from poolroute.core.scheduling.domain import Job
from poolroute.core.scheduling.pending import JobPatch, JobUpdate
from poolroute.core.scheduling.service import BulkJobSpec


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

class JobOut(_CamelModel):
    id: str
    scheduled_date: datetime = Field(alias="scheduledDate")
    status: str
    technician_id: Optional[str] = Field(default=None, alias="technicianId")
    sort_order: Optional[int] = Field(default=None, alias="sortOrder")
    priority: str = "NORMAL"
    kind: str = Field(default="ROUTINE", alias="type")
    service_type: str = Field(default="WEEKLY_CLEANING", alias="serviceType")
    service_tier_id: Optional[str] = Field(default=None, alias="serviceTierId")
    checklist: list[dict[str, Any]] = Field(default_factory=list)
    notes: Optional[str] = None
    estimated_duration_minutes: Optional[int] = Field(default=None, alias="estimatedDurationMinutes")
    customer_id: Optional[str] = Field(default=None, alias="customerId")
    customer_name: str = Field(default="", alias="customerName")
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    property_id: Optional[str] = Field(default=None, alias="propertyId")
    address: str = ""

    @classmethod
    def from_job(cls, job: Job) -> "JobOut":
        return cls(
            id=job.id,
            scheduled_date=job.scheduled_date,
            status=job.status,
            technician_id=job.technician_id,
            sort_order=job.sort_order,
            priority=job.priority,
            kind=job.kind,
            service_type=job.service_type,
            service_tier_id=job.service_tier_id,
            checklist=list(job.checklist),
            notes=job.notes,
            estimated_duration_minutes=job.estimated_duration_minutes,
            customer_id=job.customer_id,
            customer_name=job.customer_name,
            customer_email=job.customer_email,
            property_id=job.property_id,
            address=job.address,
        )

    def to_job(self) -> Job:
        return Job(**self.model_dump())

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Bulk reschedule
# ---------------------------------------------------------------------------

_PATCH_FIELDS = ("scheduled_date", "sort_order", "technician_id")


class JobUpdateIn(_CamelModel):
    """
    One patch of a bulk commit. A key that is absent leaves the field
    alone; ``"technicianId": null`` unassigns.
    """
    job_id: str = Field(alias="jobId", min_length=1)
    scheduled_date: Optional[datetime] = Field(default=None, alias="scheduledDate")
    sort_order: Optional[int] = Field(default=None, alias="sortOrder")
    technician_id: Optional[str] = Field(default=None, alias="technicianId")

    def to_update(self) -> JobUpdate:
        values = {name: getattr(self, name) for name in _PATCH_FIELDS if name in self.model_fields_set}
        if values.get("scheduled_date", 0) is None:
            # A job always has a schedule; null means "unchanged".
            del values["scheduled_date"]
        if values.get("technician_id") == "":
            values["technician_id"] = None
        return JobUpdate(self.job_id, JobPatch(**values))


class BulkRescheduleIn(_CamelModel):
    updates: list[JobUpdateIn] = Field(default_factory=list)

    def to_updates(self) -> list[JobUpdate]:
        return [u.to_update() for u in self.updates]


class BulkRescheduleOut(BaseModel):
    ok: bool = True
    updated: int


# ---------------------------------------------------------------------------
# Bulk create
# ---------------------------------------------------------------------------

class BulkJobIn(_CamelModel):
    customer_id: Optional[str] = Field(default=None, alias="customerId")
    property_id: Optional[str] = Field(default=None, alias="propertyId")
    technician_id: Optional[str] = Field(default=None, alias="technicianId")
    scheduled_time: Optional[str] = Field(default=None, alias="scheduledTime")
    service_tier_id: Optional[str] = Field(default=None, alias="serviceTierId")
    service_type: Optional[str] = Field(default=None, alias="serviceType")
    priority: Optional[str] = None
    kind: Optional[str] = Field(default=None, alias="type")
    estimated_duration_minutes: Optional[int] = Field(default=None, alias="estimatedDurationMinutes", ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)

    def to_spec(self) -> BulkJobSpec:
        return BulkJobSpec(**self.model_dump())


class BulkCreateIn(_CamelModel):
    day: date = Field(alias="date")
    jobs: list[BulkJobIn] = Field(default_factory=list)

    def to_specs(self) -> list[BulkJobSpec]:
        return [j.to_spec() for j in self.jobs]
