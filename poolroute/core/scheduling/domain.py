# poolroute/core/scheduling/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Any, Optional


# ============================================================================
# ENUMS
# ============================================================================

class JobStatus(str, Enum):
    """
    Job lifecycle. Transitions are operator driven; the core only picks
    between SCHEDULED and PENDING when a schedule is (re)computed.
    """
    SCHEDULED = "SCHEDULED"
    PENDING = "PENDING"
    ON_THE_WAY = "ON_THE_WAY"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class Priority(str, Enum):
    NORMAL = "NORMAL"
    URGENT = "URGENT"


class ServiceType(str, Enum):
    WEEKLY_CLEANING = "WEEKLY_CLEANING"
    FILTER_CHECK = "FILTER_CHECK"
    CHEM_BALANCE = "CHEM_BALANCE"
    EQUIPMENT_CHECK = "EQUIPMENT_CHECK"


class JobKind(str, Enum):
    ROUTINE = "ROUTINE"
    ON_DEMAND = "ON_DEMAND"


# ============================================================================
# ENTITIES
# ============================================================================

@dataclass
class Job:
    """
    A pool-cleaning visit.

    ``scheduled_date`` is always timezone-aware. ``sort_order`` is the
    visit rank within the route day; None means "order by scheduled time".
    Customer and property fields are read-only snapshots joined in by the
    repository.
    """
    id: str
    scheduled_date: datetime
    status: str = JobStatus.PENDING.value
    technician_id: Optional[str] = None
    sort_order: Optional[int] = None
    priority: str = Priority.NORMAL.value
    kind: str = JobKind.ROUTINE.value
    service_type: str = ServiceType.WEEKLY_CLEANING.value
    service_tier_id: Optional[str] = None
    checklist: list[dict[str, Any]] = field(default_factory=list)
    notes: Optional[str] = None
    estimated_duration_minutes: Optional[int] = None

    customer_id: Optional[str] = None
    customer_name: str = ""
    customer_email: Optional[str] = None
    property_id: Optional[str] = None
    address: str = ""


@dataclass
class Technician:
    id: str
    full_name: str
    email: Optional[str] = None


@dataclass
class ServiceTier:
    id: str
    name: str
    checklist: list[str] = field(default_factory=list)
    is_default: bool = False

    def checklist_items(self) -> list[dict[str, Any]]:
        """Fresh, unchecked checklist for a new job."""
        return [{"label": label, "completed": False} for label in self.checklist]


@dataclass
class JobDraft:
    """A job about to be created from the route calendar."""
    customer_id: str
    property_id: str
    scheduled_date: datetime
    technician_id: Optional[str] = None
    status: str = JobStatus.PENDING.value
    priority: str = Priority.NORMAL.value
    kind: str = JobKind.ROUTINE.value
    service_type: str = ServiceType.WEEKLY_CLEANING.value
    service_tier_id: Optional[str] = None
    checklist: list[dict[str, Any]] = field(default_factory=list)
    notes: Optional[str] = None
    estimated_duration_minutes: Optional[int] = None
    sort_order: Optional[int] = None


@dataclass
class JobChange:
    """Before/after snapshot of one persisted job update."""
    before: Job
    after: Job

    @property
    def technician_changed(self) -> bool:
        return self.before.technician_id != self.after.technician_id

    @property
    def schedule_changed(self) -> bool:
        return self.before.scheduled_date != self.after.scheduled_date

    @property
    def order_changed(self) -> bool:
        return (
            self.after.sort_order is not None
            and self.after.sort_order != self.before.sort_order
        )


# ============================================================================
# ROUTE DAY ARITHMETIC
# ============================================================================

def route_day(value: datetime, tz: tzinfo) -> date:
    """Calendar day a timestamp falls on in the dispatch zone."""
    return value.astimezone(tz).date()


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` of a local calendar day."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def move_to_day(value: datetime, target: date, tz: tzinfo) -> datetime:
    """Same local hour and minute on ``target``; seconds are dropped."""
    local = value.astimezone(tz)
    return datetime.combine(target, time(local.hour, local.minute), tzinfo=tz)


def combine_date_and_time(day: date, clock: str, tz: tzinfo) -> datetime:
    """Build a local timestamp from a day and ``"HH:MM"``."""
    hour, _, minute = clock.strip().partition(":")
    return datetime.combine(day, time(int(hour), int(minute or 0)), tzinfo=tz)


def status_for_schedule(
    scheduled: datetime,
    now: datetime,
    tz: tzinfo,
    current: Optional[str] = None,
) -> str:
    """
    SCHEDULED when the visit falls after today (dispatch zone), else PENDING.
    A COMPLETED job keeps its status.
    """
    if current == JobStatus.COMPLETED.value:
        return current
    _, end_of_today = day_bounds(route_day(now, tz), tz)
    if scheduled >= end_of_today:
        return JobStatus.SCHEDULED.value
    return JobStatus.PENDING.value
