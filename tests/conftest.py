# tests/conftest.py
"""Pytest configuration, fixtures and in-memory fakes of the repository ports"""
from __future__ import annotations

import asyncio
import sys
import uuid
from dataclasses import replace
from datetime import date, datetime, time
from pathlib import Path
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from poolroute.core.dispatch.digest import DeliveryLogEntry, Digest, DigestStatus, OutboundEmail  # noqa: E402
from poolroute.core.dispatch.events import ChangeEvent, NewChangeEvent  # noqa: E402
from poolroute.core.dispatch.notifications import NewNotification, Notification, NotificationStatus  # noqa: E402
from poolroute.core.scheduling.domain import Job, JobDraft, ServiceTier, Technician  # noqa: E402
from poolroute.infra.metrics import get_metrics_collector  # noqa: E402

TZ = ZoneInfo("America/New_York")
DAY = date(2024, 6, 3)
NEXT_DAY = date(2024, 6, 4)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """Local wall-clock time in the dispatch zone."""
    return datetime.combine(day, time(hour, minute), tzinfo=TZ)


def make_job(
    job_id: str,
    day: date = DAY,
    hour: int = 9,
    minute: int = 0,
    *,
    technician_id: Optional[str] = "tech-1",
    sort_order: Optional[int] = None,
    status: str = "PENDING",
    customer_name: Optional[str] = None,
    address: Optional[str] = None,
    customer_email: Optional[str] = None,
) -> Job:
    return Job(
        id=job_id,
        scheduled_date=at(day, hour, minute),
        status=status,
        technician_id=technician_id,
        sort_order=sort_order,
        customer_id=f"cust-{job_id}",
        customer_name=customer_name if customer_name is not None else f"Customer {job_id}",
        customer_email=customer_email if customer_email is not None else f"{job_id}@example.com",
        property_id=f"prop-{job_id}",
        address=address if address is not None else f"{job_id} Palm Ave",
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeJobRepository:
    def __init__(self, jobs: Iterable[Job] = (), tiers: Iterable[ServiceTier] = ()):
        self.jobs: dict[str, Job] = {job.id: replace(job) for job in jobs}
        self.tiers: dict[str, ServiceTier] = {tier.id: tier for tier in tiers}
        self.customers: dict[str, tuple[str, str]] = {}
        self.properties: dict[str, str] = {}
        self.update_calls: list[list[Job]] = []
        self.fail_updates: Optional[Exception] = None

    async def find_jobs_by_day_range(self, start, end, *, assigned_only=False):
        found = [
            replace(job) for job in self.jobs.values()
            if start <= job.scheduled_date < end and (job.technician_id or not assigned_only)
        ]
        return sorted(found, key=lambda job: job.scheduled_date)

    async def get_job(self, job_id):
        job = self.jobs.get(job_id)
        return replace(job) if job else None

    async def get_jobs(self, job_ids):
        return {j: replace(self.jobs[j]) for j in job_ids if j in self.jobs}

    async def create_job(self, draft: JobDraft) -> Job:
        name, email = self.customers.get(draft.customer_id, (f"Customer {draft.customer_id}", None))
        job = Job(
            id=str(uuid.uuid4()),
            scheduled_date=draft.scheduled_date,
            status=draft.status,
            technician_id=draft.technician_id,
            sort_order=draft.sort_order,
            priority=draft.priority,
            kind=draft.kind,
            service_type=draft.service_type,
            service_tier_id=draft.service_tier_id,
            checklist=list(draft.checklist),
            notes=draft.notes,
            estimated_duration_minutes=draft.estimated_duration_minutes,
            customer_id=draft.customer_id,
            customer_name=name,
            customer_email=email,
            property_id=draft.property_id,
            address=self.properties.get(draft.property_id, ""),
        )
        self.jobs[job.id] = job
        return replace(job)

    async def update_jobs(self, jobs: list[Job]) -> int:
        self.update_calls.append([replace(job) for job in jobs])
        if self.fail_updates is not None:
            raise self.fail_updates
        for job in jobs:
            self.jobs[job.id] = replace(job)
        return len(jobs)

    async def count_jobs_for_technician_on_day(self, technician_id, start, end, excluding_job_id):
        return sum(
            1 for job in self.jobs.values()
            if job.technician_id == technician_id
            and start <= job.scheduled_date < end
            and job.id != excluding_job_id
        )

    async def get_service_tier(self, tier_id):
        if tier_id and tier_id in self.tiers:
            return self.tiers[tier_id]
        for tier in self.tiers.values():
            if tier.is_default:
                return tier
        return None


class FakeTechnicianDirectory:
    def __init__(self, technicians: Iterable[Technician] = ()):
        self.technicians = {t.id: t for t in technicians}

    async def find_technicians(self, technician_ids):
        return {t: self.technicians[t] for t in technician_ids if t in self.technicians}


class FakeChangeEventRepository:
    def __init__(self, jobs: Optional[FakeJobRepository] = None):
        self.events: list[ChangeEvent] = []
        self.jobs = jobs
        self.claim_calls: list[tuple[list[str], str]] = []

    async def create_change_event(self, event: NewChangeEvent) -> str:
        event_id = f"evt-{len(self.events) + 1}"
        self.events.append(ChangeEvent(
            id=event_id,
            technician_id=event.technician_id,
            job_id=event.job_id,
            route_date=event.route_date,
            change_type=event.change_type,
            payload=event.payload,
        ))
        return event_id

    def add(self, event: ChangeEvent) -> ChangeEvent:
        self.events.append(event)
        return event

    async def find_unclaimed_change_events(self, day):
        return [replace(e) for e in self.events if e.digest_id is None and e.route_date == day]

    async def claim_change_events(self, event_ids, digest_id):
        self.claim_calls.append((list(event_ids), digest_id))
        claimed = 0
        for event in self.events:
            if event.id in event_ids and event.digest_id is None:
                event.digest_id = digest_id
                claimed += 1
        return claimed

    def unclaimed(self) -> list[ChangeEvent]:
        return [e for e in self.events if e.digest_id is None]


class FakeDigestRepository:
    def __init__(self):
        self.digests: dict[str, Digest] = {}
        self.leases: dict[str, str] = {}
        self.lease_calls: list[str] = []
        self.released: list[str] = []

    async def create_digest(self, technician_id, route_date, window, scheduled_for):
        digest = Digest(
            id=f"dig-{len(self.digests) + 1}",
            technician_id=technician_id,
            route_date=route_date,
            window=window,
            status=DigestStatus.QUEUED.value,
            scheduled_for=scheduled_for,
        )
        self.digests[digest.id] = digest
        return replace(digest)

    async def update_digest_status(self, digest_id, status, sent_at=None):
        digest = self.digests[digest_id]
        digest.status = status
        digest.sent_at = sent_at

    async def acquire_lease(self, name, holder, ttl_seconds):
        self.lease_calls.append(name)
        current = self.leases.get(name)
        if current is not None and current != holder:
            return False
        self.leases[name] = holder
        return True

    async def release_lease(self, name, holder):
        if self.leases.get(name) == holder:
            del self.leases[name]
        self.released.append(name)


class FakeDeliveryLogRepository:
    def __init__(self):
        self.entries: list[DeliveryLogEntry] = []

    async def create_delivery_log_entry(self, entry: DeliveryLogEntry) -> str:
        entry.id = f"log-{len(self.entries) + 1}"
        self.entries.append(entry)
        return entry.id


class FakeNotificationRepository:
    def __init__(self, queued: Iterable[Notification] = ()):
        self.created: list[NewNotification] = []
        self.queued: list[Notification] = list(queued)
        self.status_updates: list[tuple[str, str, Optional[datetime]]] = []
        self.requested_event_types: Optional[tuple[str, ...]] = None

    async def create_notification(self, notification: NewNotification) -> str:
        self.created.append(notification)
        return f"ntf-{len(self.created)}"

    async def find_queued_notifications(self, limit, event_types):
        self.requested_event_types = tuple(event_types)
        return [
            n for n in self.queued
            if n.status == NotificationStatus.QUEUED.value and n.event_type in self.requested_event_types
        ][:limit]

    async def update_notification_status(self, notification_id, status, sent_at=None):
        self.status_updates.append((notification_id, status, sent_at))
        for n in self.queued:
            if n.id == notification_id:
                n.status = status
                n.sent_at = sent_at

    def status_of(self, notification_id: str) -> Optional[str]:
        for n in self.queued:
            if n.id == notification_id:
                return n.status
        return None


class FakeMailer:
    """Records messages; ``fail_for`` addresses raise, ``delay`` slows every send."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.sent: list[OutboundEmail] = []
        self.fail_for: set[str] = set()
        self.delay: float = 0.0

    def is_configured(self) -> bool:
        return self.configured

    async def send(self, message: OutboundEmail) -> None:
        if not self.configured:
            raise RuntimeError("SMTP not configured")
        if self.delay:
            await asyncio.sleep(self.delay)
        if message.to in self.fail_for:
            raise ConnectionError(f"550 mailbox unavailable: {message.to}")
        self.sent.append(message)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_metrics():
    """Every test starts with empty counters"""
    get_metrics_collector().reset()
    yield


@pytest.fixture
def tz():
    return TZ


@pytest.fixture
def technicians():
    return FakeTechnicianDirectory([
        Technician(id="tech-1", full_name="Ana Reyes", email="ana@example.com"),
        Technician(id="tech-2", full_name="Ben Cole", email="ben@example.com"),
        Technician(id="tech-3", full_name="No Mail", email=None),
    ])


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def delivery_logs():
    return FakeDeliveryLogRepository()


@pytest.fixture
def digests():
    return FakeDigestRepository()


@pytest.fixture
def notifications():
    return FakeNotificationRepository()
