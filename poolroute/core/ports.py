# poolroute/core/ports.py
from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional, Protocol

from poolroute.core.dispatch.digest import DeliveryLogEntry, Digest, OutboundEmail
from poolroute.core.dispatch.events import ChangeEvent, NewChangeEvent
from poolroute.core.dispatch.notifications import NewNotification, Notification
from poolroute.core.scheduling.domain import Job, JobDraft, ServiceTier, Technician


# ============================================================================
# ASYNC PROTOCOLS (asyncpg implementations live in poolroute.infra)
# ============================================================================

class JobRepository(Protocol):
    async def find_jobs_by_day_range(
        self, start: datetime, end: datetime, *, assigned_only: bool = False,
    ) -> list[Job]:
        """Jobs with ``start <= scheduled_date < end``, customer and address joined."""
        ...

    async def get_job(self, job_id: str) -> Optional[Job]: ...
    async def get_jobs(self, job_ids: Iterable[str]) -> dict[str, Job]: ...
    async def create_job(self, draft: JobDraft) -> Job: ...

    async def update_jobs(self, jobs: list[Job]) -> int:
        """
        Persist scheduled_date, sort_order, technician_id and status of every
        job in one transaction. All or nothing.
        """
        ...

    async def count_jobs_for_technician_on_day(
        self, technician_id: str, start: datetime, end: datetime, excluding_job_id: str,
    ) -> int: ...

    async def get_service_tier(self, tier_id: Optional[str]) -> Optional[ServiceTier]:
        """The named tier, or the default tier when ``tier_id`` is empty or unknown."""
        ...


class TechnicianDirectory(Protocol):
    async def find_technicians(self, technician_ids: Iterable[str]) -> dict[str, Technician]: ...


class ChangeEventRepository(Protocol):
    async def create_change_event(self, event: NewChangeEvent) -> str: ...

    async def find_unclaimed_change_events(self, day: date) -> list[ChangeEvent]:
        """Events with ``digest_id IS NULL`` and ``route_date = day``, oldest first."""
        ...

    async def claim_change_events(self, event_ids: list[str], digest_id: str) -> int:
        """Stamp still-unclaimed events with ``digest_id``. Returns how many were stamped."""
        ...


class DigestRepository(Protocol):
    async def create_digest(
        self, technician_id: str, route_date: date, window: str, scheduled_for: datetime,
    ) -> Digest: ...

    async def update_digest_status(
        self, digest_id: str, status: str, sent_at: Optional[datetime] = None,
    ) -> None: ...

    async def acquire_lease(self, name: str, holder: str, ttl_seconds: int) -> bool:
        """
        True  => lease taken (free, expired, or already ours)
        False => another holder owns an unexpired lease
        """
        ...

    async def release_lease(self, name: str, holder: str) -> None: ...


class DeliveryLogRepository(Protocol):
    async def create_delivery_log_entry(self, entry: DeliveryLogEntry) -> str: ...


class NotificationRepository(Protocol):
    async def create_notification(self, notification: NewNotification) -> str: ...

    async def find_queued_notifications(
        self, limit: int, event_types: Iterable[str],
    ) -> list[Notification]: ...

    async def update_notification_status(
        self, notification_id: str, status: str, sent_at: Optional[datetime] = None,
    ) -> None: ...


class Mailer(Protocol):
    def is_configured(self) -> bool: ...

    async def send(self, message: OutboundEmail) -> None:
        """Deliver one message. Raises on any failure."""
        ...
