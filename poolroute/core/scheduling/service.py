# poolroute/core/scheduling/service.py
"""
Route service: the persisting side of the route calendar.

``update_jobs`` receives a bulk commit, writes it in one transaction and
only then emits change events and customer notifications. It also
satisfies ``JobUpdateGateway``, so an edit session can commit in-process.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, tzinfo
from typing import Callable, Optional

from poolroute.core.dispatch.emitter import ChangeEventEmitter
from poolroute.core.dispatch.notifications import (
    NewNotification,
    NotificationEvent,
    RouteUpdatedPayload,
    ServiceRescheduledPayload,
    ServiceScheduledPayload,
    Severity,
)
from poolroute.core.errors import CommitError, ValidationError
from poolroute.core.ports import JobRepository, NotificationRepository
from poolroute.core.scheduling.domain import (
    Job,
    JobChange,
    JobDraft,
    JobKind,
    Priority,
    ServiceType,
    combine_date_and_time,
    status_for_schedule,
)
from poolroute.core.scheduling.pending import JobUpdate
from poolroute.infra.logging_config import get_logger
from poolroute.infra.metrics import DispatchMetrics

logger = get_logger(__name__)

DEFAULT_SCHEDULED_TIME = "09:00"


@dataclass
class BulkJobSpec:
    """One row of a bulk-create request."""
    customer_id: Optional[str]
    property_id: Optional[str]
    technician_id: Optional[str] = None
    scheduled_time: Optional[str] = None
    service_tier_id: Optional[str] = None
    service_type: Optional[str] = None
    priority: Optional[str] = None
    kind: Optional[str] = None
    estimated_duration_minutes: Optional[int] = None
    notes: Optional[str] = None


def _normalize_service_type(value: Optional[str]) -> str:
    if value in (ServiceType.FILTER_CHECK.value, ServiceType.CHEM_BALANCE.value, ServiceType.EQUIPMENT_CHECK.value):
        return value
    return ServiceType.WEEKLY_CLEANING.value


class RouteService:
    def __init__(
        self,
        jobs: JobRepository,
        emitter: ChangeEventEmitter,
        notifications: NotificationRepository,
        *,
        tz: tzinfo,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.jobs = jobs
        self.emitter = emitter
        self.notifications = notifications
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(tz))

    # ------------------------------------------------------------------
    # Bulk create
    # ------------------------------------------------------------------

    async def bulk_create(self, day: date, specs: list[BulkJobSpec]) -> list[Job]:
        """
        Create one job per spec on ``day``. Specs without a customer or
        property are skipped.

        Raises:
            ValidationError: no specs, or a malformed ``HH:MM`` time
        """
        if not specs:
            raise ValidationError("No jobs to create")

        now = self._clock()
        created: list[Job] = []

        for spec in specs:
            if not spec.customer_id or not spec.property_id:
                continue
            try:
                scheduled = combine_date_and_time(day, spec.scheduled_time or DEFAULT_SCHEDULED_TIME, self.tz)
            except ValueError:
                raise ValidationError(f"Invalid scheduled time: {spec.scheduled_time!r}") from None

            tier = await self.jobs.get_service_tier(spec.service_tier_id)
            draft = JobDraft(
                customer_id=spec.customer_id,
                property_id=spec.property_id,
                scheduled_date=scheduled,
                technician_id=spec.technician_id or None,
                status=status_for_schedule(scheduled, now, self.tz),
                priority=Priority.URGENT.value if spec.priority == Priority.URGENT.value else Priority.NORMAL.value,
                kind=JobKind.ON_DEMAND.value if spec.kind == JobKind.ON_DEMAND.value else JobKind.ROUTINE.value,
                service_type=_normalize_service_type(spec.service_type),
                service_tier_id=tier.id if tier else None,
                checklist=tier.checklist_items() if tier else [],
                notes=spec.notes or None,
                estimated_duration_minutes=spec.estimated_duration_minutes,
            )
            job = await self.jobs.create_job(draft)
            created.append(job)

            await self.emitter.job_created(job)
            await self.notifications.create_notification(NewNotification(
                customer_id=job.customer_id,
                event_type=NotificationEvent.SERVICE_SCHEDULED.value,
                payload=ServiceScheduledPayload(
                    job_id=job.id,
                    technician_id=job.technician_id,
                    scheduled_date=job.scheduled_date,
                ),
            ))

        logger.info(f"Bulk create on {day}: {len(created)} of {len(specs)} jobs created")
        return created

    # ------------------------------------------------------------------
    # Bulk reschedule
    # ------------------------------------------------------------------

    def _normalize(self, value: datetime) -> datetime:
        # Naive timestamps are local to the dispatch zone.
        return value if value.tzinfo is not None else value.replace(tzinfo=self.tz)

    async def update_jobs(self, updates: list[JobUpdate]) -> int:
        """
        Apply a bulk commit atomically. Unknown job ids are skipped.
        COMPLETED jobs keep their status; any other job gets SCHEDULED or
        PENDING from its (new) scheduled date.

        Raises:
            CommitError: the batch could not be persisted (nothing was written)
        """
        if not updates:
            return 0

        existing = await self.jobs.get_jobs({u.job_id for u in updates})
        now = self._clock()
        changes: dict[str, JobChange] = {}

        for update in updates:
            before = existing.get(update.job_id)
            if before is None:
                logger.warning(f"Bulk update skipped unknown job {update.job_id}", extra={"job_id": update.job_id})
                continue
            current = changes[update.job_id].after if update.job_id in changes else before

            fields = update.patch.values()
            if "scheduled_date" in fields:
                fields["scheduled_date"] = self._normalize(fields["scheduled_date"])
            after = replace(current, **fields)
            after.status = status_for_schedule(after.scheduled_date, now, self.tz, before.status)
            changes[update.job_id] = JobChange(before=before, after=after)

        if not changes:
            return 0

        try:
            count = await self.jobs.update_jobs([c.after for c in changes.values()])
        except Exception as e:
            DispatchMetrics.route_commit("failed")
            logger.error(f"Bulk update of {len(changes)} jobs failed: {e}", exc_info=True)
            raise CommitError("Failed to persist job updates") from e
        DispatchMetrics.route_commit("ok")

        ordered = list(changes.values())
        for i, change in enumerate(ordered):
            await self._after_update(change, ordered[i + 1:])

        logger.info(f"Bulk update applied: {count} jobs")
        return count

    async def _after_update(self, change: JobChange, later_in_batch: list[JobChange]) -> None:
        """Change events and customer notifications for one persisted update."""
        after = change.after
        try:
            await self.emitter.job_updated(change, later_in_batch)

            if after.technician_id and (change.technician_changed or change.schedule_changed):
                await self.notifications.create_notification(NewNotification(
                    customer_id=after.customer_id,
                    event_type=NotificationEvent.ROUTE_UPDATED.value,
                    payload=RouteUpdatedPayload(
                        job_id=after.id,
                        technician_id=after.technician_id,
                        scheduled_date=after.scheduled_date,
                    ),
                ))

            if change.schedule_changed:
                await self.notifications.create_notification(NewNotification(
                    customer_id=after.customer_id,
                    event_type=NotificationEvent.SERVICE_RESCHEDULED.value,
                    severity=Severity.WARNING.value,
                    payload=ServiceRescheduledPayload(
                        job_id=after.id,
                        scheduled_date=after.scheduled_date,
                    ),
                ))
        except Exception as e:
            # The update is already committed; a lost event must not turn it into a failed commit.
            DispatchMetrics.database_error("emit_change_events")
            logger.error(
                f"Change events for job {after.id} not written: {e}",
                extra={"job_id": after.id},
                exc_info=True,
            )
