# poolroute/core/dispatch/emitter.py
"""
Change-event emitter.

Called synchronously after a job is created or a job update is persisted.
Classification:
- technician changed away from a previous technician -> JOB_UNASSIGNED
  for the previous technician, on the previous route day
- job now has a technician and its schedule, technician or order changed:
  JOB_RESCHEDULED if the schedule changed, otherwise ROUTE_ASSIGNED /
  JOB_ASSIGNED if the technician changed, otherwise ROUTE_REORDERED

ROUTE_ASSIGNED means the technician had no other job on that day (for a
bulk commit, counting earlier updates in the batch only). The
count is read without a lock, so two jobs assigned at the same moment
can both be reported as ROUTE_ASSIGNED.
"""
from __future__ import annotations

from datetime import date, tzinfo
from typing import Optional, Sequence

from poolroute.core.dispatch.events import (
    AssignedPayload,
    ChangeType,
    NewChangeEvent,
    ReorderedPayload,
    RescheduledPayload,
    UnassignedPayload,
)
from poolroute.core.ports import ChangeEventRepository, JobRepository
from poolroute.core.scheduling.domain import Job, JobChange, day_bounds, route_day
from poolroute.infra.logging_config import get_logger

logger = get_logger(__name__)


class ChangeEventEmitter:
    def __init__(self, jobs: JobRepository, events: ChangeEventRepository, *, tz: tzinfo):
        self.jobs = jobs
        self.events = events
        self.tz = tz

    def _on_route(self, job: Job, technician_id: str, day: date) -> bool:
        return job.technician_id == technician_id and route_day(job.scheduled_date, self.tz) == day

    async def _assignment_type(self, job: Job, later_in_batch: Sequence[JobChange] = ()) -> ChangeType:
        """
        The count is read after the whole batch is written, so jobs later
        in the same batch are taken back to their earlier state: each
        update is classified as if the batch were applied one at a time.
        """
        day = route_day(job.scheduled_date, self.tz)
        start, end = day_bounds(day, self.tz)
        existing = await self.jobs.count_jobs_for_technician_on_day(
            job.technician_id, start, end, job.id,
        )
        for other in later_in_batch:
            if other.after.id == job.id:
                continue
            was_on = self._on_route(other.before, job.technician_id, day)
            is_on = self._on_route(other.after, job.technician_id, day)
            existing += int(was_on) - int(is_on)
        return ChangeType.ROUTE_ASSIGNED if existing <= 0 else ChangeType.JOB_ASSIGNED

    async def _emit(self, event: NewChangeEvent) -> str:
        event_id = await self.events.create_change_event(event)
        logger.debug(
            f"Change event {event.change_type} queued for {event.route_date}",
            extra={"technician_id": event.technician_id, "job_id": event.job_id},
        )
        return event_id

    async def job_created(self, job: Job) -> Optional[str]:
        if not job.technician_id:
            return None
        change_type = await self._assignment_type(job)
        return await self._emit(NewChangeEvent(
            technician_id=job.technician_id,
            job_id=job.id,
            route_date=route_day(job.scheduled_date, self.tz),
            change_type=change_type.value,
            payload=AssignedPayload(
                scheduled_date=job.scheduled_date,
                customer_name=job.customer_name,
                address=job.address,
            ),
        ))

    async def job_updated(self, change: JobChange, later_in_batch: Sequence[JobChange] = ()) -> list[str]:
        before, after = change.before, change.after
        emitted: list[str] = []

        if change.technician_changed and before.technician_id:
            emitted.append(await self._emit(NewChangeEvent(
                technician_id=before.technician_id,
                job_id=after.id,
                route_date=route_day(before.scheduled_date, self.tz),
                change_type=ChangeType.JOB_UNASSIGNED.value,
                payload=UnassignedPayload(
                    scheduled_date=before.scheduled_date,
                    customer_name=after.customer_name,
                    address=after.address,
                ),
            )))

        if after.technician_id and (
            change.schedule_changed or change.technician_changed or change.order_changed
        ):
            move = dict(
                from_scheduled_date=before.scheduled_date,
                to_scheduled_date=after.scheduled_date,
                from_order=before.sort_order,
                to_order=after.sort_order,
                customer_name=after.customer_name,
                address=after.address,
            )
            if change.schedule_changed:
                change_type = ChangeType.JOB_RESCHEDULED
                payload = RescheduledPayload(**move)
            elif change.technician_changed:
                change_type = await self._assignment_type(after, later_in_batch)
                payload = AssignedPayload(
                    scheduled_date=after.scheduled_date,
                    customer_name=after.customer_name,
                    address=after.address,
                )
            else:
                change_type = ChangeType.ROUTE_REORDERED
                payload = ReorderedPayload(**move)

            emitted.append(await self._emit(NewChangeEvent(
                technician_id=after.technician_id,
                job_id=after.id,
                route_date=route_day(after.scheduled_date, self.tz),
                change_type=change_type.value,
                payload=payload,
            )))

        return emitted
