# poolroute/core/dispatch/dispatcher.py
"""
Technician digest dispatcher.

Three passes per route day:
- MORNING: full plan, a restatement of each technician's day (claims nothing)
- MIDDAY / EVENING: delta, one line per unclaimed change event

Per technician group: create Digest (QUEUED) -> send + delivery log ->
finalize Digest status -> (delta only) claim the group's events. Events
are claimed whether or not the send succeeded, so a failed delta is never
re-sent by a later pass.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from time import monotonic
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from poolroute.core.dispatch.delivery import DeliveryService
from poolroute.core.dispatch.digest import (
    DeliveryRefs,
    Digest,
    DigestStatus,
    DigestWindow,
    OutboundEmail,
    PassReport,
    RecipientRole,
)
from poolroute.core.dispatch.events import ChangeEvent
from poolroute.core.dispatch.templates import build_change_digest, build_full_plan
from poolroute.core.ports import (
    ChangeEventRepository,
    DigestRepository,
    JobRepository,
    TechnicianDirectory,
)
from poolroute.core.scheduling.domain import Job, Technician, day_bounds, route_day
from poolroute.core.scheduling.ordering import sort_jobs_for_day
from poolroute.infra.logging_config import get_logger
from poolroute.infra.metrics import DispatchMetrics

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class PassLease:
    name: str
    renewed_at: float
    lost: bool = False


def group_by_technician(items: Iterable[T], key: Callable[[T], Optional[str]]) -> dict[str, list[T]]:
    """Group preserving first-seen order; items without a technician are dropped."""
    groups: dict[str, list[T]] = {}
    for item in items:
        technician_id = key(item)
        if not technician_id:
            continue
        groups.setdefault(technician_id, []).append(item)
    return groups


class DigestDispatcher:
    def __init__(
        self,
        jobs: JobRepository,
        technicians: TechnicianDirectory,
        events: ChangeEventRepository,
        digests: DigestRepository,
        delivery: DeliveryService,
        *,
        tz: tzinfo,
        update_times: Iterable[time] = (),
        max_concurrency: int = 1,
        lease_ttl_seconds: int = 600,
        holder: Optional[str] = None,
    ):
        self.jobs = jobs
        self.technicians = technicians
        self.events = events
        self.digests = digests
        self.delivery = delivery
        self.tz = tz
        self.update_times = tuple(update_times)
        self.max_concurrency = max(1, max_concurrency)
        self.lease_ttl_seconds = lease_ttl_seconds
        self.holder = holder or f"dispatcher-{uuid.uuid4().hex[:12]}"

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_window(self, window: DigestWindow | str, now: Optional[datetime] = None) -> PassReport:
        window = DigestWindow.parse(window) if isinstance(window, str) else window
        if window.is_full_plan:
            return await self.run_full_plan(now)
        return await self.run_delta(window, now)

    async def run_full_plan(self, now: Optional[datetime] = None) -> PassReport:
        now = now or datetime.now(self.tz)
        return await self._leased_pass(DigestWindow.MORNING, now, self._full_plan_pass)

    async def run_delta(self, window: DigestWindow, now: Optional[datetime] = None) -> PassReport:
        if window.is_full_plan:
            raise ValueError("MORNING is the full-plan window, not a delta window")
        now = now or datetime.now(self.tz)
        return await self._leased_pass(window, now, self._delta_pass)

    # ------------------------------------------------------------------
    # Pass scaffolding
    # ------------------------------------------------------------------

    async def _leased_pass(
        self,
        window: DigestWindow,
        now: datetime,
        body: Callable[[DigestWindow, date, datetime, PassReport, PassLease], Awaitable[None]],
    ) -> PassReport:
        day = route_day(now, self.tz)
        report = PassReport(window=window.value, route_date=day)
        lease_name = f"digest:{window.value}:{day.isoformat()}"

        if not await self.digests.acquire_lease(lease_name, self.holder, self.lease_ttl_seconds):
            report.lease_acquired = False
            DispatchMetrics.pass_skipped(window.value)
            logger.info(
                f"Digest pass {window.value} for {day} skipped: already running elsewhere",
                extra={"window": window.value},
            )
            return report

        lease = PassLease(lease_name, monotonic())
        logger.info(f"Digest pass {window.value} for {day} started", extra={"window": window.value})
        try:
            with DispatchMetrics.track_pass(window.value):
                await body(window, day, now, report, lease)
        finally:
            await self.digests.release_lease(lease_name, self.holder)

        logger.info(
            f"Digest pass {window.value} for {day} finished: groups={report.groups}, "
            f"sent={report.sent}, failed={report.failed}, skipped={report.skipped}, "
            f"claimed={report.claimed}, errors={report.errors}",
            extra={"window": window.value},
        )
        return report

    async def _run_groups(
        self,
        kind: str,
        groups: dict[str, list],
        handler: Callable[[str, list], Awaitable[None]],
        report: PassReport,
        lease: PassLease,
    ) -> None:
        """Run every group; one group's failure never stops the others."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_one(technician_id: str, items: list) -> None:
            async with semaphore:
                if not await self._renew_lease(lease, report):
                    report.skipped += 1
                    return
                try:
                    await handler(technician_id, items)
                except Exception as exc:
                    report.errors += 1
                    DispatchMetrics.group_crashed(kind)
                    logger.error(
                        f"{kind} group for technician {technician_id} crashed: {exc}",
                        extra={"technician_id": technician_id, "window": report.window},
                        exc_info=True,
                    )

        report.groups = len(groups)
        await asyncio.gather(*(run_one(tid, items) for tid, items in groups.items()))

    async def _renew_lease(self, lease: PassLease, report: PassReport) -> bool:
        """
        Extend the pass lease once half its TTL has gone by. Groups that
        start after the lease was lost to another instance are skipped.
        """
        if lease.lost:
            return False
        if monotonic() - lease.renewed_at < self.lease_ttl_seconds / 2:
            return True
        if await self.digests.acquire_lease(lease.name, self.holder, self.lease_ttl_seconds):
            lease.renewed_at = monotonic()
            return True
        lease.lost = True
        DispatchMetrics.lease_lost(report.window)
        logger.warning(
            f"Digest pass {report.window} lost lease {lease.name}, skipping remaining groups",
            extra={"window": report.window},
        )
        return False

    def _resolvable(self, technician: Optional[Technician], report: PassReport, technician_id: str) -> bool:
        if technician is None or not technician.email:
            report.skipped += 1
            logger.info(
                f"No delivery address for technician {technician_id}, skipping",
                extra={"technician_id": technician_id, "window": report.window},
            )
            return False
        return True

    async def _deliver(
        self,
        technician: Technician,
        digest: Digest,
        window: DigestWindow,
        message: OutboundEmail,
        report: PassReport,
    ) -> None:
        """Attempt delivery of an already-created digest and finalize its status."""
        outcome = await self.delivery.send_and_log(
            message,
            RecipientRole.TECH.value,
            DeliveryRefs(
                technician_id=technician.id,
                digest_id=digest.id,
                metadata={"window": window.value},
            ),
        )
        if outcome.ok:
            await self.digests.update_digest_status(digest.id, DigestStatus.SENT.value, datetime.now(self.tz))
            report.sent += 1
        else:
            await self.digests.update_digest_status(digest.id, DigestStatus.FAILED.value)
            report.failed += 1
        DispatchMetrics.digest_finished(window.value, outcome.ok)

    # ------------------------------------------------------------------
    # Full plan
    # ------------------------------------------------------------------

    async def _full_plan_pass(
        self, window: DigestWindow, day: date, now: datetime, report: PassReport, lease: PassLease,
    ) -> None:
        start, end = day_bounds(day, self.tz)
        jobs = await self.jobs.find_jobs_by_day_range(start, end, assigned_only=True)
        groups = group_by_technician(jobs, lambda job: job.technician_id)
        technicians = await self.technicians.find_technicians(list(groups))

        async def handle(technician_id: str, tech_jobs: list[Job]) -> None:
            technician = technicians.get(technician_id)
            if not self._resolvable(technician, report, technician_id):
                return
            message = build_full_plan(
                technician, sort_jobs_for_day(tech_jobs), day, self.tz,
                update_times=self.update_times,
            )
            digest = await self.digests.create_digest(technician.id, day, window.value, now)
            await self._deliver(technician, digest, window, message, report)

        await self._run_groups("full_plan", groups, handle, report, lease)

    # ------------------------------------------------------------------
    # Delta
    # ------------------------------------------------------------------

    async def _delta_pass(
        self, window: DigestWindow, day: date, now: datetime, report: PassReport, lease: PassLease,
    ) -> None:
        events = await self.events.find_unclaimed_change_events(day)
        groups = group_by_technician(events, lambda event: event.technician_id)
        technicians = await self.technicians.find_technicians(list(groups))

        async def handle(technician_id: str, tech_events: list[ChangeEvent]) -> None:
            technician = technicians.get(technician_id)
            if not self._resolvable(technician, report, technician_id):
                return

            message = build_change_digest(technician, tech_events, day, self.tz)
            digest = await self.digests.create_digest(technician.id, day, window.value, now)
            try:
                await self._deliver(technician, digest, window, message, report)
            finally:
                # Claimed even when the send failed: no redelivery of the same events.
                claimed = await self.events.claim_change_events([e.id for e in tech_events], digest.id)
                report.claimed += claimed
                DispatchMetrics.events_claimed(window.value, claimed)

        await self._run_groups("delta", groups, handle, report, lease)
