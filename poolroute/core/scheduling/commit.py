# poolroute/core/scheduling/commit.py
"""
Bulk commit protocol and the operator-facing edit session.

A commit flattens the PendingEditTracker into one batch and hands it to a
``JobUpdateGateway``. Only a confirmed success clears the tracker and
promotes the proposed ordering to confirmed; on failure both are left as
they are so the operator can retry the same commit.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol

from poolroute.core.errors import RouteError
from poolroute.core.scheduling.domain import Job
from poolroute.core.scheduling.ordering import MoveResult, OrderingStore, Position
from poolroute.core.scheduling.pending import JobPatch, JobUpdate, PendingEditTracker
from poolroute.infra.logging_config import get_logger

logger = get_logger(__name__)


class JobUpdateGateway(Protocol):
    async def update_jobs(self, updates: list[JobUpdate]) -> int:
        """Persist a batch atomically. Returns the number of jobs updated; raises on rejection."""
        ...


@dataclass
class CommitResult:
    ok: bool
    count: int = 0
    error: Optional[str] = None


class BulkCommitter:
    """Submits everything in a tracker as one batch."""

    def __init__(
        self,
        tracker: PendingEditTracker,
        store: OrderingStore,
        gateway: JobUpdateGateway,
    ):
        self.tracker = tracker
        self.store = store
        self.gateway = gateway

    async def commit(self) -> CommitResult:
        updates = self.tracker.flatten()
        if not updates:
            return CommitResult(ok=True, count=0)

        try:
            count = await self.gateway.update_jobs(updates)
        except RouteError as e:
            logger.warning(f"Bulk commit rejected ({len(updates)} jobs): {e.detail}")
            return CommitResult(ok=False, error=e.detail)
        except Exception as e:
            logger.error(f"Bulk commit failed ({len(updates)} jobs): {e}", exc_info=True)
            return CommitResult(ok=False, error=str(e))

        self.store.confirm([u.job_id for u in updates])
        self.tracker.clear()
        logger.info(f"Bulk commit ok: {len(updates)} jobs")
        return CommitResult(ok=True, count=count)


class RouteEditSession:
    """
    One operator's interactive editing of the route calendar.

    Moves are only accepted in edit mode and stay pending until ``save()``.
    A technician assignment outside edit mode is committed on its own
    straight away.
    """

    def __init__(self, store: OrderingStore, gateway: JobUpdateGateway):
        self.store = store
        self.tracker = PendingEditTracker()
        self.committer = BulkCommitter(self.tracker, store, gateway)
        self.edit_mode = False
        self.last_error: Optional[str] = None

    @property
    def has_pending_edits(self) -> bool:
        return len(self.tracker) > 0

    def enter_edit_mode(self) -> None:
        self.edit_mode = True

    def move_job(
        self,
        job_id: str,
        target_day: date,
        *,
        anchor_id: Optional[str] = None,
        position: Position = "before",
    ) -> Optional[MoveResult]:
        if not self.edit_mode:
            return None
        result = self.store.move(job_id, target_day, anchor_id=anchor_id, position=position)
        self.tracker.record_many(result.patches)
        return result

    async def assign_technician(self, job_id: str, technician_id: Optional[str]) -> CommitResult:
        job = self.store.get(job_id)
        if job is None:
            return CommitResult(ok=False, error=f"Job {job_id} not found")

        if self.edit_mode:
            self.store.update(job_id, technician_id=technician_id)
            self.tracker.record(job_id, JobPatch(technician_id=technician_id))
            return CommitResult(ok=True, count=0)

        # Outside edit mode the assignment is its own single-job commit.
        single = PendingEditTracker()
        single.record(job_id, JobPatch(technician_id=technician_id))
        self.store.update(job_id, technician_id=technician_id)
        result = await BulkCommitter(single, self.store, self.committer.gateway).commit()
        if not result.ok:
            self.store.update(job_id, technician_id=job.technician_id)
            self.last_error = result.error
        return result

    async def save(self) -> CommitResult:
        result = await self.committer.commit()
        self.last_error = None if result.ok else result.error
        return result

    async def toggle_edit_mode(self) -> CommitResult:
        """Enter edit mode, or commit and leave it (staying in on failure)."""
        if not self.edit_mode:
            self.edit_mode = True
            return CommitResult(ok=True)
        result = await self.save()
        if result.ok:
            self.edit_mode = False
        return result

    def discard(self) -> None:
        self.tracker.clear()
        self.store.rollback()
        self.edit_mode = False
        self.last_error = None

    def jobs_for_day(self, day: date) -> list[Job]:
        return self.store.jobs_for_day(day)
