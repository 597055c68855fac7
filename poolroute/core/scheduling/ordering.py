# poolroute/core/scheduling/ordering.py
"""
Day-indexed job ordering.

Every job belongs to a route day (its scheduled date in the dispatch zone)
and carries a ``sort_order`` rank within that day. ``plan_move`` is the
reorder algorithm: pure, it only reads the jobs it is given and returns
the new job states plus the minimal set of patches to persist.
``OrderingStore`` holds the editing session's confirmed and proposed
copies of the jobs and applies planned moves to the proposed side.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date, tzinfo
from typing import Iterable, Iterator, Literal, Optional

from poolroute.core.errors import NotFoundError
from poolroute.core.scheduling.domain import Job, move_to_day, route_day
from poolroute.core.scheduling.pending import JobPatch

Position = Literal["before", "after"]


def _order_key(job: Job):
    # Ranked jobs first by rank, then unranked jobs by clock time.
    if job.sort_order is not None:
        return (0, job.sort_order)
    return (1, job.scheduled_date)


def sort_jobs_for_day(jobs: Iterable[Job]) -> list[Job]:
    """Visit order for one day: ``sort_order`` ascending, scheduled time as fallback."""
    return sorted(jobs, key=_order_key)


def group_by_day(jobs: Iterable[Job], tz: tzinfo) -> dict[date, list[Job]]:
    days: dict[date, list[Job]] = defaultdict(list)
    for job in jobs:
        days[route_day(job.scheduled_date, tz)].append(job)
    return days


@dataclass
class MoveResult:
    """Outcome of a planned move."""
    job_id: str
    source_day: date
    target_day: date
    updated_jobs: list[Job] = field(default_factory=list)
    patches: dict[str, JobPatch] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.patches)


def plan_move(
    jobs: Iterable[Job],
    job_id: str,
    target_day: date,
    tz: tzinfo,
    *,
    anchor_id: Optional[str] = None,
    position: Position = "before",
) -> MoveResult:
    """
    Move ``job_id`` to ``target_day``, before or after ``anchor_id``
    (appended when there is no anchor or it is not on that day).

    Source and target days are re-indexed ``0..n-1``; only jobs whose
    ``sort_order`` (or, for the moved job, date) actually changes are
    returned. Inputs are not mutated.
    """
    by_id = {job.id: job for job in jobs}
    current = by_id.get(job_id)
    if current is None:
        raise NotFoundError(f"Job {job_id} is not in the ordering store")

    source_day = route_day(current.scheduled_date, tz)
    result = MoveResult(job_id=job_id, source_day=source_day, target_day=target_day)

    if anchor_id == job_id:
        return result

    updated: dict[str, Job] = {}
    moved = current
    if source_day != target_day:
        moved = replace(current, scheduled_date=move_to_day(current.scheduled_date, target_day, tz))
        updated[job_id] = moved
        result.patches[job_id] = JobPatch(scheduled_date=moved.scheduled_date)

    days = group_by_day(by_id.values(), tz)
    source_list = [j for j in sort_jobs_for_day(days.get(source_day, [])) if j.id != job_id]
    if source_day == target_day:
        target_list = source_list
    else:
        target_list = [j for j in sort_jobs_for_day(days.get(target_day, [])) if j.id != job_id]

    index = len(target_list)
    if anchor_id is not None:
        for i, job in enumerate(target_list):
            if job.id == anchor_id:
                index = i + 1 if position == "after" else i
                break

    ordered_target = target_list[:index] + [moved] + target_list[index:]

    def apply_order(ordered: list[Job]) -> None:
        for rank, job in enumerate(ordered):
            latest = updated.get(job.id, job)
            if latest.sort_order == rank:
                continue
            updated[job.id] = replace(latest, sort_order=rank)
            previous = result.patches.get(job.id, JobPatch())
            result.patches[job.id] = previous.merge(JobPatch(sort_order=rank))

    if source_day != target_day:
        apply_order(source_list)
    apply_order(ordered_target)

    result.updated_jobs = list(updated.values())
    return result


class OrderingStore:
    """
    In-memory jobs of one editing session, in two phases:

    - *proposed*: what the operator sees, including uncommitted moves
    - *confirmed*: the last state known to be persisted

    ``confirm()`` promotes proposed to confirmed after a successful commit;
    ``rollback()`` throws proposed edits away.
    """

    def __init__(self, jobs: Iterable[Job], tz: tzinfo):
        self._tz = tz
        self._confirmed: dict[str, Job] = {job.id: replace(job) for job in jobs}
        self._proposed: dict[str, Job] = {k: replace(v) for k, v in self._confirmed.items()}

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def get(self, job_id: str) -> Optional[Job]:
        return self._proposed.get(job_id)

    def confirmed(self, job_id: str) -> Optional[Job]:
        return self._confirmed.get(job_id)

    def day_of(self, job_id: str) -> date:
        job = self._proposed.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} is not in the ordering store")
        return route_day(job.scheduled_date, self._tz)

    def jobs_for_day(self, day: date) -> list[Job]:
        return sort_jobs_for_day(
            job for job in self._proposed.values()
            if route_day(job.scheduled_date, self._tz) == day
        )

    def days(self) -> list[date]:
        return sorted(group_by_day(self._proposed.values(), self._tz))

    def plan_move(
        self,
        job_id: str,
        target_day: date,
        *,
        anchor_id: Optional[str] = None,
        position: Position = "before",
    ) -> MoveResult:
        return plan_move(
            self._proposed.values(), job_id, target_day, self._tz,
            anchor_id=anchor_id, position=position,
        )

    def move(
        self,
        job_id: str,
        target_day: date,
        *,
        anchor_id: Optional[str] = None,
        position: Position = "before",
    ) -> MoveResult:
        """Plan a move and apply it to the proposed state."""
        result = self.plan_move(job_id, target_day, anchor_id=anchor_id, position=position)
        self.apply(result.updated_jobs)
        return result

    def apply(self, jobs: Iterable[Job]) -> None:
        for job in jobs:
            self._proposed[job.id] = replace(job)

    def update(self, job_id: str, **changes) -> Job:
        job = self._proposed.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} is not in the ordering store")
        job = replace(job, **changes)
        self._proposed[job_id] = job
        return job

    def add(self, job: Job) -> None:
        """Add a job that already exists in storage (e.g. just created)."""
        self._confirmed[job.id] = replace(job)
        self._proposed[job.id] = replace(job)

    def confirm(self, job_ids: Optional[Iterable[str]] = None) -> None:
        ids = list(self._proposed) if job_ids is None else list(job_ids)
        for job_id in ids:
            if job_id in self._proposed:
                self._confirmed[job_id] = replace(self._proposed[job_id])

    def rollback(self) -> None:
        self._proposed = {k: replace(v) for k, v in self._confirmed.items()}

    def is_dirty(self) -> bool:
        return self._proposed != self._confirmed

    def __len__(self) -> int:
        return len(self._proposed)

    def __iter__(self) -> Iterator[Job]:
        return iter(list(self._proposed.values()))
