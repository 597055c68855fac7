# poolroute/infra/pg_job_repo_async.py
"""
Async PostgreSQL job repository (asyncpg).

Jobs are always read with their customer and property joined in, so the
digest and email templates never need a second query.
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Iterable

from poolroute.core.scheduling.domain import Job, JobDraft, ServiceTier, Technician
from poolroute.infra.db_resilience_async import safe_db_conn
from poolroute.infra.logging_config import get_logger
from poolroute.infra.metrics import inc_counter

logger = get_logger(__name__)

_JOB_SELECT = """
    SELECT j.*,
           c.name  AS customer_name,
           c.email AS customer_email,
           p.address AS address
    FROM jobs j
    JOIN customers c ON c.id = j.customer_id
    JOIN properties p ON p.id = j.property_id
"""


def as_uuid(value: Any) -> uuid.UUID | None:
    """Parse an id coming from a payload or request; None if it is not a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _json_value(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _str_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


def _row_to_job(row) -> Job:
    """Convert an asyncpg Record to a Job dataclass."""
    return Job(
        id=str(row["id"]),
        scheduled_date=row["scheduled_date"],
        status=row["status"],
        technician_id=_str_or_none(row["technician_id"]),
        sort_order=row["sort_order"],
        priority=row["priority"],
        kind=row["kind"],
        service_type=row["service_type"],
        service_tier_id=_str_or_none(row["service_tier_id"]),
        checklist=_json_value(row["checklist"], []),
        notes=row["notes"],
        estimated_duration_minutes=row["estimated_duration_minutes"],
        customer_id=_str_or_none(row["customer_id"]),
        customer_name=row.get("customer_name") or "",
        customer_email=row.get("customer_email"),
        property_id=_str_or_none(row["property_id"]),
        address=row.get("address") or "",
    )


def _row_to_tier(row) -> ServiceTier:
    return ServiceTier(
        id=str(row["id"]),
        name=row["name"],
        checklist=[str(item) for item in _json_value(row["checklist"], [])],
        is_default=row["is_default"],
    )


class AsyncPostgresJobRepository:
    """Jobs of the route calendar."""

    async def find_jobs_by_day_range(
        self,
        start: datetime,
        end: datetime,
        *,
        assigned_only: bool = False,
    ) -> list[Job]:
        """Jobs in ``[start, end)``, ordered by scheduled time."""
        assigned = "AND j.technician_id IS NOT NULL" if assigned_only else ""
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                f"""
                {_JOB_SELECT}
                WHERE j.scheduled_date >= $1 AND j.scheduled_date < $2
                {assigned}
                ORDER BY j.scheduled_date
                """,
                start,
                end,
            )
            return [_row_to_job(row) for row in rows]

    async def get_job(self, job_id: str) -> Job | None:
        job_uuid = as_uuid(job_id)
        if job_uuid is None:
            return None
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(f"{_JOB_SELECT} WHERE j.id = $1", job_uuid)
            return _row_to_job(row) if row else None

    async def get_jobs(self, job_ids: Iterable[str]) -> dict[str, Job]:
        ids = [u for u in (as_uuid(j) for j in job_ids) if u is not None]
        if not ids:
            return {}
        async with safe_db_conn() as conn:
            rows = await conn.fetch(f"{_JOB_SELECT} WHERE j.id = ANY($1::uuid[])", ids)
            jobs = [_row_to_job(row) for row in rows]
            return {job.id: job for job in jobs}

    async def create_job(self, draft: JobDraft) -> Job:
        async with safe_db_conn(autocommit=False) as conn:
            job_id = await conn.fetchval(
                """
                INSERT INTO jobs (
                  customer_id, property_id, technician_id, scheduled_date, sort_order,
                  status, priority, kind, service_type, service_tier_id, checklist,
                  notes, estimated_duration_minutes
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb, $12, $13)
                RETURNING id
                """,
                draft.customer_id,
                draft.property_id,
                draft.technician_id,
                draft.scheduled_date,
                draft.sort_order,
                draft.status,
                draft.priority,
                draft.kind,
                draft.service_type,
                draft.service_tier_id,
                json.dumps(draft.checklist),
                draft.notes,
                draft.estimated_duration_minutes,
            )
            row = await conn.fetchrow(f"{_JOB_SELECT} WHERE j.id = $1", job_id)
            job = _row_to_job(row)

        logger.debug(
            f"Job created: id={job.id[:8]}, scheduled={job.scheduled_date.isoformat()}",
            extra={"job_id": job.id, "technician_id": job.technician_id},
        )
        inc_counter("jobs_created")
        return job

    async def update_jobs(self, jobs: list[Job]) -> int:
        """Write schedule, order, technician and status for all jobs in one transaction."""
        if not jobs:
            return 0
        updated = 0
        async with safe_db_conn(autocommit=False) as conn:
            for job in jobs:
                result = await conn.execute(
                    """
                    UPDATE jobs
                    SET scheduled_date = $2,
                        sort_order = $3,
                        technician_id = $4,
                        status = $5,
                        updated_at = now()
                    WHERE id = $1
                    """,
                    job.id,
                    job.scheduled_date,
                    job.sort_order,
                    job.technician_id,
                    job.status,
                )
                updated += int(result.split()[-1]) if result else 0
        return updated

    async def count_jobs_for_technician_on_day(
        self,
        technician_id: str,
        start: datetime,
        end: datetime,
        excluding_job_id: str,
    ) -> int:
        async with safe_db_conn() as conn:
            return await conn.fetchval(
                """
                SELECT count(*)::int FROM jobs
                WHERE technician_id = $1
                  AND scheduled_date >= $2 AND scheduled_date < $3
                  AND id <> $4
                """,
                as_uuid(technician_id),
                start,
                end,
                as_uuid(excluding_job_id),
            )

    async def get_service_tier(self, tier_id: str | None) -> ServiceTier | None:
        async with safe_db_conn() as conn:
            tier_uuid = as_uuid(tier_id) if tier_id else None
            if tier_uuid is not None:
                row = await conn.fetchrow("SELECT * FROM service_tiers WHERE id = $1", tier_uuid)
                if row:
                    return _row_to_tier(row)
            row = await conn.fetchrow(
                "SELECT * FROM service_tiers ORDER BY is_default DESC, created_at LIMIT 1"
            )
            return _row_to_tier(row) if row else None


class AsyncPostgresTechnicianDirectory:
    """Technician names and delivery addresses."""

    async def find_technicians(self, technician_ids: Iterable[str]) -> dict[str, Technician]:
        ids = [u for u in (as_uuid(t) for t in technician_ids) if u is not None]
        if not ids:
            return {}
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                "SELECT id, full_name, email FROM technicians WHERE id = ANY($1::uuid[])",
                ids,
            )
            return {
                str(row["id"]): Technician(id=str(row["id"]), full_name=row["full_name"], email=row["email"])
                for row in rows
            }


# Global singletons
_job_repo: AsyncPostgresJobRepository | None = None
_technician_directory: AsyncPostgresTechnicianDirectory | None = None


def get_job_repo() -> AsyncPostgresJobRepository:
    """Get the global job repository instance."""
    global _job_repo
    if _job_repo is None:
        _job_repo = AsyncPostgresJobRepository()
    return _job_repo


def get_technician_directory() -> AsyncPostgresTechnicianDirectory:
    global _technician_directory
    if _technician_directory is None:
        _technician_directory = AsyncPostgresTechnicianDirectory()
    return _technician_directory
