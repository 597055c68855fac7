# poolroute/infra/pg_dispatch_repo_async.py
"""
Async PostgreSQL repositories for the digest dispatcher (asyncpg).

- change events (``tech_digest_items``) with claim-once semantics
- digests (``tech_digests``) and per-pass leases (``dispatch_leases``)
- the append-only delivery log (``email_logs``)
"""
from __future__ import annotations

import json
from datetime import date, datetime

from poolroute.core.dispatch.digest import DeliveryLogEntry, Digest
from poolroute.core.dispatch.events import (
    ChangeEvent,
    GenericPayload,
    NewChangeEvent,
    decode_change_payload,
)
from poolroute.core.errors import InvalidPayloadError
from poolroute.infra.db_resilience_async import safe_db_conn
from poolroute.infra.logging_config import get_logger
from poolroute.infra.metrics import inc_counter
from poolroute.infra.pg_job_repo_async import as_uuid

logger = get_logger(__name__)


def _row_to_change_event(row) -> ChangeEvent:
    raw = row["payload"]
    if isinstance(raw, str):
        raw = json.loads(raw)
    try:
        payload = decode_change_payload(row["change_type"], raw)
    except InvalidPayloadError as e:
        # Still reported: the line falls back to the live job's fields.
        logger.warning(f"Change event {row['id']}: {e.detail}")
        payload = GenericPayload()

    return ChangeEvent(
        id=str(row["id"]),
        technician_id=str(row["technician_id"]),
        job_id=str(row["job_id"]) if row["job_id"] else None,
        route_date=row["route_date"],
        change_type=row["change_type"],
        payload=payload,
        digest_id=str(row["digest_id"]) if row["digest_id"] else None,
        created_at=row["created_at"],
        job_customer_name=row.get("job_customer_name"),
        job_address=row.get("job_address"),
        job_scheduled_date=row.get("job_scheduled_date"),
    )


def _row_to_digest(row) -> Digest:
    return Digest(
        id=str(row["id"]),
        technician_id=str(row["technician_id"]),
        route_date=row["route_date"],
        window=row["digest_window"],
        status=row["status"],
        scheduled_for=row["scheduled_for"],
        sent_at=row["sent_at"],
    )


class AsyncPostgresChangeEventRepository:
    """Technician change events. Claimed once, never updated otherwise, never deleted."""

    async def create_change_event(self, event: NewChangeEvent) -> str:
        async with safe_db_conn() as conn:
            event_id = await conn.fetchval(
                """
                INSERT INTO tech_digest_items (technician_id, job_id, route_date, change_type, payload)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                RETURNING id
                """,
                event.technician_id,
                event.job_id,
                event.route_date,
                event.change_type,
                json.dumps(event.payload.to_json()),
            )
        inc_counter("change_events_created", change_type=event.change_type)
        return str(event_id)

    async def find_unclaimed_change_events(self, day: date) -> list[ChangeEvent]:
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT i.*,
                       c.name AS job_customer_name,
                       p.address AS job_address,
                       j.scheduled_date AS job_scheduled_date
                FROM tech_digest_items i
                LEFT JOIN jobs j ON j.id = i.job_id
                LEFT JOIN customers c ON c.id = j.customer_id
                LEFT JOIN properties p ON p.id = j.property_id
                WHERE i.digest_id IS NULL
                  AND i.route_date = $1
                ORDER BY i.created_at
                """,
                day,
            )
            return [_row_to_change_event(row) for row in rows]

    async def claim_change_events(self, event_ids: list[str], digest_id: str) -> int:
        ids = [u for u in (as_uuid(e) for e in event_ids) if u is not None]
        if not ids:
            return 0
        async with safe_db_conn() as conn:
            result = await conn.execute(
                """
                UPDATE tech_digest_items
                SET digest_id = $2
                WHERE id = ANY($1::uuid[])
                  AND digest_id IS NULL
                """,
                ids,
                digest_id,
            )
            return int(result.split()[-1]) if result else 0


class AsyncPostgresDigestRepository:
    """Digest rows plus the per-pass lease table."""

    async def create_digest(
        self,
        technician_id: str,
        route_date: date,
        window: str,
        scheduled_for: datetime,
    ) -> Digest:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO tech_digests (technician_id, route_date, digest_window, status, scheduled_for)
                VALUES ($1, $2, $3, 'QUEUED', $4)
                RETURNING *
                """,
                technician_id,
                route_date,
                window,
                scheduled_for,
            )
            return _row_to_digest(row)

    async def update_digest_status(
        self,
        digest_id: str,
        status: str,
        sent_at: datetime | None = None,
    ) -> None:
        async with safe_db_conn() as conn:
            await conn.execute(
                "UPDATE tech_digests SET status = $2, sent_at = $3 WHERE id = $1",
                digest_id,
                status,
                sent_at,
            )

    async def acquire_lease(self, name: str, holder: str, ttl_seconds: int) -> bool:
        """
        Take the lease if it is free, expired, or already held by ``holder``.

        A single upsert: concurrent callers serialize on the primary key and
        at most one of them sees a returned row.
        """
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO dispatch_leases (name, holder, expires_at)
                VALUES ($1, $2, now() + make_interval(secs => $3))
                ON CONFLICT (name) DO UPDATE
                  SET holder = EXCLUDED.holder, expires_at = EXCLUDED.expires_at
                  WHERE dispatch_leases.expires_at < now()
                     OR dispatch_leases.holder = EXCLUDED.holder
                RETURNING holder
                """,
                name,
                holder,
                float(ttl_seconds),
            )
            return row is not None

    async def release_lease(self, name: str, holder: str) -> None:
        async with safe_db_conn() as conn:
            await conn.execute(
                "DELETE FROM dispatch_leases WHERE name = $1 AND holder = $2",
                name,
                holder,
            )


class AsyncPostgresDeliveryLogRepository:
    """Append-only delivery audit trail."""

    async def create_delivery_log_entry(self, entry: DeliveryLogEntry) -> str:
        async with safe_db_conn() as conn:
            log_id = await conn.fetchval(
                """
                INSERT INTO email_logs (
                  recipient_email, recipient_name, recipient_role, subject, body_text, body_html,
                  status, error_message, sent_at, customer_id, technician_id, job_id, digest_id,
                  metadata
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14::jsonb)
                RETURNING id
                """,
                entry.recipient_email,
                entry.recipient_name,
                entry.recipient_role,
                entry.subject,
                entry.body_text,
                entry.body_html,
                entry.status,
                (entry.error_message or "")[:2000] or None,
                entry.sent_at,
                as_uuid(entry.customer_id) if entry.customer_id else None,
                as_uuid(entry.technician_id) if entry.technician_id else None,
                as_uuid(entry.job_id) if entry.job_id else None,
                as_uuid(entry.digest_id) if entry.digest_id else None,
                json.dumps(entry.metadata),
            )
            return str(log_id)

    async def get_recent(self, limit: int = 50, status: str | None = None) -> list[dict]:
        """Recent delivery attempts for the admin endpoint."""
        async with safe_db_conn() as conn:
            if status:
                rows = await conn.fetch(
                    "SELECT * FROM email_logs WHERE status = $1 ORDER BY created_at DESC LIMIT $2",
                    status,
                    limit,
                )
            else:
                rows = await conn.fetch(
                    "SELECT * FROM email_logs ORDER BY created_at DESC LIMIT $1",
                    limit,
                )
            return [
                {
                    "id": str(row["id"]),
                    "recipient_email": row["recipient_email"],
                    "recipient_role": row["recipient_role"],
                    "subject": row["subject"],
                    "status": row["status"],
                    "error_message": row["error_message"],
                    "digest_id": str(row["digest_id"]) if row["digest_id"] else None,
                    "job_id": str(row["job_id"]) if row["job_id"] else None,
                    "created_at": row["created_at"].isoformat(),
                }
                for row in rows
            ]


# Global singletons
_change_event_repo: AsyncPostgresChangeEventRepository | None = None
_digest_repo: AsyncPostgresDigestRepository | None = None
_delivery_log_repo: AsyncPostgresDeliveryLogRepository | None = None


def get_change_event_repo() -> AsyncPostgresChangeEventRepository:
    global _change_event_repo
    if _change_event_repo is None:
        _change_event_repo = AsyncPostgresChangeEventRepository()
    return _change_event_repo


def get_digest_repo() -> AsyncPostgresDigestRepository:
    global _digest_repo
    if _digest_repo is None:
        _digest_repo = AsyncPostgresDigestRepository()
    return _digest_repo


def get_delivery_log_repo() -> AsyncPostgresDeliveryLogRepository:
    global _delivery_log_repo
    if _delivery_log_repo is None:
        _delivery_log_repo = AsyncPostgresDeliveryLogRepository()
    return _delivery_log_repo
