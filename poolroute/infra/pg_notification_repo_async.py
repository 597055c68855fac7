# poolroute/infra/pg_notification_repo_async.py
"""Async PostgreSQL customer notification queue (asyncpg)."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Iterable

from poolroute.core.dispatch.notifications import NewNotification, Notification
from poolroute.infra.db_resilience_async import safe_db_conn
from poolroute.infra.logging_config import get_logger
from poolroute.infra.metrics import inc_counter

logger = get_logger(__name__)


def _row_to_notification(row) -> Notification:
    payload = row["payload"]
    if isinstance(payload, str):
        payload = json.loads(payload)
    return Notification(
        id=str(row["id"]),
        customer_id=str(row["customer_id"]) if row["customer_id"] else None,
        event_type=row["event_type"],
        status=row["status"],
        payload=payload,
        severity=row["severity"],
        created_at=row["created_at"],
        sent_at=row["sent_at"],
    )


class AsyncPostgresNotificationRepository:
    async def create_notification(self, notification: NewNotification) -> str:
        async with safe_db_conn() as conn:
            notification_id = await conn.fetchval(
                """
                INSERT INTO notifications (customer_id, event_type, severity, payload)
                VALUES ($1, $2, $3, $4::jsonb)
                RETURNING id
                """,
                notification.customer_id,
                notification.event_type,
                notification.severity,
                json.dumps(notification.payload.to_json()),
            )
        inc_counter("notifications_queued", event_type=notification.event_type)
        return str(notification_id)

    async def find_queued_notifications(
        self,
        limit: int,
        event_types: Iterable[str],
    ) -> list[Notification]:
        """Oldest QUEUED email notifications of the given event types."""
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM notifications
                WHERE status = 'QUEUED'
                  AND channel = 'EMAIL'
                  AND event_type = ANY($2::text[])
                ORDER BY created_at
                LIMIT $1
                """,
                limit,
                list(event_types),
            )
            return [_row_to_notification(row) for row in rows]

    async def update_notification_status(
        self,
        notification_id: str,
        status: str,
        sent_at: datetime | None = None,
    ) -> None:
        async with safe_db_conn() as conn:
            await conn.execute(
                "UPDATE notifications SET status = $2, sent_at = $3 WHERE id = $1",
                notification_id,
                status,
                sent_at,
            )

    async def count_by_status(self) -> dict[str, int]:
        """Return {status: count} for admin visibility."""
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                "SELECT status, count(*)::int AS cnt FROM notifications GROUP BY status"
            )
            return {row["status"]: row["cnt"] for row in rows}

    async def count_stale_queued(self, older_than_minutes: int) -> int:
        async with safe_db_conn() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM notifications "
                "WHERE status = 'QUEUED' AND created_at < now() - make_interval(mins => $1)",
                older_than_minutes,
            )


# Global singleton
_notification_repo: AsyncPostgresNotificationRepository | None = None


def get_notification_repo() -> AsyncPostgresNotificationRepository:
    global _notification_repo
    if _notification_repo is None:
        _notification_repo = AsyncPostgresNotificationRepository()
    return _notification_repo
