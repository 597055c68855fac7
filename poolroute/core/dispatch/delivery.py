# poolroute/core/dispatch/delivery.py
"""
Send-and-log: one delivery attempt, one audit row.

The delivery log is written whether the send succeeds or fails, so it is
the authoritative record of what was attempted. Nothing here retries.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from poolroute.core.dispatch.digest import (
    DeliveryLogEntry,
    DeliveryRefs,
    DeliveryStatus,
    OutboundEmail,
)
from poolroute.core.ports import DeliveryLogRepository, Mailer
from poolroute.infra.logging_config import get_logger, mask_email
from poolroute.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


@dataclass
class DeliveryOutcome:
    ok: bool
    error: Optional[str] = None
    log_id: Optional[str] = None


class DeliveryService:
    def __init__(
        self,
        mailer: Mailer,
        log_repo: DeliveryLogRepository,
        *,
        timeout_seconds: float = 10.0,
    ):
        self.mailer = mailer
        self.log_repo = log_repo
        self.timeout_seconds = timeout_seconds

    async def _attempt(self, message: OutboundEmail) -> Optional[str]:
        """Returns None on success, else the error message."""
        if not message.to:
            return "No recipient address"
        try:
            await asyncio.wait_for(self.mailer.send(message), timeout=self.timeout_seconds)
            return None
        except asyncio.TimeoutError:
            return f"Send timed out after {self.timeout_seconds:g}s"
        except Exception as exc:
            return str(exc) or type(exc).__name__

    async def send_and_log(
        self,
        message: OutboundEmail,
        role: str,
        refs: Optional[DeliveryRefs] = None,
    ) -> DeliveryOutcome:
        refs = refs or DeliveryRefs()
        error = await self._attempt(message)
        status = DeliveryStatus.SENT if error is None else DeliveryStatus.FAILED

        entry = DeliveryLogEntry(
            recipient_email=message.to,
            recipient_name=message.to_name,
            recipient_role=role,
            subject=message.subject,
            body_text=message.text,
            body_html=message.html,
            status=status.value,
            error_message=error,
            sent_at=datetime.now(timezone.utc) if error is None else None,
            customer_id=refs.customer_id,
            technician_id=refs.technician_id,
            job_id=refs.job_id,
            digest_id=refs.digest_id,
            metadata=dict(refs.metadata),
        )
        log_id = await self.log_repo.create_delivery_log_entry(entry)
        DispatchMetrics.delivery(role, status.value)

        if error is None:
            logger.info(
                f"Delivered {role} email to {mask_email(message.to)}: {message.subject}",
                extra={"digest_id": refs.digest_id, "job_id": refs.job_id},
            )
        else:
            logger.warning(
                f"Delivery to {mask_email(message.to)} failed: {error}",
                extra={"digest_id": refs.digest_id, "job_id": refs.job_id},
            )
        return DeliveryOutcome(ok=error is None, error=error, log_id=log_id)
