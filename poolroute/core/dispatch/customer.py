# poolroute/core/dispatch/customer.py
"""
Customer notification queue drain.

Each poll takes a bounded batch of QUEUED notifications of the emailable
event types and finalizes every one of them as SENT or FAILED. A missing
or unknown job reference is a permanent failure: the notification is
failed without a send attempt or a delivery-log row.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Iterable

from poolroute.core.dispatch.delivery import DeliveryService
from poolroute.core.dispatch.digest import DeliveryRefs, RecipientRole
from poolroute.core.dispatch.notifications import (
    CUSTOMER_EMAIL_EVENTS,
    Notification,
    NotificationStatus,
)
from poolroute.core.dispatch.templates import build_customer_email
from poolroute.core.errors import InvalidPayloadError
from poolroute.core.ports import JobRepository, NotificationRepository
from poolroute.infra.logging_config import get_logger
from poolroute.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


@dataclass
class DrainReport:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "errors": self.errors,
        }


class CustomerNotificationDispatcher:
    def __init__(
        self,
        notifications: NotificationRepository,
        jobs: JobRepository,
        delivery: DeliveryService,
        *,
        tz: tzinfo,
        batch_size: int = 30,
        event_types: Iterable[str] = CUSTOMER_EMAIL_EVENTS,
    ):
        self.notifications = notifications
        self.jobs = jobs
        self.delivery = delivery
        self.tz = tz
        self.batch_size = batch_size
        self.event_types = tuple(event_types)

    async def drain(self) -> DrainReport:
        report = DrainReport()
        batch = await self.notifications.find_queued_notifications(self.batch_size, self.event_types)

        for notification in batch:
            report.processed += 1
            try:
                ok = await self._process(notification)
            except Exception as exc:
                # Row stays QUEUED and is picked up again by the next poll.
                report.errors += 1
                DispatchMetrics.group_crashed("customer")
                logger.error(
                    f"Customer notification {notification.id} crashed: {exc}",
                    extra={"notification_id": notification.id},
                    exc_info=True,
                )
                continue

            if ok:
                report.sent += 1
            else:
                report.failed += 1

        if batch:
            logger.info(
                f"Customer notifications drained: processed={report.processed}, "
                f"sent={report.sent}, failed={report.failed}, errors={report.errors}"
            )
        return report

    async def _fail(self, notification: Notification, reason: str) -> bool:
        await self.notifications.update_notification_status(
            notification.id, NotificationStatus.FAILED.value,
        )
        DispatchMetrics.customer_notification(NotificationStatus.FAILED.value)
        logger.warning(
            f"Customer notification {notification.id} failed: {reason}",
            extra={"notification_id": notification.id},
        )
        return False

    async def _process(self, notification: Notification) -> bool:
        try:
            payload = notification.decoded()
        except InvalidPayloadError as e:
            return await self._fail(notification, e.detail)

        job = await self.jobs.get_job(payload.job_id)
        if job is None:
            return await self._fail(notification, f"job {payload.job_id} not found")

        outcome = await self.delivery.send_and_log(
            build_customer_email(notification.event_type, job, self.tz),
            RecipientRole.CUSTOMER.value,
            DeliveryRefs(
                customer_id=job.customer_id,
                job_id=job.id,
                metadata={
                    "notificationId": notification.id,
                    "eventType": notification.event_type,
                },
            ),
        )

        status = NotificationStatus.SENT if outcome.ok else NotificationStatus.FAILED
        await self.notifications.update_notification_status(
            notification.id,
            status.value,
            datetime.now(self.tz) if outcome.ok else None,
        )
        DispatchMetrics.customer_notification(status.value)
        return outcome.ok
