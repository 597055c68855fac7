# tests/test_customer_dispatcher.py
"""
Tests for the customer notification drain:
- each queued notification ends SENT or FAILED
- bad payloads and missing jobs fail without a send or a delivery log
- a crash leaves the row QUEUED for the next poll
"""
from __future__ import annotations

import pytest

from conftest import TZ, FakeJobRepository, FakeNotificationRepository, make_job
from poolroute.core.dispatch.customer import CustomerNotificationDispatcher
from poolroute.core.dispatch.delivery import DeliveryService
from poolroute.core.dispatch.notifications import (
    CUSTOMER_EMAIL_EVENTS,
    Notification,
    ServiceScheduledPayload,
    decode_notification_payload,
)
from poolroute.core.errors import InvalidPayloadError
from poolroute.infra.metrics import get_metrics_collector


def _notification(notification_id, event_type="SERVICE_SCHEDULED", payload=None):
    return Notification(
        id=notification_id,
        customer_id="cust-a",
        event_type=event_type,
        status="QUEUED",
        payload={"jobId": "a"} if payload is None else payload,
    )


def _dispatcher(queued, mailer, delivery_logs, jobs=None, batch_size=30):
    repo = FakeNotificationRepository(queued)
    jobs = jobs if jobs is not None else FakeJobRepository([
        make_job("a", hour=9, customer_name="Lopez", address="12 Palm Ave", customer_email="lopez@example.com"),
    ])
    dispatcher = CustomerNotificationDispatcher(
        repo, jobs, DeliveryService(mailer, delivery_logs), tz=TZ, batch_size=batch_size,
    )
    return dispatcher, repo


class TestPayloads:
    def test_job_id_is_required(self):
        with pytest.raises(InvalidPayloadError):
            decode_notification_payload("SERVICE_SCHEDULED", {"scheduledDate": "2024-06-03T09:00:00Z"})

    def test_unknown_event_type(self):
        with pytest.raises(InvalidPayloadError):
            decode_notification_payload("COUPON", {"jobId": "a"})

    def test_decodes_variant(self):
        payload = decode_notification_payload("SERVICE_SCHEDULED", {"jobId": "a", "technicianId": "tech-1"})
        assert isinstance(payload, ServiceScheduledPayload)
        assert payload.technician_id == "tech-1"


class TestDrain:
    @pytest.mark.asyncio
    async def test_success_marks_sent_and_logs_customer_delivery(self, mailer, delivery_logs):
        dispatcher, repo = _dispatcher([_notification("n1")], mailer, delivery_logs)

        report = await dispatcher.drain()

        assert report.sent == 1
        assert repo.status_of("n1") == "SENT"
        assert repo.queued[0].sent_at is not None
        (message,) = mailer.sent
        assert message.to == "lopez@example.com"
        assert message.subject == "Service scheduled - 06/03/2024"
        (entry,) = delivery_logs.entries
        assert entry.recipient_role == "CUSTOMER"
        assert entry.customer_id == "cust-a"
        assert entry.job_id == "a"
        assert entry.metadata == {"notificationId": "n1", "eventType": "SERVICE_SCHEDULED"}

    @pytest.mark.asyncio
    async def test_rescheduled_uses_rescheduled_template(self, mailer, delivery_logs):
        dispatcher, _ = _dispatcher([_notification("n1", "SERVICE_RESCHEDULED")], mailer, delivery_logs)

        await dispatcher.drain()

        assert mailer.sent[0].subject == "Service rescheduled - 06/03/2024"

    @pytest.mark.asyncio
    async def test_missing_job_id_fails_without_log(self, mailer, delivery_logs):
        dispatcher, repo = _dispatcher([_notification("n1", payload={"foo": 1})], mailer, delivery_logs)

        report = await dispatcher.drain()

        assert report.failed == 1
        assert repo.status_of("n1") == "FAILED"
        assert mailer.sent == []
        assert delivery_logs.entries == []

    @pytest.mark.asyncio
    async def test_unknown_job_fails_without_log(self, mailer, delivery_logs):
        dispatcher, repo = _dispatcher([_notification("n1", payload={"jobId": "ghost"})], mailer, delivery_logs)

        await dispatcher.drain()

        assert repo.status_of("n1") == "FAILED"
        assert delivery_logs.entries == []
        assert get_metrics_collector().get_counter("customer_notifications_failed") == 1

    @pytest.mark.asyncio
    async def test_send_failure_marks_failed_and_logs(self, mailer, delivery_logs):
        mailer.fail_for.add("lopez@example.com")
        dispatcher, repo = _dispatcher([_notification("n1")], mailer, delivery_logs)

        report = await dispatcher.drain()

        assert report.failed == 1
        assert repo.status_of("n1") == "FAILED"
        (entry,) = delivery_logs.entries
        assert entry.status == "FAILED"
        assert repo.status_updates == [("n1", "FAILED", None)]

    @pytest.mark.asyncio
    async def test_crash_leaves_notification_queued(self, mailer, delivery_logs):
        jobs = FakeJobRepository([make_job("a")])

        async def broken(job_id):
            raise ConnectionError("connection reset")

        jobs.get_job = broken
        dispatcher, repo = _dispatcher([_notification("n1")], mailer, delivery_logs, jobs=jobs)

        report = await dispatcher.drain()

        assert report.errors == 1
        assert repo.status_of("n1") == "QUEUED"
        assert repo.status_updates == []

    @pytest.mark.asyncio
    async def test_one_bad_row_does_not_stop_the_batch(self, mailer, delivery_logs):
        dispatcher, repo = _dispatcher(
            [_notification("n1", payload="not json"), _notification("n2")],
            mailer, delivery_logs,
        )

        report = await dispatcher.drain()

        assert (report.processed, report.sent, report.failed) == (2, 1, 1)
        assert repo.status_of("n2") == "SENT"

    @pytest.mark.asyncio
    async def test_only_email_event_types_and_batch_limit(self, mailer, delivery_logs):
        queued = [_notification("r1", "ROUTE_UPDATED")] + [_notification(f"n{i}") for i in range(5)]
        dispatcher, repo = _dispatcher(queued, mailer, delivery_logs, batch_size=3)

        report = await dispatcher.drain()

        assert repo.requested_event_types == CUSTOMER_EMAIL_EVENTS
        assert report.processed == 3
        assert repo.status_of("r1") == "QUEUED"

    @pytest.mark.asyncio
    async def test_empty_queue(self, mailer, delivery_logs):
        dispatcher, _ = _dispatcher([], mailer, delivery_logs)
        report = await dispatcher.drain()
        assert report.to_dict() == {"processed": 0, "sent": 0, "failed": 0, "errors": 0}
