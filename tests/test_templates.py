# tests/test_templates.py
"""Tests for digest and customer email rendering"""
from __future__ import annotations

from datetime import datetime, time, timezone

from conftest import DAY, TZ, at, make_job
from poolroute.core.dispatch.events import (
    AssignedPayload,
    ChangeEvent,
    GenericPayload,
    ReorderedPayload,
    RescheduledPayload,
    UnassignedPayload,
)
from poolroute.core.dispatch.templates import (
    build_change_digest,
    build_change_line,
    build_customer_email,
    build_full_plan,
    format_clock,
    format_date,
    format_date_time,
)
from poolroute.core.scheduling.domain import Technician

TECH = Technician(id="tech-1", full_name="Ana Reyes", email="ana@example.com")


def _event(change_type, payload, **live):
    return ChangeEvent(
        id="e1",
        technician_id="tech-1",
        job_id="j1",
        route_date=DAY,
        change_type=change_type,
        payload=payload,
        **live,
    )


class TestFormatting:
    def test_date_time_in_dispatch_zone(self):
        assert format_date_time(at(DAY, 9), TZ) == "Jun 03, 2024 09:00 AM"

    def test_utc_input_is_converted(self):
        utc = datetime(2024, 6, 3, 17, 0, tzinfo=timezone.utc)
        assert format_date_time(utc, TZ) == "Jun 03, 2024 01:00 PM"

    def test_date_label(self):
        assert format_date(DAY) == "06/03/2024"

    def test_clock(self):
        assert format_clock(time(12, 0)) == "12:00 PM"
        assert format_clock(time(21, 0)) == "9:00 PM"


class TestChangeLines:
    def test_route_assigned(self):
        event = _event("ROUTE_ASSIGNED", AssignedPayload(
            customer_name="Lopez", address="12 Palm Ave", scheduled_date=at(DAY, 9),
        ))
        assert build_change_line(event, TZ) == "New route assigned: Lopez - 12 Palm Ave (Jun 03, 2024 09:00 AM)"

    def test_job_assigned(self):
        event = _event("JOB_ASSIGNED", AssignedPayload(
            customer_name="Lopez", address="12 Palm Ave", scheduled_date=at(DAY, 14, 30),
        ))
        assert build_change_line(event, TZ) == "Job assigned: Lopez - 12 Palm Ave (Jun 03, 2024 02:30 PM)"

    def test_job_unassigned(self):
        event = _event("JOB_UNASSIGNED", UnassignedPayload(customer_name="Lopez", address="12 Palm Ave"))
        assert build_change_line(event, TZ) == "Job removed: Lopez - 12 Palm Ave"

    def test_route_reordered(self):
        event = _event("ROUTE_REORDERED", ReorderedPayload(customer_name="Lopez", address="12 Palm Ave"))
        assert build_change_line(event, TZ) == "Order adjusted: Lopez - 12 Palm Ave"

    def test_job_rescheduled(self):
        event = _event("JOB_RESCHEDULED", RescheduledPayload(
            customer_name="Lopez",
            address="12 Palm Ave",
            from_scheduled_date=at(DAY, 9),
            to_scheduled_date=at(DAY, 13),
        ))
        assert build_change_line(event, TZ) == (
            "Rescheduled: Lopez - 12 Palm Ave (Jun 03, 2024 09:00 AM -> Jun 03, 2024 01:00 PM)"
        )

    def test_unknown_type_without_time(self):
        event = _event("MYSTERY", GenericPayload(customer_name="Lopez", address="12 Palm Ave"))
        assert build_change_line(event, TZ) == "Updated: Lopez - 12 Palm Ave (time pending)"

    def test_undecodable_payload_keeps_its_change_type_line(self):
        event = _event(
            "JOB_ASSIGNED", GenericPayload(customer_name="Lopez"),
            job_address="9 Bay Rd", job_scheduled_date=at(DAY, 10),
        )
        assert build_change_line(event, TZ) == "Job assigned: Lopez - 9 Bay Rd (Jun 03, 2024 10:00 AM)"

    def test_missing_snapshot_uses_live_job_then_placeholders(self):
        live = _event(
            "JOB_ASSIGNED", AssignedPayload(),
            job_customer_name="Live Co", job_address="9 Bay Rd", job_scheduled_date=at(DAY, 10),
        )
        empty = _event("JOB_UNASSIGNED", UnassignedPayload())

        assert build_change_line(live, TZ) == "Job assigned: Live Co - 9 Bay Rd (Jun 03, 2024 10:00 AM)"
        assert build_change_line(empty, TZ) == "Job removed: Customer - Address pending"


class TestDigests:
    def test_full_plan(self):
        jobs = [
            make_job("a", hour=8, customer_name="Lopez", address="12 Palm Ave"),
            make_job("b", hour=10, customer_name="Kim", address="4 Bay Rd"),
        ]

        message = build_full_plan(TECH, jobs, DAY, TZ, update_times=(time(12, 0), time(21, 0)))

        assert message.to == "ana@example.com"
        assert message.subject == "Route - Ana Reyes - 06/03/2024"
        assert message.text.splitlines() == [
            "Hello Ana Reyes,",
            "",
            "Here is your route for today (06/03/2024):",
            "1. Jun 03, 2024 08:00 AM - Lopez - 12 Palm Ave",
            "2. Jun 03, 2024 10:00 AM - Kim - 4 Bay Rd",
            "",
            "You will receive updates at 12:00 PM and 9:00 PM if anything changes.",
        ]

    def test_change_digest(self):
        events = [
            _event("JOB_UNASSIGNED", UnassignedPayload(customer_name="Lopez", address="12 Palm Ave")),
            _event("ROUTE_REORDERED", ReorderedPayload(customer_name="Kim", address="4 Bay Rd")),
        ]

        message = build_change_digest(TECH, events, DAY, TZ)

        assert message.subject == "Route changes - Ana Reyes - 06/03/2024"
        lines = message.text.splitlines()
        assert lines[2] == "Changes detected on your route for 06/03/2024:"
        assert lines[3] == "1. Job removed: Lopez - 12 Palm Ave"
        assert lines[4] == "2. Order adjusted: Kim - 4 Bay Rd"
        assert lines[-1] == "If you need clarification, please contact the administrator."


class TestCustomerEmails:
    def test_service_scheduled(self):
        job = make_job("a", hour=9, customer_name="Lopez", address="12 Palm Ave", customer_email="l@example.com")

        message = build_customer_email("SERVICE_SCHEDULED", job, TZ)

        assert message.to == "l@example.com"
        assert message.subject == "Service scheduled - 06/03/2024"
        assert "Your service is scheduled for Jun 03, 2024 09:00 AM." in message.text
        assert "Address: 12 Palm Ave" in message.text

    def test_service_rescheduled(self):
        job = make_job("a", hour=15, customer_name="Lopez", address="12 Palm Ave")

        message = build_customer_email("SERVICE_RESCHEDULED", job, TZ)

        assert message.subject == "Service rescheduled - 06/03/2024"
        assert "Your service has been rescheduled for Jun 03, 2024 03:00 PM." in message.text
