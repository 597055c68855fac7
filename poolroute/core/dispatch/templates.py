# poolroute/core/dispatch/templates.py
"""
Plain-text message templates for technician digests and customer emails.

All timestamps are rendered in the dispatch zone passed by the caller.
"""
from __future__ import annotations

from datetime import date, datetime, time, tzinfo
from typing import Iterable, Optional

from poolroute.core.dispatch.digest import OutboundEmail
from poolroute.core.dispatch.events import ChangeEvent, ChangeType
from poolroute.core.dispatch.notifications import NotificationEvent
from poolroute.core.scheduling.domain import Job, Technician

CUSTOMER_FALLBACK = "Customer"
ADDRESS_FALLBACK = "Address pending"
TIME_FALLBACK = "time pending"


def format_date_time(value: datetime, tz: tzinfo) -> str:
    """``Jun 01, 2024 09:00 AM``"""
    return value.astimezone(tz).strftime("%b %d, %Y %I:%M %p")


def format_date(value: date | datetime, tz: Optional[tzinfo] = None) -> str:
    """``06/01/2024``"""
    if isinstance(value, datetime) and tz is not None:
        value = value.astimezone(tz)
    return value.strftime("%m/%d/%Y")


def format_clock(value: time) -> str:
    """``12:00 PM``, ``9:00 PM``"""
    return value.strftime("%I:%M %p").lstrip("0")


def _numbered(lines: Iterable[str]) -> list[str]:
    return [f"{index}. {line}" for index, line in enumerate(lines, start=1)]


# ============================================================================
# TECHNICIAN DIGESTS
# ============================================================================

def build_route_line(job: Job, tz: tzinfo) -> str:
    return f"{format_date_time(job.scheduled_date, tz)} - {job.customer_name} - {job.address}"


def build_change_line(event: ChangeEvent, tz: tzinfo) -> str:
    customer = event.customer_name or CUSTOMER_FALLBACK
    address = event.address or ADDRESS_FALLBACK
    to_time = format_date_time(event.to_time, tz) if event.to_time else None
    from_time = format_date_time(event.from_time, tz) if event.from_time else None

    change_type = event.change_type
    if change_type == ChangeType.ROUTE_ASSIGNED.value:
        return f"New route assigned: {customer} - {address} ({to_time})"
    if change_type == ChangeType.JOB_ASSIGNED.value:
        return f"Job assigned: {customer} - {address} ({to_time})"
    if change_type == ChangeType.JOB_UNASSIGNED.value:
        return f"Job removed: {customer} - {address}"
    if change_type == ChangeType.ROUTE_REORDERED.value:
        return f"Order adjusted: {customer} - {address}"
    if change_type == ChangeType.JOB_RESCHEDULED.value:
        return f"Rescheduled: {customer} - {address} ({from_time} -> {to_time})"
    return f"Updated: {customer} - {address} ({to_time or TIME_FALLBACK})"


def build_full_plan(
    technician: Technician,
    jobs: list[Job],
    day: date,
    tz: tzinfo,
    *,
    update_times: Iterable[time] = (),
) -> OutboundEmail:
    """Morning digest: the technician's whole day, in visit order."""
    label = format_date(day)
    lines = [
        f"Hello {technician.full_name},",
        "",
        f"Here is your route for today ({label}):",
        *_numbered(build_route_line(job, tz) for job in jobs),
        "",
    ]
    times = [format_clock(t) for t in update_times]
    if times:
        lines.append(f"You will receive updates at {' and '.join(times)} if anything changes.")
    return OutboundEmail(
        to=technician.email or "",
        to_name=technician.full_name,
        subject=f"Route - {technician.full_name} - {label}",
        text="\n".join(lines),
    )


def build_change_digest(
    technician: Technician,
    events: list[ChangeEvent],
    day: date,
    tz: tzinfo,
) -> OutboundEmail:
    """Delta digest: one line per unclaimed change event."""
    label = format_date(day)
    lines = [
        f"Hello {technician.full_name},",
        "",
        f"Changes detected on your route for {label}:",
        *_numbered(build_change_line(event, tz) for event in events),
        "",
        "If you need clarification, please contact the administrator.",
    ]
    return OutboundEmail(
        to=technician.email or "",
        to_name=technician.full_name,
        subject=f"Route changes - {technician.full_name} - {label}",
        text="\n".join(lines),
    )


# ============================================================================
# CUSTOMER EMAILS
# ============================================================================

def build_customer_email(event_type: str, job: Job, tz: tzinfo) -> OutboundEmail:
    scheduled_label = format_date_time(job.scheduled_date, tz)
    day_label = format_date(job.scheduled_date, tz)

    if event_type == NotificationEvent.SERVICE_RESCHEDULED.value:
        subject = f"Service rescheduled - {day_label}"
        lines = [
            f"Hello {job.customer_name},",
            "",
            f"Your service has been rescheduled for {scheduled_label}.",
            "We apologize for the inconvenience and appreciate your understanding.",
            "If you have any questions, please reply to this email.",
            "",
            f"Address: {job.address}",
        ]
    else:
        subject = f"Service scheduled - {day_label}"
        lines = [
            f"Hello {job.customer_name},",
            "",
            f"Your service is scheduled for {scheduled_label}.",
            "If you need to change the date, please contact us.",
            "",
            f"Address: {job.address}",
        ]

    return OutboundEmail(
        to=job.customer_email or "",
        to_name=job.customer_name,
        subject=subject,
        text="\n".join(lines),
    )
