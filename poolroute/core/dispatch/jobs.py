# poolroute/core/dispatch/jobs.py
"""
Wiring of the dispatch passes to the PostgreSQL adapters and the scheduler.

Handlers here take no arguments so the scheduler and the admin routes can
call them the same way. Runs under ``RUN_MODE=worker`` (or ``all``).
"""
from __future__ import annotations

from poolroute.config import settings
from poolroute.core.dispatch.customer import CustomerNotificationDispatcher, DrainReport
from poolroute.core.dispatch.delivery import DeliveryService
from poolroute.core.dispatch.digest import DigestWindow, PassReport
from poolroute.core.dispatch.dispatcher import DigestDispatcher
from poolroute.core.dispatch.emitter import ChangeEventEmitter
from poolroute.core.scheduling.service import RouteService
from poolroute.infra.mailer import get_mailer
from poolroute.infra.pg_dispatch_repo_async import (
    get_change_event_repo,
    get_delivery_log_repo,
    get_digest_repo,
)
from poolroute.infra.pg_job_repo_async import get_job_repo, get_technician_directory
from poolroute.infra.pg_notification_repo_async import get_notification_repo
from poolroute.infra.scheduler import DailyAt, DispatchScheduler, Every

_digest_dispatcher: DigestDispatcher | None = None
_customer_dispatcher: CustomerNotificationDispatcher | None = None
_route_service: RouteService | None = None


def _delivery_service() -> DeliveryService:
    return DeliveryService(
        get_mailer(),
        get_delivery_log_repo(),
        timeout_seconds=settings.delivery_timeout_seconds,
    )


def get_digest_dispatcher() -> DigestDispatcher:
    global _digest_dispatcher
    if _digest_dispatcher is None:
        times = settings.digest_times()
        _digest_dispatcher = DigestDispatcher(
            get_job_repo(),
            get_technician_directory(),
            get_change_event_repo(),
            get_digest_repo(),
            _delivery_service(),
            tz=settings.tz,
            update_times=(times["MIDDAY"], times["EVENING"]),
            max_concurrency=settings.digest_max_concurrency,
            lease_ttl_seconds=settings.dispatch_lease_ttl_seconds,
        )
    return _digest_dispatcher


def get_customer_dispatcher() -> CustomerNotificationDispatcher:
    global _customer_dispatcher
    if _customer_dispatcher is None:
        _customer_dispatcher = CustomerNotificationDispatcher(
            get_notification_repo(),
            get_job_repo(),
            _delivery_service(),
            tz=settings.tz,
            batch_size=settings.customer_notification_batch_size,
        )
    return _customer_dispatcher


def get_route_service() -> RouteService:
    global _route_service
    if _route_service is None:
        _route_service = RouteService(
            get_job_repo(),
            ChangeEventEmitter(get_job_repo(), get_change_event_repo(), tz=settings.tz),
            get_notification_repo(),
            tz=settings.tz,
        )
    return _route_service


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def run_customer_notifications() -> DrainReport:
    return await get_customer_dispatcher().drain()


async def run_morning_digest() -> PassReport:
    return await get_digest_dispatcher().run_full_plan()


async def run_midday_digest() -> PassReport:
    return await get_digest_dispatcher().run_delta(DigestWindow.MIDDAY)


async def run_evening_digest() -> PassReport:
    return await get_digest_dispatcher().run_delta(DigestWindow.EVENING)


def register_dispatch_tasks(scheduler: DispatchScheduler) -> None:
    """The fixed daily schedule plus the customer queue poll."""
    tz = settings.tz
    times = settings.digest_times()
    scheduler.register("customer", Every(settings.customer_notification_poll_seconds), run_customer_notifications)
    scheduler.register("morning-digest", DailyAt(times["MORNING"], tz), run_morning_digest)
    scheduler.register("midday-digest", DailyAt(times["MIDDAY"], tz), run_midday_digest)
    scheduler.register("evening-digest", DailyAt(times["EVENING"], tz), run_evening_digest)
