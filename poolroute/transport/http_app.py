# poolroute/transport/http_app.py
"""
HTTP application of the route calendar.

Access layers:
1. Public: liveness/readiness probes
2. Protected (admin token): route calendar reads and bulk writes,
   monitoring, manual dispatch triggers
3. No error detail leaks in production
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from poolroute.config import settings
from poolroute.core.dispatch.customer import CustomerNotificationDispatcher
from poolroute.core.dispatch.digest import DigestWindow
from poolroute.core.dispatch.dispatcher import DigestDispatcher
from poolroute.core.dispatch.jobs import (
    get_customer_dispatcher,
    get_digest_dispatcher,
    get_route_service,
    register_dispatch_tasks,
)
from poolroute.core.errors import RouteError, ValidationError
from poolroute.core.scheduling.domain import day_bounds
from poolroute.core.scheduling.service import RouteService
from poolroute.infra.db_async import close_pool, init_pool
from poolroute.infra.health_checks_async import get_async_health_checker
from poolroute.infra.http_client import close_all_sessions
from poolroute.infra.logging_config import get_logger, setup_logging
from poolroute.infra.metrics import get_metrics_collector
from poolroute.infra.pg_dispatch_repo_async import AsyncPostgresDeliveryLogRepository, get_delivery_log_repo
from poolroute.infra.pg_job_repo_async import AsyncPostgresJobRepository, get_job_repo
from poolroute.infra.scheduler import DispatchScheduler
from poolroute.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)
from poolroute.transport.schemas import BulkCreateIn, BulkRescheduleIn, BulkRescheduleOut, JobOut
from poolroute.transport.security import (
    SecurityHeaders,
    check_configured_tokens,
    require_admin_auth,
    sanitize_error_message,
)

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# MIDDLEWARE FOR SECURITY HEADERS
# ============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return SecurityHeaders.add_security_headers(response)


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(
        f"Starting application: env={settings.app_env}, run_mode={settings.run_mode}, "
        f"tz={settings.dispatch_timezone}"
    )

    await init_pool()
    logger.info("Database pool initialized")

    if settings.is_production:
        missing = settings.validate_required_for_production()
        if missing:
            logger.critical(f"Missing required production settings: {missing}")
            raise RuntimeError(f"Missing production config: {missing}")

        if not settings.admin_token or len(settings.admin_token) < 32:
            logger.critical("ADMIN_TOKEN must be at least 32 characters in production")
            raise RuntimeError("Weak ADMIN_TOKEN")

        if settings.log_level.upper() == "DEBUG":
            logger.critical("LOG_LEVEL=DEBUG is not allowed in production")
            raise RuntimeError("LOG_LEVEL=DEBUG in production")

    check_configured_tokens()

    # Dispatch scheduler. Only in "all" or "worker" mode, so a scaled-out
    # web tier does not send every digest once per replica.
    scheduler: Optional[DispatchScheduler] = None
    if settings.run_mode in ("all", "worker") and settings.scheduler_enabled:
        scheduler = DispatchScheduler(tz=settings.tz, tick_seconds=settings.scheduler_tick_seconds)
        register_dispatch_tasks(scheduler)
        await scheduler.start()
    elif settings.run_mode not in ("all", "worker"):
        logger.info(f"Dispatch scheduler skipped (run_mode={settings.run_mode})")
    else:
        logger.info("Dispatch scheduler skipped (scheduler_enabled=false)")
    fastapi_app.state.scheduler = scheduler

    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")

    if scheduler is not None:
        await scheduler.stop()

    await close_all_sessions()
    await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Poolroute",
    description="Route calendar and technician dispatch for pool service crews",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(RouteError)
async def route_error_handler(request: Request, exc: RouteError):
    """Domain errors carry their own status code"""
    if exc.status_code >= 500:
        logger.error(f"Route error: {exc.detail}", extra={"status_code": exc.status_code})
    else:
        logger.info(f"Rejected request: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)

    error_message = sanitize_error_message(exc, settings.is_production)

    return JSONResponse(
        status_code=500,
        content={"error": error_message},
    )


# ============================================================================
# PUBLIC ENDPOINTS (No authentication required)
# ============================================================================

@app.get("/health")
def health():
    """
    Basic health check - PUBLIC endpoint.
    Used by load balancers, monitoring, etc.
    """
    return {"status": "healthy"}


@app.get("/ready")
async def readiness():
    """Readiness check - PUBLIC endpoint."""
    health_checker = get_async_health_checker()
    result = await health_checker.run_checks(include_non_critical=False)

    if result["status"] == "unhealthy":
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy"}
        )

    return {"status": "healthy"}


# ============================================================================
# ROUTE CALENDAR (admin token)
# ============================================================================

@app.get("/routes/jobs", dependencies=[Depends(require_admin_auth)])
async def list_route_jobs(
    start: date,
    end: date,
    jobs: AsyncPostgresJobRepository = Depends(get_job_repo),
):
    """Jobs whose route day falls in ``[start, end]`` (dispatch zone)."""
    if end < start:
        raise ValidationError("end must not be before start")
    if (end - start).days > 62:
        raise ValidationError("Date range too large (max 62 days)")

    range_start, _ = day_bounds(start, settings.tz)
    _, range_end = day_bounds(end, settings.tz)
    found = await jobs.find_jobs_by_day_range(range_start, range_end)
    return {"jobs": [JobOut.from_job(job).to_wire() for job in found]}


@app.post(
    "/routes/bulk-reschedule",
    response_model=BulkRescheduleOut,
    dependencies=[Depends(require_admin_auth)],
)
async def bulk_reschedule(
    payload: BulkRescheduleIn,
    service: RouteService = Depends(get_route_service),
):
    """
    Commit a batch of pending route edits in one transaction.

    Body: ``{"updates": [{"jobId", "scheduledDate"?, "sortOrder"?, "technicianId"?}]}``
    """
    updated = await service.update_jobs(payload.to_updates())
    return BulkRescheduleOut(ok=True, updated=updated)


@app.post("/jobs/bulk-create", dependencies=[Depends(require_admin_auth)])
async def bulk_create(
    payload: BulkCreateIn,
    service: RouteService = Depends(get_route_service),
):
    """Create a day's worth of jobs from the route calendar."""
    created = await service.bulk_create(payload.day, payload.to_specs())
    return {
        "ok": True,
        "created": [JobOut.from_job(job).to_wire() for job in created],
    }


# ============================================================================
# MONITORING (admin token)
# ============================================================================

@app.get("/health/detailed", dependencies=[Depends(require_admin_auth)])
async def detailed_health():
    """Detailed health check, including non-critical checks."""
    health_checker = get_async_health_checker()
    return await health_checker.run_checks(include_non_critical=True)


@app.get("/metrics", dependencies=[Depends(require_admin_auth)])
def metrics():
    """In-process counters and histograms."""
    collector = get_metrics_collector()
    return collector.get_metrics()


# ============================================================================
# ADMIN ENDPOINTS (admin token)
# ============================================================================

@app.post("/admin/digests/{window}/run", dependencies=[Depends(require_admin_auth)])
async def admin_run_digest(
    window: str,
    dispatcher: DigestDispatcher = Depends(get_digest_dispatcher),
):
    """
    Run one digest window now. MORNING sends full plans, MIDDAY and
    EVENING send deltas and claim what they send.
    """
    try:
        digest_window = DigestWindow.parse(window)
    except ValueError as exc:
        raise ValidationError(str(exc)) from None

    logger.info(f"Manual digest pass triggered: window={digest_window.value}", extra={"window": digest_window.value})
    report = await dispatcher.run_window(digest_window)
    return report.to_dict()


@app.post("/admin/notifications/drain", dependencies=[Depends(require_admin_auth)])
async def admin_drain_notifications(
    dispatcher: CustomerNotificationDispatcher = Depends(get_customer_dispatcher),
):
    """Drain one batch of the customer notification queue now."""
    logger.info("Manual customer notification drain triggered")
    report = await dispatcher.drain()
    return report.to_dict()


@app.get("/admin/scheduler", dependencies=[Depends(require_admin_auth)])
async def admin_scheduler_status(request: Request):
    """Registered dispatch tasks, their next run and last error."""
    scheduler: Optional[DispatchScheduler] = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return {"running": False, "tasks": []}
    return {
        "running": scheduler.running,
        "tasks": [task.to_dict() for task in scheduler.tasks],
    }


@app.get("/admin/email-logs", dependencies=[Depends(require_admin_auth)])
async def admin_email_logs(
    status: str | None = None,
    limit: int = 50,
    logs: AsyncPostgresDeliveryLogRepository = Depends(get_delivery_log_repo),
):
    """Recent delivery attempts (digests and customer emails)."""
    limit = max(1, min(limit, 500))
    return {"logs": await logs.get_recent(limit=limit, status=status.upper() if status else None)}


@app.post("/admin/metrics/reset", dependencies=[Depends(require_admin_auth)])
def admin_reset_metrics():
    """Reset metrics. Use with caution."""
    logger.warning("Metrics reset triggered")
    get_metrics_collector().reset()
    return {"ok": True, "message": "Metrics reset"}
