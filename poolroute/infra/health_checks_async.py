# poolroute/infra/health_checks_async.py
from __future__ import annotations
import time
from typing import Dict, Any
from enum import Enum

from poolroute.infra.db_async import get_pool
from poolroute.infra.logging_config import get_logger
from poolroute.infra.mailer import get_mailer
from poolroute.infra.migrations_async import pending_migrations
from poolroute.infra.pg_notification_repo_async import get_notification_repo

logger = get_logger(__name__)

REQUIRED_TABLES = (
    "jobs",
    "technicians",
    "tech_digest_items",
    "tech_digests",
    "notifications",
    "email_logs",
    "dispatch_leases",
)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AsyncHealthCheck:
    """Base class for async health checks"""

    def __init__(self, name: str, critical: bool = True):
        self.name = name
        self.critical = critical

    async def check(self) -> Dict[str, Any]:
        """
        Perform health check.
        Returns dict with 'status', 'details', and optionally 'error'
        """
        raise NotImplementedError


class AsyncDatabaseHealthCheck(AsyncHealthCheck):
    """Check database connectivity and that the schema is in place"""

    def __init__(self):
        super().__init__("database", critical=True)

    async def check(self) -> Dict[str, Any]:
        start = time.time()

        try:
            pool = await get_pool()
            async with pool.acquire() as conn:
                result = await conn.fetchval("SELECT 1")
                if result != 1:
                    return {
                        "status": HealthStatus.UNHEALTHY,
                        "details": "Unexpected query result",
                        "error": f"Expected 1, got {result}"
                    }

                missing_tables = []
                for table in REQUIRED_TABLES:
                    if await conn.fetchval("SELECT to_regclass($1)", table) is None:
                        missing_tables.append(table)

                if missing_tables:
                    return {
                        "status": HealthStatus.UNHEALTHY,
                        "details": "Missing required tables",
                        "error": f"Missing: {', '.join(missing_tables)}"
                    }

                duration = time.time() - start
                if duration > 1.0:
                    return {
                        "status": HealthStatus.DEGRADED,
                        "details": f"Slow database response: {duration:.3f}s",
                        "response_time": duration
                    }

                return {
                    "status": HealthStatus.HEALTHY,
                    "details": "Database operational",
                    "response_time": duration
                }

        except Exception as exc:
            logger.error("Database health check failed", exc_info=True)
            return {
                "status": HealthStatus.UNHEALTHY,
                "details": "Database connection failed",
                "error": str(exc)[:200]
            }


class AsyncMigrationsHealthCheck(AsyncHealthCheck):
    """Report migrations that exist on disk but were never applied"""

    def __init__(self):
        super().__init__("migrations", critical=False)

    async def check(self) -> Dict[str, Any]:
        try:
            pending = await pending_migrations()
        except Exception as exc:
            logger.error("Migrations health check failed", exc_info=True)
            return {
                "status": HealthStatus.DEGRADED,
                "details": "Could not read schema_migrations",
                "error": str(exc)[:200]
            }
        if pending:
            return {
                "status": HealthStatus.DEGRADED,
                "details": "Pending migrations",
                "pending": pending
            }
        return {"status": HealthStatus.HEALTHY, "details": "Schema up to date"}


class AsyncNotificationQueueHealthCheck(AsyncHealthCheck):
    """Customer notifications stuck in QUEUED point at a dead scheduler"""

    def __init__(self, stale_minutes: int = 30):
        super().__init__("notification_queue", critical=False)
        self.stale_minutes = stale_minutes

    async def check(self) -> Dict[str, Any]:
        try:
            repo = get_notification_repo()
            by_status = await repo.count_by_status()
            stale = await repo.count_stale_queued(self.stale_minutes)
        except Exception as exc:
            logger.error("Notification queue health check failed", exc_info=True)
            return {
                "status": HealthStatus.DEGRADED,
                "details": "Notification queue check failed",
                "error": str(exc)[:200]
            }

        return {
            "status": HealthStatus.DEGRADED if stale else HealthStatus.HEALTHY,
            "details": f"{stale} notifications queued > {self.stale_minutes}m" if stale else "Queue draining",
            "queued": by_status.get("QUEUED", 0),
            "by_status": by_status,
            "stale": stale,
        }


class AsyncMailerHealthCheck(AsyncHealthCheck):
    def __init__(self):
        super().__init__("mailer", critical=False)

    async def check(self) -> Dict[str, Any]:
        if get_mailer().is_configured():
            return {"status": HealthStatus.HEALTHY, "details": "SMTP configured"}
        return {"status": HealthStatus.DEGRADED, "details": "SMTP not configured"}


class AsyncHealthChecker:
    """Aggregate async health checks"""

    def __init__(self):
        self.checks: list[AsyncHealthCheck] = [
            AsyncDatabaseHealthCheck(),
            AsyncMigrationsHealthCheck(),
            AsyncNotificationQueueHealthCheck(),
            AsyncMailerHealthCheck(),
        ]

    async def run_checks(self, include_non_critical: bool = True) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            {
                "status": "healthy" | "degraded" | "unhealthy",
                "checks": {...},
                "timestamp": float
            }
        """
        results = {}
        overall_status = HealthStatus.HEALTHY

        for check in self.checks:
            if not include_non_critical and not check.critical:
                continue

            result = await check.check()
            results[check.name] = result

            if result["status"] == HealthStatus.UNHEALTHY and check.critical:
                overall_status = HealthStatus.UNHEALTHY
            elif result["status"] != HealthStatus.HEALTHY and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        return {
            "status": overall_status.value,
            "checks": results,
            "timestamp": time.time()
        }


_async_health_checker = AsyncHealthChecker()


def get_async_health_checker() -> AsyncHealthChecker:
    """Get the global async health checker"""
    return _async_health_checker
