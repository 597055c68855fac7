#!/usr/bin/env python3
# poolroute/infra/migrate.py
"""
Standalone migration runner.

    python -m poolroute.infra.migrate

Run before starting the service (CI/CD step, init container, or by hand).
The service reports pending migrations in /health/ready but never applies
them itself.
"""
import asyncio
import sys

from poolroute.config import settings
from poolroute.infra.db_async import close_pool, init_pool
from poolroute.infra.logging_config import get_logger, setup_logging
from poolroute.infra.migrations_async import apply_migrations

setup_logging(level="INFO", use_json=False)
logger = get_logger(__name__)


async def main() -> int:
    logger.info("=" * 60)
    logger.info("Database Migration Runner")
    logger.info("=" * 60)
    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"Database: {settings.pghost}:{settings.pgport}/{settings.pgdatabase}")

    try:
        await init_pool()
        result = await apply_migrations()

        logger.info(f"Status: {'SUCCESS' if result['ok'] else 'FAILED'}")
        logger.info(f"Migrations applied: {result['count']}")
        for migration in result["applied"]:
            logger.info(f"  + {migration}")
        return 0 if result["ok"] else 1

    except Exception as exc:
        logger.critical(f"MIGRATION FAILED: {exc}", exc_info=True)
        return 1

    finally:
        await close_pool()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
