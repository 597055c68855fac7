# poolroute/infra/db_resilience_async.py
"""
Async database resilience utilities.
Retry on transient asyncpg errors while acquiring a connection.
"""
from __future__ import annotations
import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator

import asyncpg
from poolroute.infra.db_async import db_conn
from poolroute.infra.logging_config import get_logger

logger = get_logger(__name__)

_MAX_RETRIES = 3
_INITIAL_DELAY = 0.1
_MAX_DELAY = 5.0


def is_transient_error(exc: Exception) -> bool:
    """
    Check if database error is transient (should retry).

    Transient errors:
    - Connection errors
    - Server closed connection
    - Too many connections
    - Deadlock
    """
    if isinstance(exc, (
        asyncpg.PostgresConnectionError,
        asyncpg.TooManyConnectionsError,
        asyncpg.DeadlockDetectedError,
        ConnectionError,
    )):
        return True

    error_message = str(exc).lower()

    transient_patterns = [
        "connection",
        "timeout",
        "closed",
        "network",
        "deadlock",
        "too many connections",
    ]
    return any(pattern in error_message for pattern in transient_patterns)


@asynccontextmanager
async def safe_db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Database connection with retry on transient errors while connecting.

    Usage:
        async with safe_db_conn() as conn:
            rows = await conn.fetch("SELECT * FROM jobs WHERE id = $1", job_id)

    Only acquisition is retried: once the block body runs, its errors
    propagate unchanged (a half-applied body is never replayed).
    """
    delay = _INITIAL_DELAY

    async with AsyncExitStack() as stack:
        for attempt in range(_MAX_RETRIES + 1):
            try:
                conn = await stack.enter_async_context(db_conn(autocommit=autocommit))
                break
            except Exception as exc:
                if not is_transient_error(exc) or attempt >= _MAX_RETRIES:
                    if attempt >= _MAX_RETRIES:
                        logger.error(f"Max retries ({_MAX_RETRIES}) exceeded getting connection")
                    raise

                logger.warning(
                    f"Transient error getting connection (attempt {attempt + 1}/{_MAX_RETRIES}): {exc}. "
                    f"Retrying in {delay:.2f}s..."
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2.0, _MAX_DELAY)

        yield conn
