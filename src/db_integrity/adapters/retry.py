"""Bounded connection retry with linear backoff.

Retries happen only while *acquiring* a connection.  Once a transaction
has begun nothing is retried: a failing DDL statement is reported, never
replayed.

Usage:
    from db_integrity.adapters.retry import connect_with_retry

    conn = await connect_with_retry(
        lambda: psycopg.AsyncConnection.connect(url),
        attempts=3,
        delay=1.0,
        retry_on=(psycopg.OperationalError,),
    )
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from db_integrity.errors import DatabaseConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0


async def connect_with_retry(
    connect: Callable[[], Awaitable[T]],
    attempts: int = DEFAULT_RETRY_ATTEMPTS,
    delay: float = DEFAULT_RETRY_DELAY,
    retry_on: tuple[type[BaseException], ...] = (OSError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``connect`` until it succeeds or ``attempts`` are exhausted.

    Between attempt ``n`` and ``n + 1`` the helper sleeps ``delay * n``
    seconds (linear backoff).  Errors outside ``retry_on`` propagate
    immediately.

    Args:
        connect: Zero-argument coroutine factory that opens a connection.
        attempts: Maximum number of attempts (>= 1).
        delay: Base backoff in seconds.
        retry_on: Exception types treated as transient.
        sleep: Awaitable sleep function (injected by tests).

    Returns:
        Whatever ``connect`` returns.

    Raises:
        DatabaseConnectionError: When every attempt failed with a transient
            error.  The last error is chained as ``__cause__``.
    """
    attempts = max(1, attempts)
    last_error: BaseException | None = None

    for attempt in range(1, attempts + 1):
        try:
            return await connect()
        except retry_on as e:
            last_error = e
            logger.warning(
                "Connection attempt %d/%d failed: %s", attempt, attempts, e
            )
            if attempt < attempts:
                await sleep(delay * attempt)

    raise DatabaseConnectionError(
        f"Could not connect after {attempts} attempts: {last_error}",
        attempts=attempts,
    ) from last_error
