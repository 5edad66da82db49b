"""
Reliability Utilities.

Bounded retry for transient storage conflicts (serialization failures,
deadlocks, locked SQLite files). Each retry re-runs the whole unit of
work, so a retried operation never observes a half-applied predecessor.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError

logger = logging.getLogger("balanca.ledger")

T = TypeVar("T")

# PostgreSQL: serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_transient_conflict(exc: BaseException) -> bool:
    """
    Whether a storage error is a conflict worth retrying.

    Args:
        exc: Exception raised inside a unit of work

    Returns:
        True for serialization/deadlock conflicts, False otherwise
    """
    if not isinstance(exc, DBAPIError):
        return False

    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True

    return "database is locked" in str(orig).lower()


async def run_with_retry(
    func: Callable[[], Awaitable[T]],
    operation: str,
    max_attempts: int = 3,
    backoff_ms: int = 50,
    retry_on: Callable[[BaseException], bool] = is_transient_conflict,
) -> T:
    """
    Run ``func`` until it succeeds, retrying transient conflicts.

    Args:
        func: Zero-argument coroutine factory (one full unit of work)
        operation: Operation name for logging
        max_attempts: Total attempts including the first one
        backoff_ms: Linear backoff step between attempts
        retry_on: Predicate selecting retryable exceptions

    Returns:
        Whatever ``func`` returns

    Raises:
        The last exception when attempts are exhausted or it is not retryable
    """
    attempt = 1
    while True:
        try:
            return await func()
        except Exception as exc:
            if attempt >= max_attempts or not retry_on(exc):
                raise
            logger.warning(
                "Transient conflict, retrying",
                extra={"operation": operation, "attempt": attempt, "error": str(exc)}
            )
            await asyncio.sleep(backoff_ms * attempt / 1000)
            attempt += 1
