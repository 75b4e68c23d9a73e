"""
Retry-with-backoff for whole engine operations.

A PersistenceError means the operation rolled back completely, so it is safe
to run the same operation again from the start.  State conflicts and
validation errors are never retried here: they need a human or a reload.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from calc_audit_kernel.exceptions import PersistenceError
from calc_audit_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def retry_on_persistence_error(
    operation: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``operation`` and retry it on PersistenceError.

    The delay doubles after every failed attempt, capped at ``max_delay``.
    The last PersistenceError is re-raised once attempts are exhausted.

    Raises:
        ValueError: If max_attempts < 1.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except PersistenceError as exc:
            if attempt == max_attempts:
                logger.error(
                    "persistence_retry_exhausted",
                    extra={
                        "operation": exc.operation,
                        "attempts": attempt,
                    },
                )
                raise
            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            logger.warning(
                "persistence_retry",
                extra={
                    "operation": exc.operation,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay_seconds": delay,
                },
            )
            sleep(delay)

    raise AssertionError("unreachable")
