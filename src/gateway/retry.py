"""Retry policy for sandbox operations interrupted by environment resets."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..log_config import get_logger
from .errors import is_transient

T = TypeVar("T")

DEFAULT_ATTEMPTS = 5
DEFAULT_DELAY = 3.0

log = get_logger("retry")


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int = DEFAULT_ATTEMPTS,
    delay: float = DEFAULT_DELAY,
) -> T:
    """
    Await ``operation()``, retrying only on transient infrastructure resets.

    Any other failure is re-raised immediately. When every attempt fails with
    a transient error, the last one is re-raised.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        attempts: Maximum number of calls
        delay: Seconds to sleep between attempts
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_transient(e):
                raise
            if attempt == attempts:
                log.error("retry.exhausted", attempts=attempts, exc=e)
                raise
            log.warn("retry.transient_reset", attempt=attempt, delay_s=delay, exc=e)
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
