"""Retry an async operation until its backoff strategy gives up."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from gko.push.backoff import BackoffStrategy
from gko.push.errors import NoRetryError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry(
    operation: Callable[[], Awaitable[T]],
    backoff: BackoffStrategy,
    *,
    label: str = "operation",
) -> T:
    """Await ``operation()`` until it succeeds or retrying is pointless.

    After every failure the backoff strategy is asked for the next pause. The
    last exception is re-raised when the strategy says stop or when the
    operation raised a ``NoRetryError``. Only the calling task sleeps between
    attempts, and cancelling it interrupts the sleep.

    Args:
        operation: Zero-argument coroutine function. Must be safe to repeat.
        backoff: Strategy owned by this call; it is advanced on every failure.
        label: Human-readable name for log messages.

    Returns:
        Whatever the first successful call returned.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except NoRetryError as exc:
            logger.error("%s failed with a non-retryable error: %s", label, exc)
            raise
        except Exception as exc:
            pause, keep_going = backoff.pause()
            if not keep_going:
                logger.error("%s failed after %d attempts: %s", label, attempt, exc)
                raise
            logger.warning(
                "%s failed (attempt %d), retrying in %.2fs: %s",
                label,
                attempt,
                pause,
                exc,
            )
        await asyncio.sleep(pause)
