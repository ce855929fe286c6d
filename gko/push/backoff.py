"""Backoff strategies for the retry loop.

A strategy is stateful: every call to ``pause()`` advances it. Each worker
gets its own instance from a factory so concurrent workers never share one.
"""

from __future__ import annotations

import random
from typing import Callable, Protocol

from gko.config import BackoffKind, RetryConfig

# Google API client defaults (gensupport.DefaultBackoffStrategy)
DEFAULT_BASE_DELAY = 0.25  # seconds
DEFAULT_MAX_ELAPSED = 16.0  # seconds


class BackoffStrategy(Protocol):
    def pause(self) -> tuple[float, bool]:
        """Return the next pause in seconds and whether to retry at all."""
        ...


class ExponentialBackoff:
    """Randomised exponential backoff.

    The n-th pause is drawn uniformly from ``[0, base * 2**n)``. The strategy
    stops once the accumulated pause time exceeds ``max_elapsed`` or, when set,
    after ``max_retries`` pauses.
    """

    def __init__(
        self,
        base: float = DEFAULT_BASE_DELAY,
        max_elapsed: float = DEFAULT_MAX_ELAPSED,
        max_retries: int | None = None,
    ):
        self.base = base
        self.max_elapsed = max_elapsed
        self.max_retries = max_retries
        self._n = 0
        self._total = 0.0

    def pause(self) -> tuple[float, bool]:
        if self._total > self.max_elapsed:
            return 0.0, False
        if self.max_retries is not None and self._n >= self.max_retries:
            return 0.0, False
        delay = random.uniform(0, self.base * (2**self._n))
        self._total += delay
        self._n += 1
        return delay, True


class ConstantBackoff:
    """Fixed pause between attempts, exactly ``max_retries`` times."""

    def __init__(self, delay: float, max_retries: int):
        self.delay = delay
        self.max_retries = max_retries
        self._n = 0

    def pause(self) -> tuple[float, bool]:
        if self._n >= self.max_retries:
            return 0.0, False
        self._n += 1
        return self.delay, True


def backoff_factory(config: RetryConfig) -> Callable[[], BackoffStrategy]:
    """Build a factory producing a fresh strategy per worker."""
    if config.strategy == BackoffKind.CONSTANT:
        retries = config.max_retries if config.max_retries is not None else 3
        return lambda: ConstantBackoff(config.base_delay, retries)
    return lambda: ExponentialBackoff(
        base=config.base_delay,
        max_elapsed=config.max_elapsed,
        max_retries=config.max_retries,
    )
