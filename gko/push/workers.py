"""Fan-out harness — run one retrying task per delivery target.

A producer task feeds workers into a queue; the consumer starts one task per
worker and waits for all of them. Workers share the payload and credentials
read-only and own everything else (attempt counter, backoff instance), so no
locking is needed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from gko.push.backoff import BackoffStrategy
from gko.push.retry import retry

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class DeliveryResult:
    target: str
    status: DeliveryStatus
    attempts: int
    error: str = ""

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED


class Worker(ABC):
    """One unit of delivery work bound to a single target."""

    def __init__(self, target: str):
        self.target = target
        self.attempts = 0
        self.state = WorkerState.PENDING

    async def __call__(self) -> None:
        self.attempts += 1
        self.state = WorkerState.ATTEMPTING
        try:
            await self.attempt()
        except Exception:
            self.state = WorkerState.RETRYING
            raise
        self.state = WorkerState.SUCCEEDED

    @abstractmethod
    async def attempt(self) -> None:
        """Deliver once. Raise on failure."""


async def _run_worker(
    worker: Worker,
    backoff: BackoffStrategy,
    slots: asyncio.Semaphore | None,
) -> DeliveryResult:
    async with slots if slots is not None else contextlib.nullcontext():
        try:
            await retry(worker, backoff, label=f"{type(worker).__name__}({worker.target})")
        except Exception as exc:
            worker.state = WorkerState.EXHAUSTED
            return DeliveryResult(worker.target, DeliveryStatus.FAILED, worker.attempts, str(exc))
    return DeliveryResult(worker.target, DeliveryStatus.DELIVERED, worker.attempts)


async def run_workers(
    workers: Iterable[Worker],
    *,
    backoff_factory: Callable[[], BackoffStrategy],
    concurrency: int | None = None,
) -> list[DeliveryResult]:
    """Run every worker to completion and report per-target results.

    ``workers`` may be a lazy generator; it is drained by a separate producer
    task. Failures are logged where they happen and never raised to the
    caller. Results follow the order in which workers were produced.

    Args:
        workers: Workers to run, one per target.
        backoff_factory: Called once per worker for its own backoff strategy.
        concurrency: Maximum workers in flight. ``None`` or 0 is unbounded.
    """
    queue: asyncio.Queue[Worker | None] = asyncio.Queue()
    slots = asyncio.Semaphore(concurrency) if concurrency else None

    async def produce() -> None:
        try:
            for worker in workers:
                await queue.put(worker)
        except Exception:
            # Workers already queued still run; the rest of the batch is lost
            logger.exception("Push fan-out stopped producing workers")
        finally:
            await queue.put(None)

    producer = asyncio.create_task(produce())
    tasks: list[asyncio.Task[DeliveryResult]] = []
    while True:
        worker = await queue.get()
        if worker is None:
            break
        tasks.append(asyncio.create_task(_run_worker(worker, backoff_factory(), slots)))

    results = list(await asyncio.gather(*tasks))
    await producer

    failed = sum(1 for r in results if not r.delivered)
    if failed:
        logger.warning("Push fan-out finished: %d delivered, %d failed", len(results) - failed, failed)
    else:
        logger.info("Push fan-out finished: %d delivered", len(results))
    return results
