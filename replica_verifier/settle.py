"""
Settle strategies - the barrier between the write and read phases.

Replication in the store is asynchronous. Reading straight after the last
write races the store's own replication batch, so every run waits here
once before any verification read is issued.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()

Sampler = Callable[[], Awaitable[Any]]


class SettleStrategy(ABC):

    @abstractmethod
    async def wait(self, sample: Optional[Sampler] = None) -> float:
        """Block until reads may start. Returns seconds spent waiting."""


class FixedDelaySettle(SettleStrategy):
    """Sleep a configured number of seconds."""

    def __init__(self, duration: float):
        if duration < 0:
            raise ValueError(f"settle duration must not be negative, got {duration}")
        self.duration = duration

    async def wait(self, sample: Optional[Sampler] = None) -> float:
        logger.info("Waiting for replication to settle", seconds=self.duration)
        if self.duration > 0:
            await asyncio.sleep(self.duration)
        return self.duration


class PollUntilStableSettle(SettleStrategy):
    """
    Poll the store until consecutive snapshots stop changing.

    The sample function returns any comparable snapshot of the store (the
    runner passes the observed values of every (node, key) cell). Waiting
    ends when the snapshot has been identical for ``stable_rounds`` polls in a
    row, or when ``max_wait`` seconds have elapsed.
    """

    def __init__(self, interval: float = 1.0, max_wait: float = 30.0, stable_rounds: int = 2):
        if interval <= 0 or max_wait < 0 or stable_rounds < 1:
            raise ValueError("interval must be positive, max_wait non-negative, stable_rounds >= 1")
        self.interval = interval
        self.max_wait = max_wait
        self.stable_rounds = stable_rounds

    async def wait(self, sample: Optional[Sampler] = None) -> float:
        if sample is None:
            raise ValueError("PollUntilStableSettle requires a snapshot function")

        start = time.monotonic()
        previous = await sample()
        unchanged = 0

        while unchanged < self.stable_rounds:
            elapsed = time.monotonic() - start
            if elapsed >= self.max_wait:
                logger.warning("Store did not stabilise before deadline",
                               max_wait=self.max_wait, stable_rounds=unchanged)
                return elapsed

            await asyncio.sleep(min(self.interval, self.max_wait - elapsed))
            snapshot = await sample()
            if snapshot == previous:
                unchanged += 1
            else:
                unchanged = 0
                previous = snapshot

        elapsed = time.monotonic() - start
        logger.info("Store stabilised", seconds=round(elapsed, 3))
        return elapsed
