"""Delayed callbacks used by the job queue to schedule retries."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from finparse.core.logging import get_logger

logger = get_logger("finparse.jobs.scheduler")

Callback = Callable[[], Awaitable[None]]


class Scheduler(ABC):
    @abstractmethod
    def call_later(self, delay: float, callback: Callback) -> None:
        """Run ``callback`` once, no earlier than ``delay`` seconds from now."""

    def cancel_all(self) -> None:
        """Drop every callback that has not fired yet."""


class AsyncioScheduler(Scheduler):
    """Runs callbacks as tasks on the running event loop after a real sleep."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: Callback) -> None:
        async def _fire() -> None:
            await asyncio.sleep(delay)
            await callback()

        task = asyncio.get_running_loop().create_task(_fire())
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Scheduled callback failed: {error}")

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    @property
    def pending(self) -> int:
        return len(self._tasks)


class ManualScheduler(Scheduler):
    """Scheduler driven by an explicit clock, for tests.

    ``advance`` moves the clock forward and awaits every callback that has
    become due, in due-time order.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._pending: list[tuple[float, int, Callback]] = []
        self._seq = 0

    def call_later(self, delay: float, callback: Callback) -> None:
        self._seq += 1
        self._pending.append((self.now + delay, self._seq, callback))

    async def advance(self, seconds: float) -> int:
        """Advance the clock and run due callbacks; returns how many ran."""
        self.now += seconds
        fired = 0
        while True:
            due = sorted(entry for entry in self._pending if entry[0] <= self.now)
            if not due:
                return fired
            entry = due[0]
            self._pending.remove(entry)
            await entry[2]()
            fired += 1

    def cancel_all(self) -> None:
        self._pending.clear()

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def delays(self) -> list[float]:
        """Remaining delay of every pending callback, soonest first."""
        return sorted(due - self.now for due, _, _ in self._pending)
