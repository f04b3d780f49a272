"""
Event-loop timers for the session scheduler.

Timers are scheduled with ``loop.call_later``; when one fires it spawns the
async callback as a task. Cancelling a handle only prevents callbacks that
have not fired yet, so callers must still guard with an epoch check.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from claw_queue.core.interfaces import TimerCallback
from claw_queue.loggers import logger


class LoopTimerHandle:
    """Handle for a timer scheduled on the running event loop."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._handle is None or self._handle.cancelled()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()


class LoopTimers:
    """
    Timer source backed by the running asyncio event loop.

    Keeps strong references to spawned callback tasks until they finish.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: TimerCallback, name: str = "") -> LoopTimerHandle:
        """
        Schedule ``callback`` after ``delay`` seconds.

        Args:
            delay: Delay in seconds.
            callback: Async callable without arguments.
            name: Label used in logs.

        Returns:
            Handle that can be cancelled.
        """
        loop = asyncio.get_running_loop()
        handle = LoopTimerHandle(name)
        handle._handle = loop.call_later(delay, self._spawn, callback, name)
        return handle

    def _spawn(self, callback: TimerCallback, name: str) -> None:
        task = asyncio.get_running_loop().create_task(self._run(callback, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, callback: TimerCallback, name: str) -> None:
        try:
            await callback()
        except Exception as e:
            logger.error(f"Timer '{name}' callback failed: {e}")

    async def shutdown(self) -> None:
        """Wait for callbacks that are already running."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
