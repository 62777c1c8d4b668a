"""
Cancellable periodic task

Wraps an async callback in an asyncio task that runs it every
`interval_seconds`. The handle returned by start() is the only way to
stop it, and cancel() may be called any number of times, including from
inside the callback itself.

Usage:
    task = PeriodicTask("pnl:BTCUSDT", 5.0, monitor.check).start()
    ...
    task.cancel()  # idempotent
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run an async callback at a fixed interval until cancelled"""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Awaitable[Any]],
        run_immediately: bool = False,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.name = name
        self.interval_seconds = interval_seconds
        self.callback = callback
        self.run_immediately = run_immediately
        self.task: Optional[asyncio.Task] = None
        self.run_count = 0
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done() and not self._cancelled

    def start(self) -> "PeriodicTask":
        """
        Schedule the loop on the running event loop

        Raises:
            RuntimeError: no running event loop, or the task was already cancelled
        """
        if self._cancelled:
            raise RuntimeError(f"Periodic task {self.name} was cancelled and cannot be restarted")
        if self.task is not None:
            return self
        loop = asyncio.get_running_loop()
        self.task = loop.create_task(self._loop(), name=self.name)
        logger.debug(f"Periodic task {self.name} started (interval: {self.interval_seconds}s)")
        return self

    async def _loop(self):
        """Main loop: wait, run callback, repeat"""
        first = True
        while not self._cancelled:
            if not (first and self.run_immediately):
                await asyncio.sleep(self.interval_seconds)
            first = False
            if self._cancelled:
                break

            try:
                await self.callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Periodic task {self.name} error: {e}", exc_info=True)
            self.run_count += 1

    def cancel(self) -> bool:
        """
        Stop the loop

        Safe to call repeatedly; only the first call has an effect. When
        called from inside the callback the current run finishes and the
        loop exits instead of cancelling itself mid-flight.

        Returns:
            True if this call cancelled the task, False if it was already cancelled
        """
        if self._cancelled:
            return False
        self._cancelled = True

        if self.task is not None and not self.task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if self.task is not current:
                self.task.cancel()

        logger.debug(f"Periodic task {self.name} cancelled")
        return True

    async def wait_stopped(self):
        """Wait for the loop to finish after cancel()"""
        if self.task is None or self.task is asyncio.current_task():
            return
        try:
            await self.task
        except asyncio.CancelledError:
            pass
