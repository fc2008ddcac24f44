"""
Interval loop that drives the periodic cache refresh.

Fires the callback every `interval` seconds measured from the original
schedule, not from when the previous callback finished. Missed intervals
are skipped rather than queued.
"""

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable

from dynconf.logger.logger import get_logger
from dynconf.logger.types import Category, param


class RefreshLoop:
    """
    Background task firing an async callback at a fixed interval.

    Usage:
        loop = RefreshLoop(60.0, reader.refresh, name="config-refresh")
        loop.start()
        ...
        await loop.stop()
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[object]],
        name: str = "refresh",
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.interval = interval_seconds
        self.callback = callback
        self.name = name

        self._task: asyncio.Task[None] | None = None
        self._execution_count = 0
        self._skipped_count = 0
        self.logger = get_logger().with_category(Category.SCHEDULER)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop; the first tick fires one interval from now."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"refresh-loop:{self.name}")

    async def stop(self) -> None:
        """Stop the loop and wait for it to exit. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        next_run = time.monotonic() + self.interval

        while True:
            sleep_duration = next_run - time.monotonic()
            if sleep_duration > 0:
                await asyncio.sleep(sleep_duration)

            try:
                await self.callback()
                self._execution_count += 1
            except Exception as e:
                # callback сам изолирует ошибки; сюда попадают только баги
                self.logger.error(f"Refresh loop '{self.name}' callback error", e)

            # Skip missed intervals to catch up
            now = time.monotonic()
            skipped = 0
            while next_run <= now:
                next_run += self.interval
                skipped += 1

            if skipped > 1:
                self._skipped_count += skipped - 1
                self.logger.warn(
                    f"Refresh loop '{self.name}' skipped {skipped - 1} intervals",
                    param("interval_s", self.interval),
                )

    @property
    def execution_count(self) -> int:
        """Number of completed callback runs."""
        return self._execution_count

    @property
    def skipped_count(self) -> int:
        """Number of intervals skipped to catch up."""
        return self._skipped_count
