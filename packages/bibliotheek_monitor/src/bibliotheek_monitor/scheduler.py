"""Fixed-interval polling of an async callback."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from bibliotheek_client import LibraryClientError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 30 * 60


class PollingScheduler:
    """
    Calls an async callback every ``interval`` seconds from one asyncio task.

    A failing call is logged and polling continues with the next interval.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[Any]],
        interval: float = DEFAULT_INTERVAL_SECONDS,
        run_immediately: bool = True,
    ):
        self.callback = callback
        self.interval = interval
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling; does nothing when already running."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Polling set up for every %s minutes", round(self.interval / 60, 2))

    async def stop(self) -> None:
        """Stop polling and wait for the task to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def reschedule(self, interval: float) -> None:
        """Change the interval, restarting the timer when running."""
        was_running = self.is_running
        self.interval = interval
        if was_running:
            await self.stop()
            self.start()

    async def _run(self) -> None:
        if self.run_immediately:
            await self._tick()
        while True:
            await asyncio.sleep(self.interval)
            await self._tick()

    async def _tick(self) -> None:
        logger.debug("Polling for data")
        try:
            await self.callback()
        except LibraryClientError as e:
            logger.warning("Scheduled refresh failed: %s", e)
        except Exception:
            logger.exception("Scheduled refresh raised an unexpected error")
