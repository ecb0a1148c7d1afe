"""
Periodic cache refresh.

Each cache gets its own PeriodicRefresher: one eager load before the agent
accepts traffic, then a background task that reloads on a fixed interval.
Failures are logged and retried on the next cycle; they never stop the loop
and never touch in-flight tool invocations.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicRefresher:
    """
    Runs `refresh` once up front and then every `interval_seconds`.

    Args:
        name: Label used in log lines
        refresh: Coroutine function performing one refresh
        interval_seconds: Delay between refreshes
    """

    def __init__(
        self,
        name: str,
        refresh: Callable[[], Awaitable[Any]],
        interval_seconds: float,
    ):
        self.name = name
        self._refresh = refresh
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        """Run a single refresh. Returns False if it failed."""
        self.runs += 1
        try:
            await self._refresh()
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            logger.warning("%s refresh failed: %s: %s", self.name, type(e).__name__, e)
            return False

    async def start(self, eager: bool = True) -> bool:
        """
        Perform the eager load (if requested) and schedule the periodic task.

        Returns:
            Whether the eager load succeeded (True when skipped)
        """
        ok = True
        if eager:
            ok = await self.run_once()
            if not ok:
                logger.warning(
                    "Could not preload %s; continuing with an empty or stale cache.", self.name
                )
        if not self.running:
            self._task = asyncio.create_task(self._loop(), name=f"refresh:{self.name}")
        return ok

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()

    async def stop(self) -> None:
        """Cancel the periodic task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
