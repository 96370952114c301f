from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicScheduler:
    """
    Runs `job` every `interval_sec` in a background task.

    A failing run is logged and the next tick still fires.
    """

    def __init__(
        self,
        interval_sec: float,
        job: Callable[[], Awaitable[Any]],
        *,
        name: str = "periodic-sync",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.interval_sec = float(interval_sec)
        self.name = name
        self.runs = 0
        self.failures = 0
        self._job = job
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info("Periodic sync scheduled every %.0fs", self.interval_sec)

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval_sec)
            try:
                await self._job()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failures += 1
                logger.exception("Periodic sync error")
            self.runs += 1

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
