"""Independently scheduled background jobs."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable

from groupbot.logging import get_logger

logger = get_logger(__name__)


class PeriodicJob:
    """
    Runs ``func`` every ``interval`` seconds in its own task.

    A failing run is logged and the job keeps its schedule; one job failing
    never affects another job or message handling.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], Awaitable[Any] | Any],
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self.func = func
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self.runs = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        """Run the job one time; returns False if it raised."""
        try:
            result = self.func()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.failures += 1
            logger.exception("Background job failed", job=self.name, error_type=type(e).__name__)
            return False
        finally:
            self.runs += 1
        return True

    async def _loop(self) -> None:
        while True:
            await self._sleep(self.interval)
            await self.run_once()

    def start(self) -> asyncio.Task[None]:
        if self.is_running:
            return self._task  # type: ignore[return-value]
        self._task = asyncio.create_task(self._loop(), name=f"job:{self.name}")
        logger.info("job_started", job=self.name, interval=self.interval)
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("job_stopped", job=self.name, runs=self.runs, failures=self.failures)
