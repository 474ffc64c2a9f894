"""
Cancellable periodic task.

Runs an async tick function on a fixed interval inside the event loop.
``stop()`` wakes the waiting loop immediately but lets a tick that is
already running finish.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(
        self,
        name: str,
        interval_seconds: float,
        tick: Callable[[], Awaitable[Any]],
        run_immediately: bool = False,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self.tick = tick
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.info(f"[{self.name}] Started (interval {self.interval_seconds:.0f}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info(f"[{self.name}] Stopped")

    async def _run(self) -> None:
        assert self._stop_event is not None
        if self.run_immediately:
            await self._safe_tick()

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                await self._safe_tick()

    async def _safe_tick(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception(f"[{self.name}] Tick failed")
