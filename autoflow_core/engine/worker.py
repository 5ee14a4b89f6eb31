"""
Background loop that ticks the run scheduler.
"""

import asyncio
from typing import Optional

import structlog

from .scheduler import RunScheduler

logger = structlog.get_logger(__name__)


class SchedulerWorker:
    """
    Calls ``RunScheduler.tick`` every ``interval_s`` seconds.

    Several workers (in one or many processes) can share a run store; the
    claim step keeps them from resuming the same run twice.
    """

    def __init__(self, scheduler: RunScheduler, interval_s: float = 5.0):
        self.scheduler = scheduler
        self.interval_s = interval_s
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start ticking in a background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("scheduler_worker_started", interval_s=self.interval_s)

    async def stop(self) -> None:
        """Stop the loop and wait for the current tick to end."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("scheduler_worker_stopped")

    async def run_forever(self) -> None:
        """Tick in the foreground until cancelled."""
        self._running = True
        logger.info("scheduler_worker_started", interval_s=self.interval_s)
        try:
            await self._loop()
        finally:
            self._running = False

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.scheduler.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("scheduler_tick_failed")
            await asyncio.sleep(self.interval_s)
