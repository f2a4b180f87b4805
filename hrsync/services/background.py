"""Periodic background jobs running on the event loop."""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from ..utils.logger import get_app_logger


class PeriodicWorker(ABC):
    """
    Runs ``run_once`` every ``interval`` seconds after ``initial_delay``.

    An exception in one cycle is logged and the next cycle still runs.
    ``stop`` wakes the loop immediately instead of waiting out the interval.
    """

    name = "worker"

    def __init__(self, interval: float, initial_delay: float = 0.0):
        self.interval = interval
        self.initial_delay = initial_delay
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.logger = get_app_logger()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @abstractmethod
    async def run_once(self) -> None:
        """Run one cycle."""

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        self.logger.info(f"[{self.name}] started, interval {self.interval}s")

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.logger.info(f"[{self.name}] stopped")

    async def _sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``. Returns True if stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _loop(self) -> None:
        try:
            if self.initial_delay and await self._sleep(self.initial_delay):
                return
            while not self._stop_event.is_set():
                try:
                    await self.run_once()
                except Exception:
                    self.logger.exception(f"[{self.name}] cycle failed")
                if await self._sleep(self.interval):
                    return
        except asyncio.CancelledError:
            self.logger.debug(f"[{self.name}] loop cancelled")
