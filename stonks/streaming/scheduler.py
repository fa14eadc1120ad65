"""Periodic scheduler that injects fetch requests into the pipeline."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from ..providers.base import FetchRequest, TimeRange
from .bus import BusClosedError, EventBus, QueueFullError


logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SchedulerState(Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


class Scheduler:
    """
    Fires immediately, then every period_seconds, publishing one FetchRequest per symbol.

    The range start is fixed for the lifetime of the scheduler while the end
    advances to "now" on every tick, so each tick covers a wider window.
    """

    def __init__(
        self,
        bus: EventBus,
        symbols: list[str],
        start: datetime,
        interval: str = "1h",
        period_seconds: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.bus = bus
        self.symbols = list(symbols)
        self.start = start
        self.interval = interval
        self.period_seconds = period_seconds
        self.clock = clock
        self.state = SchedulerState.IDLE
        self.ticks = 0
        self._stop_event = asyncio.Event()

    async def run(self) -> None:
        """Tick until stop() is called or the bus becomes unavailable."""
        if self.state is not SchedulerState.IDLE:
            raise RuntimeError(f"Scheduler cannot run from state {self.state.value}")

        self.state = SchedulerState.RUNNING
        logger.info(
            f"Scheduler running: {len(self.symbols)} symbol(s), every {self.period_seconds}s, "
            f"interval={self.interval}"
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time()
        try:
            while not self._stop_event.is_set():
                await self.tick()

                # Fixed-rate: the next deadline does not drift with tick duration.
                deadline += self.period_seconds
                timeout = max(0.0, deadline - loop.time())
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    pass
        except BusClosedError as e:
            logger.error(f"Event bus unavailable; scheduler stopping: {e}")
            raise
        finally:
            self.state = SchedulerState.STOPPED
            logger.info(f"Scheduler stopped after {self.ticks} tick(s).")

    async def tick(self) -> int:
        """
        Publish one FetchRequest per symbol.

        Returns:
            Number of requests published

        Raises:
            BusClosedError: The bus is closed (fatal for the scheduler)
        """
        now = self.clock()
        self.ticks += 1
        tick = self.ticks
        published = 0

        for symbol in self.symbols:
            request = FetchRequest(
                symbol=symbol,
                time_range=TimeRange(start=self.start, end=now, interval=self.interval),
                tick=tick,
            )
            try:
                await self.bus.publish(request)
                published += 1
            except QueueFullError as e:
                logger.warning(f"Request for {symbol} dropped on tick {tick}: {e}")

        logger.debug(f"Tick {tick}: published {published}/{len(self.symbols)} request(s)")
        return published

    def stop(self) -> None:
        self._stop_event.set()
