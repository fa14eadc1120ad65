"""Pipeline runner that wires the scheduler, stages and event bus together."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..analytics.report import CsvReportWriter
from ..config import Settings
from ..providers.base import FetchRequest, HistoryProvider, QuoteBatch
from ..providers.fetcher import QuoteFetcher
from .bus import EventBus
from .dispatcher import RequestDispatcher
from .processor import ResultProcessor
from .scheduler import Scheduler, utc_now
from .supervisor import Supervisor


logger = logging.getLogger(__name__)


class PipelineRunner:
    """
    Manages lifecycle of the polling pipeline.

    Scheduler -> FetchRequest -> dispatcher -> QuoteBatch -> processor -> CSV writer,
    with every hop going through one EventBus owned by the runner.
    """

    def __init__(
        self,
        settings: Settings,
        provider: HistoryProvider,
        writer: CsvReportWriter,
        start: datetime,
        clock=utc_now,
    ):
        self.settings = settings
        self.provider = provider
        self.writer = writer
        self.symbols = settings.get_symbols()
        self.bus = EventBus(maxsize=settings.queue_maxsize, policy=settings.get_queue_policy())
        self.fetcher = QuoteFetcher(provider)
        self.supervisor = Supervisor(
            retry_policy=settings.get_stage_retry_policy(),
            restart_policy=settings.get_restart_policy(),
        )
        self.scheduler = Scheduler(
            self.bus,
            self.symbols,
            start=start,
            interval=settings.interval,
            period_seconds=settings.poll_seconds,
            clock=clock,
        )

        # Processor subscribes before anything else so it sees every batch first.
        self.batch_subscription = self.bus.subscribe(QuoteBatch)
        self.request_subscription = self.bus.subscribe(FetchRequest)

        self.tasks: list[asyncio.Task] = []
        self._started = False

    def _make_dispatcher(self) -> RequestDispatcher:
        return RequestDispatcher(
            self.bus,
            self.fetcher,
            retry_policy=self.settings.get_fetch_retry_policy(),
            max_in_flight=self.settings.max_in_flight,
        )

    def _make_processor(self) -> ResultProcessor:
        return ResultProcessor(self.writer, window=self.settings.average_window)

    async def start(self) -> None:
        """Start the supervised dispatcher and processor stages."""
        if self._started:
            return
        logger.info("Starting pipeline runner...")
        self.tasks.append(
            self.supervisor.supervise("processor", self._make_processor, self.batch_subscription)
        )
        self.tasks.append(
            self.supervisor.supervise("dispatcher", self._make_dispatcher, self.request_subscription)
        )
        self._started = True
        logger.info(f"Pipeline started for symbols: {self.symbols}")

    async def stop(self) -> None:
        """Stop scheduler and stages gracefully."""
        logger.info("Stopping pipeline runner...")
        self.scheduler.stop()
        await self.supervisor.stop()
        self.bus.close()
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()
        logger.info("Pipeline runner stopped.")

    async def run_forever(self) -> None:
        """Run the scheduler until stopped; stage crashes beyond the restart cap end the run."""
        await self.start()
        scheduler_task = asyncio.create_task(self.scheduler.run(), name="scheduler")
        try:
            done, _ = await asyncio.wait(
                [scheduler_task, *self.tasks],
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()
        finally:
            self.scheduler.stop()
            if not scheduler_task.done():
                # The scheduler may be blocked publishing into a queue nobody drains.
                scheduler_task.cancel()
                await asyncio.gather(scheduler_task, return_exceptions=True)

    async def run_once(self) -> int:
        """
        Fire a single tick and wait until every symbol's batch was processed.

        Returns:
            Number of report rows written for this tick
        """
        await self.start()
        watcher = self.bus.subscribe(QuoteBatch, maxsize=0)
        rows_before = self.writer.rows_written
        try:
            published = await self.scheduler.tick()
            await asyncio.wait_for(
                self._wait_for_batches(watcher, published),
                timeout=self.settings.once_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Timed out after {self.settings.once_timeout}s waiting for batches; "
                "some symbols may be missing from the report."
            )
        finally:
            watcher.unsubscribe()
        return self.writer.rows_written - rows_before

    async def _wait_for_batches(self, watcher, expected: int) -> None:
        for _ in range(expected):
            await watcher.get()
            watcher.task_done()
        await self.batch_subscription.join()
