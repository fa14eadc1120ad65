"""Downloader stage: turns fetch requests into quote batches."""

from __future__ import annotations

import asyncio
import logging

from ..providers.base import FetchRequest, ProviderTransportError, QuoteBatch
from ..providers.fetcher import FetchOutcome, QuoteFetcher
from .bus import BusError, EventBus
from .supervisor import RetryPolicy, run_with_retry


logger = logging.getLogger(__name__)


class RequestDispatcher:
    """
    Fetches each request concurrently and publishes exactly one QuoteBatch for it.

    A failed fetch publishes an empty batch, so one bad symbol never holds back
    the others. Requests for the same symbol are published in arrival order.
    """

    def __init__(
        self,
        bus: EventBus,
        fetcher: QuoteFetcher,
        retry_policy: RetryPolicy | None = None,
        max_in_flight: int = 8,
    ):
        """
        Initialize dispatcher.

        Args:
            bus: Event bus to publish QuoteBatch messages on
            fetcher: Quote fetcher (one provider call per attempt)
            retry_policy: Retry policy for transport failures
            max_in_flight: Maximum concurrent fetches; handle() waits beyond this
        """
        self.bus = bus
        self.fetcher = fetcher
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_in_flight = max(1, max_in_flight)
        self._slots = asyncio.Semaphore(self.max_in_flight)
        self._lanes: dict[str, asyncio.Task] = {}  # Latest task per symbol
        self._in_flight: set[asyncio.Task] = set()
        self.published = 0

    async def handle(self, request: FetchRequest) -> None:
        """Start fetching a request in the background and return."""
        await self._slots.acquire()

        previous = self._lanes.get(request.symbol)
        task = asyncio.create_task(
            self._process(request, previous),
            name=f"fetch-{request.symbol}-{request.tick}",
        )
        self._lanes[request.symbol] = task
        self._in_flight.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        self._slots.release()
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Fetch task {task.get_name()} failed: {task.exception()}")

    async def _process(self, request: FetchRequest, previous: asyncio.Task | None) -> None:
        outcome = await self._fetch(request)

        # Keep per-symbol publication order.
        if previous is not None and not previous.done():
            await asyncio.wait([previous])

        if not outcome.ok:
            logger.warning(
                f"Could not retrieve quotes for {request.symbol}: {outcome.error}. "
                "Publishing empty batch."
            )

        batch = QuoteBatch(
            symbol=request.symbol,
            quotes=outcome.quotes,
            period_start=request.time_range.start,
            tick=request.tick,
        )
        try:
            await self.bus.publish(batch)
            self.published += 1
        except BusError as e:
            logger.error(f"Failed to publish batch for {request.symbol} (tick {request.tick}): {e}")

        if self._lanes.get(request.symbol) is asyncio.current_task():
            del self._lanes[request.symbol]

    async def _fetch(self, request: FetchRequest) -> FetchOutcome:
        async def attempt() -> FetchOutcome:
            outcome = await self.fetcher.fetch(request)
            # Only transport failures are worth another attempt.
            if isinstance(outcome.error, ProviderTransportError):
                raise outcome.error
            return outcome

        result = await run_with_retry(
            attempt,
            self.retry_policy,
            retry_on=(ProviderTransportError,),
            label=f"Fetch {request.symbol}",
        )
        if result.ok:
            return result.value
        return FetchOutcome(symbol=request.symbol, error=result.error)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def drain(self) -> None:
        """Wait for all in-flight fetches to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def close(self) -> None:
        """Cancel in-flight fetches; their requests are lost."""
        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._lanes.clear()
