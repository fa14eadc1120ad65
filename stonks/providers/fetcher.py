"""Single-request quote fetcher that turns provider failures into outcomes."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .base import FetchRequest, HistoryProvider, ProviderError, Quote


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchOutcome:
    """Quotes for one request, or the provider error that prevented them."""
    symbol: str
    quotes: tuple[Quote, ...] = ()
    error: ProviderError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class QuoteFetcher:
    """Wraps one provider call per request. Retrying is left to the caller."""

    def __init__(self, provider: HistoryProvider):
        self.provider = provider

    async def fetch(self, request: FetchRequest) -> FetchOutcome:
        time_range = request.time_range
        try:
            quotes = await self.provider.fetch_history(
                request.symbol,
                time_range.start,
                time_range.end,
                time_range.interval,
            )
        except ProviderError as e:
            logger.debug(f"Fetch failed for {request.symbol}: {e}")
            return FetchOutcome(symbol=request.symbol, error=e)

        return FetchOutcome(symbol=request.symbol, quotes=tuple(quotes))
