"""Base types and protocols for market data providers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


class ProviderError(Exception):
    """Base class for failures reported by a history provider."""

    def __init__(self, symbol: str, message: str):
        super().__init__(f"{symbol}: {message}")
        self.symbol = symbol
        self.message = message


class UnknownSymbolError(ProviderError):
    """Raised when the provider has no data for the requested ticker."""
    pass


class ProviderTransportError(ProviderError):
    """Raised on network, HTTP or payload parsing failures."""
    pass


@dataclass(frozen=True)
class Quote:
    """One OHLC(+volume) price sample."""
    timestamp: int  # Unix timestamp in seconds
    open: float
    high: float
    low: float
    close: float
    adjclose: float
    volume: int


@dataclass(frozen=True)
class TimeRange:
    """Half-open interval [start, end) for history queries."""
    start: datetime
    end: datetime
    interval: str  # e.g. "1h", "1d"

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"TimeRange start {self.start} is after end {self.end}")


@dataclass(frozen=True)
class FetchRequest:
    """Unit of work for the dispatcher: one symbol over one time range."""
    symbol: str
    time_range: TimeRange
    tick: int = 0


@dataclass(frozen=True)
class QuoteBatch:
    """All quotes returned for one symbol in one fetch (possibly empty)."""
    symbol: str
    quotes: tuple[Quote, ...]
    period_start: datetime
    tick: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.quotes

    def sorted_quotes(self) -> list[Quote]:
        """Quotes in ascending timestamp order; ties keep provider order."""
        return sorted(self.quotes, key=lambda q: q.timestamp)

    def closes(self) -> list[float]:
        """Close-price series in ascending timestamp order."""
        return [q.close for q in self.sorted_quotes()]


class HistoryProvider(Protocol):
    """Protocol for historical price providers."""

    async def fetch_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str,
    ) -> list[Quote]:
        """
        Fetch quotes for a symbol over [start, end).

        Raises:
            UnknownSymbolError: The provider does not know the symbol
            ProviderTransportError: Network, HTTP or parsing failure
        """
        ...
