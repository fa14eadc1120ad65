"""Yahoo Finance chart API client for historical quotes."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from typing import Any

import aiohttp

from .base import ProviderTransportError, Quote, UnknownSymbolError


logger = logging.getLogger(__name__)


class YahooChartClient:
    """
    Fetch historical quotes from the Yahoo Finance v8 chart endpoint.

    One HTTP request per call; no retries and no caching. A single
    aiohttp session is reused across calls and must be closed with close().
    """

    def __init__(
        self,
        base_url: str = "https://query1.finance.yahoo.com",
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ):
        """
        Initialize Yahoo chart client.

        Args:
            base_url: API host
            timeout: Total request timeout in seconds
            session: Optional pre-built session (owned by the caller)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"User-Agent": "Mozilla/5.0 (stonks)"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def fetch_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str,
    ) -> list[Quote]:
        """
        Fetch quotes for a symbol between start and end.

        Args:
            symbol: Ticker (e.g., "AAPL")
            start: Range start (timezone-aware)
            end: Range end (timezone-aware)
            interval: Yahoo granularity (e.g., "1h", "1d")

        Returns:
            Quotes as returned by Yahoo (usually ascending)
        """
        url = f"{self.base_url}/v8/finance/chart/{symbol}"
        params = {
            "period1": int(start.timestamp()),
            "period2": int(end.timestamp()),
            "interval": interval,
            "events": "div|split",
            "includePrePost": "false",
        }

        session = await self._get_session()
        try:
            async with session.get(url, params=params) as response:
                if response.status == 404:
                    raise UnknownSymbolError(symbol, "no data found, symbol may be delisted")
                if response.status != 200:
                    text = await response.text()
                    raise ProviderTransportError(
                        symbol, f"Yahoo API error {response.status}: {text[:200]}"
                    )
                payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise ProviderTransportError(symbol, f"network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise ProviderTransportError(symbol, "request timed out") from e
        except ValueError as e:
            # Non-JSON or undecodable body (consent pages, truncated responses)
            raise ProviderTransportError(symbol, f"invalid response body: {e}") from e

        return parse_chart(symbol, payload)


def parse_chart(symbol: str, payload: Any) -> list[Quote]:
    """
    Convert a chart API payload into quotes.

    Payload format:
    {"chart": {"result": [{"timestamp": [...],
                           "indicators": {"quote": [{"open": [...], "high": [...],
                                                     "low": [...], "close": [...],
                                                     "volume": [...]}],
                                          "adjclose": [{"adjclose": [...]}]}}],
               "error": null}}

    Samples with a missing or NaN close are dropped. Intraday intervals carry
    no adjclose, in which case close is used.
    """
    try:
        chart = payload["chart"]
        error = chart.get("error")
        if error:
            code = str(error.get("code", ""))
            description = error.get("description", "")
            if code == "Not Found":
                raise UnknownSymbolError(symbol, description or "symbol not found")
            raise ProviderTransportError(symbol, f"Yahoo chart error {code}: {description}")

        results = chart.get("result") or []
        if not results:
            raise UnknownSymbolError(symbol, "empty chart result")
        result = results[0]

        timestamps = result.get("timestamp") or []
        indicators = result["indicators"]
        quote_block = (indicators.get("quote") or [{}])[0]
        adj_block = (indicators.get("adjclose") or [{}])[0]
        adjcloses = adj_block.get("adjclose") or []

        quotes = []
        for i, ts in enumerate(timestamps):
            close = _at(quote_block.get("close"), i)
            if close is None or math.isnan(close):
                continue
            adjclose = _at(adjcloses, i)
            quotes.append(Quote(
                timestamp=int(ts),
                open=_at(quote_block.get("open"), i, close),
                high=_at(quote_block.get("high"), i, close),
                low=_at(quote_block.get("low"), i, close),
                close=close,
                adjclose=close if adjclose is None else adjclose,
                volume=int(_at(quote_block.get("volume"), i, 0)),
            ))
        return quotes

    except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
        raise ProviderTransportError(symbol, f"malformed chart payload: {e}") from e


def _at(values: list | None, index: int, default: float | None = None) -> float | None:
    if not values or index >= len(values) or values[index] is None:
        return default
    return float(values[index])
