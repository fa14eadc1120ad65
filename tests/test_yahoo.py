"""Tests for the Yahoo chart client (no network)."""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import aiohttp
import pytest

from stonks.providers.base import FetchRequest, ProviderTransportError, TimeRange, UnknownSymbolError
from stonks.providers.fetcher import QuoteFetcher
from stonks.providers.yahoo_rest import YahooChartClient, parse_chart


def chart_payload(timestamps, closes, adjcloses=None, volumes=None):
    quote = {
        "open": closes,
        "high": closes,
        "low": closes,
        "close": closes,
        "volume": volumes or [100] * len(closes),
    }
    indicators = {"quote": [quote]}
    if adjcloses is not None:
        indicators["adjclose"] = [{"adjclose": adjcloses}]
    return {
        "chart": {
            "result": [{"meta": {"symbol": "AAPL"}, "timestamp": timestamps, "indicators": indicators}],
            "error": None,
        }
    }


class TestParseChart:
    """Tests for parse_chart."""

    def test_parses_quotes(self):
        payload = chart_payload([1000, 2000], [10.5, 11.0], adjcloses=[10.4, 10.9], volumes=[5, 6])
        quotes = parse_chart("AAPL", payload)

        assert len(quotes) == 2
        assert quotes[0].timestamp == 1000
        assert quotes[0].close == 10.5
        assert quotes[0].adjclose == 10.4
        assert quotes[1].volume == 6

    def test_intraday_without_adjclose_uses_close(self):
        quotes = parse_chart("AAPL", chart_payload([1000], [10.5]))
        assert quotes[0].adjclose == 10.5

    def test_null_samples_dropped(self):
        payload = chart_payload([1000, 2000, 3000], [10.0, None, 12.0])
        quotes = parse_chart("AAPL", payload)
        assert [q.timestamp for q in quotes] == [1000, 3000]

    def test_no_timestamps_is_empty(self):
        payload = chart_payload([], [])
        payload["chart"]["result"][0].pop("timestamp")
        assert parse_chart("AAPL", payload) == []

    def test_not_found_error(self):
        payload = {"chart": {"result": None, "error": {"code": "Not Found", "description": "No data found, symbol may be delisted"}}}
        with pytest.raises(UnknownSymbolError):
            parse_chart("NOPE", payload)

    def test_other_chart_error(self):
        payload = {"chart": {"result": None, "error": {"code": "Bad Request", "description": "Invalid interval"}}}
        with pytest.raises(ProviderTransportError):
            parse_chart("AAPL", payload)

    def test_malformed_payload(self):
        with pytest.raises(ProviderTransportError):
            parse_chart("AAPL", {"unexpected": True})


class FakeResponse:
    def __init__(self, status, payload=None, text=""):
        self.status = status
        self._payload = payload
        self._text = text

    async def json(self, content_type=None):
        if self._payload is None:
            return json.loads(self._text)
        return self._payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def fake_session(response=None, error=None):
    session = MagicMock()
    session.closed = False

    def get(url, params=None):
        session.last_url = url
        session.last_params = params
        if error is not None:
            raise error
        return response

    session.get = get
    return session


START = datetime(2020, 7, 2, tzinfo=timezone.utc)
END = datetime(2020, 8, 1, tzinfo=timezone.utc)


class TestYahooChartClient:
    """Tests for YahooChartClient.fetch_history with a fake session."""

    @pytest.mark.asyncio
    async def test_request_parameters(self):
        session = fake_session(FakeResponse(200, chart_payload([1000], [1.0])))
        client = YahooChartClient(base_url="https://example.test/", session=session)

        quotes = await client.fetch_history("AAPL", START, END, "1h")

        assert len(quotes) == 1
        assert session.last_url == "https://example.test/v8/finance/chart/AAPL"
        assert session.last_params["period1"] == int(START.timestamp())
        assert session.last_params["period2"] == int(END.timestamp())
        assert session.last_params["interval"] == "1h"

    @pytest.mark.asyncio
    async def test_404_is_unknown_symbol(self):
        client = YahooChartClient(session=fake_session(FakeResponse(404)))
        with pytest.raises(UnknownSymbolError):
            await client.fetch_history("NOPE", START, END, "1h")

    @pytest.mark.asyncio
    async def test_server_error_is_transport_error(self):
        client = YahooChartClient(session=fake_session(FakeResponse(500, text="oops")))
        with pytest.raises(ProviderTransportError):
            await client.fetch_history("AAPL", START, END, "1h")

    @pytest.mark.asyncio
    async def test_network_error_is_transport_error(self):
        client = YahooChartClient(session=fake_session(error=aiohttp.ClientConnectionError("refused")))
        with pytest.raises(ProviderTransportError):
            await client.fetch_history("AAPL", START, END, "1h")

    @pytest.mark.asyncio
    async def test_non_json_body_is_transport_error(self):
        """A 200 with an HTML consent page must not leak a JSON decode error."""
        session = fake_session(FakeResponse(200, text="<html>oops</html>"))
        client = YahooChartClient(session=session)
        with pytest.raises(ProviderTransportError):
            await client.fetch_history("AAPL", START, END, "1h")

    @pytest.mark.asyncio
    async def test_non_json_body_becomes_failed_outcome(self):
        session = fake_session(FakeResponse(200, text="{\"chart\": "))
        fetcher = QuoteFetcher(YahooChartClient(session=session))
        request = FetchRequest(symbol="AAPL", time_range=TimeRange(START, END, "1h"))

        outcome = await fetcher.fetch(request)

        assert not outcome.ok
        assert outcome.quotes == ()
        assert isinstance(outcome.error, ProviderTransportError)

    @pytest.mark.asyncio
    async def test_close_leaves_caller_session_open(self):
        session = fake_session()
        client = YahooChartClient(session=session)
        await client.close()
        session.close.assert_not_called()
