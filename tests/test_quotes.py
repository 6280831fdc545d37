# tests/test_quotes.py
# Usage: uv run pytest tests/test_quotes.py -v

from decimal import Decimal

import httpx
import pytest

from fakes import FakeQuoteSource
from ledger.errors import NotFoundError, UpstreamUnavailableError, ValidationError
from ledger.quotes import QuoteCache, QuoteService, YahooQuoteSource, parse_chart, resolve_range

CHART_PAYLOAD = {
    "chart": {
        "result": [
            {
                "meta": {"regularMarketPrice": 187.44, "marketState": "REGULAR"},
                "timestamp": [1700000000, 1700086400, 1700172800],
                "indicators": {"quote": [{"close": [185.1, None, 187.44]}]},
            }
        ]
    }
}


def test_resolve_range():
    assert resolve_range("live") == "1d"
    assert resolve_range("5Y") == "5y"
    assert resolve_range(None) == "max"
    with pytest.raises(ValidationError):
        resolve_range("10Y")


def test_parse_chart_builds_quote():
    quote = parse_chart("AAPL", "1mo", CHART_PAYLOAD)

    assert quote.price == Decimal("187.44")
    assert quote.market_state == "REGULAR"
    assert quote.range == "1mo"
    # Gaps in the close series are dropped
    assert quote.history == ((1700000000, Decimal("185.1")), (1700172800, Decimal("187.44")))


def test_parse_chart_without_meta_is_not_found():
    with pytest.raises(NotFoundError):
        parse_chart("NOPE", "1d", {"chart": {"result": None, "error": {"code": "Not Found"}}})


def test_parse_chart_without_price():
    payload = {"chart": {"result": [{"meta": {"symbol": "AAPL"}}]}}
    with pytest.raises(UpstreamUnavailableError):
        parse_chart("AAPL", "1d", payload)


@pytest.mark.parametrize("raw_price", ["N/A", float("nan"), float("inf"), "", [187]])
def test_parse_chart_rejects_non_numeric_price(raw_price):
    payload = {"chart": {"result": [{"meta": {"regularMarketPrice": raw_price}}]}}
    with pytest.raises(UpstreamUnavailableError):
        parse_chart("AAPL", "1d", payload)


def test_parse_chart_drops_junk_closes():
    payload = {
        "chart": {
            "result": [
                {
                    "meta": {"regularMarketPrice": 10},
                    "timestamp": [1, 2, 3, 4],
                    "indicators": {"quote": [{"close": [9.5, "N/A", float("nan"), 10]}]},
                }
            ]
        }
    }

    quote = parse_chart("AAPL", "5d", payload)

    assert quote.history == ((1, Decimal("9.5")), (4, Decimal("10")))


@pytest.mark.asyncio
async def test_non_finite_quote_is_upstream_error():
    source = FakeQuoteSource({"AAPL": "NaN"})
    service = QuoteService(source, timeout=1.0)

    with pytest.raises(UpstreamUnavailableError):
        await service.fetch("AAPL")

    assert service.latest_price("AAPL") is None


@pytest.mark.asyncio
async def test_yahoo_source_requests_range():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["range"] = request.url.params["range"]
        return httpx.Response(200, json=CHART_PAYLOAD)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    source = YahooQuoteSource(client=client)
    try:
        quote = await source.fetch("AAPL", "6mo")
    finally:
        await source.aclose()

    assert seen == {"path": "/v8/finance/chart/AAPL", "range": "6mo"}
    assert quote.price == Decimal("187.44")


@pytest.mark.asyncio
async def test_yahoo_source_http_error():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(429)))
    source = YahooQuoteSource(client=client)
    try:
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await source.fetch("AAPL", "1d")
    finally:
        await source.aclose()

    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_yahoo_source_network_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    source = YahooQuoteSource(client=client)
    try:
        with pytest.raises(UpstreamUnavailableError):
            await source.fetch("AAPL", "1d")
    finally:
        await source.aclose()


@pytest.mark.asyncio
async def test_fetch_refreshes_cache(quotes: QuoteService):
    assert quotes.latest_price("AAPL") is None

    quote = await quotes.fetch("aapl", "1Y")

    assert quote.symbol == "AAPL"
    assert quotes.latest_price("AAPL") == Decimal("150")
    assert quotes.cache.get("AAPL").observed_at > 0


@pytest.mark.asyncio
async def test_fetch_times_out():
    service = QuoteService(FakeQuoteSource({"AAPL": 1}, delay=0.5), timeout=0.01)

    with pytest.raises(UpstreamUnavailableError, match="timed out"):
        await service.fetch("AAPL")

    assert service.latest_price("AAPL") is None


@pytest.mark.asyncio
async def test_fetch_many_skips_failures(quotes: QuoteService, quote_source: FakeQuoteSource):
    quote_source.fail("TSLA")

    prices = await quotes.fetch_many(["AAPL", "TSLA", "MSFT", "AAPL", "UNKNOWN"])

    assert prices == {"AAPL": Decimal("150"), "MSFT": Decimal("300")}
    # Duplicates fetched once
    assert sorted(s for s, _ in quote_source.calls) == ["AAPL", "MSFT", "TSLA", "UNKNOWN"]


def test_cache_keeps_last_price():
    cache = QuoteCache()
    cache.update("AAPL", Decimal("1"), observed_at=10.0)
    cache.update("AAPL", Decimal("2"), observed_at=20.0)

    assert cache.price_of("AAPL") == Decimal("2")
    assert cache.get("AAPL").observed_at == 20.0
    assert "AAPL" in cache
    assert cache.price_of("MSFT") is None
