"""
Quote layer.

QuoteSource is the external price feed (Yahoo chart API in production, a
fake in tests). QuoteService wraps it with a bounded timeout and keeps the
QuoteCache fresh: every successful fetch, from any code path, updates the
last known price used for valuation.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional, Protocol

import httpx

from ledger.config import DEFAULT_QUOTE_URL
from ledger.errors import NotFoundError, TradingError, UpstreamUnavailableError, ValidationError
from ledger.trade import normalize_symbol

logger = logging.getLogger(__name__)

# Client timeframe label -> Yahoo chart range
TIMEFRAME_RANGES: Dict[str, str] = {
    "live": "1d",
    "1M": "1mo",
    "3M": "3mo",
    "6M": "6mo",
    "1Y": "1y",
    "2Y": "2y",
    "5Y": "5y",
    "ALL": "max",
}
DEFAULT_TIMEFRAME = "ALL"
LIVE_TIMEFRAME = "live"


def resolve_range(timeframe: Optional[str]) -> str:
    if timeframe is None:
        timeframe = DEFAULT_TIMEFRAME
    try:
        return TIMEFRAME_RANGES[timeframe]
    except KeyError:
        raise ValidationError(
            f"Unknown timeframe {timeframe!r}. Expected one of {', '.join(TIMEFRAME_RANGES)}"
        )


@dataclass(frozen=True, slots=True)
class Quote:
    symbol: str
    price: Decimal
    market_state: str
    range: str
    # (unix seconds, close) pairs, oldest first
    history: tuple[tuple[int, Decimal], ...] = ()


class QuoteSource(Protocol):
    async def fetch(self, symbol: str, range_: str) -> Quote:
        """Raises UpstreamUnavailableError or NotFoundError on failure."""
        ...


@dataclass(slots=True)
class QuoteCacheEntry:
    symbol: str
    price: Decimal
    observed_at: float


class QuoteCache:
    def __init__(self) -> None:
        self._entries: Dict[str, QuoteCacheEntry] = {}

    def update(self, symbol: str, price: Decimal, observed_at: Optional[float] = None) -> None:
        self._entries[symbol] = QuoteCacheEntry(
            symbol=symbol,
            price=price,
            observed_at=time.time() if observed_at is None else observed_at,
        )

    def get(self, symbol: str) -> Optional[QuoteCacheEntry]:
        return self._entries.get(symbol)

    def price_of(self, symbol: str) -> Optional[Decimal]:
        entry = self._entries.get(symbol)
        return entry.price if entry else None

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class QuoteService:
    def __init__(
        self,
        source: QuoteSource,
        cache: Optional[QuoteCache] = None,
        timeout: float = 5.0,
    ) -> None:
        self.source = source
        self.cache = cache or QuoteCache()
        self.timeout = timeout

    async def fetch(self, symbol: str, timeframe: Optional[str] = LIVE_TIMEFRAME) -> Quote:
        """One quote, bounded by `timeout`. Failures raise UpstreamUnavailableError."""
        symbol = normalize_symbol(symbol)
        range_ = resolve_range(timeframe)

        try:
            quote = await asyncio.wait_for(self.source.fetch(symbol, range_), self.timeout)
        except asyncio.TimeoutError:
            raise UpstreamUnavailableError(f"Quote for {symbol} timed out after {self.timeout}s")

        if not quote.price.is_finite() or quote.price <= 0:
            raise UpstreamUnavailableError(f"Quote for {symbol} has no usable price")

        self.cache.update(symbol, quote.price)
        return quote

    async def fetch_price(self, symbol: str) -> Decimal:
        quote = await self.fetch(symbol, LIVE_TIMEFRAME)
        return quote.price

    async def fetch_many(self, symbols: Iterable[str]) -> Dict[str, Decimal]:
        """
        Live prices for several symbols, fetched concurrently.
        A symbol whose fetch fails is logged and left out of the result.
        """
        unique = sorted(set(symbols))
        if not unique:
            return {}

        results = await asyncio.gather(
            *(self.fetch_price(symbol) for symbol in unique), return_exceptions=True
        )

        prices: Dict[str, Decimal] = {}
        for symbol, result in zip(unique, results):
            if isinstance(result, TradingError):
                logger.warning("Failed to fetch %s: %s", symbol, result.reason)
            elif isinstance(result, Exception):
                logger.error("Unexpected error fetching %s", symbol, exc_info=result)
            elif isinstance(result, BaseException):
                raise result
            else:
                prices[symbol] = result
        return prices

    def latest_price(self, symbol: str) -> Optional[Decimal]:
        """Last observed price, no network."""
        return self.cache.price_of(symbol)


# --- Yahoo Finance adapter ---


def _to_price(raw: Any) -> Optional[Decimal]:
    """Finite Decimal from a payload number, or None for gaps and junk."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def parse_chart(symbol: str, range_: str, data: dict) -> Quote:
    """Builds a Quote from a Yahoo v8 chart payload."""
    results = (data.get("chart") or {}).get("result") or []
    result = results[0] if results else {}
    meta = result.get("meta")
    if not meta:
        raise NotFoundError(f"Stock {symbol} not supported or invalid data format")

    raw_price = meta.get("regularMarketPrice")
    if raw_price is None:
        raise UpstreamUnavailableError(f"Current price for {symbol} is undefined")

    price = _to_price(raw_price)
    if price is None:
        raise UpstreamUnavailableError(f"Current price for {symbol} is not a number: {raw_price!r}")

    timestamps = result.get("timestamp") or []
    quotes = (result.get("indicators") or {}).get("quote") or [{}]
    closes = quotes[0].get("close") or []
    history = []
    for ts, close in zip(timestamps, closes):
        value = _to_price(close)
        if value is not None:
            history.append((int(ts), value))

    return Quote(
        symbol=symbol,
        price=price,
        market_state=str(meta.get("marketState") or "UNKNOWN"),
        range=range_,
        history=tuple(history),
    )


class YahooQuoteSource:
    """QuoteSource backed by Yahoo's public chart endpoint."""

    def __init__(
        self,
        url_template: str = DEFAULT_QUOTE_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
    ) -> None:
        self.url_template = url_template
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": "Mozilla/5.0"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch(self, symbol: str, range_: str) -> Quote:
        url = self.url_template.format(symbol=symbol)
        params = {
            "region": "US",
            "lang": "en-US",
            "includePrePost": "false",
            "interval": "1d",
            "range": range_,
        }

        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise UpstreamUnavailableError(f"HTTP error! status: {status}", status_code=status)
        except httpx.RequestError as exc:
            raise UpstreamUnavailableError(f"Network failure fetching {symbol}: {exc}")
        except ValueError:
            raise UpstreamUnavailableError(f"Invalid JSON in quote response for {symbol}")

        return parse_chart(symbol, range_, data)
