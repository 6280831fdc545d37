import asyncio
from decimal import Decimal
from typing import Optional

from ledger.errors import NotFoundError, UpstreamUnavailableError
from ledger.quotes import Quote


class FakeQuoteSource:
    """
    In-memory QuoteSource.
    Tests move prices with set_price() and break symbols with fail().
    """

    def __init__(self, prices: Optional[dict] = None, delay: float = 0.0) -> None:
        self.prices: dict[str, Decimal] = {}
        for symbol, price in (prices or {}).items():
            self.set_price(symbol, price)
        self.failing: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.delay = delay

    def set_price(self, symbol: str, price) -> None:
        self.prices[symbol] = Decimal(str(price))

    def fail(self, symbol: str) -> None:
        self.failing.add(symbol)

    async def fetch(self, symbol: str, range_: str) -> Quote:
        self.calls.append((symbol, range_))
        if self.delay:
            await asyncio.sleep(self.delay)
        if symbol in self.failing:
            raise UpstreamUnavailableError("HTTP error! status: 503", status_code=503)
        if symbol not in self.prices:
            raise NotFoundError(f"Stock {symbol} not supported or invalid data format")
        return Quote(
            symbol=symbol,
            price=self.prices[symbol],
            market_state="REGULAR",
            range=range_,
            history=((1700000000, self.prices[symbol]),),
        )
