import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

from ledger.accounts import Account, AccountStore
from ledger.quotes import QuoteCache, QuoteService
from ledger.types import LeaderboardEntry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Valuation:
    account_id: str
    net_worth: Decimal
    missing_symbols: List[str] = field(default_factory=list)


def valuation(account: Account, cache: QuoteCache) -> Valuation:
    """
    cash + sum(quantity * last known price).
    A symbol with no cached price counts as 0 and is reported, never raised.
    """
    total = account.cash
    missing = []
    for symbol, qty in account.holdings.items():
        price = cache.price_of(symbol)
        if price is None:
            missing.append(symbol)
            continue
        total += qty * price

    if missing:
        logger.warning(
            "No cached price for %s; valuing at 0 for %s", ", ".join(missing), account.account_id
        )
    return Valuation(account_id=account.account_id, net_worth=total, missing_symbols=missing)


async def build_leaderboard(accounts: AccountStore, quotes: QuoteService) -> List[LeaderboardEntry]:
    """
    Full recomputation: refresh every held symbol, then rank by net worth.
    Ties keep store order.
    """
    symbols = {symbol for account in accounts for symbol in account.holdings}
    await quotes.fetch_many(symbols)

    # Re-read after the await; accounts may have traded meanwhile
    valued = [(account, valuation(account, quotes.cache)) for account in accounts]
    valued.sort(key=lambda pair: pair[1].net_worth, reverse=True)

    return [
        {
            "rank": rank,
            "account_id": account.account_id,
            "display_name": account.display_name,
            "net_worth": str(v.net_worth),
            "cash": str(account.cash),
            "missing_symbols": v.missing_symbols,
        }
        for rank, (account, v) in enumerate(valued, start=1)
    ]
