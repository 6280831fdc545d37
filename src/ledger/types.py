from typing import Literal, NotRequired, TypedDict

# Primitives
Side = Literal["buy", "sell"]
Outcome = Literal["success", "failed", "pending"]
TransactionKind = Literal["buy", "sell", "limit_buy", "limit_sell"]
Timeframe = Literal["live", "1M", "3M", "6M", "1Y", "2Y", "5Y", "ALL"]


# Response payloads (core -> caller)
class AccountView(TypedDict):
    account_id: str
    display_name: str
    cash: str
    holdings: dict[str, str]
    fingerprint: str
    net_worth: NotRequired[str]


class QuoteView(TypedDict):
    symbol: str
    price: str
    market_state: str
    range: str
    history: list[tuple[int, str]]


class LeaderboardEntry(TypedDict):
    rank: int
    account_id: str
    display_name: str
    net_worth: str
    cash: str
    missing_symbols: list[str]


class EvaluationReport(TypedDict):
    settled: int
    failed: int
    discarded: int
    skipped: int
    pending: int
