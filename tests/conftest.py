import pytest

from fakes import FakeQuoteSource
from ledger.accounts import AccountStore
from ledger.book import OrderBook
from ledger.quotes import QuoteService
from ledger.trade import TradeEngine
from ledger.transactions import TransactionLedger


@pytest.fixture
def quote_source() -> FakeQuoteSource:
    return FakeQuoteSource({"AAPL": 150, "TSLA": 210, "MSFT": 300})


@pytest.fixture
def quotes(quote_source: FakeQuoteSource) -> QuoteService:
    return QuoteService(quote_source, timeout=1.0)


@pytest.fixture
def accounts() -> AccountStore:
    return AccountStore()


@pytest.fixture
def ledger() -> TransactionLedger:
    return TransactionLedger()


@pytest.fixture
def engine(accounts: AccountStore, ledger: TransactionLedger) -> TradeEngine:
    return TradeEngine(accounts, ledger)


@pytest.fixture
def book(accounts: AccountStore, engine: TradeEngine) -> OrderBook:
    return OrderBook(accounts, engine)
