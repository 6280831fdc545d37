import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any

from ledger.accounts import AccountStore
from ledger.config import HOLDING_EPSILON
from ledger.errors import (
    InsufficientFundsError,
    InsufficientHoldingsError,
    ValidationError,
)
from ledger.transactions import TransactionLedger, TransactionRecord
from ledger.types import TransactionKind

logger = logging.getLogger(__name__)


def normalize_symbol(raw: Any) -> str:
    symbol = str(raw or "").strip().upper()
    if not symbol:
        raise ValidationError("symbol is required")
    return symbol


def parse_positive(raw: Any, field_name: str) -> Decimal:
    """
    Decimal from int/float/str input, rejecting anything not strictly positive.
    Floats go through str() so 0.1 stays 0.1.
    """
    if isinstance(raw, bool) or raw is None:
        raise ValidationError(f"{field_name} must be a number")
    if isinstance(raw, float):
        if not math.isfinite(raw):
            raise ValidationError(f"{field_name} must be finite")
        raw = str(raw)
    try:
        value = Decimal(raw)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number, got {raw!r}")
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"{field_name} must be greater than 0")
    return value


def parse_quantity(raw: Any) -> Decimal:
    qty = parse_positive(raw, "quantity")
    if qty <= HOLDING_EPSILON:
        raise ValidationError(f"quantity must be greater than {HOLDING_EPSILON}")
    return qty


class TradeEngine:
    """
    Applies buy/sell mutations to accounts. Used by interactive requests and
    by limit-order settlement.

    Each call is one synchronous step: validate, mutate, recompute the
    fingerprint, persist, append to the ledger. Business rejections are
    recorded as failed transactions before raising.
    """

    def __init__(self, accounts: AccountStore, ledger: TransactionLedger) -> None:
        self.accounts = accounts
        self.ledger = ledger

    def buy(
        self,
        account_id: str,
        symbol: str,
        quantity: Any,
        price: Any,
        kind: TransactionKind = "buy",
    ) -> TransactionRecord:
        symbol = normalize_symbol(symbol)
        qty = parse_quantity(quantity)
        px = parse_positive(price, "price")
        account = self.accounts.get(account_id)

        cost = qty * px
        if account.cash < cost:
            error = InsufficientFundsError(cost, account.cash)
            self.ledger.record(account_id, kind, symbol, qty, px, "failed", error.reason)
            logger.warning("Buy rejected for %s: %s", account_id, error.reason)
            raise error

        account.cash -= cost
        account.holdings[symbol] = account.holding(symbol) + qty
        self.accounts.commit(account)

        logger.info("%s bought %s %s @ %s", account_id, qty, symbol, px)
        return self.ledger.record(account_id, kind, symbol, qty, px, "success")

    def sell(
        self,
        account_id: str,
        symbol: str,
        quantity: Any,
        price: Any,
        kind: TransactionKind = "sell",
    ) -> TransactionRecord:
        symbol = normalize_symbol(symbol)
        qty = parse_quantity(quantity)
        px = parse_positive(price, "price")
        account = self.accounts.get(account_id)

        held = account.holding(symbol)
        if held < qty:
            error = InsufficientHoldingsError(symbol, qty, held)
            self.ledger.record(account_id, kind, symbol, qty, px, "failed", error.reason)
            logger.warning("Sell rejected for %s: %s", account_id, error.reason)
            raise error

        account.cash += qty * px
        remaining = held - qty
        if remaining <= HOLDING_EPSILON:
            # Drop dust so settled positions don't linger at ~0
            del account.holdings[symbol]
        else:
            account.holdings[symbol] = remaining
        self.accounts.commit(account)

        logger.info("%s sold %s %s @ %s", account_id, qty, symbol, px)
        return self.ledger.record(account_id, kind, symbol, qty, px, "success")
