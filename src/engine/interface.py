"""
Engine Interface Layer

This module is the boundary between the server (JSON/TCP layer) and the
ledger core (accounts, trade engine, order book). It handles:

1. Translation: raw client dicts -> typed TradingCommand
2. Coordination: verifier + quotes + trade engine + order book
3. Command/Response API: every call returns a TradingResponse, success
   or a typed failure with a stable error kind

Responsibilities:
- Server doesn't know about Decimals, fingerprints or quote fetching
- Core modules raise TradingError; only this layer turns them into responses
- Any await (quote fetch) happens before the mutation it feeds, never inside it
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Optional

from engine.scheduler import PeriodicJob
from ledger.accounts import Account, AccountStore, clean_name
from ledger.book import OrderBook
from ledger.errors import IntegrityMismatchError, TradingError, ValidationError
from ledger.integrity import IntegrityVerifier
from ledger.quotes import QuoteService
from ledger.trade import TradeEngine, normalize_symbol, parse_quantity
from ledger.types import AccountView, QuoteView
from ledger.valuation import build_leaderboard, valuation

logger = logging.getLogger(__name__)

# --- Command Types ---


class TradingAction(Enum):
    """All caller-facing operations"""

    GET_ACCOUNT = auto()
    RENAME_ACCOUNT = auto()
    RESET_ACCOUNT = auto()
    BUY = auto()
    SELL = auto()
    PLACE_LIMIT_ORDER = auto()
    LIST_ORDERS = auto()
    GET_TRANSACTIONS = auto()
    GET_LEADERBOARD = auto()
    GET_QUOTE = auto()
    EVALUATE_ORDERS = auto()


@dataclass
class TradingCommand:
    """
    Unified command structure. Numeric fields stay raw here; the core
    parses and validates them.
    """

    action: TradingAction

    account_id: Optional[str] = None
    name: Optional[str] = None  # None = absent, never the string "null"
    symbol: Optional[str] = None
    side: Optional[str] = None
    quantity: Any = None
    limit_price: Any = None
    fingerprint: Optional[str] = None
    timeframe: Optional[str] = None
    reset_name: bool = False
    limit: Optional[int] = None


@dataclass
class TradingResponse:
    success: bool
    data: Any = None
    message: str = ""
    error: Optional[str] = None  # TradingError.kind on failure

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"status": "ok", "data": self.data, "message": self.message}
        return {
            "status": "error",
            "error": self.error,
            "message": self.message,
            "data": self.data,
        }


# --- Translation Functions ---

_REQUEST_ACTIONS = {
    "account": TradingAction.GET_ACCOUNT,
    "rename": TradingAction.RENAME_ACCOUNT,
    "reset": TradingAction.RESET_ACCOUNT,
    "buy": TradingAction.BUY,
    "sell": TradingAction.SELL,
    "limit_order": TradingAction.PLACE_LIMIT_ORDER,
    "orders": TradingAction.LIST_ORDERS,
    "transactions": TradingAction.GET_TRANSACTIONS,
    "leaderboard": TradingAction.GET_LEADERBOARD,
    "quote": TradingAction.GET_QUOTE,
    "evaluate_orders": TradingAction.EVALUATE_ORDERS,
}

_NEEDS_ACCOUNT = {
    TradingAction.GET_ACCOUNT,
    TradingAction.RENAME_ACCOUNT,
    TradingAction.RESET_ACCOUNT,
    TradingAction.BUY,
    TradingAction.SELL,
    TradingAction.PLACE_LIMIT_ORDER,
    TradingAction.LIST_ORDERS,
    TradingAction.GET_TRANSACTIONS,
}


def translate_client_message(request: dict[str, Any]) -> TradingCommand:
    """
    Converts a client JSON request into a TradingCommand.

    Client representation:
    - {"type": "buy", "account_id": "a1", "symbol": "aapl", "qty": 10, "fingerprint": "..."}
    - {"type": "limit_order", "account_id": "a1", "side": "buy", "symbol": "TSLA",
       "limit_price": 200, "qty": 5}
    - {"type": "account", "account_id": "a1", "name": "null"}  # legacy absent marker

    Raises ValidationError for unknown types or missing fields.
    """
    req_type = request.get("type")
    action = _REQUEST_ACTIONS.get(str(req_type))
    if action is None:
        raise ValidationError(f"Unknown request type: {req_type}")

    try:
        account_id = _optional_str(request.get("account_id"))
        if action in _NEEDS_ACCOUNT and account_id is None:
            raise KeyError("account_id")

        cmd = TradingCommand(
            action=action,
            account_id=account_id,
            name=clean_name(request.get("name")),
            fingerprint=_optional_str(request.get("fingerprint")),
        )

        if action in (TradingAction.BUY, TradingAction.SELL):
            cmd.symbol = request["symbol"]
            cmd.quantity = request["qty"]

        elif action == TradingAction.PLACE_LIMIT_ORDER:
            cmd.side = request["side"]
            cmd.symbol = request["symbol"]
            cmd.limit_price = request["limit_price"]
            cmd.quantity = request["qty"]

        elif action == TradingAction.RENAME_ACCOUNT:
            if cmd.name is None:
                raise KeyError("name")

        elif action == TradingAction.RESET_ACCOUNT:
            cmd.reset_name = bool(request.get("reset_name", False))

        elif action == TradingAction.GET_TRANSACTIONS:
            raw_limit = request.get("limit")
            cmd.limit = int(raw_limit) if raw_limit is not None else None

        elif action == TradingAction.GET_QUOTE:
            cmd.symbol = request["symbol"]
            cmd.timeframe = _optional_str(request.get("timeframe"))

    except KeyError as e:
        raise ValidationError(f"Missing field: {e}")
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Malformed field: {e}")

    return cmd


def _optional_str(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    value = str(raw).strip()
    return value or None


# --- Coordination Layer ---


class TradingInterface:
    """
    High-level interface that coordinates the ledger core.

    This is the main entry point for server.py. One execute() call is one
    caller-facing operation.
    """

    def __init__(
        self,
        accounts: AccountStore,
        verifier: IntegrityVerifier,
        engine: TradeEngine,
        book: OrderBook,
        quotes: QuoteService,
        order_job: Optional[PeriodicJob] = None,
    ) -> None:
        self.accounts = accounts
        self.verifier = verifier
        self.engine = engine
        self.book = book
        self.quotes = quotes
        self.order_job = order_job

    async def execute(self, cmd: TradingCommand) -> TradingResponse:
        """
        Central dispatcher. Converts TradingError into a failed response
        carrying its kind; anything else is logged as an internal error.
        """
        try:
            if cmd.action == TradingAction.GET_ACCOUNT:
                return self._handle_get_account(cmd)

            elif cmd.action == TradingAction.RENAME_ACCOUNT:
                return self._handle_rename(cmd)

            elif cmd.action == TradingAction.RESET_ACCOUNT:
                return self._handle_reset(cmd)

            elif cmd.action in (TradingAction.BUY, TradingAction.SELL):
                return await self._handle_trade(cmd)

            elif cmd.action == TradingAction.PLACE_LIMIT_ORDER:
                return self._handle_place_limit_order(cmd)

            elif cmd.action == TradingAction.LIST_ORDERS:
                return self._handle_list_orders(cmd)

            elif cmd.action == TradingAction.GET_TRANSACTIONS:
                return self._handle_transactions(cmd)

            elif cmd.action == TradingAction.GET_LEADERBOARD:
                board = await build_leaderboard(self.accounts, self.quotes)
                return TradingResponse(success=True, data=board)

            elif cmd.action == TradingAction.GET_QUOTE:
                return await self._handle_quote(cmd)

            elif cmd.action == TradingAction.EVALUATE_ORDERS:
                return await self._handle_evaluate()

            else:
                raise ValidationError(f"Unknown action: {cmd.action}")

        except IntegrityMismatchError as e:
            # Hand back the true state so the client can reset its view
            account = self.accounts.get(e.account_id)
            return TradingResponse(
                success=False,
                error=e.kind,
                message=e.reason,
                data={"account": self._account_view(account)},
            )
        except TradingError as e:
            logger.info("%s rejected (%s): %s", cmd.action.name, e.kind, e.reason)
            return TradingResponse(success=False, error=e.kind, message=e.reason)
        except Exception:
            logger.exception("Unexpected error handling %s", cmd.action.name)
            return TradingResponse(
                success=False, error="internal_error", message="Internal server error"
            )

    # --- Handlers ---

    def _handle_get_account(self, cmd: TradingCommand) -> TradingResponse:
        account = self.accounts.get_or_create(cmd.account_id, cmd.name)
        return TradingResponse(success=True, data=self._account_view(account))

    def _handle_rename(self, cmd: TradingCommand) -> TradingResponse:
        account = self.accounts.rename(cmd.account_id, cmd.name)
        return TradingResponse(
            success=True,
            data=self._account_view(account),
            message=f"Renamed to {account.display_name}",
        )

    def _handle_reset(self, cmd: TradingCommand) -> TradingResponse:
        """Reset and order purge run back to back with no await between."""
        account = self.accounts.reset(cmd.account_id, reset_name=cmd.reset_name)
        purged = self.book.purge_owner(cmd.account_id)
        return TradingResponse(
            success=True,
            data={"account": self._account_view(account), "orders_cancelled": purged},
            message="Account reset",
        )

    async def _handle_trade(self, cmd: TradingCommand) -> TradingResponse:
        """
        Immediate buy/sell at the live quote.

        Steps:
        1. Validate input and account (no mutation, no network)
        2. Fetch the live price (the only suspension point)
        3. Verify the client's fingerprint against the state *after* the await
        4. Apply the trade
        """
        symbol = normalize_symbol(cmd.symbol)
        parse_quantity(cmd.quantity)
        self.accounts.get(cmd.account_id)

        price = await self.quotes.fetch_price(symbol)

        self.verifier.verify(cmd.account_id, cmd.fingerprint)
        if cmd.action == TradingAction.BUY:
            record = self.engine.buy(cmd.account_id, symbol, cmd.quantity, price)
        else:
            record = self.engine.sell(cmd.account_id, symbol, cmd.quantity, price)

        account = self.accounts.get(cmd.account_id)
        return TradingResponse(
            success=True,
            data={"transaction": record.to_dict(), "account": self._account_view(account)},
            message=f"{record.kind.capitalize()} {record.quantity} {symbol} @ ${record.price}",
        )

    def _handle_place_limit_order(self, cmd: TradingCommand) -> TradingResponse:
        self.verifier.verify(cmd.account_id, cmd.fingerprint)
        order = self.book.place(
            owner_id=cmd.account_id,
            side=str(cmd.side),
            symbol=cmd.symbol,
            limit_price=cmd.limit_price,
            quantity=cmd.quantity,
        )
        return TradingResponse(
            success=True,
            data=order.to_dict(),
            message=f"Limit {order.side} order added for {order.symbol} at ${order.limit_price}",
        )

    def _handle_list_orders(self, cmd: TradingCommand) -> TradingResponse:
        self.accounts.get(cmd.account_id)
        orders = [o.to_dict() for o in self.book.for_owner(cmd.account_id)]
        return TradingResponse(success=True, data=orders)

    def _handle_transactions(self, cmd: TradingCommand) -> TradingResponse:
        self.accounts.get(cmd.account_id)
        records = self.engine.ledger.for_account(cmd.account_id, limit=cmd.limit)
        return TradingResponse(success=True, data=[r.to_dict() for r in records])

    async def _handle_quote(self, cmd: TradingCommand) -> TradingResponse:
        quote = await self.quotes.fetch(cmd.symbol, cmd.timeframe)
        view: QuoteView = {
            "symbol": quote.symbol,
            "price": str(quote.price),
            "market_state": quote.market_state,
            "range": quote.range,
            "history": [(ts, str(close)) for ts, close in quote.history],
        }
        return TradingResponse(success=True, data=view)

    async def _handle_evaluate(self) -> TradingResponse:
        if self.order_job is not None:
            report = await self.order_job.run_once()
        else:
            report = await self.book.evaluate(self.quotes)

        if report is None:
            return TradingResponse(success=True, message="Evaluation already running; skipped")
        return TradingResponse(success=True, data=report, message="Limit orders evaluated")

    def _account_view(self, account: Account) -> AccountView:
        view = account.to_view()
        view["net_worth"] = str(valuation(account, self.quotes.cache).net_worth)
        return view
