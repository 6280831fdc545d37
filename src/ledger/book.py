import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from ledger.accounts import AccountStore
from ledger.errors import TradingError, ValidationError
from ledger.persistence import Document, MemoryDocument
from ledger.quotes import QuoteService
from ledger.trade import TradeEngine, normalize_symbol, parse_positive, parse_quantity
from ledger.types import EvaluationReport, Side

logger = logging.getLogger(__name__)


def parse_side(raw: Any) -> Side:
    if raw not in ("buy", "sell"):
        raise ValidationError(f"side must be 'buy' or 'sell', got {raw!r}")
    return raw


@dataclass(slots=True)
class LimitOrder:
    owner_id: str
    side: Side
    symbol: str
    limit_price: Decimal
    quantity: Decimal
    created_at: float = field(default_factory=time.time)
    order_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def is_triggered(self, price: Decimal) -> bool:
        """Buy at or below the limit, sell at or above it."""
        if self.side == "buy":
            return price <= self.limit_price
        return price >= self.limit_price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.order_id,
            "owner_id": self.owner_id,
            "side": self.side,
            "symbol": self.symbol,
            "limit_price": str(self.limit_price),
            "quantity": str(self.quantity),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LimitOrder":
        """Rebuilds a stored order, applying the same checks as placement."""
        return cls(
            owner_id=str(data["owner_id"]),
            side=parse_side(data["side"]),
            symbol=normalize_symbol(data["symbol"]),
            limit_price=parse_positive(data["limit_price"], "limit_price"),
            quantity=parse_quantity(data["quantity"]),
            created_at=float(data.get("created_at", 0)),
            order_id=data.get("id") or uuid.uuid4().hex,
        )


class OrderBook:
    """
    Pending limit orders, kept in insertion order.

    Orders are one-shot: once triggered they leave the book whether the
    settlement succeeds or fails. No partial fills, no retries.
    """

    def __init__(
        self,
        accounts: AccountStore,
        engine: TradeEngine,
        document: Optional[Document] = None,
    ) -> None:
        self.accounts = accounts
        self.engine = engine
        self.document = document or MemoryDocument([])
        self._orders: List[LimitOrder] = []

    def __len__(self) -> int:
        return len(self._orders)

    def __iter__(self) -> Iterator[LimitOrder]:
        return iter(list(self._orders))

    def place(
        self,
        owner_id: str,
        side: str,
        symbol: str,
        limit_price: Any,
        quantity: Any,
    ) -> LimitOrder:
        side = parse_side(side)
        symbol = normalize_symbol(symbol)
        price = parse_positive(limit_price, "limit_price")
        qty = parse_quantity(quantity)
        self.accounts.get(owner_id)

        order = LimitOrder(
            owner_id=owner_id, side=side, symbol=symbol, limit_price=price, quantity=qty
        )
        self._orders.append(order)
        self.save()

        kind = "limit_buy" if side == "buy" else "limit_sell"
        self.engine.ledger.record(owner_id, kind, symbol, qty, price, "pending")
        logger.info("Limit %s order added for %s: %s @ $%s", side, symbol, qty, price)
        return order

    def for_owner(self, owner_id: str) -> List[LimitOrder]:
        return [o for o in self._orders if o.owner_id == owner_id]

    def purge_owner(self, owner_id: str) -> int:
        """Drop every pending order owned by `owner_id`. Returns how many."""
        before = len(self._orders)
        self._orders = [o for o in self._orders if o.owner_id != owner_id]
        removed = before - len(self._orders)
        if removed:
            self.save()
            logger.info("Purged %d pending orders for %s", removed, owner_id)
        return removed

    async def evaluate(self, quotes: QuoteService) -> EvaluationReport:
        """
        One evaluation pass.

        Quotes for every distinct symbol are fetched first (the only await).
        Settlement then runs as a single synchronous pass, newest order
        first, so removing by index never shifts an unvisited order.
        """
        symbols = {o.symbol for o in self._orders if self.accounts.exists(o.owner_id)}
        prices = await quotes.fetch_many(symbols)

        report: EvaluationReport = {
            "settled": 0,
            "failed": 0,
            "discarded": 0,
            "skipped": 0,
            "pending": 0,
        }
        changed = False

        try:
            for i in range(len(self._orders) - 1, -1, -1):
                order = self._orders[i]

                if not self.accounts.exists(order.owner_id):
                    del self._orders[i]
                    changed = True
                    report["discarded"] += 1
                    logger.info("Discarded order %s: owner %s no longer exists", order.order_id, order.owner_id)
                    continue

                price = prices.get(order.symbol)
                if price is None:
                    # Fetch failed or order arrived mid-fetch; try next tick
                    report["skipped"] += 1
                    continue

                if not order.is_triggered(price):
                    continue

                del self._orders[i]
                changed = True
                if self._settle(order, price):
                    report["settled"] += 1
                else:
                    report["failed"] += 1

        finally:
            # Triggered orders are already spent; persist that even if the pass broke off
            if changed:
                self.save()
        report["pending"] = len(self._orders)
        return report

    def _settle(self, order: LimitOrder, price: Decimal) -> bool:
        logger.info("Executing %s order for %s at $%s", order.side, order.symbol, price)
        try:
            if order.side == "buy":
                self.engine.buy(order.owner_id, order.symbol, order.quantity, price, kind="limit_buy")
            else:
                self.engine.sell(order.owner_id, order.symbol, order.quantity, price, kind="limit_sell")
        except TradingError as e:
            # Business rejections are already in the ledger as failed.
            # The order is spent either way.
            logger.warning("Limit order %s failed at settlement: %s", order.order_id, e.reason)
            return False
        except Exception:
            logger.exception("Limit order %s crashed during settlement", order.order_id)
            return False
        return True

    # --- Persistence ---

    def save(self) -> None:
        self.document.save([o.to_dict() for o in self._orders])

    def load(self) -> None:
        self._orders.clear()
        data = self.document.load()
        if not isinstance(data, list):
            logger.warning("Order file holds %s, expected a list. Starting fresh.", type(data).__name__)
            data = []
        for raw in data:
            try:
                self._orders.append(LimitOrder.from_dict(raw))
            except TradingError as e:
                logger.warning("Skipping invalid limit order: %s", e.reason)
            except (KeyError, TypeError, AttributeError, ValueError, ArithmeticError) as e:
                logger.warning("Skipping unreadable limit order: %s", e)
        logger.info("Loaded %d pending limit orders.", len(self._orders))
