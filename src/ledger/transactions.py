import logging
import time
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from ledger.persistence import Document, MemoryDocument
from ledger.types import Outcome, TransactionKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    account_id: str
    kind: TransactionKind
    symbol: str
    quantity: Decimal
    price: Decimal
    timestamp: float
    outcome: Outcome
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["quantity"] = str(self.quantity)
        data["price"] = str(self.price)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionRecord":
        return cls(
            account_id=data["account_id"],
            kind=data["kind"],
            symbol=data["symbol"],
            quantity=Decimal(data["quantity"]),
            price=Decimal(data["price"]),
            timestamp=float(data["timestamp"]),
            outcome=data["outcome"],
            reason=data.get("reason"),
        )


class TransactionLedger:
    """
    Append-only audit log of every attempted and executed trade.
    Order is completion order. Entries are never rewritten or removed.
    """

    def __init__(self, document: Optional[Document] = None) -> None:
        self._records: List[TransactionRecord] = []
        self.document = document or MemoryDocument([])

    def record(
        self,
        account_id: str,
        kind: TransactionKind,
        symbol: str,
        quantity: Decimal,
        price: Decimal,
        outcome: Outcome,
        reason: Optional[str] = None,
    ) -> TransactionRecord:
        entry = TransactionRecord(
            account_id=account_id,
            kind=kind,
            symbol=symbol,
            quantity=quantity,
            price=price,
            timestamp=time.time(),
            outcome=outcome,
            reason=reason,
        )
        self._records.append(entry)
        self.save()
        return entry

    def for_account(self, account_id: str, limit: Optional[int] = None) -> List[TransactionRecord]:
        """Account's records, oldest first. `limit` keeps the newest N."""
        mine = [r for r in self._records if r.account_id == account_id]
        if limit is not None:
            mine = mine[-limit:] if limit > 0 else []
        return mine

    def __iter__(self) -> Iterator[TransactionRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    # --- Persistence ---

    def save(self) -> None:
        self.document.save([r.to_dict() for r in self._records])

    def load(self) -> None:
        self._records.clear()
        data = self.document.load()
        if not isinstance(data, list):
            logger.warning("Transaction file holds %s, expected a list. Starting fresh.", type(data).__name__)
            data = []
        for raw in data:
            try:
                self._records.append(TransactionRecord.from_dict(raw))
            except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                logger.warning("Skipping unreadable transaction record: %s", e)
        logger.info("Loaded %d transaction records.", len(self._records))
