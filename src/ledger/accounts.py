import logging
import zlib
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterator, Optional

from ledger.config import MAX_NAME_LENGTH, STARTING_CASH
from ledger.errors import (
    InvalidSessionError,
    NameConflictError,
    NotFoundError,
    ValidationError,
)
from ledger.integrity import fingerprint
from ledger.names import DisplayNameRegistry
from ledger.persistence import Document, MemoryDocument
from ledger.types import AccountView

logger = logging.getLogger(__name__)

# Literal text some clients send instead of omitting the field
_ABSENT_NAMES = ("", "null", "undefined")


def clean_name(raw: Optional[str]) -> Optional[str]:
    """Trimmed display name, or None if the client sent nothing usable."""
    if raw is None:
        return None
    name = str(raw).strip()
    if name.lower() in _ABSENT_NAMES:
        return None
    return name


@dataclass
class Account:
    account_id: str
    display_name: str
    cash: Decimal = field(default_factory=lambda: STARTING_CASH)
    holdings: Dict[str, Decimal] = field(default_factory=dict)
    fingerprint: str = ""

    def holding(self, symbol: str) -> Decimal:
        return self.holdings.get(symbol, Decimal("0"))

    def to_view(self) -> AccountView:
        return {
            "account_id": self.account_id,
            "display_name": self.display_name,
            "cash": str(self.cash),
            "holdings": {s: str(q) for s, q in self.holdings.items()},
            "fingerprint": self.fingerprint,
        }


class AccountStore:
    """
    Owns every Account and the display-name index.

    Every mutating method persists the full account table before returning
    (write-through). Mutations never await, so each one is atomic on the
    event loop.
    """

    def __init__(
        self,
        document: Optional[Document] = None,
        purge_on_missing_name: bool = True,
    ) -> None:
        self.accounts: Dict[str, Account] = {}
        self.names = DisplayNameRegistry()
        self.document = document or MemoryDocument({})
        self.purge_on_missing_name = purge_on_missing_name

    def __iter__(self) -> Iterator[Account]:
        return iter(list(self.accounts.values()))

    def __len__(self) -> int:
        return len(self.accounts)

    def exists(self, account_id: str) -> bool:
        return account_id in self.accounts

    def get(self, account_id: str) -> Account:
        account = self.accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Unknown account: {account_id}")
        return account

    def get_or_create(self, account_id: str, requested_name: Optional[str] = None) -> Account:
        """
        Returns the account, creating it with defaults on first access.

        A differing `requested_name` renames the account first. An existing
        account reached without any usable name is treated as a lost
        session: it is deleted and InvalidSessionError is raised (unless
        the store was built with purge_on_missing_name=False).
        """
        if not account_id or not str(account_id).strip():
            raise ValidationError("account_id is required")

        name = clean_name(requested_name)
        account = self.accounts.get(account_id)

        if account is None:
            if name is None:
                name = self._default_name(account_id)
            else:
                self._validate_name(name)
                if not self.names.is_available(name, account_id):
                    raise NameConflictError(name)

            account = Account(account_id=account_id, display_name=name)
            account.fingerprint = fingerprint(account)
            self.names.claim(account_id, name)
            self.accounts[account_id] = account
            self.save()
            logger.info("Created account %s (%s)", account_id, name)
            return account

        if name is None:
            if self.purge_on_missing_name:
                self.delete(account_id)
                raise InvalidSessionError("Session lost: display name missing. Please register again.")
            return account

        if name != account.display_name:
            return self.rename(account_id, name)
        return account

    def rename(self, account_id: str, new_name: str) -> Account:
        account = self.get(account_id)
        name = clean_name(new_name)
        if name is None:
            raise ValidationError("Display name must not be empty")
        self._validate_name(name)

        # Registry swap is all-or-nothing; a conflict leaves both sides untouched
        self.names.claim(account_id, name)
        old_name = account.display_name
        account.display_name = name
        self.save()
        logger.info("Renamed account %s: %s -> %s", account_id, old_name, name)
        return account

    def reset(self, account_id: str, reset_name: bool = False) -> Account:
        """
        Back to starting cash with no holdings.

        Pending limit orders are not touched here; callers must purge the
        owner's orders in the same step.
        """
        account = self.get(account_id)
        account.cash = STARTING_CASH
        account.holdings.clear()

        if reset_name:
            self.names.release(account_id)
            account.display_name = self._default_name(account_id)
            self.names.claim(account_id, account.display_name)

        self.commit(account)
        logger.info("Reset account %s", account_id)
        return account

    def delete(self, account_id: str) -> None:
        if self.accounts.pop(account_id, None) is None:
            return
        self.names.release(account_id)
        self.save()
        logger.info("Deleted account %s", account_id)

    def commit(self, account: Account) -> None:
        """Recompute the fingerprint after a balance change and persist."""
        account.fingerprint = fingerprint(account)
        self.save()

    # --- Helpers ---

    def _validate_name(self, name: str) -> None:
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"Display name longer than {MAX_NAME_LENGTH} characters")

    def _default_name(self, account_id: str) -> str:
        """
        Stable per-account name derived from the ID (CRC32), with a numeric
        suffix if another account already holds it.
        """
        base = f"Trader{zlib.crc32(account_id.encode()) % 100000:05d}"
        candidate = base
        suffix = 1
        while not self.names.is_available(candidate, account_id):
            suffix += 1
            candidate = f"{base}-{suffix}"
        return candidate

    # --- Persistence ---

    def dump_state(self) -> Dict[str, Dict[str, Any]]:
        return {
            account_id: {
                "display_name": acc.display_name,
                "cash": str(acc.cash),
                "holdings": {s: str(q) for s, q in acc.holdings.items()},
                "fingerprint": acc.fingerprint,
            }
            for account_id, acc in self.accounts.items()
        }

    def save(self) -> None:
        self.document.save(self.dump_state())

    def load(self) -> None:
        """Restore accounts and rebuild the name index."""
        data = self.document.load()
        self.accounts.clear()
        self.names.clear()

        if not isinstance(data, dict):
            logger.warning(
                "Account file holds %s, expected an object. Starting fresh.", type(data).__name__
            )
            data = {}

        for account_id, raw in data.items():
            try:
                acc = Account(
                    account_id=account_id,
                    display_name=str(raw["display_name"]),
                    cash=Decimal(raw["cash"]),
                    holdings={s: Decimal(q) for s, q in raw.get("holdings", {}).items()},
                )
            except (KeyError, TypeError, AttributeError, ArithmeticError) as e:
                logger.warning("Skipping unreadable account %s: %s", account_id, e)
                continue

            # Keep the stored fingerprint so the integrity sweep can spot drift
            acc.fingerprint = raw.get("fingerprint") or fingerprint(acc)

            if not self.names.is_available(acc.display_name, account_id):
                fallback = self._default_name(account_id)
                logger.warning(
                    "Duplicate display name '%s' for %s; renamed to %s",
                    acc.display_name,
                    account_id,
                    fallback,
                )
                acc.display_name = fallback
            self.names.claim(account_id, acc.display_name)
            self.accounts[account_id] = acc

        logger.info("Loaded %d accounts.", len(self.accounts))
