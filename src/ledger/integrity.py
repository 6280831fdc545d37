# Rules:
# stored fingerprint == fingerprint recomputed from cash + holdings
# cash >= 0, every holding > HOLDING_EPSILON
# name registry == account display names

import hashlib
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Mapping, Optional

from ledger.config import HOLDING_EPSILON
from ledger.errors import IntegrityMismatchError
from ledger.names import normalize_name

if TYPE_CHECKING:
    from ledger.accounts import AccountStore

logger = logging.getLogger(__name__)


def _canonical(value: Decimal) -> str:
    # 100, 100.0 and 1E+2 must hash the same
    return format(Decimal(value).normalize(), "f")


def fingerprint(account: Any) -> str:
    """
    SHA-256 over exactly {cash, holdings}.

    Holdings are sorted by symbol so dict order never matters. The display
    name is left out so renames keep the fingerprint.
    """
    holdings: Mapping[str, Decimal] = account.holdings
    payload = {
        "cash": _canonical(account.cash),
        "holdings": [[symbol, _canonical(holdings[symbol])] for symbol in sorted(holdings)],
    }
    blob = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return hashlib.sha256(blob.encode()).hexdigest()


@dataclass(frozen=True, slots=True)
class IntegrityIssue:
    account_id: str
    check: str
    detail: str


class IntegrityVerifier:
    def __init__(self, accounts: "AccountStore") -> None:
        self.accounts = accounts

    def verify(self, account_id: str, supplied: Optional[str]) -> None:
        """
        Optimistic concurrency check for a mutating call.

        `supplied` is the fingerprint the client last saw. None skips the
        check. A mismatch raises IntegrityMismatchError; the account itself
        is never modified here.
        """
        account = self.accounts.get(account_id)
        if supplied is None:
            return

        live = fingerprint(account)
        if supplied != live:
            logger.warning("Stale fingerprint from %s, rejecting call", account_id)
            raise IntegrityMismatchError(account_id, live)

    def run_sweep(self) -> list[IntegrityIssue]:
        """
        Runs all invariant checks over every account.
        Any issue means a mutation path skipped a recompute, i.e. a bug.
        """
        logger.debug("Starting integrity sweep over %d accounts", len(self.accounts))

        issues = self._audit_fingerprints() + self._audit_balances() + self._audit_registry()
        for issue in issues:
            logger.critical(
                "INTEGRITY DRIFT on %s [%s]: %s", issue.account_id, issue.check, issue.detail
            )

        if not issues:
            logger.debug("Integrity sweep complete: all accounts sound")
        return issues

    def _audit_fingerprints(self) -> list[IntegrityIssue]:
        """Stored fingerprint must match the live balances."""
        issues = []
        for account in self.accounts:
            live = fingerprint(account)
            if account.fingerprint != live:
                issues.append(
                    IntegrityIssue(
                        account.account_id,
                        "fingerprint",
                        f"stored {account.fingerprint[:12]} != live {live[:12]}",
                    )
                )
        return issues

    def _audit_balances(self) -> list[IntegrityIssue]:
        """No negative cash, no dust or negative holdings."""
        issues = []
        for account in self.accounts:
            if account.cash < 0:
                issues.append(IntegrityIssue(account.account_id, "cash", f"negative cash {account.cash}"))
            for symbol, qty in account.holdings.items():
                if qty <= HOLDING_EPSILON:
                    issues.append(
                        IntegrityIssue(account.account_id, "holdings", f"{symbol} quantity {qty}")
                    )
        return issues

    def _audit_registry(self) -> list[IntegrityIssue]:
        """Name index must agree with the accounts it points at."""
        issues = []
        names = self.accounts.names
        for account in self.accounts:
            owner = names.owner_of(account.display_name)
            if owner != account.account_id:
                issues.append(
                    IntegrityIssue(
                        account.account_id,
                        "registry",
                        f"name '{normalize_name(account.display_name)}' maps to {owner}",
                    )
                )
        if len(names) != len(self.accounts):
            issues.append(
                IntegrityIssue(
                    "*", "registry", f"{len(names)} names for {len(self.accounts)} accounts"
                )
            )
        return issues
