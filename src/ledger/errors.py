"""
Error taxonomy for the trading core.

Every rejection carries a stable machine-readable `kind` plus a
human-readable `reason`. The interface layer turns these into responses;
the core modules only raise them.
"""

from decimal import Decimal
from typing import Optional


class TradingError(Exception):
    kind = "trading_error"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ValidationError(TradingError):
    """Malformed or out-of-range input. Raised before any mutation."""

    kind = "validation_error"


class NotFoundError(TradingError):
    kind = "not_found"


class NameConflictError(TradingError):
    kind = "conflict"

    def __init__(self, name: str) -> None:
        super().__init__(f"Display name '{name}' is already taken")
        self.name = name


class InvalidSessionError(TradingError):
    """Account existed but the request carried no usable display name."""

    kind = "invalid_session"


class InsufficientFundsError(TradingError):
    kind = "insufficient_funds"

    def __init__(self, needed: Decimal, available: Decimal) -> None:
        super().__init__(f"Insufficient funds. Need ${needed:.2f}, have ${available:.2f}")
        self.needed = needed
        self.available = available


class InsufficientHoldingsError(TradingError):
    kind = "insufficient_holdings"

    def __init__(self, symbol: str, needed: Decimal, held: Decimal) -> None:
        super().__init__(f"Insufficient {symbol} shares. Need {needed}, hold {held}")
        self.symbol = symbol
        self.needed = needed
        self.held = held


class IntegrityMismatchError(TradingError):
    """
    Client's fingerprint is stale. Stored state is untouched; the caller
    should reset its view to `current_fingerprint`.
    """

    kind = "integrity_mismatch"

    def __init__(self, account_id: str, current_fingerprint: str) -> None:
        super().__init__(f"Account {account_id} changed since it was last read. Reload and retry.")
        self.account_id = account_id
        self.current_fingerprint = current_fingerprint


class UpstreamUnavailableError(TradingError):
    kind = "upstream_unavailable"

    def __init__(self, reason: str, status_code: Optional[int] = None) -> None:
        super().__init__(reason)
        self.status_code = status_code
