"""
Configuration.

Ledger rules are module constants. Deployment knobs live on Settings and
are read from the environment with sensible defaults.
"""

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Optional

# --- Ledger rules ---

STARTING_CASH = Decimal("100000")
# Holdings at or below this are dust and get dropped
HOLDING_EPSILON = Decimal("0.001")
MAX_NAME_LENGTH = 32

# --- Deployment ---

DEFAULT_QUOTE_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    data_dir: Optional[Path] = None  # None = keep state in memory only
    host: str = "0.0.0.0"
    port: int = 8888
    order_interval: float = 10.0
    integrity_interval: float = 300.0
    quote_timeout: float = 5.0
    quote_url: str = DEFAULT_QUOTE_URL
    debug: bool = False
    # Legacy lost-session policy: delete an existing account when a request
    # arrives without a usable display name.
    purge_on_missing_name: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        data_dir = os.getenv("PAPERTRADE_DATA_DIR")
        return cls(
            data_dir=Path(data_dir) if data_dir else None,
            host=os.getenv("PAPERTRADE_HOST", "0.0.0.0"),
            port=int(os.getenv("PAPERTRADE_PORT", "8888")),
            order_interval=float(os.getenv("PAPERTRADE_ORDER_INTERVAL", "10")),
            integrity_interval=float(os.getenv("PAPERTRADE_INTEGRITY_INTERVAL", "300")),
            quote_timeout=float(os.getenv("PAPERTRADE_QUOTE_TIMEOUT", "5")),
            quote_url=os.getenv("PAPERTRADE_QUOTE_URL", DEFAULT_QUOTE_URL),
            debug=_env_flag("PAPERTRADE_DEBUG", False),
            purge_on_missing_name=_env_flag("PAPERTRADE_PURGE_ON_MISSING_NAME", True),
        )
