"""
Display Name Registry: bidirectional index between normalized display
names and account IDs.

AccountStore is the only writer. At most one account owns a normalized
name at any time.
"""

from typing import Dict, Optional

from ledger.errors import NameConflictError


def normalize_name(name: str) -> str:
    """Comparison key for a display name: trimmed, lowercased."""
    return name.strip().lower()


class DisplayNameRegistry:
    """
    - Names compare case-insensitively, ignoring surrounding whitespace
    - Each account owns at most one name and vice versa
    """

    def __init__(self) -> None:
        self._name_to_id: Dict[str, str] = {}
        self._id_to_name: Dict[str, str] = {}

    def owner_of(self, name: str) -> Optional[str]:
        """Account ID currently holding `name`, or None."""
        return self._name_to_id.get(normalize_name(name))

    def name_of(self, account_id: str) -> Optional[str]:
        return self._id_to_name.get(account_id)

    def is_available(self, name: str, account_id: Optional[str] = None) -> bool:
        """True if `name` is free, or already owned by `account_id`."""
        owner = self.owner_of(name)
        return owner is None or owner == account_id

    def claim(self, account_id: str, name: str) -> None:
        """
        Point `name` at `account_id`, releasing the account's previous name.

        Raises NameConflictError if another account owns the name. In that
        case nothing changes.
        """
        key = normalize_name(name)
        owner = self._name_to_id.get(key)
        if owner is not None and owner != account_id:
            raise NameConflictError(name)

        old_key = self._id_to_name.get(account_id)
        if old_key is not None and old_key != key:
            del self._name_to_id[old_key]

        self._name_to_id[key] = account_id
        self._id_to_name[account_id] = key

    def release(self, account_id: str) -> None:
        key = self._id_to_name.pop(account_id, None)
        if key is not None:
            self._name_to_id.pop(key, None)

    def clear(self) -> None:
        self._name_to_id.clear()
        self._id_to_name.clear()

    def __len__(self) -> int:
        return len(self._name_to_id)
