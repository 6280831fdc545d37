# tests/test_names.py
# Usage: uv run pytest tests/test_names.py -v

import pytest

from ledger.errors import NameConflictError
from ledger.names import DisplayNameRegistry, normalize_name


def test_normalize_trims_and_lowercases():
    assert normalize_name("  Alice ") == "alice"
    assert normalize_name("BOB") == "bob"


def test_claim_is_case_insensitive():
    """Same name in a different case still belongs to the first owner."""
    registry = DisplayNameRegistry()
    registry.claim("acc-1", "Alice")

    assert registry.owner_of("alice") == "acc-1"
    assert registry.owner_of(" ALICE ") == "acc-1"

    with pytest.raises(NameConflictError):
        registry.claim("acc-2", "aLiCe")


def test_rename_releases_old_name():
    registry = DisplayNameRegistry()
    registry.claim("acc-1", "alice")
    registry.claim("acc-1", "alicia")

    assert registry.owner_of("alice") is None
    assert registry.owner_of("alicia") == "acc-1"
    assert len(registry) == 1


def test_conflict_changes_nothing():
    """
    Scenario:
    1. acc-1 owns "alice", acc-2 owns "bob"
    2. acc-2 tries to take "alice"
    Result: both mappings untouched.
    """
    registry = DisplayNameRegistry()
    registry.claim("acc-1", "alice")
    registry.claim("acc-2", "bob")

    with pytest.raises(NameConflictError):
        registry.claim("acc-2", "alice")

    assert registry.owner_of("alice") == "acc-1"
    assert registry.owner_of("bob") == "acc-2"
    assert registry.name_of("acc-2") == "bob"


def test_reclaiming_own_name_is_allowed():
    registry = DisplayNameRegistry()
    registry.claim("acc-1", "alice")
    registry.claim("acc-1", "Alice")

    assert registry.owner_of("alice") == "acc-1"
    assert len(registry) == 1


def test_release():
    registry = DisplayNameRegistry()
    registry.claim("acc-1", "alice")
    registry.release("acc-1")

    assert registry.owner_of("alice") is None
    assert registry.is_available("alice")
    # Releasing twice is harmless
    registry.release("acc-1")
