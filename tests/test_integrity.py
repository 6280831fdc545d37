# tests/test_integrity.py
# Usage: uv run pytest tests/test_integrity.py -v

import logging
from decimal import Decimal

import pytest

from ledger.accounts import Account, AccountStore
from ledger.errors import IntegrityMismatchError, NotFoundError
from ledger.integrity import IntegrityVerifier, fingerprint
from ledger.trade import TradeEngine


def make_account(cash="100", holdings=None, name="alice") -> Account:
    return Account(
        account_id="acc-1",
        display_name=name,
        cash=Decimal(cash),
        holdings={s: Decimal(q) for s, q in (holdings or {}).items()},
    )


def test_fingerprint_is_stable():
    account = make_account(holdings={"AAPL": "10"})
    assert fingerprint(account) == fingerprint(account)


def test_fingerprint_ignores_holdings_order_and_decimal_form():
    a = make_account(cash="100", holdings={"AAPL": "10", "MSFT": "2"})
    b = make_account(cash="100.00", holdings={"MSFT": "2.0", "AAPL": "1E+1"})
    assert fingerprint(a) == fingerprint(b)


def test_fingerprint_ignores_display_name():
    assert fingerprint(make_account(name="alice")) == fingerprint(make_account(name="bob"))


def test_fingerprint_changes_with_cash_or_holdings():
    base = fingerprint(make_account(cash="100", holdings={"AAPL": "1"}))
    assert fingerprint(make_account(cash="101", holdings={"AAPL": "1"})) != base
    assert fingerprint(make_account(cash="100", holdings={"AAPL": "2"})) != base
    assert fingerprint(make_account(cash="100", holdings={"TSLA": "1"})) != base


def test_verify_accepts_current_and_absent(accounts: AccountStore):
    verifier = IntegrityVerifier(accounts)
    account = accounts.get_or_create("acc-1", "Alice")

    verifier.verify("acc-1", account.fingerprint)
    verifier.verify("acc-1", None)


def test_verify_rejects_stale_view_without_touching_state(
    accounts: AccountStore, engine: TradeEngine
):
    """
    Scenario:
    1. Client reads the account (fingerprint F1)
    2. Another request buys shares (fingerprint now F2)
    3. Client submits F1
    Result: mismatch carrying F2, balances unchanged by the check.
    """
    verifier = IntegrityVerifier(accounts)
    account = accounts.get_or_create("acc-1", "Alice")
    stale = account.fingerprint
    engine.buy("acc-1", "AAPL", 1, 100)
    cash_after_buy = account.cash

    with pytest.raises(IntegrityMismatchError) as exc_info:
        verifier.verify("acc-1", stale)

    assert exc_info.value.current_fingerprint == account.fingerprint
    assert account.cash == cash_after_buy


def test_verify_unknown_account(accounts: AccountStore):
    with pytest.raises(NotFoundError):
        IntegrityVerifier(accounts).verify("ghost", "abc")


def test_sweep_clean_after_normal_trading(accounts: AccountStore, engine: TradeEngine):
    accounts.get_or_create("acc-1", "Alice")
    accounts.get_or_create("acc-2", "Bob")
    engine.buy("acc-1", "AAPL", 3, 50)
    engine.sell("acc-1", "AAPL", 1, 55)
    accounts.rename("acc-2", "Robert")

    assert IntegrityVerifier(accounts).run_sweep() == []


def test_sweep_flags_drift(accounts: AccountStore, caplog):
    """A balance changed without recomputing the fingerprint is a bug."""
    account = accounts.get_or_create("acc-1", "Alice")
    account.cash += Decimal("1000000")  # bypasses commit()

    with caplog.at_level(logging.CRITICAL):
        issues = IntegrityVerifier(accounts).run_sweep()

    assert [(i.account_id, i.check) for i in issues] == [("acc-1", "fingerprint")]
    assert "INTEGRITY DRIFT" in caplog.text


def test_sweep_flags_negative_cash_and_dust(accounts: AccountStore):
    account = accounts.get_or_create("acc-1", "Alice")
    account.cash = Decimal("-1")
    account.holdings["AAPL"] = Decimal("0.0001")
    accounts.commit(account)

    checks = sorted(i.check for i in IntegrityVerifier(accounts).run_sweep())

    assert checks == ["cash", "holdings"]


def test_sweep_flags_registry_mismatch(accounts: AccountStore):
    account = accounts.get_or_create("acc-1", "Alice")
    account.display_name = "Mallory"  # bypasses rename()

    issues = IntegrityVerifier(accounts).run_sweep()

    assert any(i.check == "registry" for i in issues)
