# Overview: Pytest coverage for the append-only ledger and balance verification.

"""
Ledger Service Tests

Every balance change is one immutable entry; cached balances must always
be reproducible from the entries.

Test Coverage:
- Immutability: ORM updates and deletes of entries are rejected
- Snapshot checks: stale expected balances raise ConcurrentModification
- Non-negative accounts: wallets, gift cards and drawer sessions never go below zero
- History and point-in-time balances
- Verification: drift between cached balance and ledger is reported
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from studio_ledger.errors import ValidationError
from studio_ledger.models import CashDrawerSession, LedgerEntry, Wallet
from studio_ledger.models.ledger import ACCOUNT_WALLET, KIND_PAYOUT, KIND_PURCHASE, KIND_REDEMPTION
from studio_ledger.services import ledger_service, register_service, wallet_service
from studio_ledger.services.ledger_service import (
    ConcurrentModification,
    LedgerError,
    LedgerImmutabilityError,
    append_entry,
)
from studio_ledger.time_utils import utcnow


@pytest.fixture
def wallet(db_session, org_a):
    return wallet_service.get_or_create_wallet(org_a.id, customer_id=101)


class TestImmutability:
    """Entries can be appended but never changed."""

    def test_update_is_rejected(self, db_session, org_a, wallet):
        entry = wallet_service.top_up(org_a.id, wallet.id, 5000)

        entry.note = "rewritten"
        with pytest.raises(LedgerImmutabilityError):
            db_session.flush()
        db_session.rollback()

        assert db_session.get(LedgerEntry, entry.id).note is None

    def test_delete_is_rejected(self, db_session, org_a, wallet):
        entry = wallet_service.top_up(org_a.id, wallet.id, 5000)

        db_session.delete(entry)
        with pytest.raises(LedgerImmutabilityError):
            db_session.flush()
        db_session.rollback()

        assert db_session.query(LedgerEntry).count() == 1


class TestAppendEntry:
    """Write-path guards in append_entry."""

    def test_entry_carries_before_and_after(self, db_session, org_a, wallet):
        wallet_service.top_up(org_a.id, wallet.id, 3000)
        entry = wallet_service.top_up(org_a.id, wallet.id, 2000)

        assert entry.balance_before_cents == 3000
        assert entry.balance_after_cents == 5000
        assert db_session.get(Wallet, wallet.id).balance_cents == 5000

    def test_stale_snapshot_writes_nothing(self, db_session, org_a, wallet):
        wallet_service.top_up(org_a.id, wallet.id, 3000)
        account = db_session.get(Wallet, wallet.id)

        with pytest.raises(ConcurrentModification):
            append_entry(account, KIND_PURCHASE, amount_delta_cents=100, expected_balance_cents=0)
        db_session.rollback()

        assert db_session.query(LedgerEntry).count() == 1

    def test_wallet_cannot_go_negative(self, db_session, org_a, wallet):
        account = db_session.get(Wallet, wallet.id)

        with pytest.raises(LedgerError):
            append_entry(account, KIND_REDEMPTION, amount_delta_cents=-1)
        db_session.rollback()

    def test_drawer_session_cannot_go_negative(self, db_session, org_a):
        drawer = register_service.create_drawer(org_a.id, location="Zurich", name="Front desk")
        session = register_service.open_session(org_a.id, drawer.id, operator="anna", opening_float_cents=1000)
        account = db_session.get(CashDrawerSession, session.id)

        with pytest.raises(LedgerError):
            append_entry(account, KIND_PAYOUT, amount_delta_cents=-1005)
        db_session.rollback()

    def test_entry_must_move_something(self, db_session, org_a, wallet):
        account = db_session.get(Wallet, wallet.id)

        with pytest.raises(ValidationError) as exc_info:
            append_entry(account, KIND_PURCHASE)
        assert "must move a balance" in str(exc_info.value)
        db_session.rollback()


class TestHistory:
    """Reads derived from the entries."""

    def test_history_is_oldest_first(self, db_session, org_a, wallet):
        wallet_service.top_up(org_a.id, wallet.id, 1000)
        wallet_service.top_up(org_a.id, wallet.id, 2000)
        wallet_service.debit_wallet(org_a.id, wallet.id, 500, reference_type="order", reference_id="ORD-1")

        entries = ledger_service.history(org_a.id, ACCOUNT_WALLET, wallet.id)

        assert [e.amount_delta_cents for e in entries] == [1000, 2000, -500]
        assert entries[-1].balance_after_cents == 2500

    def test_history_limit(self, db_session, org_a, wallet):
        for amount in (100, 200, 300):
            wallet_service.top_up(org_a.id, wallet.id, amount)

        entries = ledger_service.history(org_a.id, ACCOUNT_WALLET, wallet.id, limit=2)

        assert [e.amount_delta_cents for e in entries] == [100, 200]

    def test_balance_as_of_is_inclusive(self, db_session, org_a, wallet):
        first = wallet_service.top_up(org_a.id, wallet.id, 1000)
        wallet_service.top_up(org_a.id, wallet.id, 2000)

        before = first.occurred_at - timedelta(seconds=1)
        assert ledger_service.balance_as_of(org_a.id, ACCOUNT_WALLET, wallet.id, before) == 0
        assert ledger_service.balance_as_of(org_a.id, ACCOUNT_WALLET, wallet.id, utcnow()) == 3000
        assert ledger_service.balance_as_of(org_a.id, ACCOUNT_WALLET, wallet.id) == 3000

    def test_history_is_tenant_scoped(self, db_session, org_a, org_b, wallet):
        wallet_service.top_up(org_a.id, wallet.id, 1000)

        assert ledger_service.history(org_b.id, ACCOUNT_WALLET, wallet.id) == []


class TestVerification:
    """Cached balances against the sum of entries."""

    def test_clean_org_has_no_drift(self, db_session, org_a, wallet):
        wallet_service.top_up(org_a.id, wallet.id, 4200)
        wallet_service.add_credits(org_a.id, wallet.id, "class", 5)

        checks = ledger_service.verify_org(org_a.id)

        assert checks
        assert all(c.ok for c in checks)
        assert any(c.account_type == "wallet_credits" and c.credit_type == "class" for c in checks)

    def test_tampered_cache_is_reported(self, db_session, org_a, wallet):
        wallet_service.top_up(org_a.id, wallet.id, 4200)
        db_session.execute(
            update(Wallet).where(Wallet.id == wallet.id).values(balance_cents=9999)
        )
        db_session.commit()

        check = ledger_service.verify_account(org_a.id, ACCOUNT_WALLET, wallet.id)

        assert not check.ok
        assert check.cached == 9999
        assert check.computed == 4200
