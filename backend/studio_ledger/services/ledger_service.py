# Overview: Append-only ledger store; the single write path for every balance.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy import event, func

from ..errors import LedgerCoreError, NotFound, ValidationError
from ..extensions import db
from ..models import CashDrawerSession, CreditLot, GiftCard, LedgerEntry, Wallet
from ..models.ledger import (
    ACCOUNT_CASH_DRAWER_SESSION,
    ACCOUNT_GIFT_CARD,
    ACCOUNT_TYPES,
    ACCOUNT_WALLET,
    ENTRY_KINDS,
    KIND_FLOAT,
)
from ..time_utils import utcnow
"""
Ledger Store Invariants (authoritative)

- Append-only: entries are never updated or deleted.
- Every change to a wallet, gift card or drawer session balance goes through
  append_entry; account.balance_cents is a projection of the entries.
- balance_cents == SUM(amount_delta_cents) per account, at every commit.
- For wallet credits: SUM(credit_delta) per (wallet, credit_type) equals the
  remaining quantity of that wallet's lots of the type.
- Entries are written inside the caller's transaction (flush, not commit).
- occurred_at is business time; as-of reads are inclusive: occurred_at <= as_of.
"""


class LedgerError(LedgerCoreError):
    """Raised for invalid ledger writes."""
    code = "LEDGER_ERROR"
    http_status = 400


class ConcurrentModification(LedgerError):
    """
    The caller's balance snapshot no longer matches the account.

    Retryable: re-read the account and try again.
    """
    code = "CONCURRENT_MODIFICATION"
    http_status = 409
    retryable = True


class LedgerImmutabilityError(LedgerError):
    """Raised when code attempts to update or delete a ledger entry."""
    code = "LEDGER_IMMUTABLE"
    http_status = 500


ACCOUNT_MODELS = {
    ACCOUNT_WALLET: Wallet,
    ACCOUNT_GIFT_CARD: GiftCard,
    ACCOUNT_CASH_DRAWER_SESSION: CashDrawerSession,
}

# No account runs below zero: prepaid balances are owed to the customer and a
# drawer session cannot hand out more cash than it holds.


@dataclass(frozen=True)
class BalanceCheck:
    account_type: str
    account_id: int
    cached: int
    computed: int
    credit_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.cached == self.computed

    def to_dict(self) -> dict:
        return {
            "account_type": self.account_type,
            "account_id": self.account_id,
            "credit_type": self.credit_type,
            "cached": self.cached,
            "computed": self.computed,
            "ok": self.ok,
        }


# =============================================================================
# WRITE PATH
# =============================================================================

def append_entry(
    account,
    kind: str,
    *,
    amount_delta_cents: int = 0,
    credit_type: str | None = None,
    credit_delta: int = 0,
    expected_balance_cents: int | None = None,
    expected_credits: int | None = None,
    reference_type: str | None = None,
    reference_id: str | int | None = None,
    actor: str | None = None,
    note: str | None = None,
    occurred_at: Optional[datetime] = None,
) -> LedgerEntry:
    """
    Append one movement to an account and update its cached balance.

    account must be a persisted Wallet, GiftCard or CashDrawerSession,
    ideally loaded with lock_for_update inside the caller's transaction.

    expected_balance_cents / expected_credits are the caller's snapshot of
    the account before the movement; a mismatch raises
    ConcurrentModification and nothing is written.

    Returns the entry; entry.balance_after_cents is the updated balance.
    """
    account_type = getattr(account, "ledger_account_type", None)
    if account_type not in ACCOUNT_TYPES:
        raise LedgerError(f"{type(account).__name__} is not a ledger account")
    if account.id is None:
        raise LedgerError("Account must be flushed before appending entries")
    if kind not in ENTRY_KINDS:
        raise ValidationError(f"Invalid entry kind: {kind}. Must be one of {list(ENTRY_KINDS)}")
    if amount_delta_cents == 0 and credit_delta == 0 and kind != KIND_FLOAT:
        raise ValidationError("Ledger entry must move a balance")
    if credit_delta and account_type != ACCOUNT_WALLET:
        raise ValidationError("Only wallets carry credits")
    if credit_delta and not credit_type:
        raise ValidationError("credit_type is required for credit movements")

    balance_before = account.balance_cents or 0
    if expected_balance_cents is not None and expected_balance_cents != balance_before:
        raise ConcurrentModification(
            "Balance changed since it was read",
            account_type=account_type,
            account_id=account.id,
            expected=expected_balance_cents,
            actual=balance_before,
        )
    balance_after = balance_before + amount_delta_cents
    if balance_after < 0:
        raise LedgerError(
            f"Movement would make {account_type} {account.id} negative",
            balance_cents=balance_before,
            delta_cents=amount_delta_cents,
        )

    credits_before = credits_after = None
    if credit_type:
        credits_before = credit_balance(account.org_id, account.id, credit_type)
        if expected_credits is not None and expected_credits != credits_before:
            raise ConcurrentModification(
                "Credit balance changed since it was read",
                account_type=account_type,
                account_id=account.id,
                credit_type=credit_type,
                expected=expected_credits,
                actual=credits_before,
            )
        credits_after = credits_before + credit_delta
        if credits_after < 0:
            raise LedgerError(f"Movement would make {credit_type} credits negative")

    occurred = occurred_at or utcnow()
    entry = LedgerEntry(
        org_id=account.org_id,
        account_type=account_type,
        account_id=account.id,
        kind=kind,
        currency=getattr(account, "currency", None),
        amount_delta_cents=amount_delta_cents,
        balance_before_cents=balance_before,
        balance_after_cents=balance_after,
        credit_type=credit_type,
        credit_delta=credit_delta,
        credits_before=credits_before,
        credits_after=credits_after,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        actor=actor,
        note=note,
        occurred_at=occurred,
    )

    # Touching the account bumps version_id, so two writers that both read
    # the same version cannot both flush.
    account.balance_cents = balance_after
    account.last_entry_at = occurred

    db.session.add(entry)
    db.session.flush()
    return entry


# =============================================================================
# READ PATH
# =============================================================================

def get_account(org_id: int, account_type: str, account_id: int):
    model = ACCOUNT_MODELS.get(account_type)
    if model is None:
        raise ValidationError(f"Unknown account type: {account_type}")
    account = db.session.query(model).filter_by(id=account_id, org_id=org_id).first()
    if not account:
        raise NotFound(f"{account_type} {account_id} not found")
    return account


def balance_as_of(org_id: int, account_type: str, account_id: int, as_of: datetime | None = None) -> int:
    """Sum of monetary deltas with occurred_at <= as_of (all entries if as_of is None)."""
    q = db.session.query(func.coalesce(func.sum(LedgerEntry.amount_delta_cents), 0)).filter(
        LedgerEntry.org_id == org_id,
        LedgerEntry.account_type == account_type,
        LedgerEntry.account_id == account_id,
    )
    if as_of is not None:
        q = q.filter(LedgerEntry.occurred_at <= as_of)
    return int(q.scalar() or 0)


def credit_balance(org_id: int, wallet_id: int, credit_type: str, as_of: datetime | None = None) -> int:
    q = db.session.query(func.coalesce(func.sum(LedgerEntry.credit_delta), 0)).filter(
        LedgerEntry.org_id == org_id,
        LedgerEntry.account_type == ACCOUNT_WALLET,
        LedgerEntry.account_id == wallet_id,
        LedgerEntry.credit_type == credit_type,
    )
    if as_of is not None:
        q = q.filter(LedgerEntry.occurred_at <= as_of)
    return int(q.scalar() or 0)


def history(
    org_id: int,
    account_type: str,
    account_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[LedgerEntry]:
    """Entries for an account in [start, end], oldest first."""
    q = db.session.query(LedgerEntry).filter(
        LedgerEntry.org_id == org_id,
        LedgerEntry.account_type == account_type,
        LedgerEntry.account_id == account_id,
    )
    if start is not None:
        q = q.filter(LedgerEntry.occurred_at >= start)
    if end is not None:
        q = q.filter(LedgerEntry.occurred_at <= end)
    q = q.order_by(LedgerEntry.occurred_at, LedgerEntry.id)
    if limit:
        q = q.limit(limit)
    return q.all()


def entries_for_reference(org_id: int, reference_type: str, reference_id: str | int) -> list[LedgerEntry]:
    return (
        db.session.query(LedgerEntry)
        .filter_by(org_id=org_id, reference_type=reference_type, reference_id=str(reference_id))
        .order_by(LedgerEntry.id)
        .all()
    )


# =============================================================================
# VERIFICATION
# =============================================================================

def verify_account(org_id: int, account_type: str, account_id: int) -> BalanceCheck:
    account = get_account(org_id, account_type, account_id)
    return BalanceCheck(
        account_type=account_type,
        account_id=account_id,
        cached=account.balance_cents or 0,
        computed=balance_as_of(org_id, account_type, account_id),
    )


def verify_org(org_id: int) -> list[BalanceCheck]:
    """
    Recompute every balance of an organization from its entries.

    Returns all checks; drifts are also logged at error level.
    """
    checks: list[BalanceCheck] = []

    for account_type, model in ACCOUNT_MODELS.items():
        sums = dict(
            db.session.query(LedgerEntry.account_id, func.sum(LedgerEntry.amount_delta_cents))
            .filter(LedgerEntry.org_id == org_id, LedgerEntry.account_type == account_type)
            .group_by(LedgerEntry.account_id)
            .all()
        )
        for account in db.session.query(model).filter_by(org_id=org_id).order_by(model.id).all():
            checks.append(BalanceCheck(
                account_type=account_type,
                account_id=account.id,
                cached=account.balance_cents or 0,
                computed=int(sums.get(account.id) or 0),
            ))

    credit_sums = {
        (wallet_id, credit_type): int(total or 0)
        for wallet_id, credit_type, total in (
            db.session.query(LedgerEntry.account_id, LedgerEntry.credit_type, func.sum(LedgerEntry.credit_delta))
            .filter(
                LedgerEntry.org_id == org_id,
                LedgerEntry.account_type == ACCOUNT_WALLET,
                LedgerEntry.credit_type.isnot(None),
            )
            .group_by(LedgerEntry.account_id, LedgerEntry.credit_type)
            .all()
        )
    }
    lot_sums = {
        (wallet_id, credit_type): int(total or 0)
        for wallet_id, credit_type, total in (
            db.session.query(CreditLot.wallet_id, CreditLot.credit_type, func.sum(CreditLot.remaining_quantity))
            .filter(CreditLot.org_id == org_id)
            .group_by(CreditLot.wallet_id, CreditLot.credit_type)
            .all()
        )
    }
    for key in sorted(set(credit_sums) | set(lot_sums)):
        checks.append(BalanceCheck(
            account_type="wallet_credits",
            account_id=key[0],
            credit_type=key[1],
            cached=lot_sums.get(key, 0),
            computed=credit_sums.get(key, 0),
        ))

    for check in checks:
        if not check.ok:
            current_app.logger.error(
                "Ledger drift: org=%s %s %s%s cached=%s computed=%s",
                org_id, check.account_type, check.account_id,
                f" ({check.credit_type})" if check.credit_type else "",
                check.cached, check.computed,
            )
    return checks


# =============================================================================
# IMMUTABILITY
# =============================================================================

def _reject_update(mapper, connection, target):
    raise LedgerImmutabilityError(f"Ledger entry {target.id} is immutable and cannot be updated")


def _reject_delete(mapper, connection, target):
    raise LedgerImmutabilityError(f"Ledger entry {target.id} is immutable and cannot be deleted")


def register_immutability_listeners() -> None:
    """Install ORM guards on LedgerEntry. Safe to call repeatedly."""
    if not event.contains(LedgerEntry, "before_update", _reject_update):
        event.listen(LedgerEntry, "before_update", _reject_update)
    if not event.contains(LedgerEntry, "before_delete", _reject_delete):
        event.listen(LedgerEntry, "before_delete", _reject_delete)
