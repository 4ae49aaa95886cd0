# Overview: Customer wallets and the typed-credit consumption engine.

"""
Wallet & Credit Service

WHY: Studios sell class packs, workshop passes and prepaid balance. Credits
are held in lots that expire independently; consuming a credit must always
burn the lot closest to expiry so customers never lose credits they could
have used.

DESIGN PRINCIPLES:
- Wallets are created lazily on first credit (one per customer and currency)
- Every change is one ledger entry via ledger_service.append_entry
- Sufficiency is checked before any lot is touched (all-or-nothing)
- Lots reaching zero are deactivated, never deleted
- The wallet row is locked and version-checked, so two concurrent
  consumptions cannot both spend the last credit
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import LedgerCoreError, NotFound, ValidationError
from ..extensions import db
from ..models import CreditLot, LedgerEntry, Wallet
from ..models.wallets import WALLET_ACTIVE, WALLET_CLOSED, WALLET_STATUSES
from ..models.ledger import (
    KIND_ADJUSTMENT,
    KIND_EXPIRY,
    KIND_GIFT,
    KIND_PURCHASE,
    KIND_REDEMPTION,
    KIND_REFUND,
    KIND_TRANSFER,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_entry


class WalletError(LedgerCoreError):
    """Raised for wallet operation errors."""
    code = "WALLET_ERROR"
    http_status = 400


class InsufficientCredits(WalletError):
    code = "INSUFFICIENT_CREDITS"
    http_status = 422


class InsufficientWalletBalance(WalletError):
    code = "INSUFFICIENT_WALLET_BALANCE"
    http_status = 422


class WalletInactive(WalletError):
    """The wallet is frozen or closed."""
    code = "WALLET_INACTIVE"
    http_status = 409


CREDIT_GRANT_KINDS = (KIND_PURCHASE, KIND_GIFT)


@dataclass(frozen=True)
class LotAllocation:
    lot_id: int
    quantity: int
    remaining_after: int
    expires_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "remaining_after": self.remaining_after,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class ConsumptionResult:
    entry: LedgerEntry
    allocations: list[LotAllocation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "entry": self.entry.to_dict(),
            "allocations": [a.to_dict() for a in self.allocations],
        }


# =============================================================================
# WALLETS
# =============================================================================

def get_wallet(org_id: int, wallet_id: int) -> Wallet:
    wallet = db.session.query(Wallet).filter_by(id=wallet_id, org_id=org_id).first()
    if not wallet:
        raise NotFound(f"Wallet {wallet_id} not found")
    return wallet


def _locked_wallet(org_id: int, wallet_id: int) -> Wallet:
    wallet = lock_for_update(db.session.query(Wallet).filter_by(id=wallet_id, org_id=org_id)).first()
    if not wallet:
        raise NotFound(f"Wallet {wallet_id} not found")
    return wallet


def _require_active(wallet: Wallet) -> None:
    if wallet.status != WALLET_ACTIVE:
        raise WalletInactive(f"Wallet {wallet.id} is {wallet.status}", status=wallet.status)


def _require_not_closed(wallet: Wallet) -> None:
    # Frozen wallets still take refunds and staff corrections
    if wallet.status == WALLET_CLOSED:
        raise WalletInactive(f"Wallet {wallet.id} is closed", status=wallet.status)


def set_wallet_status(org_id: int, wallet_id: int, status: str, actor: str) -> Wallet:
    """
    Freeze, unfreeze or close a wallet.

    A frozen wallet cannot be spent, topped up or credited. Closing is
    final and needs an empty wallet: no monetary balance and no usable
    credits left.
    """
    def _op():
        if status not in WALLET_STATUSES:
            raise ValidationError(f"Invalid wallet status: {status}. Must be one of {list(WALLET_STATUSES)}")
        wallet = _locked_wallet(org_id, wallet_id)
        if wallet.status == status:
            return wallet
        if wallet.status == WALLET_CLOSED:
            raise WalletInactive(f"Wallet {wallet.id} is closed", status=wallet.status)
        if status == WALLET_CLOSED:
            remaining = sum(available_credits(org_id, wallet.id).values())
            if wallet.balance_cents or remaining:
                raise ValidationError(
                    "Only an empty wallet can be closed",
                    balance_cents=wallet.balance_cents,
                    credits=remaining,
                )
        previous = wallet.status
        wallet.status = status
        db.session.commit()
        current_app.logger.info(
            "Wallet %s status %s -> %s by %s", wallet.id, previous, status, actor,
        )
        return wallet

    return run_with_retry(_op)


def get_or_create_wallet(org_id: int, customer_id: int, currency: str | None = None) -> Wallet:
    """Return the customer's wallet for the currency, creating it if needed."""
    currency = (currency or current_app.config["DEFAULT_CURRENCY"]).upper()
    if not isinstance(customer_id, int) or customer_id <= 0:
        raise ValidationError("customer_id must be a positive integer")

    wallet = db.session.query(Wallet).filter_by(
        org_id=org_id, customer_id=customer_id, currency=currency
    ).first()
    if wallet:
        return wallet

    wallet = Wallet(org_id=org_id, customer_id=customer_id, currency=currency, balance_cents=0)
    db.session.add(wallet)
    try:
        db.session.commit()
    except IntegrityError:
        # Created concurrently by another request
        db.session.rollback()
        wallet = db.session.query(Wallet).filter_by(
            org_id=org_id, customer_id=customer_id, currency=currency
        ).one()
    return wallet


# =============================================================================
# CREDITS
# =============================================================================

def _usable_lots_query(org_id: int, wallet_id: int, credit_type: str | None, as_of: datetime):
    q = db.session.query(CreditLot).filter(
        CreditLot.org_id == org_id,
        CreditLot.wallet_id == wallet_id,
        CreditLot.is_active.is_(True),
        CreditLot.remaining_quantity > 0,
        or_(CreditLot.expires_at.is_(None), CreditLot.expires_at > as_of),
    )
    if credit_type:
        q = q.filter(CreditLot.credit_type == credit_type)
    return q


def _consumption_order(lot: CreditLot):
    # Soonest expiry first, non-expiring lots last, oldest lot breaks ties
    return (lot.expires_at is None, lot.expires_at or datetime.max, lot.id)


def get_active_lots(org_id: int, wallet_id: int, credit_type: str | None = None, as_of: datetime | None = None) -> list[CreditLot]:
    """Usable lots in the order they would be consumed."""
    get_wallet(org_id, wallet_id)
    lots = _usable_lots_query(org_id, wallet_id, credit_type, as_of or utcnow()).all()
    return sorted(lots, key=_consumption_order)


def available_credits(org_id: int, wallet_id: int, as_of: datetime | None = None) -> dict[str, int]:
    """Usable credit quantity per credit type."""
    totals: dict[str, int] = defaultdict(int)
    for lot in get_active_lots(org_id, wallet_id, as_of=as_of):
        totals[lot.credit_type] += lot.remaining_quantity
    return dict(totals)


def add_credits(
    org_id: int,
    wallet_id: int,
    credit_type: str,
    quantity: int,
    expires_at: datetime | None = None,
    reference_type: str | None = None,
    reference_id: str | int | None = None,
    actor: str | None = None,
    kind: str = KIND_PURCHASE,
) -> list[CreditLot]:
    """
    Add a lot of credits to a wallet.

    kind is purchase (sold pack) or gift (manual grant by staff).

    Returns:
        The wallet's usable lots of credit_type after the grant
    """
    def _op():
        if kind not in CREDIT_GRANT_KINDS:
            raise ValidationError(f"Invalid credit grant kind: {kind}. Must be one of {list(CREDIT_GRANT_KINDS)}")
        if not credit_type:
            raise ValidationError("credit_type is required")
        if not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity must be a positive integer")
        now = utcnow()
        if expires_at is not None and expires_at <= now:
            raise ValidationError("expires_at must be in the future")

        wallet = _locked_wallet(org_id, wallet_id)
        _require_active(wallet)

        lot = CreditLot(
            org_id=org_id,
            wallet_id=wallet.id,
            credit_type=credit_type,
            original_quantity=quantity,
            remaining_quantity=quantity,
            expires_at=expires_at,
            is_active=True,
            source_reference_type=reference_type,
            source_reference_id=str(reference_id) if reference_id is not None else None,
        )
        db.session.add(lot)
        db.session.flush()

        append_entry(
            wallet,
            kind,
            credit_type=credit_type,
            credit_delta=quantity,
            reference_type=reference_type or "credit_lot",
            reference_id=reference_id if reference_id is not None else lot.id,
            actor=actor,
            occurred_at=now,
        )
        db.session.commit()

        return sorted(
            _usable_lots_query(org_id, wallet.id, credit_type, now).all(),
            key=_consumption_order,
        )

    return run_with_retry(_op)


def consume_credits(
    org_id: int,
    wallet_id: int,
    credit_type: str,
    quantity: int,
    reference_type: str,
    reference_id: str | int,
    actor: str | None = None,
    as_of: datetime | None = None,
) -> ConsumptionResult:
    """
    Consume credits across lots, soonest-expiring first.

    Either the full quantity is consumed or nothing changes. Exactly one
    ledger entry records the consumption; the allocations say which lots
    were drawn down.

    Raises:
        InsufficientCredits: usable credits of the type are below quantity
    """
    def _op():
        if not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity must be a positive integer")
        if not reference_type or reference_id is None:
            raise ValidationError("Consumption requires a reference (e.g. booking)")
        now = as_of or utcnow()

        wallet = _locked_wallet(org_id, wallet_id)
        _require_active(wallet)
        lots = sorted(
            lock_for_update(_usable_lots_query(org_id, wallet.id, credit_type, now)).all(),
            key=_consumption_order,
        )

        available = sum(lot.remaining_quantity for lot in lots)
        if available < quantity:
            raise InsufficientCredits(
                f"Insufficient {credit_type} credits: {available} available, {quantity} requested",
                credit_type=credit_type,
                available=available,
                requested=quantity,
            )

        allocations = []
        outstanding = quantity
        for lot in lots:
            if outstanding == 0:
                break
            take = min(lot.remaining_quantity, outstanding)
            lot.remaining_quantity -= take
            outstanding -= take
            if lot.remaining_quantity == 0:
                lot.is_active = False
                lot.deactivated_at = now
            allocations.append(LotAllocation(
                lot_id=lot.id,
                quantity=take,
                remaining_after=lot.remaining_quantity,
                expires_at=lot.expires_at,
            ))

        entry = append_entry(
            wallet,
            KIND_REDEMPTION,
            credit_type=credit_type,
            credit_delta=-quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            actor=actor,
            note=", ".join(f"lot {a.lot_id}: {a.quantity}" for a in allocations),
            occurred_at=now,
        )
        db.session.commit()
        return ConsumptionResult(entry=entry, allocations=allocations)

    return run_with_retry(_op)


def expire_credit_lots(org_id: int, as_of: datetime | None = None) -> list[LedgerEntry]:
    """
    Zero out lots whose expiry has passed.

    Writes one expiry entry per (wallet, credit type); the expired quantity
    is credit breakage.
    """
    def _op():
        now = as_of or utcnow()
        lots = lock_for_update(
            db.session.query(CreditLot).filter(
                CreditLot.org_id == org_id,
                CreditLot.is_active.is_(True),
                CreditLot.remaining_quantity > 0,
                CreditLot.expires_at.isnot(None),
                CreditLot.expires_at <= now,
            ).order_by(CreditLot.wallet_id, CreditLot.credit_type, CreditLot.id)
        ).all()

        groups: dict[tuple[int, str], list[CreditLot]] = defaultdict(list)
        for lot in lots:
            groups[(lot.wallet_id, lot.credit_type)].append(lot)

        entries = []
        for (wallet_id, credit_type), group in groups.items():
            wallet = _locked_wallet(org_id, wallet_id)
            expired = sum(lot.remaining_quantity for lot in group)
            entries.append(append_entry(
                wallet,
                KIND_EXPIRY,
                credit_type=credit_type,
                credit_delta=-expired,
                reference_type="credit_expiry",
                reference_id=",".join(str(lot.id) for lot in group),
                actor="system",
                note=f"{len(group)} lot(s) expired",
                occurred_at=now,
            ))
            for lot in group:
                lot.remaining_quantity = 0
                lot.is_active = False
                lot.deactivated_at = now
            current_app.logger.info(
                "Expired %s %s credits on wallet %s (org %s)", expired, credit_type, wallet_id, org_id
            )

        db.session.commit()
        return entries

    return run_with_retry(_op)


# =============================================================================
# MONETARY BALANCE
# =============================================================================

def _require_positive(amount_cents: int) -> None:
    if not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")


def top_up(
    org_id: int,
    wallet_id: int,
    amount_cents: int,
    reference_type: str | None = None,
    reference_id: str | int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> LedgerEntry:
    def _op():
        _require_positive(amount_cents)
        wallet = _locked_wallet(org_id, wallet_id)
        _require_active(wallet)
        entry = append_entry(
            wallet,
            KIND_PURCHASE,
            amount_delta_cents=amount_cents,
            expected_balance_cents=wallet.balance_cents,
            reference_type=reference_type,
            reference_id=reference_id,
            actor=actor,
            note=note,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def debit_wallet(
    org_id: int,
    wallet_id: int,
    amount_cents: int,
    reference_type: str | None = None,
    reference_id: str | int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> LedgerEntry:
    """
    Pay from the wallet's monetary balance.

    Raises:
        InsufficientWalletBalance: balance below amount_cents
    """
    def _op():
        _require_positive(amount_cents)
        wallet = _locked_wallet(org_id, wallet_id)
        _require_active(wallet)
        if wallet.balance_cents < amount_cents:
            raise InsufficientWalletBalance(
                f"Wallet balance {wallet.balance_cents} is below {amount_cents}",
                balance_cents=wallet.balance_cents,
                requested_cents=amount_cents,
            )
        entry = append_entry(
            wallet,
            KIND_REDEMPTION,
            amount_delta_cents=-amount_cents,
            expected_balance_cents=wallet.balance_cents,
            reference_type=reference_type,
            reference_id=reference_id,
            actor=actor,
            note=note,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def refund_to_wallet(
    org_id: int,
    wallet_id: int,
    amount_cents: int,
    reference_type: str | None = None,
    reference_id: str | int | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> LedgerEntry:
    def _op():
        _require_positive(amount_cents)
        wallet = _locked_wallet(org_id, wallet_id)
        _require_not_closed(wallet)
        entry = append_entry(
            wallet,
            KIND_REFUND,
            amount_delta_cents=amount_cents,
            expected_balance_cents=wallet.balance_cents,
            reference_type=reference_type,
            reference_id=reference_id,
            actor=actor,
            note=note,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def adjust_wallet(org_id: int, wallet_id: int, delta_cents: int, actor: str, note: str) -> LedgerEntry:
    """Manual correction by staff. A note is mandatory for the audit trail."""
    def _op():
        if not isinstance(delta_cents, int) or delta_cents == 0:
            raise ValidationError("delta_cents must be a non-zero integer")
        if not note:
            raise ValidationError("Adjustments require a note")
        wallet = _locked_wallet(org_id, wallet_id)
        _require_not_closed(wallet)
        if wallet.balance_cents + delta_cents < 0:
            raise InsufficientWalletBalance(
                "Adjustment would make the wallet balance negative",
                balance_cents=wallet.balance_cents,
                delta_cents=delta_cents,
            )
        entry = append_entry(
            wallet,
            KIND_ADJUSTMENT,
            amount_delta_cents=delta_cents,
            expected_balance_cents=wallet.balance_cents,
            reference_type="manual_adjustment",
            actor=actor,
            note=note,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def transfer_balance(
    org_id: int,
    from_wallet_id: int,
    to_wallet_id: int,
    amount_cents: int,
    actor: str | None = None,
    note: str | None = None,
) -> tuple[LedgerEntry, LedgerEntry]:
    """
    Move monetary balance between two wallets of the same currency.

    Both entries are written in one transaction. Wallets are locked in
    ascending id order so opposite transfers cannot deadlock.
    """
    def _op():
        _require_positive(amount_cents)
        if from_wallet_id == to_wallet_id:
            raise ValidationError("Cannot transfer to the same wallet")

        locked = {}
        for wid in sorted((from_wallet_id, to_wallet_id)):
            locked[wid] = _locked_wallet(org_id, wid)
        source, target = locked[from_wallet_id], locked[to_wallet_id]
        _require_active(source)
        _require_active(target)

        if source.currency != target.currency:
            raise ValidationError("Wallets must share a currency")
        if source.balance_cents < amount_cents:
            raise InsufficientWalletBalance(
                f"Wallet balance {source.balance_cents} is below {amount_cents}",
                balance_cents=source.balance_cents,
                requested_cents=amount_cents,
            )

        now = utcnow()
        out_entry = append_entry(
            source,
            KIND_TRANSFER,
            amount_delta_cents=-amount_cents,
            expected_balance_cents=source.balance_cents,
            reference_type="wallet",
            reference_id=target.id,
            actor=actor,
            note=note,
            occurred_at=now,
        )
        in_entry = append_entry(
            target,
            KIND_TRANSFER,
            amount_delta_cents=amount_cents,
            expected_balance_cents=target.balance_cents,
            reference_type="wallet",
            reference_id=source.id,
            actor=actor,
            note=note,
            occurred_at=now,
        )
        db.session.commit()
        return out_entry, in_entry

    return run_with_retry(_op)
