# Overview: Gift card issuance, redemption, refunds and breakage on top of the ledger.

"""
Gift Card Service

WHY: Gift cards are a prepaid liability. Every balance change is a ledger
entry on the card's account, so the outstanding liability can always be
rebuilt from history.

LIFECYCLE:
- issue: opening balance via a gift entry
- redeem: redemption entries; the card deactivates when it reaches zero
- refund: returns value to the card (never above the initial amount)
- breakage: after expiry the remaining balance is written off as revenue
  with one terminal expiry entry; repeating it is a no-op
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import case, func

from ..errors import LedgerCoreError, NotFound, ValidationError
from ..extensions import db
from ..models import GiftCard, LedgerEntry, Wallet
from ..models.ledger import (
    ACCOUNT_GIFT_CARD,
    KIND_ADJUSTMENT,
    KIND_EXPIRY,
    KIND_GIFT,
    KIND_REDEMPTION,
    KIND_REFUND,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_entry, history


class GiftCardError(LedgerCoreError):
    """Raised for gift card operation errors."""
    code = "GIFT_CARD_ERROR"
    http_status = 400


class InsufficientGiftCardBalance(GiftCardError):
    code = "INSUFFICIENT_GIFT_CARD_BALANCE"
    http_status = 422


class InactiveGiftCard(GiftCardError):
    code = "INACTIVE_GIFT_CARD"
    http_status = 422


class GiftCardNotExpired(GiftCardError):
    code = "GIFT_CARD_NOT_EXPIRED"
    http_status = 409


# No 0/O or 1/I so codes survive being read out over the counter
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

STATUS_ACTIVE = "active"
STATUS_REDEEMED = "redeemed"
STATUS_EXPIRED = "expired"
STATUS_VOID = "void"


@dataclass
class RedemptionResult:
    card: GiftCard
    entry: LedgerEntry
    redeemed_cents: int

    @property
    def remaining_cents(self) -> int:
        return self.entry.balance_after_cents

    def to_dict(self) -> dict:
        return {
            "code": format_code(self.card.code),
            "redeemed_cents": self.redeemed_cents,
            "remaining_cents": self.remaining_cents,
            "is_active": self.card.is_active,
            "entry": self.entry.to_dict(),
        }


# =============================================================================
# CODES
# =============================================================================

def normalize_code(code: str | None) -> str:
    """Accept lower case, spaces and dashes as typed by staff."""
    if not code:
        return ""
    return "".join(ch for ch in str(code).upper() if ch not in " -\t")


def format_code(code: str) -> str:
    """ABCD-EFGH-JKLM for display and printing."""
    code = normalize_code(code)
    return "-".join(code[i:i + 4] for i in range(0, len(code), 4))


def _generate_code() -> str:
    length = current_app.config.get("GIFT_CARD_CODE_LENGTH", 12)
    max_attempts = current_app.config.get("GIFT_CARD_CODE_MAX_ATTEMPTS", 10)
    for _ in range(max_attempts):
        code = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
        # Codes are unique across all organizations
        if not db.session.query(GiftCard.id).filter_by(code=code).first():
            return code
    raise GiftCardError(f"Could not generate a unique gift card code after {max_attempts} attempts")


# =============================================================================
# LOOKUP
# =============================================================================

def get_card(org_id: int, code: str) -> GiftCard:
    card = db.session.query(GiftCard).filter_by(org_id=org_id, code=normalize_code(code)).first()
    if not card:
        raise NotFound("Gift card not found")
    return card


def _locked_card(org_id: int, code: str) -> GiftCard:
    card = lock_for_update(
        db.session.query(GiftCard).filter_by(org_id=org_id, code=normalize_code(code))
    ).first()
    if not card:
        raise NotFound("Gift card not found")
    return card


def card_history(org_id: int, code: str) -> list[LedgerEntry]:
    card = get_card(org_id, code)
    return history(org_id, ACCOUNT_GIFT_CARD, card.id)


def _is_expired(card: GiftCard, now: datetime) -> bool:
    return card.expires_at is not None and card.expires_at <= now


# =============================================================================
# ISSUE / REDEEM / REFUND
# =============================================================================

def issue(
    org_id: int,
    amount_cents: int,
    currency: str | None = None,
    expires_at: datetime | None = None,
    actor: str | None = None,
    purchaser_email: str | None = None,
    recipient_email: str | None = None,
    message: str | None = None,
    order_ref: str | None = None,
) -> GiftCard:
    """Issue a new card whose opening balance is written as a gift entry."""
    def _op():
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
            raise ValidationError("amount_cents must be a positive integer")
        now = utcnow()
        if expires_at is not None and expires_at <= now:
            raise ValidationError("expires_at must be in the future")

        card = GiftCard(
            org_id=org_id,
            code=_generate_code(),
            currency=(currency or current_app.config["DEFAULT_CURRENCY"]).upper(),
            initial_amount_cents=amount_cents,
            balance_cents=0,
            expires_at=expires_at,
            is_active=True,
            status=STATUS_ACTIVE,
            purchaser_email=purchaser_email,
            recipient_email=recipient_email,
            message=message,
        )
        db.session.add(card)
        db.session.flush()

        append_entry(
            card,
            KIND_GIFT,
            amount_delta_cents=amount_cents,
            expected_balance_cents=0,
            reference_type="order" if order_ref else None,
            reference_id=order_ref,
            actor=actor,
            occurred_at=now,
        )
        db.session.commit()
        current_app.logger.info("Issued gift card %s (org %s, %s cents)", card.id, org_id, amount_cents)
        return card

    return run_with_retry(_op)


def redeem(
    org_id: int,
    code: str,
    amount_cents: int,
    order_ref: str,
    actor: str | None = None,
    as_of: datetime | None = None,
) -> RedemptionResult:
    """
    Pay amount_cents of an order from the card.

    Raises:
        InactiveGiftCard: card deactivated or past its expiry
        InsufficientGiftCardBalance: balance below amount_cents (no side effects)
    """
    def _op():
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
            raise ValidationError("amount_cents must be a positive integer")
        if not order_ref:
            raise ValidationError("order_ref is required")
        now = as_of or utcnow()

        card = _locked_card(org_id, code)
        if not card.is_active:
            raise InactiveGiftCard("Gift card is not active", status=card.status)
        if _is_expired(card, now):
            raise InactiveGiftCard("Gift card has expired", status=card.status)
        if card.balance_cents < amount_cents:
            raise InsufficientGiftCardBalance(
                f"Gift card balance {card.balance_cents} is below {amount_cents}",
                balance_cents=card.balance_cents,
                requested_cents=amount_cents,
            )

        entry = append_entry(
            card,
            KIND_REDEMPTION,
            amount_delta_cents=-amount_cents,
            expected_balance_cents=card.balance_cents,
            reference_type="order",
            reference_id=order_ref,
            actor=actor,
            occurred_at=now,
        )
        if card.balance_cents == 0:
            card.is_active = False
            card.status = STATUS_REDEEMED

        db.session.commit()
        return RedemptionResult(card=card, entry=entry, redeemed_cents=amount_cents)

    return run_with_retry(_op)


def refund_to_card(
    org_id: int,
    code: str,
    amount_cents: int,
    order_ref: str | None = None,
    actor: str | None = None,
) -> LedgerEntry:
    """Return value to a card, reactivating it if it had been used up."""
    def _op():
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
            raise ValidationError("amount_cents must be a positive integer")
        now = utcnow()

        card = _locked_card(org_id, code)
        if card.status in (STATUS_EXPIRED, STATUS_VOID) or _is_expired(card, now):
            raise InactiveGiftCard("Cannot refund to an expired or void gift card", status=card.status)
        if card.balance_cents + amount_cents > card.initial_amount_cents:
            raise ValidationError("Refund would exceed the card's initial amount")

        entry = append_entry(
            card,
            KIND_REFUND,
            amount_delta_cents=amount_cents,
            expected_balance_cents=card.balance_cents,
            reference_type="order" if order_ref else None,
            reference_id=order_ref,
            actor=actor,
            occurred_at=now,
        )
        if card.status == STATUS_REDEEMED:
            card.is_active = True
            card.status = STATUS_ACTIVE

        db.session.commit()
        return entry

    return run_with_retry(_op)


def adjust_card(org_id: int, code: str, delta_cents: int, actor: str, note: str) -> LedgerEntry:
    """Manual correction by staff. A note is mandatory for the audit trail."""
    def _op():
        if isinstance(delta_cents, bool) or not isinstance(delta_cents, int) or delta_cents == 0:
            raise ValidationError("delta_cents must be a non-zero integer")
        if not note:
            raise ValidationError("Adjustments require a note")

        card = _locked_card(org_id, code)
        if card.status == STATUS_EXPIRED:
            raise InactiveGiftCard("Breakage already recognized for this card", status=card.status)
        if card.balance_cents + delta_cents < 0:
            raise InsufficientGiftCardBalance(
                "Adjustment would make the gift card balance negative",
                balance_cents=card.balance_cents,
                delta_cents=delta_cents,
            )

        entry = append_entry(
            card,
            KIND_ADJUSTMENT,
            amount_delta_cents=delta_cents,
            expected_balance_cents=card.balance_cents,
            reference_type="manual_adjustment",
            actor=actor,
            note=note,
        )
        if card.balance_cents == 0 and card.status == STATUS_ACTIVE:
            card.is_active = False
            card.status = STATUS_REDEEMED
        elif card.balance_cents > 0 and card.status == STATUS_REDEEMED:
            card.is_active = True
            card.status = STATUS_ACTIVE

        db.session.commit()
        return entry

    return run_with_retry(_op)


# =============================================================================
# BREAKAGE
# =============================================================================

def recognize_breakage(org_id: int, code: str, as_of: datetime | None = None, actor: str | None = None) -> LedgerEntry | None:
    """
    Write off the remaining balance of an expired card as breakage revenue.

    Idempotent: a card with zero balance (including one already written off)
    returns None without writing anything.

    Raises:
        GiftCardNotExpired: balance remains but the card has not expired
    """
    def _op():
        now = as_of or utcnow()
        card = _locked_card(org_id, code)

        if card.balance_cents == 0:
            return None
        if not _is_expired(card, now):
            raise GiftCardNotExpired(
                "Gift card has not expired",
                expires_at=card.expires_at.isoformat() if card.expires_at else None,
            )

        amount = card.balance_cents
        entry = append_entry(
            card,
            KIND_EXPIRY,
            amount_delta_cents=-amount,
            expected_balance_cents=amount,
            reference_type="breakage",
            reference_id=card.id,
            actor=actor or "system",
            note="Breakage recognized after expiry",
            occurred_at=now,
        )
        card.breakage_recognized_cents = (card.breakage_recognized_cents or 0) + amount
        card.breakage_recognized_at = now
        card.is_active = False
        card.status = STATUS_EXPIRED

        db.session.commit()
        current_app.logger.info("Recognized breakage of %s cents on gift card %s (org %s)", amount, card.id, org_id)
        return entry

    return run_with_retry(_op)


def sweep_breakage(org_id: int, as_of: datetime | None = None) -> list[LedgerEntry]:
    """Scheduled sweep: recognize breakage on every expired card with balance left."""
    now = as_of or utcnow()
    codes = [
        code for (code,) in db.session.query(GiftCard.code).filter(
            GiftCard.org_id == org_id,
            GiftCard.balance_cents > 0,
            GiftCard.expires_at.isnot(None),
            GiftCard.expires_at <= now,
        ).order_by(GiftCard.id).all()
    ]
    entries = []
    for code in codes:
        entry = recognize_breakage(org_id, code, as_of=now)
        if entry is not None:
            entries.append(entry)
    return entries


def liability_summary(org_id: int) -> dict:
    """Outstanding prepaid balances and breakage recognized so far."""
    gift_outstanding, issued, breakage, active_cards = db.session.query(
        func.coalesce(func.sum(GiftCard.balance_cents), 0),
        func.coalesce(func.sum(GiftCard.initial_amount_cents), 0),
        func.coalesce(func.sum(GiftCard.breakage_recognized_cents), 0),
        func.coalesce(func.sum(case((GiftCard.is_active.is_(True), 1), else_=0)), 0),
    ).filter(GiftCard.org_id == org_id).one()

    wallet_outstanding = db.session.query(
        func.coalesce(func.sum(Wallet.balance_cents), 0)
    ).filter(Wallet.org_id == org_id).scalar()

    return {
        "gift_card_outstanding_cents": int(gift_outstanding),
        "gift_card_issued_cents": int(issued),
        "gift_card_breakage_cents": int(breakage),
        "gift_card_breakage_rate": round(int(breakage) / int(issued), 4) if issued else 0.0,
        "active_gift_cards": int(active_cards or 0),
        "wallet_outstanding_cents": int(wallet_outstanding or 0),
        "total_outstanding_cents": int(gift_outstanding) + int(wallet_outstanding or 0),
    }
