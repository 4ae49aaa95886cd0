from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ACCOUNT_WALLET = "wallet"
ACCOUNT_GIFT_CARD = "gift_card"
ACCOUNT_CASH_DRAWER_SESSION = "cash_drawer_session"

ACCOUNT_TYPES = (ACCOUNT_WALLET, ACCOUNT_GIFT_CARD, ACCOUNT_CASH_DRAWER_SESSION)

# Prepaid movements
KIND_PURCHASE = "purchase"
KIND_REDEMPTION = "redemption"
KIND_REFUND = "refund"
KIND_EXPIRY = "expiry"
KIND_TRANSFER = "transfer"
KIND_ADJUSTMENT = "adjustment"
KIND_GIFT = "gift"

# Cash drawer movements
KIND_FLOAT = "float"
KIND_SALE = "sale"
KIND_PAYOUT = "payout"
KIND_CASH_DROP = "cash_drop"
KIND_PAY_IN = "pay_in"

ENTRY_KINDS = (
    KIND_PURCHASE, KIND_REDEMPTION, KIND_REFUND, KIND_EXPIRY,
    KIND_TRANSFER, KIND_ADJUSTMENT, KIND_GIFT,
    KIND_FLOAT, KIND_SALE, KIND_PAYOUT, KIND_CASH_DROP, KIND_PAY_IN,
)


class LedgerEntry(db.Model):
    """
    Immutable balance movement.

    One row per change to a wallet, gift card or cash-drawer session. The
    account's cached balance_cents is a projection of these rows:
    balance_cents == SUM(amount_delta_cents) for the account, always.

    Credit movements (typed prepaid credits on a wallet) carry credit_type
    and credit_delta; monetary and credit deltas may appear on the same row.

    IMMUTABLE: rows are never updated or deleted (enforced by ORM listeners
    in services/ledger_service.py).
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_entries_account", "account_type", "account_id", "occurred_at"),
        db.Index("ix_ledger_entries_reference", "reference_type", "reference_id"),
        db.Index("ix_ledger_entries_wallet_credit", "account_id", "credit_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    account_type = db.Column(db.String(32), nullable=False)  # wallet, gift_card, cash_drawer_session
    account_id = db.Column(db.Integer, nullable=False)

    kind = db.Column(db.String(32), nullable=False, index=True)
    currency = db.Column(db.String(3), nullable=True)

    # Monetary movement (cents)
    amount_delta_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_before_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_after_cents = db.Column(db.Integer, nullable=False, default=0)

    # Credit movement (wallet credits only)
    credit_type = db.Column(db.String(32), nullable=True)
    credit_delta = db.Column(db.Integer, nullable=False, default=0)
    credits_before = db.Column(db.Integer, nullable=True)
    credits_after = db.Column(db.Integer, nullable=True)

    # Causing entity (order, registration, drawer session, statement line, ...)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    actor = db.Column(db.String(128), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "account_type": self.account_type,
            "account_id": self.account_id,
            "kind": self.kind,
            "currency": self.currency,
            "amount_delta_cents": self.amount_delta_cents,
            "balance_before_cents": self.balance_before_cents,
            "balance_after_cents": self.balance_after_cents,
            "credit_type": self.credit_type,
            "credit_delta": self.credit_delta,
            "credits_before": self.credits_before,
            "credits_after": self.credits_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "actor": self.actor,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
