from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .ledger import ACCOUNT_GIFT_CARD


class GiftCard(db.Model):
    """
    Prepaid gift card.

    LIFECYCLE:
    - active: can be redeemed
    - redeemed: balance reached zero through redemption (inactive)
    - expired: breakage recognized after expiry (inactive, terminal)
    - void: cancelled by staff (inactive)

    balance_cents only moves through ledger entries (gift, redemption,
    refund, adjustment, expiry). The code is unique across all tenants.
    """
    __tablename__ = "gift_cards"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_gift_cards_code"),
        db.CheckConstraint("balance_cents >= 0", name="ck_gift_cards_balance_nonneg"),
        db.Index("ix_gift_cards_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )
    ledger_account_type = ACCOUNT_GIFT_CARD

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    code = db.Column(db.String(32), nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    initial_amount_cents = db.Column(db.Integer, nullable=False)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="active")

    purchaser_email = db.Column(db.String(255), nullable=True)
    recipient_email = db.Column(db.String(255), nullable=True)
    message = db.Column(db.Text, nullable=True)

    # Breakage (revenue recognized from unused expired balance)
    breakage_recognized_cents = db.Column(db.Integer, nullable=False, default=0)
    breakage_recognized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    last_entry_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization", backref=db.backref("gift_cards", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "code": self.code,
            "currency": self.currency,
            "initial_amount_cents": self.initial_amount_cents,
            "balance_cents": self.balance_cents,
            "expires_at": to_utc_z(self.expires_at),
            "is_active": self.is_active,
            "status": self.status,
            "purchaser_email": self.purchaser_email,
            "recipient_email": self.recipient_email,
            "breakage_recognized_cents": self.breakage_recognized_cents,
            "breakage_recognized_at": to_utc_z(self.breakage_recognized_at),
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
