from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .ledger import ACCOUNT_WALLET

WALLET_ACTIVE = "active"
WALLET_FROZEN = "frozen"
WALLET_CLOSED = "closed"
WALLET_STATUSES = (WALLET_ACTIVE, WALLET_FROZEN, WALLET_CLOSED)


class Wallet(db.Model):
    """
    Customer prepaid wallet.

    Holds a monetary balance and typed credit lots (class, workshop,
    retail, ...). Created lazily on first credit.

    balance_cents is a cached projection of the wallet's ledger entries;
    it is written only by ledger_service.append_entry.
    """
    __tablename__ = "wallets"
    __table_args__ = (
        db.UniqueConstraint("org_id", "customer_id", "currency", name="uq_wallets_org_customer_currency"),
        db.CheckConstraint("balance_cents >= 0", name="ck_wallets_balance_nonneg"),
        {"sqlite_autoincrement": True},
    )
    ledger_account_type = ACCOUNT_WALLET

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)
    currency = db.Column(db.String(3), nullable=False)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=WALLET_ACTIVE)  # active, frozen, closed

    last_entry_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization", backref=db.backref("wallets", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "currency": self.currency,
            "balance_cents": self.balance_cents,
            "status": self.status,
            "last_entry_at": to_utc_z(self.last_entry_at),
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class CreditLot(db.Model):
    """
    A separately-expiring batch of typed credits on a wallet.

    Created by a purchase or manual grant; mutated only by the consumption
    engine and the expiry sweep. A lot that reaches zero is deactivated,
    never deleted.
    """
    __tablename__ = "credit_lots"
    __table_args__ = (
        db.CheckConstraint("remaining_quantity >= 0", name="ck_credit_lots_remaining_nonneg"),
        db.CheckConstraint("remaining_quantity <= original_quantity", name="ck_credit_lots_remaining_le_original"),
        db.Index("ix_credit_lots_wallet_type_active", "wallet_id", "credit_type", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False, index=True)

    credit_type = db.Column(db.String(32), nullable=False)
    original_quantity = db.Column(db.Integer, nullable=False)
    remaining_quantity = db.Column(db.Integer, nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)  # NULL = never expires

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    deactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    source_reference_type = db.Column(db.String(32), nullable=True)
    source_reference_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    wallet = db.relationship("Wallet", backref=db.backref("credit_lots", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "credit_type": self.credit_type,
            "original_quantity": self.original_quantity,
            "remaining_quantity": self.remaining_quantity,
            "expires_at": to_utc_z(self.expires_at),
            "is_active": self.is_active,
            "deactivated_at": to_utc_z(self.deactivated_at),
            "source_reference_type": self.source_reference_type,
            "source_reference_id": self.source_reference_id,
        }
