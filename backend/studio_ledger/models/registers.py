from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .ledger import ACCOUNT_CASH_DRAWER_SESSION


SESSION_OPEN = "open"
SESSION_PENDING_COUNT = "pending_count"
SESSION_CLOSED = "closed"


class CashDrawer(db.Model):
    """
    Physical cash drawer at a studio location.

    DESIGN: Drawers are persistent (not deleted when inactive). Each drawer
    has many sessions over time, at most one of them not closed.
    """
    __tablename__ = "cash_drawers"
    __table_args__ = (
        db.UniqueConstraint("org_id", "location", "name", name="uq_cash_drawers_org_location_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    location = db.Column(db.String(128), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "location": self.location,
            "name": self.name,
            "currency": self.currency,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CashDrawerSession(db.Model):
    """
    One operator shift on a cash drawer.

    LIFECYCLE:
    - open: accepts sales, refunds, payouts, drops
    - pending_count: close requested, expected cash frozen, awaiting count
    - closed: counted, variance recorded

    IMMUTABLE: Once closed, the session rejects every further call.

    balance_cents is the running expected cash (opening float plus signed
    transactions), projected from the session's ledger entries.
    """
    __tablename__ = "cash_drawer_sessions"
    __table_args__ = (
        # At most one non-closed session per drawer
        db.Index(
            "uq_cash_drawer_sessions_drawer_live",
            "drawer_id",
            unique=True,
            sqlite_where=db.text("status != 'closed'"),
            postgresql_where=db.text("status != 'closed'"),
        ),
        {"sqlite_autoincrement": True},
    )
    ledger_account_type = ACCOUNT_CASH_DRAWER_SESSION

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    drawer_id = db.Column(db.Integer, db.ForeignKey("cash_drawers.id"), nullable=False, index=True)
    location = db.Column(db.String(128), nullable=False, index=True)
    operator = db.Column(db.String(128), nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)

    # Cash tracking (all amounts in cents)
    opening_float_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_cash_cents = db.Column(db.Integer, nullable=True)  # frozen at close request
    counted_cash_cents = db.Column(db.Integer, nullable=True)
    variance_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False)
    close_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_entry_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    drawer = db.relationship("CashDrawer", backref=db.backref("sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "drawer_id": self.drawer_id,
            "location": self.location,
            "operator": self.operator,
            "currency": self.currency,
            "status": self.status,
            "opening_float_cents": self.opening_float_cents,
            "running_total_cents": self.balance_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "counted_cash_cents": self.counted_cash_cents,
            "variance_cents": self.variance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "close_requested_at": to_utc_z(self.close_requested_at),
            "closed_at": to_utc_z(self.closed_at),
            "notes": self.notes,
            "version_id": self.version_id,
        }


class CashDrawerTransaction(db.Model):
    """
    Cash movement during a session.

    TRANSACTION KINDS:
    - sale: cash taken for a sale (+)
    - refund: cash returned to a customer (-)
    - payout: cash paid out, e.g. instructor or supplier (-)
    - cash_drop: excess cash moved to the safe (-)
    - pay_in: cash added to the drawer (+)

    amount_cents is the signed, rounded amount that reached the ledger;
    rounding_adjustment_cents = rounded - requested.
    """
    __tablename__ = "cash_drawer_transactions"
    __table_args__ = (
        db.Index("ix_cash_drawer_txns_session_occurred", "session_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_drawer_sessions.id"), nullable=False, index=True)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True)

    kind = db.Column(db.String(16), nullable=False, index=True)
    requested_amount_cents = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    rounding_adjustment_cents = db.Column(db.Integer, nullable=False, default=0)

    reference = db.Column(db.String(64), nullable=True)
    operator = db.Column(db.String(128), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    session = db.relationship("CashDrawerSession", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "kind": self.kind,
            "requested_amount_cents": self.requested_amount_cents,
            "amount_cents": self.amount_cents,
            "rounding_adjustment_cents": self.rounding_adjustment_cents,
            "reference": self.reference,
            "operator": self.operator,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class CashCount(db.Model):
    """
    Denomination count submitted at session close.

    denominations maps denomination (decimal string, e.g. "0.05") to quantity.
    variance_status tracks the manual review of a non-zero variance:
    none, pending_review, written_off, adjusted.
    """
    __tablename__ = "cash_counts"
    __table_args__ = (
        db.UniqueConstraint("session_id", name="uq_cash_counts_session"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_drawer_sessions.id"), nullable=False)

    denominations = db.Column(db.JSON, nullable=False, default=dict)
    counted_total_cents = db.Column(db.Integer, nullable=False)
    expected_cents = db.Column(db.Integer, nullable=False)
    variance_cents = db.Column(db.Integer, nullable=False)

    variance_status = db.Column(db.String(16), nullable=False, default="none")
    resolved_by = db.Column(db.String(128), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolution_note = db.Column(db.String(255), nullable=True)

    counted_by = db.Column(db.String(128), nullable=False)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=False)

    session = db.relationship("CashDrawerSession", backref=db.backref("count", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "denominations": self.denominations,
            "counted_total_cents": self.counted_total_cents,
            "expected_cents": self.expected_cents,
            "variance_cents": self.variance_cents,
            "variance_status": self.variance_status,
            "resolved_by": self.resolved_by,
            "resolved_at": to_utc_z(self.resolved_at),
            "resolution_note": self.resolution_note,
            "counted_by": self.counted_by,
            "counted_at": to_utc_z(self.counted_at),
        }
