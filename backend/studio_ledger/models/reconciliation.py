from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Payout(db.Model):
    """
    Provider settlement (Stripe, Datatrans, Wallee, ...).

    A payout aggregates charges, refunds and fees for one settlement
    window; net_amount_cents is what should arrive on the bank account.

    STATUS: expected, in_transit, paid, reconciled
    """
    __tablename__ = "payouts"
    __table_args__ = (
        db.UniqueConstraint("org_id", "provider", "provider_payout_id", name="uq_payouts_org_provider_id"),
        db.Index("ix_payouts_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    provider = db.Column(db.String(32), nullable=False)
    provider_payout_id = db.Column(db.String(64), nullable=False)
    reference = db.Column(db.String(64), nullable=True)  # internal payout number, e.g. PO-2025-001
    statement_descriptor = db.Column(db.String(128), nullable=True)

    currency = db.Column(db.String(3), nullable=False)
    gross_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    fee_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_amount_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="expected")
    expected_arrival = db.Column(db.Date, nullable=True)
    arrived_at = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "provider": self.provider,
            "provider_payout_id": self.provider_payout_id,
            "reference": self.reference,
            "statement_descriptor": self.statement_descriptor,
            "currency": self.currency,
            "gross_amount_cents": self.gross_amount_cents,
            "fee_amount_cents": self.fee_amount_cents,
            "net_amount_cents": self.net_amount_cents,
            "status": self.status,
            "expected_arrival": self.expected_arrival.isoformat() if self.expected_arrival else None,
            "arrived_at": self.arrived_at.isoformat() if self.arrived_at else None,
            "items": [item.to_dict() for item in self.items],
        }


class PayoutItem(db.Model):
    """Line of a payout: charge (+), refund (-) or fee (-)."""
    __tablename__ = "payout_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payout_id = db.Column(db.Integer, db.ForeignKey("payouts.id"), nullable=False, index=True)
    item_type = db.Column(db.String(16), nullable=False)  # charge, refund, fee
    amount_cents = db.Column(db.Integer, nullable=False)  # signed
    item_count = db.Column(db.Integer, nullable=False, default=1)
    description = db.Column(db.String(255), nullable=True)

    payout = db.relationship("Payout", backref=db.backref("items", lazy=True, order_by="PayoutItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_type": self.item_type,
            "amount_cents": self.amount_cents,
            "item_count": self.item_count,
            "description": self.description,
        }


class Invoice(db.Model):
    """
    Customer invoice payable by bank transfer (e.g. QR-bill).

    STATUS: open, paid, cancelled
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("org_id", "invoice_number", name="uq_invoices_org_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(64), nullable=False)
    customer_ref = db.Column(db.String(128), nullable=True)
    currency = db.Column(db.String(3), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    issued_on = db.Column(db.Date, nullable=True)
    due_on = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="open", index=True)
    paid_at = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "invoice_number": self.invoice_number,
            "customer_ref": self.customer_ref,
            "currency": self.currency,
            "amount_cents": self.amount_cents,
            "issued_on": self.issued_on.isoformat() if self.issued_on else None,
            "due_on": self.due_on.isoformat() if self.due_on else None,
            "status": self.status,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


class BankStatement(db.Model):
    """Imported account statement (camt.053 XML, CSV or XLSX)."""
    __tablename__ = "bank_statements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    source = db.Column(db.String(16), nullable=False)  # camt053, csv, xlsx
    account_iban = db.Column(db.String(64), nullable=True)
    statement_date = db.Column(db.Date, nullable=True)
    file_name = db.Column(db.String(255), nullable=True)
    line_count = db.Column(db.Integer, nullable=False, default=0)
    imported_by = db.Column(db.String(128), nullable=True)
    imported_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "source": self.source,
            "account_iban": self.account_iban,
            "statement_date": self.statement_date.isoformat() if self.statement_date else None,
            "file_name": self.file_name,
            "line_count": self.line_count,
            "imported_by": self.imported_by,
            "imported_at": to_utc_z(self.imported_at),
        }


class BankStatementLine(db.Model):
    """
    One booked entry of an imported statement.

    amount_cents is signed: credits (money in) positive, debits negative.
    dedupe_key makes re-imports of overlapping statements idempotent.
    """
    __tablename__ = "bank_statement_lines"
    __table_args__ = (
        db.UniqueConstraint("org_id", "dedupe_key", name="uq_bank_statement_lines_org_dedupe"),
        db.Index("ix_bank_statement_lines_org_posted", "org_id", "posted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    statement_id = db.Column(db.Integer, db.ForeignKey("bank_statements.id"), nullable=False, index=True)

    posted_at = db.Column(db.Date, nullable=False)
    value_date = db.Column(db.Date, nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    counterparty = db.Column(db.String(255), nullable=True)
    end_to_end_id = db.Column(db.String(64), nullable=True)
    remittance_reference = db.Column(db.String(140), nullable=True)
    bank_reference = db.Column(db.String(64), nullable=True)
    dedupe_key = db.Column(db.String(64), nullable=False)

    statement = db.relationship("BankStatement", backref=db.backref("lines", lazy=True, order_by="BankStatementLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "statement_id": self.statement_id,
            "posted_at": self.posted_at.isoformat() if self.posted_at else None,
            "value_date": self.value_date.isoformat() if self.value_date else None,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "description": self.description,
            "counterparty": self.counterparty,
            "end_to_end_id": self.end_to_end_id,
            "remittance_reference": self.remittance_reference,
            "bank_reference": self.bank_reference,
        }


MATCH_AUTO = "auto_matched"
MATCH_POSSIBLE = "possible_match"
MATCH_UNMATCHED = "unmatched"
MATCH_CONFIRMED = "confirmed"
MATCH_MANUAL = "manual"

# Results a re-run must never supersede
MATCH_SETTLED_STATUSES = (MATCH_CONFIRMED, MATCH_MANUAL)


class MatchResult(db.Model):
    """
    Link between one statement line and a payout or invoice.

    Keyed by statement_line_id (unique): matching upserts, so re-running over
    an already-matched line confirms or supersedes the prior result instead
    of creating a duplicate.
    """
    __tablename__ = "match_results"
    __table_args__ = (
        db.UniqueConstraint("statement_line_id", name="uq_match_results_line"),
        db.Index("ix_match_results_org_status", "org_id", "status"),
        db.Index("ix_match_results_entity", "matched_entity", "matched_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    statement_line_id = db.Column(db.Integer, db.ForeignKey("bank_statement_lines.id"), nullable=False)

    matched_entity = db.Column(db.String(16), nullable=True)  # payout, invoice
    matched_id = db.Column(db.Integer, nullable=True)
    confidence = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    is_manual_override = db.Column(db.Boolean, nullable=False, default=False)
    resolved_by = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    statement_line = db.relationship("BankStatementLine", backref=db.backref("match_result", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "statement_line_id": self.statement_line_id,
            "matched_entity": self.matched_entity,
            "matched_id": self.matched_id,
            "confidence": self.confidence,
            "status": self.status,
            "reason": self.reason,
            "is_manual_override": self.is_manual_override,
            "resolved_by": self.resolved_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
