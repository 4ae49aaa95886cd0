# Overview: Persists match results for imported statement lines and drives the manual review workflow.

"""
Reconciliation Service

WHY: Provider payouts and bank-transfer invoices must be tied to the money
that actually arrived on the bank account. Lines that cannot be matched
with certainty are surfaced for a human to confirm or link.

DESIGN PRINCIPLES:
- One MatchResult per statement line (upsert on statement_line_id), so
  re-running matching never duplicates results
- Confirmed and manually linked results are final for the matcher; only a
  human unlink reopens them
- Matching never changes ledger balances; confirmation only moves the
  payout/invoice status
"""

from __future__ import annotations

from datetime import date

from flask import current_app

from ..errors import LedgerCoreError, NotFound, ValidationError
from ..extensions import db
from ..models import BankStatementLine, Invoice, MatchResult, Payout, PayoutItem
from ..models.reconciliation import (
    MATCH_AUTO,
    MATCH_CONFIRMED,
    MATCH_MANUAL,
    MATCH_POSSIBLE,
    MATCH_SETTLED_STATUSES,
    MATCH_UNMATCHED,
)
from ..time_utils import parse_iso_date, utcnow
from .concurrency import lock_for_update, run_with_retry
from .matching import ENTITY_INVOICE, ENTITY_PAYOUT, match_lines


class ReconciliationError(LedgerCoreError):
    code = "RECONCILIATION_ERROR"
    http_status = 400


PAYOUT_ITEM_TYPES = ("charge", "refund", "fee")
PAYOUT_STATUSES = ("expected", "in_transit", "paid", "reconciled")
OPEN_PAYOUT_STATUSES = ("expected", "in_transit", "paid")

# Results that hold on to their candidate across runs
_CLAIMING_STATUSES = (MATCH_AUTO,) + MATCH_SETTLED_STATUSES


# =============================================================================
# PAYOUTS / INVOICES
# =============================================================================

def _as_date(value, field_name: str) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be an ISO date") from exc


def record_payout(
    org_id: int,
    provider: str,
    provider_payout_id: str,
    currency: str,
    items: list[dict],
    reference: str | None = None,
    statement_descriptor: str | None = None,
    expected_arrival=None,
    status: str = "expected",
) -> Payout:
    """
    Record a provider settlement from its items.

    Charges count positive, refunds and fees negative regardless of the sign
    they are submitted with. gross = charges - refunds, net = gross - fees.
    """
    if not provider or not provider_payout_id:
        raise ValidationError("provider and provider_payout_id are required")
    if status not in PAYOUT_STATUSES:
        raise ValidationError(f"Invalid payout status: {status}")
    if not items:
        raise ValidationError("A payout needs at least one item")

    existing = db.session.query(Payout).filter_by(
        org_id=org_id, provider=provider, provider_payout_id=provider_payout_id
    ).first()
    if existing:
        raise ValidationError(f"Payout {provider}/{provider_payout_id} already recorded")

    rows = []
    gross = fees = 0
    for item in items:
        item_type = item.get("item_type") or item.get("type")
        amount = item.get("amount_cents")
        if item_type not in PAYOUT_ITEM_TYPES:
            raise ValidationError(f"Invalid payout item type: {item_type}")
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Payout item amount_cents must be an integer")
        signed = abs(amount) if item_type == "charge" else -abs(amount)
        if item_type == "fee":
            fees += abs(amount)
        else:
            gross += signed
        rows.append(PayoutItem(
            item_type=item_type,
            amount_cents=signed,
            item_count=item.get("count") or item.get("item_count") or 1,
            description=item.get("description"),
        ))

    payout = Payout(
        org_id=org_id,
        provider=provider,
        provider_payout_id=provider_payout_id,
        reference=reference,
        statement_descriptor=statement_descriptor,
        currency=currency.upper(),
        gross_amount_cents=gross,
        fee_amount_cents=fees,
        net_amount_cents=gross - fees,
        status=status,
        expected_arrival=_as_date(expected_arrival, "expected_arrival"),
    )
    payout.items.extend(rows)
    db.session.add(payout)
    db.session.commit()
    return payout


def create_invoice(
    org_id: int,
    invoice_number: str,
    amount_cents: int,
    currency: str | None = None,
    customer_ref: str | None = None,
    issued_on=None,
    due_on=None,
) -> Invoice:
    if not invoice_number:
        raise ValidationError("invoice_number is required")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")
    if db.session.query(Invoice).filter_by(org_id=org_id, invoice_number=invoice_number).first():
        raise ValidationError(f"Invoice {invoice_number} already exists")

    invoice = Invoice(
        org_id=org_id,
        invoice_number=invoice_number,
        customer_ref=customer_ref,
        currency=(currency or current_app.config["DEFAULT_CURRENCY"]).upper(),
        amount_cents=amount_cents,
        issued_on=_as_date(issued_on, "issued_on"),
        due_on=_as_date(due_on, "due_on"),
        status="open",
    )
    db.session.add(invoice)
    db.session.commit()
    return invoice


def _get_entity(org_id: int, entity: str, entity_id: int):
    model = {ENTITY_PAYOUT: Payout, ENTITY_INVOICE: Invoice}.get(entity)
    if model is None:
        raise ValidationError(f"Invalid entity: {entity}. Must be payout or invoice")
    obj = lock_for_update(db.session.query(model).filter_by(id=entity_id, org_id=org_id)).first()
    if not obj:
        raise NotFound(f"{entity} {entity_id} not found")
    return obj


def _settle(entity_obj, line: BankStatementLine) -> None:
    if isinstance(entity_obj, Payout):
        entity_obj.status = "reconciled"
        entity_obj.arrived_at = line.posted_at
    else:
        entity_obj.status = "paid"
        entity_obj.paid_at = line.posted_at


def _unsettle(entity_obj) -> None:
    if isinstance(entity_obj, Payout):
        entity_obj.status = "paid"
        entity_obj.arrived_at = None
    else:
        entity_obj.status = "open"
        entity_obj.paid_at = None


# =============================================================================
# MATCHING
# =============================================================================

def run_matching(org_id: int, statement_id: int | None = None) -> list[MatchResult]:
    """
    Match unresolved statement lines against open payouts and invoices.

    Upserts one MatchResult per line; confirmed and manual results are
    left untouched.

    Returns:
        The results written or refreshed by this run
    """
    def _op():
        config = current_app.config

        settled = db.session.query(MatchResult).filter(
            MatchResult.org_id == org_id,
            MatchResult.status.in_(MATCH_SETTLED_STATUSES),
        ).all()
        settled_line_ids = {r.statement_line_id for r in settled}

        q = db.session.query(BankStatementLine).filter(BankStatementLine.org_id == org_id)
        if statement_id is not None:
            q = q.filter(BankStatementLine.statement_id == statement_id)
        lines = [line for line in q.all() if line.id not in settled_line_ids]
        if not lines:
            return []
        line_ids = {line.id for line in lines}

        # Candidates held by lines outside this run stay claimed
        claimed = {
            (r.matched_entity, r.matched_id)
            for r in db.session.query(MatchResult).filter(
                MatchResult.org_id == org_id,
                MatchResult.status.in_(_CLAIMING_STATUSES),
                MatchResult.matched_id.isnot(None),
            ).all()
            if r.statement_line_id not in line_ids
        }

        payouts = db.session.query(Payout).filter(
            Payout.org_id == org_id, Payout.status.in_(OPEN_PAYOUT_STATUSES)
        ).all()
        invoices = db.session.query(Invoice).filter_by(org_id=org_id, status="open").all()

        proposals = match_lines(
            lines,
            payouts,
            invoices,
            tolerance_cents=config["RECONCILIATION_AMOUNT_TOLERANCE_CENTS"],
            date_window_days=config["RECONCILIATION_DATE_WINDOW_DAYS"],
            possible_ceiling=config["RECONCILIATION_POSSIBLE_MATCH_CEILING"],
            claimed=claimed,
        )

        existing = {
            r.statement_line_id: r
            for r in lock_for_update(
                db.session.query(MatchResult).filter(MatchResult.statement_line_id.in_(line_ids))
            ).all()
        }

        now = utcnow()
        results = []
        for proposal in proposals:
            result = existing.get(proposal.line_id)
            if result is None:
                result = MatchResult(org_id=org_id, statement_line_id=proposal.line_id, created_at=now)
                db.session.add(result)
            result.status = proposal.status
            result.confidence = proposal.confidence
            result.matched_entity = proposal.matched_entity
            result.matched_id = proposal.matched_id
            result.reason = proposal.reason[:255]
            result.is_manual_override = False
            result.updated_at = now
            results.append(result)

        db.session.commit()

        counts = {MATCH_AUTO: 0, MATCH_POSSIBLE: 0, MATCH_UNMATCHED: 0}
        for proposal in proposals:
            counts[proposal.status] += 1
        current_app.logger.info(
            "Reconciliation run for org %s: %s auto, %s possible, %s unmatched",
            org_id, counts[MATCH_AUTO], counts[MATCH_POSSIBLE], counts[MATCH_UNMATCHED],
        )
        return results

    return run_with_retry(_op)


def list_results(org_id: int, status: str | None = None, statement_id: int | None = None) -> list[MatchResult]:
    q = db.session.query(MatchResult).filter(MatchResult.org_id == org_id)
    if status:
        q = q.filter(MatchResult.status == status)
    if statement_id is not None:
        q = q.join(BankStatementLine, BankStatementLine.id == MatchResult.statement_line_id).filter(
            BankStatementLine.statement_id == statement_id
        )
    return q.order_by(MatchResult.statement_line_id).all()


def _line_and_result(org_id: int, line_id: int) -> tuple[BankStatementLine, MatchResult | None]:
    line = db.session.query(BankStatementLine).filter_by(id=line_id, org_id=org_id).first()
    if not line:
        raise NotFound(f"Statement line {line_id} not found")
    result = lock_for_update(
        db.session.query(MatchResult).filter_by(statement_line_id=line.id)
    ).first()
    return line, result


def _ensure_unclaimed(org_id: int, entity: str, entity_id: int, line_id: int) -> None:
    other = db.session.query(MatchResult).filter(
        MatchResult.org_id == org_id,
        MatchResult.matched_entity == entity,
        MatchResult.matched_id == entity_id,
        MatchResult.status.in_(MATCH_SETTLED_STATUSES),
        MatchResult.statement_line_id != line_id,
    ).first()
    if other:
        raise ReconciliationError(
            f"{entity} {entity_id} is already settled by statement line {other.statement_line_id}",
            statement_line_id=other.statement_line_id,
        )


def confirm_match(org_id: int, line_id: int, actor: str) -> MatchResult:
    """Accept the proposed match of an auto or possible result."""
    def _op():
        line, result = _line_and_result(org_id, line_id)
        if result is None or result.status not in (MATCH_AUTO, MATCH_POSSIBLE) or result.matched_id is None:
            raise ReconciliationError("Line has no proposed match to confirm")

        _ensure_unclaimed(org_id, result.matched_entity, result.matched_id, line.id)
        entity_obj = _get_entity(org_id, result.matched_entity, result.matched_id)
        _settle(entity_obj, line)

        result.status = MATCH_CONFIRMED
        result.confidence = 1.0
        result.resolved_by = actor
        result.updated_at = utcnow()
        db.session.commit()
        return result

    return run_with_retry(_op)


def link_manually(org_id: int, line_id: int, entity: str, entity_id: int, actor: str, note: str | None = None) -> MatchResult:
    """Link a line to a payout or invoice chosen by a human."""
    def _op():
        line, result = _line_and_result(org_id, line_id)
        if result is not None and result.status in MATCH_SETTLED_STATUSES:
            raise ReconciliationError("Line is already settled; unlink it first")

        entity_obj = _get_entity(org_id, entity, entity_id)
        _ensure_unclaimed(org_id, entity, entity_id, line.id)
        if entity_obj.currency != line.currency:
            raise ValidationError("Statement line and entity currencies differ")

        now = utcnow()
        if result is None:
            result = MatchResult(org_id=org_id, statement_line_id=line.id, created_at=now)
            db.session.add(result)
        result.status = MATCH_MANUAL
        result.matched_entity = entity
        result.matched_id = entity_obj.id
        result.confidence = 1.0
        result.is_manual_override = True
        result.resolved_by = actor
        result.reason = (note or "Linked manually")[:255]
        result.updated_at = now
        _settle(entity_obj, line)

        db.session.commit()
        return result

    return run_with_retry(_op)


def unlink(org_id: int, line_id: int, actor: str) -> MatchResult:
    """Drop a line's match and reopen the entity it settled."""
    def _op():
        _, result = _line_and_result(org_id, line_id)
        if result is None or result.matched_id is None:
            raise ReconciliationError("Line is not linked")

        if result.status in MATCH_SETTLED_STATUSES:
            entity_obj = _get_entity(org_id, result.matched_entity, result.matched_id)
            _unsettle(entity_obj)

        result.status = MATCH_UNMATCHED
        result.confidence = 0.0
        result.matched_entity = None
        result.matched_id = None
        result.is_manual_override = True
        result.resolved_by = actor
        result.reason = "Unlinked manually"
        result.updated_at = utcnow()
        db.session.commit()
        return result

    return run_with_retry(_op)
