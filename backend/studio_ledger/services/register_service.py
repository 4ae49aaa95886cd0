# Overview: Cash drawer sessions, point-of-sale cash rounding, counts and variances.

"""
Cash Drawer Session Service

WHY: Track the physical cash float of each drawer through an operator's
shift and surface discrepancies at close.

STATE MACHINE:
    open -> (transactions)* -> pending_count -> closed

DESIGN PRINCIPLES:
- One non-closed session per drawer location at a time
- Every cash movement is a ledger entry on the session's account; the
  session's running total is the projection of those entries
- Cash is rounded to the smallest coin at the point of sale, and the ledger
  records the rounded amount
- Sessions are immutable once closed
- A non-zero variance is recorded and surfaced, never rejected
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import LedgerCoreError, NotFound, ValidationError
from ..extensions import db
from ..models import CashCount, CashDrawer, CashDrawerSession, CashDrawerTransaction
from ..models.ledger import (
    KIND_CASH_DROP,
    KIND_FLOAT,
    KIND_PAY_IN,
    KIND_PAYOUT,
    KIND_REFUND,
    KIND_SALE,
)
from ..models.registers import SESSION_CLOSED, SESSION_OPEN, SESSION_PENDING_COUNT
from ..money import decimal_to_cents, round_cash
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_entry


class RegisterError(LedgerCoreError):
    """Raised for cash drawer operation errors."""
    code = "REGISTER_ERROR"
    http_status = 400


class DrawerAlreadyOpen(RegisterError):
    code = "DRAWER_ALREADY_OPEN"
    http_status = 409


class SessionClosed(RegisterError):
    code = "SESSION_CLOSED"
    http_status = 409


class InvalidSessionState(RegisterError):
    code = "INVALID_SESSION_STATE"
    http_status = 409


# =============================================================================
# TRANSACTION KINDS (CONSTANTS)
# =============================================================================

TXN_SALE = "sale"
TXN_REFUND = "refund"
TXN_PAYOUT = "payout"
TXN_CASH_DROP = "cash_drop"
TXN_PAY_IN = "pay_in"

# kind -> (sign, ledger entry kind)
TRANSACTION_KINDS = {
    TXN_SALE: (1, KIND_SALE),
    TXN_REFUND: (-1, KIND_REFUND),
    TXN_PAYOUT: (-1, KIND_PAYOUT),
    TXN_CASH_DROP: (-1, KIND_CASH_DROP),
    TXN_PAY_IN: (1, KIND_PAY_IN),
}

OUTCOME_BALANCED = "balanced"
OUTCOME_VARIANCE_RECORDED = "variance_recorded"

VARIANCE_NONE = "none"
VARIANCE_PENDING_REVIEW = "pending_review"
VARIANCE_RESOLUTIONS = {
    "write_off": "written_off",
    "adjustment": "adjusted",
}


@dataclass
class CountResult:
    session: CashDrawerSession
    count: CashCount

    @property
    def expected_cents(self) -> int:
        return self.count.expected_cents

    @property
    def variance_cents(self) -> int:
        return self.count.variance_cents

    @property
    def outcome(self) -> str:
        return OUTCOME_BALANCED if self.count.variance_cents == 0 else OUTCOME_VARIANCE_RECORDED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "expected_cents": self.expected_cents,
            "counted_cents": self.count.counted_total_cents,
            "variance_cents": self.variance_cents,
            "session": self.session.to_dict(),
            "count": self.count.to_dict(),
        }


# =============================================================================
# DRAWERS
# =============================================================================

def create_drawer(org_id: int, location: str, name: str, currency: str | None = None) -> CashDrawer:
    """Register a physical cash drawer at a location."""
    location = (location or "").strip()
    name = (name or "").strip()
    if not location or not name:
        raise ValidationError("location and name are required")

    existing = db.session.query(CashDrawer).filter_by(org_id=org_id, location=location, name=name).first()
    if existing:
        raise ValidationError(f"Drawer {name!r} already exists at {location!r}")

    drawer = CashDrawer(
        org_id=org_id,
        location=location,
        name=name,
        currency=(currency or current_app.config["DEFAULT_CURRENCY"]).upper(),
        is_active=True,
    )
    db.session.add(drawer)
    db.session.commit()
    return drawer


def get_drawer(org_id: int, drawer_id: int) -> CashDrawer:
    drawer = db.session.query(CashDrawer).filter_by(id=drawer_id, org_id=org_id).first()
    if not drawer:
        raise NotFound(f"Cash drawer {drawer_id} not found")
    return drawer


def list_drawers(org_id: int) -> list[CashDrawer]:
    return db.session.query(CashDrawer).filter_by(org_id=org_id).order_by(CashDrawer.location, CashDrawer.name).all()


def get_session(org_id: int, session_id: int) -> CashDrawerSession:
    session = db.session.query(CashDrawerSession).filter_by(id=session_id, org_id=org_id).first()
    if not session:
        raise NotFound(f"Cash drawer session {session_id} not found")
    return session


def _locked_session(org_id: int, session_id: int) -> CashDrawerSession:
    session = lock_for_update(
        db.session.query(CashDrawerSession).filter_by(id=session_id, org_id=org_id)
    ).first()
    if not session:
        raise NotFound(f"Cash drawer session {session_id} not found")
    return session


def get_current_session(org_id: int, drawer_id: int) -> CashDrawerSession | None:
    """The drawer's session that is not closed yet, if any."""
    return db.session.query(CashDrawerSession).filter(
        CashDrawerSession.org_id == org_id,
        CashDrawerSession.drawer_id == drawer_id,
        CashDrawerSession.status != SESSION_CLOSED,
    ).first()


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def open_session(org_id: int, drawer_id: int, operator: str, opening_float_cents: int) -> CashDrawerSession:
    """
    Open a shift on a drawer with its opening float.

    Raises:
        DrawerAlreadyOpen: a session at the drawer's location is not closed yet
    """
    def _op():
        if isinstance(opening_float_cents, bool) or not isinstance(opening_float_cents, int) or opening_float_cents < 0:
            raise ValidationError("opening_float_cents must be a non-negative integer")
        if not operator:
            raise ValidationError("operator is required")

        drawer = get_drawer(org_id, drawer_id)
        if not drawer.is_active:
            raise RegisterError("Cannot open a session on an inactive drawer")

        existing = db.session.query(CashDrawerSession).filter(
            CashDrawerSession.org_id == org_id,
            CashDrawerSession.location == drawer.location,
            CashDrawerSession.status != SESSION_CLOSED,
        ).first()
        if existing:
            raise DrawerAlreadyOpen(
                f"A session is already open at {drawer.location!r} (session {existing.id})",
                session_id=existing.id,
            )

        now = utcnow()
        session = CashDrawerSession(
            org_id=org_id,
            drawer_id=drawer.id,
            location=drawer.location,
            operator=operator,
            currency=drawer.currency,
            status=SESSION_OPEN,
            opening_float_cents=opening_float_cents,
            balance_cents=0,
            opened_at=now,
        )
        db.session.add(session)
        try:
            db.session.flush()
        except IntegrityError as exc:
            db.session.rollback()
            raise DrawerAlreadyOpen(f"Drawer {drawer_id} already has a live session") from exc

        append_entry(
            session,
            KIND_FLOAT,
            amount_delta_cents=opening_float_cents,
            expected_balance_cents=0,
            reference_type="cash_drawer_session",
            reference_id=session.id,
            actor=operator,
            note="Opening float",
            occurred_at=now,
        )
        db.session.commit()
        return session

    return run_with_retry(_op)


def _require_open(session: CashDrawerSession) -> None:
    if session.status == SESSION_CLOSED:
        raise SessionClosed(f"Session {session.id} is closed")
    if session.status != SESSION_OPEN:
        raise InvalidSessionState(
            f"Session {session.id} is {session.status}; it no longer accepts transactions",
            status=session.status,
        )


def record_transaction(
    org_id: int,
    session_id: int,
    kind: str,
    amount_cents: int,
    operator: str,
    reference: str | None = None,
    note: str | None = None,
) -> CashDrawerTransaction:
    """
    Record a cash movement on an open session.

    amount_cents is the unsigned amount handed over; the sign comes from the
    kind. The amount is rounded to the smallest coin before it reaches the
    ledger.
    """
    def _op():
        if kind not in TRANSACTION_KINDS:
            raise ValidationError(f"Invalid transaction kind: {kind}. Must be one of {list(TRANSACTION_KINDS)}")
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
            raise ValidationError("amount_cents must be a positive integer")
        if not operator:
            raise ValidationError("operator is required")

        session = _locked_session(org_id, session_id)
        _require_open(session)

        sign, entry_kind = TRANSACTION_KINDS[kind]
        increment = current_app.config.get("CASH_ROUNDING_INCREMENT_CENTS", 5)
        rounded = round_cash(amount_cents, increment)
        if rounded == 0:
            raise ValidationError("Amount rounds to zero")
        signed = sign * rounded
        if session.balance_cents + signed < 0:
            raise ValidationError(
                "Not enough cash in the drawer",
                running_total_cents=session.balance_cents,
                requested_cents=rounded,
            )

        now = utcnow()
        entry = append_entry(
            session,
            entry_kind,
            amount_delta_cents=signed,
            expected_balance_cents=session.balance_cents,
            reference_type="cash_drawer_session",
            reference_id=reference or session.id,
            actor=operator,
            note=note,
            occurred_at=now,
        )
        txn = CashDrawerTransaction(
            org_id=org_id,
            session_id=session.id,
            ledger_entry_id=entry.id,
            kind=kind,
            requested_amount_cents=sign * amount_cents,
            amount_cents=signed,
            rounding_adjustment_cents=sign * (rounded - amount_cents),
            reference=reference,
            operator=operator,
            note=note,
            occurred_at=now,
        )
        db.session.add(txn)
        db.session.commit()
        return txn

    return run_with_retry(_op)


def request_close(org_id: int, session_id: int, actor: str | None = None) -> CashDrawerSession:
    """open -> pending_count; freezes the expected cash."""
    def _op():
        session = _locked_session(org_id, session_id)
        _require_open(session)

        session.status = SESSION_PENDING_COUNT
        session.expected_cash_cents = session.balance_cents
        session.close_requested_at = utcnow()
        if actor and actor != session.operator:
            session.notes = f"Close requested by {actor}"
        db.session.commit()
        return session

    return run_with_retry(_op)


def _normalize_denominations(denominations: dict) -> tuple[dict[str, int], int]:
    """
    Validate a denomination -> quantity mapping.

    Returns:
        (canonical mapping keyed by the configured denomination strings, total cents)
    """
    if not isinstance(denominations, dict) or not denominations:
        raise ValidationError("denominations must be a non-empty mapping")

    allowed = {decimal_to_cents(d): d for d in current_app.config["CASH_DENOMINATIONS"]}
    canonical: dict[str, int] = {}
    total = 0
    for raw_value, quantity in denominations.items():
        try:
            value_cents = decimal_to_cents(raw_value)
        except ValueError as exc:
            raise ValidationError(f"Invalid denomination: {raw_value!r}") from exc
        if value_cents not in allowed:
            raise ValidationError(f"Unknown denomination: {raw_value!r}")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError(f"Quantity for {raw_value} must be a non-negative integer")
        key = allowed[value_cents]
        canonical[key] = canonical.get(key, 0) + quantity
        total += value_cents * quantity
    return canonical, total


def submit_count(org_id: int, session_id: int, denominations: dict, counted_by: str, notes: str | None = None) -> CountResult:
    """
    Count the drawer and close the session.

    counted = sum(denomination value x quantity); variance = counted - expected.
    A variance is recorded for review, not rejected.

    Raises:
        SessionClosed: the session was already counted
        InvalidSessionState: close has not been requested yet
    """
    def _op():
        if not counted_by:
            raise ValidationError("counted_by is required")
        session = _locked_session(org_id, session_id)
        if session.status == SESSION_CLOSED:
            raise SessionClosed(f"Session {session.id} is closed")
        if session.status != SESSION_PENDING_COUNT:
            raise InvalidSessionState("Request close before submitting a count", status=session.status)

        canonical, counted = _normalize_denominations(denominations)
        expected = session.expected_cash_cents
        variance = counted - expected
        now = utcnow()

        count = CashCount(
            org_id=org_id,
            session_id=session.id,
            denominations=canonical,
            counted_total_cents=counted,
            expected_cents=expected,
            variance_cents=variance,
            variance_status=VARIANCE_NONE if variance == 0 else VARIANCE_PENDING_REVIEW,
            counted_by=counted_by,
            counted_at=now,
        )
        db.session.add(count)

        session.counted_cash_cents = counted
        session.variance_cents = variance
        session.status = SESSION_CLOSED
        session.closed_at = now
        if notes:
            session.notes = notes

        db.session.commit()
        if variance:
            current_app.logger.warning(
                "Cash variance on drawer session %s (org %s): expected %s, counted %s, variance %s",
                session.id, org_id, expected, counted, variance,
            )
        return CountResult(session=session, count=count)

    return run_with_retry(_op)


def resolve_variance(org_id: int, session_id: int, resolution: str, actor: str, note: str | None = None) -> CashCount:
    """Record the manager's decision on a counted variance (write_off or adjustment)."""
    if resolution not in VARIANCE_RESOLUTIONS:
        raise ValidationError(f"Invalid resolution: {resolution}. Must be one of {list(VARIANCE_RESOLUTIONS)}")

    session = get_session(org_id, session_id)
    count = session.count
    if count is None:
        raise InvalidSessionState("Session has not been counted yet", status=session.status)
    if count.variance_status != VARIANCE_PENDING_REVIEW:
        raise InvalidSessionState(
            f"Variance is {count.variance_status}; nothing to resolve",
            variance_status=count.variance_status,
        )

    count.variance_status = VARIANCE_RESOLUTIONS[resolution]
    count.resolved_by = actor
    count.resolved_at = utcnow()
    count.resolution_note = note
    db.session.commit()
    return count


def z_report(org_id: int, session_id: int) -> dict:
    """
    End-of-shift summary.

    Returns:
        - Session details
        - Count and total per transaction kind
        - Rounding total
        - Expected, counted and variance
    """
    session = get_session(org_id, session_id)
    txns = (
        db.session.query(CashDrawerTransaction)
        .filter_by(session_id=session.id)
        .order_by(CashDrawerTransaction.occurred_at, CashDrawerTransaction.id)
        .all()
    )

    by_kind = {kind: {"count": 0, "total_cents": 0} for kind in TRANSACTION_KINDS}
    rounding = 0
    for txn in txns:
        by_kind[txn.kind]["count"] += 1
        by_kind[txn.kind]["total_cents"] += txn.amount_cents
        rounding += txn.rounding_adjustment_cents

    expected = session.expected_cash_cents if session.expected_cash_cents is not None else session.balance_cents
    count = session.count
    return {
        "session": session.to_dict(),
        "opening_float_cents": session.opening_float_cents,
        "transactions": by_kind,
        "transaction_count": len(txns),
        "rounding_adjustment_cents": rounding,
        "expected_cash_cents": expected,
        "counted_cash_cents": session.counted_cash_cents,
        "variance_cents": session.variance_cents,
        "variance_status": count.variance_status if count else None,
        "denominations": count.denominations if count else None,
    }
