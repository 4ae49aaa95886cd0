# Overview: Flask API routes for cash drawers and drawer sessions.

"""
Cash Drawer API Routes

WHY: Shift accountability. Every cash movement is a ledger entry on the
session, and the close count is compared against the frozen expected cash.

DESIGN:
- One open (or pending count) session per location
- Session lifecycle: open -> pending_count -> closed (immutable once closed)
- Amounts are rounded to the smallest coin before they reach the ledger
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_org
from ..errors import LedgerCoreError, ValidationError
from ..services import register_service
from ..validation import amount_field, json_body, str_field


registers_bp = Blueprint("registers", __name__, url_prefix="/api/cash-drawers")


def _operator(data: dict) -> str:
    return str_field(data, "operator", required=False, max_length=128) or g.actor


# =============================================================================
# DRAWERS
# =============================================================================

def _current_session_id(drawer_id: int) -> int:
    register_service.get_drawer(g.org_id, drawer_id)
    session = register_service.get_current_session(g.org_id, drawer_id)
    if session is None:
        raise register_service.InvalidSessionState("Drawer has no open session", drawer_id=drawer_id)
    return session.id


@registers_bp.post("")
@require_org
def create_drawer_route():
    """
    Request body:
    {
        "location": "Studio Zurich",
        "name": "Front desk",
        "currency": "CHF"  (optional)
    }
    """
    try:
        data = json_body(request)
        drawer = register_service.create_drawer(
            org_id=g.org_id,
            location=str_field(data, "location", max_length=64),
            name=str_field(data, "name", max_length=64),
            currency=str_field(data, "currency", required=False, max_length=3),
        )
        return jsonify({"drawer": drawer.to_dict()}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create cash drawer")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("")
@require_org
def list_drawers_route():
    drawers = register_service.list_drawers(g.org_id)
    return jsonify({"drawers": [d.to_dict() for d in drawers]}), 200


@registers_bp.get("/<int:drawer_id>")
@require_org
def get_drawer_route(drawer_id: int):
    """Drawer details including the current (not yet closed) session, if any."""
    try:
        drawer = register_service.get_drawer(g.org_id, drawer_id)
        session = register_service.get_current_session(g.org_id, drawer_id)
        return jsonify({
            "drawer": drawer.to_dict(),
            "current_session": session.to_dict() if session else None,
        }), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@registers_bp.post("/<int:drawer_id>/open")
@require_org
def open_session_route(drawer_id: int):
    """
    Open a session with a counted starting float.

    Request body:
    {
        "opening_float_cents": 20000,  (or "amount": "200.00")
        "operator": "anna"  (optional, defaults to the acting principal)
    }
    """
    try:
        data = json_body(request)
        session = register_service.open_session(
            org_id=g.org_id,
            drawer_id=drawer_id,
            operator=_operator(data),
            opening_float_cents=amount_field(data, "opening_float_cents"),
        )
        return jsonify({"session": session.to_dict()}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to open drawer session")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SESSIONS
# =============================================================================

@registers_bp.get("/sessions/<int:session_id>")
@require_org
def get_session_route(session_id: int):
    try:
        session = register_service.get_session(g.org_id, session_id)
        return jsonify({
            "session": session.to_dict(),
            "transactions": [t.to_dict() for t in session.transactions],
        }), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@registers_bp.post("/sessions/<int:session_id>/transactions")
@require_org
def record_transaction_route(session_id: int):
    """
    Record a cash movement.

    Request body:
    {
        "kind": "sale" | "refund" | "payout" | "cash_drop" | "pay_in",
        "amount_cents": 4550,  (unsigned; the kind decides the direction)
        "reference": "ORD-1003",  (optional)
        "note": "..."  (optional)
    }
    """
    try:
        data = json_body(request)
        kind = str_field(data, "kind", max_length=16)
        if kind not in register_service.TRANSACTION_KINDS:
            raise ValidationError(
                f"Invalid kind: {kind}. Must be one of {list(register_service.TRANSACTION_KINDS)}"
            )
        txn = register_service.record_transaction(
            org_id=g.org_id,
            session_id=session_id,
            kind=kind,
            amount_cents=amount_field(data),
            operator=_operator(data),
            reference=str_field(data, "reference", required=False, max_length=64),
            note=str_field(data, "note", required=False, max_length=500),
        )
        session = register_service.get_session(g.org_id, session_id)
        return jsonify({
            "transaction": txn.to_dict(),
            "running_total_cents": session.balance_cents,
        }), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record drawer transaction")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/<int:drawer_id>/close")
@require_org
def request_close_route(drawer_id: int):
    """Freeze the expected cash; the session then waits for the count."""
    try:
        session = register_service.request_close(g.org_id, _current_session_id(drawer_id), actor=g.actor)
        return jsonify({"session": session.to_dict()}), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to request drawer close")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/<int:drawer_id>/count")
@require_org
def submit_count_route(drawer_id: int):
    """
    Submit the denomination count and close the session.

    Request body:
    {
        "denominations": {"100": 3, "50": 2, "20": 4, "0.05": 5},
        "notes": "..."  (optional)
    }
    """
    try:
        data = json_body(request)
        denominations = data.get("denominations")
        if not isinstance(denominations, dict):
            raise ValidationError("denominations must be an object")
        result = register_service.submit_count(
            org_id=g.org_id,
            session_id=_current_session_id(drawer_id),
            denominations=denominations,
            counted_by=_operator(data),
            notes=str_field(data, "notes", required=False, max_length=500),
        )
        return jsonify(result.to_dict()), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to submit drawer count")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/sessions/<int:session_id>/variance")
@require_org
def resolve_variance_route(session_id: int):
    """
    Request body:
    {
        "resolution": "write_off" | "adjustment",
        "note": "..."  (optional)
    }
    """
    try:
        data = json_body(request)
        count = register_service.resolve_variance(
            org_id=g.org_id,
            session_id=session_id,
            resolution=str_field(data, "resolution", max_length=32),
            actor=g.actor,
            note=str_field(data, "note", required=False, max_length=500),
        )
        return jsonify({"count": count.to_dict()}), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to resolve drawer variance")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/sessions/<int:session_id>/z-report")
@require_org
def z_report_route(session_id: int):
    try:
        return jsonify(register_service.z_report(g.org_id, session_id)), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
