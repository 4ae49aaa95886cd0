# Overview: Flask API routes for bank statement import and payout/invoice reconciliation.

"""
Reconciliation API Routes

WHY: Match money that arrived on the bank account to the provider payouts
and invoices that explain it.

DESIGN:
- Import accepts camt.053 XML, CSV or XLSX (multipart "file" or raw body)
- Matching proposes; only confirm/link settle a payout or invoice
- Nothing here writes to the ledger
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_org
from ..errors import LedgerCoreError, ValidationError
from ..services import reconciliation_service, statement_import_service
from ..validation import amount_field, int_field, json_body, str_field


reconciliation_bp = Blueprint("reconciliation", __name__, url_prefix="/api/reconciliation")


@reconciliation_bp.post("/import")
@require_org
def import_statement_route():
    """
    Import a bank statement.

    Multipart form with a "file" field, or the raw file as request body
    with ?file_name=statement.xml.
    """
    try:
        if "file" in request.files:
            upload = request.files["file"]
            file_name = upload.filename or ""
            content = upload.read()
        else:
            file_name = request.args.get("file_name", "")
            content = request.get_data()
        if not content:
            raise ValidationError("No statement file provided")

        result = statement_import_service.import_statement(g.org_id, file_name, content, actor=g.actor)
        return jsonify(result.to_dict()), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to import bank statement")
        return jsonify({"error": "Internal server error"}), 500


@reconciliation_bp.post("/payouts")
@require_org
def record_payout_route():
    """
    Request body:
    {
        "provider": "stripe",
        "provider_payout_id": "po_123456",
        "reference": "STRIPE-PO-123456",  (optional)
        "currency": "CHF",
        "expected_arrival": "2025-03-04",  (optional)
        "items": [
            {"item_type": "charge", "amount_cents": 285000, "count": 12},
            {"item_type": "refund", "amount_cents": 4500},
            {"item_type": "fee", "amount_cents": 3293}
        ]
    }
    """
    try:
        data = json_body(request)
        items = data.get("items")
        if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
            raise ValidationError("items must be a list of objects")
        payout = reconciliation_service.record_payout(
            org_id=g.org_id,
            provider=str_field(data, "provider", max_length=32),
            provider_payout_id=str_field(data, "provider_payout_id", max_length=64),
            currency=str_field(data, "currency", required=False, max_length=3)
            or current_app.config["DEFAULT_CURRENCY"],
            items=items,
            reference=str_field(data, "reference", required=False, max_length=64),
            statement_descriptor=str_field(data, "statement_descriptor", required=False, max_length=64),
            expected_arrival=data.get("expected_arrival"),
            status=data.get("status") or "expected",
        )
        return jsonify({"payout": payout.to_dict()}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record payout")
        return jsonify({"error": "Internal server error"}), 500


@reconciliation_bp.post("/invoices")
@require_org
def create_invoice_route():
    try:
        data = json_body(request)
        invoice = reconciliation_service.create_invoice(
            org_id=g.org_id,
            invoice_number=str_field(data, "invoice_number", max_length=64),
            amount_cents=amount_field(data),
            currency=str_field(data, "currency", required=False, max_length=3),
            customer_ref=str_field(data, "customer_ref", required=False, max_length=64),
            issued_on=data.get("issued_on"),
            due_on=data.get("due_on"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@reconciliation_bp.post("/match")
@require_org
def run_matching_route():
    """Run the matcher over unsettled lines. Re-running is safe."""
    try:
        statement_id = request.args.get("statement_id", type=int)
        results = reconciliation_service.run_matching(g.org_id, statement_id=statement_id)
        return jsonify({"results": [r.to_dict() for r in results]}), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to run reconciliation matching")
        return jsonify({"error": "Internal server error"}), 500


@reconciliation_bp.get("/results")
@require_org
def list_results_route():
    """Query params: status, statement_id"""
    results = reconciliation_service.list_results(
        g.org_id,
        status=request.args.get("status"),
        statement_id=request.args.get("statement_id", type=int),
    )
    return jsonify({"results": [r.to_dict() for r in results]}), 200


@reconciliation_bp.post("/lines/<int:line_id>/confirm")
@require_org
def confirm_route(line_id: int):
    try:
        result = reconciliation_service.confirm_match(g.org_id, line_id, actor=g.actor)
        return jsonify({"result": result.to_dict()}), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to confirm match")
        return jsonify({"error": "Internal server error"}), 500


@reconciliation_bp.post("/lines/<int:line_id>/link")
@require_org
def link_route(line_id: int):
    """
    Request body:
    {
        "entity": "payout" | "invoice",
        "entity_id": 12,
        "note": "..."  (optional)
    }
    """
    try:
        data = json_body(request)
        result = reconciliation_service.link_manually(
            g.org_id,
            line_id,
            entity=str_field(data, "entity", max_length=16),
            entity_id=int_field(data, "entity_id"),
            actor=g.actor,
            note=str_field(data, "note", required=False),
        )
        return jsonify({"result": result.to_dict()}), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to link statement line")
        return jsonify({"error": "Internal server error"}), 500


@reconciliation_bp.post("/lines/<int:line_id>/unlink")
@require_org
def unlink_route(line_id: int):
    try:
        result = reconciliation_service.unlink(g.org_id, line_id, actor=g.actor)
        return jsonify({"result": result.to_dict()}), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to unlink statement line")
        return jsonify({"error": "Internal server error"}), 500
