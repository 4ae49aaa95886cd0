# Overview: Flask API routes for customer wallets and typed credits.

"""
Wallet API Routes

DESIGN:
- Wallets are created lazily (POST /api/wallets is get-or-create)
- Credits are granted per lot and consumed soonest-expiry first
- Every balance change answers with the ledger entry that recorded it
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_org
from ..errors import LedgerCoreError, ValidationError
from ..models.ledger import ACCOUNT_WALLET, KIND_PURCHASE
from ..services import ledger_service, wallet_service
from ..validation import amount_field, datetime_field, int_field, json_body, str_field


wallets_bp = Blueprint("wallets", __name__, url_prefix="/api/wallets")


def _wallet_payload(wallet) -> dict:
    lots = wallet_service.get_active_lots(g.org_id, wallet.id)
    return {
        "wallet": wallet.to_dict(),
        "credits": wallet_service.available_credits(g.org_id, wallet.id),
        "lots": [lot.to_dict() for lot in lots],
    }


@wallets_bp.post("")
@require_org
def create_wallet_route():
    """
    Get or create a customer's wallet.

    Request body:
    {
        "customer_id": 42,
        "currency": "CHF"  (optional)
    }
    """
    try:
        data = json_body(request)
        wallet = wallet_service.get_or_create_wallet(
            org_id=g.org_id,
            customer_id=int_field(data, "customer_id"),
            currency=str_field(data, "currency", required=False, max_length=3),
        )
        return jsonify(_wallet_payload(wallet)), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.get("/<int:wallet_id>")
@require_org
def get_wallet_route(wallet_id: int):
    try:
        wallet = wallet_service.get_wallet(g.org_id, wallet_id)
        return jsonify(_wallet_payload(wallet)), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@wallets_bp.post("/<int:wallet_id>/credits")
@require_org
def add_credits_route(wallet_id: int):
    """
    Grant a lot of credits.

    Request body:
    {
        "credit_type": "class",
        "quantity": 10,
        "expires_at": "2025-12-31T23:59:59Z",  (optional)
        "kind": "purchase" | "gift",  (optional, default purchase)
        "reference_type": "order", "reference_id": "ORD-1001"  (optional)
    }
    """
    try:
        data = json_body(request)
        lots = wallet_service.add_credits(
            org_id=g.org_id,
            wallet_id=wallet_id,
            credit_type=str_field(data, "credit_type", max_length=32),
            quantity=int_field(data, "quantity"),
            expires_at=datetime_field(data, "expires_at"),
            reference_type=str_field(data, "reference_type", required=False, max_length=32),
            reference_id=str_field(data, "reference_id", required=False, max_length=64),
            actor=g.actor,
            kind=data.get("kind") or KIND_PURCHASE,
        )
        return jsonify({"lots": [lot.to_dict() for lot in lots]}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add credits")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.post("/<int:wallet_id>/consume")
@require_org
def consume_credits_route(wallet_id: int):
    """
    Consume credits (e.g. a class booking).

    Request body:
    {
        "credit_type": "class",
        "quantity": 1,
        "reference_type": "booking",
        "reference_id": "BK-77"
    }
    """
    try:
        data = json_body(request)
        result = wallet_service.consume_credits(
            org_id=g.org_id,
            wallet_id=wallet_id,
            credit_type=str_field(data, "credit_type", max_length=32),
            quantity=int_field(data, "quantity"),
            reference_type=str_field(data, "reference_type", max_length=32),
            reference_id=str_field(data, "reference_id", max_length=64),
            actor=g.actor,
        )
        return jsonify(result.to_dict()), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to consume credits")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.post("/<int:wallet_id>/top-up")
@require_org
def top_up_route(wallet_id: int):
    try:
        data = json_body(request)
        entry = wallet_service.top_up(
            org_id=g.org_id,
            wallet_id=wallet_id,
            amount_cents=amount_field(data),
            reference_type=str_field(data, "reference_type", required=False, max_length=32),
            reference_id=str_field(data, "reference_id", required=False, max_length=64),
            actor=g.actor,
            note=str_field(data, "note", required=False),
        )
        return jsonify({"entry": entry.to_dict()}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to top up wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.post("/<int:wallet_id>/debit")
@require_org
def debit_route(wallet_id: int):
    try:
        data = json_body(request)
        entry = wallet_service.debit_wallet(
            org_id=g.org_id,
            wallet_id=wallet_id,
            amount_cents=amount_field(data),
            reference_type=str_field(data, "reference_type", required=False, max_length=32),
            reference_id=str_field(data, "reference_id", required=False, max_length=64),
            actor=g.actor,
            note=str_field(data, "note", required=False),
        )
        return jsonify({"entry": entry.to_dict()}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to debit wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.post("/<int:wallet_id>/transfer")
@require_org
def transfer_route(wallet_id: int):
    """
    Request body:
    {
        "to_wallet_id": 7,
        "amount_cents": 2500
    }
    """
    try:
        data = json_body(request)
        out_entry, in_entry = wallet_service.transfer_balance(
            org_id=g.org_id,
            from_wallet_id=wallet_id,
            to_wallet_id=int_field(data, "to_wallet_id"),
            amount_cents=amount_field(data),
            actor=g.actor,
            note=str_field(data, "note", required=False),
        )
        return jsonify({"out": out_entry.to_dict(), "in": in_entry.to_dict()}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to transfer wallet balance")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.post("/<int:wallet_id>/status")
@require_org
def wallet_status_route(wallet_id: int):
    """
    Request body:
    {
        "status": "frozen"  (active, frozen or closed)
    }
    """
    try:
        data = json_body(request)
        wallet = wallet_service.set_wallet_status(
            org_id=g.org_id,
            wallet_id=wallet_id,
            status=str_field(data, "status", max_length=16),
            actor=g.actor,
        )
        return jsonify(_wallet_payload(wallet)), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to change wallet status")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.get("/<int:wallet_id>/history")
@require_org
def history_route(wallet_id: int):
    """
    Ledger entries of the wallet, oldest first.

    Query params: start, end (ISO-8601), limit
    """
    try:
        wallet_service.get_wallet(g.org_id, wallet_id)
        limit = request.args.get("limit", type=int)
        if limit is not None and limit <= 0:
            raise ValidationError("limit must be positive")
        entries = ledger_service.history(
            g.org_id,
            ACCOUNT_WALLET,
            wallet_id,
            start=datetime_field(request.args, "start"),
            end=datetime_field(request.args, "end"),
            limit=limit,
        )
        return jsonify({"entries": [e.to_dict() for e in entries]}), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
