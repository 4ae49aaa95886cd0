# Overview: Flask API routes for gift cards; codes are accepted as typed by staff.

"""
Gift Card API Routes

DESIGN:
- Cards are addressed by code; "abcd-efgh-jklm" and "ABCDEFGHJKLM" are the same card
- Breakage is an explicit action (and a scheduled CLI sweep), never a side effect of reads
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_org
from ..errors import LedgerCoreError
from ..services import gift_card_service
from ..validation import amount_field, datetime_field, int_field, json_body, str_field


gift_cards_bp = Blueprint("gift_cards", __name__, url_prefix="/api/gift-cards")


def _card_dict(card) -> dict:
    data = card.to_dict()
    data["display_code"] = gift_card_service.format_code(card.code)
    return data


@gift_cards_bp.post("")
@require_org
def issue_route():
    """
    Issue a gift card.

    Request body:
    {
        "amount_cents": 10000,  (or "amount": "100.00")
        "currency": "CHF",  (optional)
        "expires_at": "2026-12-31T23:59:59Z",  (optional)
        "purchaser_email": "...", "recipient_email": "...", "message": "...",  (optional)
        "order_ref": "ORD-1001"  (optional)
    }
    """
    try:
        data = json_body(request)
        card = gift_card_service.issue(
            org_id=g.org_id,
            amount_cents=amount_field(data),
            currency=str_field(data, "currency", required=False, max_length=3),
            expires_at=datetime_field(data, "expires_at"),
            actor=g.actor,
            purchaser_email=str_field(data, "purchaser_email", required=False),
            recipient_email=str_field(data, "recipient_email", required=False),
            message=str_field(data, "message", required=False, max_length=500),
            order_ref=str_field(data, "order_ref", required=False, max_length=64),
        )
        return jsonify({"gift_card": _card_dict(card)}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to issue gift card")
        return jsonify({"error": "Internal server error"}), 500


@gift_cards_bp.get("/liability")
@require_org
def liability_route():
    return jsonify(gift_card_service.liability_summary(g.org_id)), 200


@gift_cards_bp.get("/<code>")
@require_org
def get_card_route(code: str):
    try:
        card = gift_card_service.get_card(g.org_id, code)
        entries = gift_card_service.card_history(g.org_id, code)
        return jsonify({
            "gift_card": _card_dict(card),
            "history": [e.to_dict() for e in entries],
        }), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@gift_cards_bp.post("/<code>/redeem")
@require_org
def redeem_route(code: str):
    """
    Request body:
    {
        "amount_cents": 3000,
        "order_ref": "ORD-1002"
    }
    """
    try:
        data = json_body(request)
        result = gift_card_service.redeem(
            org_id=g.org_id,
            code=code,
            amount_cents=amount_field(data),
            order_ref=str_field(data, "order_ref", max_length=64),
            actor=g.actor,
        )
        return jsonify(result.to_dict()), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to redeem gift card")
        return jsonify({"error": "Internal server error"}), 500


@gift_cards_bp.post("/<code>/refund")
@require_org
def refund_route(code: str):
    try:
        data = json_body(request)
        entry = gift_card_service.refund_to_card(
            org_id=g.org_id,
            code=code,
            amount_cents=amount_field(data),
            order_ref=str_field(data, "order_ref", required=False, max_length=64),
            actor=g.actor,
        )
        return jsonify({"entry": entry.to_dict()}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to refund to gift card")
        return jsonify({"error": "Internal server error"}), 500


@gift_cards_bp.post("/<code>/adjust")
@require_org
def adjust_route(code: str):
    """
    Request body:
    {
        "delta_cents": -500,
        "note": "Printed with the wrong value"
    }
    """
    try:
        data = json_body(request)
        entry = gift_card_service.adjust_card(
            org_id=g.org_id,
            code=code,
            delta_cents=int_field(data, "delta_cents"),
            actor=g.actor,
            note=str_field(data, "note", max_length=500),
        )
        return jsonify({"entry": entry.to_dict()}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust gift card")
        return jsonify({"error": "Internal server error"}), 500


@gift_cards_bp.post("/<code>/breakage")
@require_org
def breakage_route(code: str):
    """Recognize breakage. Answers 200 with entry null when there is nothing left to write off."""
    try:
        entry = gift_card_service.recognize_breakage(g.org_id, code, actor=g.actor)
        card = gift_card_service.get_card(g.org_id, code)
        return jsonify({
            "gift_card": _card_dict(card),
            "entry": entry.to_dict() if entry else None,
        }), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to recognize gift card breakage")
        return jsonify({"error": "Internal server error"}), 500
