# Overview: Flask API routes for price rules and order discount evaluation.

"""
Promotions API Routes

DESIGN:
- Rule CRUD under /api/price-rules (the kind of a rule is fixed at creation)
- Evaluation is read-only; usage counts move only when an order is committed
- Commit is idempotent per order reference, so checkout can retry safely
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_org
from ..errors import LedgerCoreError, ValidationError
from ..services import promotions_service
from ..validation import int_field, json_body, str_field


promotions_bp = Blueprint("promotions", __name__, url_prefix="/api")


@promotions_bp.post("/price-rules")
@require_org
def create_rule_route():
    """
    Create a price rule.

    Request body:
    {
        "name": "Summer coupon",
        "kind": "coupon" | "auto_discount" | "volume_discount",
        "payload": {"code": "SUMMER10", "discount_type": "percentage", "percent": 10},
        "starts_at": "2025-06-01T00:00:00Z",  (optional)
        "ends_at": "2025-08-31T23:59:59Z",  (optional)
        "usage_limit": 100  (optional)
    }
    """
    try:
        data = json_body(request)
        rule = promotions_service.create_rule(g.org_id, data, actor=g.actor)
        return jsonify({"rule": rule.to_dict()}), 201
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create price rule")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.get("/price-rules")
@require_org
def list_rules_route():
    """Query params: active_only (true/false), kind"""
    active_only = request.args.get("active_only", "false").lower() == "true"
    kind = request.args.get("kind")
    rules = promotions_service.list_rules(g.org_id, active_only=active_only, kind=kind)
    return jsonify({"rules": [r.to_dict() for r in rules]}), 200


@promotions_bp.get("/price-rules/<int:rule_id>")
@require_org
def get_rule_route(rule_id: int):
    try:
        rule = promotions_service.get_rule(g.org_id, rule_id)
        return jsonify({"rule": rule.to_dict()}), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status


@promotions_bp.patch("/price-rules/<int:rule_id>")
@require_org
def update_rule_route(rule_id: int):
    try:
        data = json_body(request)
        if "kind" in data:
            raise ValidationError("kind cannot be changed")
        rule = promotions_service.update_rule(g.org_id, rule_id, data)
        return jsonify({"rule": rule.to_dict()}), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update price rule")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.post("/orders/<order_ref>/discounts")
@require_org
def evaluate_order_route(order_ref: str):
    """
    Preview the discounts for an order.

    Request body:
    {
        "items": [{"ref": "MAT-1", "quantity": 2, "unit_price_cents": 3500}],
        "customer_id": 42,  (optional)
        "coupon_code": "summer10"  (optional)
    }
    """
    try:
        data = json_body(request)
        items = data.get("items")
        if not isinstance(items, list) or not items:
            raise ValidationError("items must be a non-empty list")
        if not all(isinstance(item, dict) for item in items):
            raise ValidationError("each item must be an object")
        result = promotions_service.evaluate_order(
            g.org_id,
            items,
            customer_id=int_field(data, "customer_id", required=False),
            coupon_code=str_field(data, "coupon_code", required=False, max_length=64),
        )
        payload = result.to_dict()
        payload["order_ref"] = order_ref
        return jsonify(payload), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to evaluate order discounts")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.post("/orders/<order_ref>/commit-discounts")
@require_org
def commit_discounts_route(order_ref: str):
    """
    Count rule usage once the order is paid.

    Request body:
    {
        "discounts": [{"rule_id": 3, "amount_cents": 1000}]
    }
    """
    try:
        data = json_body(request)
        entries = data.get("discounts")
        if not isinstance(entries, list):
            raise ValidationError("discounts must be a list")
        amounts = {}
        for entry in entries:
            if not isinstance(entry, dict):
                raise ValidationError("each discount must be an object")
            amounts[int_field(entry, "rule_id")] = int_field(entry, "amount_cents", required=False)

        redemptions = promotions_service.commit_rule_usage(
            g.org_id, order_ref, list(amounts), discounts=amounts,
        )
        return jsonify({
            "order_ref": order_ref,
            "redemptions": [r.to_dict() for r in redemptions],
        }), 200
    except LedgerCoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to commit discounts")
        return jsonify({"error": "Internal server error"}), 500
