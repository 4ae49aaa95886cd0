# Overview: Pytest coverage for the pure price rule engine.

"""
Price Rule Engine Tests

evaluate() runs without a database: rules are plain objects with the
attributes the engine reads.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from studio_ledger.errors import ValidationError
from studio_ledger.services.price_rules import (
    KIND_AUTO_DISCOUNT,
    KIND_COUPON,
    KIND_VOLUME_DISCOUNT,
    OrderItem,
    evaluate,
    parse_payload,
)


NOW = datetime(2025, 3, 1, 12, 0)


def make_rule(rule_id, kind, payload, **overrides):
    fields = dict(
        id=rule_id,
        name=f"Rule {rule_id}",
        kind=kind,
        payload=payload,
        is_active=True,
        starts_at=None,
        ends_at=None,
        usage_limit=None,
        usage_count=0,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestStacking:
    """Non-compounding stacking of discounts."""

    def test_auto_discount_and_fixed_coupon_stack(self):
        rules = [
            make_rule(1, KIND_AUTO_DISCOUNT, {"min_subtotal_cents": 15000, "percent_bps": 1000}),
            make_rule(2, KIND_COUPON, {"code": "SPRING20", "discount_type": "fixed", "amount_cents": 2000}),
        ]
        items = [OrderItem(ref="pack-10", quantity=1, unit_price_cents=20000)]

        result = evaluate(rules, items, coupon_code="spring20", now=NOW)

        assert result.subtotal_cents == 20000
        assert [(d.rule_id, d.amount_cents) for d in result.discounts] == [(1, 2000), (2, 2000)]
        assert result.total_discount_cents == 4000
        assert result.total_cents == 16000

    def test_result_does_not_depend_on_rule_order(self):
        rules = [
            make_rule(1, KIND_AUTO_DISCOUNT, {"min_subtotal_cents": 15000, "percent_bps": 1000}),
            make_rule(2, KIND_COUPON, {"code": "SPRING20", "discount_type": "fixed", "amount_cents": 2000}),
            make_rule(3, KIND_VOLUME_DISCOUNT, {"min_quantity": 1, "percent_bps": 500}),
        ]
        items = [OrderItem(ref="pack-10", quantity=1, unit_price_cents=20000)]

        forward = evaluate(rules, items, coupon_code="SPRING20", now=NOW)
        backward = evaluate(list(reversed(rules)), items, coupon_code="SPRING20", now=NOW)

        assert forward.to_dict() == backward.to_dict()

    def test_percentages_do_not_compound(self):
        rules = [
            make_rule(1, KIND_AUTO_DISCOUNT, {"min_subtotal_cents": 0, "percent_bps": 1000}),
            make_rule(2, KIND_VOLUME_DISCOUNT, {"min_quantity": 2, "percent_bps": 1000}),
        ]
        items = [OrderItem(ref="drop-in", quantity=2, unit_price_cents=5000)]

        result = evaluate(rules, items, now=NOW)

        # 10% of the original 10000, twice
        assert result.total_discount_cents == 2000

    def test_total_discount_is_clamped_to_subtotal(self):
        rules = [
            make_rule(1, KIND_COUPON, {"code": "BIG", "discount_type": "fixed", "amount_cents": 5000}),
        ]
        items = [OrderItem(ref="mat", quantity=1, unit_price_cents=3000)]

        result = evaluate(rules, items, coupon_code="BIG", now=NOW)

        assert result.total_discount_cents == 3000
        assert result.total_cents == 0


class TestSelection:
    """Which rules are considered."""

    def test_coupon_ignored_without_code(self):
        rules = [make_rule(1, KIND_COUPON, {"code": "SPRING20", "percent_bps": 2000})]
        items = [OrderItem(ref="a", quantity=1, unit_price_cents=10000)]

        assert evaluate(rules, items, now=NOW).discounts == []

    def test_auto_discount_below_threshold(self):
        rules = [make_rule(1, KIND_AUTO_DISCOUNT, {"min_subtotal_cents": 15000, "percent_bps": 1000})]
        items = [OrderItem(ref="a", quantity=1, unit_price_cents=14999)]

        assert evaluate(rules, items, now=NOW).total_discount_cents == 0

    def test_inactive_expired_and_exhausted_rules_skipped(self):
        payload = {"min_subtotal_cents": 0, "percent_bps": 1000}
        rules = [
            make_rule(1, KIND_AUTO_DISCOUNT, payload, is_active=False),
            make_rule(2, KIND_AUTO_DISCOUNT, payload, ends_at=NOW - timedelta(days=1)),
            make_rule(3, KIND_AUTO_DISCOUNT, payload, starts_at=NOW + timedelta(days=1)),
            make_rule(4, KIND_AUTO_DISCOUNT, payload, usage_limit=5, usage_count=5),
        ]
        items = [OrderItem(ref="a", quantity=1, unit_price_cents=10000)]

        assert evaluate(rules, items, now=NOW).discounts == []

    def test_evaluate_does_not_touch_usage(self):
        rule = make_rule(1, KIND_AUTO_DISCOUNT, {"min_subtotal_cents": 0, "percent_bps": 1000}, usage_limit=1)
        items = [OrderItem(ref="a", quantity=1, unit_price_cents=10000)]

        evaluate([rule], items, now=NOW)
        evaluate([rule], items, now=NOW)

        assert rule.usage_count == 0


class TestPayloads:
    """Typed payload validation."""

    def test_percent_accepts_decimal_string(self):
        payload = parse_payload(KIND_COUPON, {"code": " welcome ", "percent": "12.5"})

        assert payload.code == "WELCOME"
        assert payload.percent_bps == 1250

    @pytest.mark.parametrize("kind,data", [
        ("bogus", {}),
        (KIND_COUPON, {"percent_bps": 1000}),
        (KIND_COUPON, {"code": "X", "discount_type": "fixed"}),
        (KIND_AUTO_DISCOUNT, {"min_subtotal_cents": 100, "percent_bps": 20000}),
        (KIND_VOLUME_DISCOUNT, {"min_quantity": 0, "percent_bps": 500}),
        (KIND_AUTO_DISCOUNT, {"min_subtotal_cents": 100, "percent": "Infinity"}),
        (KIND_AUTO_DISCOUNT, {"min_subtotal_cents": 100, "percent": "NaN"}),
        (KIND_AUTO_DISCOUNT, {"min_subtotal_cents": 100, "percent": "12.345"}),
    ])
    def test_invalid_payloads(self, kind, data):
        with pytest.raises(ValidationError):
            parse_payload(kind, data)

    def test_order_item_rejects_bad_quantity(self):
        with pytest.raises(ValidationError):
            OrderItem.from_dict({"ref": "a", "quantity": 0, "unit_price_cents": 100})
