# Overview: Pytest coverage for persisted price rules and usage counting.

"""
Promotions Service Tests

Rules are stored per organization; evaluation is read-only and usage is
counted only when an order is committed.
"""

from datetime import timedelta

import pytest

from studio_ledger.errors import NotFound, ValidationError
from studio_ledger.models import PriceRule, PriceRuleRedemption
from studio_ledger.services import promotions_service
from studio_ledger.services.promotions_service import RuleUsageExceeded
from studio_ledger.time_utils import utcnow


ITEMS = [{"ref": "pack-10", "quantity": 1, "unit_price_cents": 20000}]


def coupon_rule(org_id, code="SPRING20", usage_limit=None, **extra):
    data = {
        "name": f"Coupon {code}",
        "kind": "coupon",
        "payload": {"code": code, "discount_type": "fixed", "amount_cents": 2000},
        "usage_limit": usage_limit,
    }
    data.update(extra)
    return promotions_service.create_rule(org_id, data, actor="manager")


class TestRuleManagement:
    """Creating and editing rules."""

    def test_create_coupon_normalizes_code(self, db_session, org_a):
        rule = coupon_rule(org_a.id, code="spring20")

        assert rule.coupon_code == "SPRING20"
        assert rule.payload["code"] == "SPRING20"
        assert rule.usage_count == 0

    def test_duplicate_active_coupon_rejected(self, db_session, org_a, org_b):
        coupon_rule(org_a.id)

        with pytest.raises(ValidationError):
            coupon_rule(org_a.id)

        # Codes are per organization
        assert coupon_rule(org_b.id).coupon_code == "SPRING20"

    def test_window_must_be_ordered(self, db_session, org_a):
        with pytest.raises(ValidationError):
            coupon_rule(
                org_a.id,
                starts_at="2025-03-10T00:00:00Z",
                ends_at="2025-03-01T00:00:00Z",
            )

    def test_update_keeps_kind(self, db_session, org_a):
        rule = coupon_rule(org_a.id)

        updated = promotions_service.update_rule(org_a.id, rule.id, {"name": "Spring", "usage_limit": 10})

        assert updated.name == "Spring"
        assert updated.usage_limit == 10
        assert updated.kind == "coupon"

    def test_rule_of_other_org_not_found(self, db_session, org_a, org_b):
        rule = coupon_rule(org_a.id)

        with pytest.raises(NotFound):
            promotions_service.get_rule(org_b.id, rule.id)


class TestEvaluateOrder:
    """Evaluation against stored rules."""

    def test_scenario_auto_plus_coupon(self, db_session, org_a):
        promotions_service.create_rule(org_a.id, {
            "name": "Big basket",
            "kind": "auto_discount",
            "payload": {"min_subtotal_cents": 15000, "percent": 10},
        })
        coupon_rule(org_a.id)

        result = promotions_service.evaluate_order(org_a.id, ITEMS, coupon_code="SPRING20")

        assert result.total_discount_cents == 4000
        assert db_session.query(PriceRuleRedemption).count() == 0

    def test_unknown_coupon_keeps_other_discounts(self, db_session, org_a):
        promotions_service.create_rule(org_a.id, {
            "name": "Big basket",
            "kind": "auto_discount",
            "payload": {"min_subtotal_cents": 15000, "percent": 10},
        })

        result = promotions_service.evaluate_order(org_a.id, ITEMS, coupon_code="typo")

        assert result.total_discount_cents == 2000
        assert result.invalid_coupon == "TYPO"
        assert result.to_dict()["invalid_coupon"] == "TYPO"

    def test_coupon_outside_window_is_ignored(self, db_session, org_a):
        coupon_rule(org_a.id, ends_at=(utcnow() - timedelta(days=1)).isoformat())

        result = promotions_service.evaluate_order(org_a.id, ITEMS, coupon_code="SPRING20")

        assert result.discounts == []
        assert result.invalid_coupon == "SPRING20"

    def test_valid_coupon_is_not_flagged(self, db_session, org_a):
        coupon_rule(org_a.id)

        result = promotions_service.evaluate_order(org_a.id, ITEMS, coupon_code="spring20")

        assert result.total_discount_cents == 2000
        assert result.invalid_coupon is None

    def test_exhausted_coupon_rejected(self, db_session, org_a):
        rule = coupon_rule(org_a.id, usage_limit=1)
        promotions_service.commit_rule_usage(org_a.id, "ORD-1", [rule.id])

        with pytest.raises(RuleUsageExceeded):
            promotions_service.evaluate_order(org_a.id, ITEMS, coupon_code="SPRING20")


class TestCommitUsage:
    """Usage counters move only on commit."""

    def test_commit_is_idempotent_per_order(self, db_session, org_a):
        rule = coupon_rule(org_a.id, usage_limit=5)

        promotions_service.commit_rule_usage(org_a.id, "ORD-1", [rule.id], {rule.id: 2000})
        redemptions = promotions_service.commit_rule_usage(org_a.id, "ORD-1", [rule.id], {rule.id: 2000})

        assert len(redemptions) == 1
        assert redemptions[0].discount_cents == 2000
        assert db_session.get(PriceRule, rule.id).usage_count == 1

    def test_cap_exceeded_counts_nothing(self, db_session, org_a):
        capped = coupon_rule(org_a.id, code="ONCE", usage_limit=1)
        open_rule = coupon_rule(org_a.id, code="ALWAYS")
        promotions_service.commit_rule_usage(org_a.id, "ORD-1", [capped.id])

        with pytest.raises(RuleUsageExceeded):
            promotions_service.commit_rule_usage(org_a.id, "ORD-2", [capped.id, open_rule.id])

        assert db_session.get(PriceRule, open_rule.id).usage_count == 0
        assert db_session.query(PriceRuleRedemption).filter_by(order_ref="ORD-2").count() == 0

    def test_unknown_rule_not_found(self, db_session, org_a):
        with pytest.raises(NotFound):
            promotions_service.commit_rule_usage(org_a.id, "ORD-1", [9999])
