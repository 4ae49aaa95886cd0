# Overview: Price rule CRUD, order discount evaluation and usage counting at order commit.

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from flask import current_app

from ..errors import LedgerCoreError, NotFound, ValidationError
from ..extensions import db
from ..models import PriceRule, PriceRuleRedemption
from ..time_utils import parse_iso_datetime, utcnow
from .concurrency import lock_for_update, run_with_retry
from .price_rules import (
    KIND_COUPON,
    Evaluation,
    OrderItem,
    evaluate,
    is_exhausted,
    is_within_window,
    normalize_coupon_code,
    parse_payload,
)


class PromotionError(LedgerCoreError):
    code = "PROMOTION_ERROR"
    http_status = 400


class RuleUsageExceeded(PromotionError):
    code = "RULE_USAGE_EXCEEDED"
    http_status = 409


def _parse_when(value, field_name: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError, AttributeError) as exc:
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime") from exc


def _validate_usage_limit(value) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError("usage_limit must be a positive integer or null")
    return value


def _ensure_unique_coupon(org_id: int, code: str, exclude_rule_id: int | None = None) -> None:
    q = db.session.query(PriceRule).filter_by(org_id=org_id, coupon_code=code, is_active=True)
    if exclude_rule_id:
        q = q.filter(PriceRule.id != exclude_rule_id)
    if q.first():
        raise ValidationError(f"An active coupon with code {code} already exists")


def get_rule(org_id: int, rule_id: int) -> PriceRule:
    rule = db.session.query(PriceRule).filter_by(id=rule_id, org_id=org_id).first()
    if not rule:
        raise NotFound(f"Price rule {rule_id} not found")
    return rule


def list_rules(org_id: int, active_only: bool = False, kind: str | None = None) -> list[PriceRule]:
    q = db.session.query(PriceRule).filter_by(org_id=org_id)
    if active_only:
        q = q.filter_by(is_active=True)
    if kind:
        q = q.filter_by(kind=kind)
    return q.order_by(PriceRule.id).all()


def create_rule(org_id: int, data: dict, actor: str | None = None) -> PriceRule:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    kind = data.get("kind")
    payload = parse_payload(kind, data.get("payload"))

    starts_at = _parse_when(data.get("starts_at"), "starts_at")
    ends_at = _parse_when(data.get("ends_at"), "ends_at")
    if starts_at and ends_at and ends_at < starts_at:
        raise ValidationError("ends_at must not be before starts_at")

    coupon_code = payload.code if kind == KIND_COUPON else None
    if coupon_code:
        _ensure_unique_coupon(org_id, coupon_code)

    rule = PriceRule(
        org_id=org_id,
        name=name,
        kind=kind,
        payload=payload.to_dict(),
        coupon_code=coupon_code,
        starts_at=starts_at,
        ends_at=ends_at,
        usage_limit=_validate_usage_limit(data.get("usage_limit")),
        usage_count=0,
        is_active=bool(data.get("is_active", True)),
        created_by=actor,
    )
    db.session.add(rule)
    db.session.commit()
    return rule


def update_rule(org_id: int, rule_id: int, data: dict) -> PriceRule:
    """Update editable fields. The rule kind and usage_count are fixed."""
    rule = get_rule(org_id, rule_id)

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name cannot be empty")
        rule.name = name
    if "payload" in data:
        payload = parse_payload(rule.kind, data["payload"])
        rule.payload = payload.to_dict()
        if rule.kind == KIND_COUPON:
            _ensure_unique_coupon(org_id, payload.code, exclude_rule_id=rule.id)
            rule.coupon_code = payload.code
    if "starts_at" in data:
        rule.starts_at = _parse_when(data["starts_at"], "starts_at")
    if "ends_at" in data:
        rule.ends_at = _parse_when(data["ends_at"], "ends_at")
    if rule.starts_at and rule.ends_at and rule.ends_at < rule.starts_at:
        raise ValidationError("ends_at must not be before starts_at")
    if "usage_limit" in data:
        rule.usage_limit = _validate_usage_limit(data["usage_limit"])
    if "is_active" in data:
        if data["is_active"] and rule.coupon_code and not rule.is_active:
            _ensure_unique_coupon(org_id, rule.coupon_code, exclude_rule_id=rule.id)
        rule.is_active = bool(data["is_active"])

    db.session.commit()
    return rule


def evaluate_order(
    org_id: int,
    items: list,
    customer_id: int | None = None,
    coupon_code: str | None = None,
    now: datetime | None = None,
) -> Evaluation:
    """
    Evaluate the organization's rules against an order.

    Read-only: usage counters move only in commit_rule_usage.

    A coupon_code that matches no rule in its validity window does not
    block the order: the other rules are still applied and the code comes
    back as invalid_coupon.

    Raises:
        RuleUsageExceeded: coupon_code matches only exhausted rules
    """
    now = now or utcnow()
    order_items = [item if isinstance(item, OrderItem) else OrderItem.from_dict(item) for item in items]
    rules = db.session.query(PriceRule).filter_by(org_id=org_id, is_active=True).all()

    code = normalize_coupon_code(coupon_code)
    invalid_coupon = None
    if code:
        candidates = [r for r in rules if r.coupon_code == code and is_within_window(r, now)]
        if not candidates:
            current_app.logger.info("Ignoring unknown coupon %s for org %s", code, org_id)
            invalid_coupon = code
            code = ""
        elif all(is_exhausted(r) for r in candidates):
            raise RuleUsageExceeded(f"Coupon {code} has reached its usage limit", code=code)

    result = evaluate(rules, order_items, coupon_code=code or None, now=now)
    if invalid_coupon:
        result = replace(result, invalid_coupon=invalid_coupon)
    current_app.logger.debug(
        "Evaluated %s rules for org %s customer %s: %s discount",
        len(rules), org_id, customer_id, result.total_discount_cents,
    )
    return result


def commit_rule_usage(
    org_id: int,
    order_ref: str,
    rule_ids: list[int],
    discounts: dict[int, int] | None = None,
) -> list[PriceRuleRedemption]:
    """
    Count rule usage for a committed order.

    All-or-nothing: if any rule is at its cap nothing is counted.
    Idempotent per (rule, order): re-committing the same order does not
    count a rule twice.

    Returns:
        The redemptions recorded for the order, including earlier ones
    """
    def _op():
        if not order_ref:
            raise ValidationError("order_ref is required")
        wanted = sorted(set(int(rid) for rid in rule_ids))

        rules = lock_for_update(
            db.session.query(PriceRule)
            .filter(PriceRule.org_id == org_id, PriceRule.id.in_(wanted))
            .order_by(PriceRule.id)
        ).all() if wanted else []
        found = {rule.id for rule in rules}
        missing = [rid for rid in wanted if rid not in found]
        if missing:
            raise NotFound(f"Price rule(s) not found: {missing}")

        already = {
            r.rule_id
            for r in db.session.query(PriceRuleRedemption).filter(
                PriceRuleRedemption.order_ref == order_ref,
                PriceRuleRedemption.rule_id.in_(wanted),
            ).all()
        } if wanted else set()

        pending = [rule for rule in rules if rule.id not in already]
        exhausted = [rule.id for rule in pending if is_exhausted(rule)]
        if exhausted:
            raise RuleUsageExceeded(
                f"Price rule(s) at usage limit: {exhausted}",
                rule_ids=exhausted,
                order_ref=order_ref,
            )

        now = utcnow()
        for rule in pending:
            rule.usage_count = (rule.usage_count or 0) + 1
            db.session.add(PriceRuleRedemption(
                org_id=org_id,
                rule_id=rule.id,
                order_ref=order_ref,
                discount_cents=(discounts or {}).get(rule.id),
                committed_at=now,
            ))

        db.session.commit()
        return (
            db.session.query(PriceRuleRedemption)
            .filter_by(org_id=org_id, order_ref=order_ref)
            .order_by(PriceRuleRedemption.rule_id)
            .all()
        )

    return run_with_retry(_op)
