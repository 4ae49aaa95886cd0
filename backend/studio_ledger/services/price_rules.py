# Overview: Pure discount evaluation over price rules; no database access.

"""
Price Rule Engine

Rule kinds form a closed set; each has a typed payload validated by
parse_payload. evaluate() is a pure function of (rules, items, coupon, now):
it never increments usage counters and returns the same result regardless of
the order rules are passed in.

Stacking is non-compounding: every percentage is taken from the original
subtotal, and the combined discount never exceeds the subtotal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, Union

from ..errors import ValidationError
from ..money import percent_of
from ..time_utils import utcnow


KIND_COUPON = "coupon"
KIND_AUTO_DISCOUNT = "auto_discount"
KIND_VOLUME_DISCOUNT = "volume_discount"

RULE_KINDS = (KIND_COUPON, KIND_AUTO_DISCOUNT, KIND_VOLUME_DISCOUNT)

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"


@dataclass(frozen=True)
class CouponPayload:
    code: str
    discount_type: str
    percent_bps: int | None = None
    amount_cents: int | None = None

    def to_dict(self) -> dict:
        data = {"code": self.code, "discount_type": self.discount_type}
        if self.discount_type == DISCOUNT_PERCENTAGE:
            data["percent_bps"] = self.percent_bps
        else:
            data["amount_cents"] = self.amount_cents
        return data


@dataclass(frozen=True)
class AutoDiscountPayload:
    min_subtotal_cents: int
    percent_bps: int

    def to_dict(self) -> dict:
        return {"min_subtotal_cents": self.min_subtotal_cents, "percent_bps": self.percent_bps}


@dataclass(frozen=True)
class VolumeDiscountPayload:
    min_quantity: int
    percent_bps: int

    def to_dict(self) -> dict:
        return {"min_quantity": self.min_quantity, "percent_bps": self.percent_bps}


RulePayload = Union[CouponPayload, AutoDiscountPayload, VolumeDiscountPayload]


def normalize_coupon_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _int_field(data: dict, key: str, minimum: int = 0) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    if value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return value


def _percent_bps(data: dict) -> int:
    """
    Read a percentage as basis points.

    Accepts percent_bps (1000 = 10%) or percent (10 or "12.5").
    """
    if "percent_bps" in data:
        bps = _int_field(data, "percent_bps", minimum=1)
    elif "percent" in data:
        try:
            scaled = Decimal(str(data["percent"])) * 100
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError("percent must be a number") from exc
        if not scaled.is_finite():
            raise ValidationError("percent must be a number")
        if scaled != scaled.to_integral_value():
            raise ValidationError("percent allows at most two decimal places")
        bps = int(scaled)
    else:
        raise ValidationError("percent_bps is required")
    if not 0 < bps <= 10000:
        raise ValidationError("Percentage must be between 0 and 100")
    return bps


def parse_payload(kind: str, data: dict | None) -> RulePayload:
    """Validate a rule's JSON payload and build its typed form."""
    if kind not in RULE_KINDS:
        raise ValidationError(f"Invalid rule kind: {kind}. Must be one of {list(RULE_KINDS)}")
    if not isinstance(data, dict):
        raise ValidationError("Rule payload must be an object")

    if kind == KIND_COUPON:
        code = normalize_coupon_code(data.get("code"))
        if not code:
            raise ValidationError("Coupon code is required")
        discount_type = data.get("discount_type", DISCOUNT_PERCENTAGE)
        if discount_type == DISCOUNT_PERCENTAGE:
            return CouponPayload(code=code, discount_type=discount_type, percent_bps=_percent_bps(data))
        if discount_type == DISCOUNT_FIXED:
            return CouponPayload(
                code=code,
                discount_type=discount_type,
                amount_cents=_int_field(data, "amount_cents", minimum=1),
            )
        raise ValidationError(f"Invalid discount_type: {discount_type}")

    if kind == KIND_AUTO_DISCOUNT:
        return AutoDiscountPayload(
            min_subtotal_cents=_int_field(data, "min_subtotal_cents"),
            percent_bps=_percent_bps(data),
        )

    return VolumeDiscountPayload(
        min_quantity=_int_field(data, "min_quantity", minimum=1),
        percent_bps=_percent_bps(data),
    )


@dataclass(frozen=True)
class OrderItem:
    ref: str
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @classmethod
    def from_dict(cls, data: dict) -> "OrderItem":
        quantity = data.get("quantity", 1)
        unit_price = data.get("unit_price_cents")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Item quantity must be a positive integer")
        if isinstance(unit_price, bool) or not isinstance(unit_price, int) or unit_price < 0:
            raise ValidationError("Item unit_price_cents must be a non-negative integer")
        return cls(ref=str(data.get("ref") or data.get("sku") or ""), quantity=quantity, unit_price_cents=unit_price)


@dataclass(frozen=True)
class Discount:
    rule_id: int
    rule_name: str
    kind: str
    amount_cents: int

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
        }


@dataclass(frozen=True)
class Evaluation:
    subtotal_cents: int
    discounts: list[Discount] = field(default_factory=list)
    total_discount_cents: int = 0
    # Coupon code the customer entered that matched no live coupon
    invalid_coupon: str | None = None

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents - self.total_discount_cents

    @property
    def rule_ids(self) -> list[int]:
        return [d.rule_id for d in self.discounts]

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discounts": [d.to_dict() for d in self.discounts],
            "total_discount_cents": self.total_discount_cents,
            "total_cents": self.total_cents,
            "invalid_coupon": self.invalid_coupon,
        }


# =============================================================================
# SELECTION
# =============================================================================

def is_within_window(rule, now: datetime) -> bool:
    if rule.starts_at is not None and now < rule.starts_at:
        return False
    if rule.ends_at is not None and now > rule.ends_at:
        return False
    return True


def is_exhausted(rule) -> bool:
    return rule.usage_limit is not None and rule.usage_count >= rule.usage_limit


def is_live(rule, now: datetime) -> bool:
    """Active, inside its validity window and below its usage cap."""
    return bool(rule.is_active) and is_within_window(rule, now) and not is_exhausted(rule)


def _rule_discount(payload: RulePayload, subtotal: int, quantity: int) -> int:
    if isinstance(payload, CouponPayload):
        if payload.discount_type == DISCOUNT_FIXED:
            return payload.amount_cents
        return percent_of(subtotal, payload.percent_bps)
    if isinstance(payload, AutoDiscountPayload):
        if subtotal < payload.min_subtotal_cents:
            return 0
        return percent_of(subtotal, payload.percent_bps)
    if quantity < payload.min_quantity:
        return 0
    return percent_of(subtotal, payload.percent_bps)


def evaluate(
    rules: Iterable,
    items: Iterable[OrderItem],
    coupon_code: str | None = None,
    now: datetime | None = None,
) -> Evaluation:
    """
    Compute the discounts that apply to an order.

    Selection: live rules only; coupons only when coupon_code matches their
    code; auto and volume discounts are always considered. Discounts come
    back ordered by rule id and their sum is clamped to the subtotal.
    """
    now = now or utcnow()
    items = list(items)
    subtotal = sum(item.line_total_cents for item in items)
    quantity = sum(item.quantity for item in items)
    code = normalize_coupon_code(coupon_code)

    discounts = []
    remaining = subtotal
    for rule in sorted(rules, key=lambda r: r.id):
        if remaining <= 0:
            break
        if not is_live(rule, now):
            continue
        payload = parse_payload(rule.kind, rule.payload)
        if isinstance(payload, CouponPayload) and (not code or payload.code != code):
            continue
        amount = min(_rule_discount(payload, subtotal, quantity), remaining)
        if amount <= 0:
            continue
        remaining -= amount
        discounts.append(Discount(rule_id=rule.id, rule_name=rule.name, kind=rule.kind, amount_cents=amount))

    return Evaluation(
        subtotal_cents=subtotal,
        discounts=discounts,
        total_discount_cents=subtotal - remaining,
    )
