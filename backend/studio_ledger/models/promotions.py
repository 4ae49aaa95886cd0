from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class PriceRule(db.Model):
    """
    Discount rule evaluated at checkout.

    KINDS (payload shape validated by services/price_rules.parse_payload):
    - coupon:          {"code", "discount_type": "percentage"|"fixed", "percent_bps"|"amount_cents"}
    - auto_discount:   {"min_subtotal_cents", "percent_bps"}
    - volume_discount: {"min_quantity", "percent_bps"}

    usage_count is incremented only when an order that used the rule is
    committed, never on evaluation.
    """
    __tablename__ = "price_rules"
    __table_args__ = (
        db.Index("ix_price_rules_org_active", "org_id", "is_active"),
        db.Index("ix_price_rules_org_code", "org_id", "coupon_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    kind = db.Column(db.String(32), nullable=False)  # coupon, auto_discount, volume_discount
    payload = db.Column(db.JSON, nullable=False, default=dict)
    coupon_code = db.Column(db.String(64), nullable=True)  # denormalized from payload for lookup

    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)  # NULL = unlimited
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "kind": self.kind,
            "payload": self.payload,
            "starts_at": to_utc_z(self.starts_at),
            "ends_at": to_utc_z(self.ends_at),
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PriceRuleRedemption(db.Model):
    """
    One row per (rule, committed order).

    The unique constraint is what prevents a rule from being counted twice
    for the same order when a commit is retried.
    """
    __tablename__ = "price_rule_redemptions"
    __table_args__ = (
        db.UniqueConstraint("rule_id", "order_ref", name="uq_price_rule_redemptions_rule_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    rule_id = db.Column(db.Integer, db.ForeignKey("price_rules.id"), nullable=False, index=True)
    order_ref = db.Column(db.String(64), nullable=False, index=True)
    discount_cents = db.Column(db.Integer, nullable=True)
    committed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    rule = db.relationship("PriceRule", backref=db.backref("redemptions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "order_ref": self.order_ref,
            "discount_cents": self.discount_cents,
            "committed_at": to_utc_z(self.committed_at),
        }
