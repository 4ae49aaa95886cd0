# Overview: Pytest coverage for gift card issue, redemption and breakage.

"""
Gift Card Service Tests

Test Coverage:
- Issue writes the opening balance as a ledger entry
- Redemption never overdraws and leaves no trace when it fails
- Breakage is recognized once, only after expiry
- Codes are typed forgivingly and printed in groups of four
"""

from datetime import timedelta

import pytest

from studio_ledger.errors import NotFound, ValidationError
from studio_ledger.models import GiftCard, LedgerEntry
from studio_ledger.models.ledger import KIND_EXPIRY, KIND_GIFT
from studio_ledger.services import gift_card_service, wallet_service
from studio_ledger.services.gift_card_service import (
    CODE_ALPHABET,
    GiftCardNotExpired,
    InactiveGiftCard,
    InsufficientGiftCardBalance,
)
from studio_ledger.time_utils import utcnow


class TestIssue:
    """Issuing new cards."""

    def test_issue_writes_opening_entry(self, db_session, org_a):
        card = gift_card_service.issue(org_a.id, 5000, actor="anna", order_ref="ORD-1")

        assert card.balance_cents == 5000
        assert card.currency == "CHF"
        assert len(card.code) == 12
        assert set(card.code) <= set(CODE_ALPHABET)

        entry = db_session.query(LedgerEntry).one()
        assert entry.kind == KIND_GIFT
        assert entry.amount_delta_cents == 5000
        assert entry.reference_id == "ORD-1"

    def test_issue_requires_positive_amount(self, db_session, org_a):
        with pytest.raises(ValidationError):
            gift_card_service.issue(org_a.id, 0)

    def test_issue_rejects_past_expiry(self, db_session, org_a):
        with pytest.raises(ValidationError):
            gift_card_service.issue(org_a.id, 5000, expires_at=utcnow() - timedelta(days=1))


class TestRedeem:
    """Paying with a card."""

    def test_partial_then_excessive_redemption(self, db_session, org_a):
        card = gift_card_service.issue(org_a.id, 5000)

        result = gift_card_service.redeem(org_a.id, card.code, 500, order_ref="ORD-1")
        assert result.remaining_cents == 4500

        with pytest.raises(InsufficientGiftCardBalance):
            gift_card_service.redeem(org_a.id, card.code, 5000, order_ref="ORD-2")

        assert gift_card_service.get_card(org_a.id, card.code).balance_cents == 4500
        assert db_session.query(LedgerEntry).count() == 2

    def test_code_lookup_is_forgiving(self, db_session, org_a):
        card = gift_card_service.issue(org_a.id, 2000)
        typed = gift_card_service.format_code(card.code).lower()

        result = gift_card_service.redeem(org_a.id, typed, 2000, order_ref="ORD-1")

        assert result.remaining_cents == 0
        assert result.card.is_active is False
        assert result.card.status == gift_card_service.STATUS_REDEEMED

    def test_expired_card_cannot_be_redeemed(self, db_session, org_a):
        card = gift_card_service.issue(org_a.id, 2000, expires_at=utcnow() + timedelta(days=1))

        with pytest.raises(InactiveGiftCard):
            gift_card_service.redeem(
                org_a.id, card.code, 100, order_ref="ORD-1", as_of=utcnow() + timedelta(days=2)
            )

    def test_card_of_other_org_not_found(self, db_session, org_a, org_b):
        card = gift_card_service.issue(org_a.id, 2000)

        with pytest.raises(NotFound):
            gift_card_service.redeem(org_b.id, card.code, 100, order_ref="ORD-1")


class TestRefundAndAdjust:
    """Value returned to a card and manual corrections."""

    def test_refund_reactivates_used_card(self, db_session, org_a):
        card = gift_card_service.issue(org_a.id, 2000)
        gift_card_service.redeem(org_a.id, card.code, 2000, order_ref="ORD-1")

        entry = gift_card_service.refund_to_card(org_a.id, card.code, 800, order_ref="ORD-1")

        card = gift_card_service.get_card(org_a.id, card.code)
        assert entry.balance_after_cents == 800
        assert card.is_active is True

    def test_refund_cannot_exceed_initial_amount(self, db_session, org_a):
        card = gift_card_service.issue(org_a.id, 2000)

        with pytest.raises(ValidationError):
            gift_card_service.refund_to_card(org_a.id, card.code, 1)

    def test_adjustment_requires_note(self, db_session, org_a):
        card = gift_card_service.issue(org_a.id, 2000)

        with pytest.raises(ValidationError):
            gift_card_service.adjust_card(org_a.id, card.code, -100, actor="manager", note="")


class TestBreakage:
    """Write-off of expired balances."""

    def test_breakage_is_recognized_once(self, db_session, org_a):
        card = gift_card_service.issue(org_a.id, 3000, expires_at=utcnow() + timedelta(days=1))
        gift_card_service.redeem(org_a.id, card.code, 1000, order_ref="ORD-1")
        later = utcnow() + timedelta(days=2)

        entry = gift_card_service.recognize_breakage(org_a.id, card.code, as_of=later)
        assert entry.kind == KIND_EXPIRY
        assert entry.amount_delta_cents == -2000

        assert gift_card_service.recognize_breakage(org_a.id, card.code, as_of=later) is None

        card = db_session.get(GiftCard, card.id)
        assert card.balance_cents == 0
        assert card.breakage_recognized_cents == 2000
        assert card.status == gift_card_service.STATUS_EXPIRED

    def test_breakage_before_expiry_rejected(self, db_session, org_a):
        card = gift_card_service.issue(org_a.id, 3000, expires_at=utcnow() + timedelta(days=30))

        with pytest.raises(GiftCardNotExpired):
            gift_card_service.recognize_breakage(org_a.id, card.code)

    def test_sweep_only_touches_expired_cards(self, db_session, org_a):
        soon = gift_card_service.issue(org_a.id, 1000, expires_at=utcnow() + timedelta(days=1))
        gift_card_service.issue(org_a.id, 2000, expires_at=utcnow() + timedelta(days=30))
        gift_card_service.issue(org_a.id, 4000)

        entries = gift_card_service.sweep_breakage(org_a.id, as_of=utcnow() + timedelta(days=2))

        assert len(entries) == 1
        assert entries[0].account_id == soon.id

    def test_liability_summary(self, db_session, org_a):
        card = gift_card_service.issue(org_a.id, 3000, expires_at=utcnow() + timedelta(days=1))
        gift_card_service.issue(org_a.id, 2000)
        wallet = wallet_service.get_or_create_wallet(org_a.id, customer_id=5)
        wallet_service.top_up(org_a.id, wallet.id, 1500)
        gift_card_service.recognize_breakage(org_a.id, card.code, as_of=utcnow() + timedelta(days=2))

        summary = gift_card_service.liability_summary(org_a.id)

        assert summary["gift_card_outstanding_cents"] == 2000
        assert summary["gift_card_issued_cents"] == 5000
        assert summary["gift_card_breakage_cents"] == 3000
        assert summary["wallet_outstanding_cents"] == 1500
        assert summary["total_outstanding_cents"] == 3500


class TestCodes:
    """Code normalization and display."""

    def test_normalize_code(self):
        assert gift_card_service.normalize_code(" abcd-efgh jkmn ") == "ABCDEFGHJKMN"
        assert gift_card_service.normalize_code(None) == ""

    def test_format_code(self):
        assert gift_card_service.format_code("abcdefghjkmn") == "ABCD-EFGH-JKMN"
