# Overview: Pytest coverage for payout/invoice matching and manual reconciliation.

"""
Reconciliation Tests

Test Coverage:
- Pure matcher: auto, possible and unmatched proposals
- Payout net amounts from settlement items
- Matching runs are idempotent (one result per line)
- Confirm, manual link and unlink move payouts and invoices through
  their states; the ledger is never written
"""

from datetime import date
from types import SimpleNamespace

import pytest

from studio_ledger.errors import ValidationError
from studio_ledger.models import Invoice, LedgerEntry, MatchResult, Payout
from studio_ledger.models.reconciliation import (
    MATCH_AUTO,
    MATCH_CONFIRMED,
    MATCH_MANUAL,
    MATCH_POSSIBLE,
    MATCH_UNMATCHED,
)
from studio_ledger.services import reconciliation_service, statement_import_service
from studio_ledger.services.matching import match_lines, normalize_reference
from studio_ledger.services.reconciliation_service import ReconciliationError


STATEMENT = (
    "Date;Amount;Currency;Description;Reference\n"
    "04.03.2025;2762.07;CHF;Stripe payout;STRIPE-PO-123456\n"
    "05.03.2025;150.00;CHF;Einzahlung;\n"
)

PAYOUT_ITEMS = [
    {"item_type": "charge", "amount_cents": 285000, "count": 12},
    {"item_type": "refund", "amount_cents": 4500},
    {"item_type": "fee", "amount_cents": 4293},
]


def make_line(line_id, amount_cents, posted_at=date(2025, 3, 4), **refs):
    return SimpleNamespace(
        id=line_id,
        amount_cents=amount_cents,
        currency="CHF",
        posted_at=posted_at,
        end_to_end_id=refs.get("end_to_end_id"),
        remittance_reference=refs.get("remittance_reference"),
        description=refs.get("description"),
    )


def make_payout(payout_id, net_cents, provider_payout_id, reference=None, arrival=date(2025, 3, 3)):
    return SimpleNamespace(
        id=payout_id,
        net_amount_cents=net_cents,
        currency="CHF",
        expected_arrival=arrival,
        provider_payout_id=provider_payout_id,
        reference=reference,
        statement_descriptor=None,
    )


@pytest.fixture
def statement_lines(db_session, org_a):
    result = statement_import_service.import_statement(org_a.id, "march.csv", STATEMENT.encode("utf-8"))
    return result.new_lines


@pytest.fixture
def payout(db_session, org_a):
    return reconciliation_service.record_payout(
        org_a.id,
        provider="stripe",
        provider_payout_id="po_123456",
        currency="CHF",
        items=PAYOUT_ITEMS,
        reference="STRIPE-PO-123456",
        expected_arrival="2025-03-03",
    )


class TestMatcher:
    """match_lines without a database."""

    def test_amount_and_reference_is_auto_match(self):
        lines = [make_line(1, 276207, remittance_reference="STRIPE-PO-123456")]
        payouts = [make_payout(10, 276207, "po_123456", reference="STRIPE-PO-123456")]

        (proposal,) = match_lines(lines, payouts)

        assert proposal.status == MATCH_AUTO
        assert proposal.confidence == 1.0
        assert (proposal.matched_entity, proposal.matched_id) == ("payout", 10)

    def test_amount_without_reference_is_possible(self):
        lines = [make_line(1, 276207)]
        payouts = [
            make_payout(10, 276207, "po_111111"),
            make_payout(11, 276207, "po_222222"),
        ]

        (proposal,) = match_lines(lines, payouts, possible_ceiling=0.9)

        assert proposal.status == MATCH_POSSIBLE
        assert proposal.confidence == 0.45
        assert len(proposal.candidates) == 2

    def test_no_amount_candidate_is_unmatched(self):
        lines = [make_line(1, 15000)]
        payouts = [make_payout(10, 276207, "po_123456")]

        (proposal,) = match_lines(lines, payouts)

        assert proposal.status == MATCH_UNMATCHED
        assert proposal.confidence == 0.0
        assert proposal.matched_id is None

    def test_amount_tolerance_and_date_window(self):
        payouts = [make_payout(10, 276207, "po_123456")]

        assert match_lines([make_line(1, 276208)], payouts, tolerance_cents=1)[0].status == MATCH_POSSIBLE
        assert match_lines([make_line(1, 276209)], payouts, tolerance_cents=1)[0].status == MATCH_UNMATCHED
        late = make_line(1, 276207, posted_at=date(2025, 3, 20))
        assert match_lines([late], payouts, date_window_days=5)[0].status == MATCH_UNMATCHED

    def test_auto_match_claims_candidate(self):
        lines = [
            make_line(1, 276207, remittance_reference="PO-123456"),
            make_line(2, 276207, remittance_reference="PO-123456"),
        ]
        payouts = [make_payout(10, 276207, "po_123456")]

        first, second = match_lines(lines, payouts)

        assert first.status == MATCH_AUTO
        assert second.status == MATCH_UNMATCHED

    def test_invoice_matched_by_number(self):
        line = make_line(1, 45000, posted_at=date(2025, 3, 12), description="Zahlung Rechnung INV-2025-014")
        invoice = SimpleNamespace(
            id=5, amount_cents=45000, currency="CHF", invoice_number="INV-2025-014",
            issued_on=date(2025, 3, 1), due_on=date(2025, 3, 31),
        )

        (proposal,) = match_lines([line], invoices=[invoice])

        assert proposal.status == MATCH_AUTO
        assert proposal.matched_entity == "invoice"

    def test_short_references_do_not_count(self):
        assert normalize_reference("rf18 5390-0754") == "RF1853900754"
        lines = [make_line(1, 276207, description="PO 1")]
        payouts = [make_payout(10, 276207, "P1")]

        assert match_lines(lines, payouts)[0].status == MATCH_POSSIBLE


class TestPayouts:
    """Settlement records."""

    def test_net_amount_from_items(self, db_session, org_a, payout):
        assert payout.gross_amount_cents == 280500
        assert payout.fee_amount_cents == 4293
        assert payout.net_amount_cents == 276207
        assert len(payout.items) == 3

    def test_duplicate_payout_rejected(self, db_session, org_a, payout):
        with pytest.raises(ValidationError):
            reconciliation_service.record_payout(
                org_a.id, "stripe", "po_123456", "CHF", PAYOUT_ITEMS
            )

    def test_invalid_item_type_rejected(self, db_session, org_a):
        with pytest.raises(ValidationError):
            reconciliation_service.record_payout(
                org_a.id, "stripe", "po_9", "CHF", [{"item_type": "bonus", "amount_cents": 100}]
            )


class TestMatchingRun:
    """run_matching against persisted statements."""

    def test_scenario_auto_and_unmatched(self, db_session, org_a, statement_lines, payout):
        results = reconciliation_service.run_matching(org_a.id)

        by_line = {r.statement_line_id: r for r in results}
        stripe_line, deposit_line = statement_lines
        assert by_line[stripe_line.id].status == MATCH_AUTO
        assert by_line[stripe_line.id].confidence == 1.0
        assert by_line[stripe_line.id].matched_id == payout.id
        assert by_line[deposit_line.id].status == MATCH_UNMATCHED
        assert by_line[deposit_line.id].confidence == 0.0

    def test_rerun_is_idempotent(self, db_session, org_a, statement_lines, payout):
        reconciliation_service.run_matching(org_a.id)
        reconciliation_service.run_matching(org_a.id)

        assert db_session.query(MatchResult).count() == 2
        statuses = {r.status for r in reconciliation_service.list_results(org_a.id)}
        assert statuses == {MATCH_AUTO, MATCH_UNMATCHED}

    def test_matching_never_writes_ledger(self, db_session, org_a, statement_lines, payout):
        reconciliation_service.run_matching(org_a.id)
        reconciliation_service.confirm_match(org_a.id, statement_lines[0].id, actor="anna")

        assert db_session.query(LedgerEntry).count() == 0

    def test_other_org_sees_nothing(self, db_session, org_a, org_b, statement_lines, payout):
        assert reconciliation_service.run_matching(org_b.id) == []
        assert reconciliation_service.list_results(org_b.id) == []


class TestManualResolution:
    """Confirm, link and unlink."""

    def test_confirm_settles_payout(self, db_session, org_a, statement_lines, payout):
        reconciliation_service.run_matching(org_a.id)

        result = reconciliation_service.confirm_match(org_a.id, statement_lines[0].id, actor="anna")

        assert result.status == MATCH_CONFIRMED
        assert result.resolved_by == "anna"
        settled = db_session.get(Payout, payout.id)
        assert settled.status == "reconciled"
        assert settled.arrived_at == date(2025, 3, 4)

        # Settled lines are left alone by later runs
        rerun = reconciliation_service.run_matching(org_a.id)
        assert [r.statement_line_id for r in rerun] == [statement_lines[1].id]

    def test_confirm_requires_proposal(self, db_session, org_a, statement_lines, payout):
        reconciliation_service.run_matching(org_a.id)

        with pytest.raises(ReconciliationError):
            reconciliation_service.confirm_match(org_a.id, statement_lines[1].id, actor="anna")

    def test_link_manually_to_invoice(self, db_session, org_a, statement_lines):
        invoice = reconciliation_service.create_invoice(
            org_a.id, "INV-2025-001", 15000, issued_on="2025-02-20", due_on="2025-03-20"
        )

        result = reconciliation_service.link_manually(
            org_a.id, statement_lines[1].id, "invoice", invoice.id, actor="anna", note="Cash deposit by customer"
        )

        assert result.status == MATCH_MANUAL
        assert result.is_manual_override is True
        assert db_session.get(Invoice, invoice.id).status == "paid"

    def test_entity_settled_only_once(self, db_session, org_a, statement_lines, payout):
        reconciliation_service.link_manually(org_a.id, statement_lines[0].id, "payout", payout.id, actor="anna")

        with pytest.raises(ReconciliationError):
            reconciliation_service.link_manually(org_a.id, statement_lines[1].id, "payout", payout.id, actor="anna")

    def test_unlink_reopens_entity(self, db_session, org_a, statement_lines, payout):
        reconciliation_service.run_matching(org_a.id)
        reconciliation_service.confirm_match(org_a.id, statement_lines[0].id, actor="anna")

        result = reconciliation_service.unlink(org_a.id, statement_lines[0].id, actor="anna")

        assert result.status == MATCH_UNMATCHED
        assert result.matched_id is None
        reopened = db_session.get(Payout, payout.id)
        assert reopened.status == "paid"
        assert reopened.arrived_at is None

    def test_unlink_unlinked_line_rejected(self, db_session, org_a, statement_lines):
        with pytest.raises(ReconciliationError):
            reconciliation_service.unlink(org_a.id, statement_lines[1].id, actor="anna")
