# Overview: Pure statement-line matcher scoring payouts and invoices; no database access.

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from ..models.reconciliation import MATCH_AUTO, MATCH_POSSIBLE, MATCH_UNMATCHED


ENTITY_PAYOUT = "payout"
ENTITY_INVOICE = "invoice"

# References shorter than this are too generic to count as a match
MIN_REFERENCE_LENGTH = 4

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def normalize_reference(value: str | None) -> str:
    """Upper-case and drop everything except letters and digits ("RF18 5390 0754" -> "RF1853900754")."""
    if not value:
        return ""
    return _NON_ALNUM.sub("", str(value).upper())


@dataclass(frozen=True)
class Candidate:
    """A payout or invoice a statement line may settle."""
    entity: str
    id: int
    amount_cents: int
    currency: str
    earliest: date | None = None
    latest: date | None = None
    references: tuple[str, ...] = ()
    anchor: date | None = None

    @property
    def key(self) -> tuple[str, int]:
        return (self.entity, self.id)

    @classmethod
    def for_payout(cls, payout, window_days: int) -> "Candidate":
        window = timedelta(days=window_days)
        arrival = payout.expected_arrival
        return cls(
            entity=ENTITY_PAYOUT,
            id=payout.id,
            amount_cents=payout.net_amount_cents,
            currency=payout.currency,
            earliest=arrival - window if arrival else None,
            latest=arrival + window if arrival else None,
            references=_refs(payout.provider_payout_id, payout.reference, payout.statement_descriptor),
            anchor=arrival,
        )

    @classmethod
    def for_invoice(cls, invoice, window_days: int) -> "Candidate":
        # Invoices are paid any time between issue and a few days past due
        window = timedelta(days=window_days)
        return cls(
            entity=ENTITY_INVOICE,
            id=invoice.id,
            amount_cents=invoice.amount_cents,
            currency=invoice.currency,
            earliest=invoice.issued_on,
            latest=invoice.due_on + window if invoice.due_on else None,
            references=_refs(invoice.invoice_number),
            anchor=invoice.due_on or invoice.issued_on,
        )


def _refs(*values) -> tuple[str, ...]:
    refs = []
    for value in values:
        ref = normalize_reference(value)
        if len(ref) >= MIN_REFERENCE_LENGTH and ref not in refs:
            refs.append(ref)
    return tuple(refs)


@dataclass(frozen=True)
class MatchProposal:
    line_id: int
    status: str
    confidence: float
    matched_entity: str | None = None
    matched_id: int | None = None
    reason: str = ""
    candidates: tuple[tuple[str, int], ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "line_id": self.line_id,
            "status": self.status,
            "confidence": self.confidence,
            "matched_entity": self.matched_entity,
            "matched_id": self.matched_id,
            "reason": self.reason,
            "candidates": [{"entity": e, "id": i} for e, i in self.candidates],
        }


def _line_texts(line) -> list[str]:
    texts = [
        normalize_reference(getattr(line, "end_to_end_id", None)),
        normalize_reference(getattr(line, "remittance_reference", None)),
        normalize_reference(getattr(line, "description", None)),
    ]
    return [t for t in texts if t]


def reference_matches(line, candidate: Candidate) -> bool:
    """Equality or substring of a candidate reference in the line's references."""
    texts = _line_texts(line)
    return any(ref == text or ref in text for ref in candidate.references for text in texts)


def _in_window(posted: date, candidate: Candidate) -> bool:
    if candidate.earliest is not None and posted < candidate.earliest:
        return False
    if candidate.latest is not None and posted > candidate.latest:
        return False
    return True


def _distance(posted: date, candidate: Candidate) -> int:
    return abs((posted - candidate.anchor).days) if candidate.anchor else 0


def match_lines(
    lines: Iterable,
    payouts: Iterable = (),
    invoices: Iterable = (),
    tolerance_cents: int = 1,
    date_window_days: int = 5,
    possible_ceiling: float = 0.9,
    claimed: Iterable[tuple[str, int]] = (),
) -> list[MatchProposal]:
    """
    Score every statement line against open payouts and invoices.

    - Exactly one candidate matching on amount and reference: auto match, 1.0
    - Amount candidates without a unique reference: possible match,
      possible_ceiling / number of amount candidates
    - No amount candidate: unmatched, 0.0

    claimed holds candidates already settled by other lines; they are never
    proposed again. An auto match claims its candidate for the rest of the run.
    Lines are processed by posting date then id, so the result does not depend
    on input order.
    """
    candidates = [Candidate.for_payout(p, date_window_days) for p in payouts]
    candidates += [Candidate.for_invoice(i, date_window_days) for i in invoices]
    taken = set(claimed)

    proposals = []
    for line in sorted(lines, key=lambda ln: (ln.posted_at, ln.id)):
        amount_hits = sorted(
            (
                c for c in candidates
                if c.key not in taken
                and c.currency == line.currency
                and abs(c.amount_cents - line.amount_cents) <= tolerance_cents
                and _in_window(line.posted_at, c)
            ),
            key=lambda c: (_distance(line.posted_at, c), c.entity, c.id),
        )
        ref_hits = [c for c in amount_hits if reference_matches(line, c)]

        if len(ref_hits) == 1:
            best = ref_hits[0]
            taken.add(best.key)
            proposals.append(MatchProposal(
                line_id=line.id,
                status=MATCH_AUTO,
                confidence=1.0,
                matched_entity=best.entity,
                matched_id=best.id,
                reason="Amount and reference match",
                candidates=(best.key,),
            ))
        elif amount_hits:
            best = (ref_hits or amount_hits)[0]
            reason = (
                f"Reference matches {len(ref_hits)} candidates with the same amount"
                if ref_hits else
                f"Amount matches {len(amount_hits)} candidate(s), no reference match"
            )
            proposals.append(MatchProposal(
                line_id=line.id,
                status=MATCH_POSSIBLE,
                confidence=round(possible_ceiling / len(amount_hits), 4),
                matched_entity=best.entity,
                matched_id=best.id,
                reason=reason,
                candidates=tuple(c.key for c in amount_hits),
            ))
        else:
            ref_only = [
                c for c in candidates
                if c.key not in taken and c.currency == line.currency and reference_matches(line, c)
            ]
            reason = (
                f"Reference matches {ref_only[0].entity} {ref_only[0].id} but the amount differs"
                if ref_only else "No candidate with a matching amount"
            )
            proposals.append(MatchProposal(
                line_id=line.id,
                status=MATCH_UNMATCHED,
                confidence=0.0,
                reason=reason,
            ))

    return proposals
