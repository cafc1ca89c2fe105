"""
escrow_engines.matching -- Incoming payment to open sale matching.

Responsibility:
    Given one externally observed payment and the open sales that could
    have produced it, list the candidates and decide whether the match is
    unambiguous.  Candidate rule: same amount as the sale's amount due,
    observed within the matching window of the sale's creation, and no
    conflicting payer identity.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The reconciliation
    service loads snapshots, calls the engine and acts on the decision.

Invariants enforced:
    - More than one candidate is never decided as a match.
    - Identity only excludes: a document or e-mail present on both sides
      and different removes the sale.  Missing identity never excludes.
    - Candidates are ordered by closeness in time, then by sale id.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from escrow_engines.tracer import traced_engine
from escrow_kernel.domain.clock import ensure_utc

_NON_DIGITS = re.compile(r"\D")


class MatchDecisionKind(str, Enum):
    MATCH = "match"
    AMBIGUOUS = "ambiguous"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class IncomingSnapshot:
    incoming_id: str
    amount_cents: int
    observed_at: datetime
    payer_document: str | None = None
    payer_email: str | None = None


@dataclass(frozen=True)
class OpenSaleSnapshot:
    sale_id: str
    amount_due_cents: int
    created_at: datetime
    customer_document: str | None = None
    customer_email: str | None = None


@dataclass(frozen=True)
class MatchCandidate:
    sale_id: str
    time_distance: timedelta


@dataclass(frozen=True)
class MatchDecision:
    incoming_id: str
    kind: MatchDecisionKind
    candidates: tuple[MatchCandidate, ...]

    @property
    def sale_id(self) -> str | None:
        """The matched sale, only when the decision is unambiguous."""
        if self.kind == MatchDecisionKind.MATCH:
            return self.candidates[0].sale_id
        return None

    @property
    def candidate_sale_ids(self) -> list[str]:
        return [c.sale_id for c in self.candidates]


def normalize_document(value: str | None) -> str | None:
    """Digits only; ``None`` when nothing is left (CPF/CNPJ punctuation)."""
    if not value:
        return None
    digits = _NON_DIGITS.sub("", value)
    return digits or None


def normalize_email(value: str | None) -> str | None:
    if not value:
        return None
    return value.strip().lower() or None


def identity_conflicts(incoming: IncomingSnapshot, sale: OpenSaleSnapshot) -> bool:
    """True when both sides carry the same identity kind and it differs."""
    doc_a = normalize_document(incoming.payer_document)
    doc_b = normalize_document(sale.customer_document)
    if doc_a and doc_b and doc_a != doc_b:
        return True
    mail_a = normalize_email(incoming.payer_email)
    mail_b = normalize_email(sale.customer_email)
    if mail_a and mail_b and mail_a != mail_b:
        return True
    return False


class MatchEngine:
    """Stateless matcher over snapshots."""

    @traced_engine(
        "matching", "1.0",
        fingerprint_fields=("incoming", "window"),
    )
    def find_candidates(
        self,
        *,
        incoming: IncomingSnapshot,
        sales: Sequence[OpenSaleSnapshot],
        window: timedelta,
    ) -> tuple[MatchCandidate, ...]:
        observed = ensure_utc(incoming.observed_at)
        candidates: list[MatchCandidate] = []
        for sale in sales:
            if sale.amount_due_cents != incoming.amount_cents:
                continue
            distance = abs(observed - ensure_utc(sale.created_at))
            if distance > window:
                continue
            if identity_conflicts(incoming, sale):
                continue
            candidates.append(MatchCandidate(sale_id=sale.sale_id, time_distance=distance))

        candidates.sort(key=lambda c: (c.time_distance, c.sale_id))
        return tuple(candidates)

    def decide(
        self,
        *,
        incoming_id: str,
        candidates: Sequence[MatchCandidate],
    ) -> MatchDecision:
        if not candidates:
            kind = MatchDecisionKind.NO_MATCH
        elif len(candidates) == 1:
            kind = MatchDecisionKind.MATCH
        else:
            kind = MatchDecisionKind.AMBIGUOUS
        return MatchDecision(
            incoming_id=incoming_id,
            kind=kind,
            candidates=tuple(candidates),
        )
