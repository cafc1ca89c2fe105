"""
ReconciliationService -- incoming payment intake and matching.

Responsibility:
    Record externally observed payments, list the open sales they could
    settle, and commit a match: the incoming row becomes ``matched`` with a
    back-reference and the sale becomes ``payment_confirmed``.  Splitting
    the confirmed sale is the caller's next step in the same unit.

Architecture position:
    Kernel > Services.  Candidate selection is delegated to the pure
    ``escrow_engines.matching.MatchEngine``.

Invariants enforced:
    - Intake is idempotent on (source_channel, external_reference).
    - Only pending incoming rows and open (draft/pending) sales match.
    - Auto-match never confirms when more than one candidate fits.
    - When the payment carries interest absorbed by the seller, the sale
      total is reduced to the interest-free base before confirmation.

Failure modes:
    - IncomingTransactionNotFoundError, IncomingTransactionStateError.
    - SaleNotFoundError, InvalidSaleStateError.
    - NoMatchFoundError, AmbiguousMatchError from ``auto_match``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from escrow_engines.matching import (
    IncomingSnapshot,
    MatchDecision,
    MatchDecisionKind,
    MatchEngine,
    OpenSaleSnapshot,
)
from escrow_kernel.db.types import validate_currency
from escrow_kernel.domain.clock import Clock
from escrow_kernel.domain.roles import InterestBearer
from escrow_kernel.exceptions import (
    AmbiguousMatchError,
    IncomingTransactionNotFoundError,
    IncomingTransactionStateError,
    InvalidSaleStateError,
    NoMatchFoundError,
)
from escrow_kernel.logging_config import get_logger
from escrow_kernel.models.incoming_transaction import (
    IncomingStatus,
    IncomingTransaction,
    MatchMethod,
)
from escrow_kernel.models.sale import (
    OPEN_SALE_STATUSES,
    ConfirmationSource,
    Sale,
    SaleStatus,
)
from escrow_kernel.services.base import BaseService
from escrow_kernel.services.split_service import load_sale_for_update

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class PayerIdentity:
    name: str | None = None
    document: str | None = None
    email: str | None = None


def confirm_sale(
    sale: Sale,
    confirmed_at: datetime,
    source: ConfirmationSource,
) -> None:
    """Move an open sale to ``payment_confirmed``; exactly once."""
    if not sale.is_open:
        raise InvalidSaleStateError(str(sale.id), sale.status.value, "confirm")
    sale.status = SaleStatus.PAYMENT_CONFIRMED
    sale.payment_confirmed_at = confirmed_at
    sale.confirmation_source = source


class ReconciliationService(BaseService[IncomingTransaction]):
    """Incoming payment intake, candidate search and match commit."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        engine: MatchEngine | None = None,
    ):
        super().__init__(session, clock)
        self.engine = engine or MatchEngine()

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def _by_reference(self, source_channel: str, external_reference: str):
        return self.session.execute(
            select(IncomingTransaction).where(
                IncomingTransaction.source_channel == source_channel,
                IncomingTransaction.external_reference == external_reference,
            )
        ).scalar_one_or_none()

    def submit(
        self,
        amount_cents: int,
        source_channel: str,
        observed_at: datetime,
        payer: PayerIdentity | None = None,
        currency: str = "BRL",
        external_reference: str | None = None,
        interest_cents: int = 0,
    ) -> tuple[IncomingTransaction, bool]:
        """
        Record an observed payment.

        Returns:
            (row, created).  ``created`` is False when the same
            (source_channel, external_reference) was already recorded.
        """
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
            raise ValueError(f"amount_cents must be a positive int, got {amount_cents!r}")
        if interest_cents < 0 or interest_cents > amount_cents:
            raise ValueError(f"interest_cents out of range: {interest_cents}")
        if not source_channel:
            raise ValueError("source_channel is required")
        currency = validate_currency(currency)
        payer = payer or PayerIdentity()

        if external_reference is not None:
            existing = self._by_reference(source_channel, external_reference)
            if existing is not None:
                logger.info(
                    "incoming_duplicate_submission",
                    extra={"incoming_id": str(existing.id), "source_channel": source_channel},
                )
                return existing, False

        incoming = IncomingTransaction(
            amount_cents=amount_cents,
            interest_cents=interest_cents,
            currency=currency,
            source_channel=source_channel,
            external_reference=external_reference,
            payer_name=payer.name,
            payer_document=payer.document,
            payer_email=payer.email,
            observed_at=observed_at,
            status=IncomingStatus.PENDING,
        )
        try:
            with self.session.begin_nested():
                self.session.add(incoming)
                self.session.flush()
        except IntegrityError:
            winner = self._by_reference(source_channel, external_reference)
            if winner is None:
                raise
            return winner, False

        logger.info(
            "incoming_recorded",
            extra={
                "incoming_id": str(incoming.id),
                "amount_cents": amount_cents,
                "source_channel": source_channel,
            },
        )
        return incoming, True

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def _load_incoming(self, incoming_id: UUID, for_update: bool = False) -> IncomingTransaction:
        stmt = select(IncomingTransaction).where(IncomingTransaction.id == incoming_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        incoming = self.session.execute(stmt).scalar_one_or_none()
        if incoming is None:
            raise IncomingTransactionNotFoundError(str(incoming_id))
        return incoming

    def _require_pending(self, incoming: IncomingTransaction) -> None:
        if not incoming.is_pending:
            raise IncomingTransactionStateError(str(incoming.id), incoming.status.value)

    def candidates(self, incoming_id: UUID, window: timedelta) -> MatchDecision:
        """Open sales the incoming payment could settle, with a decision."""
        incoming = self._load_incoming(incoming_id)
        self._require_pending(incoming)

        rows = self.session.execute(
            select(Sale).where(
                Sale.status.in_(sorted(OPEN_SALE_STATUSES)),
                Sale.gross_total_cents == incoming.amount_cents,
                Sale.created_at >= incoming.observed_at - window,
                Sale.created_at <= incoming.observed_at + window,
            )
        ).scalars().all()

        found = self.engine.find_candidates(
            incoming=IncomingSnapshot(
                incoming_id=str(incoming.id),
                amount_cents=incoming.amount_cents,
                observed_at=incoming.observed_at,
                payer_document=incoming.payer_document,
                payer_email=incoming.payer_email,
            ),
            sales=[
                OpenSaleSnapshot(
                    sale_id=str(s.id),
                    amount_due_cents=s.amount_due_cents,
                    created_at=s.created_at,
                    customer_document=s.customer_document,
                    customer_email=s.customer_email,
                )
                for s in rows
            ],
            window=window,
        )
        return self.engine.decide(incoming_id=str(incoming.id), candidates=found)

    # ------------------------------------------------------------------
    # Match
    # ------------------------------------------------------------------

    def match(
        self,
        incoming_id: UUID,
        sale_id: UUID,
        method: MatchMethod,
        actor_id: str | None = None,
    ) -> Sale:
        """
        Commit a match and confirm the sale.

        A manual match may settle a sale whose amount differs from the
        payment; the mismatch is logged, not rejected.  Interest reported
        on the payment adjusts the sale's own total: a seller-borne
        interest is taken out of it, and interest above it is rejected
        with InvalidSaleStateError.
        """
        incoming = self._load_incoming(incoming_id, for_update=True)
        self._require_pending(incoming)
        sale = load_sale_for_update(self.session, sale_id)
        if not sale.is_open:
            raise InvalidSaleStateError(str(sale.id), sale.status.value, "match")

        if incoming.amount_cents != sale.amount_due_cents:
            logger.warning(
                "match_amount_mismatch",
                extra={
                    "incoming_id": str(incoming.id),
                    "sale_id": str(sale.id),
                    "incoming_amount_cents": incoming.amount_cents,
                    "amount_due_cents": sale.amount_due_cents,
                    "method": method.value,
                },
            )

        if incoming.interest_cents:
            if incoming.interest_cents > sale.gross_total_cents:
                raise InvalidSaleStateError(
                    str(sale.id),
                    sale.status.value,
                    f"apply interest {incoming.interest_cents} above the total "
                    f"{sale.gross_total_cents} of",
                )
            if sale.interest_bearer == InterestBearer.SELLER:
                sale.absorbed_interest_cents = incoming.interest_cents
                sale.gross_total_cents -= incoming.interest_cents
                sale.interest_cents = 0
            else:
                sale.interest_cents = incoming.interest_cents

        now = self.clock.now()
        incoming.status = IncomingStatus.MATCHED
        incoming.matched_sale_id = sale.id
        incoming.matched_at = now
        incoming.match_method = method
        incoming.matched_by = actor_id
        confirm_sale(sale, now, ConfirmationSource.RECONCILIATION)
        self.session.flush()

        logger.info(
            "incoming_matched",
            extra={
                "incoming_id": str(incoming.id),
                "sale_id": str(sale.id),
                "method": method.value,
                "gross_total_cents": sale.gross_total_cents,
            },
        )
        return sale

    def auto_match(self, incoming_id: UUID, window: timedelta) -> Sale:
        """Match only when exactly one candidate fits."""
        decision = self.candidates(incoming_id, window)
        if decision.kind == MatchDecisionKind.NO_MATCH:
            raise NoMatchFoundError(str(incoming_id))
        if decision.kind == MatchDecisionKind.AMBIGUOUS:
            raise AmbiguousMatchError(str(incoming_id), decision.candidate_sale_ids)
        return self.match(
            incoming_id, UUID(decision.sale_id), MatchMethod.AUTOMATIC,
        )

    def ignore(self, incoming_id: UUID, reason: str, actor_id: str | None = None) -> IncomingTransaction:
        incoming = self._load_incoming(incoming_id, for_update=True)
        self._require_pending(incoming)
        incoming.status = IncomingStatus.IGNORED
        incoming.ignore_reason = reason
        incoming.matched_by = actor_id
        self.session.flush()
        logger.info(
            "incoming_ignored",
            extra={"incoming_id": str(incoming.id), "reason": reason},
        )
        return incoming
