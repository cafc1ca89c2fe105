"""
EscrowOrchestrator -- the ledger's external interface and unit-of-work owner.

Responsibility:
    Expose the inputs (payment confirmation, incoming payment intake,
    manual and automatic matching, refund, chargeback, release sweep) and
    the read outputs (balances, split breakdown, statements).  Each input
    runs as one unit of work: open a session, call the flush-only kernel
    services, commit or roll back.

Architecture position:
    Services -- above ``escrow_kernel``, ``escrow_engines``,
    ``escrow_config`` and ``escrow_batch``.  The only layer that commits.

Invariants enforced:
    - Split, match-then-split and reversal are atomic: either every ledger
      line of the unit is committed or none is.
    - DuplicateProcessingError is absorbed as a no-op outcome.
    - AccountRaceConflictError retries the whole unit up to
      ``orchestrator.max_split_attempts`` times.
    - NegativeNetAllocationError and InvalidPriorAllocationError commit the
      review flag (and the confirmation that led to it) and are re-raised;
      they are never retried.
    - Fee schedules are resolved from configuration before the split runs.
    - A gateway verification that times out writes nothing.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from escrow_batch.release_sweep import EscrowReleaseSweep, SweepResult
from escrow_config import resolve_fee_schedule
from escrow_config.schema import EscrowConfiguration
from escrow_kernel.db.engine import session_scope
from escrow_kernel.domain.clock import Clock, SystemClock
from escrow_kernel.domain.roles import StakeholderRole
from escrow_kernel.exceptions import (
    AccountRaceConflictError,
    AmbiguousMatchError,
    DuplicateProcessingError,
    IncomingTransactionStateError,
    InvalidPriorAllocationError,
    InvalidSaleStateError,
    NegativeNetAllocationError,
    NoMatchFoundError,
    SaleNotFoundError,
)
from escrow_kernel.logging_config import LogContext, get_logger
from escrow_kernel.models.incoming_transaction import MatchMethod
from escrow_kernel.models.sale import ConfirmationSource, Sale
from escrow_kernel.models.virtual_transaction import ReversalKind
from escrow_kernel.selectors.account_selector import (
    AccountBalanceDTO,
    AccountInvariantReport,
    AccountSelector,
)
from escrow_kernel.selectors.incoming_selector import (
    IncomingSelector,
    IncomingTransactionView,
    to_view,
)
from escrow_kernel.selectors.split_selector import (
    SplitBreakdown,
    SplitSelector,
    StatementLine,
)
from escrow_kernel.services.reconciliation_service import (
    PayerIdentity,
    ReconciliationService,
    confirm_sale,
)
from escrow_kernel.services.reversal_service import ReversalResult, ReversalService
from escrow_kernel.services.split_service import (
    SplitResult,
    SplitService,
    load_sale_for_update,
)
from escrow_services.gateway import GatewayVerifier, call_with_timeout

logger = get_logger("services.orchestrator")

T = TypeVar("T")

# Committed with the review flag they set, then re-raised
REVIEW_ERRORS: tuple[type[Exception], ...] = (
    NegativeNetAllocationError,
    InvalidPriorAllocationError,
)


class SplitOutcomeStatus(str, Enum):
    SPLIT = "split"
    DUPLICATE = "duplicate"  # Already split; nothing written
    NOT_CONFIRMED = "not_confirmed"  # Gateway does not confirm payment yet


@dataclass(frozen=True)
class SplitOutcome:
    sale_id: UUID
    status: SplitOutcomeStatus
    result: SplitResult | None = None
    reason: str | None = None

    @property
    def transaction_ids(self) -> tuple[UUID, ...]:
        return self.result.transaction_ids if self.result else ()


@dataclass(frozen=True)
class MatchOutcome:
    incoming_id: UUID
    sale_id: UUID
    method: MatchMethod
    split: SplitResult | None


@dataclass
class AutoMatchReport:
    matched: list[MatchOutcome] = field(default_factory=list)
    ambiguous: dict[UUID, list[str]] = field(default_factory=dict)
    unmatched: list[UUID] = field(default_factory=list)
    needs_review: list[UUID] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return (
            len(self.matched) + len(self.ambiguous)
            + len(self.unmatched) + len(self.needs_review)
        )


@dataclass(frozen=True)
class ReversalOutcome:
    sale_id: UUID
    kind: ReversalKind
    duplicate: bool
    result: ReversalResult | None = None


class EscrowOrchestrator:
    """
    Unit-of-work orchestration over the escrow kernel.

    Usage:
        orchestrator = EscrowOrchestrator(get_session_factory(), get_active_config())
        orchestrator.on_payment_confirmed(sale_id)
        orchestrator.run_release_sweep()
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: EscrowConfiguration,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._config = config
        self._clock = clock or SystemClock()

    @property
    def config(self) -> EscrowConfiguration:
        return self._config

    @property
    def matching_window(self) -> timedelta:
        return timedelta(hours=self._config.reconciliation.matching_window_hours)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _in_unit(
        self,
        operation: str,
        work: Callable[[Session], T],
        commit_on: tuple[type[Exception], ...] = (),
    ) -> T:
        """
        Run ``work`` in a fresh session and commit.

        Exceptions listed in ``commit_on`` commit what was flushed before
        being re-raised.  AccountRaceConflictError retries the whole unit.
        """
        attempts = self._config.orchestrator.max_split_attempts
        for attempt in range(1, attempts + 1):
            session = self._session_factory()
            try:
                result = work(session)
                session.commit()
                return result
            except commit_on:
                session.commit()
                raise
            except AccountRaceConflictError:
                session.rollback()
                if attempt >= attempts:
                    logger.error(
                        "unit_retries_exhausted",
                        extra={"operation": operation, "attempts": attempt},
                    )
                    raise
                logger.warning(
                    "unit_retry",
                    extra={"operation": operation, "attempt": attempt},
                )
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
        raise AssertionError("unreachable")

    def _read(self):
        return session_scope(self._session_factory)

    def _split(self, session: Session, sale: Sale) -> SplitResult:
        schedule = resolve_fee_schedule(self._config, sale.tenant_id)
        return SplitService(session, self._clock).process_sale(sale.id, schedule)

    # ------------------------------------------------------------------
    # Payment confirmation
    # ------------------------------------------------------------------

    def on_payment_confirmed(
        self,
        sale_id: UUID,
        confirmed_at: datetime | None = None,
        verifier: GatewayVerifier | None = None,
        gateway_fee_cents: int | None = None,
    ) -> SplitOutcome:
        """
        Gateway webhook entry: confirm the sale (if still open) and split it.

        ``gateway_fee_cents`` is the fee the gateway reports withholding;
        it is recorded on a sale not yet split and deducted from the
        tenant share.  Redelivery of the same webhook returns a DUPLICATE
        outcome and writes nothing.

        Raises:
            SaleNotFoundError, NegativeNetAllocationError,
            InvalidPriorAllocationError,
            CollaboratorTimeoutError, AccountRaceConflictError (after the
            retry budget).
        """
        with LogContext.bind(sale_id=str(sale_id)):
            if verifier is not None:
                paid = call_with_timeout(
                    "payment_gateway",
                    lambda: verifier(sale_id),
                    self._config.orchestrator.gateway_timeout_seconds,
                )
                if not paid:
                    logger.info("payment_not_confirmed_by_gateway")
                    return SplitOutcome(
                        sale_id=sale_id,
                        status=SplitOutcomeStatus.NOT_CONFIRMED,
                        reason="gateway_not_paid",
                    )

            def work(session: Session) -> SplitResult:
                sale = load_sale_for_update(session, sale_id)
                if sale.is_open:
                    confirm_sale(
                        sale,
                        confirmed_at or self._clock.now(),
                        ConfirmationSource.GATEWAY,
                    )
                if gateway_fee_cents is not None and sale.split_computed_at is None:
                    sale.gateway_fee_cents = gateway_fee_cents
                session.flush()
                with LogContext.bind(tenant_id=sale.tenant_id):
                    return self._split(session, sale)

            try:
                result = self._in_unit(
                    "on_payment_confirmed", work,
                    commit_on=REVIEW_ERRORS,
                )
            except DuplicateProcessingError as exc:
                logger.info("split_duplicate_ignored", extra={"reason": exc.reason})
                return SplitOutcome(
                    sale_id=sale_id,
                    status=SplitOutcomeStatus.DUPLICATE,
                    reason=exc.reason,
                )
            return SplitOutcome(
                sale_id=sale_id, status=SplitOutcomeStatus.SPLIT, result=result,
            )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def submit_incoming_transaction(
        self,
        amount_cents: int,
        source_channel: str,
        payer: PayerIdentity | None = None,
        observed_at: datetime | None = None,
        currency: str | None = None,
        external_reference: str | None = None,
        interest_cents: int = 0,
    ) -> IncomingTransactionView:
        def work(session: Session) -> IncomingTransactionView:
            incoming, _created = ReconciliationService(session, self._clock).submit(
                amount_cents=amount_cents,
                source_channel=source_channel,
                observed_at=observed_at or self._clock.now(),
                payer=payer,
                currency=currency or self._config.currency,
                external_reference=external_reference,
                interest_cents=interest_cents,
            )
            return to_view(incoming)

        return self._in_unit("submit_incoming_transaction", work)

    def _match_and_split(
        self,
        incoming_id: UUID,
        match: Callable[[ReconciliationService], Sale],
        method: MatchMethod,
    ) -> MatchOutcome:
        def work(session: Session) -> MatchOutcome:
            sale = match(ReconciliationService(session, self._clock))
            with LogContext.bind(sale_id=str(sale.id), tenant_id=sale.tenant_id):
                split = self._split(session, sale)
            return MatchOutcome(
                incoming_id=incoming_id, sale_id=sale.id, method=method, split=split,
            )

        with LogContext.bind(incoming_id=str(incoming_id)):
            return self._in_unit(
                f"{method.value}_match", work,
                commit_on=REVIEW_ERRORS,
            )

    def request_manual_match(
        self,
        incoming_id: UUID,
        sale_id: UUID,
        actor_id: str | None = None,
    ) -> MatchOutcome:
        """Operator-chosen match; confirms and splits the sale in one unit."""
        with LogContext.bind(actor_id=actor_id):
            return self._match_and_split(
                incoming_id,
                lambda recon: recon.match(incoming_id, sale_id, MatchMethod.MANUAL, actor_id),
                MatchMethod.MANUAL,
            )

    def auto_match(self, incoming_id: UUID) -> MatchOutcome:
        """
        Match when exactly one open sale fits.

        Raises:
            NoMatchFoundError: the incoming payment stays pending.
            AmbiguousMatchError: an operator must choose.
        """
        window = self.matching_window
        return self._match_and_split(
            incoming_id,
            lambda recon: recon.auto_match(incoming_id, window),
            MatchMethod.AUTOMATIC,
        )

    def run_auto_match(self, limit: int | None = None) -> AutoMatchReport:
        """Attempt every pending incoming payment once."""
        with self._read() as session:
            pending = IncomingSelector(session).pending_ids(limit)

        report = AutoMatchReport()
        for incoming_id in pending:
            try:
                report.matched.append(self.auto_match(incoming_id))
            except NoMatchFoundError:
                report.unmatched.append(incoming_id)
            except AmbiguousMatchError as exc:
                report.ambiguous[incoming_id] = exc.candidate_sale_ids
            except REVIEW_ERRORS:
                report.needs_review.append(incoming_id)
            except IncomingTransactionStateError:
                logger.info("auto_match_skipped_not_pending", extra={"incoming_id": str(incoming_id)})

        logger.info(
            "auto_match_completed",
            extra={
                "matched": len(report.matched),
                "ambiguous": len(report.ambiguous),
                "unmatched": len(report.unmatched),
                "needs_review": len(report.needs_review),
            },
        )
        return report

    def ignore_incoming_transaction(
        self,
        incoming_id: UUID,
        reason: str,
        actor_id: str | None = None,
    ) -> IncomingTransactionView:
        def work(session: Session) -> IncomingTransactionView:
            row = ReconciliationService(session, self._clock).ignore(incoming_id, reason, actor_id)
            return to_view(row)

        return self._in_unit("ignore_incoming_transaction", work)

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def _reverse(
        self,
        sale_id: UUID,
        kind: ReversalKind,
        amount_cents: int,
        reason: str | None,
    ) -> ReversalOutcome:
        def work(session: Session) -> ReversalResult:
            sale = session.get(Sale, sale_id)
            if sale is None:
                raise SaleNotFoundError(str(sale_id))
            liability = resolve_fee_schedule(self._config, sale.tenant_id).reversal
            liable = (
                liability.refund_roles
                if kind == ReversalKind.REFUND
                else liability.chargeback_roles
            )
            return ReversalService(session, self._clock).reverse_sale(
                sale_id, kind, amount_cents, liable, reason,
            )

        with LogContext.bind(sale_id=str(sale_id)):
            try:
                result = self._in_unit(f"on_{kind.value}", work)
            except DuplicateProcessingError as exc:
                logger.info("reversal_duplicate_ignored", extra={"reason": exc.reason})
                return ReversalOutcome(sale_id=sale_id, kind=kind, duplicate=True)
            return ReversalOutcome(sale_id=sale_id, kind=kind, duplicate=False, result=result)

    def on_refund(
        self, sale_id: UUID, amount_cents: int, reason: str | None = None,
    ) -> ReversalOutcome:
        return self._reverse(sale_id, ReversalKind.REFUND, amount_cents, reason)

    def on_chargeback(
        self, sale_id: UUID, amount_cents: int, reason: str | None = None,
    ) -> ReversalOutcome:
        return self._reverse(sale_id, ReversalKind.CHARGEBACK, amount_cents, reason)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def clear_review(self, sale_id: UUID, actor_id: str | None = None) -> None:
        """Reset the financial review flag after operator intervention."""

        def work(session: Session) -> None:
            sale = load_sale_for_update(session, sale_id)
            if not sale.needs_review:
                raise InvalidSaleStateError(str(sale_id), sale.status.value, "clear review of")
            sale.review_status = None
            sale.review_reason = None
            session.flush()

        with LogContext.bind(sale_id=str(sale_id), actor_id=actor_id):
            self._in_unit("clear_review", work)
            logger.info("review_cleared")

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def run_release_sweep(self, now: datetime | None = None) -> SweepResult:
        sweep = EscrowReleaseSweep(
            self._session_factory,
            clock=self._clock,
            batch_size=self._config.release_sweep.batch_size,
        )
        return sweep.run(now)

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def account_balance(self, account_id: UUID) -> AccountBalanceDTO:
        with self._read() as session:
            return AccountSelector(session).balance(account_id)

    def find_account(
        self, role: StakeholderRole, owner_ref: str, tenant_id: str,
    ) -> AccountBalanceDTO | None:
        with self._read() as session:
            return AccountSelector(session).find(role, owner_ref, tenant_id)

    def check_account(self, account_id: UUID) -> AccountInvariantReport:
        with self._read() as session:
            return AccountSelector(session).check_invariants(account_id)

    def split_breakdown(self, sale_id: UUID) -> SplitBreakdown:
        with self._read() as session:
            return SplitSelector(session).breakdown(sale_id)

    def account_statement(self, account_id: UUID) -> list[StatementLine]:
        with self._read() as session:
            return SplitSelector(session).statement(account_id)

    def incoming_transaction(self, incoming_id: UUID) -> IncomingTransactionView:
        with self._read() as session:
            return IncomingSelector(session).get(incoming_id)
