"""
SplitService -- persists the split of one confirmed sale.

Responsibility:
    Load a confirmed sale and its pre-existing attributions, run the pure
    ``SplitEngine`` against an explicit ``FeeSchedule``, and write one
    pending credit per non-zero allocation together with the matching
    ``credit_pending`` balance movement.

Architecture position:
    Kernel > Services.  Called by the orchestrator inside one unit of
    work: either every credit of the sale is committed or none is.

Invariants enforced:
    - Idempotency: the fast path aborts when the sale already carries a
      split marker or a live tenant credit; the unique
      (sale_id, account_id, transaction_type) constraint is the real guard.
      Its violation surfaces as DuplicateProcessingError only when credits
      written by another unit are found once the savepoint is rolled back;
      any other IntegrityError propagates.
    - Only ``payment_confirmed`` sales are split.
    - A negative tenant net or an attribution for a role the engine
      computes itself flags the sale for financial review (flushed, so the
      caller can commit the flag) and re-raises.

Failure modes:
    - SaleNotFoundError, SaleNotConfirmedError.
    - DuplicateProcessingError (no-op signal).
    - NegativeNetAllocationError, InvalidPriorAllocationError (manual
      review; never retried).
    - AccountRaceConflictError (transient; retry the whole unit).
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from escrow_engines.split import SplitEngine
from escrow_kernel.domain.clock import Clock
from escrow_kernel.domain.dtos import PriorAllocation, SaleItemLine, SaleSnapshot, SplitPlan
from escrow_kernel.domain.fee_schedule import FeeSchedule
from escrow_kernel.domain.roles import StakeholderRole
from escrow_kernel.exceptions import (
    DuplicateProcessingError,
    InvalidPriorAllocationError,
    NegativeNetAllocationError,
    SaleNotConfirmedError,
    SaleNotFoundError,
)
from escrow_kernel.logging_config import get_logger
from escrow_kernel.models.sale import ReviewStatus, Sale, SaleStatus
from escrow_kernel.models.virtual_transaction import (
    TransactionStatus,
    TransactionType,
    VirtualTransaction,
)
from escrow_kernel.services.account_service import VirtualAccountService
from escrow_kernel.services.base import BaseService

logger = get_logger("services.split")


@dataclass(frozen=True)
class SplitResult:
    sale_id: UUID
    plan: SplitPlan
    transaction_ids: tuple[UUID, ...]


def load_sale_for_update(session: Session, sale_id: UUID) -> Sale:
    """Lock and return the sale row, or raise SaleNotFoundError."""
    sale = session.execute(
        select(Sale)
        .where(Sale.id == sale_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if sale is None:
        raise SaleNotFoundError(str(sale_id))
    return sale


class SplitService(BaseService[VirtualTransaction]):
    """Split computation and persistence for confirmed sales."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        accounts: VirtualAccountService | None = None,
        engine: SplitEngine | None = None,
    ):
        super().__init__(session, clock)
        self.accounts = accounts or VirtualAccountService(session, self.clock)
        self.engine = engine or SplitEngine()

    def has_live_tenant_credit(self, sale_id: UUID) -> bool:
        found = self.session.execute(
            select(VirtualTransaction.id).where(
                VirtualTransaction.sale_id == sale_id,
                VirtualTransaction.role == StakeholderRole.TENANT,
                VirtualTransaction.transaction_type == TransactionType.CREDIT,
                VirtualTransaction.status != TransactionStatus.REVERSED,
            ).limit(1)
        ).first()
        return found is not None

    def has_credits(self, sale_id: UUID) -> bool:
        """Whether any credit line, live or reversed, exists for the sale."""
        found = self.session.execute(
            select(VirtualTransaction.id).where(
                VirtualTransaction.sale_id == sale_id,
                VirtualTransaction.transaction_type == TransactionType.CREDIT,
            ).limit(1)
        ).first()
        return found is not None

    def snapshot(self, sale: Sale) -> SaleSnapshot:
        return SaleSnapshot(
            sale_id=str(sale.id),
            tenant_id=sale.tenant_id,
            gross_total_cents=sale.gross_total_cents,
            currency=sale.currency,
            payment_confirmed_at=sale.payment_confirmed_at,
            interest_cents=sale.interest_cents,
            interest_bearer=sale.interest_bearer,
            installments=sale.installments,
            gateway_fee_cents=sale.gateway_fee_cents,
            items=tuple(
                SaleItemLine(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    total_cents=item.total_cents,
                )
                for item in sale.items
            ),
        )

    @staticmethod
    def prior_allocations(sale: Sale) -> tuple[PriorAllocation, ...]:
        return tuple(
            PriorAllocation(
                role=a.role,
                owner_ref=a.owner_ref,
                amount_cents=a.amount_cents,
                percentage=a.percentage,
            )
            for a in sale.attributions
        )

    def _flag_for_review(self, sale: Sale, reason: str, **details) -> None:
        sale.review_status = ReviewStatus.FINANCIAL_REVIEW
        sale.review_reason = reason
        self.session.flush()
        logger.error(
            "split_flagged_for_review",
            extra={"sale_id": str(sale.id), "review_reason": reason, **details},
        )

    def process_sale(self, sale_id: UUID, schedule: FeeSchedule) -> SplitResult:
        """
        Split a confirmed sale into pending stakeholder credits.

        Preconditions:
            - The sale is ``payment_confirmed`` and has not been split.
            - ``schedule`` was resolved for the sale's tenant.

        Postconditions:
            - One pending credit per non-zero allocation, each with its own
              ``release_at``; the matching accounts are credited to pending.
            - ``sale.split_computed_at`` is set.

        Raises:
            SaleNotFoundError, SaleNotConfirmedError,
            DuplicateProcessingError, NegativeNetAllocationError,
            InvalidPriorAllocationError, AccountRaceConflictError.
        """
        sale = load_sale_for_update(self.session, sale_id)

        if sale.split_computed_at is not None:
            raise DuplicateProcessingError(str(sale_id), "split_marker_present")
        if self.has_live_tenant_credit(sale.id):
            raise DuplicateProcessingError(str(sale_id), "tenant_credit_present")
        if sale.status != SaleStatus.PAYMENT_CONFIRMED:
            raise SaleNotConfirmedError(str(sale_id), sale.status.value)

        try:
            plan = self.engine.compute(
                sale=self.snapshot(sale),
                schedule=schedule,
                prior_allocations=self.prior_allocations(sale),
            )
        except NegativeNetAllocationError as exc:
            self._flag_for_review(
                sale,
                f"negative tenant net {exc.tenant_net_cents}: "
                f"base {exc.base_cents}, deductions {exc.deductions_cents}",
                tenant_net_cents=exc.tenant_net_cents,
                deductions_cents=exc.deductions_cents,
            )
            raise
        except InvalidPriorAllocationError as exc:
            self._flag_for_review(
                sale,
                f"attribution for non-attributable role {exc.role}:{exc.owner_ref}",
                role=exc.role,
                owner_ref=exc.owner_ref,
            )
            raise

        transaction_ids: list[UUID] = []
        try:
            with self.session.begin_nested():
                for allocation in plan.allocations:
                    account = self.accounts.get_or_create_account(
                        allocation.role, allocation.owner_ref, sale.tenant_id,
                    )
                    account = self.accounts.lock_account(account.id)
                    tx = VirtualTransaction(
                        account_id=account.id,
                        sale_id=sale.id,
                        transaction_type=TransactionType.CREDIT,
                        role=allocation.role,
                        gross_cents=allocation.gross_cents,
                        fee_cents=allocation.fee_cents,
                        net_cents=allocation.net_cents,
                        percentage=allocation.percentage,
                        status=TransactionStatus.PENDING,
                        release_at=allocation.release_at,
                        description=f"{allocation.role.value} share",
                    )
                    self.session.add(tx)
                    self.accounts.credit_pending(account, allocation.net_cents)
                    transaction_ids.append(tx.id)
        except IntegrityError as exc:
            if not self.has_credits(sale.id):
                logger.error(
                    "split_insert_rejected",
                    extra={"sale_id": str(sale_id), "error": str(exc.orig)},
                )
                raise
            logger.info(
                "split_duplicate_rejected_by_constraint",
                extra={"sale_id": str(sale_id)},
            )
            raise DuplicateProcessingError(str(sale_id), "unique_constraint") from exc

        sale.split_computed_at = self.clock.now()
        self.session.flush()

        logger.info(
            "split_completed",
            extra={
                "sale_id": str(sale_id),
                "tenant_id": sale.tenant_id,
                "base_cents": plan.base_cents,
                "platform_fee_cents": plan.platform_fee_cents,
                "gateway_fee_cents": plan.gateway_fee_cents,
                "tenant_net_cents": plan.tenant_net_cents,
                "transaction_count": len(transaction_ids),
            },
        )
        return SplitResult(
            sale_id=sale.id,
            plan=plan,
            transaction_ids=tuple(transaction_ids),
        )
