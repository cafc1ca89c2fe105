"""
ReversalService -- unwinds a sale's posted split on refund or chargeback.

Responsibility:
    For every live credit of the sale whose role is liable for the reversal
    kind, write a mirror ``reversal`` line of equal and opposite amounts,
    mark the original ``reversed`` and debit the balance that held the
    funds.  The sale records the reversal kind (as its status), the
    reported amount and the time.

Architecture position:
    Kernel > Services.  Consumes VirtualAccountService for the debits.

Invariants enforced:
    - Posted amounts are never edited; reversal is a new line linked by
      ``reversal_of_id`` (unique, so one reversal per original).
    - The debit hits pending or available according to the original's
      status at reversal time.
    - Balances may go negative; affected accounts are reported, never
      clamped.
    - The unwind is always complete for liable roles.  The reported amount
      is validated and recorded, not pro-rated.

Failure modes:
    - SaleNotFoundError, InvalidSaleStateError.
    - DuplicateProcessingError when the sale was already reversed.
    - InvalidReversalAmountError for amount <= 0 or above the sale total.
    - NothingToReverseError when no live credit exists.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from escrow_kernel.domain.clock import Clock
from escrow_kernel.domain.roles import StakeholderRole, role_rank
from escrow_kernel.exceptions import (
    DuplicateProcessingError,
    InvalidReversalAmountError,
    InvalidSaleStateError,
    NothingToReverseError,
)
from escrow_kernel.logging_config import get_logger
from escrow_kernel.models.sale import SaleStatus
from escrow_kernel.models.virtual_account import VirtualAccount
from escrow_kernel.models.virtual_transaction import (
    ReversalKind,
    TransactionStatus,
    TransactionType,
    VirtualTransaction,
)
from escrow_kernel.services.account_service import VirtualAccountService, check_transition
from escrow_kernel.services.base import BaseService
from escrow_kernel.services.split_service import load_sale_for_update

logger = get_logger("services.reversal")

_SALE_STATUS_FOR_KIND = {
    ReversalKind.REFUND: SaleStatus.REFUNDED,
    ReversalKind.CHARGEBACK: SaleStatus.CHARGED_BACK,
}


@dataclass(frozen=True)
class NegativeBalance:
    account_id: UUID
    role: StakeholderRole
    owner_ref: str
    pending_balance_cents: int
    available_balance_cents: int


@dataclass(frozen=True)
class ReversalResult:
    sale_id: UUID
    kind: ReversalKind
    amount_cents: int
    reversed_transaction_ids: tuple[UUID, ...]
    reversal_transaction_ids: tuple[UUID, ...]
    retained_transaction_ids: tuple[UUID, ...]
    reversed_net_cents: int
    negative_balances: tuple[NegativeBalance, ...]


class ReversalService(BaseService[VirtualTransaction]):
    """Refund and chargeback unwinding."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        accounts: VirtualAccountService | None = None,
    ):
        super().__init__(session, clock)
        self.accounts = accounts or VirtualAccountService(session, self.clock)

    def reverse_sale(
        self,
        sale_id: UUID,
        kind: ReversalKind,
        amount_cents: int,
        liable_roles: frozenset[StakeholderRole],
        reason: str | None = None,
    ) -> ReversalResult:
        """
        Reverse the sale's live credits for the liable roles.

        Postconditions:
            - Each reversed credit has status ``reversed`` and exactly one
              mirror line with negated amounts.
            - Sale status is ``refunded`` or ``charged_back``.
        """
        sale = load_sale_for_update(self.session, sale_id)
        if sale.is_reversed:
            raise DuplicateProcessingError(str(sale_id), "already_reversed")
        if sale.status != SaleStatus.PAYMENT_CONFIRMED:
            raise InvalidSaleStateError(str(sale_id), sale.status.value, kind.value)
        if amount_cents <= 0 or amount_cents > sale.gross_total_cents + sale.absorbed_interest_cents:
            raise InvalidReversalAmountError(
                str(sale_id), amount_cents, sale.gross_total_cents,
            )

        credits = self.session.execute(
            select(VirtualTransaction)
            .where(
                VirtualTransaction.sale_id == sale.id,
                VirtualTransaction.transaction_type == TransactionType.CREDIT,
                VirtualTransaction.status != TransactionStatus.REVERSED,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        if not credits:
            raise NothingToReverseError(str(sale_id))

        credits = sorted(credits, key=lambda t: (role_rank(t.role), str(t.account_id)))
        now = self.clock.now()
        description = reason or kind.value

        reversed_ids: list[UUID] = []
        reversal_ids: list[UUID] = []
        retained_ids: list[UUID] = []
        touched: dict[UUID, VirtualAccount] = {}
        reversed_net = 0

        try:
            for original in credits:
                if original.role not in liable_roles:
                    retained_ids.append(original.id)
                    continue

                check_transition(original, TransactionStatus.REVERSED)
                held_in = original.status
                account = self.accounts.lock_account(original.account_id)

                mirror = VirtualTransaction(
                    account_id=original.account_id,
                    sale_id=original.sale_id,
                    transaction_type=TransactionType.REVERSAL,
                    role=original.role,
                    gross_cents=-original.gross_cents,
                    fee_cents=-original.fee_cents,
                    net_cents=-original.net_cents,
                    percentage=original.percentage,
                    status=TransactionStatus.REVERSED,
                    release_at=original.release_at,
                    reversed_at=now,
                    reversal_of_id=original.id,
                    reversal_kind=kind,
                    description=description,
                )
                self.session.add(mirror)

                original.status = TransactionStatus.REVERSED
                original.reversed_at = now
                original.reversal_kind = kind
                self.accounts.debit_for_reversal(account, original.net_cents, held_in)

                reversed_ids.append(original.id)
                reversed_net += original.net_cents
                reversal_ids.append(mirror.id)
                touched[account.id] = account
        except IntegrityError as exc:
            raise DuplicateProcessingError(str(sale_id), "reversal_exists") from exc

        sale.status = _SALE_STATUS_FOR_KIND[kind]
        sale.reversal_amount_cents = amount_cents
        sale.reversed_at = now
        self.session.flush()

        negatives = tuple(
            NegativeBalance(
                account_id=a.id,
                role=a.role,
                owner_ref=a.owner_ref,
                pending_balance_cents=a.pending_balance_cents,
                available_balance_cents=a.available_balance_cents,
            )
            for a in touched.values()
            if a.is_negative
        )
        for neg in negatives:
            logger.warning(
                "reversal_negative_balance",
                extra={
                    "sale_id": str(sale_id),
                    "account_id": str(neg.account_id),
                    "role": neg.role.value,
                    "pending_balance_cents": neg.pending_balance_cents,
                    "available_balance_cents": neg.available_balance_cents,
                },
            )

        logger.info(
            "sale_reversed",
            extra={
                "sale_id": str(sale_id),
                "kind": kind.value,
                "amount_cents": amount_cents,
                "reversed_count": len(reversed_ids),
                "retained_count": len(retained_ids),
            },
        )
        return ReversalResult(
            sale_id=sale.id,
            kind=kind,
            amount_cents=amount_cents,
            reversed_transaction_ids=tuple(reversed_ids),
            reversal_transaction_ids=tuple(reversal_ids),
            retained_transaction_ids=tuple(retained_ids),
            reversed_net_cents=reversed_net,
            negative_balances=negatives,
        )
