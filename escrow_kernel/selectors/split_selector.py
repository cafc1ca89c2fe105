"""
Module: escrow_kernel.selectors.split_selector
Responsibility: Per-sale split breakdown and per-account statements.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from escrow_kernel.domain.roles import StakeholderRole, role_rank
from escrow_kernel.exceptions import AccountNotFoundError, SaleNotFoundError
from escrow_kernel.models.sale import Sale
from escrow_kernel.models.virtual_account import VirtualAccount
from escrow_kernel.models.virtual_transaction import (
    ReversalKind,
    TransactionStatus,
    TransactionType,
    VirtualTransaction,
)
from escrow_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class BreakdownLine:
    transaction_id: UUID
    account_id: UUID
    role: StakeholderRole
    owner_ref: str
    gross_cents: int
    fee_cents: int
    net_cents: int
    percentage: Decimal | None
    status: TransactionStatus
    release_at: datetime


@dataclass(frozen=True)
class SplitBreakdown:
    """Credit lines of one sale, platform first and tenant last."""

    sale_id: UUID
    gross_total_cents: int
    lines: tuple[BreakdownLine, ...]
    gateway_fee_cents: int = 0

    @property
    def total_net_cents(self) -> int:
        return sum(line.net_cents for line in self.lines)

    def line_for(self, role: StakeholderRole) -> BreakdownLine | None:
        for line in self.lines:
            if line.role == role:
                return line
        return None


@dataclass(frozen=True)
class StatementLine:
    transaction_id: UUID
    sale_id: UUID
    transaction_type: TransactionType
    role: StakeholderRole
    gross_cents: int
    fee_cents: int
    net_cents: int
    status: TransactionStatus
    release_at: datetime
    released_at: datetime | None
    reversed_at: datetime | None
    reversal_kind: ReversalKind | None
    reversal_of_id: UUID | None


def _statement_line(tx: VirtualTransaction) -> StatementLine:
    return StatementLine(
        transaction_id=tx.id,
        sale_id=tx.sale_id,
        transaction_type=tx.transaction_type,
        role=tx.role,
        gross_cents=tx.gross_cents,
        fee_cents=tx.fee_cents,
        net_cents=tx.net_cents,
        status=tx.status,
        release_at=tx.release_at,
        released_at=tx.released_at,
        reversed_at=tx.reversed_at,
        reversal_kind=tx.reversal_kind,
        reversal_of_id=tx.reversal_of_id,
    )


class SplitSelector(BaseSelector[VirtualTransaction]):
    """Read path for split results."""

    def breakdown(self, sale_id: UUID) -> SplitBreakdown:
        sale = self.session.get(Sale, sale_id)
        if sale is None:
            raise SaleNotFoundError(str(sale_id))

        rows = self.session.execute(
            select(VirtualTransaction, VirtualAccount.owner_ref)
            .join(VirtualAccount, VirtualAccount.id == VirtualTransaction.account_id)
            .where(
                VirtualTransaction.sale_id == sale_id,
                VirtualTransaction.transaction_type == TransactionType.CREDIT,
            )
        ).all()

        lines = [
            BreakdownLine(
                transaction_id=tx.id,
                account_id=tx.account_id,
                role=tx.role,
                owner_ref=owner_ref,
                gross_cents=tx.gross_cents,
                fee_cents=tx.fee_cents,
                net_cents=tx.net_cents,
                percentage=tx.percentage,
                status=tx.status,
                release_at=tx.release_at,
            )
            for tx, owner_ref in rows
        ]
        lines.sort(key=lambda line: (role_rank(line.role), line.owner_ref))
        return SplitBreakdown(
            sale_id=sale.id,
            gross_total_cents=sale.gross_total_cents,
            lines=tuple(lines),
            gateway_fee_cents=sale.gateway_fee_cents,
        )

    def statement(self, account_id: UUID) -> list[StatementLine]:
        """Every line posted to the account, oldest release first."""
        if self.session.get(VirtualAccount, account_id) is None:
            raise AccountNotFoundError(str(account_id))

        txs = self.session.execute(
            select(VirtualTransaction)
            .where(VirtualTransaction.account_id == account_id)
            .order_by(
                VirtualTransaction.release_at,
                VirtualTransaction.sale_id,
                VirtualTransaction.transaction_type,
            )
        ).scalars().all()
        return [_statement_line(tx) for tx in txs]

    def transactions_for_sale(self, sale_id: UUID) -> list[StatementLine]:
        txs = self.session.execute(
            select(VirtualTransaction)
            .where(VirtualTransaction.sale_id == sale_id)
            .order_by(VirtualTransaction.transaction_type, VirtualTransaction.role)
        ).scalars().all()
        return [_statement_line(tx) for tx in txs]
