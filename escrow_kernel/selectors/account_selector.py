"""
Module: escrow_kernel.selectors.account_selector
Responsibility: Account balance snapshots and a drift check that recomputes
    balances from the transaction lines.
Architecture position: Kernel > Selectors.

Invariants checked by ``check_invariants``:
    - pending   == sum of net of credits still pending
    - available == sum of net of credits released and not reversed
    - lifetime_received == sum of net of every credit ever posted
    - reversed_total    == sum of net of reversed credits
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import case, func, select

from escrow_kernel.domain.roles import StakeholderRole, account_scope
from escrow_kernel.exceptions import AccountNotFoundError
from escrow_kernel.models.virtual_account import VirtualAccount
from escrow_kernel.models.virtual_transaction import (
    TransactionStatus,
    TransactionType,
    VirtualTransaction,
)
from escrow_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AccountBalanceDTO:
    """Balance snapshot for one stakeholder account."""

    account_id: UUID
    role: StakeholderRole
    owner_ref: str
    tenant_id: str
    pending_cents: int
    available_cents: int
    lifetime_received_cents: int
    reversed_total_cents: int

    @property
    def total_cents(self) -> int:
        return self.pending_cents + self.available_cents


@dataclass(frozen=True)
class AccountInvariantReport:
    account_id: UUID
    stored: AccountBalanceDTO
    expected_pending_cents: int
    expected_available_cents: int
    expected_lifetime_received_cents: int
    expected_reversed_total_cents: int

    @property
    def drift(self) -> dict[str, int]:
        """Non-zero differences, stored minus expected."""
        diffs = {
            "pending_cents": self.stored.pending_cents - self.expected_pending_cents,
            "available_cents": self.stored.available_cents - self.expected_available_cents,
            "lifetime_received_cents": (
                self.stored.lifetime_received_cents - self.expected_lifetime_received_cents
            ),
            "reversed_total_cents": (
                self.stored.reversed_total_cents - self.expected_reversed_total_cents
            ),
        }
        return {k: v for k, v in diffs.items() if v}

    @property
    def is_consistent(self) -> bool:
        return not self.drift


def _to_dto(account: VirtualAccount) -> AccountBalanceDTO:
    return AccountBalanceDTO(
        account_id=account.id,
        role=account.role,
        owner_ref=account.owner_ref,
        tenant_id=account.tenant_id,
        pending_cents=account.pending_balance_cents,
        available_cents=account.available_balance_cents,
        lifetime_received_cents=account.lifetime_received_cents,
        reversed_total_cents=account.reversed_total_cents,
    )


class AccountSelector(BaseSelector[VirtualAccount]):
    """Read path for stakeholder balances."""

    def balance(self, account_id: UUID) -> AccountBalanceDTO:
        account = self.session.get(VirtualAccount, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return _to_dto(account)

    def find(
        self,
        role: StakeholderRole,
        owner_ref: str,
        tenant_id: str,
    ) -> AccountBalanceDTO | None:
        role, owner_ref, tenant_id = account_scope(role, owner_ref, tenant_id)
        account = self.session.execute(
            select(VirtualAccount).where(
                VirtualAccount.role == role,
                VirtualAccount.owner_ref == owner_ref,
                VirtualAccount.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        return _to_dto(account) if account is not None else None

    def list_for_tenant(self, tenant_id: str) -> list[AccountBalanceDTO]:
        accounts = self.session.execute(
            select(VirtualAccount)
            .where(VirtualAccount.tenant_id == tenant_id)
            .order_by(VirtualAccount.role, VirtualAccount.owner_ref)
        ).scalars().all()
        return [_to_dto(a) for a in accounts]

    def negative_balances(self) -> list[AccountBalanceDTO]:
        accounts = self.session.execute(
            select(VirtualAccount).where(
                (VirtualAccount.pending_balance_cents < 0)
                | (VirtualAccount.available_balance_cents < 0)
            )
        ).scalars().all()
        return [_to_dto(a) for a in accounts]

    def check_invariants(self, account_id: UUID) -> AccountInvariantReport:
        stored = self.balance(account_id)

        credit = VirtualTransaction.transaction_type == TransactionType.CREDIT

        def _sum_where(condition):
            return func.coalesce(
                func.sum(case((condition, VirtualTransaction.net_cents), else_=0)), 0,
            )

        row = self.session.execute(
            select(
                _sum_where(credit & (VirtualTransaction.status == TransactionStatus.PENDING)),
                _sum_where(credit & (VirtualTransaction.status == TransactionStatus.AVAILABLE)),
                _sum_where(credit),
                _sum_where(credit & (VirtualTransaction.status == TransactionStatus.REVERSED)),
            ).where(VirtualTransaction.account_id == account_id)
        ).one()

        return AccountInvariantReport(
            account_id=account_id,
            stored=stored,
            expected_pending_cents=int(row[0]),
            expected_available_cents=int(row[1]),
            expected_lifetime_received_cents=int(row[2]),
            expected_reversed_total_cents=int(row[3]),
        )
