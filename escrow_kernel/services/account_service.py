"""
VirtualAccountService -- the only writer of virtual account balances.

Responsibility:
    Find-or-create stakeholder accounts safely under concurrent first use,
    and apply the three balance movements: credit to pending, promote
    pending to available, and debit on reversal.  Each movement is paired
    by the caller with the owning transaction's status change in the same
    flush.

Architecture position:
    Kernel > Services.  Used by SplitService, ReversalService and the
    release sweep.

Invariants enforced:
    - One account per (role, owner_ref, tenant_id); the loser of a creation
      race reads back the winner's row.
    - The platform account is global regardless of the tenant asking.
    - Balance writes happen on a row locked with ``SELECT ... FOR UPDATE``
      and are guarded by the optimistic ``version`` counter.
    - ``lifetime_received_cents`` never decreases.

Failure modes:
    - AccountNotFoundError from ``lock_account`` for an unknown id.
    - AccountRaceConflictError when the version check fails at flush, or
      when a creation race leaves no readable winner.
    - InvalidStatusTransitionError when a transaction status would move
      backwards.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from escrow_kernel.domain.roles import StakeholderRole, account_scope
from escrow_kernel.exceptions import (
    AccountNotFoundError,
    AccountRaceConflictError,
    InvalidStatusTransitionError,
)
from escrow_kernel.logging_config import get_logger
from escrow_kernel.models.virtual_account import VirtualAccount
from escrow_kernel.models.virtual_transaction import (
    TransactionStatus,
    VirtualTransaction,
)
from escrow_kernel.services.base import BaseService

logger = get_logger("services.account")


def check_transition(tx: VirtualTransaction, target: TransactionStatus) -> None:
    if not tx.can_transition_to(target):
        raise InvalidStatusTransitionError(
            str(tx.id), tx.status.value, target.value,
        )


class VirtualAccountService(BaseService[VirtualAccount]):
    """Stakeholder account lookup and balance movements."""

    def _select(self, role: StakeholderRole, owner_ref: str, tenant_id: str):
        return select(VirtualAccount).where(
            VirtualAccount.role == role,
            VirtualAccount.owner_ref == owner_ref,
            VirtualAccount.tenant_id == tenant_id,
        )

    def get_or_create_account(
        self,
        role: StakeholderRole,
        owner_ref: str,
        tenant_id: str,
    ) -> VirtualAccount:
        """
        Return the account for (role, owner_ref, tenant_id), creating it on
        first use.

        The insert runs inside a SAVEPOINT.  If a concurrent writer created
        the same account first, the unique constraint rejects ours, the
        savepoint is rolled back and the winner's row is read back; the
        surrounding unit stays usable.
        """
        role, owner_ref, tenant_id = account_scope(role, owner_ref, tenant_id)

        account = self.session.execute(
            self._select(role, owner_ref, tenant_id)
        ).scalar_one_or_none()
        if account is not None:
            return account

        account = VirtualAccount(
            role=role,
            owner_ref=owner_ref,
            tenant_id=tenant_id,
            pending_balance_cents=0,
            available_balance_cents=0,
            lifetime_received_cents=0,
            reversed_total_cents=0,
        )
        try:
            with self.session.begin_nested():
                self.session.add(account)
                self.session.flush()
        except IntegrityError:
            logger.info(
                "account_create_race_lost",
                extra={"role": role.value, "owner_ref": owner_ref, "tenant_id": tenant_id},
            )
            winner = self.session.execute(
                self._select(role, owner_ref, tenant_id)
            ).scalar_one_or_none()
            if winner is None:
                raise AccountRaceConflictError(
                    f"{role.value}:{owner_ref}@{tenant_id}",
                    "create race lost and winner not visible",
                ) from None
            return winner

        logger.info(
            "account_created",
            extra={
                "account_id": str(account.id),
                "role": role.value,
                "owner_ref": owner_ref,
                "tenant_id": tenant_id,
            },
        )
        return account

    def lock_account(self, account_id: UUID) -> VirtualAccount:
        """Re-read the account under ``FOR UPDATE`` with fresh balances."""
        account = self.session.execute(
            select(VirtualAccount)
            .where(VirtualAccount.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def _flush(self, account: VirtualAccount) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise AccountRaceConflictError(str(account.id), str(exc)) from exc

    def credit_pending(self, account: VirtualAccount, amount_cents: int) -> None:
        """Add a fresh split share to the pending balance."""
        account.pending_balance_cents += amount_cents
        account.lifetime_received_cents += amount_cents
        self._flush(account)

    def promote_to_available(self, account: VirtualAccount, amount_cents: int) -> None:
        """Move a released share from pending to available."""
        account.pending_balance_cents -= amount_cents
        account.available_balance_cents += amount_cents
        self._flush(account)

    def debit_for_reversal(
        self,
        account: VirtualAccount,
        amount_cents: int,
        held_in: TransactionStatus,
    ) -> None:
        """
        Remove a reversed share from whichever balance holds it.

        ``held_in`` is the original transaction's status at reversal time.
        The result may be negative; it is never clamped.
        """
        if held_in == TransactionStatus.PENDING:
            account.pending_balance_cents -= amount_cents
        elif held_in == TransactionStatus.AVAILABLE:
            account.available_balance_cents -= amount_cents
        else:
            raise ValueError(f"Cannot debit a share held in '{held_in.value}'")
        account.reversed_total_cents += amount_cents
        self._flush(account)

    def release_transaction(self, tx: VirtualTransaction, now: datetime) -> VirtualAccount:
        """Promote one pending credit to available, line and balance together."""
        check_transition(tx, TransactionStatus.AVAILABLE)
        account = self.lock_account(tx.account_id)
        tx.status = TransactionStatus.AVAILABLE
        tx.released_at = now
        self.promote_to_available(account, tx.net_cents)
        return account
