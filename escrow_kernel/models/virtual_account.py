"""
Module: escrow_kernel.models.virtual_account
Responsibility: ORM persistence for per-stakeholder escrow balances.
Architecture position: Kernel > Models.  May import from db/ and domain/roles.

Invariants enforced:
    - Zero-or-one account per (role, owner_ref, tenant_id).  The platform
      account is global: owner_ref "platform", tenant_id "*".
    - Balances change only through VirtualAccountService, under a row lock,
      and bump the optimistic ``version`` counter.
    - ``lifetime_received_cents`` only grows.  Reversals accumulate in
      ``reversed_total_cents`` so that
      ``lifetime_received - reversed_total`` equals the sum of live credits.
    - Accounts are never deleted.

Failure modes:
    - IntegrityError on a duplicate (role, owner_ref, tenant_id); the
      service reads back the winner.
    - StaleDataError on a version mismatch; surfaced as
      AccountRaceConflictError.
"""

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from escrow_kernel.db.base import TrackedBase
from escrow_kernel.db.types import enum_type
from escrow_kernel.domain.roles import StakeholderRole


class VirtualAccount(TrackedBase):
    """
    Escrow balance holder for one stakeholder.

    Balances may go negative after a reversal; they are reported, never
    clamped.
    """

    __tablename__ = "virtual_accounts"

    __table_args__ = (
        UniqueConstraint("role", "owner_ref", "tenant_id", name="uq_account_role_owner_tenant"),
        Index("idx_account_tenant", "tenant_id"),
    )

    role: Mapped[StakeholderRole] = mapped_column(
        enum_type(StakeholderRole, 20),
        nullable=False,
    )
    owner_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)

    pending_balance_cents: Mapped[int] = mapped_column(default=0, nullable=False)
    available_balance_cents: Mapped[int] = mapped_column(default=0, nullable=False)
    lifetime_received_cents: Mapped[int] = mapped_column(default=0, nullable=False)
    reversed_total_cents: Mapped[int] = mapped_column(default=0, nullable=False)

    version: Mapped[int] = mapped_column(default=0, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<VirtualAccount {self.role.value}:{self.owner_ref}@{self.tenant_id} "
            f"pending={self.pending_balance_cents} available={self.available_balance_cents}>"
        )

    @property
    def total_balance_cents(self) -> int:
        return self.pending_balance_cents + self.available_balance_cents

    @property
    def is_negative(self) -> bool:
        return self.pending_balance_cents < 0 or self.available_balance_cents < 0
