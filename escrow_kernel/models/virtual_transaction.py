"""
Module: escrow_kernel.models.virtual_transaction
Responsibility: ORM persistence for immutable escrow ledger lines.
Architecture position: Kernel > Models.  May import from db/ and domain/roles.

Invariants enforced:
    - One line per (sale, account, transaction_type): the split idempotency
      key is enforced here, not only in application code.
    - At most one reversal per original line (unique ``reversal_of_id``).
    - ``release_at`` is fixed at creation.
    - Status only moves pending -> available, or pending/available ->
      reversed.  See ``ALLOWED_TRANSITIONS``.
    - Amount columns are never updated after insert.

Failure modes:
    - IntegrityError on a second credit for the same (sale, account); the
      split service maps this to DuplicateProcessingError.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from escrow_kernel.db.base import TrackedBase, UUIDString
from escrow_kernel.db.types import enum_type
from escrow_kernel.domain.roles import StakeholderRole
from escrow_kernel.models.virtual_account import VirtualAccount


class TransactionType(str, Enum):
    CREDIT = "credit"
    REVERSAL = "reversal"


class TransactionStatus(str, Enum):
    PENDING = "pending"  # Held in escrow until release_at
    AVAILABLE = "available"  # Withdrawable
    REVERSED = "reversed"  # Unwound by refund/chargeback


ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.AVAILABLE,
        TransactionStatus.REVERSED,
    }),
    TransactionStatus.AVAILABLE: frozenset({TransactionStatus.REVERSED}),
    TransactionStatus.REVERSED: frozenset(),
}


class ReversalKind(str, Enum):
    REFUND = "refund"
    CHARGEBACK = "chargeback"


class VirtualTransaction(TrackedBase):
    """
    One stakeholder's share of one sale, or the reversal of such a share.

    Credit lines carry positive amounts.  Reversal lines mirror their
    original with negated amounts, are born ``reversed`` and point back
    through ``reversal_of_id``.
    """

    __tablename__ = "virtual_transactions"

    __table_args__ = (
        UniqueConstraint(
            "sale_id", "account_id", "transaction_type",
            name="uq_vtx_sale_account_type",
        ),
        UniqueConstraint("reversal_of_id", name="uq_vtx_reversal_of"),
        Index("idx_vtx_release", "status", "release_at"),
        Index("idx_vtx_account", "account_id"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("virtual_accounts.id"),
        nullable=False,
    )
    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales.id"),
        nullable=False,
        index=True,
    )

    transaction_type: Mapped[TransactionType] = mapped_column(
        enum_type(TransactionType, 20),
        nullable=False,
    )
    role: Mapped[StakeholderRole] = mapped_column(
        enum_type(StakeholderRole, 20),
        nullable=False,
    )

    gross_cents: Mapped[int] = mapped_column(nullable=False)
    fee_cents: Mapped[int] = mapped_column(default=0, nullable=False)
    net_cents: Mapped[int] = mapped_column(nullable=False)
    percentage: Mapped[Decimal | None] = mapped_column(Numeric(9, 4), nullable=True)

    status: Mapped[TransactionStatus] = mapped_column(
        enum_type(TransactionStatus, 20),
        default=TransactionStatus.PENDING,
        nullable=False,
    )

    release_at: Mapped[datetime] = mapped_column(nullable=False)
    released_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reversed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("virtual_transactions.id"),
        nullable=True,
    )
    reversal_kind: Mapped[ReversalKind | None] = mapped_column(
        enum_type(ReversalKind, 20),
        nullable=True,
    )
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    account: Mapped[VirtualAccount] = relationship()

    def __repr__(self) -> str:
        return (
            f"<VirtualTransaction {self.transaction_type.value} {self.role.value} "
            f"net={self.net_cents} {self.status.value}>"
        )

    @property
    def is_credit(self) -> bool:
        return self.transaction_type == TransactionType.CREDIT

    @property
    def is_reversal(self) -> bool:
        return self.transaction_type == TransactionType.REVERSAL

    def can_transition_to(self, target: TransactionStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]
