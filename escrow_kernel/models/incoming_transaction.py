"""
Module: escrow_kernel.models.incoming_transaction
Responsibility: ORM persistence for payments observed outside the gateway
    (bank statement lines, PIX notifications, manual entries) awaiting
    reconciliation against open sales.
Architecture position: Kernel > Models.  May import from db/.

Invariants enforced:
    - (source_channel, external_reference) is unique, so resubmitting the
      same observation is idempotent.
    - Status moves only pending -> matched or pending -> ignored.
    - ``matched_sale_id`` is set exactly when status is matched.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from escrow_kernel.db.base import TrackedBase, UUIDString
from escrow_kernel.db.types import enum_type


class IncomingStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    IGNORED = "ignored"


class MatchMethod(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class IncomingTransaction(TrackedBase):
    """An externally observed incoming payment."""

    __tablename__ = "incoming_transactions"

    __table_args__ = (
        UniqueConstraint(
            "source_channel", "external_reference",
            name="uq_incoming_channel_reference",
        ),
        Index("idx_incoming_status_amount", "status", "amount_cents"),
    )

    amount_cents: Mapped[int] = mapped_column(nullable=False)
    interest_cents: Mapped[int] = mapped_column(default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    source_channel: Mapped[str] = mapped_column(String(50), nullable=False)
    external_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    payer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payer_document: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    observed_at: Mapped[datetime] = mapped_column(nullable=False)

    status: Mapped[IncomingStatus] = mapped_column(
        enum_type(IncomingStatus, 20),
        default=IncomingStatus.PENDING,
        nullable=False,
    )

    matched_sale_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("sales.id"),
        nullable=True,
    )
    matched_at: Mapped[datetime | None] = mapped_column(nullable=True)
    match_method: Mapped[MatchMethod | None] = mapped_column(
        enum_type(MatchMethod, 20),
        nullable=True,
    )
    matched_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ignore_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<IncomingTransaction {self.id} {self.amount_cents} {self.status.value}>"

    @property
    def is_pending(self) -> bool:
        return self.status == IncomingStatus.PENDING
