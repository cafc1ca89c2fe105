"""
Module: escrow_kernel.models.sale
Responsibility: ORM persistence for the subset of a commerce Sale that the
    ledger needs, its product lines, and shares attributed before payment
    confirmation.
Architecture position: Kernel > Models.  May import from db/ and domain/roles.

Invariants enforced:
    - A sale moves to PAYMENT_CONFIRMED exactly once; that transition is
      the split trigger.
    - Once confirmed, only reversal markers (status, reversal_*), the
      split marker and the review flag change.
    - One attribution per (sale, role, owner_ref).

Failure modes:
    - IntegrityError on a duplicate attribution.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from escrow_kernel.db.base import TrackedBase, UUIDString
from escrow_kernel.db.types import enum_type
from escrow_kernel.domain.roles import InterestBearer, StakeholderRole


class SaleStatus(str, Enum):
    """Payment lifecycle of a sale as seen by the ledger."""

    DRAFT = "draft"
    PENDING = "pending"  # Awaiting payment
    PAYMENT_CONFIRMED = "payment_confirmed"  # Split trigger
    REFUNDED = "refunded"
    CHARGED_BACK = "charged_back"


OPEN_SALE_STATUSES: frozenset[SaleStatus] = frozenset({
    SaleStatus.DRAFT,
    SaleStatus.PENDING,
})


class ConfirmationSource(str, Enum):
    """How the payment confirmation reached the ledger."""

    GATEWAY = "gateway"  # Webhook from a payment gateway
    RECONCILIATION = "reconciliation"  # Matched incoming transaction


class ReviewStatus(str, Enum):
    """Manual financial review flag."""

    FINANCIAL_REVIEW = "financial_review"


class Sale(TrackedBase):
    """
    A purchase whose payment is split among stakeholders.

    ``gross_total_cents`` includes installment interest when
    ``interest_cents`` is non-zero.  When the seller absorbs interest and
    the sale is confirmed through reconciliation, the total is rewritten to
    the interest-free base and the absorbed part kept in
    ``absorbed_interest_cents``.
    """

    __tablename__ = "sales"

    __table_args__ = (
        Index("idx_sale_tenant_status", "tenant_id", "status"),
        Index("idx_sale_amount_open", "gross_total_cents", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[SaleStatus] = mapped_column(
        enum_type(SaleStatus, 20),
        default=SaleStatus.PENDING,
        nullable=False,
    )

    gross_total_cents: Mapped[int] = mapped_column(nullable=False)
    interest_cents: Mapped[int] = mapped_column(default=0, nullable=False)
    absorbed_interest_cents: Mapped[int] = mapped_column(default=0, nullable=False)
    # Withheld by the payment gateway; deducted from the tenant share
    gateway_fee_cents: Mapped[int] = mapped_column(default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    installments: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    interest_bearer: Mapped[InterestBearer] = mapped_column(
        enum_type(InterestBearer, 10),
        default=InterestBearer.BUYER,
        nullable=False,
    )

    # Payer identity, used by the reconciliation heuristics
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_document: Mapped[str | None] = mapped_column(String(50), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    payment_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmation_source: Mapped[ConfirmationSource | None] = mapped_column(
        enum_type(ConfirmationSource, 20),
        nullable=True,
    )

    # Set in the same unit that writes the split transactions
    split_computed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    review_status: Mapped[ReviewStatus | None] = mapped_column(
        enum_type(ReviewStatus, 30),
        nullable=True,
    )
    review_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Reversal markers
    reversal_amount_cents: Mapped[int | None] = mapped_column(nullable=True)
    reversed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    items: Mapped[list["SaleItem"]] = relationship(
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.product_id",
    )
    attributions: Mapped[list["SplitAttribution"]] = relationship(
        back_populates="sale",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Sale {self.id} {self.status.value} {self.gross_total_cents}>"

    @property
    def amount_due_cents(self) -> int:
        """Amount an incoming payment must carry to match this sale."""
        return self.gross_total_cents

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_SALE_STATUSES

    @property
    def is_confirmed(self) -> bool:
        return self.status == SaleStatus.PAYMENT_CONFIRMED

    @property
    def is_reversed(self) -> bool:
        return self.status in (SaleStatus.REFUNDED, SaleStatus.CHARGED_BACK)

    @property
    def needs_review(self) -> bool:
        return self.review_status is not None


class SaleItem(TrackedBase):
    """One product line of a sale; drives supplier share formulas."""

    __tablename__ = "sale_items"

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales.id"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_cents: Mapped[int] = mapped_column(nullable=False)

    sale: Mapped[Sale] = relationship(back_populates="items")


class SplitAttribution(TrackedBase):
    """
    A stakeholder share fixed before payment confirmation.

    Typically written at checkout for an affiliate.  The split engine reads
    ``amount_cents`` as-is; it never recomputes it.
    """

    __tablename__ = "split_attributions"

    __table_args__ = (
        UniqueConstraint("sale_id", "role", "owner_ref", name="uq_attribution_sale_role_owner"),
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales.id"),
        nullable=False,
        index=True,
    )
    role: Mapped[StakeholderRole] = mapped_column(
        enum_type(StakeholderRole, 20),
        nullable=False,
    )
    owner_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(nullable=False)
    percentage: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)

    sale: Mapped[Sale] = relationship(back_populates="attributions")
