"""
Domain DTOs exchanged between services and the pure engines.

All frozen; engines never see ORM rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from escrow_kernel.domain.roles import InterestBearer, StakeholderRole


@dataclass(frozen=True)
class SaleItemLine:
    """One product line of a sale, as seen by supplier share formulas."""

    product_id: str
    quantity: int
    total_cents: int


@dataclass(frozen=True)
class SaleSnapshot:
    """Immutable view of a confirmed sale at split time."""

    sale_id: str
    tenant_id: str
    gross_total_cents: int
    currency: str
    payment_confirmed_at: datetime
    interest_cents: int = 0
    interest_bearer: InterestBearer = InterestBearer.BUYER
    installments: int = 1
    items: tuple[SaleItemLine, ...] = ()
    gateway_fee_cents: int = 0


@dataclass(frozen=True)
class PriorAllocation:
    """A share fixed before confirmation (e.g. affiliate attribution)."""

    role: StakeholderRole
    owner_ref: str
    amount_cents: int
    percentage: Decimal | None = None


@dataclass(frozen=True)
class SplitAllocation:
    """One stakeholder's computed share; becomes one VirtualTransaction."""

    role: StakeholderRole
    owner_ref: str
    gross_cents: int
    fee_cents: int
    net_cents: int
    percentage: Decimal
    release_at: datetime


@dataclass(frozen=True)
class SplitPlan:
    """
    Complete apportionment of one sale.

    ``allocations`` holds only non-zero shares, in breakdown order.
    The gateway fee is withheld by the payment gateway and has no line.
    Conservation: ``sum(a.net_cents) == base_cents - gateway_fee_cents``.
    """

    sale_id: str
    gross_total_cents: int
    base_cents: int
    platform_fee_cents: int
    interest_to_platform_cents: int
    already_allocated_cents: int
    supplier_fees_cents: int
    tenant_net_cents: int
    allocations: tuple[SplitAllocation, ...]
    gateway_fee_cents: int = 0

    @property
    def total_net_cents(self) -> int:
        return sum(a.net_cents for a in self.allocations)

    @property
    def is_conserved(self) -> bool:
        return self.total_net_cents == self.base_cents - self.gateway_fee_cents

    def allocation_for(
        self, role: StakeholderRole, owner_ref: str | None = None,
    ) -> SplitAllocation | None:
        for a in self.allocations:
            if a.role == role and (owner_ref is None or a.owner_ref == owner_ref):
                return a
        return None
