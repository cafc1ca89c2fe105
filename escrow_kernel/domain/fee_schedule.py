"""
FeeSchedule -- explicit, validated split configuration for one tenant.

Responsibility:
    Carries every rate the split engine needs as an immutable value passed in
    by the caller.  The engine never looks fees up on its own.

Architecture position:
    Kernel > Domain -- pure values, zero I/O.  Built by
    ``escrow_config.resolve_fee_schedule`` and consumed by
    ``escrow_engines.split``.

Invariants enforced:
    - Rates are Decimal percentages in [0, 100]; fixed parts are
      non-negative integer cents.
    - Per-role share configuration is a closed set of variants:
      ``PlatformFee`` for the platform and ``SupplierShare`` for the
      supplier roles.  The tenant has no configuration (it is the residual).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from escrow_kernel.domain.roles import SUPPLIER_ROLES, StakeholderRole

DEFAULT_HOLD_DAYS = 14


def _check_rate(rate_percent: Decimal, where: str) -> None:
    if not isinstance(rate_percent, Decimal):
        raise TypeError(f"{where}: rate_percent must be Decimal, got {type(rate_percent).__name__}")
    if rate_percent < 0 or rate_percent > 100:
        raise ValueError(f"{where}: rate_percent must be within [0, 100], got {rate_percent}")


def _check_non_negative_int(value: int, where: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{where}: must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{where}: must be non-negative, got {value}")


@dataclass(frozen=True)
class PlatformFee:
    """Platform share: ``round(gross * rate_percent / 100) + fixed_cents``."""

    rate_percent: Decimal
    fixed_cents: int = 0
    role: StakeholderRole = field(default=StakeholderRole.PLATFORM, init=False)

    def __post_init__(self) -> None:
        _check_rate(self.rate_percent, "platform_fee")
        _check_non_negative_int(self.fixed_cents, "platform_fee.fixed_cents")


@dataclass(frozen=True)
class SupplierShare:
    """
    One supplier entity's share of one product.

    Per sale item: ``round(item_total * rate_percent / 100)
    + fixed_cents_per_unit * qty + unit_cost_cents * qty``.
    """

    role: StakeholderRole
    owner_ref: str
    product_id: str
    rate_percent: Decimal = Decimal("0")
    fixed_cents_per_unit: int = 0
    unit_cost_cents: int = 0

    def __post_init__(self) -> None:
        where = f"supplier_share[{self.product_id}/{self.owner_ref}]"
        if self.role not in SUPPLIER_ROLES:
            raise ValueError(f"{where}: role {self.role.value!r} is not a supplier role")
        if not self.owner_ref:
            raise ValueError(f"{where}: owner_ref is required")
        _check_rate(self.rate_percent, where)
        _check_non_negative_int(self.fixed_cents_per_unit, f"{where}.fixed_cents_per_unit")
        _check_non_negative_int(self.unit_cost_cents, f"{where}.unit_cost_cents")


RoleShare = PlatformFee | SupplierShare


@dataclass(frozen=True)
class HoldPolicy:
    """Escrow hold in days, with per-role overrides."""

    default_days: int = DEFAULT_HOLD_DAYS
    by_role: tuple[tuple[StakeholderRole, int], ...] = ()

    def __post_init__(self) -> None:
        _check_non_negative_int(self.default_days, "hold.default_days")
        for role, days in self.by_role:
            _check_non_negative_int(days, f"hold.by_role[{role.value}]")

    def days_for(self, role: StakeholderRole) -> int:
        for r, days in self.by_role:
            if r == role:
                return days
        return self.default_days


_ALL_ROLES = frozenset(StakeholderRole)


@dataclass(frozen=True)
class ReversalLiability:
    """Roles whose credits are unwound on refund and on chargeback."""

    refund_roles: frozenset[StakeholderRole] = _ALL_ROLES
    chargeback_roles: frozenset[StakeholderRole] = _ALL_ROLES


@dataclass(frozen=True)
class FeeSchedule:
    """Everything the split engine needs for one tenant's sales."""

    tenant_id: str
    platform_fee: PlatformFee
    hold: HoldPolicy = HoldPolicy()
    supplier_shares: tuple[SupplierShare, ...] = ()
    reversal: ReversalLiability = ReversalLiability()

    def shares_for_product(self, product_id: str) -> tuple[SupplierShare, ...]:
        return tuple(s for s in self.supplier_shares if s.product_id == product_id)
