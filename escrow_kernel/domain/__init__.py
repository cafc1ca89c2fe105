"""Pure domain values: clock, roles, fee schedule, engine DTOs."""

from escrow_kernel.domain.clock import Clock, DeterministicClock, SystemClock, ensure_utc
from escrow_kernel.domain.dtos import (
    PriorAllocation,
    SaleItemLine,
    SaleSnapshot,
    SplitAllocation,
    SplitPlan,
)
from escrow_kernel.domain.fee_schedule import (
    FeeSchedule,
    HoldPolicy,
    PlatformFee,
    ReversalLiability,
    RoleShare,
    SupplierShare,
)
from escrow_kernel.domain.roles import InterestBearer, StakeholderRole

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ensure_utc",
    "PriorAllocation",
    "SaleItemLine",
    "SaleSnapshot",
    "SplitAllocation",
    "SplitPlan",
    "FeeSchedule",
    "HoldPolicy",
    "PlatformFee",
    "ReversalLiability",
    "RoleShare",
    "SupplierShare",
    "InterestBearer",
    "StakeholderRole",
]
