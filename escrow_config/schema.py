"""
Escrow configuration schema.

The human-authored, reviewable source artifact for split and escrow
configuration.  YAML is parsed into these frozen types by the loader,
checked by the validator, and resolved per tenant into the kernel's
``FeeSchedule`` by ``escrow_config.resolve_fee_schedule``.

Roles are kept as plain strings here; the validator checks them against
``StakeholderRole`` before anything is resolved.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

# ---------------------------------------------------------------------------
# Fees and holds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeeDef:
    """Percent-plus-fixed fee."""

    rate_percent: Decimal
    fixed_cents: int = 0


@dataclass(frozen=True)
class HoldDef:
    """Escrow hold in days with per-role overrides."""

    default_days: int = 14
    by_role: tuple[tuple[str, int], ...] = ()


@dataclass(frozen=True)
class ReversalDef:
    """Roles liable on refund and on chargeback.

    ``None`` means not configured: every role globally, the global list in
    a tenant override.  An empty tuple means no role is liable.
    """

    refund_roles: tuple[str, ...] | None = None
    chargeback_roles: tuple[str, ...] | None = None


@dataclass(frozen=True)
class SupplierShareDef:
    """One supplier entity's share of one product.

    ``tenant_id`` of None applies the share to every tenant selling the
    product.
    """

    product_id: str
    role: str
    owner_ref: str
    rate_percent: Decimal = Decimal("0")
    fixed_cents_per_unit: int = 0
    unit_cost_cents: int = 0
    tenant_id: str | None = None


@dataclass(frozen=True)
class TenantOverrideDef:
    """Per-tenant replacements; None keeps the global section."""

    tenant_id: str
    platform_fee: FeeDef | None = None
    hold: HoldDef | None = None
    reversal: ReversalDef | None = None


# ---------------------------------------------------------------------------
# Operational sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconciliationDef:
    matching_window_hours: int = 72
    auto_match: bool = True


@dataclass(frozen=True)
class ReleaseSweepDef:
    batch_size: int = 500
    interval_seconds: int = 300


@dataclass(frozen=True)
class OrchestratorDef:
    max_split_attempts: int = 3
    gateway_timeout_seconds: float = 10.0


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EscrowConfiguration:
    """Complete escrow configuration."""

    config_id: str
    version: int
    currency: str
    platform_fee: FeeDef
    hold: HoldDef = HoldDef()
    reversal: ReversalDef = ReversalDef()
    reconciliation: ReconciliationDef = ReconciliationDef()
    release_sweep: ReleaseSweepDef = ReleaseSweepDef()
    orchestrator: OrchestratorDef = OrchestratorDef()
    tenants: tuple[TenantOverrideDef, ...] = ()
    supplier_shares: tuple[SupplierShareDef, ...] = ()
    checksum: str = ""

    def tenant_override(self, tenant_id: str) -> TenantOverrideDef | None:
        for override in self.tenants:
            if override.tenant_id == tenant_id:
                return override
        return None
