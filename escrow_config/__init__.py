"""
escrow_config -- single public entrypoint for split and escrow configuration.

Responsibility:
    ``get_active_config()`` loads, validates and returns the
    ``EscrowConfiguration``; ``resolve_fee_schedule()`` turns it into the
    explicit ``FeeSchedule`` the split engine consumes for one tenant.
    Nothing else in the codebase reads configuration files or the
    ``ESCROW_CONFIG_PATH`` environment variable.

Architecture position:
    Configuration -- sits above ``escrow_kernel``.  The kernel never
    imports from here; the orchestrator passes resolved schedules down.

Failure modes:
    - ``FileNotFoundError`` for a missing configuration file.
    - ``InvalidFeeConfigurationError`` carrying every validation error.
"""

from __future__ import annotations

import os
from pathlib import Path

from escrow_config.loader import load_configuration
from escrow_config.schema import EscrowConfiguration, ReversalDef, SupplierShareDef
from escrow_config.validator import ConfigValidationResult, validate_configuration
from escrow_kernel.domain.fee_schedule import (
    FeeSchedule,
    HoldPolicy,
    PlatformFee,
    ReversalLiability,
    SupplierShare,
)
from escrow_kernel.domain.roles import StakeholderRole
from escrow_kernel.exceptions import InvalidFeeConfigurationError
from escrow_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_PATH_ENV = "ESCROW_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "escrow.yaml"


def get_active_config(path: Path | str | None = None) -> EscrowConfiguration:
    """
    The only public configuration entrypoint.

    Resolution order: explicit ``path``, then ``ESCROW_CONFIG_PATH``, then
    the packaged default.

    Raises:
        FileNotFoundError: the file does not exist.
        InvalidFeeConfigurationError: validation found errors.
    """
    chosen = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    config = load_configuration(chosen)
    ensure_valid(config)

    _logger.info(
        "ESCROW_CONFIG_TRACE",
        extra={
            "trace_type": "ESCROW_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "path": str(chosen),
            "tenant_overrides": len(config.tenants),
            "supplier_shares": len(config.supplier_shares),
        },
    )
    return config


def ensure_valid(config: EscrowConfiguration) -> ConfigValidationResult:
    result = validate_configuration(config)
    for warning in result.warnings:
        _logger.warning("config_warning", extra={"config_id": config.config_id, "detail": warning})
    if not result.is_valid:
        raise InvalidFeeConfigurationError(result.errors)
    return result


def _roles(*configured: tuple[str, ...] | None) -> frozenset[StakeholderRole]:
    """First configured list wins; nothing configured means every role."""
    for roles in configured:
        if roles is not None:
            return frozenset(StakeholderRole(r) for r in roles)
    return frozenset(StakeholderRole)


def _liability(rev: ReversalDef, override: ReversalDef | None) -> ReversalLiability:
    override = override or ReversalDef()
    return ReversalLiability(
        refund_roles=_roles(override.refund_roles, rev.refund_roles),
        chargeback_roles=_roles(override.chargeback_roles, rev.chargeback_roles),
    )


def _shares_for_tenant(config: EscrowConfiguration, tenant_id: str) -> list[SupplierShareDef]:
    """Unscoped shares, replaced by a tenant-scoped share with the same key."""
    chosen: dict[tuple[str, str, str], SupplierShareDef] = {}
    for s in config.supplier_shares:
        if s.tenant_id is None:
            chosen[(s.product_id, s.role, s.owner_ref)] = s
    for s in config.supplier_shares:
        if s.tenant_id == tenant_id:
            chosen[(s.product_id, s.role, s.owner_ref)] = s
    return list(chosen.values())


def resolve_fee_schedule(config: EscrowConfiguration, tenant_id: str) -> FeeSchedule:
    """
    Build the explicit ``FeeSchedule`` for one tenant.

    Tenant overrides replace whole sections, except that a reversal role
    list the override leaves unset is inherited; an empty list means no
    role is liable.  Supplier shares scoped to the tenant are combined
    with the unscoped ones; for the same (product, role, owner) the
    tenant-scoped share wins.

    Raises:
        InvalidFeeConfigurationError: a value rejected by the domain types.
    """
    override = config.tenant_override(tenant_id)
    fee = (override.platform_fee if override and override.platform_fee else config.platform_fee)
    hold = (override.hold if override and override.hold else config.hold)

    try:
        return FeeSchedule(
            tenant_id=tenant_id,
            platform_fee=PlatformFee(rate_percent=fee.rate_percent, fixed_cents=fee.fixed_cents),
            hold=HoldPolicy(
                default_days=hold.default_days,
                by_role=tuple((StakeholderRole(r), d) for r, d in hold.by_role),
            ),
            supplier_shares=tuple(
                SupplierShare(
                    role=StakeholderRole(s.role),
                    owner_ref=s.owner_ref,
                    product_id=s.product_id,
                    rate_percent=s.rate_percent,
                    fixed_cents_per_unit=s.fixed_cents_per_unit,
                    unit_cost_cents=s.unit_cost_cents,
                )
                for s in _shares_for_tenant(config, tenant_id)
            ),
            reversal=_liability(config.reversal, override.reversal if override else None),
        )
    except (TypeError, ValueError) as exc:
        raise InvalidFeeConfigurationError([f"tenant {tenant_id}: {exc}"]) from exc


__all__ = [
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
    "EscrowConfiguration",
    "ConfigValidationResult",
    "ensure_valid",
    "get_active_config",
    "resolve_fee_schedule",
    "validate_configuration",
]
