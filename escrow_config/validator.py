"""
Configuration Validator (``escrow_config.validator``).

Responsibility
--------------
Check an ``EscrowConfiguration`` before any fee schedule is resolved from
it.  Every problem is collected; nothing stops at the first error.

Invariants enforced
-------------------
* Rates within [0, 100]; fixed parts and hold days non-negative integers.
* Every role name is a ``StakeholderRole``; supplier shares use supplier
  roles only; the tenant is never configured (it is the residual).
* One supplier share per (tenant scope, product, role, owner).
* At most one override per tenant.
* Operational limits are positive.
* The currency is a known ISO 4217 code.

Failure modes
-------------
* ``ConfigValidationResult.errors`` non-empty -> the configuration MUST NOT
  be used; ``escrow_config.get_active_config`` raises
  ``InvalidFeeConfigurationError``.
* Warnings are logged and do not block.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from escrow_config.schema import (
    EscrowConfiguration,
    FeeDef,
    HoldDef,
    ReversalDef,
)
from escrow_kernel.db.types import ISO_4217_CURRENCIES
from escrow_kernel.domain.roles import SUPPLIER_ROLES, StakeholderRole

_ROLE_NAMES = frozenset(r.value for r in StakeholderRole)
_SUPPLIER_NAMES = frozenset(r.value for r in SUPPLIER_ROLES)


@dataclass
class ConfigValidationResult:
    """``is_valid`` only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_fee(fee: FeeDef, where: str, result: ConfigValidationResult) -> None:
    if not isinstance(fee.rate_percent, Decimal) or not (0 <= fee.rate_percent <= 100):
        result.errors.append(f"{where}.rate_percent must be within [0, 100], got {fee.rate_percent}")
    if not _is_int(fee.fixed_cents) or fee.fixed_cents < 0:
        result.errors.append(f"{where}.fixed_cents must be a non-negative int, got {fee.fixed_cents!r}")


def _check_hold(hold: HoldDef, where: str, result: ConfigValidationResult) -> None:
    if not _is_int(hold.default_days) or hold.default_days < 0:
        result.errors.append(f"{where}.default_days must be a non-negative int, got {hold.default_days!r}")
    for role, days in hold.by_role:
        if role not in _ROLE_NAMES:
            result.errors.append(f"{where}.by_role: unknown role {role!r}")
        if not _is_int(days) or days < 0:
            result.errors.append(f"{where}.by_role[{role}] must be a non-negative int, got {days!r}")


def _check_reversal(rev: ReversalDef, where: str, result: ConfigValidationResult) -> None:
    for attr in ("refund_roles", "chargeback_roles"):
        for role in getattr(rev, attr) or ():
            if role not in _ROLE_NAMES:
                result.errors.append(f"{where}.{attr}: unknown role {role!r}")
    if rev.chargeback_roles is not None and "tenant" not in rev.chargeback_roles:
        result.warnings.append(f"{where}.chargeback_roles excludes the tenant")


def validate_configuration(config: EscrowConfiguration) -> ConfigValidationResult:
    result = ConfigValidationResult()

    if config.currency not in ISO_4217_CURRENCIES:
        result.errors.append(f"currency {config.currency!r} is not a known ISO 4217 code")

    _check_fee(config.platform_fee, "platform_fee", result)
    _check_hold(config.hold, "hold", result)
    _check_reversal(config.reversal, "reversal", result)

    recon = config.reconciliation
    if not _is_int(recon.matching_window_hours) or recon.matching_window_hours <= 0:
        result.errors.append("reconciliation.matching_window_hours must be a positive int")
    if not _is_int(config.release_sweep.batch_size) or config.release_sweep.batch_size <= 0:
        result.errors.append("release_sweep.batch_size must be a positive int")
    if config.release_sweep.interval_seconds <= 0:
        result.errors.append("release_sweep.interval_seconds must be positive")
    if not _is_int(config.orchestrator.max_split_attempts) or config.orchestrator.max_split_attempts < 1:
        result.errors.append("orchestrator.max_split_attempts must be >= 1")
    if config.orchestrator.gateway_timeout_seconds <= 0:
        result.errors.append("orchestrator.gateway_timeout_seconds must be positive")

    seen_tenants: set[str] = set()
    for override in config.tenants:
        where = f"tenants[{override.tenant_id}]"
        if override.tenant_id in seen_tenants:
            result.errors.append(f"{where}: duplicate tenant override")
        seen_tenants.add(override.tenant_id)
        if override.platform_fee is not None:
            _check_fee(override.platform_fee, f"{where}.platform_fee", result)
        if override.hold is not None:
            _check_hold(override.hold, f"{where}.hold", result)
        if override.reversal is not None:
            _check_reversal(override.reversal, f"{where}.reversal", result)

    seen_shares: set[tuple[str | None, str, str, str]] = set()
    for share in config.supplier_shares:
        where = f"supplier_shares[{share.product_id}/{share.owner_ref}]"
        if share.role not in _SUPPLIER_NAMES:
            result.errors.append(
                f"{where}: role {share.role!r} is not a supplier role "
                f"({', '.join(sorted(_SUPPLIER_NAMES))})"
            )
        if not share.owner_ref:
            result.errors.append(f"{where}: owner_ref is required")
        if not (0 <= share.rate_percent <= 100):
            result.errors.append(f"{where}.rate_percent must be within [0, 100]")
        for attr in ("fixed_cents_per_unit", "unit_cost_cents"):
            value = getattr(share, attr)
            if not _is_int(value) or value < 0:
                result.errors.append(f"{where}.{attr} must be a non-negative int, got {value!r}")
        key = (share.tenant_id, share.product_id, share.role, share.owner_ref)
        if key in seen_shares:
            result.errors.append(f"{where}: duplicate supplier share")
        seen_shares.add(key)
        if share.rate_percent == 0 and share.fixed_cents_per_unit == 0 and share.unit_cost_cents == 0:
            result.warnings.append(f"{where}: share is always zero")

    return result
