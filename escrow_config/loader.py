"""
Configuration Loader (``escrow_config.loader``).

Responsibility
--------------
Load a YAML configuration file and parse it into the frozen
``escrow_config.schema`` dataclasses.  Runtime callers go through
``escrow_config.get_active_config()``.

Invariants enforced
-------------------
* Rates are parsed to ``Decimal`` through ``str`` so that ``4.99`` stays
  exactly 4.99.
* Missing required keys raise ``KeyError``; there are no silent defaults
  for ``config_id``, ``currency`` or the platform fee.
* ``compute_checksum`` is a deterministic SHA-256 of the raw document.

Failure modes
-------------
* Missing YAML file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Bad number formats -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from escrow_config.schema import (
    EscrowConfiguration,
    FeeDef,
    HoldDef,
    OrchestratorDef,
    ReconciliationDef,
    ReleaseSweepDef,
    ReversalDef,
    SupplierShareDef,
    TenantOverrideDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields ``{}``."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse decimal from {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Cannot parse decimal from {value!r}") from exc


def parse_fee(data: dict[str, Any]) -> FeeDef:
    return FeeDef(
        rate_percent=parse_decimal(data["rate_percent"]),
        fixed_cents=data.get("fixed_cents", 0),
    )


def parse_hold(data: dict[str, Any]) -> HoldDef:
    by_role = data.get("by_role") or {}
    return HoldDef(
        default_days=data.get("default_days", 14),
        by_role=tuple(sorted((str(k), v) for k, v in by_role.items())),
    )


def _role_list(data: dict[str, Any], key: str) -> tuple[str, ...] | None:
    roles = data.get(key)
    return None if roles is None else tuple(roles)


def parse_reversal(data: dict[str, Any]) -> ReversalDef:
    return ReversalDef(
        refund_roles=_role_list(data, "refund_roles"),
        chargeback_roles=_role_list(data, "chargeback_roles"),
    )


def parse_supplier_share(data: dict[str, Any]) -> SupplierShareDef:
    return SupplierShareDef(
        product_id=str(data["product_id"]),
        role=data["role"],
        owner_ref=str(data["owner_ref"]),
        rate_percent=parse_decimal(data.get("rate_percent", 0)),
        fixed_cents_per_unit=data.get("fixed_cents_per_unit", 0),
        unit_cost_cents=data.get("unit_cost_cents", 0),
        tenant_id=data.get("tenant_id"),
    )


def parse_tenant_override(data: dict[str, Any]) -> TenantOverrideDef:
    return TenantOverrideDef(
        tenant_id=str(data["tenant_id"]),
        platform_fee=parse_fee(data["platform_fee"]) if data.get("platform_fee") else None,
        hold=parse_hold(data["hold"]) if data.get("hold") else None,
        reversal=parse_reversal(data["reversal"]) if data.get("reversal") else None,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_configuration(data: dict[str, Any]) -> EscrowConfiguration:
    """Build an ``EscrowConfiguration`` from an already-loaded document."""
    recon = data.get("reconciliation") or {}
    sweep = data.get("release_sweep") or {}
    orch = data.get("orchestrator") or {}

    return EscrowConfiguration(
        config_id=data["config_id"],
        version=data.get("version", 1),
        currency=data["currency"],
        platform_fee=parse_fee(data["platform_fee"]),
        hold=parse_hold(data.get("hold") or {}),
        reversal=parse_reversal(data.get("reversal") or {}),
        reconciliation=ReconciliationDef(
            matching_window_hours=recon.get("matching_window_hours", 72),
            auto_match=recon.get("auto_match", True),
        ),
        release_sweep=ReleaseSweepDef(
            batch_size=sweep.get("batch_size", 500),
            interval_seconds=sweep.get("interval_seconds", 300),
        ),
        orchestrator=OrchestratorDef(
            max_split_attempts=orch.get("max_split_attempts", 3),
            gateway_timeout_seconds=float(orch.get("gateway_timeout_seconds", 10.0)),
        ),
        tenants=tuple(parse_tenant_override(t) for t in data.get("tenants") or ()),
        supplier_shares=tuple(
            parse_supplier_share(s) for s in data.get("supplier_shares") or ()
        ),
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> EscrowConfiguration:
    return parse_configuration(load_yaml_file(path))
