"""
escrow_engines.fees -- Minor-unit fee primitives.

Responsibility:
    The only place where a rate touches an amount.  Every percentage is
    applied with Decimal arithmetic and rounded half-up to whole minor
    units exactly once, so every downstream sum is plain integer addition.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Imports only
    escrow_kernel.domain values.

Invariants enforced:
    - Inputs and outputs are ``int`` minor units; floats are rejected.
    - ``percent_of`` rounds half-up (0.5 goes away from zero).
    - ``interest_base`` never exceeds the gross.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from escrow_kernel.domain.fee_schedule import PlatformFee, SupplierShare
from escrow_kernel.domain.dtos import SaleItemLine
from escrow_kernel.domain.roles import InterestBearer

_HUNDRED = Decimal(100)
_UNIT = Decimal(1)


def _require_cents(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be int minor units, got {type(value).__name__}")


def percent_of(amount_cents: int, rate_percent: Decimal) -> int:
    """``round_half_up(amount_cents * rate_percent / 100)``.

    >>> percent_of(10000, Decimal("4.99"))
    499
    >>> percent_of(12000, Decimal("4.99"))
    599
    """
    _require_cents(amount_cents, "amount_cents")
    if not isinstance(rate_percent, Decimal):
        raise TypeError(f"rate_percent must be Decimal, got {type(rate_percent).__name__}")
    exact = Decimal(amount_cents) * rate_percent / _HUNDRED
    return int(exact.quantize(_UNIT, rounding=ROUND_HALF_UP))


def compute_fee(gross_cents: int, rate_percent: Decimal, fixed_cents: int = 0) -> int:
    """``percent_of(gross, rate) + fixed``: the percent-plus-fixed formula."""
    _require_cents(fixed_cents, "fixed_cents")
    return percent_of(gross_cents, rate_percent) + fixed_cents


def platform_fee(gross_cents: int, fee: PlatformFee) -> int:
    return compute_fee(gross_cents, fee.rate_percent, fee.fixed_cents)


def supplier_share(item: SaleItemLine, share: SupplierShare) -> int:
    """Share owed to one supplier entity for one sale item.

    ``round(item_total * rate / 100) + (fixed_per_unit + unit_cost) * qty``
    """
    _require_cents(item.total_cents, "item.total_cents")
    per_unit = share.fixed_cents_per_unit + share.unit_cost_cents
    return percent_of(item.total_cents, share.rate_percent) + per_unit * item.quantity


def interest_base(
    gross_total_cents: int,
    interest_cents: int,
    bearer: InterestBearer,
) -> int:
    """Amount the tenant net is computed against.

    When the seller absorbs installment interest, the interest is not part
    of what the stakeholders share: ``base = gross - interest``.  When the
    buyer pays it, the full gross is the base.
    """
    _require_cents(gross_total_cents, "gross_total_cents")
    _require_cents(interest_cents, "interest_cents")
    if interest_cents < 0:
        raise ValueError(f"interest_cents must be non-negative, got {interest_cents}")
    if interest_cents > gross_total_cents:
        raise ValueError(
            f"interest_cents {interest_cents} exceeds gross {gross_total_cents}"
        )
    if bearer == InterestBearer.SELLER:
        return gross_total_cents - interest_cents
    return gross_total_cents


def percentage_of_total(part_cents: int, total_cents: int) -> Decimal:
    """Display percentage of ``part`` within ``total``, four decimals."""
    if total_cents == 0:
        return Decimal("0")
    exact = Decimal(part_cents) * _HUNDRED / Decimal(total_cents)
    return exact.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)
