"""
escrow_engines.split -- Split computation for one confirmed sale.

Responsibility:
    Turn a confirmed sale, its pre-existing allocations and an explicit
    ``FeeSchedule`` into a ``SplitPlan``: one ``SplitAllocation`` per
    stakeholder with a non-zero share, each carrying its own release date.

Architecture position:
    Engines -- pure calculation layer, zero I/O, no clock access.  The
    caller (``escrow_kernel.services.split_service``) supplies every input
    and persists the result.

Invariants enforced:
    - Conservation: the allocation nets sum to the allocation base minus
      the gateway fee exactly.
    - Every line satisfies ``gross - fee == net``.
    - The tenant is the residual and is never negative; a negative residual
      raises ``NegativeNetAllocationError`` and is never clamped.
    - Pre-existing allocations are taken as given, never recomputed, and
      only for roles in ``PRIOR_ALLOCATION_ROLES``.
    - ``release_at = payment_confirmed_at + hold days for the role``.

Failure modes:
    - NegativeNetAllocationError when deductions exceed the base.
    - InvalidPriorAllocationError for a pre-existing allocation whose role
      the engine computes itself (platform, tenant, per-product suppliers).
    - ValueError for a sale without a confirmation timestamp, a negative
      pre-existing allocation or a negative gateway fee.

Allocation base:
    ``base = gross - interest`` when the seller absorbs installment
    interest, otherwise ``base = gross``.  When the buyer pays the
    interest it is routed to the platform together with the platform fee.
    The gateway fee, withheld by the gateway before settlement, comes out
    of the tenant residual and produces no line of its own.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta

from escrow_engines.fees import (
    interest_base,
    percentage_of_total,
    platform_fee,
    supplier_share,
)
from escrow_engines.tracer import traced_engine
from escrow_kernel.domain.dtos import (
    PriorAllocation,
    SaleSnapshot,
    SplitAllocation,
    SplitPlan,
)
from escrow_kernel.domain.fee_schedule import FeeSchedule
from escrow_kernel.domain.roles import (
    PLATFORM_OWNER_REF,
    PRIOR_ALLOCATION_ROLES,
    InterestBearer,
    StakeholderRole,
    role_rank,
)
from escrow_kernel.exceptions import (
    InvalidPriorAllocationError,
    NegativeNetAllocationError,
)
from escrow_kernel.logging_config import get_logger

logger = get_logger("engines.split")

_Key = tuple[StakeholderRole, str]


class SplitEngine:
    """
    Stateless split calculator.

    Example (4.99% + 100 platform fee, 14-day hold):
        gross 10,000 -> platform 599, tenant 9,401
        gross 10,000 with a 1,000 affiliate attribution
            -> platform 599, affiliate 1,000, tenant 8,401
    """

    @traced_engine(
        "split", "1.0",
        fingerprint_fields=("sale", "schedule", "prior_allocations"),
    )
    def compute(
        self,
        *,
        sale: SaleSnapshot,
        schedule: FeeSchedule,
        prior_allocations: Sequence[PriorAllocation] = (),
    ) -> SplitPlan:
        if sale.payment_confirmed_at is None:
            raise ValueError(f"Sale {sale.sale_id} has no payment_confirmed_at")

        base = interest_base(
            sale.gross_total_cents, sale.interest_cents, sale.interest_bearer,
        )
        fee = platform_fee(sale.gross_total_cents, schedule.platform_fee)
        interest_to_platform = (
            sale.interest_cents
            if sale.interest_bearer == InterestBearer.BUYER
            else 0
        )

        shares: dict[_Key, int] = {}

        already_allocated = 0
        for prior in prior_allocations:
            if prior.role not in PRIOR_ALLOCATION_ROLES:
                raise InvalidPriorAllocationError(
                    sale.sale_id, prior.role.value, prior.owner_ref,
                )
            if prior.amount_cents < 0:
                raise ValueError(
                    f"Pre-existing allocation for {prior.role.value}:{prior.owner_ref} "
                    f"is negative ({prior.amount_cents})"
                )
            already_allocated += prior.amount_cents
            key = (prior.role, prior.owner_ref)
            shares[key] = shares.get(key, 0) + prior.amount_cents

        supplier_fees = 0
        for item in sale.items:
            for share in schedule.shares_for_product(item.product_id):
                amount = supplier_share(item, share)
                supplier_fees += amount
                key = (share.role, share.owner_ref)
                shares[key] = shares.get(key, 0) + amount

        if sale.gateway_fee_cents < 0:
            raise ValueError(
                f"Sale {sale.sale_id} has a negative gateway fee ({sale.gateway_fee_cents})"
            )
        deductions = (
            fee + interest_to_platform + already_allocated + supplier_fees
            + sale.gateway_fee_cents
        )
        tenant_net = base - deductions
        if tenant_net < 0:
            logger.warning(
                "split_negative_net",
                extra={
                    "sale_id": sale.sale_id,
                    "base_cents": base,
                    "deductions_cents": deductions,
                    "tenant_net_cents": tenant_net,
                },
            )
            raise NegativeNetAllocationError(
                sale_id=sale.sale_id,
                base_cents=base,
                deductions_cents=deductions,
                tenant_net_cents=tenant_net,
            )

        confirmed_at = sale.payment_confirmed_at

        def _line(role: StakeholderRole, owner_ref: str, gross: int, net: int) -> SplitAllocation:
            return SplitAllocation(
                role=role,
                owner_ref=owner_ref,
                gross_cents=gross,
                fee_cents=gross - net,
                net_cents=net,
                percentage=percentage_of_total(net, base),
                release_at=confirmed_at + timedelta(days=schedule.hold.days_for(role)),
            )

        allocations: list[SplitAllocation] = []

        platform_total = fee + interest_to_platform
        if platform_total:
            allocations.append(
                _line(StakeholderRole.PLATFORM, PLATFORM_OWNER_REF, platform_total, platform_total)
            )

        for (role, owner_ref), amount in shares.items():
            if amount:
                allocations.append(_line(role, owner_ref, amount, amount))

        if tenant_net:
            allocations.append(
                _line(StakeholderRole.TENANT, sale.tenant_id, base, tenant_net)
            )

        allocations.sort(key=lambda a: (role_rank(a.role), a.owner_ref))

        plan = SplitPlan(
            sale_id=sale.sale_id,
            gross_total_cents=sale.gross_total_cents,
            base_cents=base,
            platform_fee_cents=fee,
            interest_to_platform_cents=interest_to_platform,
            already_allocated_cents=already_allocated,
            supplier_fees_cents=supplier_fees,
            tenant_net_cents=tenant_net,
            allocations=tuple(allocations),
            gateway_fee_cents=sale.gateway_fee_cents,
        )
        assert plan.is_conserved, (plan.total_net_cents, base, sale.gateway_fee_cents)
        return plan
