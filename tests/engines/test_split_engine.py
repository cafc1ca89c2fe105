"""
Tests for the split engine.

Covers:
- Platform fee and tenant residual
- Pre-existing allocations taken as given
- Installment interest absorbed by the seller or paid by the buyer
- Supplier shares from product configuration
- Per-role release dates
- Gateway fee withheld from the tenant residual
- Attributions limited to checkout-attributable roles
- Negative tenant net
- Conservation and line arithmetic
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from escrow_engines.split import SplitEngine
from escrow_kernel.domain.dtos import PriorAllocation, SaleItemLine, SaleSnapshot
from escrow_kernel.domain.fee_schedule import (
    FeeSchedule,
    HoldPolicy,
    PlatformFee,
    SupplierShare,
)
from escrow_kernel.domain.roles import InterestBearer, StakeholderRole
from escrow_kernel.exceptions import (
    InvalidPriorAllocationError,
    NegativeNetAllocationError,
)

CONFIRMED_AT = datetime(2024, 1, 10, 12, 0, 0)


def _schedule(**kwargs) -> FeeSchedule:
    kwargs.setdefault("platform_fee", PlatformFee(rate_percent=Decimal("4.99"), fixed_cents=100))
    kwargs.setdefault(
        "hold",
        HoldPolicy(
            default_days=14,
            by_role=((StakeholderRole.AFFILIATE, 15), (StakeholderRole.INDUSTRY, 0)),
        ),
    )
    return FeeSchedule(tenant_id="tenant-1", **kwargs)


def _sale(gross: int = 10000, **kwargs) -> SaleSnapshot:
    kwargs.setdefault("payment_confirmed_at", CONFIRMED_AT)
    return SaleSnapshot(
        sale_id="sale-1",
        tenant_id="tenant-1",
        gross_total_cents=gross,
        currency="BRL",
        **kwargs,
    )


class TestPlatformAndTenant:

    def setup_method(self):
        self.engine = SplitEngine()

    def test_platform_fee_and_tenant_residual(self):
        plan = self.engine.compute(sale=_sale(10000), schedule=_schedule())

        assert [a.role for a in plan.allocations] == [
            StakeholderRole.PLATFORM,
            StakeholderRole.TENANT,
        ]
        platform = plan.allocation_for(StakeholderRole.PLATFORM)
        tenant = plan.allocation_for(StakeholderRole.TENANT)
        assert platform.net_cents == 599
        assert platform.owner_ref == "platform"
        assert tenant.net_cents == 9401
        assert tenant.owner_ref == "tenant-1"
        assert plan.is_conserved

    def test_tenant_line_carries_gross_and_fees(self):
        plan = self.engine.compute(sale=_sale(10000), schedule=_schedule())
        tenant = plan.allocation_for(StakeholderRole.TENANT)

        assert tenant.gross_cents == 10000
        assert tenant.fee_cents == 599
        assert tenant.percentage == Decimal("94.0100")

    def test_zero_platform_fee_omits_platform_line(self):
        schedule = _schedule(platform_fee=PlatformFee(rate_percent=Decimal("0")))
        plan = self.engine.compute(sale=_sale(10000), schedule=schedule)

        assert plan.allocation_for(StakeholderRole.PLATFORM) is None
        assert plan.allocation_for(StakeholderRole.TENANT).net_cents == 10000

    def test_release_dates_follow_role_holds(self):
        plan = self.engine.compute(
            sale=_sale(10000),
            schedule=_schedule(),
            prior_allocations=[PriorAllocation(StakeholderRole.AFFILIATE, "aff-1", 1000)],
        )

        assert plan.allocation_for(StakeholderRole.PLATFORM).release_at == CONFIRMED_AT + timedelta(days=14)
        assert plan.allocation_for(StakeholderRole.AFFILIATE).release_at == CONFIRMED_AT + timedelta(days=15)
        assert plan.allocation_for(StakeholderRole.TENANT).release_at == CONFIRMED_AT + timedelta(days=14)

    def test_missing_confirmation_time_rejected(self):
        with pytest.raises(ValueError, match="payment_confirmed_at"):
            self.engine.compute(
                sale=_sale(10000, payment_confirmed_at=None),
                schedule=_schedule(),
            )


class TestPriorAllocations:

    def setup_method(self):
        self.engine = SplitEngine()

    def test_affiliate_attribution(self):
        plan = self.engine.compute(
            sale=_sale(10000),
            schedule=_schedule(),
            prior_allocations=[PriorAllocation(StakeholderRole.AFFILIATE, "aff-1", 1000)],
        )

        assert [(a.role, a.net_cents) for a in plan.allocations] == [
            (StakeholderRole.PLATFORM, 599),
            (StakeholderRole.AFFILIATE, 1000),
            (StakeholderRole.TENANT, 8401),
        ]
        assert plan.already_allocated_cents == 1000
        assert plan.total_net_cents == 10000

    def test_same_owner_allocations_merge(self):
        plan = self.engine.compute(
            sale=_sale(10000),
            schedule=_schedule(),
            prior_allocations=[
                PriorAllocation(StakeholderRole.AFFILIATE, "aff-1", 300),
                PriorAllocation(StakeholderRole.AFFILIATE, "aff-1", 200),
            ],
        )

        affiliates = [a for a in plan.allocations if a.role == StakeholderRole.AFFILIATE]
        assert len(affiliates) == 1
        assert affiliates[0].net_cents == 500

    def test_zero_allocation_omitted(self):
        plan = self.engine.compute(
            sale=_sale(10000),
            schedule=_schedule(),
            prior_allocations=[PriorAllocation(StakeholderRole.AFFILIATE, "aff-1", 0)],
        )
        assert plan.allocation_for(StakeholderRole.AFFILIATE) is None

    def test_negative_allocation_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            self.engine.compute(
                sale=_sale(10000),
                schedule=_schedule(),
                prior_allocations=[PriorAllocation(StakeholderRole.AFFILIATE, "aff-1", -1)],
            )


class TestInstallmentInterest:

    def setup_method(self):
        self.engine = SplitEngine()

    def test_seller_absorbs_interest(self):
        """Fee on the full gross; tenant shares only the interest-free base."""
        plan = self.engine.compute(
            sale=_sale(12000, interest_cents=1200, interest_bearer=InterestBearer.SELLER),
            schedule=_schedule(),
        )

        assert plan.base_cents == 10800
        assert plan.platform_fee_cents == 699
        assert plan.interest_to_platform_cents == 0
        tenant = plan.allocation_for(StakeholderRole.TENANT)
        assert tenant.net_cents == 10101
        assert tenant.gross_cents == 10800
        assert plan.total_net_cents == 10800

    def test_buyer_interest_goes_to_platform(self):
        plan = self.engine.compute(
            sale=_sale(12000, interest_cents=1200, interest_bearer=InterestBearer.BUYER),
            schedule=_schedule(),
        )

        assert plan.base_cents == 12000
        assert plan.interest_to_platform_cents == 1200
        platform = plan.allocation_for(StakeholderRole.PLATFORM)
        assert platform.net_cents == 699 + 1200
        assert plan.allocation_for(StakeholderRole.TENANT).net_cents == 12000 - 1899
        assert plan.is_conserved


class TestSupplierShares:

    def setup_method(self):
        self.engine = SplitEngine()

    def test_factory_share_from_product(self):
        schedule = _schedule(
            supplier_shares=(
                SupplierShare(
                    role=StakeholderRole.FACTORY,
                    owner_ref="factory-1",
                    product_id="p1",
                    rate_percent=Decimal("10"),
                    fixed_cents_per_unit=50,
                    unit_cost_cents=200,
                ),
            ),
        )
        plan = self.engine.compute(
            sale=_sale(5000, items=(SaleItemLine("p1", 2, 5000),)),
            schedule=schedule,
        )

        assert [(a.role, a.net_cents) for a in plan.allocations] == [
            (StakeholderRole.PLATFORM, 350),
            (StakeholderRole.FACTORY, 1000),
            (StakeholderRole.TENANT, 3650),
        ]
        assert plan.supplier_fees_cents == 1000

    def test_shares_for_same_owner_across_items_merge(self):
        share = dict(role=StakeholderRole.INDUSTRY, owner_ref="ind-1", unit_cost_cents=100)
        schedule = _schedule(
            supplier_shares=(
                SupplierShare(product_id="p1", **share),
                SupplierShare(product_id="p2", **share),
            ),
        )
        plan = self.engine.compute(
            sale=_sale(3000, items=(SaleItemLine("p1", 1, 1000), SaleItemLine("p2", 2, 2000))),
            schedule=schedule,
        )

        industry = plan.allocation_for(StakeholderRole.INDUSTRY)
        assert industry.net_cents == 300
        assert industry.release_at == CONFIRMED_AT

    def test_unconfigured_product_has_no_share(self):
        schedule = _schedule(
            supplier_shares=(
                SupplierShare(
                    role=StakeholderRole.FACTORY, owner_ref="f", product_id="other",
                    unit_cost_cents=100,
                ),
            ),
        )
        plan = self.engine.compute(
            sale=_sale(1000, items=(SaleItemLine("p1", 1, 1000),)),
            schedule=schedule,
        )
        assert plan.allocation_for(StakeholderRole.FACTORY) is None


class TestGatewayFee:

    def setup_method(self):
        self.engine = SplitEngine()

    def test_deducted_from_tenant_only(self):
        plan = self.engine.compute(
            sale=_sale(10000, gateway_fee_cents=300),
            schedule=_schedule(),
            prior_allocations=[PriorAllocation(StakeholderRole.AFFILIATE, "aff-1", 1000)],
        )

        assert plan.gateway_fee_cents == 300
        assert plan.allocation_for(StakeholderRole.PLATFORM).net_cents == 599
        assert plan.allocation_for(StakeholderRole.AFFILIATE).net_cents == 1000
        tenant = plan.allocation_for(StakeholderRole.TENANT)
        assert tenant.net_cents == 8101
        assert tenant.gross_cents == 10000
        assert tenant.fee_cents == 599 + 1000 + 300
        assert plan.total_net_cents == 10000 - 300
        assert plan.is_conserved

    def test_fee_above_residual_raises(self):
        with pytest.raises(NegativeNetAllocationError) as exc_info:
            self.engine.compute(sale=_sale(1000, gateway_fee_cents=900), schedule=_schedule())

        assert exc_info.value.deductions_cents == 150 + 900
        assert exc_info.value.tenant_net_cents == -50

    def test_negative_fee_rejected(self):
        with pytest.raises(ValueError):
            self.engine.compute(sale=_sale(10000, gateway_fee_cents=-1), schedule=_schedule())


class TestPriorAllocationRoles:

    def setup_method(self):
        self.engine = SplitEngine()

    @pytest.mark.parametrize("role,owner_ref", [
        (StakeholderRole.PLATFORM, "promo"),
        (StakeholderRole.TENANT, "tenant-1"),
        (StakeholderRole.FACTORY, "factory-1"),
    ])
    def test_engine_computed_role_rejected(self, role, owner_ref):
        with pytest.raises(InvalidPriorAllocationError) as exc_info:
            self.engine.compute(
                sale=_sale(10000),
                schedule=_schedule(),
                prior_allocations=[PriorAllocation(role, owner_ref, 300)],
            )

        assert exc_info.value.role == role.value
        assert exc_info.value.owner_ref == owner_ref
        assert exc_info.value.code == "INVALID_PRIOR_ALLOCATION"

    def test_coproducer_attribution_accepted(self):
        plan = self.engine.compute(
            sale=_sale(10000),
            schedule=_schedule(),
            prior_allocations=[PriorAllocation(StakeholderRole.COPRODUCER, "co-1", 500)],
        )

        assert plan.allocation_for(StakeholderRole.COPRODUCER).net_cents == 500
        assert plan.tenant_net_cents == 10000 - 599 - 500


class TestNegativeNet:

    def setup_method(self):
        self.engine = SplitEngine()

    def test_deductions_above_base_raise(self):
        with pytest.raises(NegativeNetAllocationError) as exc_info:
            self.engine.compute(
                sale=_sale(1000),
                schedule=_schedule(),
                prior_allocations=[PriorAllocation(StakeholderRole.AFFILIATE, "aff-1", 950)],
            )

        err = exc_info.value
        assert err.sale_id == "sale-1"
        assert err.base_cents == 1000
        assert err.deductions_cents == 150 + 950
        assert err.tenant_net_cents == -100

    def test_exact_exhaustion_leaves_no_tenant_line(self):
        plan = self.engine.compute(
            sale=_sale(1000),
            schedule=_schedule(),
            prior_allocations=[PriorAllocation(StakeholderRole.AFFILIATE, "aff-1", 850)],
        )

        assert plan.tenant_net_cents == 0
        assert plan.allocation_for(StakeholderRole.TENANT) is None
        assert plan.is_conserved

    def test_negative_net_is_logged(self, captured_logs):
        with pytest.raises(NegativeNetAllocationError):
            self.engine.compute(
                sale=_sale(100),
                schedule=_schedule(),
            )

        records = [r for r in captured_logs() if r["message"] == "split_negative_net"]
        assert len(records) == 1
        assert records[0]["tenant_net_cents"] == 100 - 105


class TestTrace:

    def test_compute_emits_engine_trace(self, captured_logs):
        SplitEngine().compute(sale=_sale(10000), schedule=_schedule())

        traces = [r for r in captured_logs() if r["message"] == "ESCROW_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "split"
        assert len(traces[0]["input_fingerprint"]) == 16

    def test_fingerprint_is_deterministic(self, captured_logs):
        engine = SplitEngine()
        engine.compute(sale=_sale(10000), schedule=_schedule())
        engine.compute(sale=_sale(10000), schedule=_schedule())
        engine.compute(sale=_sale(20000), schedule=_schedule())

        prints = [
            r["input_fingerprint"]
            for r in captured_logs()
            if r["message"] == "ESCROW_ENGINE_TRACE"
        ]
        assert prints[0] == prints[1]
        assert prints[0] != prints[2]
