"""
Tests for the read-only selectors.

Verifies:
- Split breakdown order (platform first, tenant last) and totals
- Account statements include reversal lines
- Balance invariants recomputed from lines, and drift detection
- Platform account lookup from any tenant
- Pending incoming payments oldest first
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from escrow_kernel.domain.roles import StakeholderRole
from escrow_kernel.exceptions import AccountNotFoundError, SaleNotFoundError
from escrow_kernel.models.incoming_transaction import IncomingStatus
from escrow_kernel.models.virtual_account import VirtualAccount
from escrow_kernel.models.virtual_transaction import (
    ReversalKind,
    TransactionStatus,
    TransactionType,
    VirtualTransaction,
)
from escrow_kernel.selectors import AccountSelector, IncomingSelector, SplitSelector
from escrow_kernel.services import (
    ReconciliationService,
    ReversalService,
    SplitService,
    VirtualAccountService,
)

TENANT = "tenant-acme"


@pytest.fixture
def split_sale(session, clock, make_confirmed_sale, schedule):
    def _split(gross_total_cents=10000, **kwargs):
        sale = make_confirmed_sale(gross_total_cents, **kwargs)
        SplitService(session, clock).process_sale(sale.id, schedule)
        return sale

    return _split


def _account_id(session, role, owner_ref):
    return session.execute(
        select(VirtualAccount.id).where(
            VirtualAccount.role == role,
            VirtualAccount.owner_ref == owner_ref,
        )
    ).scalar_one()


class TestSplitBreakdown:

    def test_lines_in_role_order(self, session, split_sale):
        sale = split_sale(10000, attributions=((StakeholderRole.AFFILIATE, "aff-1", 1000),))

        breakdown = SplitSelector(session).breakdown(sale.id)

        assert [line.role for line in breakdown.lines] == [
            StakeholderRole.PLATFORM,
            StakeholderRole.AFFILIATE,
            StakeholderRole.TENANT,
        ]
        assert breakdown.total_net_cents == breakdown.gross_total_cents == 10000
        assert breakdown.line_for(StakeholderRole.AFFILIATE).owner_ref == "aff-1"
        assert breakdown.line_for(StakeholderRole.TENANT).net_cents == 8401

    def test_unsplit_sale_has_no_lines(self, session, make_confirmed_sale):
        sale = make_confirmed_sale(10000)
        assert SplitSelector(session).breakdown(sale.id).lines == ()

    def test_unknown_sale(self, session):
        with pytest.raises(SaleNotFoundError):
            SplitSelector(session).breakdown(uuid4())


class TestStatement:

    def test_credit_then_reversal(self, session, clock, split_sale):
        sale = split_sale(10000)
        ReversalService(session, clock).reverse_sale(
            sale.id, ReversalKind.REFUND, 10000, frozenset(StakeholderRole),
        )
        tenant_id = _account_id(session, StakeholderRole.TENANT, TENANT)

        lines = SplitSelector(session).statement(tenant_id)

        assert [line.transaction_type for line in lines] == [
            TransactionType.CREDIT,
            TransactionType.REVERSAL,
        ]
        assert lines[1].reversal_of_id == lines[0].transaction_id
        assert sum(line.net_cents for line in lines) == 0

    def test_transactions_for_sale(self, session, split_sale):
        sale = split_sale(10000)
        lines = SplitSelector(session).transactions_for_sale(sale.id)
        assert {line.role for line in lines} == {StakeholderRole.PLATFORM, StakeholderRole.TENANT}

    def test_unknown_account(self, session):
        with pytest.raises(AccountNotFoundError):
            SplitSelector(session).statement(uuid4())


class TestAccountSelector:

    def test_platform_found_from_any_tenant(self, session, split_sale):
        split_sale(10000)
        dto = AccountSelector(session).find(StakeholderRole.PLATFORM, "whatever", "tenant-x")

        assert dto is not None
        assert dto.pending_cents == 599
        assert dto.total_cents == 599

    def test_missing_account(self, session):
        assert AccountSelector(session).find(StakeholderRole.AFFILIATE, "nobody", TENANT) is None

    def test_list_for_tenant_excludes_platform(self, session, split_sale):
        split_sale(10000, attributions=((StakeholderRole.AFFILIATE, "aff-1", 1000),))
        roles = {dto.role for dto in AccountSelector(session).list_for_tenant(TENANT)}
        assert roles == {StakeholderRole.AFFILIATE, StakeholderRole.TENANT}

    def test_invariants_hold_through_release_and_reversal(self, session, clock, split_sale):
        first = split_sale(10000)
        split_sale(5000)
        accounts = VirtualAccountService(session, clock)
        for tx in session.execute(
            select(VirtualTransaction).where(VirtualTransaction.sale_id == first.id)
        ).scalars().all():
            accounts.release_transaction(tx, clock.now() + timedelta(days=14))
        ReversalService(session, clock).reverse_sale(
            first.id, ReversalKind.CHARGEBACK, 10000, frozenset(StakeholderRole),
        )

        selector = AccountSelector(session)
        for role, owner in ((StakeholderRole.TENANT, TENANT), (StakeholderRole.PLATFORM, "platform")):
            report = selector.check_invariants(_account_id(session, role, owner))
            assert report.is_consistent, report.drift

        tenant = selector.balance(_account_id(session, StakeholderRole.TENANT, TENANT))
        assert tenant.lifetime_received_cents == 9401 + 4650
        assert tenant.reversed_total_cents == 9401
        assert tenant.pending_cents == 4650

    def test_drift_detected(self, session, split_sale):
        split_sale(10000)
        account = session.get(VirtualAccount, _account_id(session, StakeholderRole.TENANT, TENANT))
        account.pending_balance_cents += 1
        session.flush()

        report = AccountSelector(session).check_invariants(account.id)

        assert not report.is_consistent
        assert report.drift == {"pending_cents": 1}

    def test_negative_balances(self, session, clock):
        accounts = VirtualAccountService(session, clock)
        account = accounts.get_or_create_account(StakeholderRole.TENANT, TENANT, TENANT)
        accounts.debit_for_reversal(account, 50, TransactionStatus.AVAILABLE)

        negatives = AccountSelector(session).negative_balances()
        assert [n.account_id for n in negatives] == [account.id]


class TestIncomingSelector:

    def test_pending_oldest_first(self, session, clock):
        recon = ReconciliationService(session, clock)
        newer, _ = recon.submit(100, "pix", clock.now())
        older, _ = recon.submit(200, "pix", clock.now() - timedelta(hours=3))
        ignored, _ = recon.submit(300, "pix", clock.now() - timedelta(hours=5))
        recon.ignore(ignored.id, "noise")

        selector = IncomingSelector(session)
        assert selector.pending_ids() == [older.id, newer.id]
        assert selector.pending_ids(limit=1) == [older.id]
        assert [v.incoming_id for v in selector.list_by_status(IncomingStatus.IGNORED)] == [ignored.id]
        assert selector.get(newer.id).amount_cents == 100
