"""
Tests for ReconciliationService.

Uses a file-backed SQLite database with real ORM models.

Verifies:
- Intake validation and idempotency on (source_channel, external_reference)
- Candidate search over open sales within the matching window
- Auto-match confirms only an unambiguous candidate
- Manual match may settle a different amount (logged)
- Installment interest adjustment by bearer
- Ignore
"""

from datetime import timedelta
from uuid import UUID

import pytest

from escrow_engines.matching import MatchDecisionKind
from escrow_kernel.domain.roles import InterestBearer
from escrow_kernel.exceptions import (
    AmbiguousMatchError,
    IncomingTransactionNotFoundError,
    IncomingTransactionStateError,
    InvalidCurrencyError,
    InvalidSaleStateError,
    NoMatchFoundError,
)
from escrow_kernel.models.incoming_transaction import IncomingStatus, MatchMethod
from escrow_kernel.models.sale import ConfirmationSource, SaleStatus
from escrow_kernel.services.reconciliation_service import (
    PayerIdentity,
    ReconciliationService,
)

WINDOW = timedelta(hours=72)


@pytest.fixture
def recon(session, clock):
    return ReconciliationService(session, clock)


@pytest.fixture
def submit(recon, clock):
    def _submit(amount_cents=10000, **kwargs):
        kwargs.setdefault("observed_at", clock.now())
        kwargs.setdefault("source_channel", "pix")
        row, _created = recon.submit(amount_cents=amount_cents, **kwargs)
        return row

    return _submit


class TestSubmit:

    def test_records_pending_payment(self, recon, clock):
        row, created = recon.submit(
            amount_cents=10000,
            source_channel="pix",
            observed_at=clock.now(),
            payer=PayerIdentity(name="Ana", document="123.456.789-09"),
            currency="brl",
            external_reference="E2E-1",
        )

        assert created
        assert row.status == IncomingStatus.PENDING
        assert row.currency == "BRL"
        assert row.payer_document == "123.456.789-09"

    def test_resubmission_is_idempotent(self, recon, clock):
        first, _ = recon.submit(10000, "pix", clock.now(), external_reference="E2E-1")
        again, created = recon.submit(10000, "pix", clock.now(), external_reference="E2E-1")

        assert not created
        assert again.id == first.id

    def test_same_reference_on_another_channel_is_new(self, recon, clock):
        a, _ = recon.submit(10000, "pix", clock.now(), external_reference="REF")
        b, created = recon.submit(10000, "boleto", clock.now(), external_reference="REF")
        assert created
        assert a.id != b.id

    def test_without_reference_every_submission_is_new(self, recon, clock):
        a, _ = recon.submit(10000, "manual", clock.now())
        b, _ = recon.submit(10000, "manual", clock.now())
        assert a.id != b.id

    @pytest.mark.parametrize("amount", [0, -1, True])
    def test_rejects_non_positive_amount(self, recon, clock, amount):
        with pytest.raises(ValueError):
            recon.submit(amount, "pix", clock.now())

    def test_rejects_unknown_currency(self, recon, clock):
        with pytest.raises(InvalidCurrencyError):
            recon.submit(10000, "pix", clock.now(), currency="XXX")

    def test_rejects_interest_above_amount(self, recon, clock):
        with pytest.raises(ValueError):
            recon.submit(10000, "pix", clock.now(), interest_cents=10001)


class TestCandidates:

    def test_single_open_sale_matches(self, recon, submit, make_sale, clock):
        sale = make_sale(10000, created_at=clock.now() - timedelta(hours=2))
        incoming = submit(10000)

        decision = recon.candidates(incoming.id, WINDOW)

        assert decision.kind == MatchDecisionKind.MATCH
        assert decision.sale_id == str(sale.id)

    def test_confirmed_sales_are_not_candidates(self, recon, submit, make_confirmed_sale):
        make_confirmed_sale(10000)
        incoming = submit(10000)

        assert recon.candidates(incoming.id, WINDOW).kind == MatchDecisionKind.NO_MATCH

    def test_window_and_amount_prefilter(self, recon, submit, make_sale, clock):
        make_sale(10000, created_at=clock.now() - timedelta(hours=80))
        make_sale(9999)
        incoming = submit(10000)

        assert recon.candidates(incoming.id, WINDOW).kind == MatchDecisionKind.NO_MATCH

    def test_unknown_incoming(self, recon):
        with pytest.raises(IncomingTransactionNotFoundError):
            recon.candidates(UUID(int=1), WINDOW)


class TestAutoMatch:

    def test_confirms_unambiguous_sale(self, recon, submit, make_sale, clock):
        sale = make_sale(10000, created_at=clock.now() - timedelta(hours=1))
        incoming = submit(10000, observed_at=clock.now() - timedelta(minutes=30))

        matched = recon.auto_match(incoming.id, WINDOW)

        assert matched.id == sale.id
        assert sale.status == SaleStatus.PAYMENT_CONFIRMED
        assert sale.confirmation_source == ConfirmationSource.RECONCILIATION
        assert sale.payment_confirmed_at == clock.now()
        assert incoming.status == IncomingStatus.MATCHED
        assert incoming.matched_sale_id == sale.id
        assert incoming.match_method == MatchMethod.AUTOMATIC
        assert incoming.matched_at == clock.now()

    def test_ambiguous_leaves_everything_pending(self, recon, submit, make_sale):
        a = make_sale(10000)
        b = make_sale(10000)
        incoming = submit(10000)

        with pytest.raises(AmbiguousMatchError) as exc_info:
            recon.auto_match(incoming.id, WINDOW)

        assert sorted(exc_info.value.candidate_sale_ids) == sorted([str(a.id), str(b.id)])
        assert incoming.status == IncomingStatus.PENDING
        assert a.status == SaleStatus.PENDING
        assert b.status == SaleStatus.PENDING

    def test_identity_breaks_the_tie(self, recon, submit, make_sale):
        make_sale(10000, customer_document="111.111.111-11")
        mine = make_sale(10000, customer_document="222.222.222-22")
        incoming = submit(10000, payer=PayerIdentity(document="22222222222"))

        assert recon.auto_match(incoming.id, WINDOW).id == mine.id

    def test_no_match(self, recon, submit):
        incoming = submit(10000)
        with pytest.raises(NoMatchFoundError):
            recon.auto_match(incoming.id, WINDOW)
        assert incoming.status == IncomingStatus.PENDING


class TestManualMatch:

    def test_amount_mismatch_is_logged(self, recon, submit, make_sale, captured_logs):
        sale = make_sale(10000)
        incoming = submit(9950)

        recon.match(incoming.id, sale.id, MatchMethod.MANUAL, actor_id="ops-1")

        assert sale.status == SaleStatus.PAYMENT_CONFIRMED
        assert incoming.matched_by == "ops-1"
        warnings = [r for r in captured_logs() if r["message"] == "match_amount_mismatch"]
        assert warnings[0]["incoming_amount_cents"] == 9950

    def test_matched_incoming_cannot_match_again(self, recon, submit, make_sale):
        sale = make_sale(10000)
        other = make_sale(10000)
        incoming = submit(10000)
        recon.match(incoming.id, sale.id, MatchMethod.MANUAL)

        with pytest.raises(IncomingTransactionStateError):
            recon.match(incoming.id, other.id, MatchMethod.MANUAL)

    def test_confirmed_sale_cannot_be_matched(self, recon, submit, make_confirmed_sale):
        sale = make_confirmed_sale(10000)
        incoming = submit(10000)

        with pytest.raises(InvalidSaleStateError):
            recon.match(incoming.id, sale.id, MatchMethod.MANUAL)
        assert incoming.status == IncomingStatus.PENDING


class TestInterestAdjustment:

    def test_seller_absorbed_interest_reduces_total(self, recon, submit, make_sale):
        sale = make_sale(12000, interest_bearer=InterestBearer.SELLER)
        incoming = submit(12000, interest_cents=1200)

        recon.match(incoming.id, sale.id, MatchMethod.MANUAL)

        assert sale.gross_total_cents == 10800
        assert sale.absorbed_interest_cents == 1200
        assert sale.interest_cents == 0

    def test_buyer_interest_recorded_on_sale(self, recon, submit, make_sale):
        sale = make_sale(12000, interest_bearer=InterestBearer.BUYER)
        incoming = submit(12000, interest_cents=1200)

        recon.match(incoming.id, sale.id, MatchMethod.MANUAL)

        assert sale.gross_total_cents == 12000
        assert sale.interest_cents == 1200

    def test_seller_interest_taken_from_sale_total_not_payment(self, recon, submit, make_sale):
        sale = make_sale(5000, interest_bearer=InterestBearer.SELLER)
        incoming = submit(12000, interest_cents=1200)

        recon.match(incoming.id, sale.id, MatchMethod.MANUAL)

        assert sale.gross_total_cents == 3800
        assert sale.absorbed_interest_cents == 1200

    @pytest.mark.parametrize("bearer", list(InterestBearer))
    def test_interest_above_sale_total_rejected(self, recon, submit, make_sale, bearer):
        sale = make_sale(5000, interest_bearer=bearer)
        incoming = submit(12000, interest_cents=6000)

        with pytest.raises(InvalidSaleStateError) as exc_info:
            recon.match(incoming.id, sale.id, MatchMethod.MANUAL)

        assert "interest 6000" in str(exc_info.value)
        assert sale.gross_total_cents == 5000
        assert sale.interest_cents == 0
        assert sale.status == SaleStatus.PENDING
        assert incoming.status == IncomingStatus.PENDING


class TestIgnore:

    def test_ignored_payment_cannot_be_matched(self, recon, submit, make_sale):
        sale = make_sale(10000)
        incoming = submit(10000)

        recon.ignore(incoming.id, "duplicate bank line", actor_id="ops-1")

        assert incoming.status == IncomingStatus.IGNORED
        assert incoming.ignore_reason == "duplicate bank line"
        with pytest.raises(IncomingTransactionStateError):
            recon.match(incoming.id, sale.id, MatchMethod.MANUAL)
