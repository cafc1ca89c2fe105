"""
Pytest fixtures for the escrow ledger test suite.

Provides:
- Structured logging capture
- A file-backed SQLite database per test (one connection per session, so
  the orchestrator's separate units behave like separate connections)
- Deterministic clock, default configuration and resolved fee schedule
- Sale factories

Environment Variables:
- ESCROW_TEST_DATABASE_URL: PostgreSQL URL for tests marked ``postgres``.
  Those tests are skipped when it is not set.

Timestamps are naive UTC throughout: SQLite returns naive datetimes.
"""

import json
import logging
import os
from datetime import datetime
from decimal import Decimal
from io import StringIO
from uuid import UUID

import pytest
from sqlalchemy.orm import Session, sessionmaker

from escrow_config import get_active_config, resolve_fee_schedule
from escrow_kernel.db.engine import build_engine, create_tables
from escrow_kernel.domain.clock import DeterministicClock
from escrow_kernel.domain.roles import InterestBearer, StakeholderRole
from escrow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from escrow_kernel.models.sale import Sale, SaleItem, SaleStatus, SplitAttribution

TENANT = "tenant-acme"
T0 = datetime(2024, 1, 10, 12, 0, 0)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture escrow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.on_payment_confirmed(sale_id)
            logs = captured_logs()
            assert any(r["message"] == "split_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("escrow_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """Single session for flush-only service tests; never committed."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(T0)


@pytest.fixture
def config():
    """Packaged default configuration: 4.99% + 100, 14-day hold."""
    return get_active_config()


@pytest.fixture
def schedule(config):
    return resolve_fee_schedule(config, TENANT)


def build_sale(
    gross_total_cents: int = 10000,
    *,
    tenant_id: str = TENANT,
    status: SaleStatus = SaleStatus.PENDING,
    interest_cents: int = 0,
    interest_bearer: InterestBearer = InterestBearer.BUYER,
    created_at: datetime = T0,
    payment_confirmed_at: datetime | None = None,
    customer_document: str | None = None,
    customer_email: str | None = None,
    items: tuple[tuple[str, int, int], ...] = (),
    attributions: tuple[tuple[StakeholderRole, str, int], ...] = (),
) -> Sale:
    """Unsaved sale; ``items`` are (product_id, qty, total), ``attributions``
    are (role, owner_ref, amount)."""
    sale = Sale(
        tenant_id=tenant_id,
        status=status,
        gross_total_cents=gross_total_cents,
        interest_cents=interest_cents,
        absorbed_interest_cents=0,
        currency="BRL",
        payment_method="credit_card" if interest_cents else "pix",
        installments=3 if interest_cents else 1,
        interest_bearer=interest_bearer,
        customer_document=customer_document,
        customer_email=customer_email,
        payment_confirmed_at=payment_confirmed_at,
        created_at=created_at,
        updated_at=created_at,
    )
    for product_id, qty, total in items:
        sale.items.append(SaleItem(product_id=product_id, quantity=qty, total_cents=total))
    for role, owner_ref, amount in attributions:
        sale.attributions.append(
            SplitAttribution(
                role=role,
                owner_ref=owner_ref,
                amount_cents=amount,
                percentage=Decimal(amount * 100) / Decimal(gross_total_cents),
            )
        )
    return sale


@pytest.fixture
def make_sale(session):
    """Flush a sale into the shared ``session`` and return it."""

    def _make(gross_total_cents: int = 10000, **kwargs) -> Sale:
        sale = build_sale(gross_total_cents, **kwargs)
        session.add(sale)
        session.flush()
        return sale

    return _make


@pytest.fixture
def make_confirmed_sale(make_sale, clock):
    """A sale already in ``payment_confirmed``, confirmed at the clock time."""

    def _make(gross_total_cents: int = 10000, **kwargs) -> Sale:
        kwargs.setdefault("payment_confirmed_at", clock.now())
        return make_sale(
            gross_total_cents, status=SaleStatus.PAYMENT_CONFIRMED, **kwargs,
        )

    return _make


@pytest.fixture
def create_sale(session_factory):
    """Commit a sale in its own session and return its id.

    For orchestrator tests, where every input opens its own unit.
    """

    def _create(gross_total_cents: int = 10000, **kwargs) -> UUID:
        s = session_factory()
        try:
            sale = build_sale(gross_total_cents, **kwargs)
            s.add(sale)
            s.commit()
            return sale.id
        finally:
            s.close()

    return _create


@pytest.fixture
def postgres_url() -> str:
    url = os.environ.get("ESCROW_TEST_DATABASE_URL")
    if not url:
        pytest.skip("ESCROW_TEST_DATABASE_URL not set")
    return url
