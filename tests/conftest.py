"""
Pytest fixtures for the billing test suite.

Provides:
- In-memory SQLite engine (StaticPool) with every kernel table created
- Session factory / session fixtures
- Deterministic clock
- Structured log capture
- Builders for invoices, EMI invoices and line items
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy.orm import sessionmaker

from billing_config.schema import BillingSettings
from billing_engines.schedule import build_emi_plan
from billing_kernel.db.engine import build_engine, create_tables
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.invoice import (
    Customer,
    DeliveryStatus,
    Invoice,
    LineItem,
    PaymentCategory,
    PaymentDetails,
    PaymentMethod,
    PaymentStatus,
)
from billing_kernel.domain.money import ZERO
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_services.hooks import HookDispatcher
from billing_services.invoice_service import InvoiceService
from billing_services.product_catalog import ProductCatalog
from billing_services.stats_cache import StatsCache

TEST_NOW = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
TEST_TODAY = TEST_NOW.date()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for invoice locks"
    )


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
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            logs = captured_logs()
            assert any(r["message"] == "installment_payment_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Time and configuration
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def settings():
    return BillingSettings()


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """A session for kernel-level tests; rolled back afterwards."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def dispatcher():
    return HookDispatcher(synchronous=True)


@pytest.fixture
def catalog(session_factory, clock):
    return ProductCatalog(session_factory, clock)


@pytest.fixture
def stats_cache(clock, settings):
    return StatsCache(clock, settings.cache.ttl_seconds)


@pytest.fixture
def invoice_service(session_factory, settings, clock, dispatcher, catalog, stats_cache):
    return InvoiceService(
        session_factory,
        settings,
        clock,
        dispatcher=dispatcher,
        catalog=catalog,
        stats_cache=stats_cache,
    )


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def customer():
    return Customer(
        customer_id="cust-1",
        name="Asha Patel",
        phone="9800000001",
        address="12 Relief Road, Ahmedabad",
        state="Gujarat",
    )


@pytest.fixture
def make_item():
    """Build a LineItem from plain values."""

    def _make(name="LED TV", quantity="1", rate="10000", gst_slab=None, inclusive=False, hsn="8528"):
        return LineItem(
            name=name,
            quantity=Decimal(quantity),
            rate=Decimal(rate),
            hsn_code=hsn,
            gst_slab=None if gst_slab is None else Decimal(gst_slab),
            is_price_inclusive=inclusive,
        )

    return _make


@pytest.fixture
def make_invoice(customer):
    """Build an Invoice directly (no store), defaulting to a pending sale."""

    def _make(grand_total="10000.00", **overrides):
        total = Decimal(grand_total)
        fields = dict(
            id="inv-1",
            tenant="electronics",
            invoice_number="EL_GST_001",
            sale_date=TEST_TODAY,
            customer=customer,
            items=(),
            include_gst=False,
            subtotal=total,
            total_gst=ZERO,
            grand_total=total,
            payment_status=PaymentStatus.PENDING,
            delivery_status=DeliveryStatus.PENDING,
            original_payment_category=PaymentCategory.CREDIT,
            payment_details=PaymentDetails(
                remaining_balance=total, payment_method=PaymentMethod.CASH
            ),
            created_at=TEST_NOW,
            updated_at=TEST_NOW,
            version=1,
        )
        fields.update(overrides)
        return Invoice(**fields)

    return _make


@pytest.fixture
def make_emi_invoice(make_invoice):
    """Build an EMI invoice with a fresh plan."""

    def _make(
        grand_total="12000.00",
        installments=12,
        down_payment="0",
        start_date=date(2024, 2, 1),
        **overrides,
    ):
        plan = build_emi_plan(
            grand_total=Decimal(grand_total),
            down_payment=Decimal(down_payment),
            number_of_installments=installments,
            start_date=start_date,
        )
        fields = dict(
            payment_status=PaymentStatus.EMI,
            original_payment_category=PaymentCategory.EMI,
            emi_details=plan,
            payment_details=PaymentDetails(
                down_payment=plan.down_payment,
                remaining_balance=plan.total_remaining,
            ),
        )
        fields.update(overrides)
        return make_invoice(grand_total, **fields)

    return _make
