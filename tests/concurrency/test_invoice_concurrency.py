"""
Concurrent writes to one invoice.

The invoice lock registry serialises read-modify-write cycles on the same
invoice, so concurrent payments never lose an update and an installment is
paid at most once. A file-backed SQLite database is used so every thread
gets its own connection.

Expected Behavior:
- N threads paying N different installments: all N applied, version N + 1
- N threads paying the same installment: exactly one wins, the rest get
  AlreadyPaidError and the balance is reduced once
- Two services that do not share a lock registry: the stale writer gets
  OptimisticLockError instead of overwriting
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy.orm import sessionmaker

from billing_kernel.db.engine import build_engine, create_tables
from billing_kernel.domain.invoice import PaymentStatus
from billing_kernel.exceptions import AlreadyPaidError, OptimisticLockError
from billing_services.hooks import HookDispatcher
from billing_services.invoice_service import EMITerms, InvoiceDraft, InvoiceService

pytestmark = [pytest.mark.slow_locks]

TENANT = "electronics"
THREADS = 6


@pytest.fixture
def file_session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'billing.db'}")
    create_tables(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def service(file_session_factory, settings, clock):
    return InvoiceService(
        file_session_factory, settings, clock, dispatcher=HookDispatcher(synchronous=True)
    )


@pytest.fixture
def emi_invoice(service, customer, make_item):
    return service.create_invoice(
        TENANT,
        InvoiceDraft(
            customer=customer,
            items=(make_item(rate=str(1000 * THREADS)),),
            include_gst=False,
            payment_status=PaymentStatus.EMI,
            emi_terms=EMITerms(THREADS, start_date=date(2024, 2, 1)),
        ),
    )


def _run_together(fn, args):
    barrier = Barrier(len(args))

    def call(arg):
        barrier.wait()
        try:
            return fn(arg)
        except Exception as exc:
            return exc

    with ThreadPoolExecutor(max_workers=len(args)) as pool:
        return list(pool.map(call, args))


class TestSameInvoice:
    def test_different_installments_all_applied(self, service, emi_invoice):
        results = _run_together(
            lambda n: service.record_installment_payment(TENANT, emi_invoice.id, n, "1000"),
            list(range(1, THREADS + 1)),
        )

        assert not [r for r in results if isinstance(r, Exception)]
        stored = service.get_invoice(TENANT, emi_invoice.id)
        assert stored.version == THREADS + 1
        assert stored.fully_paid
        assert stored.payment_details.remaining_balance == Decimal("0.00")
        assert all(i.paid for i in stored.emi_details.schedule)

    def test_same_installment_paid_once(self, service, emi_invoice):
        results = _run_together(
            lambda _: service.record_installment_payment(TENANT, emi_invoice.id, 1, "1000"),
            list(range(THREADS)),
        )

        wins = [r for r in results if not isinstance(r, Exception)]
        refusals = [r for r in results if isinstance(r, AlreadyPaidError)]
        assert len(wins) == 1
        assert len(refusals) == THREADS - 1

        stored = service.get_invoice(TENANT, emi_invoice.id)
        assert stored.version == 2
        assert stored.payment_details.remaining_balance == Decimal(1000 * (THREADS - 1))


class TestSeparateProcesses:
    def test_stale_writer_rejected(self, service, file_session_factory, settings, clock, emi_invoice):
        other = InvoiceService(
            file_session_factory, settings, clock, dispatcher=HookDispatcher(synchronous=True)
        )
        stale = service.get_invoice(TENANT, emi_invoice.id)
        service.record_installment_payment(TENANT, emi_invoice.id, 2, "1000")
        other._load = lambda store, tenant, invoice_id: stale

        with pytest.raises(OptimisticLockError):
            other.record_installment_payment(TENANT, emi_invoice.id, 1, "1000")

        stored = service.get_invoice(TENANT, emi_invoice.id)
        assert stored.emi_details.find(2).paid
        assert not stored.emi_details.find(1).paid
