"""
Tests for the EMI and delivery reminder job.

Covers:
- Overdue / upcoming EMI notifications and delivery reminders
- Deterministic keys: re-running never duplicates
- Notifications follow installment amount and due-date changes
- Cleanup of paid installments and delivered orders
- Cooldown and in-flight skips
- Priority escalation from collection risk
- Best-effort writes: failures are counted, not raised
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from billing_engines.edit_reconciler import InvoiceChanges
from billing_kernel.db.engine import session_scope
from billing_kernel.domain.invoice import (
    CustomerDueDateFlags,
    DeliveryStatus,
    PaymentStatus,
)
from billing_kernel.services.document_store import DocumentStore
from billing_services.invoice_service import EMITerms, InvoiceDraft
from billing_services.notification_service import (
    NotificationGenerator,
    build_emi_notification,
    delivery_notification_key,
    emi_notification_key,
    upcoming_notification_key,
)

TENANT = "electronics"
COOLDOWN = 10


@pytest.fixture
def generator(session_factory, settings, clock):
    return NotificationGenerator(session_factory, settings, clock)


@pytest.fixture
def notifications(session_factory, clock):
    """Read back the stored notifications as {key: body}."""

    def _read():
        with session_scope(session_factory) as s:
            records = DocumentStore(s, clock).query(TENANT, "notifications")
        return {r.document_id: r.data for r in records}

    return _read


@pytest.fixture
def emi_sale(invoice_service, customer, make_item):
    def _create(start: date, installments: int = 3):
        return invoice_service.create_invoice(
            TENANT,
            InvoiceDraft(
                customer=customer,
                items=(make_item(rate=str(1000 * installments)),),
                include_gst=False,
                payment_status=PaymentStatus.EMI,
                emi_terms=EMITerms(installments, start_date=start),
            ),
        )

    return _create


@pytest.fixture
def scheduled_sale(invoice_service, customer, make_item):
    def _create(on: date):
        return invoice_service.create_invoice(
            TENANT,
            InvoiceDraft(
                customer=customer,
                items=(make_item("Sofa", rate="30000"),),
                delivery_status=DeliveryStatus.SCHEDULED,
                scheduled_delivery_date=on,
            ),
        )

    return _create


class TestGenerateAll:
    def test_overdue_installment(self, generator, emi_sale, notifications):
        invoice = emi_sale(date(2024, 1, 10))

        result = generator.generate_all(TENANT, "u-1")

        assert result.emi_created == 1
        assert result.upcoming_created == 0
        body = notifications()[emi_notification_key(invoice.id, 1)]
        assert body["title"] == "EMI Payment Overdue"
        assert body["message"] == "EMI payment of ₹1,000.00 is 5 days overdue for Asha Patel"
        assert body["priority"] == "high"
        assert body["data"]["urgencyLevel"] == "overdue"
        assert body["data"]["daysDiff"] == 5
        assert body["userId"] == "u-1"

    def test_upcoming_reminder_when_nothing_due_soon(self, generator, emi_sale, notifications):
        invoice = emi_sale(date(2024, 2, 1))

        result = generator.generate_all(TENANT, "u-1")

        assert result.emi_created == 0
        assert result.upcoming_created == 1
        body = notifications()[upcoming_notification_key(invoice.id, 1)]
        assert body["priority"] == "low"
        assert body["data"]["daysDiff"] == 17

    def test_nothing_beyond_horizon(self, generator, emi_sale, notifications):
        emi_sale(date(2024, 3, 1))

        assert generator.generate_all(TENANT, "u-1").total == 0
        assert notifications() == {}

    def test_scheduled_delivery(self, generator, scheduled_sale, notifications):
        invoice = scheduled_sale(date(2024, 1, 17))

        result = generator.generate_all(TENANT, "u-1")

        assert result.delivery_created == 1
        body = notifications()[delivery_notification_key(invoice.id, date(2024, 1, 17))]
        assert body["title"] == "Delivery Due Soon"
        assert body["message"] == "Delivery scheduled in 2 days for Asha Patel"
        assert body["data"]["orderNumber"] == invoice.invoice_number

    def test_rerun_does_not_duplicate(self, generator, emi_sale, scheduled_sale, clock, notifications):
        emi_sale(date(2024, 1, 10))
        scheduled_sale(date(2024, 1, 15))
        first = generator.generate_all(TENANT, "u-1")

        clock.advance(COOLDOWN)
        second = generator.generate_all(TENANT, "u-1")

        assert first.total == 2
        assert second.total == 0
        assert len(notifications()) == 2

    def test_paid_and_delivered_are_cleaned(
        self, generator, invoice_service, emi_sale, scheduled_sale, clock, notifications
    ):
        invoice = emi_sale(date(2024, 1, 10))
        order = scheduled_sale(date(2024, 1, 16))
        generator.generate_all(TENANT, "u-1")

        invoice_service.record_installment_payment(TENANT, invoice.id, 1, "1000")
        invoice_service.update_delivery_status(TENANT, order.id, DeliveryStatus.DELIVERED)
        clock.advance(COOLDOWN)
        result = generator.generate_all(TENANT, "u-1")

        assert result.emi_deleted == 1
        assert result.delivered_cleaned == 1
        assert result.upcoming_created == 1
        assert set(notifications()) == {upcoming_notification_key(invoice.id, 2)}


class TestRefresh:
    def test_due_date_change_rewrites_notification(
        self, generator, invoice_service, emi_sale, session_factory, clock, notifications
    ):
        invoice = emi_sale(date(2024, 1, 10))
        key = emi_notification_key(invoice.id, 1)
        generator.generate_all(TENANT, "u-1")
        created_at = notifications()[key]["createdAt"]
        with session_scope(session_factory) as s:
            DocumentStore(s, clock).update(TENANT, "notifications", key, {"read": True})

        invoice_service.change_due_date(TENANT, invoice.id, 1, date(2024, 1, 18), "salary delayed")
        clock.advance(COOLDOWN)
        result = generator.generate_all(TENANT, "u-1")

        assert result.emi_refreshed == 1
        assert result.emi_created == 0
        body = notifications()[key]
        assert body["data"]["dueDate"] == "2024-01-18"
        assert body["title"] == "EMI Payment Due Soon"
        assert body["read"] is True
        assert body["createdAt"] == created_at

    def test_edit_that_resizes_installments_rewrites_amount(
        self, generator, invoice_service, emi_sale, make_item, clock, notifications
    ):
        invoice = emi_sale(date(2024, 1, 10))
        generator.generate_all(TENANT, "u-1")

        invoice_service.update_invoice(
            TENANT, invoice.id, InvoiceChanges(items=(make_item(rate="1500"),))
        )
        clock.advance(COOLDOWN)
        result = generator.generate_all(TENANT, "u-1")

        assert result.emi_refreshed == 1
        body = notifications()[emi_notification_key(invoice.id, 1)]
        assert body["data"]["amount"] == "500.00"
        assert body["message"] == "EMI payment of ₹500.00 is 5 days overdue for Asha Patel"

    def test_unchanged_installment_is_left_alone(self, generator, emi_sale, clock):
        emi_sale(date(2024, 1, 10))
        generator.generate_all(TENANT, "u-1")

        clock.advance(COOLDOWN)
        assert generator.generate_all(TENANT, "u-1").emi_refreshed == 0


class TestSkips:
    def test_cooldown(self, generator, clock, captured_logs):
        assert not generator.generate_all(TENANT, "u-1").skipped

        clock.advance(COOLDOWN - 1)
        assert generator.generate_all(TENANT, "u-1").skipped

        clock.advance(1)
        assert not generator.generate_all(TENANT, "u-1").skipped

        skips = [r for r in captured_logs() if r["message"] == "notification_run_skipped"]
        assert [r["reason"] for r in skips] == ["cooldown"]

    def test_in_flight(self, generator):
        generator._in_flight.acquire()
        try:
            assert generator.generate_all(TENANT, "u-1").skipped
        finally:
            generator._in_flight.release()


class TestWriteFailures:
    def test_failures_are_counted_and_logged(
        self, generator, emi_sale, monkeypatch, captured_logs, notifications
    ):
        emi_sale(date(2024, 1, 10))
        emi_sale(date(2024, 1, 12))

        def boom(self, *args, **kwargs):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(DocumentStore, "create", boom)
        result = generator.generate_all(TENANT, "u-1")

        assert result.failures == 2
        assert result.emi_created == 0
        failures = [r for r in captured_logs() if r["message"] == "notification_write_failed"]
        assert len(failures) == 2
        monkeypatch.undo()
        assert notifications() == {}


class TestPriority:
    """Base priority is raised, never lowered, by collection risk."""

    def _body(self, make_emi_invoice, days, changes=0, customer_changes=0):
        invoice = make_emi_invoice(
            customer_due_date_flags=CustomerDueDateFlags(total_changes=customer_changes)
        )
        inst = replace(invoice.emi_details.schedule[0], due_date_change_count=changes)
        return build_emi_notification(invoice, inst, days, "u-1")

    def test_plain_upcoming(self, make_emi_invoice):
        body = self._body(make_emi_invoice, 5)
        assert body["priority"] == "medium"
        assert body["data"]["riskLevel"] == "low"

    def test_frequently_moved_installment(self, make_emi_invoice):
        body = self._body(make_emi_invoice, 5, changes=3)
        assert body["priority"] == "high"

    def test_overdue_with_churned_customer(self, make_emi_invoice):
        body = self._body(make_emi_invoice, -2, customer_changes=5)
        assert body["priority"] == "critical"
        assert body["title"] == "EMI Payment Overdue"

    def test_due_today(self, make_emi_invoice):
        body = self._body(make_emi_invoice, 0)
        assert body["title"] == "EMI Payment Due Today"
        assert body["data"]["amount"] == str(Decimal("1000.00"))
