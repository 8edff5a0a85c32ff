"""
Tests for the payment and delivery state machine.

Covers:
- Legal and illegal payment-status transitions
- Side effects of paid / emi / finance / reset-to-pending
- Original payment category survives every transition
- Delivery scheduling, rescheduling and terminal delivered state
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from billing_engines.schedule import build_emi_plan
from billing_engines.status import (
    DELIVERY_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    mark_fully_paid,
    payment_category,
    transition_delivery_status,
    transition_payment_status,
)
from billing_kernel.domain.invoice import (
    DeliveryStatus,
    PaymentCategory,
    PaymentDetails,
    PaymentMethod,
    PaymentRecord,
    PaymentRecordType,
    PaymentStatus,
)
from billing_kernel.exceptions import InvalidStatusTransitionError, MissingFieldError

AT = datetime(2024, 1, 16, 15, 0, tzinfo=timezone.utc)


class TestTransitionTables:
    def test_pending_reaches_every_other_status(self):
        assert PAYMENT_TRANSITIONS[PaymentStatus.PENDING] == frozenset(PaymentStatus) - {
            PaymentStatus.PENDING
        }

    def test_delivered_is_terminal(self):
        assert DELIVERY_TRANSITIONS[DeliveryStatus.DELIVERED] == frozenset()


class TestPaymentCategory:
    @pytest.mark.parametrize(
        "status, method, expected",
        [
            (PaymentStatus.PENDING, None, PaymentCategory.CREDIT),
            (PaymentStatus.PAID, None, PaymentCategory.CASH),
            (PaymentStatus.PAID, PaymentMethod.UPI, PaymentCategory.UPI),
            (PaymentStatus.EMI, None, PaymentCategory.EMI),
            (PaymentStatus.FINANCE, None, PaymentCategory.FINANCE),
            (PaymentStatus.BANK_TRANSFER, None, PaymentCategory.BANK_TRANSFER),
        ],
    )
    def test_mapping(self, status, method, expected):
        assert payment_category(status, method) is expected


class TestPaymentTransitions:
    def test_pending_to_paid(self, make_invoice):
        invoice = transition_payment_status(make_invoice(), PaymentStatus.PAID, at=AT)

        assert invoice.payment_status is PaymentStatus.PAID
        assert invoice.fully_paid
        assert invoice.payment_date == AT
        assert invoice.payment_details.remaining_balance == Decimal("0.00")
        assert invoice.original_payment_category is PaymentCategory.CREDIT

    def test_pending_to_finance_keeps_down_payment(self, make_invoice):
        invoice = make_invoice(
            payment_details=PaymentDetails(
                down_payment=Decimal("2500.00"), remaining_balance=Decimal("7500.00")
            )
        )

        updated = transition_payment_status(invoice, PaymentStatus.FINANCE, at=AT)

        assert updated.payment_details.remaining_balance == Decimal("7500.00")
        assert not updated.fully_paid

    def test_pending_to_emi_requires_plan(self, make_invoice):
        with pytest.raises(MissingFieldError):
            transition_payment_status(make_invoice(), PaymentStatus.EMI, at=AT)

    def test_pending_to_emi(self, make_invoice):
        plan = build_emi_plan(Decimal("10000"), Decimal("1000"), 9, date(2024, 2, 15))

        updated = transition_payment_status(
            make_invoice(), PaymentStatus.EMI, at=AT, emi_plan=plan
        )

        assert updated.emi_details is plan
        assert updated.payment_details.down_payment == Decimal("1000.00")
        assert updated.payment_details.remaining_balance == Decimal("9000.00")

    def test_same_status_is_noop(self, make_invoice):
        invoice = make_invoice()
        assert transition_payment_status(invoice, PaymentStatus.PENDING, at=AT) is invoice

    def test_non_pending_cannot_jump_sideways(self, make_emi_invoice):
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            transition_payment_status(make_emi_invoice(), PaymentStatus.PAID, at=AT)
        assert exc_info.value.current == "emi"
        assert exc_info.value.target == "paid"

    def test_reset_to_pending_clears_everything(self, make_emi_invoice, captured_logs):
        invoice = make_emi_invoice(
            fully_paid=True,
            payment_date=AT,
            payment_details=PaymentDetails(
                down_payment=Decimal("2000.00"),
                payment_method=PaymentMethod.UPI,
                payment_history=(
                    PaymentRecord(
                        amount=Decimal("2000.00"),
                        method=PaymentMethod.UPI,
                        recorded_at=AT,
                        record_type=PaymentRecordType.EMI_DOWN_PAYMENT,
                    ),
                ),
            ),
        )

        updated = transition_payment_status(invoice, PaymentStatus.PENDING, at=AT, actor="u-2")

        assert updated.payment_status is PaymentStatus.PENDING
        assert updated.emi_details is None
        assert not updated.fully_paid
        assert updated.payment_date is None
        assert updated.payment_details.payment_history == ()
        assert updated.payment_details.down_payment == Decimal("0.00")
        assert updated.payment_details.remaining_balance == invoice.grand_total
        assert updated.payment_details.payment_method is PaymentMethod.UPI
        assert updated.original_payment_category is PaymentCategory.EMI

        reset = [r for r in captured_logs() if r["message"] == "payment_status_reset"]
        assert reset and reset[0]["level"] == "WARNING"
        assert reset[0]["cleared_payments"] == 1
        assert reset[0]["cleared_installments"] == 12


class TestMarkFullyPaid:
    def test_keeps_first_payment_date(self, make_invoice):
        invoice = mark_fully_paid(make_invoice(), AT)
        later = datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert mark_fully_paid(invoice, later).payment_date == AT


class TestDeliveryTransitions:
    def test_schedule_requires_date(self, make_invoice):
        with pytest.raises(MissingFieldError):
            transition_delivery_status(make_invoice(), DeliveryStatus.SCHEDULED, at=AT)

    def test_schedule_then_reschedule(self, make_invoice):
        invoice = transition_delivery_status(
            make_invoice(), DeliveryStatus.SCHEDULED, at=AT,
            scheduled_delivery_date=date(2024, 1, 20),
        )
        invoice = transition_delivery_status(
            invoice, DeliveryStatus.SCHEDULED, at=AT,
            scheduled_delivery_date=date(2024, 1, 25),
        )

        assert invoice.delivery_status is DeliveryStatus.SCHEDULED
        assert invoice.scheduled_delivery_date == date(2024, 1, 25)

    def test_deliver_stamps_date(self, make_invoice):
        invoice = transition_delivery_status(make_invoice(), DeliveryStatus.DELIVERED, at=AT)

        assert invoice.delivery_status is DeliveryStatus.DELIVERED
        assert invoice.delivery_date == AT

    def test_delivered_is_final(self, make_invoice):
        invoice = make_invoice(delivery_status=DeliveryStatus.DELIVERED)

        assert transition_delivery_status(invoice, DeliveryStatus.DELIVERED, at=AT) is invoice
        with pytest.raises(InvalidStatusTransitionError):
            transition_delivery_status(
                invoice, DeliveryStatus.SCHEDULED, at=AT,
                scheduled_delivery_date=date(2024, 2, 1),
            )

    def test_scheduled_cannot_return_to_pending(self, make_invoice):
        invoice = make_invoice(
            delivery_status=DeliveryStatus.SCHEDULED,
            scheduled_delivery_date=date(2024, 1, 20),
        )
        with pytest.raises(InvalidStatusTransitionError):
            transition_delivery_status(invoice, DeliveryStatus.PENDING, at=AT)
