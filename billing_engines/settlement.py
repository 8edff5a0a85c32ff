"""
Module: billing_engines.settlement
Responsibility:
    Money received outside the installment schedule, and read-only views of
    an EMI plan's progress:

    * additional payments against pending / finance / bank-transfer invoices,
    * the EMI summary (counts, amounts, percentage, next due installment),
    * the pending-installment list with due-date urgency flags,
    * the installment payment history.

Architecture position:
    Engines -- pure calculation layer, zero I/O. ``as_of`` and ``paid_at``
    are always arguments.

Failure modes:
    - InvalidAmountError: non-positive or non-numeric payment.
    - PaymentExceedsBalanceError: payment larger than the remaining balance.
    - ValidationError: additional payment on an EMI invoice.
    - ScheduleMissingError: EMI views on an invoice without a plan.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from billing_engines.status import mark_fully_paid
from billing_kernel.domain.invoice import (
    EMIPlan,
    Installment,
    Invoice,
    PaymentMethod,
    PaymentRecord,
    PaymentRecordType,
    PaymentStatus,
)
from billing_kernel.domain.money import ZERO, require_positive_amount
from billing_kernel.exceptions import (
    PaymentExceedsBalanceError,
    ScheduleMissingError,
    ValidationError,
)
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.settlement")

DUE_SOON_DAYS = 7


@dataclass(frozen=True)
class EMISummary:
    total_installments: int
    paid_installments: int
    pending_installments: int
    overdue_installments: int
    total_amount: Decimal
    down_payment: Decimal
    emi_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_percentage: int
    next_due_installment: Installment | None
    last_payment_date: datetime | None
    unapplied_credit: Decimal = ZERO


@dataclass(frozen=True)
class PendingInstallment:
    installment: Installment
    days_until_due: int

    @property
    def installment_number(self) -> int:
        return self.installment.installment_number

    @property
    def due_date(self) -> date:
        return self.installment.due_date

    @property
    def amount(self) -> Decimal:
        return self.installment.amount

    @property
    def is_overdue(self) -> bool:
        return self.days_until_due < 0

    @property
    def is_due_today(self) -> bool:
        return self.days_until_due == 0

    @property
    def is_due_soon(self) -> bool:
        return 0 < self.days_until_due <= DUE_SOON_DAYS


def _require_plan(invoice: Invoice) -> EMIPlan:
    if invoice.emi_details is None:
        raise ScheduleMissingError(invoice.id)
    return invoice.emi_details


def record_additional_payment(
    invoice: Invoice,
    amount: Decimal | str,
    *,
    method: PaymentMethod = PaymentMethod.CASH,
    reference: str = "",
    recorded_by: str | None = None,
    notes: str = "",
    paid_at: datetime,
) -> Invoice:
    """
    Apply a payment to a non-EMI invoice's remaining balance.

    The payment is appended to the payment history, ``down_payment`` (the
    cumulative amount received) grows and ``remaining_balance`` shrinks.
    When the balance reaches zero the invoice is marked fully paid; the
    payment status itself is left alone for reporting.
    """
    if invoice.is_emi:
        raise ValidationError(
            f"Invoice {invoice.id} is on EMI; record installment payments instead"
        )
    amount = require_positive_amount(amount, "amount")
    details = invoice.payment_details
    remaining = details.remaining_balance
    if amount > remaining:
        raise PaymentExceedsBalanceError(invoice.id, str(amount), str(remaining))

    record = PaymentRecord(
        amount=amount,
        method=method,
        recorded_at=paid_at,
        record_type=(
            PaymentRecordType.PENDING_PAYMENT
            if invoice.payment_status is PaymentStatus.PENDING
            else PaymentRecordType.ADDITIONAL_PAYMENT
        ),
        reference=reference,
        recorded_by=recorded_by,
        notes=notes,
    )
    new_remaining = remaining - amount
    updated = replace(
        invoice,
        payment_details=replace(
            details,
            down_payment=details.down_payment + amount,
            remaining_balance=new_remaining,
            payment_history=details.payment_history + (record,),
        ),
        updated_at=paid_at,
    )
    if new_remaining == ZERO:
        updated = mark_fully_paid(updated, paid_at)

    logger.info(
        "additional_payment_recorded",
        extra={
            "invoice_id": invoice.id,
            "amount": str(amount),
            "record_type": record.record_type.value,
            "remaining_balance": str(new_remaining),
            "fully_paid": updated.fully_paid,
        },
    )
    return updated


def emi_summary(invoice: Invoice, as_of: date) -> EMISummary:
    plan = _require_plan(invoice)
    unpaid = plan.unpaid_installments
    paid_amount = plan.down_payment + plan.installments_paid_sum
    total = plan.total_amount

    if total > 0:
        percentage = int(
            (paid_amount / total * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        )
    else:
        percentage = 0

    return EMISummary(
        total_installments=len(plan.schedule),
        paid_installments=len(plan.paid_installments),
        pending_installments=len(unpaid),
        overdue_installments=sum(1 for i in unpaid if i.due_date < as_of),
        total_amount=total,
        down_payment=plan.down_payment,
        emi_amount=plan.emi_amount,
        paid_amount=paid_amount,
        remaining_amount=max(ZERO, total - paid_amount),
        payment_percentage=percentage,
        next_due_installment=min(unpaid, key=lambda i: i.due_date, default=None),
        last_payment_date=plan.last_payment_date,
        unapplied_credit=plan.unapplied_credit,
    )


def pending_installments(invoice: Invoice, as_of: date) -> list[PendingInstallment]:
    """Unpaid installments with their distance from ``as_of``, by due date."""
    plan = _require_plan(invoice)
    pending = [
        PendingInstallment(installment=i, days_until_due=(i.due_date - as_of).days)
        for i in plan.unpaid_installments
    ]
    return sorted(pending, key=lambda p: (p.due_date, p.installment_number))


def installment_payment_history(invoice: Invoice) -> list[Installment]:
    """Paid installments that carry a payment record, most recent first."""
    plan = _require_plan(invoice)
    paid = [i for i in plan.paid_installments if i.payment_record is not None]
    return sorted(
        paid,
        key=lambda i: (i.payment_date or i.payment_record.recorded_at, i.installment_number),
        reverse=True,
    )
