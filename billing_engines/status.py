"""
Module: billing_engines.status
Responsibility:
    Payment/Delivery state machine. Governs which payment-status and
    delivery-status changes are legal and applies the side effects each
    transition carries (fully-paid flag, payment date, delivery date,
    destructive reset back to pending).

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - ``fully_paid`` never goes from True to False here except through the
      explicit reset to ``pending``.
    - ``original_payment_category`` is a creation-time snapshot and is never
      rewritten by a status change.
    - ``delivered`` is terminal.

Failure modes:
    - InvalidStatusTransitionError for a transition outside the tables below.
    - MissingFieldError when ``emi`` has no plan or ``scheduled`` has no date.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime

from billing_kernel.domain.invoice import (
    DeliveryStatus,
    EMIPlan,
    Invoice,
    PaymentCategory,
    PaymentDetails,
    PaymentMethod,
    PaymentStatus,
)
from billing_kernel.domain.money import ZERO
from billing_kernel.exceptions import InvalidStatusTransitionError, MissingFieldError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.status")

_ANY_PAYMENT = frozenset(PaymentStatus)

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: _ANY_PAYMENT - {PaymentStatus.PENDING},
    PaymentStatus.PAID: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.EMI: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.FINANCE: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.BANK_TRANSFER: frozenset({PaymentStatus.PENDING}),
}

DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset(
        {DeliveryStatus.SCHEDULED, DeliveryStatus.DELIVERED}
    ),
    DeliveryStatus.SCHEDULED: frozenset(
        {DeliveryStatus.SCHEDULED, DeliveryStatus.DELIVERED}
    ),
    DeliveryStatus.DELIVERED: frozenset(),
}


def payment_category(
    status: PaymentStatus, method: PaymentMethod | None = None
) -> PaymentCategory:
    """Reporting category for a payment status (and method, when paid)."""
    if status is PaymentStatus.PENDING:
        return PaymentCategory.CREDIT
    if status is PaymentStatus.PAID:
        return PaymentCategory((method or PaymentMethod.CASH).value)
    return PaymentCategory(status.value)


def mark_fully_paid(invoice: Invoice, at: datetime) -> Invoice:
    """Set ``fully_paid`` and stamp the payment date."""
    if invoice.fully_paid:
        return invoice
    return replace(invoice, fully_paid=True, payment_date=at)


def transition_payment_status(
    invoice: Invoice,
    target: PaymentStatus,
    *,
    at: datetime,
    emi_plan: EMIPlan | None = None,
    actor: str | None = None,
) -> Invoice:
    """
    Move ``invoice`` to payment status ``target``.

    pending -> any      the invoice takes the new payment arrangement
    any -> pending      destructive: payment history, balances, EMI plan and
                        fully-paid flag are cleared (logged for audit)
    same -> same        no-op
    """
    current = invoice.payment_status
    if target is current:
        return invoice
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidStatusTransitionError("payment", current.value, target.value)

    details = invoice.payment_details

    if target is PaymentStatus.PENDING:
        logger.warning(
            "payment_status_reset",
            extra={
                "invoice_id": invoice.id,
                "from_status": current.value,
                "actor_id": actor,
                "cleared_payments": len(details.payment_history),
                "cleared_installments": (
                    len(invoice.emi_details.schedule) if invoice.emi_details else 0
                ),
                "was_fully_paid": invoice.fully_paid,
            },
        )
        return replace(
            invoice,
            payment_status=PaymentStatus.PENDING,
            payment_details=PaymentDetails(
                remaining_balance=invoice.grand_total,
                payment_method=details.payment_method,
            ),
            emi_details=None,
            fully_paid=False,
            payment_date=None,
            updated_at=at,
        )

    if target is PaymentStatus.EMI:
        if emi_plan is None:
            raise MissingFieldError("emi_details", "required to move to emi")
        updated = replace(
            invoice,
            payment_status=target,
            emi_details=emi_plan,
            payment_details=replace(
                details,
                down_payment=emi_plan.down_payment,
                remaining_balance=emi_plan.total_remaining,
            ),
            updated_at=at,
        )
    elif target is PaymentStatus.PAID:
        updated = mark_fully_paid(
            replace(
                invoice,
                payment_status=target,
                payment_details=replace(details, remaining_balance=ZERO),
                updated_at=at,
            ),
            at,
        )
    else:
        updated = replace(
            invoice,
            payment_status=target,
            payment_details=replace(
                details,
                remaining_balance=max(
                    ZERO, invoice.grand_total - details.down_payment
                ),
            ),
            updated_at=at,
        )

    logger.info(
        "payment_status_changed",
        extra={
            "invoice_id": invoice.id,
            "from_status": current.value,
            "to_status": target.value,
            "actor_id": actor,
        },
    )
    return updated


def transition_delivery_status(
    invoice: Invoice,
    target: DeliveryStatus,
    *,
    at: datetime,
    scheduled_delivery_date: date | None = None,
) -> Invoice:
    """
    Move ``invoice`` to delivery status ``target``.

    pending -> scheduled           requires ``scheduled_delivery_date``
    scheduled -> scheduled         reschedule, requires a date
    pending|scheduled -> delivered stamps ``delivery_date``
    """
    current = invoice.delivery_status
    if target is current and target is not DeliveryStatus.SCHEDULED:
        return invoice
    if target not in DELIVERY_TRANSITIONS[current]:
        raise InvalidStatusTransitionError("delivery", current.value, target.value)

    if target is DeliveryStatus.SCHEDULED:
        if scheduled_delivery_date is None:
            raise MissingFieldError(
                "scheduled_delivery_date", "required to schedule a delivery"
            )
        updated = replace(
            invoice,
            delivery_status=target,
            scheduled_delivery_date=scheduled_delivery_date,
            updated_at=at,
        )
    else:
        updated = replace(
            invoice, delivery_status=target, delivery_date=at, updated_at=at
        )

    logger.info(
        "delivery_status_changed",
        extra={
            "invoice_id": invoice.id,
            "from_status": current.value,
            "to_status": target.value,
            "scheduled_delivery_date": (
                scheduled_delivery_date.isoformat() if scheduled_delivery_date else None
            ),
        },
    )
    return updated
