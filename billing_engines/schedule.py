"""
Module: billing_engines.schedule
Responsibility:
    Installment Schedule Generator. Turns the amount financed (grand total
    minus down payment) into an ordered list of monthly installments.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Installments are numbered 1..n; the first is due on ``start_date`` and
      each later one a calendar month after the previous (month-end dates
      clamp: Jan 31 -> Feb 29 -> Mar 31).
    - The nominal amount is ``round(emi_amount / n)``; the last installment
      absorbs the remainder so the schedule sums to ``emi_amount`` exactly.
    - Every generated installment is unpaid.

Failure modes:
    - ValidationError for fewer than one installment, a negative amount
      financed, or a down payment larger than the grand total.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from billing_engines.tracer import traced_engine
from billing_kernel.domain.invoice import EMIPlan, Installment
from billing_kernel.domain.money import (
    ZERO,
    require_non_negative_amount,
    round_money,
    split_evenly,
)
from billing_kernel.exceptions import ValidationError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.schedule")


def due_date_for(start_date: date, installment_number: int) -> date:
    """Due date of the n-th installment (1-based)."""
    return start_date + relativedelta(months=installment_number - 1)


@traced_engine(
    "schedule", "1.0", fingerprint_fields=("emi_amount", "number_of_installments")
)
def generate_schedule(
    emi_amount: Decimal,
    number_of_installments: int,
    start_date: date,
) -> tuple[Installment, ...]:
    """
    Build the installment list for ``emi_amount``.

        >>> [i.amount for i in generate_schedule(Decimal("100"), 3, date(2024, 1, 1))]
        [Decimal('33.33'), Decimal('33.33'), Decimal('33.34')]
    """
    if number_of_installments < 1:
        raise ValidationError(
            f"number_of_installments must be at least 1, got {number_of_installments}"
        )
    emi_amount = require_non_negative_amount(emi_amount, "emi_amount")

    amounts = split_evenly(emi_amount, number_of_installments)
    return tuple(
        Installment(
            installment_number=n,
            due_date=due_date_for(start_date, n),
            amount=amount,
        )
        for n, amount in enumerate(amounts, start=1)
    )


def build_emi_plan(
    grand_total: Decimal,
    down_payment: Decimal,
    number_of_installments: int,
    start_date: date,
    monthly_amount: Decimal | None = None,
) -> EMIPlan:
    """
    Create a fresh EMI plan for an invoice.

    ``monthly_amount`` is the nominal figure agreed with the customer; when
    omitted it is the schedule's nominal installment.
    """
    grand_total = round_money(grand_total)
    down_payment = require_non_negative_amount(down_payment, "down_payment")
    if down_payment > grand_total:
        raise ValidationError(
            f"Down payment {down_payment} exceeds invoice total {grand_total}"
        )

    emi_amount = grand_total - down_payment
    schedule = generate_schedule(
        emi_amount=emi_amount,
        number_of_installments=number_of_installments,
        start_date=start_date,
    )
    nominal = schedule[0].amount if schedule else ZERO

    logger.info(
        "emi_plan_built",
        extra={
            "grand_total": str(grand_total),
            "down_payment": str(down_payment),
            "emi_amount": str(emi_amount),
            "installments": number_of_installments,
            "start_date": start_date.isoformat(),
        },
    )
    return EMIPlan(
        monthly_amount=(
            round_money(monthly_amount) if monthly_amount is not None else nominal
        ),
        number_of_installments=number_of_installments,
        down_payment=down_payment,
        total_amount=grand_total,
        emi_amount=emi_amount,
        start_date=start_date,
        schedule=schedule,
        total_paid=down_payment,
        total_remaining=emi_amount,
    )
