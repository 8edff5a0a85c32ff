"""
Module: billing_engines.redistribution
Responsibility:
    Installment Redistribution Algorithm. Keeps an EMI schedule consistent
    whenever money arrives or the amount financed changes:

    * a single installment payment (exact, short or over the due amount),
    * overpayment cascading onto the following unpaid installments,
    * shortfall spreading across the remaining unpaid installments,
    * edit-driven reconciliation when the invoice total changes.

Architecture position:
    Engines -- pure calculation layer, zero I/O. Functions take and return
    frozen ``EMIPlan`` / ``Installment`` values; ``paid_at`` is always an
    argument, never read from a clock.

Invariants enforced:
    - Sum: ``sum(unpaid.amount) + sum(paid.paid_amount) == emi_amount``
      after every call (the last unpaid installment absorbs rounding).
      The one exception is an edit that drops the total below what is
      already paid; the difference is returned as excess.
    - Paid installments are terminal: their amount, paid amount, payment
      date and payment record are copied through untouched.
    - The remaining balance is always derived from ``emi_amount`` minus
      what was paid, never from the current schedule amounts, so rounding
      drift cannot compound.
    - Overpayment beyond what the cascade can settle is never dropped: it
      is returned as ``excess``, accumulated in ``EMIPlan.unapplied_credit``
      and logged at WARNING for separate handling.

Failure modes:
    - InvalidAmountError: non-positive or non-numeric payment; short payment
      on the last unpaid installment.
    - InstallmentNotFoundError: unknown installment number.
    - AlreadyPaidError: the installment is already paid.
    - ScheduleClosedError: an edit raises the balance of a schedule that has
      no unpaid installment left.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Sequence

from billing_engines.tracer import traced_engine
from billing_kernel.domain.invoice import (
    EMIPlan,
    Installment,
    PaymentMethod,
    PaymentRecord,
    PaymentRecordType,
)
from billing_kernel.domain.money import (
    CENT,
    ZERO,
    money_sum,
    require_non_negative_amount,
    require_positive_amount,
    round_money,
    split_evenly,
    split_proportionally,
)
from billing_kernel.exceptions import (
    AlreadyPaidError,
    InstallmentNotFoundError,
    InvalidAmountError,
    ScheduleClosedError,
)
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.redistribution")


class RedistributionMode(str, Enum):
    """
    How a payment reshapes the unpaid tail.

    EVEN resplits the whole remaining balance uniformly on every payment.
    PROPORTIONAL leaves untouched installments alone and spreads only a
    shortfall, weighted by each unpaid installment's current amount.
    """

    EVEN = "even"
    PROPORTIONAL = "proportional"


@dataclass(frozen=True)
class OverpaymentResult:
    schedule: tuple[Installment, ...]
    cascaded: tuple[int, ...]
    excess: Decimal


@dataclass(frozen=True)
class InstallmentPaymentOutcome:
    plan: EMIPlan
    fully_paid: bool
    cascaded: tuple[int, ...] = ()
    excess: Decimal = ZERO
    shortfall: Decimal = ZERO


@dataclass(frozen=True)
class ScheduleReconciliation:
    plan: EMIPlan
    excess: Decimal = ZERO


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


def _unpaid_count(schedule: Sequence[Installment]) -> int:
    return sum(1 for inst in schedule if not inst.paid)


def paid_sum(schedule: Sequence[Installment]) -> Decimal:
    return money_sum(inst.paid_amount for inst in schedule if inst.paid)


def spread_evenly(
    schedule: Sequence[Installment], remaining: Decimal
) -> tuple[Installment, ...]:
    """
    Rewrite the unpaid installments so they share ``remaining`` evenly.

    Each unpaid slot gets ``round(remaining / count)`` and the last unpaid
    slot in schedule order gets the remainder. A non-positive ``remaining``
    zeroes every unpaid slot. Paid installments are returned as-is.
    """
    count = _unpaid_count(schedule)
    if count == 0:
        return tuple(schedule)

    if remaining <= 0:
        shares = iter([ZERO] * count)
    else:
        shares = iter(split_evenly(remaining, count))

    return tuple(
        inst if inst.paid else replace(inst, amount=next(shares))
        for inst in schedule
    )


def redistribute_shortfall(
    schedule: Sequence[Installment], shortfall: Decimal
) -> tuple[Installment, ...]:
    """
    Add ``shortfall`` to the unpaid installments in proportion to their
    current amounts; the last unpaid installment absorbs rounding.
    """
    unpaid = [inst for inst in schedule if not inst.paid]
    if not unpaid or shortfall == 0:
        return tuple(schedule)

    extra = iter(split_proportionally(shortfall, [inst.amount for inst in unpaid]))
    return tuple(
        inst if inst.paid else replace(inst, amount=inst.amount + next(extra))
        for inst in schedule
    )


def redistribute_overpayment(
    schedule: Sequence[Installment],
    from_installment: int,
    overpayment: Decimal,
    *,
    paid_at: datetime,
    record: PaymentRecord,
) -> OverpaymentResult:
    """
    Cascade ``overpayment`` onto the unpaid installments after
    ``from_installment``.

    Walking forward in schedule order, each unpaid installment whose full
    amount is covered is marked paid (``applied_from_overpayment``). The
    walk stops at the first installment only partly covered; whatever is
    left at that point is returned as ``excess``.
    """
    remaining = round_money(overpayment)
    cascaded: list[int] = []
    result: list[Installment] = []
    walking = True

    for inst in schedule:
        if (
            walking
            and not inst.paid
            and inst.installment_number > from_installment
            and remaining > 0
        ):
            if remaining >= inst.amount:
                remaining -= inst.amount
                cascaded.append(inst.installment_number)
                inst = replace(
                    inst,
                    paid=True,
                    paid_amount=inst.amount,
                    payment_date=paid_at,
                    applied_from_overpayment=True,
                    payment_record=replace(
                        record,
                        amount=inst.amount,
                        record_type=PaymentRecordType.OVERPAYMENT_CASCADE,
                        installment_number=inst.installment_number,
                        notes=(
                            "Auto-adjusted from overpayment of installment "
                            f"{from_installment}"
                        ),
                    ),
                )
            else:
                walking = False
        result.append(inst)

    return OverpaymentResult(
        schedule=tuple(result), cascaded=tuple(cascaded), excess=remaining
    )


def check_sum_invariant(plan: EMIPlan) -> Decimal:
    """
    Signed drift between the schedule and the amount financed.

    ``sum(unpaid.amount) + sum(paid.paid_amount) - emi_amount``; zero for
    every consistent plan.
    """
    settled = money_sum(inst.settled_amount for inst in plan.schedule)
    return settled - plan.emi_amount


def _refresh_totals(
    plan: EMIPlan, schedule: tuple[Installment, ...], **changes
) -> EMIPlan:
    installments_paid = paid_sum(schedule)
    unpaid_total = money_sum(inst.amount for inst in schedule if not inst.paid)
    down_payment = changes.get("down_payment", plan.down_payment)
    return replace(
        plan,
        schedule=schedule,
        total_paid=down_payment + installments_paid,
        total_remaining=unpaid_total,
        **changes,
    )


def _verify(plan: EMIPlan, context: str) -> None:
    drift = check_sum_invariant(plan)
    if abs(drift) > CENT:
        logger.error(
            "schedule_sum_drift",
            extra={
                "context": context,
                "drift": str(drift),
                "emi_amount": str(plan.emi_amount),
            },
        )


# ---------------------------------------------------------------------------
# Single-payment redistribution
# ---------------------------------------------------------------------------


@traced_engine(
    "installment_payment", "1.0", fingerprint_fields=("installment_number", "amount")
)
def record_installment_payment(
    plan: EMIPlan,
    installment_number: int,
    amount: Decimal | str,
    *,
    method: PaymentMethod = PaymentMethod.CASH,
    reference: str = "",
    recorded_by: str | None = None,
    notes: str = "",
    paid_at: datetime,
    mode: RedistributionMode = RedistributionMode.EVEN,
) -> InstallmentPaymentOutcome:
    """
    Mark one installment paid and rebalance the rest of the schedule.

    Exact payment:
        The installment is paid; the unpaid tail is resplit.
    Overpayment:
        The installment records its due amount as paid and the surplus
        cascades forward (see ``redistribute_overpayment``).
    Short payment:
        The installment is closed at the amount received and the shortfall
        moves to the remaining unpaid installments.

    In EVEN mode the unpaid tail is always recomputed as
    ``emi_amount - paid`` split evenly. When nothing is left unpaid the
    outcome reports ``fully_paid``; payment status is not touched here.

    Raises:
        InvalidAmountError, InstallmentNotFoundError, AlreadyPaidError
    """
    amount = require_positive_amount(amount, "amount")
    target = plan.find(installment_number)
    if target is None:
        raise InstallmentNotFoundError(installment_number)
    if target.paid:
        raise AlreadyPaidError(installment_number)

    due = target.amount
    others_unpaid = _unpaid_count(plan.schedule) - 1
    if amount < due and others_unpaid == 0:
        raise InvalidAmountError(
            "amount",
            amount,
            f"must cover the final installment's due amount {due}",
        )

    record = PaymentRecord(
        amount=amount,
        method=method,
        recorded_at=paid_at,
        record_type=PaymentRecordType.INSTALLMENT,
        reference=reference,
        recorded_by=recorded_by,
        notes=notes,
        installment_number=installment_number,
    )
    settled_amount = min(amount, due)
    schedule = tuple(
        replace(
            inst,
            paid=True,
            paid_amount=settled_amount,
            payment_date=paid_at,
            payment_record=record,
        )
        if inst.installment_number == installment_number
        else inst
        for inst in plan.schedule
    )

    cascaded: tuple[int, ...] = ()
    excess = ZERO
    shortfall = ZERO
    if amount > due:
        overflow = redistribute_overpayment(
            schedule,
            installment_number,
            amount - due,
            paid_at=paid_at,
            record=record,
        )
        schedule, cascaded, excess = overflow.schedule, overflow.cascaded, overflow.excess
    elif amount < due:
        shortfall = due - amount
        if mode is RedistributionMode.PROPORTIONAL:
            schedule = redistribute_shortfall(schedule, shortfall)

    if mode is RedistributionMode.EVEN:
        schedule = spread_evenly(schedule, plan.emi_amount - paid_sum(schedule))

    updated = _refresh_totals(
        plan,
        schedule,
        last_payment_date=paid_at,
        unapplied_credit=plan.unapplied_credit + excess,
    )
    _verify(updated, "installment_payment")

    fully_paid = updated.is_fully_paid
    logger.info(
        "installment_payment_recorded",
        extra={
            "installment_number": installment_number,
            "amount": str(amount),
            "due": str(due),
            "mode": mode.value,
            "cascaded": list(cascaded),
            "shortfall": str(shortfall),
            "total_remaining": str(updated.total_remaining),
            "fully_paid": fully_paid,
        },
    )
    if excess > 0:
        logger.warning(
            "overpayment_excess_unapplied",
            extra={
                "installment_number": installment_number,
                "excess": str(excess),
                "unapplied_credit": str(updated.unapplied_credit),
            },
        )

    return InstallmentPaymentOutcome(
        plan=updated,
        fully_paid=fully_paid,
        cascaded=cascaded,
        excess=excess,
        shortfall=shortfall,
    )


# ---------------------------------------------------------------------------
# Edit-driven reconciliation
# ---------------------------------------------------------------------------


@traced_engine("schedule_reconciliation", "1.0", fingerprint_fields=("new_total",))
def reconcile_schedule(
    plan: EMIPlan,
    new_total: Decimal,
    down_payment: Decimal | None = None,
    *,
    invoice_id: str = "",
) -> ScheduleReconciliation:
    """
    Refit the unpaid tail to a new invoice total (and optionally a new
    down payment).

    ``new_remaining = (new_total - down_payment) - sum(paid_amount)`` is
    spread evenly over the unpaid installments. Paid installments are
    copied through untouched. A negative remainder zeroes the unpaid tail
    and is returned as ``excess``.

    Raises:
        ScheduleClosedError: a positive remainder but no unpaid installment.
    """
    new_total = round_money(new_total)
    down = (
        plan.down_payment
        if down_payment is None
        else require_non_negative_amount(down_payment, "down_payment")
    )
    new_emi_amount = new_total - down
    new_remaining = new_emi_amount - paid_sum(plan.schedule)

    if _unpaid_count(plan.schedule) == 0 and new_remaining > 0:
        raise ScheduleClosedError(invoice_id, str(new_remaining))

    schedule = spread_evenly(plan.schedule, new_remaining)
    excess = -new_remaining if new_remaining < 0 else ZERO

    updated = _refresh_totals(
        plan,
        schedule,
        total_amount=new_total,
        emi_amount=new_emi_amount,
        down_payment=down,
    )
    if excess == 0:
        _verify(updated, "schedule_reconciliation")
    else:
        logger.warning(
            "edit_excess_unapplied",
            extra={
                "invoice_id": invoice_id,
                "excess": str(excess),
                "new_total": str(new_total),
            },
        )

    logger.info(
        "schedule_reconciled",
        extra={
            "invoice_id": invoice_id,
            "old_emi_amount": str(plan.emi_amount),
            "new_emi_amount": str(new_emi_amount),
            "unpaid": _unpaid_count(schedule),
            "total_remaining": str(updated.total_remaining),
        },
    )
    return ScheduleReconciliation(plan=updated, excess=excess)
