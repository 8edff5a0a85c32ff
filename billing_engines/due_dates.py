"""
Module: billing_engines.due_dates
Responsibility:
    Due-Date Change Tracker. Records every due-date edit on an installment,
    keeps a per-invoice (customer-level) aggregate of how often the customer
    has asked for new dates, and classifies collection risk for reminders.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Change history is append-only; ``due_date_change_count`` always equals
      the history length.
    - Paid installments are frozen: their due date never changes.

Failure modes:
    - InstallmentPaidError when the installment is already paid.
    - InstallmentNotFoundError for an unknown installment number.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from typing import Sequence

from billing_kernel.domain.invoice import (
    CustomerDueDateFlags,
    DueDateChange,
    EMIPlan,
    Installment,
    RiskLevel,
)
from billing_kernel.exceptions import InstallmentNotFoundError, InstallmentPaidError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.due_dates")

FREQUENT_CHANGE_THRESHOLD = 3
REVIEW_THRESHOLD = 5


def change_due_date(
    installment: Installment,
    new_date: date,
    reason: str = "",
    actor: str | None = None,
    *,
    changed_at: datetime,
    frequent_threshold: int = FREQUENT_CHANGE_THRESHOLD,
) -> Installment:
    """Move one unpaid installment to ``new_date`` and record the change."""
    if installment.paid:
        raise InstallmentPaidError(installment.installment_number)

    change = DueDateChange(
        previous_due_date=installment.due_date,
        new_due_date=new_date,
        changed_at=changed_at,
        reason=reason,
        changed_by=actor,
    )
    history = installment.due_date_change_history + (change,)
    return replace(
        installment,
        due_date=new_date,
        due_date_change_history=history,
        due_date_change_count=len(history),
        has_frequent_due_date_changes=len(history) >= frequent_threshold,
    )


def customer_change_flags(
    schedule: Sequence[Installment],
    changed_at: datetime | None,
    *,
    frequent_threshold: int = FREQUENT_CHANGE_THRESHOLD,
    review_threshold: int = REVIEW_THRESHOLD,
) -> CustomerDueDateFlags:
    """Aggregate change counts across every installment of the invoice."""
    total = sum(len(inst.due_date_change_history) for inst in schedule)
    return CustomerDueDateFlags(
        total_changes=total,
        has_frequent_changes=total >= frequent_threshold,
        flagged_for_review=total >= review_threshold,
        last_change_date=changed_at,
    )


def apply_due_date_change(
    plan: EMIPlan,
    installment_number: int,
    new_date: date,
    *,
    reason: str = "",
    actor: str | None = None,
    changed_at: datetime,
    frequent_threshold: int = FREQUENT_CHANGE_THRESHOLD,
    review_threshold: int = REVIEW_THRESHOLD,
) -> tuple[EMIPlan, CustomerDueDateFlags]:
    """
    Change one installment's due date inside ``plan``.

    Returns the updated plan and the recomputed customer-level flags.
    """
    target = plan.find(installment_number)
    if target is None:
        raise InstallmentNotFoundError(installment_number)

    updated = change_due_date(
        target,
        new_date,
        reason,
        actor,
        changed_at=changed_at,
        frequent_threshold=frequent_threshold,
    )
    schedule = tuple(
        updated if inst.installment_number == installment_number else inst
        for inst in plan.schedule
    )
    flags = customer_change_flags(
        schedule,
        changed_at,
        frequent_threshold=frequent_threshold,
        review_threshold=review_threshold,
    )

    log = logger.warning if flags.flagged_for_review else logger.info
    log(
        "installment_due_date_changed",
        extra={
            "installment_number": installment_number,
            "previous_due_date": target.due_date.isoformat(),
            "new_due_date": new_date.isoformat(),
            "installment_changes": updated.due_date_change_count,
            "customer_changes": flags.total_changes,
            "flagged_for_review": flags.flagged_for_review,
        },
    )
    return replace(plan, schedule=schedule), flags


def classify_risk(
    days_until_due: int,
    installment_changes: int,
    customer_changes: int,
    *,
    frequent_threshold: int = FREQUENT_CHANGE_THRESHOLD,
    review_threshold: int = REVIEW_THRESHOLD,
) -> RiskLevel:
    """
    Collection risk of one unpaid installment.

    critical  overdue and (installment changes >= 3 or customer changes >= 5)
    high      overdue, or installment changes >= 3, or customer changes >= 5
    medium    due within a day and (installment changes >= 2 or
              customer changes >= 3)
    low       everything else
    """
    overdue = days_until_due < 0
    churned = (
        installment_changes >= frequent_threshold
        or customer_changes >= review_threshold
    )
    if overdue and churned:
        return RiskLevel.CRITICAL
    if overdue or churned:
        return RiskLevel.HIGH
    if 0 <= days_until_due <= 1 and (
        installment_changes >= frequent_threshold - 1
        or customer_changes >= frequent_threshold
    ):
        return RiskLevel.MEDIUM
    return RiskLevel.LOW
