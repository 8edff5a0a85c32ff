"""
Tests for the Due-Date Change Tracker.

Covers:
- Append-only change history and per-installment counters
- Frequent-change flag at the third change
- Customer-level aggregate and review flag
- Paid installments frozen
- Risk classification table
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from billing_engines.due_dates import (
    apply_due_date_change,
    change_due_date,
    classify_risk,
    customer_change_flags,
)
from billing_engines.redistribution import record_installment_payment
from billing_engines.schedule import build_emi_plan
from billing_kernel.domain.invoice import RiskLevel
from billing_kernel.exceptions import InstallmentNotFoundError, InstallmentPaidError

CHANGED_AT = datetime(2024, 1, 20, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def plan():
    return build_emi_plan(Decimal("6000"), Decimal("0"), 6, date(2024, 2, 1))


class TestChangeDueDate:
    def test_records_previous_date(self, plan):
        inst = change_due_date(
            plan.schedule[0], date(2024, 2, 10), "salary delayed", "u-1", changed_at=CHANGED_AT
        )

        assert inst.due_date == date(2024, 2, 10)
        assert inst.due_date_change_count == 1
        change = inst.due_date_change_history[0]
        assert change.previous_due_date == date(2024, 2, 1)
        assert change.new_due_date == date(2024, 2, 10)
        assert change.reason == "salary delayed"
        assert change.changed_by == "u-1"
        assert not inst.has_frequent_due_date_changes

    def test_third_change_is_frequent(self, plan):
        inst = plan.schedule[0]
        for day in (5, 10, 15):
            inst = change_due_date(inst, date(2024, 2, day), changed_at=CHANGED_AT)

        assert inst.due_date_change_count == 3
        assert len(inst.due_date_change_history) == 3
        assert inst.has_frequent_due_date_changes
        assert [c.previous_due_date.day for c in inst.due_date_change_history] == [1, 5, 10]

    def test_paid_installment_is_frozen(self, plan):
        paid_plan = record_installment_payment(
            plan, 1, Decimal("1000"), paid_at=CHANGED_AT
        ).plan

        with pytest.raises(InstallmentPaidError) as exc_info:
            change_due_date(paid_plan.find(1), date(2024, 3, 1), changed_at=CHANGED_AT)
        assert exc_info.value.code == "INSTALLMENT_PAID"


class TestApplyDueDateChange:
    def test_customer_flags_aggregate_across_installments(self, plan):
        flags = None
        for number in (1, 2, 3, 4, 5):
            plan, flags = apply_due_date_change(
                plan, number, date(2024, 12, number), changed_at=CHANGED_AT
            )

        assert flags.total_changes == 5
        assert flags.has_frequent_changes
        assert flags.flagged_for_review
        assert flags.last_change_date == CHANGED_AT
        assert plan.find(3).due_date == date(2024, 12, 3)

    def test_below_thresholds(self, plan):
        plan, flags = apply_due_date_change(plan, 2, date(2024, 3, 9), changed_at=CHANGED_AT)

        assert flags.total_changes == 1
        assert not flags.has_frequent_changes
        assert not flags.flagged_for_review
        assert plan.find(2).due_date_change_count == 1
        assert plan.find(1).due_date_change_count == 0

    def test_unknown_installment(self, plan):
        with pytest.raises(InstallmentNotFoundError):
            apply_due_date_change(plan, 42, date(2024, 3, 9), changed_at=CHANGED_AT)

    def test_review_flag_logs_warning(self, plan, captured_logs):
        for _ in range(5):
            plan, _flags = apply_due_date_change(
                plan, 1, date(2024, 2, 20), changed_at=CHANGED_AT
            )

        levels = [r["level"] for r in captured_logs() if r["message"] == "installment_due_date_changed"]
        assert levels == ["INFO"] * 4 + ["WARNING"]

    def test_custom_thresholds(self, plan):
        _, flags = apply_due_date_change(
            plan,
            1,
            date(2024, 2, 3),
            changed_at=CHANGED_AT,
            frequent_threshold=1,
            review_threshold=1,
        )
        assert flags.has_frequent_changes and flags.flagged_for_review


class TestCustomerChangeFlags:
    def test_empty_schedule(self):
        flags = customer_change_flags((), None)
        assert flags.total_changes == 0
        assert not flags.flagged_for_review


class TestClassifyRisk:
    @pytest.mark.parametrize(
        "days, inst_changes, cust_changes, expected",
        [
            (-1, 3, 0, RiskLevel.CRITICAL),
            (-5, 0, 5, RiskLevel.CRITICAL),
            (-1, 0, 0, RiskLevel.HIGH),
            (10, 3, 0, RiskLevel.HIGH),
            (10, 0, 5, RiskLevel.HIGH),
            (1, 2, 0, RiskLevel.MEDIUM),
            (0, 0, 3, RiskLevel.MEDIUM),
            (2, 2, 0, RiskLevel.LOW),
            (1, 1, 2, RiskLevel.LOW),
            (30, 0, 0, RiskLevel.LOW),
        ],
    )
    def test_table(self, days, inst_changes, cust_changes, expected):
        assert classify_risk(days, inst_changes, cust_changes) is expected
