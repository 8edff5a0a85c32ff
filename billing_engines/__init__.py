"""
Module: billing_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines. This is the import surface for billing_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel (domain, exceptions, logging) and sibling
    engine modules. MUST NOT import billing_services.

Invariants enforced:
    - Purity: engines never read the clock. ``paid_at`` / ``at`` / ``as_of``
      are always passed in by the caller.
    - Decimal-only arithmetic, rounded to cents at each accumulation step.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from billing_engines import compute_totals, build_emi_plan
    from billing_engines import record_installment_payment, reconcile_invoice_edit
"""

from billing_engines.due_dates import (
    FREQUENT_CHANGE_THRESHOLD,
    REVIEW_THRESHOLD,
    apply_due_date_change,
    change_due_date,
    classify_risk,
    customer_change_flags,
)
from billing_engines.edit_reconciler import (
    EditOutcome,
    InvoiceChanges,
    reconcile_invoice_edit,
)
from billing_engines.gst import GSTCalculator, TaxFunction
from billing_engines.redistribution import (
    InstallmentPaymentOutcome,
    OverpaymentResult,
    RedistributionMode,
    ScheduleReconciliation,
    check_sum_invariant,
    reconcile_schedule,
    record_installment_payment,
    redistribute_overpayment,
    redistribute_shortfall,
    spread_evenly,
)
from billing_engines.sales_stats import CategoryStats, SalesStats, compute_sales_stats
from billing_engines.schedule import build_emi_plan, due_date_for, generate_schedule
from billing_engines.settlement import (
    EMISummary,
    PendingInstallment,
    emi_summary,
    installment_payment_history,
    pending_installments,
    record_additional_payment,
)
from billing_engines.status import (
    DELIVERY_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    mark_fully_paid,
    payment_category,
    transition_delivery_status,
    transition_payment_status,
)
from billing_engines.totals import InvoiceTotals, catalog_entries, compute_totals
from billing_engines.tracer import traced_engine

__all__ = [
    # due_dates
    "FREQUENT_CHANGE_THRESHOLD",
    "REVIEW_THRESHOLD",
    "apply_due_date_change",
    "change_due_date",
    "classify_risk",
    "customer_change_flags",
    # edit_reconciler
    "EditOutcome",
    "InvoiceChanges",
    "reconcile_invoice_edit",
    # gst
    "GSTCalculator",
    "TaxFunction",
    # redistribution
    "InstallmentPaymentOutcome",
    "OverpaymentResult",
    "RedistributionMode",
    "ScheduleReconciliation",
    "check_sum_invariant",
    "reconcile_schedule",
    "record_installment_payment",
    "redistribute_overpayment",
    "redistribute_shortfall",
    "spread_evenly",
    # sales_stats
    "CategoryStats",
    "SalesStats",
    "compute_sales_stats",
    # schedule
    "build_emi_plan",
    "due_date_for",
    "generate_schedule",
    # settlement
    "EMISummary",
    "PendingInstallment",
    "emi_summary",
    "installment_payment_history",
    "pending_installments",
    "record_additional_payment",
    # status
    "DELIVERY_TRANSITIONS",
    "PAYMENT_TRANSITIONS",
    "mark_fully_paid",
    "payment_category",
    "transition_delivery_status",
    "transition_payment_status",
    # totals
    "InvoiceTotals",
    "catalog_entries",
    "compute_totals",
    "traced_engine",
]
