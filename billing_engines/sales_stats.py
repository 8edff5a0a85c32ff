"""
Module: billing_engines.sales_stats
Responsibility:
    Dashboard figures for a tenant's invoices: counts per status, amounts
    billed and actually received, outstanding balance, today's sales and a
    breakdown by the payment category recorded at creation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Amount received per invoice follows ``Invoice.amount_paid``: the grand
total once paid (by status or ``fully_paid``), the down payment plus paid
installments on EMI, and the cumulative amount received otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable

from billing_kernel.domain.invoice import (
    DeliveryStatus,
    Invoice,
    PaymentCategory,
    PaymentStatus,
)
from billing_kernel.domain.money import ZERO


@dataclass(frozen=True)
class CategoryStats:
    count: int = 0
    total_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO


@dataclass(frozen=True)
class SalesStats:
    total_sales: int = 0
    total_amount: Decimal = ZERO
    total_amount_paid: Decimal = ZERO
    outstanding_amount: Decimal = ZERO
    today_sales: int = 0
    today_amount: Decimal = ZERO
    today_amount_paid: Decimal = ZERO
    pending_payments: int = 0
    pending_deliveries: int = 0
    paid_invoices: int = 0
    emi_invoices: int = 0
    finance_invoices: int = 0
    bank_transfer_invoices: int = 0
    by_category: dict[PaymentCategory, CategoryStats] = field(default_factory=dict)


def compute_sales_stats(invoices: Iterable[Invoice], today: date) -> SalesStats:
    counts = {
        "total_sales": 0,
        "today_sales": 0,
        "pending_payments": 0,
        "pending_deliveries": 0,
        "paid_invoices": 0,
        "emi_invoices": 0,
        "finance_invoices": 0,
        "bank_transfer_invoices": 0,
    }
    total_amount = total_paid = outstanding = ZERO
    today_amount = today_paid = ZERO
    by_category: dict[PaymentCategory, CategoryStats] = {}

    for invoice in invoices:
        billed = invoice.grand_total
        received = invoice.amount_paid
        status = invoice.payment_status

        counts["total_sales"] += 1
        total_amount += billed
        total_paid += received
        outstanding += max(ZERO, billed - received)

        if invoice.sale_date == today:
            counts["today_sales"] += 1
            today_amount += billed
            today_paid += received

        if status is PaymentStatus.PENDING:
            counts["pending_payments"] += 1
        if invoice.delivery_status is not DeliveryStatus.DELIVERED:
            counts["pending_deliveries"] += 1
        if status is PaymentStatus.PAID or invoice.fully_paid:
            counts["paid_invoices"] += 1
        if status is PaymentStatus.EMI:
            counts["emi_invoices"] += 1
        elif status is PaymentStatus.FINANCE:
            counts["finance_invoices"] += 1
        elif status is PaymentStatus.BANK_TRANSFER:
            counts["bank_transfer_invoices"] += 1

        current = by_category.get(invoice.original_payment_category, CategoryStats())
        by_category[invoice.original_payment_category] = CategoryStats(
            count=current.count + 1,
            total_amount=current.total_amount + billed,
            paid_amount=current.paid_amount + received,
        )

    return SalesStats(
        total_amount=total_amount,
        total_amount_paid=total_paid,
        outstanding_amount=outstanding,
        today_amount=today_amount,
        today_amount_paid=today_paid,
        by_category=by_category,
        **counts,
    )
