"""
Module: billing_engines.edit_reconciler
Responsibility:
    Invoice Edit Reconciler. Applies a user edit to an existing invoice and
    brings every derived figure back in line: totals when items, bulk
    pricing, GST applicability or the customer's state change; the unpaid
    EMI tail when the amount financed changes; the remaining balance and
    fully-paid flag for every invoice.

Architecture position:
    Engines -- pure calculation layer, zero I/O. Orchestrates
    ``billing_engines.totals`` and ``billing_engines.redistribution``.

Invariants enforced:
    - ``invoice_number`` never changes; a different number in the edit is
      ignored and logged.
    - Paid installments are carried through untouched.
    - Customer due-date change flags survive every edit.
    - ``fully_paid`` is reopened only when the edit leaves a balance due.

Failure modes:
    - InvalidAmountError for a negative down payment.
    - ScheduleClosedError when a fully-settled schedule would need more money.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal

from billing_engines.gst import TaxFunction
from billing_engines.redistribution import reconcile_schedule
from billing_engines.status import mark_fully_paid
from billing_engines.totals import catalog_entries, compute_totals
from billing_kernel.domain.invoice import (
    BulkPricing,
    Customer,
    Invoice,
    LineItem,
    PaymentDetails,
    PaymentMethod,
    PaymentRecord,
    PaymentRecordType,
    PaymentStatus,
)
from billing_kernel.domain.money import ZERO, require_non_negative_amount
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.edit_reconciler")


@dataclass(frozen=True)
class InvoiceChanges:
    """
    A partial edit. ``None`` means "leave as is".

    ``invoice_number`` is accepted so callers can pass a whole form back,
    but it is never applied.
    """

    items: tuple[LineItem, ...] | None = None
    bulk_pricing: BulkPricing | None = None
    remove_bulk_pricing: bool = False
    include_gst: bool | None = None
    customer: Customer | None = None
    down_payment: Decimal | str | None = None
    payment_method: PaymentMethod | None = None
    bank_name: str | None = None
    finance_company: str | None = None
    payment_reference: str | None = None
    sale_date: date | None = None
    scheduled_delivery_date: date | None = None
    sales_person_id: str | None = None
    sales_person_name: str | None = None
    remarks: str | None = None
    invoice_number: str | None = None

    @property
    def touches_pricing(self) -> bool:
        return (
            self.items is not None
            or self.bulk_pricing is not None
            or self.remove_bulk_pricing
            or self.include_gst is not None
        )


@dataclass(frozen=True)
class EditOutcome:
    invoice: Invoice
    excess: Decimal = ZERO
    catalog_items: tuple[LineItem, ...] = ()


def _apply_plain_fields(invoice: Invoice, changes: InvoiceChanges) -> Invoice:
    plain = {
        name: getattr(changes, name)
        for name in (
            "customer",
            "sale_date",
            "scheduled_delivery_date",
            "sales_person_id",
            "sales_person_name",
            "remarks",
        )
        if getattr(changes, name) is not None
    }
    details = invoice.payment_details
    detail_changes = {
        name: getattr(changes, name)
        for name in ("payment_method", "bank_name", "finance_company", "payment_reference")
        if getattr(changes, name) is not None
    }
    if detail_changes:
        plain["payment_details"] = replace(details, **detail_changes)
    return replace(invoice, **plain) if plain else invoice


def _settle_flag(invoice: Invoice, balance_due: Decimal, at: datetime) -> Invoice:
    if balance_due == ZERO:
        return mark_fully_paid(invoice, at)
    if invoice.fully_paid:
        logger.info(
            "fully_paid_reopened",
            extra={"invoice_id": invoice.id, "balance_due": str(balance_due)},
        )
        return replace(invoice, fully_paid=False, payment_date=None)
    return invoice


def _adjustment_record(
    amount: Decimal, record_type: PaymentRecordType, details: PaymentDetails,
    at: datetime, actor: str | None,
) -> PaymentRecord:
    return PaymentRecord(
        amount=amount,
        method=details.payment_method,
        recorded_at=at,
        record_type=record_type,
        recorded_by=actor,
        notes="Down payment increased on edit",
    )


def reconcile_invoice_edit(
    existing: Invoice,
    changes: InvoiceChanges,
    *,
    tax_fn: TaxFunction | None = None,
    at: datetime,
    actor: str | None = None,
) -> EditOutcome:
    """
    Apply ``changes`` to ``existing`` and reconcile totals and balances.

    EMI invoices:
        The schedule is refit to ``new_total - down_payment`` through
        ``reconcile_schedule``; an increased down payment is recorded as an
        ``emi_down_payment_adjustment`` payment.
    Other invoices:
        ``remaining_balance = max(0, total - received)``; money received
        beyond a reduced total is returned as ``excess``.
    """
    if changes.invoice_number is not None and changes.invoice_number != existing.invoice_number:
        logger.warning(
            "invoice_number_change_ignored",
            extra={
                "invoice_id": existing.id,
                "invoice_number": existing.invoice_number,
                "requested_invoice_number": changes.invoice_number,
            },
        )

    invoice = _apply_plain_fields(existing, changes)
    state_changed = invoice.customer.state != existing.customer.state
    catalog_items: tuple[LineItem, ...] = ()

    if changes.touches_pricing or state_changed:
        bulk = None if changes.remove_bulk_pricing else (
            changes.bulk_pricing or existing.bulk_pricing
        )
        include_gst = (
            existing.include_gst if changes.include_gst is None else changes.include_gst
        )
        items = existing.items if changes.items is None else changes.items
        totals = compute_totals(
            items,
            jurisdiction=invoice.customer.state,
            include_gst=include_gst,
            bulk_override=bulk,
            tax_fn=tax_fn,
        )
        invoice = replace(
            invoice,
            items=totals.items,
            include_gst=include_gst,
            bulk_pricing=bulk if totals.bulk_applied else None,
            subtotal=totals.subtotal,
            total_gst=totals.total_gst,
            grand_total=totals.grand_total,
        )
        if changes.items is not None:
            catalog_items = catalog_entries(totals.items)

    details = invoice.payment_details
    excess = ZERO

    if invoice.is_emi and invoice.emi_details is not None:
        plan = invoice.emi_details
        new_down = (
            plan.down_payment
            if changes.down_payment is None
            else require_non_negative_amount(changes.down_payment, "down_payment")
        )
        history = details.payment_history
        if new_down > plan.down_payment:
            history = history + (
                _adjustment_record(
                    new_down - plan.down_payment,
                    PaymentRecordType.EMI_DOWN_PAYMENT_ADJUSTMENT,
                    details, at, actor,
                ),
            )
        if invoice.grand_total != plan.total_amount or new_down != plan.down_payment:
            result = reconcile_schedule(
                plan, invoice.grand_total, new_down, invoice_id=invoice.id
            )
            plan, excess = result.plan, result.excess
        invoice = replace(
            invoice,
            emi_details=plan,
            payment_details=replace(
                details,
                down_payment=new_down,
                remaining_balance=plan.total_remaining,
                payment_history=history,
            ),
        )
        invoice = _settle_flag(invoice, plan.total_remaining, at)
    elif invoice.payment_status is PaymentStatus.PAID:
        invoice = replace(
            invoice, payment_details=replace(details, remaining_balance=ZERO)
        )
    else:
        received = (
            details.down_payment
            if changes.down_payment is None
            else require_non_negative_amount(changes.down_payment, "down_payment")
        )
        history = details.payment_history
        if received > details.down_payment:
            history = history + (
                _adjustment_record(
                    received - details.down_payment,
                    PaymentRecordType.DOWN_PAYMENT,
                    details, at, actor,
                ),
            )
        balance_due = max(ZERO, invoice.grand_total - received)
        excess = max(ZERO, received - invoice.grand_total)
        if excess > 0:
            logger.warning(
                "edit_excess_unapplied",
                extra={
                    "invoice_id": invoice.id,
                    "excess": str(excess),
                    "new_total": str(invoice.grand_total),
                },
            )
        invoice = replace(
            invoice,
            payment_details=replace(
                details,
                down_payment=received,
                remaining_balance=balance_due,
                payment_history=history,
            ),
        )
        invoice = _settle_flag(invoice, balance_due, at)

    invoice = replace(
        invoice,
        invoice_number=existing.invoice_number,
        customer_due_date_flags=existing.customer_due_date_flags,
        updated_at=at,
    )
    logger.info(
        "invoice_edit_reconciled",
        extra={
            "invoice_id": invoice.id,
            "old_grand_total": str(existing.grand_total),
            "new_grand_total": str(invoice.grand_total),
            "pricing_changed": changes.touches_pricing or state_changed,
            "excess": str(excess),
            "fully_paid": invoice.fully_paid,
        },
    )
    return EditOutcome(invoice=invoice, excess=excess, catalog_items=catalog_items)
