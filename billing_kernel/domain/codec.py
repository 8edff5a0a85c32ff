"""
Codec -- Invoice <-> JSON-safe document dicts.

Documents use the camelCase layout of the stored sales collection
(``invoiceNumber``, ``paymentDetails.paymentHistory``, ``emiDetails.schedule``
...). Decimals are written as strings so no precision is lost in the JSON
column; dates and datetimes are ISO 8601 strings.

Reading is lenient: missing optional keys take the dataclass defaults and
numeric fields go through ``to_money`` so legacy documents with blank or
float amounts still load.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from billing_kernel.domain.invoice import (
    BulkPricing,
    Customer,
    CustomerDueDateFlags,
    DeliveryStatus,
    DueDateChange,
    EMIPlan,
    Installment,
    Invoice,
    LineItem,
    PaymentCategory,
    PaymentDetails,
    PaymentMethod,
    PaymentRecord,
    PaymentRecordType,
    PaymentStatus,
    TaxBreakdown,
)
from billing_kernel.domain.money import to_decimal, to_money


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _iso(value: date | datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def _parse_date(value: Any) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_datetime(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_tax(tax: TaxBreakdown | None) -> dict | None:
    if tax is None:
        return None
    return {
        "baseAmount": _dec(tax.base_amount),
        "gstAmount": _dec(tax.tax_amount),
        "totalAmount": _dec(tax.total_amount),
        "gstSlab": _dec(tax.gst_slab),
        "cgst": _dec(tax.cgst),
        "sgst": _dec(tax.sgst),
        "igst": _dec(tax.igst),
    }


def encode_item(item: LineItem) -> dict:
    return {
        "name": item.name,
        "quantity": _dec(item.quantity),
        "rate": _dec(item.rate),
        "hsnCode": item.hsn_code,
        "gstSlab": _dec(item.gst_slab),
        "isPriceInclusive": item.is_price_inclusive,
        "baseAmount": _dec(item.base_amount),
        "gstAmount": _dec(item.gst_amount),
        "totalAmount": _dec(item.total_amount),
        "gstBreakdown": encode_tax(item.tax),
        "bulkPricing": item.bulk_pricing,
    }


def encode_payment_record(record: PaymentRecord | None) -> dict | None:
    if record is None:
        return None
    return {
        "amount": _dec(record.amount),
        "method": record.method.value,
        "date": _iso(record.recorded_at),
        "type": record.record_type.value,
        "reference": record.reference,
        "recordedBy": record.recorded_by,
        "notes": record.notes,
        "installmentNumber": record.installment_number,
    }


def encode_due_date_change(change: DueDateChange) -> dict:
    return {
        "previousDueDate": _iso(change.previous_due_date),
        "newDueDate": _iso(change.new_due_date),
        "changedAt": _iso(change.changed_at),
        "reason": change.reason,
        "changedBy": change.changed_by,
    }


def encode_installment(inst: Installment) -> dict:
    return {
        "installmentNumber": inst.installment_number,
        "dueDate": _iso(inst.due_date),
        "amount": _dec(inst.amount),
        "paid": inst.paid,
        "paidAmount": _dec(inst.paid_amount),
        "paymentDate": _iso(inst.payment_date),
        "paymentRecord": encode_payment_record(inst.payment_record),
        "appliedFromOverpayment": inst.applied_from_overpayment,
        "dueDateChangeHistory": [
            encode_due_date_change(c) for c in inst.due_date_change_history
        ],
        "dueDateChangeCount": inst.due_date_change_count,
        "hasFrequentDueDateChanges": inst.has_frequent_due_date_changes,
    }


def encode_emi_plan(plan: EMIPlan | None) -> dict | None:
    if plan is None:
        return None
    return {
        "monthlyAmount": _dec(plan.monthly_amount),
        "numberOfInstallments": plan.number_of_installments,
        "downPayment": _dec(plan.down_payment),
        "totalAmount": _dec(plan.total_amount),
        "emiAmount": _dec(plan.emi_amount),
        "startDate": _iso(plan.start_date),
        "schedule": [encode_installment(i) for i in plan.schedule],
        "totalPaid": _dec(plan.total_paid),
        "totalRemaining": _dec(plan.total_remaining),
        "lastPaymentDate": _iso(plan.last_payment_date),
        "unappliedCredit": _dec(plan.unapplied_credit),
    }


def encode_invoice(invoice: Invoice) -> dict:
    """Document body for the store. ``id``/``tenant``/``version`` live on the row."""
    details = invoice.payment_details
    flags = invoice.customer_due_date_flags
    return {
        "invoiceNumber": invoice.invoice_number,
        "saleDate": _iso(invoice.sale_date),
        "customerId": invoice.customer.customer_id,
        "customerName": invoice.customer.name,
        "customerPhone": invoice.customer.phone,
        "customerAddress": invoice.customer.address,
        "customerState": invoice.customer.state,
        "customerGSTNumber": invoice.customer.gst_number,
        "salesPersonId": invoice.sales_person_id,
        "salesPersonName": invoice.sales_person_name,
        "items": [encode_item(i) for i in invoice.items],
        "includeGST": invoice.include_gst,
        "subtotal": _dec(invoice.subtotal),
        "totalGST": _dec(invoice.total_gst),
        "grandTotal": _dec(invoice.grand_total),
        "totalAmount": _dec(invoice.grand_total),
        "paymentStatus": invoice.payment_status.value,
        "deliveryStatus": invoice.delivery_status.value,
        "originalPaymentCategory": invoice.original_payment_category.value,
        "fullyPaid": invoice.fully_paid,
        "paymentDate": _iso(invoice.payment_date),
        "scheduledDeliveryDate": _iso(invoice.scheduled_delivery_date),
        "deliveryDate": _iso(invoice.delivery_date),
        "remarks": invoice.remarks,
        "paymentDetails": {
            "downPayment": _dec(details.down_payment),
            "remainingBalance": _dec(details.remaining_balance),
            "paymentMethod": details.payment_method.value,
            "bankName": details.bank_name,
            "financeCompany": details.finance_company,
            "paymentReference": details.payment_reference,
            "paymentHistory": [
                encode_payment_record(r) for r in details.payment_history
            ],
        },
        "emiDetails": encode_emi_plan(invoice.emi_details),
        "bulkPricingDetails": (
            {
                "totalPrice": _dec(invoice.bulk_pricing.total_price),
                "gstSlab": _dec(invoice.bulk_pricing.gst_slab),
                "isPriceInclusive": invoice.bulk_pricing.is_price_inclusive,
            }
            if invoice.bulk_pricing is not None
            else None
        ),
        "bulkPricingApplied": invoice.bulk_pricing is not None,
        "customerDueDateChangeFlags": (
            {
                "totalChanges": flags.total_changes,
                "hasFrequentChanges": flags.has_frequent_changes,
                "flaggedForReview": flags.flagged_for_review,
                "lastChangeDate": _iso(flags.last_change_date),
            }
            if flags is not None
            else None
        ),
        "createdBy": invoice.created_by,
        "createdAt": _iso(invoice.created_at),
        "updatedAt": _iso(invoice.updated_at),
    }


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def decode_tax(data: dict | None) -> TaxBreakdown | None:
    if not data:
        return None
    return TaxBreakdown(
        base_amount=to_money(data.get("baseAmount")),
        tax_amount=to_money(data.get("gstAmount")),
        total_amount=to_money(data.get("totalAmount")),
        gst_slab=to_decimal(data.get("gstSlab")),
        cgst=to_money(data.get("cgst")),
        sgst=to_money(data.get("sgst")),
        igst=to_money(data.get("igst")),
    )


def decode_item(data: dict) -> LineItem:
    slab = data.get("gstSlab")
    return LineItem(
        name=data.get("name", ""),
        quantity=to_decimal(data.get("quantity"), "quantity"),
        rate=to_money(data.get("rate"), "rate"),
        hsn_code=data.get("hsnCode") or "",
        gst_slab=None if slab in (None, "") else to_decimal(slab, "gstSlab"),
        is_price_inclusive=bool(data.get("isPriceInclusive", False)),
        base_amount=to_money(data.get("baseAmount")),
        gst_amount=to_money(data.get("gstAmount")),
        total_amount=to_money(data.get("totalAmount")),
        tax=decode_tax(data.get("gstBreakdown")),
        bulk_pricing=bool(data.get("bulkPricing", False)),
    )


def decode_payment_record(data: dict | None) -> PaymentRecord | None:
    if not data:
        return None
    return PaymentRecord(
        amount=to_money(data.get("amount")),
        method=PaymentMethod(data.get("method") or PaymentMethod.CASH.value),
        recorded_at=_parse_datetime(data.get("date")),
        record_type=PaymentRecordType(
            data.get("type") or PaymentRecordType.ADDITIONAL_PAYMENT.value
        ),
        reference=data.get("reference") or "",
        recorded_by=data.get("recordedBy"),
        notes=data.get("notes") or "",
        installment_number=data.get("installmentNumber"),
    )


def decode_due_date_change(data: dict) -> DueDateChange:
    return DueDateChange(
        previous_due_date=_parse_date(data.get("previousDueDate")),
        new_due_date=_parse_date(data.get("newDueDate")),
        changed_at=_parse_datetime(data.get("changedAt")),
        reason=data.get("reason") or "",
        changed_by=data.get("changedBy"),
    )


def decode_installment(data: dict) -> Installment:
    history = tuple(
        decode_due_date_change(c) for c in data.get("dueDateChangeHistory") or ()
    )
    return Installment(
        installment_number=int(data["installmentNumber"]),
        due_date=_parse_date(data.get("dueDate")),
        amount=to_money(data.get("amount"), "amount"),
        paid=bool(data.get("paid", False)),
        paid_amount=to_money(data.get("paidAmount"), "paidAmount"),
        payment_date=_parse_datetime(data.get("paymentDate")),
        payment_record=decode_payment_record(data.get("paymentRecord")),
        applied_from_overpayment=bool(data.get("appliedFromOverpayment", False)),
        due_date_change_history=history,
        due_date_change_count=int(data.get("dueDateChangeCount") or len(history)),
        has_frequent_due_date_changes=bool(
            data.get("hasFrequentDueDateChanges", False)
        ),
    )


def decode_emi_plan(data: dict | None) -> EMIPlan | None:
    if not data:
        return None
    schedule = tuple(decode_installment(i) for i in data.get("schedule") or ())
    return EMIPlan(
        monthly_amount=to_money(data.get("monthlyAmount")),
        number_of_installments=int(
            data.get("numberOfInstallments") or len(schedule)
        ),
        down_payment=to_money(data.get("downPayment")),
        total_amount=to_money(data.get("totalAmount")),
        emi_amount=to_money(data.get("emiAmount")),
        start_date=_parse_date(data.get("startDate")),
        schedule=schedule,
        total_paid=to_money(data.get("totalPaid")),
        total_remaining=to_money(data.get("totalRemaining")),
        last_payment_date=_parse_datetime(data.get("lastPaymentDate")),
        unapplied_credit=to_money(data.get("unappliedCredit")),
    )


def decode_invoice(
    document_id: str, tenant: str, data: dict, version: int = 0
) -> Invoice:
    details = data.get("paymentDetails") or {}
    bulk = data.get("bulkPricingDetails")
    flags = data.get("customerDueDateChangeFlags")
    return Invoice(
        id=document_id,
        tenant=tenant,
        invoice_number=data.get("invoiceNumber", ""),
        sale_date=_parse_date(data.get("saleDate")),
        customer=Customer(
            customer_id=data.get("customerId"),
            name=data.get("customerName") or "",
            phone=data.get("customerPhone") or "",
            address=data.get("customerAddress") or "",
            state=data.get("customerState") or "",
            gst_number=data.get("customerGSTNumber") or "",
        ),
        items=tuple(decode_item(i) for i in data.get("items") or ()),
        include_gst=bool(data.get("includeGST", True)),
        subtotal=to_money(data.get("subtotal")),
        total_gst=to_money(data.get("totalGST")),
        grand_total=to_money(data.get("grandTotal", data.get("totalAmount"))),
        payment_status=PaymentStatus(data.get("paymentStatus") or "pending"),
        delivery_status=DeliveryStatus(data.get("deliveryStatus") or "pending"),
        original_payment_category=PaymentCategory(
            data.get("originalPaymentCategory") or PaymentCategory.CREDIT.value
        ),
        payment_details=PaymentDetails(
            down_payment=to_money(details.get("downPayment")),
            remaining_balance=to_money(details.get("remainingBalance")),
            payment_method=PaymentMethod(
                details.get("paymentMethod") or PaymentMethod.CASH.value
            ),
            bank_name=details.get("bankName") or "",
            finance_company=details.get("financeCompany") or "",
            payment_reference=details.get("paymentReference") or "",
            payment_history=tuple(
                decode_payment_record(r) for r in details.get("paymentHistory") or ()
            ),
        ),
        emi_details=decode_emi_plan(data.get("emiDetails")),
        bulk_pricing=(
            BulkPricing(
                total_price=to_money(bulk.get("totalPrice")),
                gst_slab=to_decimal(bulk.get("gstSlab", 18)),
                is_price_inclusive=bool(bulk.get("isPriceInclusive", False)),
            )
            if bulk
            else None
        ),
        customer_due_date_flags=(
            CustomerDueDateFlags(
                total_changes=int(flags.get("totalChanges") or 0),
                has_frequent_changes=bool(flags.get("hasFrequentChanges", False)),
                flagged_for_review=bool(flags.get("flaggedForReview", False)),
                last_change_date=_parse_datetime(flags.get("lastChangeDate")),
            )
            if flags
            else None
        ),
        fully_paid=bool(data.get("fullyPaid", False)),
        payment_date=_parse_datetime(data.get("paymentDate")),
        scheduled_delivery_date=_parse_date(data.get("scheduledDeliveryDate")),
        delivery_date=_parse_datetime(data.get("deliveryDate")),
        sales_person_id=data.get("salesPersonId"),
        sales_person_name=data.get("salesPersonName") or "",
        remarks=data.get("remarks") or "",
        created_by=data.get("createdBy"),
        created_at=_parse_datetime(data.get("createdAt")),
        updated_at=_parse_datetime(data.get("updatedAt")),
        version=version,
    )
