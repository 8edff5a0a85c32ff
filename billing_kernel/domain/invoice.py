"""
Invoice -- immutable domain types for invoices and EMI plans.

Responsibility:
    Value types shared by every engine and service: the invoice, its line
    items, payment details and history, the EMI plan with its installment
    schedule, and the due-date change tracking records.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Installment numbers are 1-based and never reassigned.
    - A paid installment's ``paid_amount`` and ``payment_record`` are frozen;
      engines copy paid installments through untouched.
    - ``Invoice.invoice_number`` is assigned once at creation.

All types are frozen. Engines return new instances via
``dataclasses.replace``; nothing here is mutated in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from billing_kernel.domain.money import ZERO, money_sum


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    EMI = "emi"
    FINANCE = "finance"
    BANK_TRANSFER = "bank_transfer"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    DELIVERED = "delivered"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    NET_BANKING = "net_banking"
    CHEQUE = "cheque"
    BANK_TRANSFER = "bank_transfer"
    FINANCE = "finance"


class PaymentCategory(str, Enum):
    """Reporting category snapshotted at creation (``originalPaymentCategory``)."""

    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    NET_BANKING = "net_banking"
    CHEQUE = "cheque"
    EMI = "emi"
    FINANCE = "finance"
    BANK_TRANSFER = "bank_transfer"
    CREDIT = "credit"


class PaymentRecordType(str, Enum):
    DOWN_PAYMENT = "down_payment"
    EMI_DOWN_PAYMENT = "emi_down_payment"
    EMI_DOWN_PAYMENT_ADJUSTMENT = "emi_down_payment_adjustment"
    PENDING_PAYMENT = "pending_payment"
    ADDITIONAL_PAYMENT = "additional_payment"
    INSTALLMENT = "installment"
    OVERPAYMENT_CASCADE = "overpayment_cascade"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class TaxBreakdown:
    """Output of a tax function for one line item."""

    base_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    gst_slab: Decimal = ZERO
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    igst: Decimal = ZERO


@dataclass(frozen=True)
class LineItem:
    """
    One invoice line.

    ``base_amount``, ``gst_amount`` and ``total_amount`` are derived by the
    total engine and zeroed under a bulk price override.
    """

    name: str
    quantity: Decimal
    rate: Decimal
    hsn_code: str = ""
    gst_slab: Decimal | None = None
    is_price_inclusive: bool = False
    base_amount: Decimal = ZERO
    gst_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    tax: TaxBreakdown | None = None
    bulk_pricing: bool = False


@dataclass(frozen=True)
class BulkPricing:
    """A single price covering every line of the invoice."""

    total_price: Decimal
    gst_slab: Decimal = Decimal(18)
    is_price_inclusive: bool = False


@dataclass(frozen=True)
class PaymentRecord:
    amount: Decimal
    method: PaymentMethod
    recorded_at: datetime
    record_type: PaymentRecordType
    reference: str = ""
    recorded_by: str | None = None
    notes: str = ""
    installment_number: int | None = None


@dataclass(frozen=True)
class DueDateChange:
    previous_due_date: date
    new_due_date: date
    changed_at: datetime
    reason: str = ""
    changed_by: str | None = None


@dataclass(frozen=True)
class Installment:
    """
    One slot of an EMI schedule.

    ``amount`` is the current outstanding amount and is rewritten by
    redistribution while the installment is unpaid. Once ``paid`` is True
    the slot is terminal.
    """

    installment_number: int
    due_date: date
    amount: Decimal
    paid: bool = False
    paid_amount: Decimal = ZERO
    payment_date: datetime | None = None
    payment_record: PaymentRecord | None = None
    applied_from_overpayment: bool = False
    due_date_change_history: tuple[DueDateChange, ...] = ()
    due_date_change_count: int = 0
    has_frequent_due_date_changes: bool = False

    @property
    def settled_amount(self) -> Decimal:
        """What this slot contributes toward the EMI amount."""
        return self.paid_amount if self.paid else self.amount


@dataclass(frozen=True)
class EMIPlan:
    """
    Installment plan attached to an EMI invoice.

    ``emi_amount`` (total minus down payment) is what the schedule spreads.
    ``total_paid`` includes the down payment, so
    ``total_paid + total_remaining == total_amount``.
    """

    monthly_amount: Decimal
    number_of_installments: int
    down_payment: Decimal
    total_amount: Decimal
    emi_amount: Decimal
    start_date: date
    schedule: tuple[Installment, ...]
    total_paid: Decimal = ZERO
    total_remaining: Decimal = ZERO
    last_payment_date: datetime | None = None
    unapplied_credit: Decimal = ZERO

    @property
    def unpaid_installments(self) -> tuple[Installment, ...]:
        return tuple(i for i in self.schedule if not i.paid)

    @property
    def paid_installments(self) -> tuple[Installment, ...]:
        return tuple(i for i in self.schedule if i.paid)

    @property
    def installments_paid_sum(self) -> Decimal:
        return money_sum(i.paid_amount for i in self.schedule if i.paid)

    @property
    def is_fully_paid(self) -> bool:
        return all(i.paid for i in self.schedule)

    def find(self, installment_number: int) -> Installment | None:
        for inst in self.schedule:
            if inst.installment_number == installment_number:
                return inst
        return None


@dataclass(frozen=True)
class CustomerDueDateFlags:
    total_changes: int = 0
    has_frequent_changes: bool = False
    flagged_for_review: bool = False
    last_change_date: datetime | None = None


@dataclass(frozen=True)
class PaymentDetails:
    """
    Money received outside the EMI schedule.

    For non-EMI invoices ``down_payment`` is the cumulative amount received;
    for EMI invoices it mirrors ``EMIPlan.down_payment``.
    """

    down_payment: Decimal = ZERO
    remaining_balance: Decimal = ZERO
    payment_method: PaymentMethod = PaymentMethod.CASH
    bank_name: str = ""
    finance_company: str = ""
    payment_reference: str = ""
    payment_history: tuple[PaymentRecord, ...] = ()


@dataclass(frozen=True)
class Customer:
    customer_id: str | None = None
    name: str = ""
    phone: str = ""
    address: str = ""
    state: str = ""
    gst_number: str = ""


@dataclass(frozen=True)
class Invoice:
    """A sale. ``grand_total`` is also exposed as ``total_amount``."""

    id: str
    tenant: str
    invoice_number: str
    sale_date: date
    customer: Customer
    items: tuple[LineItem, ...]
    include_gst: bool
    subtotal: Decimal
    total_gst: Decimal
    grand_total: Decimal
    payment_status: PaymentStatus
    delivery_status: DeliveryStatus
    original_payment_category: PaymentCategory
    payment_details: PaymentDetails = field(default_factory=PaymentDetails)
    emi_details: EMIPlan | None = None
    bulk_pricing: BulkPricing | None = None
    customer_due_date_flags: CustomerDueDateFlags | None = None
    fully_paid: bool = False
    payment_date: datetime | None = None
    scheduled_delivery_date: date | None = None
    delivery_date: datetime | None = None
    sales_person_id: str | None = None
    sales_person_name: str = ""
    remarks: str = ""
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 0

    @property
    def total_amount(self) -> Decimal:
        return self.grand_total

    @property
    def is_emi(self) -> bool:
        return self.payment_status is PaymentStatus.EMI

    @property
    def amount_paid(self) -> Decimal:
        """Amount actually received so far, per payment category."""
        if self.payment_status is PaymentStatus.PAID:
            return self.grand_total
        if self.is_emi and self.emi_details is not None:
            return self.emi_details.down_payment + self.emi_details.installments_paid_sum
        if self.fully_paid:
            return self.grand_total
        return self.payment_details.down_payment
