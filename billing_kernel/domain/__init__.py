"""
Pure domain layer.

Immutable value types, money helpers and the document codec. Nothing here
touches the ORM, the database or the wall clock (``SystemClock`` aside).
"""

from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
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
    RiskLevel,
    TaxBreakdown,
)
from billing_kernel.domain.money import (
    CENT,
    ZERO,
    require_positive_amount,
    round_money,
    split_evenly,
    split_proportionally,
    to_money,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "BulkPricing",
    "Customer",
    "CustomerDueDateFlags",
    "DeliveryStatus",
    "DueDateChange",
    "EMIPlan",
    "Installment",
    "Invoice",
    "LineItem",
    "PaymentCategory",
    "PaymentDetails",
    "PaymentMethod",
    "PaymentRecord",
    "PaymentRecordType",
    "PaymentStatus",
    "RiskLevel",
    "TaxBreakdown",
    "CENT",
    "ZERO",
    "require_positive_amount",
    "round_money",
    "split_evenly",
    "split_proportionally",
    "to_money",
]
