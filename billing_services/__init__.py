"""
billing_services -- imperative shell over the billing engines.

Services own sessions and transactions (through ``session_scope``), the
per-invoice locks, invoice numbering and every best-effort side effect.
Engines stay pure; the kernel stays unaware of this package.
"""

from billing_services.hooks import HookDispatcher, PostCommitHook
from billing_services.invoice_numbering import InvoiceNumberAllocator
from billing_services.invoice_service import (
    EMITerms,
    InstallmentPaymentResult,
    InvoiceDraft,
    InvoiceService,
)
from billing_services.locks import InvoiceLockRegistry
from billing_services.notification_service import (
    NotificationGenerator,
    NotificationRunResult,
)
from billing_services.product_catalog import ProductCatalog
from billing_services.stats_cache import SalesReportService, StatsCache

__all__ = [
    "EMITerms",
    "HookDispatcher",
    "InstallmentPaymentResult",
    "InvoiceDraft",
    "InvoiceLockRegistry",
    "InvoiceNumberAllocator",
    "InvoiceService",
    "NotificationGenerator",
    "NotificationRunResult",
    "PostCommitHook",
    "ProductCatalog",
    "SalesReportService",
    "StatsCache",
]
