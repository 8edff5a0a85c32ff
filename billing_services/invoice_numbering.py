"""
InvoiceNumberAllocator -- business invoice numbers from atomic counters.

Two formats are supported (``NumberingSettings.style``):

    tax_mode   {prefix}_{GST|NGST}_{seq}   e.g. EL_GST_001, FN_NGST_014
    monthly    {prefix}{YYYY}{MM}{seq}     e.g. EL2024030007

Each (tenant, tax mode) or (tenant, month) pair is its own counter in
``sequence_counters``. Numbers are gap-tolerant: a rolled-back invoice
transaction returns its value, a committed-then-deleted invoice does not.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from billing_config.schema import BillingSettings
from billing_kernel.logging_config import get_logger
from billing_kernel.services.sequence_service import SequenceService

logger = get_logger("services.numbering")


class InvoiceNumberAllocator:
    def __init__(self, settings: BillingSettings):
        self._settings = settings

    def sequence_name(self, tenant: str, include_gst: bool, sale_date: date) -> str:
        if self._settings.numbering.style == "monthly":
            return f"invoice:{tenant}:{sale_date:%Y%m}"
        return f"invoice:{tenant}:{'GST' if include_gst else 'NGST'}"

    def format(self, tenant: str, include_gst: bool, sale_date: date, value: int) -> str:
        prefix = self._settings.prefix_for(tenant)
        seq = str(value).zfill(self._settings.numbering.sequence_width)
        if self._settings.numbering.style == "monthly":
            return f"{prefix}{sale_date:%Y%m}{seq}"
        return f"{prefix}_{'GST' if include_gst else 'NGST'}_{seq}"

    def allocate(
        self, session: Session, tenant: str, include_gst: bool, sale_date: date
    ) -> str:
        """Draw the next number inside the caller's transaction."""
        name = self.sequence_name(tenant, include_gst, sale_date)
        value = SequenceService(session).next_value(name)
        number = self.format(tenant, include_gst, sale_date, value)
        logger.info(
            "invoice_number_allocated",
            extra={"tenant": tenant, "sequence_name": name, "invoice_number": number},
        )
        return number
