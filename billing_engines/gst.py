"""
GST calculator -- default tax function for line items.

Given a line item, the customer's state and whether GST applies, returns
a ``TaxBreakdown``. Intra-state sales (customer state equals the home
state, case-insensitive) split the slab into equal CGST and SGST; every
other sale pays IGST at the full slab.

    gross = quantity * rate
    inclusive:  base = gross / (1 + slab/100), tax = round(gross) - base
    exclusive:  base = gross,                  tax = base * slab/100

Each component is rounded to cents and ``base + tax == total`` exactly.

Any callable with the signature ``(item, jurisdiction, include_gst) ->
TaxBreakdown`` can replace this class wherever a ``tax_fn`` is accepted.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable

from billing_kernel.domain.invoice import LineItem, TaxBreakdown
from billing_kernel.domain.money import ZERO, round_money, to_decimal


TaxFunction = Callable[[LineItem, str, bool], TaxBreakdown]

_HUNDRED = Decimal(100)


class GSTCalculator:
    """Home-state aware GST for a single line item."""

    def __init__(self, home_state: str = "gujarat", default_slab: int | Decimal = 18):
        self.home_state = home_state.strip().lower()
        self.default_slab = Decimal(default_slab)

    def is_intra_state(self, jurisdiction: str | None) -> bool:
        return (jurisdiction or "").strip().lower() == self.home_state

    def __call__(
        self, item: LineItem, jurisdiction: str, include_gst: bool
    ) -> TaxBreakdown:
        gross = to_decimal(item.quantity, "quantity") * to_decimal(item.rate, "rate")
        total = round_money(gross)

        if not include_gst:
            return TaxBreakdown(base_amount=total, tax_amount=ZERO, total_amount=total)

        slab = self.default_slab if item.gst_slab is None else to_decimal(item.gst_slab, "gst_slab")

        if item.is_price_inclusive:
            base = round_money(gross / (1 + slab / _HUNDRED))
            tax = total - base
        else:
            base = total
            tax = round_money(base * slab / _HUNDRED)
            total = base + tax

        if self.is_intra_state(jurisdiction):
            cgst = round_money(tax / 2)
            return TaxBreakdown(
                base_amount=base,
                tax_amount=tax,
                total_amount=total,
                gst_slab=slab,
                cgst=cgst,
                sgst=tax - cgst,
            )
        return TaxBreakdown(
            base_amount=base,
            tax_amount=tax,
            total_amount=total,
            gst_slab=slab,
            igst=tax,
        )
