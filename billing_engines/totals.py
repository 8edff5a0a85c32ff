"""
Module: billing_engines.totals
Responsibility:
    Invoice Total Engine. Derives subtotal, total GST and grand total from
    the line items, or from a single bulk price that overrides per-item
    pricing. Runs on invoice creation and on every edit that touches items
    or bulk pricing.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - ``grand_total == subtotal + total_gst`` for every result.
    - Amounts are rounded to cents at each accumulation step, not only at
      the end, so stored totals reproduce exactly.
    - Under a bulk override every item's derived amounts are zero and the
      item is flagged ``bulk_pricing``.

Failure modes:
    - Whatever the injected tax function raises propagates unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Sequence

from billing_engines.gst import GSTCalculator, TaxFunction
from billing_engines.tracer import traced_engine
from billing_kernel.domain.invoice import BulkPricing, LineItem
from billing_kernel.domain.money import ZERO, round_money, to_decimal, to_money
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.totals")

_HUNDRED = Decimal(100)


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    total_gst: Decimal
    grand_total: Decimal
    items: tuple[LineItem, ...]
    bulk_applied: bool = False


def _normalized(item: LineItem) -> LineItem:
    """Blank, missing or NaN quantity, rate and slab count as zero."""
    return replace(
        item,
        quantity=to_decimal(item.quantity, f"{item.name}.quantity"),
        rate=to_decimal(item.rate, f"{item.name}.rate"),
        gst_slab=None if item.gst_slab is None else to_decimal(item.gst_slab, f"{item.name}.gst_slab"),
    )


def _bulk_totals(
    bulk: BulkPricing, include_gst: bool
) -> tuple[Decimal, Decimal]:
    total = round_money(bulk.total_price)
    if not include_gst or bulk.gst_slab == 0:
        return total, ZERO
    if bulk.is_price_inclusive:
        base = round_money(total / (1 + bulk.gst_slab / _HUNDRED))
        return base, total - base
    return total, round_money(total * bulk.gst_slab / _HUNDRED)


@traced_engine("invoice_totals", "1.0", fingerprint_fields=("jurisdiction", "include_gst"))
def compute_totals(
    items: Sequence[LineItem],
    jurisdiction: str = "",
    include_gst: bool = True,
    bulk_override: BulkPricing | None = None,
    tax_fn: TaxFunction | None = None,
) -> InvoiceTotals:
    """
    Compute invoice totals.

    Args:
        items: Line items as entered.
        jurisdiction: Customer state, passed through to the tax function.
        include_gst: Whether GST applies to this invoice at all.
        bulk_override: A bulk price; ignored unless ``total_price > 0``.
        tax_fn: Per-item tax function. Defaults to ``GSTCalculator()``.

    Returns:
        InvoiceTotals with the processed items.
    """
    items = [_normalized(item) for item in items]
    if bulk_override is not None:
        bulk_override = replace(
            bulk_override,
            total_price=to_money(bulk_override.total_price, "bulk_pricing.total_price"),
            gst_slab=to_decimal(bulk_override.gst_slab, "bulk_pricing.gst_slab"),
        )
    if bulk_override is not None and bulk_override.total_price > 0:
        subtotal, total_gst = _bulk_totals(bulk_override, include_gst)
        processed = tuple(
            replace(
                item,
                base_amount=ZERO,
                gst_amount=ZERO,
                total_amount=ZERO,
                tax=None,
                bulk_pricing=True,
            )
            for item in items
        )
        logger.debug(
            "bulk_pricing_applied",
            extra={
                "total_price": str(bulk_override.total_price),
                "gst_slab": str(bulk_override.gst_slab),
                "inclusive": bulk_override.is_price_inclusive,
            },
        )
        return InvoiceTotals(
            subtotal=subtotal,
            total_gst=total_gst,
            grand_total=subtotal + total_gst,
            items=processed,
            bulk_applied=True,
        )

    calculate = tax_fn or GSTCalculator()
    subtotal = ZERO
    total_gst = ZERO
    processed_items: list[LineItem] = []
    for item in items:
        breakdown = calculate(item, jurisdiction, include_gst)
        subtotal = round_money(subtotal + breakdown.base_amount)
        total_gst = round_money(total_gst + breakdown.tax_amount)
        processed_items.append(
            replace(
                item,
                base_amount=breakdown.base_amount,
                gst_amount=breakdown.tax_amount,
                total_amount=breakdown.total_amount,
                tax=breakdown,
                bulk_pricing=False,
            )
        )

    return InvoiceTotals(
        subtotal=subtotal,
        total_gst=total_gst,
        grand_total=subtotal + total_gst,
        items=tuple(processed_items),
    )


def catalog_entries(items: Sequence[LineItem]) -> tuple[LineItem, ...]:
    """Items worth remembering in the product catalog (named ones)."""
    return tuple(item for item in items if item.name and item.name.strip())
