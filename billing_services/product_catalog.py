"""
ProductCatalog -- remembers invoiced products for autocomplete.

Contract:
    ``upsert_from_item`` is a best-effort side effect of invoice creation
    and item edits, dispatched as a post-commit hook. It matches an existing
    product by case-insensitive name, bumps ``usageCount`` and refreshes the
    rate (a zero rate keeps the previous one). Any failure is logged and
    swallowed: the invoice has already been written.
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy.orm import Session

from billing_kernel.db.engine import session_scope
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.invoice import LineItem
from billing_kernel.logging_config import get_logger
from billing_kernel.services.document_store import DocumentRecord, DocumentStore

logger = get_logger("services.product_catalog")

PRODUCTS = "products"


class ProductCatalog:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        default_slab: int = 18,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._default_slab = default_slab

    def upsert_from_item(self, tenant: str, item: LineItem) -> None:
        name = (item.name or "").strip()
        if not name:
            return
        try:
            with session_scope(self._session_factory) as session:
                self._upsert(DocumentStore(session, self._clock), tenant, name, item)
        except Exception:
            logger.warning(
                "product_catalog_upsert_failed",
                extra={"tenant": tenant, "product_name": name},
                exc_info=True,
            )

    def _upsert(
        self, store: DocumentStore, tenant: str, name: str, item: LineItem
    ) -> None:
        now = self._clock.now().isoformat()
        slab = item.gst_slab if item.gst_slab is not None else self._default_slab
        matches = store.query(tenant, PRODUCTS, [("nameLower", "==", name.lower())], limit=1)

        if matches:
            existing = matches[0]
            rate = str(item.rate) if item.rate > 0 else existing.data.get("rate")
            store.update(
                tenant,
                PRODUCTS,
                existing.document_id,
                {
                    "rate": rate,
                    "gstSlab": str(slab),
                    "hsnCode": item.hsn_code or existing.data.get("hsnCode", ""),
                    "usageCount": int(existing.data.get("usageCount") or 0) + 1,
                    "lastUsed": now,
                },
            )
            logger.debug("product_catalog_updated", extra={"product_name": name})
            return

        store.create(
            tenant,
            PRODUCTS,
            {
                "name": name,
                "nameLower": name.lower(),
                "rate": str(item.rate),
                "gstSlab": str(slab),
                "hsnCode": item.hsn_code,
                "usageCount": 1,
                "lastUsed": now,
            },
        )
        logger.debug("product_catalog_created", extra={"product_name": name})

    def search(self, tenant: str, prefix: str, limit: int = 10) -> list[DocumentRecord]:
        """Most-used products whose name starts with ``prefix``."""
        needle = prefix.strip().lower()
        with session_scope(self._session_factory) as session:
            records = DocumentStore(session, self._clock).query(
                tenant, PRODUCTS, order_by="usageCount", descending=True
            )
        return [r for r in records if r.data.get("nameLower", "").startswith(needle)][:limit]
