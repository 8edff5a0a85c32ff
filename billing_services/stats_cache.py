"""
Sales statistics with a caller-owned TTL cache.

``StatsCache`` keeps one computed value per tenant for ``ttl_seconds`` of
the injected clock. It is an ordinary object: whoever builds the services
owns it, so tests get a fresh cache and move time explicitly.
``InvoiceService`` invalidates a tenant's entry after every committed write.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from sqlalchemy.orm import Session

from billing_engines.sales_stats import SalesStats, compute_sales_stats
from billing_kernel.db.engine import session_scope
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.codec import decode_invoice
from billing_kernel.logging_config import get_logger
from billing_kernel.services.document_store import DocumentStore

logger = get_logger("services.stats_cache")

SALES = "sales"

T = TypeVar("T")


@dataclass(frozen=True)
class _Entry(Generic[T]):
    value: T
    stored_at: float


class StatsCache(Generic[T]):
    """
    TTL cache with per-key generations.

    A reader takes ``generation(key)`` before computing and passes it to
    ``put``; if ``invalidate`` or ``clear`` ran in between, the put is
    dropped so a value computed from pre-write data never gets cached.
    """

    def __init__(self, clock: Clock | None = None, ttl_seconds: int = 180):
        self._clock = clock or SystemClock()
        self._ttl = ttl_seconds
        self._entries: dict[str, _Entry[T]] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock.monotonic() - entry.stored_at >= self._ttl:
                del self._entries[key]
                return None
            return entry.value

    def generation(self, key: str) -> tuple[int, int]:
        with self._lock:
            return self._epoch, self._generations.get(key, 0)

    def put(self, key: str, value: T, generation: tuple[int, int] | None = None) -> bool:
        """Store ``value``; False when ``generation`` is out of date."""
        with self._lock:
            if generation is not None and generation != (self._epoch, self._generations.get(key, 0)):
                logger.debug("stats_cache_put_discarded", extra={"key": key})
                return False
            self._entries[key] = _Entry(value, self._clock.monotonic())
            return True

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generations.clear()
            self._epoch += 1

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None


class SalesReportService:
    """Dashboard statistics per tenant, served from ``StatsCache`` when fresh."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        cache: StatsCache[SalesStats],
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self._clock = clock or SystemClock()

    def get_sales_stats(self, tenant: str, force_refresh: bool = False) -> SalesStats:
        if not force_refresh:
            cached = self._cache.get(tenant)
            if cached is not None:
                logger.debug("sales_stats_cache_hit", extra={"tenant": tenant})
                return cached

        generation = self._cache.generation(tenant)
        with session_scope(self._session_factory) as session:
            records = DocumentStore(session, self._clock).query(tenant, SALES)
        invoices = [
            decode_invoice(r.document_id, tenant, r.data, r.version) for r in records
        ]
        stats = compute_sales_stats(invoices, self._clock.today())
        self._cache.put(tenant, stats, generation)
        logger.info(
            "sales_stats_computed",
            extra={
                "tenant": tenant,
                "total_sales": stats.total_sales,
                "total_amount": str(stats.total_amount),
                "outstanding_amount": str(stats.outstanding_amount),
            },
        )
        return stats
