"""
InvoiceLockRegistry -- per-invoice mutual exclusion inside one process.

Contract:
    ``hold(tenant, invoice_id)`` is a context manager; at most one thread
    holds the lock for a given ``(tenant, invoice_id)`` at a time. Different
    invoices never contend.

    An entry exists only while some thread holds or waits for it, so the
    registry stays as small as the number of invoices being written right
    now.

Architecture: billing_services. The store's optimistic version check is the
    second line of defence for writers in other processes.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from billing_kernel.logging_config import get_logger

logger = get_logger("services.locks")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # holders plus waiters
        self.users = 0


class InvoiceLockRegistry:
    """Refcounted ``threading.Lock`` per invoice key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[tuple[str, str], _Entry] = {}

    def _checkout(self, key: tuple[str, str]) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: tuple[str, str], entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, tenant: str, invoice_id: str) -> Iterator[None]:
        key = (tenant, invoice_id)
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(blocking=False):
                logger.debug(
                    "invoice_lock_contended",
                    extra={"tenant": tenant, "invoice_id": invoice_id},
                )
                entry.lock.acquire()
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
