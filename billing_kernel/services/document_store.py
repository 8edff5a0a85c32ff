"""
DocumentStore -- tenant-scoped document collections over SQLAlchemy.

Responsibility:
    The get / create / update / query / delete contract the billing core
    needs from its backing store, keyed by tenant + collection + id, with
    an integer version on every document for compare-and-swap writes.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - ``update`` with ``expected_version`` succeeds only when the stored
      version still equals it; the row is read ``FOR UPDATE``.
    - Each successful write increments ``version`` by exactly one.
    - The store flushes and never commits.

Failure modes:
    - DocumentNotFoundError for get/update/delete of a missing id.
    - OptimisticLockError on a stale ``expected_version``.
    - PersistenceError wrapping any SQLAlchemyError (``__cause__`` holds the
      original). No retry.
"""

from __future__ import annotations

import operator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import (
    DocumentNotFoundError,
    OptimisticLockError,
    PersistenceError,
    ValidationError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.document import StoredDocument
from billing_kernel.services.base import BaseService

logger = get_logger("services.document_store")

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda field_value, options: field_value in options,
    "not-in": lambda field_value, options: field_value not in options,
}


@dataclass(frozen=True)
class DocumentRecord:
    """Detached copy of a stored document."""

    tenant: str
    collection: str
    document_id: str
    data: dict
    version: int
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class QueryFilter:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValidationError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: dict) -> bool:
        field_value = data.get(self.field)
        if field_value is None and self.op not in ("==", "!=", "in", "not-in"):
            return False
        try:
            return _OPERATORS[self.op](field_value, self.value)
        except TypeError:
            return False


@dataclass(frozen=True)
class BatchOperation:
    """One write inside ``DocumentStore.batch``."""

    kind: str  # "create" | "update" | "delete"
    collection: str
    document_id: str | None = None
    data: dict | None = None
    expected_version: int | None = None


def _to_filter(spec: QueryFilter | tuple) -> QueryFilter:
    if isinstance(spec, QueryFilter):
        return spec
    return QueryFilter(*spec)


class DocumentStore(BaseService):
    """
    Document collections keyed by ``(tenant, collection, document_id)``.

    Filtering and ordering run over the decoded JSON bodies of one
    collection, which keeps the store portable and matches the small
    per-tenant collections it serves.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    @contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.error(
                "document_store_failure",
                extra={"operation": operation, "error": str(exc)},
            )
            raise PersistenceError(operation, str(exc)) from exc

    def _load(
        self, tenant: str, collection: str, document_id: str, lock: bool = False
    ) -> StoredDocument | None:
        stmt = select(StoredDocument).where(
            StoredDocument.tenant == tenant,
            StoredDocument.collection == collection,
            StoredDocument.document_id == document_id,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _record(row: StoredDocument) -> DocumentRecord:
        return DocumentRecord(
            tenant=row.tenant,
            collection=row.collection,
            document_id=row.document_id,
            data=dict(row.data),
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    # -- reads ---------------------------------------------------------------

    def find(self, tenant: str, collection: str, document_id: str) -> DocumentRecord | None:
        with self._store_errors("get"):
            row = self._load(tenant, collection, document_id)
        return self._record(row) if row is not None else None

    def get(self, tenant: str, collection: str, document_id: str) -> DocumentRecord:
        record = self.find(tenant, collection, document_id)
        if record is None:
            raise DocumentNotFoundError(tenant, collection, document_id)
        return record

    def query(
        self,
        tenant: str,
        collection: str,
        filters: Sequence[QueryFilter | tuple] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[DocumentRecord]:
        """
        Documents of one collection matching every filter.

        Filters are ``QueryFilter`` objects or ``(field, op, value)`` tuples
        with op one of ``== != < <= > >= in not-in``. Documents missing the
        ``order_by`` field sort last regardless of direction.
        """
        predicates = [_to_filter(f) for f in filters]
        with self._store_errors("query"):
            rows = self.session.execute(
                select(StoredDocument).where(
                    StoredDocument.tenant == tenant,
                    StoredDocument.collection == collection,
                )
            ).scalars().all()

        records = [
            self._record(row)
            for row in rows
            if all(p.matches(row.data) for p in predicates)
        ]

        if order_by is not None:
            present = [r for r in records if r.data.get(order_by) is not None]
            missing = [r for r in records if r.data.get(order_by) is None]
            present.sort(key=lambda r: r.data[order_by], reverse=descending)
            records = present + missing

        if limit is not None:
            records = records[:limit]
        return records

    # -- writes --------------------------------------------------------------

    def create(
        self,
        tenant: str,
        collection: str,
        data: dict,
        document_id: str | None = None,
    ) -> DocumentRecord:
        now = self._clock.now()
        row = StoredDocument(
            tenant=tenant,
            collection=collection,
            document_id=document_id or str(uuid4()),
            data=dict(data),
            version=1,
            created_at=now,
            updated_at=now,
        )
        with self._store_errors("create"):
            self.session.add(row)
            self.session.flush()
        logger.debug(
            "document_created",
            extra={
                "tenant": tenant,
                "collection": collection,
                "document_id": row.document_id,
            },
        )
        return self._record(row)

    def update(
        self,
        tenant: str,
        collection: str,
        document_id: str,
        partial: dict,
        expected_version: int | None = None,
    ) -> DocumentRecord:
        """
        Merge ``partial`` into the top level of the stored body.

        Raises:
            DocumentNotFoundError: No such document.
            OptimisticLockError: ``expected_version`` is stale.
        """
        with self._store_errors("update"):
            row = self._load(tenant, collection, document_id, lock=True)
            if row is None:
                raise DocumentNotFoundError(tenant, collection, document_id)
            if expected_version is not None and row.version != expected_version:
                logger.warning(
                    "document_version_conflict",
                    extra={
                        "collection": collection,
                        "document_id": document_id,
                        "expected": expected_version,
                        "actual": row.version,
                    },
                )
                raise OptimisticLockError(
                    collection, document_id, expected_version, row.version
                )
            merged = dict(row.data)
            merged.update(partial)
            # Reassign so the JSON column registers the change
            row.data = merged
            row.version = row.version + 1
            row.updated_at = self._clock.now()
            self.session.flush()
        return self._record(row)

    def delete(self, tenant: str, collection: str, document_id: str) -> None:
        with self._store_errors("delete"):
            row = self._load(tenant, collection, document_id, lock=True)
            if row is None:
                raise DocumentNotFoundError(tenant, collection, document_id)
            self.session.delete(row)
            self.session.flush()
        logger.debug(
            "document_deleted",
            extra={
                "tenant": tenant,
                "collection": collection,
                "document_id": document_id,
            },
        )

    def batch(self, tenant: str, operations: Sequence[BatchOperation]) -> int:
        """
        Apply several writes atomically inside a savepoint.

        Either every operation is applied or none is; the first failure is
        re-raised after the savepoint rolls back.
        """
        savepoint = self.session.begin_nested()
        try:
            for op in operations:
                if op.kind == "create":
                    self.create(tenant, op.collection, op.data or {}, op.document_id)
                elif op.kind == "update":
                    self.update(
                        tenant,
                        op.collection,
                        op.document_id,
                        op.data or {},
                        op.expected_version,
                    )
                elif op.kind == "delete":
                    self.delete(tenant, op.collection, op.document_id)
                else:
                    raise ValidationError(f"Unknown batch operation: {op.kind}")
        except Exception:
            savepoint.rollback()
            raise
        savepoint.commit()
        return len(operations)
