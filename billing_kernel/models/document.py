"""
Module: billing_kernel.models.document
Responsibility: ORM persistence for schemaless documents (invoices, product
    catalog entries, notifications) keyed by tenant, collection and id.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (tenant, collection, document_id) is unique.
    - ``version`` starts at 1 and increases by exactly 1 per write; the
      document store compares it to reject stale writes.

Failure modes:
    - IntegrityError on a duplicate (tenant, collection, document_id).
"""

from sqlalchemy import JSON, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, TimestampMixin


class StoredDocument(TimestampMixin, Base):
    """
    One document of a tenant's collection.

    Contract:
        ``data`` holds the JSON body exactly as the codec produced it.
        Field-level filtering happens in the document store, not in SQL,
        so the table stays portable across SQLite and PostgreSQL.
    """

    __tablename__ = "stored_documents"

    __table_args__ = (
        UniqueConstraint(
            "tenant", "collection", "document_id", name="uq_document_key"
        ),
        Index("idx_document_collection", "tenant", "collection"),
    )

    tenant: Mapped[str] = mapped_column(String(50), nullable=False)

    collection: Mapped[str] = mapped_column(String(50), nullable=False)

    document_id: Mapped[str] = mapped_column(String(100), nullable=False)

    data: Mapped[dict] = mapped_column(JSON, nullable=False)

    # Optimistic concurrency token
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
