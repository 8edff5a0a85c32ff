"""Kernel services: document store and sequence counters."""

from billing_kernel.services.document_store import (
    BatchOperation,
    DocumentRecord,
    DocumentStore,
    QueryFilter,
)
from billing_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "BatchOperation",
    "DocumentRecord",
    "DocumentStore",
    "QueryFilter",
    "SequenceCounter",
    "SequenceService",
]
