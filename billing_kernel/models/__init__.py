"""ORM models for the billing kernel."""

from billing_kernel.models.document import StoredDocument

__all__ = ["StoredDocument"]
