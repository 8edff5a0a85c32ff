"""
Typed exception hierarchy for the billing kernel.

Every error has a typed class (catch by type, never by message), a static
``code`` attribute (machine-readable, API-safe) and structured attributes
carrying its context.

Example:
    try:
        service.record_installment_payment(tenant, invoice_id, 3, "1000")
    except AlreadyPaidError as e:
        api_response(code=e.code, installment=e.installment_number)
    except ValidationError as e:
        api_response(code=e.code, message=str(e))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- PaymentExceedsBalanceError
    |   +-- MissingFieldError
    |   +-- InvalidStatusTransitionError
    |   +-- ScheduleClosedError
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- InstallmentNotFoundError
    |   +-- ScheduleMissingError
    |   +-- DocumentNotFoundError
    |
    +-- AlreadyPaidError
    |   +-- InstallmentPaidError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- PersistenceError
    |
    +-- ConfigurationError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Validation and not-found errors are raised before any write. The stored
   invoice is untouched when one of them propagates.

2. PersistenceError wraps the store client's failure (``__cause__`` holds
   the original). The kernel never retries.

3. OptimisticLockError means another writer committed first. Re-read and
   re-apply the command.

4. Best-effort side effects (catalog upsert, notification writes) never
   raise any of these; they log and continue.
"""


class BillingError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_ERROR"


# Validation


class ValidationError(BillingError):
    """Input rejected before any state change."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Monetary amount is non-positive, NaN, or otherwise unusable."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: object, reason: str = "must be a positive amount"):
        self.field = field
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class PaymentExceedsBalanceError(ValidationError):
    """Payment is larger than the invoice's remaining balance."""

    code: str = "PAYMENT_EXCEEDS_BALANCE"

    def __init__(self, invoice_id: str, amount: str, remaining_balance: str):
        self.invoice_id = invoice_id
        self.amount = amount
        self.remaining_balance = remaining_balance
        super().__init__(
            f"Payment {amount} exceeds remaining balance {remaining_balance} "
            f"on invoice {invoice_id}"
        )


class MissingFieldError(ValidationError):
    """A required field was not supplied."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str, context: str = ""):
        self.field = field
        self.context = context
        suffix = f" ({context})" if context else ""
        super().__init__(f"Missing required field: {field}{suffix}")


class InvalidStatusTransitionError(ValidationError):
    """Requested payment or delivery status change is not allowed."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, kind: str, current: str, target: str):
        self.kind = kind
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {kind} status from {current} to {target}")


class ScheduleClosedError(ValidationError):
    """The EMI schedule has no unpaid installment left to absorb a balance."""

    code: str = "SCHEDULE_CLOSED"

    def __init__(self, invoice_id: str, balance: str):
        self.invoice_id = invoice_id
        self.balance = balance
        super().__init__(
            f"EMI schedule of invoice {invoice_id} is fully paid; "
            f"cannot absorb balance {balance}"
        )


# Not found


class NotFoundError(BillingError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given ID does not exist for the tenant."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str, tenant: str | None = None):
        self.invoice_id = invoice_id
        self.tenant = tenant
        super().__init__(f"Invoice not found: {invoice_id}")


class InstallmentNotFoundError(NotFoundError):
    """Installment number does not exist in the schedule."""

    code: str = "INSTALLMENT_NOT_FOUND"

    def __init__(self, installment_number: int, invoice_id: str | None = None):
        self.installment_number = installment_number
        self.invoice_id = invoice_id
        super().__init__(f"Installment {installment_number} not found")


class ScheduleMissingError(NotFoundError):
    """EMI operation requested on an invoice without an EMI schedule."""

    code: str = "SCHEDULE_MISSING"

    def __init__(self, invoice_id: str | None = None):
        self.invoice_id = invoice_id
        super().__init__(f"EMI schedule not found for invoice {invoice_id}")


class DocumentNotFoundError(NotFoundError):
    """Stored document does not exist."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, tenant: str, collection: str, document_id: str):
        self.tenant = tenant
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"Document not found: {tenant}/{collection}/{document_id}")


# Payment state


class AlreadyPaidError(BillingError):
    """Installment is already paid; a second payment is refused."""

    code: str = "ALREADY_PAID"

    def __init__(
        self,
        installment_number: int,
        invoice_id: str | None = None,
        message: str | None = None,
    ):
        self.installment_number = installment_number
        self.invoice_id = invoice_id
        super().__init__(message or f"Installment {installment_number} is already paid")


class InstallmentPaidError(AlreadyPaidError):
    """Paid installments are frozen; their due date cannot change."""

    code: str = "INSTALLMENT_PAID"

    def __init__(self, installment_number: int, invoice_id: str | None = None):
        super().__init__(
            installment_number,
            invoice_id,
            f"Cannot update due date for paid installment {installment_number}",
        )


# Concurrency


class ConcurrencyError(BillingError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Stored version differs from the version the writer read."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected: int, actual: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"expected version {expected}, found {actual}"
        )


# Infrastructure


class PersistenceError(BillingError):
    """The backing store rejected a read or write."""

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Store {operation} failed: {detail}")


class ConfigurationError(BillingError):
    """Billing settings are malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration {key}: {reason}")
