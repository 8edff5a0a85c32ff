"""
billing_services.invoice_service -- invoice lifecycle over the document store.

Responsibility:
    The imperative shell around the billing engines: create, read, edit and
    delete invoices; record installment and additional payments; change
    installment due dates; move payment and delivery status; serve the EMI
    read models.

Architecture position:
    Services -- stateful orchestration over engines + kernel. Every
    operation opens its own session through ``session_scope`` so the
    service is safe to share between threads.

Invariants enforced:
    - At most one mutation per invoice at a time: mutations run under the
      ``InvoiceLockRegistry`` lock for ``(tenant, invoice_id)`` and write
      with the version they read (``OptimisticLockError`` otherwise).
    - All validation happens before the write; a raised error leaves the
      stored invoice untouched.
    - Invoice numbers come from an atomic counter and never change.
    - Side effects (product catalog) run only after commit and never fail
      the invoice write.

Failure modes:
    - InvoiceNotFoundError, ScheduleMissingError, InstallmentNotFoundError.
    - AlreadyPaidError, InvalidAmountError, PaymentExceedsBalanceError,
      MissingFieldError, InvalidStatusTransitionError, ScheduleClosedError.
    - OptimisticLockError: another process wrote the invoice first.
    - PersistenceError: the store failed; nothing is retried.

Usage:
    service = InvoiceService(init_engine_from_url(url), settings, clock)
    invoice = service.create_invoice("electronics", draft, actor="u-1")
    result = service.record_installment_payment(
        "electronics", invoice.id, 1, "1000.00", method=PaymentMethod.UPI,
    )
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Callable, Sequence
from uuid import uuid4

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from billing_config.schema import BillingSettings
from billing_engines.due_dates import apply_due_date_change
from billing_engines.edit_reconciler import (
    EditOutcome,
    InvoiceChanges,
    reconcile_invoice_edit,
)
from billing_engines.gst import GSTCalculator, TaxFunction
from billing_engines.redistribution import (
    InstallmentPaymentOutcome,
    RedistributionMode,
    record_installment_payment,
)
from billing_engines.schedule import build_emi_plan
from billing_engines.settlement import (
    EMISummary,
    PendingInstallment,
    emi_summary,
    installment_payment_history,
    pending_installments,
    record_additional_payment,
)
from billing_engines.status import (
    mark_fully_paid,
    payment_category,
    transition_delivery_status,
    transition_payment_status,
)
from billing_engines.totals import catalog_entries, compute_totals
from billing_kernel.db.engine import session_scope
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.codec import decode_invoice, encode_invoice
from billing_kernel.domain.invoice import (
    BulkPricing,
    Customer,
    DeliveryStatus,
    EMIPlan,
    Installment,
    Invoice,
    LineItem,
    PaymentDetails,
    PaymentMethod,
    PaymentRecord,
    PaymentRecordType,
    PaymentStatus,
)
from billing_kernel.domain.money import ZERO, require_non_negative_amount
from billing_kernel.exceptions import (
    DocumentNotFoundError,
    InvoiceNotFoundError,
    MissingFieldError,
    PaymentExceedsBalanceError,
    ScheduleMissingError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.document_store import DocumentStore
from billing_services.hooks import HookDispatcher, PostCommitHook
from billing_services.invoice_numbering import InvoiceNumberAllocator
from billing_services.locks import InvoiceLockRegistry
from billing_services.product_catalog import ProductCatalog
from billing_services.stats_cache import StatsCache

logger = get_logger("services.invoice")

SALES = "sales"


# ---------------------------------------------------------------------------
# Inputs and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EMITerms:
    """Installment terms chosen at the counter."""

    number_of_installments: int
    start_date: date | None = None
    monthly_amount: Decimal | None = None
    down_payment: Decimal | str | None = None


@dataclass(frozen=True)
class InvoiceDraft:
    customer: Customer
    items: tuple[LineItem, ...] = ()
    include_gst: bool = True
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.CASH
    down_payment: Decimal | str = ZERO
    bulk_pricing: BulkPricing | None = None
    emi_terms: EMITerms | None = None
    sale_date: date | None = None
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    scheduled_delivery_date: date | None = None
    bank_name: str = ""
    finance_company: str = ""
    payment_reference: str = ""
    sales_person_id: str | None = None
    sales_person_name: str = ""
    remarks: str = ""


@dataclass(frozen=True)
class InstallmentPaymentResult:
    invoice: Invoice
    outcome: InstallmentPaymentOutcome

    @property
    def excess(self) -> Decimal:
        return self.outcome.excess


class InvoiceService:
    """
    Invoice operations for every tenant.

    Contract:
        Public methods take ``tenant`` and ``invoice_id`` and return fresh
        ``Invoice`` values carrying the stored version. Nothing returned is
        attached to a session.

    Non-goals:
        - Does NOT deliver notifications (see ``NotificationGenerator``).
        - Does NOT retry on OptimisticLockError; callers re-read and retry.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: BillingSettings | None = None,
        clock: Clock | None = None,
        tax_fn: TaxFunction | None = None,
        dispatcher: HookDispatcher | None = None,
        catalog: ProductCatalog | None = None,
        stats_cache: StatsCache | None = None,
        locks: InvoiceLockRegistry | None = None,
        mode: RedistributionMode = RedistributionMode.EVEN,
    ):
        self._session_factory = session_factory
        self._settings = settings or BillingSettings()
        self._clock = clock or SystemClock()
        self._tax_fn = tax_fn or GSTCalculator(
            home_state=self._settings.gst.home_state,
            default_slab=self._settings.gst.default_slab,
        )
        self._dispatcher = dispatcher or HookDispatcher()
        self._catalog = catalog
        self._stats_cache = stats_cache
        self._locks = locks or InvoiceLockRegistry()
        self._numbers = InvoiceNumberAllocator(self._settings)
        self._mode = mode

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _load(self, store: DocumentStore, tenant: str, invoice_id: str) -> Invoice:
        try:
            record = store.get(tenant, SALES, invoice_id)
        except DocumentNotFoundError as exc:
            raise InvoiceNotFoundError(invoice_id, tenant) from exc
        return decode_invoice(record.document_id, tenant, record.data, record.version)

    def _read(self, tenant: str, invoice_id: str) -> Invoice:
        with session_scope(self._session_factory) as session:
            return self._load(DocumentStore(session, self._clock), tenant, invoice_id)

    def _catalog_hooks(self, tenant: str, items: Sequence[LineItem]) -> list[PostCommitHook]:
        if self._catalog is None:
            return []
        return [
            PostCommitHook(
                name="product_catalog_upsert",
                action=self._catalog.upsert_from_item,
                args=(tenant, item),
            )
            for item in items
        ]

    def _after_commit(self, tenant: str, hooks: Sequence[PostCommitHook] = ()) -> None:
        if self._stats_cache is not None:
            self._stats_cache.invalidate(tenant)
        self._dispatcher.dispatch(hooks)

    def _mutate(
        self,
        tenant: str,
        invoice_id: str,
        change: Callable[[Invoice], Invoice],
        actor: str | None = None,
        hooks: Callable[[Invoice], Sequence[PostCommitHook]] | None = None,
    ) -> Invoice:
        """
        Read-modify-write one invoice under its lock.

        ``change`` is a pure function of the stored invoice; whatever it
        raises aborts the operation before anything is written.
        """
        with self._locks.hold(tenant, invoice_id), LogContext.bind(
            tenant=tenant, invoice_id=invoice_id, actor_id=actor
        ):
            with session_scope(self._session_factory) as session:
                store = DocumentStore(session, self._clock)
                current = self._load(store, tenant, invoice_id)
                updated = change(current)
                record = store.update(
                    tenant,
                    SALES,
                    invoice_id,
                    encode_invoice(updated),
                    expected_version=current.version,
                )
            updated = replace(updated, version=record.version)
            self._after_commit(tenant, hooks(updated) if hooks else ())
            return updated

    # =========================================================================
    # Create / read / delete
    # =========================================================================

    def _validate_draft(self, draft: InvoiceDraft) -> None:
        if not draft.customer.name.strip():
            raise MissingFieldError("customer_name", "an invoice needs a customer")
        has_bulk = draft.bulk_pricing is not None and draft.bulk_pricing.total_price > 0
        if not draft.items and not has_bulk:
            raise MissingFieldError("items", "an invoice needs at least one item")
        if draft.payment_status is PaymentStatus.EMI and draft.emi_terms is None:
            raise MissingFieldError("emi_details", "EMI invoices need installment terms")
        if (
            draft.delivery_status is DeliveryStatus.SCHEDULED
            and draft.scheduled_delivery_date is None
        ):
            raise MissingFieldError(
                "scheduled_delivery_date", "required for a scheduled delivery"
            )

    def _plan_for(
        self, grand_total: Decimal, terms: EMITerms, sale_date: date, down: Decimal
    ) -> EMIPlan:
        return build_emi_plan(
            grand_total=grand_total,
            down_payment=down,
            number_of_installments=terms.number_of_installments,
            start_date=terms.start_date or sale_date + relativedelta(months=1),
            monthly_amount=terms.monthly_amount,
        )

    def create_invoice(
        self, tenant: str, draft: InvoiceDraft, actor: str | None = None
    ) -> Invoice:
        """
        Price, number and store a new invoice.

        EMI invoices get their plan built here; an initial down payment is
        recorded in the payment history.
        """
        self._validate_draft(draft)
        now = self._clock.now()
        sale_date = draft.sale_date or self._clock.today()
        invoice_id = str(uuid4())

        totals = compute_totals(
            draft.items,
            jurisdiction=draft.customer.state,
            include_gst=draft.include_gst,
            bulk_override=draft.bulk_pricing,
            tax_fn=self._tax_fn,
        )
        grand_total = totals.grand_total
        status = draft.payment_status

        down_source = draft.down_payment
        if draft.emi_terms is not None and draft.emi_terms.down_payment is not None:
            down_source = draft.emi_terms.down_payment
        down = require_non_negative_amount(down_source, "down_payment")

        plan: EMIPlan | None = None
        if status is PaymentStatus.EMI:
            plan = self._plan_for(grand_total, draft.emi_terms, sale_date, down)
            remaining = plan.total_remaining
            record_type = PaymentRecordType.EMI_DOWN_PAYMENT
        elif status is PaymentStatus.PAID:
            down, remaining = grand_total, ZERO
            record_type = PaymentRecordType.DOWN_PAYMENT
        else:
            if down > grand_total:
                raise PaymentExceedsBalanceError(invoice_id, str(down), str(grand_total))
            remaining = grand_total - down
            record_type = PaymentRecordType.DOWN_PAYMENT

        history: tuple[PaymentRecord, ...] = ()
        if down > 0:
            history = (
                PaymentRecord(
                    amount=down,
                    method=draft.payment_method,
                    recorded_at=now,
                    record_type=record_type,
                    reference=draft.payment_reference,
                    recorded_by=actor,
                ),
            )

        with LogContext.bind(tenant=tenant, invoice_id=invoice_id, actor_id=actor):
            with session_scope(self._session_factory) as session:
                invoice = Invoice(
                    id=invoice_id,
                    tenant=tenant,
                    invoice_number=self._numbers.allocate(
                        session, tenant, draft.include_gst, sale_date
                    ),
                    sale_date=sale_date,
                    customer=draft.customer,
                    items=totals.items,
                    include_gst=draft.include_gst,
                    subtotal=totals.subtotal,
                    total_gst=totals.total_gst,
                    grand_total=grand_total,
                    payment_status=status,
                    delivery_status=draft.delivery_status,
                    original_payment_category=payment_category(
                        status, draft.payment_method
                    ),
                    payment_details=PaymentDetails(
                        down_payment=down,
                        remaining_balance=remaining,
                        payment_method=draft.payment_method,
                        bank_name=draft.bank_name,
                        finance_company=draft.finance_company,
                        payment_reference=draft.payment_reference,
                        payment_history=history,
                    ),
                    emi_details=plan,
                    bulk_pricing=draft.bulk_pricing if totals.bulk_applied else None,
                    scheduled_delivery_date=draft.scheduled_delivery_date,
                    sales_person_id=draft.sales_person_id,
                    sales_person_name=draft.sales_person_name,
                    remarks=draft.remarks,
                    created_by=actor,
                    created_at=now,
                    updated_at=now,
                )
                if status is not PaymentStatus.EMI and remaining == ZERO and grand_total > 0:
                    invoice = mark_fully_paid(invoice, now)
                record = DocumentStore(session, self._clock).create(
                    tenant, SALES, encode_invoice(invoice), document_id=invoice_id
                )

            invoice = replace(invoice, version=record.version)
            logger.info(
                "invoice_created",
                extra={
                    "invoice_number": invoice.invoice_number,
                    "payment_status": status.value,
                    "grand_total": str(grand_total),
                    "installments": plan.number_of_installments if plan else 0,
                },
            )
            self._after_commit(tenant, self._catalog_hooks(tenant, catalog_entries(totals.items)))
            return invoice

    def get_invoice(self, tenant: str, invoice_id: str) -> Invoice:
        return self._read(tenant, invoice_id)

    def list_invoices(
        self,
        tenant: str,
        payment_status: PaymentStatus | None = None,
        delivery_status: DeliveryStatus | None = None,
        limit: int | None = None,
    ) -> list[Invoice]:
        """Invoices of ``tenant``, newest first."""
        filters = []
        if payment_status is not None:
            filters.append(("paymentStatus", "==", payment_status.value))
        if delivery_status is not None:
            filters.append(("deliveryStatus", "==", delivery_status.value))
        with session_scope(self._session_factory) as session:
            records = DocumentStore(session, self._clock).query(
                tenant, SALES, filters, order_by="createdAt", descending=True, limit=limit
            )
        return [decode_invoice(r.document_id, tenant, r.data, r.version) for r in records]

    def search_invoices(self, tenant: str, term: str) -> list[Invoice]:
        """Case-insensitive match on invoice number, customer name or item name."""
        needle = term.strip().lower()
        if not needle:
            return []
        return [
            inv
            for inv in self.list_invoices(tenant)
            if needle in inv.invoice_number.lower()
            or needle in inv.customer.name.lower()
            or any(needle in item.name.lower() for item in inv.items)
        ]

    def delete_invoice(self, tenant: str, invoice_id: str, actor: str | None = None) -> None:
        """Delete the invoice together with its plan and installments."""
        with self._locks.hold(tenant, invoice_id), LogContext.bind(
            tenant=tenant, invoice_id=invoice_id, actor_id=actor
        ):
            with session_scope(self._session_factory) as session:
                try:
                    DocumentStore(session, self._clock).delete(tenant, SALES, invoice_id)
                except DocumentNotFoundError as exc:
                    raise InvoiceNotFoundError(invoice_id, tenant) from exc
            logger.info("invoice_deleted")
            self._after_commit(tenant)

    # =========================================================================
    # Edits
    # =========================================================================

    def update_invoice(
        self,
        tenant: str,
        invoice_id: str,
        changes: InvoiceChanges,
        actor: str | None = None,
    ) -> EditOutcome:
        """
        Apply an edit and reconcile totals, balances and the EMI tail.

        The returned outcome carries the stored invoice and any excess the
        edit left over (money received beyond a reduced total).
        """
        outcomes: list[EditOutcome] = []

        def change(current: Invoice) -> Invoice:
            outcome = reconcile_invoice_edit(
                current, changes, tax_fn=self._tax_fn, at=self._clock.now(), actor=actor
            )
            outcomes.append(outcome)
            return outcome.invoice

        invoice = self._mutate(
            tenant,
            invoice_id,
            change,
            actor,
            hooks=lambda _: self._catalog_hooks(tenant, outcomes[0].catalog_items),
        )
        return replace(outcomes[0], invoice=invoice)

    # =========================================================================
    # Payments
    # =========================================================================

    def _require_plan(self, invoice: Invoice) -> EMIPlan:
        if not invoice.is_emi or invoice.emi_details is None:
            raise ScheduleMissingError(invoice.id)
        return invoice.emi_details

    def record_installment_payment(
        self,
        tenant: str,
        invoice_id: str,
        installment_number: int,
        amount: Decimal | str,
        *,
        method: PaymentMethod = PaymentMethod.CASH,
        reference: str = "",
        recorded_by: str | None = None,
        notes: str = "",
    ) -> InstallmentPaymentResult:
        outcomes: list[InstallmentPaymentOutcome] = []

        def change(current: Invoice) -> Invoice:
            now = self._clock.now()
            outcome = record_installment_payment(
                self._require_plan(current),
                installment_number,
                amount,
                method=method,
                reference=reference,
                recorded_by=recorded_by,
                notes=notes,
                paid_at=now,
                mode=self._mode,
            )
            outcomes.append(outcome)
            updated = replace(
                current,
                emi_details=outcome.plan,
                payment_details=replace(
                    current.payment_details,
                    remaining_balance=outcome.plan.total_remaining,
                ),
                updated_at=now,
            )
            if outcome.fully_paid:
                updated = mark_fully_paid(updated, now)
            return updated

        invoice = self._mutate(tenant, invoice_id, change, recorded_by)
        return InstallmentPaymentResult(invoice=invoice, outcome=outcomes[0])

    def record_additional_payment(
        self,
        tenant: str,
        invoice_id: str,
        amount: Decimal | str,
        *,
        method: PaymentMethod = PaymentMethod.CASH,
        reference: str = "",
        recorded_by: str | None = None,
        notes: str = "",
    ) -> Invoice:
        return self._mutate(
            tenant,
            invoice_id,
            lambda current: record_additional_payment(
                current,
                amount,
                method=method,
                reference=reference,
                recorded_by=recorded_by,
                notes=notes,
                paid_at=self._clock.now(),
            ),
            recorded_by,
        )

    def change_due_date(
        self,
        tenant: str,
        invoice_id: str,
        installment_number: int,
        new_date: date,
        reason: str = "",
        actor: str | None = None,
    ) -> Invoice:
        thresholds = self._settings.emi

        def change(current: Invoice) -> Invoice:
            now = self._clock.now()
            plan, flags = apply_due_date_change(
                self._require_plan(current),
                installment_number,
                new_date,
                reason=reason,
                actor=actor,
                changed_at=now,
                frequent_threshold=thresholds.frequent_change_threshold,
                review_threshold=thresholds.review_threshold,
            )
            return replace(
                current, emi_details=plan, customer_due_date_flags=flags, updated_at=now
            )

        return self._mutate(tenant, invoice_id, change, actor)

    # =========================================================================
    # Status
    # =========================================================================

    def update_payment_status(
        self,
        tenant: str,
        invoice_id: str,
        status: PaymentStatus,
        *,
        emi_terms: EMITerms | None = None,
        actor: str | None = None,
    ) -> Invoice:
        """
        Move the payment status. Moving to ``emi`` builds a plan from
        ``emi_terms`` (down payment defaults to what was already received).
        """

        def change(current: Invoice) -> Invoice:
            plan = None
            if status is PaymentStatus.EMI and current.payment_status is not PaymentStatus.EMI:
                if emi_terms is None:
                    raise MissingFieldError("emi_details", "required to move to emi")
                down = require_non_negative_amount(
                    emi_terms.down_payment
                    if emi_terms.down_payment is not None
                    else current.payment_details.down_payment,
                    "down_payment",
                )
                plan = self._plan_for(current.grand_total, emi_terms, current.sale_date, down)
            return transition_payment_status(
                current, status, at=self._clock.now(), emi_plan=plan, actor=actor
            )

        return self._mutate(tenant, invoice_id, change, actor)

    def update_delivery_status(
        self,
        tenant: str,
        invoice_id: str,
        status: DeliveryStatus,
        scheduled_delivery_date: date | None = None,
        actor: str | None = None,
    ) -> Invoice:
        return self._mutate(
            tenant,
            invoice_id,
            lambda current: transition_delivery_status(
                current,
                status,
                at=self._clock.now(),
                scheduled_delivery_date=scheduled_delivery_date,
            ),
            actor,
        )

    # =========================================================================
    # EMI read models
    # =========================================================================

    def get_emi_summary(self, tenant: str, invoice_id: str) -> EMISummary:
        return emi_summary(self._read(tenant, invoice_id), self._clock.today())

    def get_pending_installments(
        self, tenant: str, invoice_id: str
    ) -> list[PendingInstallment]:
        return pending_installments(self._read(tenant, invoice_id), self._clock.today())

    def get_installment_payment_history(
        self, tenant: str, invoice_id: str
    ) -> list[Installment]:
        return installment_payment_history(self._read(tenant, invoice_id))

    def get_pending_emi_invoices(self, tenant: str) -> list[Invoice]:
        """EMI invoices that still have money due."""
        return [
            inv
            for inv in self.list_invoices(tenant, payment_status=PaymentStatus.EMI)
            if not inv.fully_paid
        ]

    def get_pending_deliveries(self, tenant: str) -> list[Invoice]:
        return [
            inv
            for inv in self.list_invoices(tenant)
            if inv.delivery_status is not DeliveryStatus.DELIVERED
        ]
