"""
NotificationGenerator -- EMI and delivery reminder job.

Contract:
    ``generate_all(tenant, user_id)`` scans a tenant's invoices and keeps the
    ``notifications`` collection in step with them:

    * one notification per unpaid installment due within the window
      (overdue included), priority raised by the installment's collection
      risk,
    * one low-priority reminder for the next installment due within a
      month when nothing is due sooner,
    * one notification per scheduled delivery within the window,
    * notifications of paid installments and delivered orders are deleted.

    Notifications have deterministic document ids, so re-running the job
    never duplicates them. An EMI notification whose installment amount or
    due date has since changed is rewritten in place, keeping its read
    state.

Concurrency:
    One run per generator at a time (an in-flight flag) and no new run
    within ``cooldown_seconds`` of the previous start. A skipped call
    returns ``NotificationRunResult(skipped=True)``.

Failure modes:
    Individual notification writes are best-effort: a failure is logged
    and counted, and the run carries on with the next one. Reading the
    invoices is not: a store failure there propagates.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable

from sqlalchemy.orm import Session

from billing_config.schema import BillingSettings
from billing_engines.due_dates import classify_risk
from billing_kernel.db.engine import session_scope
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.codec import decode_invoice
from billing_kernel.domain.invoice import (
    DeliveryStatus,
    Installment,
    Invoice,
    PaymentStatus,
    RiskLevel,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.document_store import DocumentStore

logger = get_logger("services.notifications")

NOTIFICATIONS = "notifications"
SALES = "sales"
UPCOMING_HORIZON_DAYS = 30
DUE_SOON_DAYS = 3

_PRIORITY_ORDER = ("low", "medium", "high", "critical")


@dataclass(frozen=True)
class NotificationRunResult:
    emi_created: int = 0
    emi_deleted: int = 0
    emi_refreshed: int = 0
    upcoming_created: int = 0
    delivery_created: int = 0
    delivered_cleaned: int = 0
    failures: int = 0
    skipped: bool = False

    @property
    def total(self) -> int:
        return self.emi_created + self.upcoming_created + self.delivery_created


def _format_currency(amount: Decimal) -> str:
    return f"₹{amount:,.2f}"


def _days(n: int) -> str:
    return f"{n} day{'s' if n != 1 else ''}"


def _urgency(days_until_due: int) -> str:
    if days_until_due < 0:
        return "overdue"
    if days_until_due == 0:
        return "today"
    if days_until_due <= DUE_SOON_DAYS:
        return "soon"
    return "upcoming"


def _raise_priority(base: str, risk: RiskLevel) -> str:
    return max(base, risk.value, key=_PRIORITY_ORDER.index)


def emi_notification_key(invoice_id: str, installment_number: int) -> str:
    return f"emi_{invoice_id}_{installment_number}"


def upcoming_notification_key(invoice_id: str, installment_number: int) -> str:
    return f"emi_upcoming_{invoice_id}_{installment_number}"


def delivery_notification_key(invoice_id: str, scheduled_date: date) -> str:
    return f"delivery_{invoice_id}_{scheduled_date.isoformat()}"


def _out_of_date(stored: dict, body: dict) -> bool:
    """A redistribution or due-date change moved the installment under it."""
    fresh = body["data"]
    return any(stored.get(field) != fresh[field] for field in ("amount", "dueDate"))


def build_emi_notification(
    invoice: Invoice,
    installment: Installment,
    days_until_due: int,
    user_id: str,
    *,
    frequent_threshold: int = 3,
    review_threshold: int = 5,
) -> dict:
    """Notification body for one installment due within the window."""
    amount = _format_currency(installment.amount)
    customer = invoice.customer.name
    if days_until_due < 0:
        title = "EMI Payment Overdue"
        message = f"EMI payment of {amount} is {_days(-days_until_due)} overdue for {customer}"
        base = "high"
    elif days_until_due == 0:
        title = "EMI Payment Due Today"
        message = f"EMI payment of {amount} is due today for {customer}"
        base = "high"
    elif days_until_due <= DUE_SOON_DAYS:
        title = "EMI Payment Due Soon"
        message = f"EMI payment of {amount} is due in {_days(days_until_due)} for {customer}"
        base = "medium"
    else:
        title = "Upcoming EMI Payment"
        message = f"EMI payment of {amount} is due in {_days(days_until_due)} for {customer}"
        base = "medium"

    flags = invoice.customer_due_date_flags
    risk = classify_risk(
        days_until_due,
        installment.due_date_change_count,
        flags.total_changes if flags else 0,
        frequent_threshold=frequent_threshold,
        review_threshold=review_threshold,
    )
    return {
        "title": title,
        "message": message,
        "type": "emi_due",
        "category": "emi",
        "priority": _raise_priority(base, risk),
        "userId": user_id,
        "read": False,
        "invoiceId": invoice.id,
        "data": {
            "customerId": invoice.customer.customer_id,
            "customerName": customer,
            "invoiceId": invoice.id,
            "invoiceNumber": invoice.invoice_number,
            "amount": str(installment.amount),
            "dueDate": installment.due_date.isoformat(),
            "installmentNumber": installment.installment_number,
            "phoneNumber": invoice.customer.phone,
            "isOverdue": days_until_due < 0,
            "daysDiff": abs(days_until_due),
            "urgencyLevel": _urgency(days_until_due),
            "riskLevel": risk.value,
            "dueDateChangeCount": installment.due_date_change_count,
        },
    }


def build_upcoming_notification(
    invoice: Invoice, installment: Installment, days_until_due: int, user_id: str
) -> dict:
    return {
        "title": "Upcoming EMI Payment",
        "message": (
            f"EMI payment of {_format_currency(installment.amount)} is due in "
            f"{_days(days_until_due)} for {invoice.customer.name}"
        ),
        "type": "emi_upcoming",
        "category": "emi",
        "priority": "low",
        "userId": user_id,
        "read": False,
        "invoiceId": invoice.id,
        "data": {
            "customerId": invoice.customer.customer_id,
            "customerName": invoice.customer.name,
            "invoiceId": invoice.id,
            "invoiceNumber": invoice.invoice_number,
            "amount": str(installment.amount),
            "dueDate": installment.due_date.isoformat(),
            "installmentNumber": installment.installment_number,
            "daysDiff": days_until_due,
        },
    }


def build_delivery_notification(invoice: Invoice, days_until_due: int, user_id: str) -> dict:
    customer = invoice.customer.name
    if days_until_due < 0:
        title = "Delivery Overdue"
        message = f"Delivery for {customer} is {_days(-days_until_due)} overdue"
        kind, priority = "delivery_overdue", "high"
    elif days_until_due == 0:
        title = "Delivery Scheduled Today"
        message = f"Delivery scheduled today for {customer}"
        kind, priority = "delivery_today", "high"
    else:
        title = "Delivery Due Soon"
        message = f"Delivery scheduled in {_days(days_until_due)} for {customer}"
        kind, priority = "delivery_scheduled", "medium"
    return {
        "title": title,
        "message": message,
        "type": kind,
        "category": "delivery",
        "priority": priority,
        "userId": user_id,
        "read": False,
        "invoiceId": invoice.id,
        "data": {
            "customerId": invoice.customer.customer_id,
            "customerName": customer,
            "orderId": invoice.id,
            "orderNumber": invoice.invoice_number,
            "scheduledDate": invoice.scheduled_delivery_date.isoformat(),
            "address": invoice.customer.address,
            "phoneNumber": invoice.customer.phone,
            "itemCount": len(invoice.items),
            "isOverdue": days_until_due < 0,
            "daysDiff": abs(days_until_due),
        },
    }


class NotificationGenerator:
    """
    Reminder generation for one process.

    Build one generator and share it; the in-flight flag and cooldown are
    per instance.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: BillingSettings | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._settings = settings or BillingSettings()
        self._clock = clock or SystemClock()
        self._in_flight = threading.Lock()
        self._last_started: float | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def generate_all(self, tenant: str, user_id: str) -> NotificationRunResult:
        if not self._in_flight.acquire(blocking=False):
            logger.info("notification_run_skipped", extra={"tenant": tenant, "reason": "in_flight"})
            return NotificationRunResult(skipped=True)
        try:
            now = self._clock.monotonic()
            cooldown = self._settings.notifications.cooldown_seconds
            if self._last_started is not None and now - self._last_started < cooldown:
                logger.info(
                    "notification_run_skipped",
                    extra={"tenant": tenant, "reason": "cooldown"},
                )
                return NotificationRunResult(skipped=True)
            self._last_started = now

            with LogContext.bind(tenant=tenant, actor_id=user_id):
                result = self._run(tenant, user_id)
            logger.info(
                "notification_run_completed",
                extra={
                    "emi_created": result.emi_created,
                    "emi_deleted": result.emi_deleted,
                    "emi_refreshed": result.emi_refreshed,
                    "upcoming_created": result.upcoming_created,
                    "delivery_created": result.delivery_created,
                    "delivered_cleaned": result.delivered_cleaned,
                    "failures": result.failures,
                },
            )
            return result
        finally:
            self._in_flight.release()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _invoices(self, tenant: str, field: str, value: str) -> list[Invoice]:
        with session_scope(self._session_factory) as session:
            records = DocumentStore(session, self._clock).query(
                tenant, SALES, [(field, "==", value)]
            )
        return [decode_invoice(r.document_id, tenant, r.data, r.version) for r in records]

    def _existing(self, tenant: str) -> dict[str, dict]:
        """Stored notifications by id, mapped to their ``data`` payload."""
        with session_scope(self._session_factory) as session:
            records = DocumentStore(session, self._clock).query(tenant, NOTIFICATIONS)
        return {r.document_id: r.data.get("data") or {} for r in records}

    def _write(self, tenant: str, action: str, key: str, body: dict | None = None) -> bool:
        try:
            with session_scope(self._session_factory) as session:
                store = DocumentStore(session, self._clock)
                if action == "create":
                    store.create(
                        tenant,
                        NOTIFICATIONS,
                        {**body, "createdAt": self._clock.now().isoformat()},
                        document_id=key,
                    )
                elif action == "refresh":
                    # read state and createdAt survive
                    changes = {k: v for k, v in body.items() if k != "read"}
                    store.update(
                        tenant,
                        NOTIFICATIONS,
                        key,
                        {**changes, "updatedAt": self._clock.now().isoformat()},
                    )
                else:
                    store.delete(tenant, NOTIFICATIONS, key)
            return True
        except Exception:
            logger.warning(
                "notification_write_failed",
                extra={"action": action, "notification_key": key},
                exc_info=True,
            )
            return False

    def _run(self, tenant: str, user_id: str) -> NotificationRunResult:
        today = self._clock.today()
        window = self._settings.notifications.due_window_days
        thresholds = self._settings.emi
        existing = self._existing(tenant)
        counts = dict.fromkeys(
            ("emi_created", "emi_deleted", "emi_refreshed", "upcoming_created",
             "delivery_created", "delivered_cleaned", "failures"),
            0,
        )

        def apply(action: str, key: str, counter: str, body: dict | None = None) -> None:
            if self._write(tenant, action, key, body):
                counts[counter] += 1
                if action == "delete":
                    existing.pop(key, None)
                else:
                    existing[key] = body["data"]
            else:
                counts["failures"] += 1

        def upsert(key: str, counter: str, body: dict) -> None:
            if key not in existing:
                apply("create", key, counter, body)
            elif _out_of_date(existing[key], body):
                apply("refresh", key, "emi_refreshed", body)

        for invoice in self._invoices(tenant, "paymentStatus", PaymentStatus.EMI.value):
            if invoice.emi_details is None:
                continue
            due_within_window = False
            for inst in invoice.emi_details.schedule:
                key = emi_notification_key(invoice.id, inst.installment_number)
                upcoming_key = upcoming_notification_key(invoice.id, inst.installment_number)
                if inst.paid:
                    for stale in (key, upcoming_key):
                        if stale in existing:
                            apply("delete", stale, "emi_deleted")
                    continue
                days = (inst.due_date - today).days
                if days <= window:
                    due_within_window = True
                    upsert(
                        key,
                        "emi_created",
                        build_emi_notification(
                            invoice,
                            inst,
                            days,
                            user_id,
                            frequent_threshold=thresholds.frequent_change_threshold,
                            review_threshold=thresholds.review_threshold,
                        ),
                    )

            if not due_within_window:
                upcoming = [
                    (inst, (inst.due_date - today).days)
                    for inst in invoice.emi_details.unpaid_installments
                    if window < (inst.due_date - today).days <= UPCOMING_HORIZON_DAYS
                ]
                if upcoming:
                    inst, days = min(upcoming, key=lambda pair: pair[0].due_date)
                    upsert(
                        upcoming_notification_key(invoice.id, inst.installment_number),
                        "upcoming_created",
                        build_upcoming_notification(invoice, inst, days, user_id),
                    )

        for invoice in self._invoices(tenant, "deliveryStatus", DeliveryStatus.SCHEDULED.value):
            if invoice.scheduled_delivery_date is None:
                continue
            days = (invoice.scheduled_delivery_date - today).days
            key = delivery_notification_key(invoice.id, invoice.scheduled_delivery_date)
            if days <= window and key not in existing:
                apply(
                    "create",
                    key,
                    "delivery_created",
                    build_delivery_notification(invoice, days, user_id),
                )

        delivered = {
            inv.id
            for inv in self._invoices(tenant, "deliveryStatus", DeliveryStatus.DELIVERED.value)
        }
        for key in sorted(existing):
            if not key.startswith("delivery_"):
                continue
            invoice_id = key[len("delivery_"):].rsplit("_", 1)[0]
            if invoice_id in delivered:
                apply("delete", key, "delivered_cleaned")

        return NotificationRunResult(**counts)
