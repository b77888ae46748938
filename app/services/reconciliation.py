"""Reconcile pending gateway transactions against the gateway's own records.

Callbacks from the gateway can be lost; this poll is what makes a paid
transaction eventually show up as a paid invoice. Writes happen in the
order payment, invoice, transaction, notification so an interrupted run is
repaired by the next one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.metrics import record_reconciliation
from app.models.billing import (
    GatewayTransaction,
    GatewayTransactionStatus,
    InvoiceStatus,
    Payment,
)
from app.models.domain_settings import SettingDomain
from app.schemas.enforcement import (
    PaymentNotificationResult,
    ReconciliationDetail,
    ReconciliationReport,
)
from app.services.common import round_money
from app.services.enforcement_errors import DataInconsistencyError, EnforcementError
from app.services.gateway_clients import (
    EXPIRED,
    FAILED,
    PAID,
    REFUND,
    UNPAID,
    GatewayClient,
    GatewayStatus,
    build_gateway_client,
)
from app.services.notifications import Notifier, build_notifier, safe_notify
from app.services.settings_spec import resolve_values
from app.services.state_store import StateStore

logger = logging.getLogger(__name__)


class PaymentReconciler:
    def __init__(
        self,
        db: Session,
        *,
        gateway: str | None = None,
        client: GatewayClient | None = None,
        notifier: Notifier | None = None,
        batch_limit: int | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        self.db = db
        self.store = StateStore(db)
        values = resolve_values(
            db,
            SettingDomain.billing,
            ["reconciliation_gateway", "reconciliation_window_hours", "reconciliation_batch_limit"],
        )
        self.gateway = gateway or str(values["reconciliation_gateway"])
        self.default_window = timedelta(hours=int(values["reconciliation_window_hours"]))
        self.batch_limit = batch_limit or int(values["reconciliation_batch_limit"])
        self.client = client if client is not None else build_gateway_client(db, self.gateway)
        self.notifier = notifier or build_notifier(db)
        self.should_stop = should_stop or (lambda: False)

    def reconcile_pending(self, window: timedelta | None = None) -> ReconciliationReport:
        report = ReconciliationReport(gateway=self.gateway)
        if self.client is None:
            logger.info("Gateway %s not configured; skipping reconciliation", self.gateway)
            report.skipped = True
            return report

        transactions = self.store.get_pending_transactions(
            self.gateway, window or self.default_window, limit=self.batch_limit
        )
        logger.info("Reconciling %s pending %s transactions", len(transactions), self.gateway)

        for transaction in transactions:
            if self.should_stop():
                report.stopped = True
                break
            report.checked += 1
            detail = ReconciliationDetail(
                transaction_id=transaction.id,
                invoice_id=transaction.invoice_id,
                reference=transaction.external_reference,
                outcome="pending",
            )
            try:
                self._reconcile_one(transaction, detail)
            except SQLAlchemyError:
                raise
            except EnforcementError as exc:
                logger.warning(
                    "Reconciliation of %s failed: %s", transaction.external_reference, exc
                )
                detail.outcome = "error"
                detail.error = str(exc)
            except Exception as exc:
                logger.exception("Reconciliation of %s failed", transaction.external_reference)
                detail.outcome = "error"
                detail.error = str(exc)

            if detail.outcome == "processed":
                report.processed += 1
            elif detail.outcome in {"already_processed", "invoice_already_paid"}:
                report.already_processed += 1
            elif detail.outcome == "failed":
                report.failed += 1
            elif detail.outcome == "pending":
                report.still_pending += 1
            else:
                report.errors += 1
            record_reconciliation(self.gateway, detail.outcome)
            report.details.append(detail)

        logger.info(
            "Reconciliation done: checked=%s processed=%s already=%s failed=%s pending=%s errors=%s",
            report.checked,
            report.processed,
            report.already_processed,
            report.failed,
            report.still_pending,
            report.errors,
        )
        return report

    def _reconcile_one(self, transaction: GatewayTransaction, detail: ReconciliationDetail) -> None:
        status = self.client.get_transaction_status(transaction.external_reference)
        detail.gateway_status = status.status

        if status.status == PAID:
            self._record_paid(transaction, status, detail)
        elif status.status in {EXPIRED, FAILED, REFUND}:
            self.store.set_transaction_status(transaction.id, GatewayTransactionStatus.failed)
            detail.outcome = "failed"
            logger.info(
                "Transaction %s marked failed (gateway %s)",
                transaction.external_reference,
                status.status,
            )
        elif status.status == UNPAID:
            detail.outcome = "pending"

    def _record_paid(
        self,
        transaction: GatewayTransaction,
        status: GatewayStatus,
        detail: ReconciliationDetail,
    ) -> None:
        invoice = self.store.get_invoice(transaction.invoice_id)
        if not invoice:
            raise DataInconsistencyError(
                f"Invoice {transaction.invoice_id} for transaction "
                f"{transaction.external_reference} not found"
            )
        payment_type = status.payment_method or "online"

        if invoice.status == InvoiceStatus.paid:
            # Paid through another channel; stop polling this transaction
            self.store.set_transaction_status(
                transaction.id, GatewayTransactionStatus.success, payment_type=payment_type
            )
            detail.outcome = "invoice_already_paid"
            return
        if invoice.status != InvoiceStatus.unpaid:
            raise DataInconsistencyError(
                f"Gateway reports {transaction.external_reference} paid but invoice "
                f"{invoice.id} is {invoice.status.value}"
            )

        payment = Payment(
            invoice_id=invoice.id,
            amount=round_money(status.amount) if status.amount is not None else transaction.amount,
            payment_method="online",
            reference_number=transaction.external_reference,
            payment_date=status.paid_at or datetime.now(UTC),
            notes=f"Payment via {self.gateway} - {payment_type} (reconciliation)",
        )
        inserted, payment_id = self.store.insert_payment_if_absent(payment)
        detail.payment_id = payment_id

        # Invoice and transaction are repaired whether or not this call inserted;
        # only the inserting call notifies
        self.store.set_invoice_status(invoice.id, InvoiceStatus.paid, payment_method="online")
        self.store.set_transaction_status(
            transaction.id, GatewayTransactionStatus.success, payment_type=payment_type
        )
        if not inserted:
            detail.outcome = "already_processed"
            logger.info(
                "Payment for %s already recorded as %s",
                transaction.external_reference,
                payment_id,
            )
            return

        detail.outcome = "processed"
        logger.info(
            "Recorded payment %s for invoice %s from %s",
            payment_id,
            invoice.id,
            transaction.external_reference,
        )
        safe_notify(self.notifier.notify_payment_received, payment_id)


def resend_payment_notification(
    db: Session, identifier, notifier: Notifier | None = None
) -> PaymentNotificationResult:
    """Send the payment-received notification again.

    A payment inserted by a run that died before notifying is never notified
    by later polls, which see it as already recorded. ``identifier`` is a
    payment id, an invoice id or an invoice number; for invoices the latest
    payment is used.
    """
    store = StateStore(db)
    payment = store.get_payment(identifier)
    if payment is None:
        invoice = store.find_invoice(identifier)
        if invoice is None:
            raise LookupError(f"No payment or invoice matches {identifier}")
        payment = store.latest_payment_for_invoice(invoice.id)
        if payment is None:
            raise LookupError(
                f"Invoice {invoice.invoice_number or invoice.id} has no recorded payment"
            )
    else:
        invoice = store.get_invoice(payment.invoice_id)

    notifier = notifier or build_notifier(db)
    notified = safe_notify(notifier.notify_payment_received, payment.id)
    logger.info("Payment notification resent for %s (delivered=%s)", payment.id, notified)
    return PaymentNotificationResult(
        payment_id=payment.id,
        invoice_id=payment.invoice_id,
        invoice_number=invoice.invoice_number if invoice else None,
        amount=payment.amount,
        notified=notified,
    )
