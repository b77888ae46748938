"""Persistence access for enforcement and reconciliation workflows.

Each mutation is a single-row update committed immediately so that a crash
between steps leaves the ledger in a state the next run can pick up from.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from app.models.billing import (
    GatewayTransaction,
    GatewayTransactionStatus,
    Invoice,
    InvoiceStatus,
    Payment,
)
from app.models.domain_settings import SettingDomain
from app.models.enforcement import AttemptOutcome, SuspensionAction, SuspensionAttempt
from app.models.network import EnforcementTarget
from app.models.subscriber import Customer, CustomerStatus
from app.services.common import coerce_uuid
from app.services.settings_spec import resolve_value

logger = logging.getLogger(__name__)


class StateStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    # Customers

    def get_customer(self, customer_id) -> Customer | None:
        return self.db.get(Customer, coerce_uuid(customer_id))

    def set_customer_status(self, customer_id, status: CustomerStatus) -> Customer:
        customer = self.get_customer(customer_id)
        if not customer:
            raise LookupError(f"Customer {customer_id} not found")
        if customer.status != status:
            customer.status = status
            customer.updated_at = datetime.now(UTC)
            self.db.commit()
        return customer

    def list_suspended_customers(self) -> list[Customer]:
        return (
            self.db.query(Customer)
            .filter(Customer.status == CustomerStatus.suspended)
            .order_by(Customer.created_at.asc())
            .all()
        )

    def has_unpaid_invoices(self, customer_id) -> bool:
        return (
            self.db.query(Invoice.id)
            .filter(Invoice.customer_id == coerce_uuid(customer_id))
            .filter(Invoice.status == InvoiceStatus.unpaid)
            .first()
            is not None
        )

    def get_target_for_customer(self, customer: Customer) -> EnforcementTarget | None:
        """Customer's own active target, else the configured default, else the first active one."""
        if customer.enforcement_target_id:
            target = self.db.get(EnforcementTarget, customer.enforcement_target_id)
            if target and target.is_active:
                return target
        default_id = resolve_value(
            self.db, SettingDomain.network, "default_enforcement_target_id"
        )
        if default_id:
            try:
                target = self.db.get(EnforcementTarget, coerce_uuid(default_id))
            except ValueError:
                logger.warning("Invalid default_enforcement_target_id: %s", default_id)
                target = None
            if target and target.is_active:
                return target
        return (
            self.db.query(EnforcementTarget)
            .filter(EnforcementTarget.is_active.is_(True))
            .order_by(EnforcementTarget.created_at.asc())
            .first()
        )

    # Invoices

    def get_invoice(self, invoice_id) -> Invoice | None:
        return self.db.get(Invoice, coerce_uuid(invoice_id))

    def get_overdue_unpaid_invoices(self, today: date) -> list[Invoice]:
        """Unpaid invoices due on or before ``today``, oldest due date first."""
        return (
            self.db.query(Invoice)
            .options(joinedload(Invoice.customer))
            .filter(Invoice.status == InvoiceStatus.unpaid)
            .filter(Invoice.due_date <= today)
            .order_by(Invoice.due_date.asc(), Invoice.created_at.asc())
            .all()
        )

    def set_invoice_status(
        self,
        invoice_id,
        status: InvoiceStatus,
        payment_method: str | None = None,
    ) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if not invoice:
            raise LookupError(f"Invoice {invoice_id} not found")
        if invoice.status == status:
            return invoice
        invoice.status = status
        if status == InvoiceStatus.paid:
            invoice.paid_at = datetime.now(UTC)
            if payment_method:
                invoice.payment_method = payment_method
        invoice.updated_at = datetime.now(UTC)
        self.db.commit()
        return invoice

    # Payments

    def insert_payment_if_absent(self, payment: Payment) -> tuple[bool, object]:
        """Insert a payment unless one exists for (invoice_id, reference_number).

        Returns ``(inserted, payment_id)``. The unique constraint decides the
        race; the loser gets the winner's id back.
        """
        nested = self.db.begin_nested()
        try:
            self.db.add(payment)
            self.db.flush()
            nested.commit()
        except IntegrityError:
            nested.rollback()
            existing = (
                self.db.query(Payment)
                .filter(Payment.invoice_id == payment.invoice_id)
                .filter(Payment.reference_number == payment.reference_number)
                .first()
            )
            return False, existing.id if existing else None
        self.db.commit()
        return True, payment.id

    def find_invoice(self, identifier) -> Invoice | None:
        """Look an invoice up by id or by invoice number."""
        try:
            invoice = self.get_invoice(identifier)
        except ValueError:
            invoice = None
        if invoice:
            return invoice
        return (
            self.db.query(Invoice)
            .filter(Invoice.invoice_number == str(identifier))
            .first()
        )

    def get_payment(self, payment_id) -> Payment | None:
        try:
            return self.db.get(Payment, coerce_uuid(payment_id))
        except ValueError:
            return None

    def latest_payment_for_invoice(self, invoice_id) -> Payment | None:
        return (
            self.db.query(Payment)
            .filter(Payment.invoice_id == coerce_uuid(invoice_id))
            .order_by(Payment.payment_date.desc(), Payment.created_at.desc())
            .first()
        )

    # Gateway transactions

    def get_pending_transactions(
        self,
        gateway: str,
        window: timedelta,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[GatewayTransaction]:
        since = (now or datetime.now(UTC)) - window
        query = (
            self.db.query(GatewayTransaction)
            .filter(GatewayTransaction.status == GatewayTransactionStatus.pending)
            .filter(GatewayTransaction.gateway == gateway)
            .filter(GatewayTransaction.created_at >= since)
            .filter(GatewayTransaction.external_reference.isnot(None))
            .filter(GatewayTransaction.external_reference != "")
            .order_by(GatewayTransaction.created_at.desc())
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def set_transaction_status(
        self,
        transaction_id,
        status: GatewayTransactionStatus,
        payment_type: str | None = None,
    ) -> GatewayTransaction:
        transaction = self.db.get(GatewayTransaction, coerce_uuid(transaction_id))
        if not transaction:
            raise LookupError(f"Gateway transaction {transaction_id} not found")
        transaction.status = status
        if payment_type:
            transaction.payment_type = payment_type
        transaction.updated_at = datetime.now(UTC)
        self.db.commit()
        return transaction

    # Audit

    def record_suspension_attempt(
        self,
        customer: Customer,
        *,
        action: SuspensionAction,
        method: str,
        outcome: AttemptOutcome,
        target: EnforcementTarget | None = None,
        reason: str | None = None,
        error: str | None = None,
    ) -> SuspensionAttempt:
        attempt = SuspensionAttempt(
            customer_id=customer.id,
            enforcement_target_id=target.id if target else None,
            action=action,
            method=method,
            target_ip=customer.static_ip,
            mac_address=customer.mac_address,
            outcome=outcome,
            reason=(reason or "")[:255] or None,
            error=error,
        )
        self.db.add(attempt)
        self.db.commit()
        return attempt

    def list_suspension_attempts(self, customer_id, limit: int = 50) -> list[SuspensionAttempt]:
        return (
            self.db.query(SuspensionAttempt)
            .filter(SuspensionAttempt.customer_id == coerce_uuid(customer_id))
            .order_by(SuspensionAttempt.attempted_at.desc())
            .limit(limit)
            .all()
        )

    def restore_in_progress(self, customer_id) -> bool:
        """True when the last effective device change for the customer was a restore."""
        latest = (
            self.db.query(SuspensionAttempt)
            .filter(SuspensionAttempt.customer_id == coerce_uuid(customer_id))
            .filter(
                SuspensionAttempt.outcome.in_(
                    [AttemptOutcome.applied, AttemptOutcome.already_active, AttemptOutcome.reverted]
                )
            )
            .order_by(SuspensionAttempt.attempted_at.desc())
            .first()
        )
        return latest is not None and latest.action == SuspensionAction.restore
