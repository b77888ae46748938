"""Delinquency detection over unpaid invoices."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.models.billing import Invoice
from app.models.subscriber import Customer, CustomerStatus
from app.services.state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class OverdueCase:
    customer: Customer
    invoice: Invoice
    days_overdue: int


@dataclass
class OverdueEvaluation:
    customer: Customer
    invoice: Invoice
    days_overdue: int
    actionable: bool
    skip_reason: str | None = None


def billing_today(timezone_name: str | None) -> date:
    try:
        tz = ZoneInfo(timezone_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown billing timezone %s, using UTC", timezone_name)
        tz = ZoneInfo("UTC")
    return datetime.now(tz).date()


class OverdueScanner:
    """Read-only: decides which customers have crossed the grace period."""

    def __init__(self, store: StateStore, timezone_name: str | None = "UTC") -> None:
        self.store = store
        self.timezone_name = timezone_name

    def today(self) -> date:
        return billing_today(self.timezone_name)

    @staticmethod
    def _skip_reason(customer: Customer, days_overdue: int, grace_period_days: int) -> str | None:
        if days_overdue < grace_period_days:
            return "within_grace_period"
        if not customer.auto_suspension_enabled:
            return "auto_suspension_disabled"
        if customer.status == CustomerStatus.suspended:
            return "already_suspended"
        if customer.status == CustomerStatus.inactive:
            return "customer_inactive"
        return None

    def scan_all(self, grace_period_days: int, today: date | None = None) -> list[OverdueEvaluation]:
        """Evaluate every overdue unpaid invoice, actionable or not.

        Only the earliest-due invoice of a customer can be actionable; later
        ones are reported as ``duplicate_customer``.
        """
        today = today or self.today()
        evaluations: list[OverdueEvaluation] = []
        seen: set = set()
        for invoice in self.store.get_overdue_unpaid_invoices(today):
            customer = invoice.customer
            if customer is None:
                continue
            days_overdue = (today - invoice.due_date).days
            if customer.id in seen:
                evaluations.append(
                    OverdueEvaluation(
                        customer=customer,
                        invoice=invoice,
                        days_overdue=days_overdue,
                        actionable=False,
                        skip_reason="duplicate_customer",
                    )
                )
                continue
            seen.add(customer.id)
            reason = self._skip_reason(customer, days_overdue, grace_period_days)
            evaluations.append(
                OverdueEvaluation(
                    customer=customer,
                    invoice=invoice,
                    days_overdue=days_overdue,
                    actionable=reason is None,
                    skip_reason=reason,
                )
            )
        return evaluations

    def scan(self, grace_period_days: int, today: date | None = None) -> list[OverdueCase]:
        cases = [
            OverdueCase(
                customer=evaluation.customer,
                invoice=evaluation.invoice,
                days_overdue=evaluation.days_overdue,
            )
            for evaluation in self.scan_all(grace_period_days, today=today)
            if evaluation.actionable
        ]
        logger.debug("Overdue scan found %s actionable customers", len(cases))
        return cases
