"""Outbound customer notifications for enforcement events.

Delivery is fire-and-forget from the workflows' point of view: callers go
through ``safe_notify`` so a failed notification never undoes a suspension,
restoration or recorded payment.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

import httpx

from app.models.domain_settings import SettingDomain
from app.models.subscriber import Customer
from app.services.settings_spec import resolve_value

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify_suspended(self, customer: Customer, reason: str) -> None:
        ...

    def notify_restored(self, customer: Customer) -> None:
        ...

    def notify_payment_received(self, payment_id) -> None:
        ...


class LoggingNotifier:
    """Used when no webhook is configured."""

    def notify_suspended(self, customer: Customer, reason: str) -> None:
        logger.info("Customer %s (%s) suspended: %s", customer.id, customer.name, reason)

    def notify_restored(self, customer: Customer) -> None:
        logger.info("Customer %s (%s) restored", customer.id, customer.name)

    def notify_payment_received(self, payment_id) -> None:
        logger.info("Payment %s received", payment_id)


class WebhookNotifier:
    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    def _post(self, event: str, payload: dict) -> None:
        body = {
            "event": event,
            "occurred_at": datetime.now(UTC).isoformat(),
            **payload,
        }
        response = httpx.post(self.url, json=body, timeout=self.timeout)
        response.raise_for_status()

    @staticmethod
    def _customer_payload(customer: Customer) -> dict:
        return {
            "customer_id": str(customer.id),
            "customer_name": customer.name,
            "phone": customer.phone,
            "email": customer.email,
        }

    def notify_suspended(self, customer: Customer, reason: str) -> None:
        self._post("customer.suspended", {**self._customer_payload(customer), "reason": reason})

    def notify_restored(self, customer: Customer) -> None:
        self._post("customer.restored", self._customer_payload(customer))

    def notify_payment_received(self, payment_id) -> None:
        self._post("payment.received", {"payment_id": str(payment_id)})


def build_notifier(db) -> Notifier:
    url = resolve_value(db, SettingDomain.notification, "notification_webhook_url")
    if url:
        return WebhookNotifier(str(url))
    return LoggingNotifier()


def safe_notify(action: Callable[..., None], *args) -> bool:
    """Run a notifier call, logging instead of raising on failure."""
    try:
        action(*args)
    except Exception:
        logger.warning("Notification %s failed", getattr(action, "__name__", action), exc_info=True)
        return False
    return True
