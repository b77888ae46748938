"""Payment gateway status lookups used by reconciliation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy.orm import Session

from app.models.domain_settings import SettingDomain
from app.services.settings_spec import resolve_value

logger = logging.getLogger(__name__)

PAID = "PAID"
UNPAID = "UNPAID"
EXPIRED = "EXPIRED"
FAILED = "FAILED"
REFUND = "REFUND"
GATEWAY_STATUSES = {PAID, UNPAID, EXPIRED, FAILED, REFUND}


@dataclass
class GatewayStatus:
    status: str
    amount: Decimal | None = None
    payment_method: str | None = None
    paid_at: datetime | None = None
    merchant_ref: str | None = None


class GatewayClient(Protocol):
    name: str

    def get_transaction_status(self, reference: str) -> GatewayStatus:
        ...


def build_gateway_client(db: Session, gateway: str) -> GatewayClient | None:
    """Client for ``gateway`` from settings, or None when it is not configured."""
    timeout = resolve_value(db, SettingDomain.billing, "gateway_timeout_seconds") or 30
    if gateway == "tripay":
        from app.services.tripay import TripayClient

        api_key = resolve_value(db, SettingDomain.billing, "tripay_api_key")
        merchant_code = resolve_value(db, SettingDomain.billing, "tripay_merchant_code")
        if not api_key or not merchant_code:
            logger.info("Tripay is not configured")
            return None
        production = resolve_value(db, SettingDomain.billing, "tripay_production")
        return TripayClient(
            api_key=str(api_key),
            production=bool(production),
            timeout=float(timeout),
        )
    if gateway == "paystack":
        from app.services.paystack import PaystackClient

        secret_key = resolve_value(db, SettingDomain.billing, "paystack_secret_key")
        if not secret_key:
            logger.info("Paystack is not configured")
            return None
        return PaystackClient(secret_key=str(secret_key), timeout=float(timeout))
    logger.warning("Unknown reconciliation gateway %s", gateway)
    return None
