"""Paystack payment gateway integration service."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

import httpx

from app.services.enforcement_errors import GatewayError
from app.services.gateway_clients import EXPIRED, FAILED, PAID, UNPAID, GatewayStatus

logger = logging.getLogger(__name__)

PAYSTACK_API_BASE = "https://api.paystack.co"

_STATUS_MAP = {
    "success": PAID,
    "failed": FAILED,
    "abandoned": EXPIRED,
    "reversed": FAILED,
}


def kobo_to_naira(kobo: int) -> Decimal:
    """Convert kobo to naira."""
    return Decimal(kobo) / 100


class PaystackClient:
    name = "paystack"

    def __init__(
        self,
        secret_key: str,
        timeout: float = 30.0,
        base_url: str = PAYSTACK_API_BASE,
        transport: httpx.BaseTransport | None = None,
    ):
        self.secret_key = secret_key
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def verify_transaction(self, reference: str) -> dict:
        """Verify a Paystack transaction by reference.

        Raises:
            GatewayError: On transport failure, non-2xx response or a
                ``status: false`` body.
        """
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.get(
                    f"{self.base_url}/transaction/verify/{reference}",
                    headers={"Authorization": f"Bearer {self.secret_key}"},
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error("Paystack verify failed: %s", e.response.status_code)
            raise GatewayError(
                f"Paystack API error: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error("Paystack request error: %s", e)
            raise GatewayError(f"Paystack request error: {e}") from e
        except ValueError as e:
            raise GatewayError("Paystack returned a non-JSON body") from e

        if not isinstance(data, dict) or not data.get("status"):
            message = data.get("message") if isinstance(data, dict) else None
            logger.error("Paystack verify failed: %s", message)
            raise GatewayError(message or "Paystack verification failed")
        if not isinstance(data.get("data"), dict):
            raise GatewayError("Paystack response has no transaction data")
        return data["data"]

    def get_transaction_status(self, reference: str) -> GatewayStatus:
        data = self.verify_transaction(reference)
        status = _STATUS_MAP.get(str(data.get("status") or "").lower(), UNPAID)
        amount = kobo_to_naira(int(data["amount"])) if data.get("amount") is not None else None
        paid_at = None
        raw_paid_at = data.get("paid_at") or data.get("paidAt")
        if raw_paid_at:
            try:
                paid_at = datetime.fromisoformat(str(raw_paid_at).replace("Z", "+00:00"))
            except ValueError:
                logger.warning("Unparseable Paystack paid_at %r", raw_paid_at)
        return GatewayStatus(
            status=status,
            amount=amount,
            payment_method=data.get("channel"),
            paid_at=paid_at,
            merchant_ref=data.get("reference"),
        )
