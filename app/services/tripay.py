"""Tripay payment gateway client."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

import httpx

from app.services.enforcement_errors import GatewayError
from app.services.gateway_clients import GATEWAY_STATUSES, GatewayStatus

logger = logging.getLogger(__name__)

TRIPAY_PRODUCTION_BASE = "https://tripay.co.id/api"
TRIPAY_SANDBOX_BASE = "https://tripay.co.id/api-sandbox"


class TripayClient:
    name = "tripay"

    def __init__(
        self,
        api_key: str,
        production: bool = True,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = TRIPAY_PRODUCTION_BASE if production else TRIPAY_SANDBOX_BASE
        self.timeout = timeout
        self._transport = transport

    def _request(self, method: str, path: str, params: dict | None = None) -> dict:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            with httpx.Client(
                timeout=self.timeout, headers=headers, transport=self._transport
            ) as client:
                response = client.request(method, url, params=params)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Tripay API error: %s - %s", e.response.status_code, e.response.text)
            raise GatewayError(
                f"Tripay API error: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error("Tripay request error: %s", e)
            raise GatewayError(f"Tripay request error: {e}") from e
        except ValueError as e:
            raise GatewayError("Tripay returned a non-JSON body") from e

        if not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else None
            raise GatewayError(message or "Tripay request was not successful")
        data = body.get("data")
        if not isinstance(data, dict):
            raise GatewayError("Tripay response has no transaction data")
        return data

    def get_transaction_status(self, reference: str) -> GatewayStatus:
        data = self._request("GET", "/transaction/detail", params={"reference": reference})
        status = str(data.get("status") or "").upper()
        if status not in GATEWAY_STATUSES:
            raise GatewayError(f"Unexpected Tripay status {status!r} for {reference}")

        amount = None
        if data.get("amount") is not None:
            try:
                amount = Decimal(str(data["amount"]))
            except InvalidOperation as e:
                raise GatewayError(f"Invalid Tripay amount for {reference}") from e

        paid_at = None
        if data.get("paid_at"):
            try:
                paid_at = datetime.fromtimestamp(int(data["paid_at"]), tz=UTC)
            except (TypeError, ValueError):
                logger.warning("Unparseable Tripay paid_at %r", data.get("paid_at"))

        return GatewayStatus(
            status=status,
            amount=amount,
            payment_method=data.get("payment_method") or data.get("payment_name"),
            paid_at=paid_at,
            merchant_ref=data.get("merchant_ref"),
        )
