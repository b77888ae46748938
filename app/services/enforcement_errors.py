"""Exception taxonomy for enforcement and reconciliation workflows.

Per-item errors are caught at the customer/transaction boundary and folded
into the run report. Only failures outside that boundary (for example the
database being unavailable) abort a run.
"""

from __future__ import annotations


class EnforcementError(Exception):
    """Base class for all enforcement and reconciliation errors."""

    code = "enforcement_error"

    def __init__(self, message: str, *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class EnforcementConfigError(EnforcementError):
    """Missing target, credentials or settings needed to act on a customer."""

    code = "configuration_error"


class DeviceConnectionError(EnforcementError):
    """The enforcement device could not be reached, timed out or refused login."""

    code = "device_unreachable"


class GatewayError(EnforcementError):
    """The payment gateway was unreachable or answered with an unusable body."""

    code = "gateway_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: dict | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.status_code = status_code


class DataInconsistencyError(EnforcementError):
    """Local records cannot support the requested action."""

    code = "data_inconsistency"
