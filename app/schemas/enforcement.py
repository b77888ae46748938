from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.enforcement import AttemptOutcome, SuspensionAction


class SuspensionDetail(BaseModel):
    customer_id: UUID
    customer_name: str | None = None
    invoice_id: UUID | None = None
    days_overdue: int | None = None
    outcome: str
    methods: list[str] = Field(default_factory=list)
    error: str | None = None


class SuspensionReport(BaseModel):
    checked: int = 0
    suspended: int = 0
    errors: int = 0
    skipped: int = 0
    disabled: bool = False
    stopped: bool = False
    error: str | None = None
    details: list[SuspensionDetail] = Field(default_factory=list)


class RestorationDetail(BaseModel):
    customer_id: UUID
    customer_name: str | None = None
    outcome: str
    methods: list[str] = Field(default_factory=list)
    error: str | None = None


class RestorationReport(BaseModel):
    checked: int = 0
    restored: int = 0
    errors: int = 0
    no_suspension_found: int = 0
    stopped: bool = False
    error: str | None = None
    details: list[RestorationDetail] = Field(default_factory=list)


class ReconciliationDetail(BaseModel):
    transaction_id: UUID
    invoice_id: UUID | None = None
    reference: str | None = None
    gateway_status: str | None = None
    outcome: str
    payment_id: UUID | None = None
    error: str | None = None


class ReconciliationReport(BaseModel):
    gateway: str | None = None
    checked: int = 0
    processed: int = 0
    already_processed: int = 0
    failed: int = 0
    still_pending: int = 0
    errors: int = 0
    skipped: bool = False
    stopped: bool = False
    error: str | None = None
    details: list[ReconciliationDetail] = Field(default_factory=list)


class CustomerActionRequest(BaseModel):
    reason: str = Field(default="Manual action", max_length=200)
    method: str | None = None


class CustomerActionResult(BaseModel):
    customer_id: UUID
    success: bool
    outcome: str
    methods: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class SuspensionAttemptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    action: SuspensionAction
    method: str
    target_ip: str | None = None
    mac_address: str | None = None
    outcome: AttemptOutcome
    reason: str | None = None
    error: str | None = None
    attempted_at: datetime


class SuspensionStatus(BaseModel):
    customer_id: UUID
    status: str
    suspended: bool
    methods: list[str] = Field(default_factory=list)
    customer_ip: str | None = None
    mac_address: str | None = None
    pppoe_username: str | None = None
    device_error: str | None = None
    recent_attempts: list[SuspensionAttemptRead] = Field(default_factory=list)


class WorkflowTriggerResponse(BaseModel):
    workflow: str
    status: str
    report: dict | None = None


class PaymentNotificationResult(BaseModel):
    payment_id: UUID
    invoice_id: UUID
    invoice_number: str | None = None
    amount: Decimal | None = None
    notified: bool
