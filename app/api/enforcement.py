from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.db import SessionLocal, get_db
from app.models.subscriber import Customer
from app.schemas.enforcement import (
    CustomerActionRequest,
    CustomerActionResult,
    PaymentNotificationResult,
    SuspensionStatus,
    WorkflowTriggerResponse,
)
from app.services import enforcement_runs
from app.services.common import get_or_404
from app.services.reconciliation import resend_payment_notification
from app.services.suspension import SuspensionController

router = APIRouter(prefix="/enforcement", tags=["enforcement"])


def get_session_factory():
    """Workflow runs open and close their own session."""
    return SessionLocal


def _trigger(name: str, func, *args, **kwargs) -> WorkflowTriggerResponse:
    run_status, report = enforcement_runs.run_exclusive(name, func, *args, **kwargs)
    return WorkflowTriggerResponse(
        workflow=name,
        status=run_status,
        report=report.model_dump(mode="json") if report is not None else None,
    )


@router.post("/suspension-check", response_model=WorkflowTriggerResponse)
def trigger_suspension_check(
    grace_period_days: int | None = Query(default=None, ge=0, le=365),
    session_factory=Depends(get_session_factory),
):
    return _trigger(
        "suspension",
        enforcement_runs.run_suspension_check,
        grace_period_days,
        session_factory=session_factory,
    )


@router.post("/restoration-check", response_model=WorkflowTriggerResponse)
def trigger_restoration_check(session_factory=Depends(get_session_factory)):
    return _trigger(
        "restoration",
        enforcement_runs.run_restoration_check,
        session_factory=session_factory,
    )


@router.post("/reconciliation", response_model=WorkflowTriggerResponse)
def trigger_reconciliation(
    gateway: str | None = Query(default=None, pattern="^(tripay|paystack)$"),
    session_factory=Depends(get_session_factory),
):
    kwargs = {"gateway": gateway} if gateway else {}
    return _trigger(
        "reconciliation",
        enforcement_runs.run_payment_reconciliation,
        session_factory=session_factory,
        **kwargs,
    )


@router.post(
    "/customers/{customer_id}/suspend",
    response_model=CustomerActionResult,
    status_code=status.HTTP_200_OK,
)
def suspend_customer(
    customer_id: str,
    payload: CustomerActionRequest | None = None,
    db: Session = Depends(get_db),
):
    customer = get_or_404(db, Customer, customer_id)
    payload = payload or CustomerActionRequest()
    return SuspensionController(db).suspend_customer(
        customer.id, payload.reason, method=payload.method
    )


@router.post("/customers/{customer_id}/restore", response_model=CustomerActionResult)
def restore_customer(
    customer_id: str,
    payload: CustomerActionRequest | None = None,
    db: Session = Depends(get_db),
):
    customer = get_or_404(db, Customer, customer_id)
    reason = payload.reason if payload else "Manual restore"
    return SuspensionController(db).restore_customer(customer.id, reason)


@router.get("/customers/{customer_id}/status", response_model=SuspensionStatus)
def get_suspension_status(customer_id: str, db: Session = Depends(get_db)):
    customer = get_or_404(db, Customer, customer_id)
    return SuspensionController(db).suspension_status(customer.id)


@router.post(
    "/payments/{identifier}/resend-notification",
    response_model=PaymentNotificationResult,
)
def resend_notification(identifier: str, db: Session = Depends(get_db)):
    try:
        return resend_payment_notification(db, identifier)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
