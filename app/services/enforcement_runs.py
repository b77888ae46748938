"""On-demand entry points for the enforcement workflows.

These never raise: a run that cannot complete (database down, bad settings)
comes back as a report with ``error`` set. The scheduler, Celery tasks, API
and CLI all go through here, and all of them take the same Redis
``enforcement:<name>`` lock through ``run_exclusive`` so a workflow never
overlaps itself across processes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import timedelta

import redis

from app.config import settings
from app.db import SessionLocal
from app.schemas.enforcement import ReconciliationReport, RestorationReport, SuspensionReport
from app.services.reconciliation import PaymentReconciler
from app.services.suspension import SuspensionController

logger = logging.getLogger(__name__)


def run_suspension_check(
    grace_period_days: int | None = None,
    *,
    should_stop: Callable[[], bool] | None = None,
    session_factory=SessionLocal,
    **controller_kwargs,
) -> SuspensionReport:
    session = session_factory()
    try:
        controller = SuspensionController(session, should_stop=should_stop, **controller_kwargs)
        return controller.suspend_overdue(grace_period_days)
    except Exception as exc:
        session.rollback()
        logger.exception("Suspension check aborted")
        return SuspensionReport(error=str(exc))
    finally:
        session.close()


def run_restoration_check(
    *,
    should_stop: Callable[[], bool] | None = None,
    session_factory=SessionLocal,
    **controller_kwargs,
) -> RestorationReport:
    session = session_factory()
    try:
        controller = SuspensionController(session, should_stop=should_stop, **controller_kwargs)
        return controller.restore_paid()
    except Exception as exc:
        session.rollback()
        logger.exception("Restoration check aborted")
        return RestorationReport(error=str(exc))
    finally:
        session.close()


def run_payment_reconciliation(
    window: timedelta | None = None,
    *,
    should_stop: Callable[[], bool] | None = None,
    session_factory=SessionLocal,
    **reconciler_kwargs,
) -> ReconciliationReport:
    session = session_factory()
    try:
        reconciler = PaymentReconciler(session, should_stop=should_stop, **reconciler_kwargs)
        return reconciler.reconcile_pending(window)
    except Exception as exc:
        session.rollback()
        logger.exception("Payment reconciliation aborted")
        return ReconciliationReport(error=str(exc))
    finally:
        session.close()


WORKFLOWS: dict[str, Callable] = {
    "suspension": run_suspension_check,
    "restoration": run_restoration_check,
    "reconciliation": run_payment_reconciliation,
}

REPORT_TYPES = {
    "suspension": SuspensionReport,
    "restoration": RestorationReport,
    "reconciliation": ReconciliationReport,
}


def _get_redis_client():
    return redis.Redis.from_url(settings.redis_url)


@contextmanager
def workflow_lock(name: str) -> Iterator[bool]:
    """Hold the non-blocking ``enforcement:<name>`` lock; yields whether it was acquired."""
    lock = _get_redis_client().lock(
        f"enforcement:{name}",
        timeout=settings.workflow_lock_timeout_seconds,
        blocking=False,
    )
    acquired = lock.acquire(blocking=False)
    try:
        yield acquired
    finally:
        if acquired:
            try:
                lock.release()
            except redis.exceptions.LockError:
                logger.warning("Lock for workflow %s expired before release", name)


def run_exclusive(name: str, func: Callable, *args, **kwargs):
    """Run ``func`` under the workflow lock.

    Returns ``(status, report)`` where status is ``success``, ``error`` or
    ``already_running``; the report is None when the run was skipped.
    """
    try:
        with workflow_lock(name) as acquired:
            if not acquired:
                logger.info("Workflow %s already running elsewhere; skipping", name)
                return "already_running", None
            report = func(*args, **kwargs)
    except redis.exceptions.RedisError as exc:
        logger.warning("Workflow lock for %s unavailable: %s", name, exc)
        return "error", REPORT_TYPES[name](error=f"Workflow lock unavailable: {exc}")
    return ("error" if report.error else "success"), report
