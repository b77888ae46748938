"""Celery tasks for the enforcement workflows.

Each task holds the workflow's Redis lock so that overlapping beat ticks,
several workers, or an API/CLI trigger never run the same workflow
concurrently.
"""
import time

from app.celery_app import celery_app
from app.metrics import observe_job
from app.services import enforcement_runs


def _run_locked(name: str, func, *args) -> dict:
    start = time.monotonic()
    status = "error"
    try:
        status, report = enforcement_runs.run_exclusive(name, func, *args)
        if report is None:
            return {"workflow": name, "status": status}
        return {"workflow": name, "status": status, "report": report.model_dump(mode="json")}
    finally:
        observe_job(f"celery.{name}", status, time.monotonic() - start)


@celery_app.task(name="app.tasks.enforcement.run_suspension_check")
def run_suspension_check(grace_period_days: int | None = None):
    return _run_locked("suspension", enforcement_runs.run_suspension_check, grace_period_days)


@celery_app.task(name="app.tasks.enforcement.run_restoration_check")
def run_restoration_check():
    return _run_locked("restoration", enforcement_runs.run_restoration_check)


@celery_app.task(name="app.tasks.enforcement.run_payment_reconciliation")
def run_payment_reconciliation():
    return _run_locked("reconciliation", enforcement_runs.run_payment_reconciliation)
