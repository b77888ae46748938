from datetime import timedelta
from unittest.mock import MagicMock, patch

import redis
from sqlalchemy.exc import OperationalError

from app.schemas.enforcement import ReconciliationReport, SuspensionReport
from app.services import enforcement_runs


def test_suspension_run_closes_session_on_success():
    session = MagicMock()
    with patch.object(enforcement_runs, "SuspensionController") as controller_cls:
        controller_cls.return_value.suspend_overdue.return_value = SuspensionReport(checked=1)
        report = enforcement_runs.run_suspension_check(3, session_factory=lambda: session)

    assert report.checked == 1
    controller_cls.return_value.suspend_overdue.assert_called_once_with(3)
    session.close.assert_called_once_with()
    session.rollback.assert_not_called()


def test_database_failure_becomes_report_error():
    session = MagicMock()
    with patch.object(enforcement_runs, "SuspensionController") as controller_cls:
        controller_cls.return_value.restore_paid.side_effect = OperationalError(
            "SELECT 1", {}, Exception("connection refused")
        )
        report = enforcement_runs.run_restoration_check(session_factory=lambda: session)

    assert "connection refused" in report.error
    session.rollback.assert_called_once_with()
    session.close.assert_called_once_with()


def test_reconciliation_run_passes_window_and_stop_hook():
    session = MagicMock()
    stop = MagicMock(return_value=False)
    with patch.object(enforcement_runs, "PaymentReconciler") as reconciler_cls:
        reconciler_cls.return_value.reconcile_pending.return_value = ReconciliationReport(
            gateway="tripay"
        )
        report = enforcement_runs.run_payment_reconciliation(
            timedelta(hours=6), should_stop=stop, session_factory=lambda: session, gateway="tripay"
        )

    assert report.gateway == "tripay"
    reconciler_cls.assert_called_once_with(session, should_stop=stop, gateway="tripay")
    reconciler_cls.return_value.reconcile_pending.assert_called_once_with(timedelta(hours=6))


def test_workflow_registry_names():
    assert set(enforcement_runs.WORKFLOWS) == {"suspension", "restoration", "reconciliation"}


def test_run_exclusive_uses_one_lock_per_workflow():
    client = MagicMock()
    lock = client.lock.return_value
    lock.acquire.return_value = True
    lock.release.side_effect = redis.exceptions.LockNotOwnedError("expired")
    func = MagicMock(return_value=SuspensionReport(checked=1))
    with patch.object(enforcement_runs, "_get_redis_client", return_value=client):
        status, report = enforcement_runs.run_exclusive("suspension", func, 3, should_stop=None)

    assert client.lock.call_args.args[0] == "enforcement:suspension"
    func.assert_called_once_with(3, should_stop=None)
    assert status == "success"
    assert report.checked == 1


def test_run_exclusive_skips_when_lock_is_held():
    client = MagicMock()
    client.lock.return_value.acquire.return_value = False
    func = MagicMock()
    with patch.object(enforcement_runs, "_get_redis_client", return_value=client):
        assert enforcement_runs.run_exclusive("restoration", func) == ("already_running", None)

    func.assert_not_called()
    client.lock.return_value.release.assert_not_called()
