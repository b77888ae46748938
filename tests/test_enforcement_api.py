from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.api.enforcement import get_session_factory
from app.db import get_db
from app.main import app
from app.models.billing import InvoiceStatus, Payment
from app.models.subscriber import Customer, CustomerStatus
from app.services import enforcement_runs, mikrotik
from app.services.enforcement_errors import DeviceConnectionError
from tests.mocks import FakeConnector

API = "/api/v1/enforcement"


@pytest.fixture()
def workflow_lock():
    client = MagicMock()
    lock = client.lock.return_value
    lock.acquire.return_value = True
    with patch.object(enforcement_runs, "_get_redis_client", return_value=client):
        yield lock


@pytest.fixture()
def client(db_session, workflow_lock):
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_session_factory] = lambda: (lambda: db_session)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)
        app.dependency_overrides.pop(get_session_factory, None)


@pytest.fixture()
def fake_connect(monkeypatch, connector):
    monkeypatch.setattr(mikrotik, "connect", connector)
    return connector


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"status": "ok"}
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_suspension_check_endpoint(client, db_session, customer, make_invoice, device, fake_connect):
    make_invoice(customer, days_overdue=10)
    customer_id = customer.id

    response = client.post(f"{API}/suspension-check")

    assert response.status_code == 200
    body = response.json()
    assert body["workflow"] == "suspension"
    assert body["status"] == "success"
    assert body["report"]["suspended"] == 1
    assert body["report"]["details"][0]["customer_id"] == str(customer_id)
    assert db_session.get(Customer, customer_id).status == CustomerStatus.suspended


def test_suspension_check_rejects_negative_grace(client):
    response = client.post(f"{API}/suspension-check", params={"grace_period_days": -1})

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_restoration_check_endpoint(client, make_customer, device, fake_connect):
    make_customer(static_ip="10.0.0.5", status=CustomerStatus.suspended)
    device.seed("/ip/firewall/address-list", list="blocked_customers", address="10.0.0.5")

    body = client.post(f"{API}/restoration-check").json()

    assert body["status"] == "success"
    assert body["report"]["restored"] == 1


def test_reconciliation_endpoint_without_gateway_credentials(client):
    body = client.post(f"{API}/reconciliation", params={"gateway": "paystack"}).json()

    assert body["status"] == "success"
    assert body["report"]["gateway"] == "paystack"
    assert body["report"]["skipped"] is True


def test_manual_suspend_restore_and_status(client, customer, device, fake_connect):
    suspended = client.post(
        f"{API}/customers/{customer.id}/suspend",
        json={"reason": "Fraud review", "method": "firewall_rule"},
    )
    status = client.get(f"{API}/customers/{customer.id}/status")
    restored = client.post(f"{API}/customers/{customer.id}/restore")

    assert suspended.status_code == 200
    assert suspended.json()["success"] is True
    assert suspended.json()["methods"] == ["firewall_rule"]
    assert status.json()["suspended"] is True
    assert status.json()["methods"] == ["firewall_rule"]
    assert status.json()["recent_attempts"][0]["reason"] == "Fraud review"
    assert restored.json()["outcome"] == "restored"
    assert device.rows("/ip/firewall/filter") == []


def test_manual_suspend_unknown_method_is_bad_request(client, customer, fake_connect):
    response = client.post(
        f"{API}/customers/{customer.id}/suspend", json={"method": "carrier_pigeon"}
    )

    assert response.status_code == 400
    assert response.json()["code"] == "configuration_error"


def test_status_reports_unreachable_device(client, customer, monkeypatch):
    monkeypatch.setattr(
        mikrotik, "connect", FakeConnector(error=DeviceConnectionError("RouterOS 10.0.0.1 unreachable"))
    )

    body = client.get(f"{API}/customers/{customer.id}/status").json()

    assert body["suspended"] is False
    assert "unreachable" in body["device_error"]


@pytest.mark.parametrize("customer_id", ["00000000-0000-0000-0000-000000000000", "not-a-uuid"])
def test_unknown_customer_is_404(client, customer_id):
    response = client.get(f"{API}/customers/{customer_id}/status")

    assert response.status_code == 404
    assert response.json()["message"] == "Customer not found"


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Request-ID"] == "req-42"


def test_trigger_skips_when_workflow_lock_is_held(client, workflow_lock):
    workflow_lock.acquire.return_value = False

    with patch.object(enforcement_runs, "run_restoration_check") as run:
        body = client.post(f"{API}/restoration-check").json()

    run.assert_not_called()
    assert body == {"workflow": "restoration", "status": "already_running", "report": None}


def test_trigger_reports_database_failure(client, workflow_lock):
    session = MagicMock()
    app.dependency_overrides[get_session_factory] = lambda: (lambda: session)
    with patch.object(enforcement_runs, "SuspensionController") as controller_cls:
        controller_cls.return_value.suspend_overdue.side_effect = OperationalError(
            "SELECT 1", {}, Exception("database is unavailable")
        )
        response = client.post(f"{API}/suspension-check")

    assert response.status_code == 200
    assert response.json()["status"] == "error"
    assert "database is unavailable" in response.json()["report"]["error"]
    session.rollback.assert_called_once_with()
    workflow_lock.release.assert_called_once_with()


def test_resend_payment_notification_endpoint(client, db_session, customer, make_invoice):
    invoice = make_invoice(customer, status=InvoiceStatus.paid)
    payment = Payment(invoice_id=invoice.id, amount=invoice.amount, reference_number="TX123")
    db_session.add(payment)
    db_session.commit()

    found = client.post(f"{API}/payments/{invoice.invoice_number}/resend-notification")
    missing = client.post(f"{API}/payments/INV-NOPE/resend-notification")

    assert found.status_code == 200
    assert found.json()["payment_id"] == str(payment.id)
    assert found.json()["notified"] is True
    assert missing.status_code == 404
    assert missing.json()["code"] == "http_404"
