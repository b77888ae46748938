from types import SimpleNamespace

from app.models.domain_settings import SettingDomain
from app.services import notifications
from app.services.settings_spec import upsert_value
from tests.mocks import FakeHTTPXResponse


def _customer():
    return SimpleNamespace(id="cust-1", name="Budi", phone="+62811", email="budi@example.com")


def test_webhook_notifier_posts_events(monkeypatch):
    posts = []

    def fake_post(url, json=None, timeout=None):
        posts.append((url, json, timeout))
        return FakeHTTPXResponse()

    monkeypatch.setattr(notifications.httpx, "post", fake_post)
    notifier = notifications.WebhookNotifier("https://hooks.example.com/isp", timeout=3)

    notifier.notify_suspended(_customer(), "Overdue invoice INV-1 (10 days)")
    notifier.notify_restored(_customer())
    notifier.notify_payment_received("pay-1")

    assert [body["event"] for _, body, _ in posts] == [
        "customer.suspended",
        "customer.restored",
        "payment.received",
    ]
    url, suspended, timeout = posts[0]
    assert url == "https://hooks.example.com/isp"
    assert timeout == 3
    assert suspended["customer_id"] == "cust-1"
    assert suspended["reason"] == "Overdue invoice INV-1 (10 days)"
    assert posts[2][1]["payment_id"] == "pay-1"


def test_safe_notify_swallows_delivery_errors(monkeypatch):
    monkeypatch.setattr(
        notifications.httpx, "post", lambda *args, **kwargs: FakeHTTPXResponse(status_code=502)
    )
    notifier = notifications.WebhookNotifier("https://hooks.example.com/isp")

    assert notifications.safe_notify(notifier.notify_restored, _customer()) is False


def test_safe_notify_reports_success():
    assert notifications.safe_notify(notifications.LoggingNotifier().notify_payment_received, "p") is True


def test_build_notifier_defaults_to_logging(db_session):
    assert isinstance(notifications.build_notifier(db_session), notifications.LoggingNotifier)


def test_build_notifier_uses_webhook_setting(db_session):
    upsert_value(
        db_session, SettingDomain.notification, "notification_webhook_url", "https://hooks.example.com/isp"
    )

    notifier = notifications.build_notifier(db_session)

    assert isinstance(notifier, notifications.WebhookNotifier)
    assert notifier.url == "https://hooks.example.com/isp"
