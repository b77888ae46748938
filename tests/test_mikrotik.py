from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from routeros_api.exceptions import RouterOsApiError

from app.services import credential_crypto, mikrotik
from app.services.enforcement_errors import DeviceConnectionError, EnforcementConfigError


def _target(**overrides):
    values = {
        "id": "target-1",
        "name": "Core Router",
        "host": "10.0.0.1",
        "api_port": 8728,
        "username": "api",
        "password": "plain:secret",
        "use_ssl": False,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture()
def pool_cls(monkeypatch):
    pool_cls = MagicMock()
    monkeypatch.setattr(mikrotik.routeros_api, "RouterOsApiPool", pool_cls)
    return pool_cls


def test_connect_uses_target_credentials_and_timeout(pool_cls):
    session = mikrotik.connect(_target(api_port=8729, use_ssl=True), timeout=7)

    pool_cls.assert_called_once_with(
        "10.0.0.1",
        username="api",
        password="secret",
        port=8729,
        use_ssl=True,
        plaintext_login=True,
    )
    pool = pool_cls.return_value
    assert pool.socket_timeout == 7
    pool.get_api.assert_called_once_with()
    assert session.host == "10.0.0.1"


@pytest.mark.parametrize(
    "target",
    [None, _target(host=None), _target(username="")],
)
def test_connect_rejects_incomplete_targets(pool_cls, target):
    with pytest.raises(EnforcementConfigError):
        mikrotik.connect(target)
    pool_cls.assert_not_called()


def test_connect_rejects_undecryptable_password(pool_cls, monkeypatch):
    monkeypatch.setattr(
        credential_crypto, "settings", SimpleNamespace(credential_encryption_key=None)
    )

    with pytest.raises(EnforcementConfigError):
        mikrotik.connect(_target(password="enc:not-a-token"))
    pool_cls.assert_not_called()


def test_connect_wraps_login_failure(pool_cls):
    pool_cls.return_value.get_api.side_effect = RouterOsApiError("invalid user name or password")

    with pytest.raises(DeviceConnectionError):
        mikrotik.connect(_target())


def test_connect_wraps_socket_timeout(pool_cls):
    pool_cls.return_value.get_api.side_effect = TimeoutError("timed out")

    with pytest.raises(DeviceConnectionError, match="unreachable"):
        mikrotik.connect(_target())


def test_session_print_normalizes_ids():
    api = MagicMock()
    resource = api.get_resource.return_value
    resource.get.return_value = [{".id": "*1", "address": "10.0.0.5", "list": "blocked_customers"}]
    session = mikrotik.RouterOsSession(MagicMock(), api, "10.0.0.1")

    rows = session.write(
        "/ip/firewall/address-list/print", {"list": "blocked_customers", "address": "10.0.0.5"}
    )

    api.get_resource.assert_called_once_with("/ip/firewall/address-list")
    resource.get.assert_called_once_with(list="blocked_customers", address="10.0.0.5")
    assert rows == [{"id": "*1", "address": "10.0.0.5", "list": "blocked_customers"}]


def test_session_add_set_remove():
    api = MagicMock()
    resource = api.get_resource.return_value
    resource.add.return_value = "*2A"
    resource.set.return_value = []
    resource.remove.return_value = []
    session = mikrotik.RouterOsSession(MagicMock(), api, "10.0.0.1")

    assert session.write("/queue/simple/add", {"name": "suspended_10_0_0_5", "comment": None}) == [
        {"id": "*2A"}
    ]
    session.write("/ppp/secret/set", {"id": "*3", "profile": "isolir"})
    session.write("/ppp/active/remove", {"id": "*4"})

    resource.add.assert_called_once_with(name="suspended_10_0_0_5")
    resource.set.assert_called_once_with(id="*3", profile="isolir")
    resource.remove.assert_called_once_with(id="*4")


def test_session_wraps_api_errors():
    api = MagicMock()
    api.get_resource.return_value.get.side_effect = RouterOsApiError("no such command")
    session = mikrotik.RouterOsSession(MagicMock(), api, "10.0.0.1")

    with pytest.raises(DeviceConnectionError) as exc_info:
        session.write("/ip/firewall/filter/print")

    assert exc_info.value.detail["command"] == "/ip/firewall/filter/print"


def test_session_rejects_unknown_verbs():
    session = mikrotik.RouterOsSession(MagicMock(), MagicMock(), "10.0.0.1")

    with pytest.raises(ValueError):
        session.write("/system/reboot")


def test_session_context_manager_disconnects():
    pool = MagicMock()

    with mikrotik.RouterOsSession(pool, MagicMock(), "10.0.0.1"):
        pass

    pool.disconnect.assert_called_once_with()
