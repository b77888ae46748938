"""RouterOS API command channel for enforcement targets."""

from __future__ import annotations

import logging
from typing import Any

import routeros_api
from routeros_api.exceptions import RouterOsApiError

from app.models.network import EnforcementTarget
from app.services.credential_crypto import decrypt_credential
from app.services.enforcement_errors import DeviceConnectionError, EnforcementConfigError

logger = logging.getLogger(__name__)

_VERBS = {"print", "add", "set", "remove"}


def _split_command(command: str) -> tuple[str, str]:
    path, _, verb = command.rstrip("/").rpartition("/")
    if not path or verb not in _VERBS:
        raise ValueError(f"Unsupported RouterOS command: {command}")
    return path, verb


def _normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    # routeros_api exposes the RouterOS ".id" attribute as "id"
    normalized = dict(row)
    if ".id" in normalized and "id" not in normalized:
        normalized["id"] = normalized.pop(".id")
    return normalized


class RouterOsSession:
    """One command channel to one device.

    ``write("/ip/firewall/address-list/print", {"list": "blocked"})`` returns
    the matching rows as dicts. For ``add``/``set``/``remove`` the params are
    the attributes; ``set`` and ``remove`` need ``id``.
    """

    def __init__(self, pool: routeros_api.RouterOsApiPool, api, host: str) -> None:
        self._pool = pool
        self._api = api
        self.host = host

    def write(self, command: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        path, verb = _split_command(command)
        params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            resource = self._api.get_resource(path)
            if verb == "print":
                rows = resource.get(**params)
            elif verb == "add":
                result = resource.add(**params)
                rows = [{"id": result}] if isinstance(result, str) else list(result or [])
            elif verb == "set":
                rows = list(resource.set(**params) or [])
            else:
                rows = list(resource.remove(**params) or [])
        except RouterOsApiError as exc:
            raise DeviceConnectionError(
                f"RouterOS {command} failed on {self.host}: {exc}",
                detail={"host": self.host, "command": command},
            ) from exc
        except OSError as exc:
            raise DeviceConnectionError(
                f"RouterOS {self.host} unreachable: {exc}",
                detail={"host": self.host, "command": command},
            ) from exc
        return [_normalize_row(row) for row in rows or []]

    def close(self) -> None:
        try:
            self._pool.disconnect()
        except (OSError, RouterOsApiError):
            logger.debug("RouterOS disconnect from %s failed", self.host, exc_info=True)

    def __enter__(self) -> RouterOsSession:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def connect(target: EnforcementTarget | None, timeout: int = 10) -> RouterOsSession:
    """Open a session to ``target`` with a socket timeout on every call."""
    if target is None:
        raise EnforcementConfigError("No enforcement target configured")
    if not target.host:
        raise EnforcementConfigError(
            f"Enforcement target {target.name} has no host",
            detail={"target_id": str(target.id)},
        )
    if not target.username:
        raise EnforcementConfigError(
            f"Enforcement target {target.name} has no API username",
            detail={"target_id": str(target.id)},
        )
    try:
        password = decrypt_credential(target.password) or ""
    except ValueError as exc:
        raise EnforcementConfigError(
            f"Enforcement target {target.name} password cannot be decrypted",
            detail={"target_id": str(target.id)},
        ) from exc

    pool = routeros_api.RouterOsApiPool(
        target.host,
        username=target.username,
        password=password,
        port=int(target.api_port or 8728),
        use_ssl=bool(target.use_ssl),
        plaintext_login=True,
    )
    pool.socket_timeout = timeout
    try:
        api = pool.get_api()
    except RouterOsApiError as exc:
        raise DeviceConnectionError(
            f"RouterOS login to {target.host} failed: {exc}",
            detail={"target_id": str(target.id)},
        ) from exc
    except OSError as exc:
        raise DeviceConnectionError(
            f"RouterOS {target.host}:{target.api_port} unreachable: {exc}",
            detail={"target_id": str(target.id)},
        ) from exc
    logger.debug("Connected to RouterOS %s:%s", target.host, target.api_port)
    return RouterOsSession(pool, api, target.host)
