"""Network-level suspension mechanisms for a RouterOS enforcement target.

Every strategy checks live device state before acting, so ``apply`` and
``revert`` are safe to repeat. Device failures raise
``DeviceConnectionError``; a missing device-side object the strategy depends
on (DHCP lease, PPP secret) is a soft failure, not an exception.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from app.models.subscriber import Customer
from app.services.enforcement_errors import EnforcementConfigError

logger = logging.getLogger(__name__)


class DeviceSession(Protocol):
    def write(self, command: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        ...


@dataclass
class StrategyResult:
    applied: bool = False
    reverted: bool = False
    message: str | None = None
    soft_failure: bool = False
    # Nothing changed on the device because the block was already in place
    already: bool = False


@dataclass(frozen=True)
class EnforcementOptions:
    blocked_address_list: str = "blocked_customers"
    bandwidth_limit: str = "1k/1k"
    isolir_profile: str = "isolir"
    pppoe_default_profile: str = "default"


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def _ip_slug(ip: str) -> str:
    return ip.replace(".", "_").replace(":", "_").replace("/", "_")


def _is_yes(value: object) -> bool:
    return str(value).strip().lower() in {"yes", "true"}


class SuspensionStrategy(ABC):
    name: str
    # Identity fields a customer needs for this strategy: "ip", "mac", "pppoe"
    requires: tuple[str, ...] = ()

    def __init__(self, options: EnforcementOptions | None = None) -> None:
        self.options = options or EnforcementOptions()

    def is_applicable(self, customer: Customer) -> bool:
        identity = {
            "ip": customer.static_ip,
            "mac": customer.mac_address,
            "pppoe": customer.pppoe_username,
        }
        return all(identity.get(field) for field in self.requires)

    def _require(self, customer: Customer) -> None:
        if not self.is_applicable(customer):
            raise EnforcementConfigError(
                f"{self.name} needs {', '.join(self.requires)} for customer {customer.id}"
            )

    @abstractmethod
    def apply(self, session: DeviceSession, customer: Customer, reason: str) -> StrategyResult:
        raise NotImplementedError

    @abstractmethod
    def revert(self, session: DeviceSession, customer: Customer) -> StrategyResult:
        raise NotImplementedError

    @abstractmethod
    def is_active(self, session: DeviceSession, customer: Customer) -> bool:
        raise NotImplementedError


class AddressListBlock(SuspensionStrategy):
    name = "address_list"
    requires = ("ip",)

    def _entries(self, session: DeviceSession, ip: str) -> list[dict[str, Any]]:
        return session.write(
            "/ip/firewall/address-list/print",
            {"list": self.options.blocked_address_list, "address": ip},
        )

    def ensure_drop_rules(self, session: DeviceSession) -> None:
        list_name = self.options.blocked_address_list
        forward = session.write(
            "/ip/firewall/filter/print",
            {"chain": "forward", "src-address-list": list_name, "action": "drop"},
        )
        if not forward:
            session.write(
                "/ip/firewall/filter/add",
                {
                    "chain": "forward",
                    "src-address-list": list_name,
                    "action": "drop",
                    "comment": "Block suspended customers",
                    "place-before": "0",
                },
            )
            logger.info("Created forward drop rule for address list %s", list_name)
        inbound = session.write(
            "/ip/firewall/filter/print",
            {"chain": "input", "src-address-list": list_name, "action": "drop"},
        )
        if not inbound:
            session.write(
                "/ip/firewall/filter/add",
                {
                    "chain": "input",
                    "src-address-list": list_name,
                    "action": "drop",
                    "comment": "Block suspended customers from accessing router",
                },
            )
            logger.info("Created input drop rule for address list %s", list_name)

    def apply(self, session, customer, reason):
        self._require(customer)
        ip = customer.static_ip
        self.ensure_drop_rules(session)
        if self._entries(session, ip):
            return StrategyResult(applied=True, already=True, message="Already blocked")
        session.write(
            "/ip/firewall/address-list/add",
            {
                "list": self.options.blocked_address_list,
                "address": ip,
                "comment": f"SUSPENDED - {reason} - {_timestamp()}",
            },
        )
        logger.info("Added %s to address list %s", ip, self.options.blocked_address_list)
        return StrategyResult(applied=True, message="Added to address list")

    def revert(self, session, customer):
        self._require(customer)
        entries = self._entries(session, customer.static_ip)
        for entry in entries:
            session.write("/ip/firewall/address-list/remove", {"id": entry["id"]})
        if not entries:
            return StrategyResult(reverted=False, message="Not in address list")
        logger.info("Removed %s from address list %s", customer.static_ip, self.options.blocked_address_list)
        return StrategyResult(reverted=True, message=f"Removed {len(entries)} address list entries")

    def is_active(self, session, customer):
        if not self.is_applicable(customer):
            return False
        return bool(self._entries(session, customer.static_ip))


class DHCPLeaseBlock(SuspensionStrategy):
    name = "dhcp_block"
    requires = ("mac",)

    def _leases(self, session: DeviceSession, mac: str) -> list[dict[str, Any]]:
        return session.write("/ip/dhcp-server/lease/print", {"mac-address": mac})

    def apply(self, session, customer, reason):
        self._require(customer)
        leases = self._leases(session, customer.mac_address)
        if not leases:
            logger.warning("No DHCP lease for MAC %s", customer.mac_address)
            return StrategyResult(
                applied=False,
                soft_failure=True,
                message=f"DHCP lease not found for MAC {customer.mac_address}",
            )
        lease = leases[0]
        if _is_yes(lease.get("blocked")):
            return StrategyResult(applied=True, already=True, message="Lease already blocked")
        session.write(
            "/ip/dhcp-server/lease/set",
            {
                "id": lease["id"],
                "blocked": "yes",
                "comment": f"SUSPENDED - {reason} - {_timestamp()}",
            },
        )
        logger.info("Blocked DHCP lease for MAC %s", customer.mac_address)
        return StrategyResult(applied=True, message="DHCP lease blocked")

    def revert(self, session, customer):
        self._require(customer)
        blocked = [
            lease
            for lease in self._leases(session, customer.mac_address)
            if _is_yes(lease.get("blocked"))
        ]
        for lease in blocked:
            session.write(
                "/ip/dhcp-server/lease/set",
                {"id": lease["id"], "blocked": "no", "comment": "RESTORED"},
            )
        if not blocked:
            return StrategyResult(reverted=False, message="No blocked DHCP lease")
        logger.info("Unblocked DHCP lease for MAC %s", customer.mac_address)
        return StrategyResult(reverted=True, message="DHCP lease unblocked")

    def is_active(self, session, customer):
        if not self.is_applicable(customer):
            return False
        return any(
            _is_yes(lease.get("blocked"))
            for lease in self._leases(session, customer.mac_address)
        )


class BandwidthThrottle(SuspensionStrategy):
    name = "bandwidth_limit"
    requires = ("ip",)

    @staticmethod
    def queue_name(ip: str) -> str:
        return f"suspended_{_ip_slug(ip)}"

    def _queues(self, session: DeviceSession, ip: str) -> list[dict[str, Any]]:
        return session.write("/queue/simple/print", {"name": self.queue_name(ip)})

    def apply(self, session, customer, reason):
        self._require(customer)
        ip = customer.static_ip
        if self._queues(session, ip):
            return StrategyResult(applied=True, already=True, message="Queue already exists")
        session.write(
            "/queue/simple/add",
            {
                "name": self.queue_name(ip),
                "target": ip,
                "max-limit": self.options.bandwidth_limit,
                "comment": f"SUSPENDED - {reason} - {_timestamp()}",
                "disabled": "no",
            },
        )
        logger.info("Limited bandwidth for %s to %s", ip, self.options.bandwidth_limit)
        return StrategyResult(applied=True, message="Bandwidth limited")

    def revert(self, session, customer):
        self._require(customer)
        queues = self._queues(session, customer.static_ip)
        for queue in queues:
            session.write("/queue/simple/remove", {"id": queue["id"]})
        if not queues:
            return StrategyResult(reverted=False, message="No bandwidth limit found")
        logger.info("Removed bandwidth limit queue for %s", customer.static_ip)
        return StrategyResult(reverted=True, message="Bandwidth limit removed")

    def is_active(self, session, customer):
        if not self.is_applicable(customer):
            return False
        return bool(self._queues(session, customer.static_ip))


class FirewallDrop(SuspensionStrategy):
    name = "firewall_rule"
    requires = ("ip",)

    @staticmethod
    def rule_name(ip: str) -> str:
        return f"block_{_ip_slug(ip)}"

    def _rules(self, session: DeviceSession, ip: str) -> list[dict[str, Any]]:
        return session.write(
            "/ip/firewall/filter/print", {"src-address": ip, "action": "drop"}
        )

    def apply(self, session, customer, reason):
        self._require(customer)
        ip = customer.static_ip
        if self._rules(session, ip):
            return StrategyResult(applied=True, already=True, message="Rule already exists")
        session.write(
            "/ip/firewall/filter/add",
            {
                "chain": "forward",
                "src-address": ip,
                "action": "drop",
                "comment": f"SUSPENDED {self.rule_name(ip)} - {reason} - {_timestamp()}",
            },
        )
        logger.info("Created firewall drop rule for %s", ip)
        return StrategyResult(applied=True, message="Firewall rule created")

    def revert(self, session, customer):
        self._require(customer)
        rules = self._rules(session, customer.static_ip)
        for rule in rules:
            session.write("/ip/firewall/filter/remove", {"id": rule["id"]})
        if not rules:
            return StrategyResult(reverted=False, message="No firewall rule found")
        logger.info("Removed firewall drop rules for %s", customer.static_ip)
        return StrategyResult(reverted=True, message=f"Removed {len(rules)} firewall rules")

    def is_active(self, session, customer):
        if not self.is_applicable(customer):
            return False
        return bool(self._rules(session, customer.static_ip))


_PREVIOUS_PROFILE_RE = re.compile(r"prev=(\S+)")


class PPPoEProfileIsolation(SuspensionStrategy):
    name = "pppoe_isolir"
    requires = ("pppoe",)

    def _secret(self, session: DeviceSession, username: str) -> dict[str, Any] | None:
        secrets = session.write("/ppp/secret/print", {"name": username})
        return secrets[0] if secrets else None

    def _kick(self, session: DeviceSession, username: str) -> int:
        active = session.write("/ppp/active/print", {"name": username})
        for row in active:
            session.write("/ppp/active/remove", {"id": row["id"]})
        if active:
            logger.info("Disconnected %s active PPPoE sessions for %s", len(active), username)
        return len(active)

    def apply(self, session, customer, reason):
        self._require(customer)
        username = customer.pppoe_username
        secret = self._secret(session, username)
        if not secret:
            logger.warning("No PPP secret for %s", username)
            return StrategyResult(
                applied=False,
                soft_failure=True,
                message=f"PPPoE secret not found for {username}",
            )
        isolir = self.options.isolir_profile
        if secret.get("profile") == isolir:
            return StrategyResult(applied=True, already=True, message="Already on isolation profile")
        previous = secret.get("profile") or self.options.pppoe_default_profile
        session.write(
            "/ppp/secret/set",
            {
                "id": secret["id"],
                "profile": isolir,
                "comment": f"SUSPENDED prev={previous} - {reason} - {_timestamp()}",
            },
        )
        self._kick(session, username)
        logger.info("Moved PPPoE %s from profile %s to %s", username, previous, isolir)
        return StrategyResult(applied=True, message=f"Profile set to {isolir}")

    def revert(self, session, customer):
        self._require(customer)
        username = customer.pppoe_username
        secret = self._secret(session, username)
        if not secret:
            return StrategyResult(
                reverted=False,
                soft_failure=True,
                message=f"PPPoE secret not found for {username}",
            )
        if secret.get("profile") != self.options.isolir_profile:
            return StrategyResult(reverted=False, message="Not on isolation profile")
        match = _PREVIOUS_PROFILE_RE.search(secret.get("comment") or "")
        profile = match.group(1) if match else self.options.pppoe_default_profile
        if profile == self.options.isolir_profile:
            profile = self.options.pppoe_default_profile
        session.write(
            "/ppp/secret/set",
            {"id": secret["id"], "profile": profile, "comment": "RESTORED"},
        )
        self._kick(session, username)
        logger.info("Restored PPPoE %s to profile %s", username, profile)
        return StrategyResult(reverted=True, message=f"Profile restored to {profile}")

    def is_active(self, session, customer):
        if not self.is_applicable(customer):
            return False
        secret = self._secret(session, customer.pppoe_username)
        return bool(secret) and secret.get("profile") == self.options.isolir_profile


STRATEGIES: dict[str, type[SuspensionStrategy]] = {
    AddressListBlock.name: AddressListBlock,
    DHCPLeaseBlock.name: DHCPLeaseBlock,
    BandwidthThrottle.name: BandwidthThrottle,
    FirewallDrop.name: FirewallDrop,
    PPPoEProfileIsolation.name: PPPoEProfileIsolation,
}


def get_strategy(method: str, options: EnforcementOptions | None = None) -> SuspensionStrategy:
    strategy_cls = STRATEGIES.get(method)
    if not strategy_cls:
        raise EnforcementConfigError(f"Unknown suspension method: {method}")
    return strategy_cls(options)


def applicable_strategies(
    customer: Customer, options: EnforcementOptions | None = None
) -> list[SuspensionStrategy]:
    """Every registered strategy the customer's identity fields allow, in registry order."""
    strategies = [strategy_cls(options) for strategy_cls in STRATEGIES.values()]
    return [strategy for strategy in strategies if strategy.is_applicable(customer)]
