"""Suspend overdue customers and restore paid-up ones on their enforcement target."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.metrics import record_enforcement_action
from app.models.domain_settings import SettingDomain
from app.models.enforcement import AttemptOutcome, SuspensionAction
from app.models.subscriber import Customer, CustomerStatus
from app.schemas.enforcement import (
    CustomerActionResult,
    RestorationDetail,
    RestorationReport,
    SuspensionAttemptRead,
    SuspensionDetail,
    SuspensionReport,
    SuspensionStatus,
)
from app.services import mikrotik
from app.services.enforcement_errors import EnforcementError
from app.services.notifications import Notifier, build_notifier, safe_notify
from app.services.overdue_scanner import OverdueScanner
from app.services.settings_spec import resolve_value, resolve_values
from app.services.state_store import StateStore
from app.services.suspension_strategies import (
    EnforcementOptions,
    SuspensionStrategy,
    applicable_strategies,
    get_strategy,
)

logger = logging.getLogger(__name__)

# Identity field -> strategy tried when the configured method does not fit
FALLBACK_METHODS: tuple[tuple[str, str], ...] = (
    ("pppoe_username", "pppoe_isolir"),
    ("static_ip", "address_list"),
    ("mac_address", "dhcp_block"),
)


@dataclass(frozen=True)
class SuspensionConfig:
    auto_suspension_enabled: bool = True
    grace_period_days: int = 7
    suspension_method: str = "address_list"
    device_timeout_seconds: int = 10
    billing_timezone: str = "UTC"
    options: EnforcementOptions = field(default_factory=EnforcementOptions)


def load_suspension_config(db: Session) -> SuspensionConfig:
    values = resolve_values(
        db,
        SettingDomain.collections,
        [
            "auto_suspension_enabled",
            "grace_period_days",
            "suspension_method",
            "suspension_bandwidth_limit",
            "blocked_address_list",
            "isolir_profile",
            "pppoe_default_profile",
            "billing_timezone",
        ],
    )
    timeout = resolve_value(db, SettingDomain.network, "device_timeout_seconds")
    return SuspensionConfig(
        auto_suspension_enabled=bool(values["auto_suspension_enabled"]),
        grace_period_days=int(values["grace_period_days"]),
        suspension_method=str(values["suspension_method"]),
        device_timeout_seconds=int(timeout or 10),
        billing_timezone=str(values["billing_timezone"] or "UTC"),
        options=EnforcementOptions(
            blocked_address_list=str(values["blocked_address_list"]),
            bandwidth_limit=str(values["suspension_bandwidth_limit"]),
            isolir_profile=str(values["isolir_profile"]),
            pppoe_default_profile=str(values["pppoe_default_profile"]),
        ),
    )


@dataclass
class _CustomerOutcome:
    outcome: str
    methods: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def error(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None


class SuspensionController:
    def __init__(
        self,
        db: Session,
        *,
        config: SuspensionConfig | None = None,
        notifier: Notifier | None = None,
        connector: Callable | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        self.db = db
        self.store = StateStore(db)
        self.config = config or load_suspension_config(db)
        self.notifier = notifier or build_notifier(db)
        self.connector = connector or mikrotik.connect
        self.should_stop = should_stop or (lambda: False)
        self.scanner = OverdueScanner(self.store, self.config.billing_timezone)

    # Strategy selection

    def resolve_strategies(self, customer: Customer, method: str | None = None) -> list[SuspensionStrategy]:
        """Configured method first when it fits the customer, then identity fallbacks."""
        options = self.config.options
        candidates: list[SuspensionStrategy] = []
        preferred = get_strategy(method or self.config.suspension_method, options)
        if preferred.is_applicable(customer):
            candidates.append(preferred)
        if method:
            return candidates
        for attr, fallback in FALLBACK_METHODS:
            if not getattr(customer, attr):
                continue
            if any(candidate.name == fallback for candidate in candidates):
                continue
            candidates.append(get_strategy(fallback, options))
        return candidates

    def _connect(self, target):
        return self.connector(target, self.config.device_timeout_seconds)

    def _record(self, customer, action, method, outcome, target=None, reason=None, error=None):
        self.store.record_suspension_attempt(
            customer,
            action=action,
            method=method,
            outcome=outcome,
            target=target,
            reason=reason,
            error=error,
        )
        record_enforcement_action(action.value, method, outcome.value)

    # Suspend

    def _suspend(self, customer: Customer, reason: str, method: str | None = None) -> _CustomerOutcome:
        if not customer.has_network_identity:
            logger.warning("Customer %s has no IP, MAC or PPPoE username", customer.id)
            return _CustomerOutcome(
                outcome="no_network_identity",
                errors=[f"Customer {customer.id} has no IP, MAC or PPPoE username"],
            )
        candidates = self.resolve_strategies(customer, method)
        if not candidates:
            return _CustomerOutcome(
                outcome="method_not_applicable",
                errors=[f"{method} does not fit the customer's network identity"],
            )

        result = _CustomerOutcome(outcome="not_applied")
        target = self.store.get_target_for_customer(customer)
        try:
            session = self._connect(target)
        except EnforcementError as exc:
            logger.warning("Cannot reach enforcement target for customer %s: %s", customer.id, exc)
            self._record(
                customer,
                SuspensionAction.suspend,
                candidates[0].name,
                AttemptOutcome.failed,
                target=target,
                reason=reason,
                error=str(exc),
            )
            result.outcome = "failed"
            result.errors.append(str(exc))
            return result

        with session:
            for strategy in candidates:
                try:
                    applied = strategy.apply(session, customer, reason)
                except EnforcementError as exc:
                    logger.warning(
                        "Suspension method %s failed for customer %s: %s",
                        strategy.name,
                        customer.id,
                        exc,
                    )
                    result.errors.append(f"{strategy.name}: {exc}")
                    self._record(
                        customer,
                        SuspensionAction.suspend,
                        strategy.name,
                        AttemptOutcome.failed,
                        target=target,
                        reason=reason,
                        error=str(exc),
                    )
                    continue
                if applied.applied:
                    outcome = AttemptOutcome.already_active if applied.already else AttemptOutcome.applied
                    self._record(
                        customer,
                        SuspensionAction.suspend,
                        strategy.name,
                        outcome,
                        target=target,
                        reason=reason,
                    )
                    result.methods.append(strategy.name)
                    break
                self._record(
                    customer,
                    SuspensionAction.suspend,
                    strategy.name,
                    AttemptOutcome.skipped,
                    target=target,
                    reason=reason,
                    error=applied.message,
                )

        if result.methods:
            # A fallback took effect after an earlier method raised
            result.outcome = "partial" if result.errors else "suspended"
            self.store.set_customer_status(customer.id, CustomerStatus.suspended)
            logger.info("Customer %s suspended via %s", customer.id, ", ".join(result.methods))
            safe_notify(self.notifier.notify_suspended, customer, reason)
        elif result.errors:
            result.outcome = "failed"
        return result

    def suspend_overdue(self, grace_period_days: int | None = None) -> SuspensionReport:
        report = SuspensionReport()
        if not self.config.auto_suspension_enabled:
            logger.info("Automatic suspension disabled; skipping run")
            report.disabled = True
            return report
        grace = self.config.grace_period_days if grace_period_days is None else grace_period_days
        cases = self.scanner.scan(grace)
        logger.info("Suspension check: %s overdue customers (grace %s days)", len(cases), grace)

        for case in cases:
            if self.should_stop():
                report.stopped = True
                break
            customer = case.customer
            report.checked += 1
            invoice_label = case.invoice.invoice_number or str(case.invoice.id)
            reason = f"Overdue invoice {invoice_label} ({case.days_overdue} days)"
            try:
                outcome = self._suspend(customer, reason)
            except SQLAlchemyError:
                raise
            except Exception as exc:
                logger.exception("Suspension failed for customer %s", customer.id)
                outcome = _CustomerOutcome(outcome="failed", errors=[str(exc)])

            if outcome.outcome in ("suspended", "partial"):
                report.suspended += 1
            elif outcome.outcome == "not_applied":
                report.skipped += 1
            if outcome.outcome not in ("suspended", "not_applied"):
                report.errors += 1
            report.details.append(
                SuspensionDetail(
                    customer_id=customer.id,
                    customer_name=customer.name,
                    invoice_id=case.invoice.id,
                    days_overdue=case.days_overdue,
                    outcome=outcome.outcome,
                    methods=outcome.methods,
                    error=outcome.error,
                )
            )
        logger.info(
            "Suspension check done: checked=%s suspended=%s errors=%s skipped=%s",
            report.checked,
            report.suspended,
            report.errors,
            report.skipped,
        )
        return report

    # Restore

    def _restore(self, customer: Customer, reason: str = "Invoices paid") -> _CustomerOutcome:
        strategies = applicable_strategies(customer, self.config.options)
        if not strategies:
            return _CustomerOutcome(
                outcome="no_network_identity",
                errors=[f"Customer {customer.id} has no network identity"],
            )
        result = _CustomerOutcome(outcome="no_suspension_found")
        target = self.store.get_target_for_customer(customer)
        try:
            session = self._connect(target)
        except EnforcementError as exc:
            logger.warning("Cannot reach enforcement target for customer %s: %s", customer.id, exc)
            result.outcome = "failed"
            result.errors.append(str(exc))
            return result

        with session:
            for strategy in strategies:
                try:
                    reverted = strategy.revert(session, customer)
                except EnforcementError as exc:
                    logger.warning(
                        "Restore method %s failed for customer %s: %s",
                        strategy.name,
                        customer.id,
                        exc,
                    )
                    result.errors.append(f"{strategy.name}: {exc}")
                    self._record(
                        customer,
                        SuspensionAction.restore,
                        strategy.name,
                        AttemptOutcome.failed,
                        target=target,
                        reason=reason,
                        error=str(exc),
                    )
                    continue
                if reverted.reverted:
                    result.methods.append(strategy.name)
                    self._record(
                        customer,
                        SuspensionAction.restore,
                        strategy.name,
                        AttemptOutcome.reverted,
                        target=target,
                        reason=reason,
                    )
                else:
                    record_enforcement_action("restore", strategy.name, AttemptOutcome.not_found.value)

        if result.errors:
            # Status stays suspended so the next run retries what is left on the device
            result.outcome = "partial" if result.methods else "failed"
            if result.methods:
                logger.warning(
                    "Customer %s partially restored, reverted %s, still failing: %s",
                    customer.id,
                    ", ".join(result.methods),
                    result.error,
                )
        elif result.methods or self.store.restore_in_progress(customer.id):
            result.outcome = "restored"
            self.store.set_customer_status(customer.id, CustomerStatus.active)
            logger.info(
                "Customer %s restored, reverted %s",
                customer.id,
                ", ".join(result.methods) or "nothing left on device",
            )
            safe_notify(self.notifier.notify_restored, customer)
        return result

    def restore_paid(self) -> RestorationReport:
        report = RestorationReport()
        for customer in self.store.list_suspended_customers():
            if self.should_stop():
                report.stopped = True
                break
            if self.store.has_unpaid_invoices(customer.id):
                continue
            report.checked += 1
            try:
                outcome = self._restore(customer)
            except SQLAlchemyError:
                raise
            except Exception as exc:
                logger.exception("Restore failed for customer %s", customer.id)
                outcome = _CustomerOutcome(outcome="failed", errors=[str(exc)])

            if outcome.outcome == "restored":
                report.restored += 1
            elif outcome.outcome == "no_suspension_found":
                report.no_suspension_found += 1
            else:
                report.errors += 1
            report.details.append(
                RestorationDetail(
                    customer_id=customer.id,
                    customer_name=customer.name,
                    outcome=outcome.outcome,
                    methods=outcome.methods,
                    error=outcome.error,
                )
            )
        logger.info(
            "Restoration check done: checked=%s restored=%s errors=%s no_suspension_found=%s",
            report.checked,
            report.restored,
            report.errors,
            report.no_suspension_found,
        )
        return report

    # Manual operations

    def _require_customer(self, customer_id) -> Customer:
        customer = self.store.get_customer(customer_id)
        if not customer:
            raise LookupError(f"Customer {customer_id} not found")
        return customer

    def suspend_customer(self, customer_id, reason: str, method: str | None = None) -> CustomerActionResult:
        customer = self._require_customer(customer_id)
        if method:
            # Unknown method names raise before any device call
            get_strategy(method, self.config.options)
        outcome = self._suspend(customer, reason, method=method)
        return CustomerActionResult(
            customer_id=customer.id,
            success=outcome.outcome in ("suspended", "partial"),
            outcome=outcome.outcome,
            methods=outcome.methods,
            errors=outcome.errors,
        )

    def restore_customer(self, customer_id, reason: str = "Manual restore") -> CustomerActionResult:
        customer = self._require_customer(customer_id)
        outcome = self._restore(customer, reason)
        return CustomerActionResult(
            customer_id=customer.id,
            success=outcome.outcome == "restored",
            outcome=outcome.outcome,
            methods=outcome.methods,
            errors=outcome.errors,
        )

    def suspension_status(self, customer_id) -> SuspensionStatus:
        customer = self._require_customer(customer_id)
        status = SuspensionStatus(
            customer_id=customer.id,
            status=customer.status.value,
            suspended=customer.status == CustomerStatus.suspended,
            customer_ip=customer.static_ip,
            mac_address=customer.mac_address,
            pppoe_username=customer.pppoe_username,
            recent_attempts=[
                SuspensionAttemptRead.model_validate(attempt)
                for attempt in self.store.list_suspension_attempts(customer.id, limit=10)
            ],
        )
        strategies = applicable_strategies(customer, self.config.options)
        if not strategies:
            return status
        try:
            session = self._connect(self.store.get_target_for_customer(customer))
            with session:
                status.methods = [
                    strategy.name for strategy in strategies if strategy.is_active(session, customer)
                ]
        except EnforcementError as exc:
            status.device_error = str(exc)
            return status
        status.suspended = status.suspended or bool(status.methods)
        return status

