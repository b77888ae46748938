import logging
import os
from dataclasses import dataclass
from datetime import timedelta

from app.db import SessionLocal
from app.models.domain_settings import DomainSetting, SettingDomain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkflowSchedule:
    name: str
    task_name: str
    enabled: bool
    interval_seconds: int


# name, Celery task, settings key prefix, default interval, minimum interval
_WORKFLOWS: tuple[tuple[str, str, str, int, int], ...] = (
    ("suspension", "app.tasks.enforcement.run_suspension_check", "suspension", 86400, 300),
    ("restoration", "app.tasks.enforcement.run_restoration_check", "restoration", 86400, 300),
    ("reconciliation", "app.tasks.enforcement.run_payment_reconciliation", "reconciliation", 900, 60),
)


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_bool(name: str) -> bool | None:
    raw = _env_value(name)
    if raw is None:
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _get_setting_value(db, domain: SettingDomain, key: str) -> str | None:
    if db is None:
        return None
    setting = (
        db.query(DomainSetting)
        .filter(DomainSetting.domain == domain)
        .filter(DomainSetting.key == key)
        .filter(DomainSetting.is_active.is_(True))
        .first()
    )
    if not setting:
        return None
    if setting.value_text:
        return str(setting.value_text)
    if setting.value_json is not None:
        return str(setting.value_json)
    return None


def _effective_bool(
    db, domain: SettingDomain, key: str, env_key: str, default: bool
) -> bool:
    env_value = _env_bool(env_key)
    if env_value is not None:
        return env_value
    value = _get_setting_value(db, domain, key)
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _effective_int(
    db, domain: SettingDomain, key: str, env_key: str, default: int
) -> int:
    env_value = _env_int(env_key)
    if env_value is not None:
        return env_value
    value = _get_setting_value(db, domain, key)
    if value is None:
        return default
    try:
        return int(str(value))
    except ValueError:
        return default


def _effective_str(
    db, domain: SettingDomain, key: str, env_key: str, default: str | None
) -> str | None:
    env_value = _env_value(env_key)
    if env_value is not None:
        return env_value
    value = _get_setting_value(db, domain, key)
    if value is None:
        return default
    return str(value)


def get_workflow_schedules(db) -> list[WorkflowSchedule]:
    schedules = []
    for name, task_name, prefix, default_interval, min_interval in _WORKFLOWS:
        enabled = _effective_bool(
            db,
            SettingDomain.scheduler,
            f"{prefix}_enabled",
            f"{prefix.upper()}_ENABLED",
            True,
        )
        interval = _effective_int(
            db,
            SettingDomain.scheduler,
            f"{prefix}_interval_seconds",
            f"{prefix.upper()}_INTERVAL_SECONDS",
            default_interval,
        )
        schedules.append(
            WorkflowSchedule(
                name=name,
                task_name=task_name,
                enabled=enabled,
                interval_seconds=max(interval, min_interval),
            )
        )
    return schedules


def load_workflow_schedules() -> list[WorkflowSchedule]:
    """Schedules from settings, falling back to env/defaults if the database is unreachable."""
    session = SessionLocal()
    try:
        return get_workflow_schedules(session)
    except Exception:
        logger.exception("Failed to load workflow schedules from database.")
        session.rollback()
        return get_workflow_schedules(None)
    finally:
        session.close()


def get_celery_config() -> dict:
    broker = None
    backend = None
    timezone = None
    session = SessionLocal()
    try:
        broker = _effective_str(
            session, SettingDomain.scheduler, "broker_url", "CELERY_BROKER_URL", None
        )
        backend = _effective_str(
            session,
            SettingDomain.scheduler,
            "result_backend",
            "CELERY_RESULT_BACKEND",
            None,
        )
        timezone = _effective_str(
            session, SettingDomain.scheduler, "timezone", "CELERY_TIMEZONE", None
        )
    except Exception:
        logger.exception("Failed to load scheduler settings from database.")
    finally:
        session.close()

    broker = (
        broker
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/0"
    )
    backend = (
        backend
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/1"
    )
    timezone = timezone or "UTC"
    return {
        "broker_url": broker,
        "result_backend": backend,
        "timezone": timezone,
    }


def build_beat_schedule() -> dict:
    schedule: dict[str, dict] = {}
    for workflow in load_workflow_schedules():
        if not workflow.enabled:
            continue
        schedule[f"enforcement_{workflow.name}"] = {
            "task": workflow.task_name,
            "schedule": timedelta(seconds=workflow.interval_seconds),
        }
    return schedule
