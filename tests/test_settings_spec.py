import pytest

from app.models.domain_settings import DomainSetting, SettingDomain, SettingValueType
from app.services import settings_spec
from app.services.suspension import load_suspension_config


def test_defaults_without_rows(db_session):
    assert settings_spec.resolve_value(db_session, SettingDomain.collections, "grace_period_days") == 7
    assert settings_spec.resolve_value(db_session, SettingDomain.collections, "auto_suspension_enabled") is True
    assert (
        settings_spec.resolve_value(db_session, SettingDomain.collections, "blocked_address_list")
        == "blocked_customers"
    )
    assert settings_spec.resolve_value(db_session, SettingDomain.billing, "reconciliation_window_hours") == 24
    assert settings_spec.resolve_value(db_session, SettingDomain.network, "device_timeout_seconds") == 10


def test_unknown_key_resolves_to_none(db_session):
    assert settings_spec.resolve_value(db_session, SettingDomain.collections, "no_such_key") is None


def test_database_value_overrides_default(db_session):
    settings_spec.upsert_value(db_session, SettingDomain.collections, "grace_period_days", 3)

    assert settings_spec.resolve_value(db_session, SettingDomain.collections, "grace_period_days") == 3


def test_environment_overrides_database(db_session, monkeypatch):
    settings_spec.upsert_value(db_session, SettingDomain.collections, "grace_period_days", 3)
    monkeypatch.setenv("GRACE_PERIOD_DAYS", "14")

    assert settings_spec.resolve_value(db_session, SettingDomain.collections, "grace_period_days") == 14


def test_out_of_range_and_disallowed_values_fall_back(db_session):
    db_session.add_all(
        [
            DomainSetting(
                domain=SettingDomain.collections,
                key="grace_period_days",
                value_type=SettingValueType.integer,
                value_text="9000",
            ),
            DomainSetting(
                domain=SettingDomain.collections,
                key="suspension_method",
                value_type=SettingValueType.string,
                value_text="carrier_pigeon",
            ),
        ]
    )
    db_session.commit()

    assert settings_spec.resolve_value(db_session, SettingDomain.collections, "grace_period_days") == 7
    assert (
        settings_spec.resolve_value(db_session, SettingDomain.collections, "suspension_method")
        == "address_list"
    )


def test_inactive_rows_are_ignored(db_session):
    db_session.add(
        DomainSetting(
            domain=SettingDomain.collections,
            key="auto_suspension_enabled",
            value_type=SettingValueType.boolean,
            value_text="false",
            is_active=False,
        )
    )
    db_session.commit()

    assert settings_spec.resolve_value(db_session, SettingDomain.collections, "auto_suspension_enabled") is True


def test_resolve_values_matches_resolve_value(db_session):
    settings_spec.upsert_value(db_session, SettingDomain.collections, "isolir_profile", "walled-garden")
    keys = ["isolir_profile", "grace_period_days", "no_such_key"]

    values = settings_spec.resolve_values(db_session, SettingDomain.collections, keys)

    assert values == {"isolir_profile": "walled-garden", "grace_period_days": 7}


@pytest.mark.parametrize(
    "key, value",
    [
        ("grace_period_days", "seven"),
        ("auto_suspension_enabled", "maybe"),
        ("suspension_method", "carrier_pigeon"),
    ],
)
def test_upsert_rejects_invalid_values(db_session, key, value):
    with pytest.raises(ValueError):
        settings_spec.upsert_value(db_session, SettingDomain.collections, key, value)


def test_upsert_updates_existing_row(db_session):
    settings_spec.upsert_value(db_session, SettingDomain.collections, "auto_suspension_enabled", False)
    setting = settings_spec.upsert_value(
        db_session, SettingDomain.collections, "auto_suspension_enabled", "yes"
    )

    rows = (
        db_session.query(DomainSetting)
        .filter(DomainSetting.key == "auto_suspension_enabled")
        .all()
    )
    assert rows == [setting]
    assert setting.value_text == "true"


def test_secret_flag_follows_spec(db_session):
    setting = settings_spec.upsert_value(db_session, SettingDomain.billing, "paystack_secret_key", "sk_test")

    assert setting.is_secret is True


def test_load_suspension_config(db_session):
    settings_spec.upsert_value(db_session, SettingDomain.collections, "suspension_method", "pppoe_isolir")
    settings_spec.upsert_value(db_session, SettingDomain.collections, "suspension_bandwidth_limit", "256k/256k")
    settings_spec.upsert_value(db_session, SettingDomain.network, "device_timeout_seconds", 5)

    config = load_suspension_config(db_session)

    assert config.suspension_method == "pppoe_isolir"
    assert config.options.bandwidth_limit == "256k/256k"
    assert config.device_timeout_seconds == 5
    assert config.grace_period_days == 7
    assert config.auto_suspension_enabled is True
