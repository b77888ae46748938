import os
import sqlite3
import uuid
from datetime import timedelta
from decimal import Decimal

# Keep module-level engines (app.db, Celery config loading) off the real database
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base

# Register UUID adapter for SQLite - store as string
sqlite3.register_adapter(uuid.UUID, lambda u: str(u))


# Monkey-patch SQLAlchemy's UUID type for SQLite compatibility
# This must happen before any models are imported
from sqlalchemy.sql import sqltypes

_original_uuid_bind_processor = sqltypes.Uuid.bind_processor
_original_uuid_result_processor = sqltypes.Uuid.result_processor


def _sqlite_uuid_bind_processor(self, dialect):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return str(value)
                return str(uuid.UUID(value)) if value else None
            return None
        return process
    return _original_uuid_bind_processor(self, dialect)


def _sqlite_uuid_result_processor(self, dialect, coltype):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return value
                return uuid.UUID(value) if value else None
            return None
        return process
    return _original_uuid_result_processor(self, dialect, coltype)


setattr(sqltypes.Uuid, "bind_processor", _sqlite_uuid_bind_processor)
setattr(sqltypes.Uuid, "result_processor", _sqlite_uuid_result_processor)

from app.models.billing import (
    GatewayTransaction,
    GatewayTransactionStatus,
    Invoice,
    InvoiceStatus,
)
from app.models.network import EnforcementTarget
from app.models.subscriber import ConnectionType, Customer, CustomerStatus
from app.services.overdue_scanner import billing_today
from app.services.suspension import SuspensionConfig
from tests.mocks import FakeConnector, FakeDeviceSession, RecordingNotifier

_SETTING_ENV_VARS = (
    "AUTO_SUSPENSION_ENABLED",
    "GRACE_PERIOD_DAYS",
    "SUSPENSION_METHOD",
    "DEFAULT_ENFORCEMENT_TARGET_ID",
    "RECONCILIATION_GATEWAY",
    "RECONCILIATION_WINDOW_HOURS",
    "TRIPAY_API_KEY",
    "TRIPAY_MERCHANT_CODE",
    "TRIPAY_PRODUCTION",
    "PAYSTACK_SECRET_KEY",
    "NOTIFICATION_WEBHOOK_URL",
)


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={
                "check_same_thread": False,
            },
            poolclass=StaticPool,
        )

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, _connection_record):
            # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)

    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    for name in _SETTING_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def today():
    return billing_today("UTC")


@pytest.fixture()
def enforcement_target(db_session):
    target = EnforcementTarget(
        name="Core Router",
        host="10.0.0.1",
        username="api",
        password="plain:secret",
    )
    db_session.add(target)
    db_session.commit()
    db_session.refresh(target)
    return target


@pytest.fixture()
def make_customer(db_session, enforcement_target):
    def _make(**overrides):
        values = {
            "name": f"Customer {uuid.uuid4().hex[:6]}",
            "connection_type": ConnectionType.static_ip,
            "status": CustomerStatus.active,
            "enforcement_target_id": enforcement_target.id,
        }
        values.update(overrides)
        customer = Customer(**values)
        db_session.add(customer)
        db_session.commit()
        db_session.refresh(customer)
        return customer

    return _make


@pytest.fixture()
def customer(make_customer):
    return make_customer(name="Static Customer", static_ip="10.0.0.5")


@pytest.fixture()
def make_invoice(db_session, today):
    def _make(customer, days_overdue=10, amount="50000.00", **overrides):
        values = {
            "customer_id": customer.id,
            "invoice_number": f"INV-{uuid.uuid4().hex[:8].upper()}",
            "amount": Decimal(amount),
            "due_date": today - timedelta(days=days_overdue),
            "status": InvoiceStatus.unpaid,
        }
        values.update(overrides)
        invoice = Invoice(**values)
        db_session.add(invoice)
        db_session.commit()
        db_session.refresh(invoice)
        return invoice

    return _make


@pytest.fixture()
def make_transaction(db_session):
    def _make(invoice, reference="TX123", gateway="tripay", **overrides):
        values = {
            "invoice_id": invoice.id,
            "gateway": gateway,
            "order_id": f"ORD-{uuid.uuid4().hex[:8]}",
            "external_reference": reference,
            "status": GatewayTransactionStatus.pending,
            "amount": invoice.amount,
        }
        values.update(overrides)
        transaction = GatewayTransaction(**values)
        db_session.add(transaction)
        db_session.commit()
        db_session.refresh(transaction)
        return transaction

    return _make


@pytest.fixture()
def device():
    return FakeDeviceSession()


@pytest.fixture()
def connector(device):
    return FakeConnector(device)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def suspension_config():
    return SuspensionConfig(grace_period_days=7, suspension_method="address_list")
