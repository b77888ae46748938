"""Initial enforcement and reconciliation schema.

Revision ID: 0001_initial_enforcement
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_enforcement"
down_revision = None
branch_labels = None
depends_on = None

_ENUMS = (
    ("settingvaluetype", ("string", "integer", "boolean", "json")),
    ("settingdomain", ("billing", "collections", "network", "notification", "scheduler")),
    ("customerstatus", ("active", "suspended", "inactive")),
    ("connectiontype", ("pppoe", "static_ip", "dhcp")),
    ("invoicestatus", ("unpaid", "paid", "cancelled")),
    ("gatewaytransactionstatus", ("pending", "success", "failed")),
    ("suspensionaction", ("suspend", "restore")),
    (
        "attemptoutcome",
        ("applied", "already_active", "reverted", "not_found", "failed", "skipped"),
    ),
)


def _enum(name: str) -> postgresql.ENUM:
    values = dict(_ENUMS)[name]
    return postgresql.ENUM(*values, name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in _ENUMS:
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "domain_settings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("domain", _enum("settingdomain"), nullable=False),
        sa.Column("key", sa.String(120), nullable=False),
        sa.Column("value_type", _enum("settingvaluetype"), nullable=False),
        sa.Column("value_text", sa.Text()),
        sa.Column("value_json", sa.JSON()),
        sa.Column("is_secret", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("domain", "key", name="uq_domain_settings_domain_key"),
        sa.CheckConstraint(
            "(value_type = 'json' AND value_json IS NOT NULL AND value_text IS NULL) "
            "OR (value_type != 'json' AND value_text IS NOT NULL)",
            name="ck_domain_settings_value_alignment",
        ),
    )

    op.create_table(
        "enforcement_targets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("host", sa.String(255)),
        sa.Column("api_port", sa.Integer(), server_default="8728"),
        sa.Column("username", sa.String(120)),
        sa.Column("password", sa.Text()),
        sa.Column("use_ssl", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "customers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("phone", sa.String(40)),
        sa.Column("email", sa.String(255)),
        sa.Column("status", _enum("customerstatus"), nullable=False),
        sa.Column("auto_suspension_enabled", sa.Boolean(), server_default=sa.true()),
        sa.Column("connection_type", _enum("connectiontype"), nullable=False),
        sa.Column("pppoe_username", sa.String(120)),
        sa.Column("static_ip", sa.String(64)),
        sa.Column("mac_address", sa.String(32)),
        sa.Column(
            "enforcement_target_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("enforcement_targets.id"),
        ),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )
    op.create_index("ix_customers_status", "customers", ["status"])

    op.create_table(
        "invoices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("customers.id"),
            nullable=False,
        ),
        sa.Column("invoice_number", sa.String(80)),
        sa.Column("amount", sa.Numeric(12, 2), server_default="0"),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("invoicestatus"), nullable=False),
        sa.Column("payment_method", sa.String(40)),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )
    op.create_index("ix_invoices_status_due_date", "invoices", ["status", "due_date"])
    op.create_index("ix_invoices_customer_id", "invoices", ["customer_id"])

    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "invoice_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("invoices.id"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), server_default="0"),
        sa.Column("payment_method", sa.String(40), server_default="online"),
        sa.Column("reference_number", sa.String(160)),
        sa.Column("payment_date", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "invoice_id", "reference_number", name="uq_payments_invoice_reference"
        ),
    )

    op.create_table(
        "payment_gateway_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "invoice_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("invoices.id"),
            nullable=False,
        ),
        sa.Column("gateway", sa.String(40), nullable=False),
        sa.Column("order_id", sa.String(120)),
        sa.Column("external_reference", sa.String(160)),
        sa.Column("status", _enum("gatewaytransactionstatus"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), server_default="0"),
        sa.Column("payment_type", sa.String(80)),
        *_timestamps(),
    )
    op.create_index(
        "ix_payment_gateway_transactions_gateway_status",
        "payment_gateway_transactions",
        ["gateway", "status", "created_at"],
    )

    op.create_table(
        "suspension_attempts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("customers.id"),
            nullable=False,
        ),
        sa.Column(
            "enforcement_target_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("enforcement_targets.id"),
        ),
        sa.Column("action", _enum("suspensionaction"), nullable=False),
        sa.Column("method", sa.String(40), nullable=False),
        sa.Column("target_ip", sa.String(64)),
        sa.Column("mac_address", sa.String(32)),
        sa.Column("outcome", _enum("attemptoutcome"), nullable=False),
        sa.Column("reason", sa.String(255)),
        sa.Column("error", sa.Text()),
        sa.Column("attempted_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_suspension_attempts_customer_id", "suspension_attempts", ["customer_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_suspension_attempts_customer_id", table_name="suspension_attempts")
    op.drop_table("suspension_attempts")
    op.drop_index(
        "ix_payment_gateway_transactions_gateway_status",
        table_name="payment_gateway_transactions",
    )
    op.drop_table("payment_gateway_transactions")
    op.drop_table("payments")
    op.drop_index("ix_invoices_customer_id", table_name="invoices")
    op.drop_index("ix_invoices_status_due_date", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_customers_status", table_name="customers")
    op.drop_table("customers")
    op.drop_table("enforcement_targets")
    op.drop_table("domain_settings")
    bind = op.get_bind()
    for name, values in reversed(_ENUMS):
        postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
