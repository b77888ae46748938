import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class CustomerStatus(enum.Enum):
    active = "active"
    suspended = "suspended"
    inactive = "inactive"


class ConnectionType(enum.Enum):
    pppoe = "pppoe"
    static_ip = "static_ip"
    dhcp = "dhcp"


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(40))
    email: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[CustomerStatus] = mapped_column(
        Enum(CustomerStatus), default=CustomerStatus.active
    )
    auto_suspension_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    connection_type: Mapped[ConnectionType] = mapped_column(
        Enum(ConnectionType), default=ConnectionType.pppoe
    )
    pppoe_username: Mapped[str | None] = mapped_column(String(120))
    static_ip: Mapped[str | None] = mapped_column(String(64))
    mac_address: Mapped[str | None] = mapped_column(String(32))
    enforcement_target_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("enforcement_targets.id")
    )
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    enforcement_target = relationship("EnforcementTarget", back_populates="customers")
    invoices = relationship("Invoice", back_populates="customer")
    suspension_attempts = relationship("SuspensionAttempt", back_populates="customer")

    @property
    def ip_address(self) -> str | None:
        return self.static_ip or None

    @property
    def has_network_identity(self) -> bool:
        return bool(self.static_ip or self.mac_address or self.pppoe_username)
