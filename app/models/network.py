import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class EnforcementTarget(Base):
    """A RouterOS access device that enforces customer suspension."""

    __tablename__ = "enforcement_targets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    host: Mapped[str | None] = mapped_column(String(255))
    api_port: Mapped[int] = mapped_column(Integer, default=8728)
    username: Mapped[str | None] = mapped_column(String(120))
    # Stored with an enc:/plain: prefix, see app.services.credential_crypto
    password: Mapped[str | None] = mapped_column(Text)
    use_ssl: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    customers = relationship("Customer", back_populates="enforcement_target")
