import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class SuspensionAction(enum.Enum):
    suspend = "suspend"
    restore = "restore"


class AttemptOutcome(enum.Enum):
    applied = "applied"
    already_active = "already_active"
    reverted = "reverted"
    not_found = "not_found"
    failed = "failed"
    skipped = "skipped"


class SuspensionAttempt(Base):
    """Audit row for one strategy call against one customer."""

    __tablename__ = "suspension_attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False
    )
    enforcement_target_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("enforcement_targets.id")
    )
    action: Mapped[SuspensionAction] = mapped_column(
        Enum(SuspensionAction), nullable=False
    )
    method: Mapped[str] = mapped_column(String(40), nullable=False)
    target_ip: Mapped[str | None] = mapped_column(String(64))
    mac_address: Mapped[str | None] = mapped_column(String(32))
    outcome: Mapped[AttemptOutcome] = mapped_column(Enum(AttemptOutcome), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255))
    error: Mapped[str | None] = mapped_column(Text)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    customer = relationship("Customer", back_populates="suspension_attempts")
    enforcement_target = relationship("EnforcementTarget")
