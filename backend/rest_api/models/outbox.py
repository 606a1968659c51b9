"""
Outbox model for transactional side effects.

Notifications, emails and realtime pushes are written as outbox rows in the
same transaction as the business change, then delivered by a background
worker. A delivery problem never rolls back the business change, and an
event is never lost if the process dies after commit.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, DateTime, Enum as SQLEnum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, utcnow


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"  # claimed by one processor
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"  # retries exhausted


class OutboxEvent(Base):
    """One pending side effect. `payload` is JSON: recipients plus event data."""
    __tablename__ = "outbox_event"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    tenant_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Aggregate the event is about, e.g. "registration", "camp_day", "royalty_invoice"
    aggregate_type: Mapped[str] = mapped_column(String(50), nullable=False)
    aggregate_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    payload: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[OutboxStatus] = mapped_column(
        SQLEnum(OutboxStatus, name="outbox_status"),
        default=OutboxStatus.PENDING,
        nullable=False,
        index=True,
    )

    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    # Set when a processor claims the row; stale claims are taken over
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # The processor polls by status in creation order
    __table_args__ = (
        Index("ix_outbox_event_status_created", "status", "created_at"),
        Index("ix_outbox_event_tenant_status", "tenant_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<OutboxEvent {self.id} {self.event_type} {self.status.value}>"
