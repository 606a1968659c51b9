"""
Messaging Models: MessageThread, MessageParticipant, Message.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import MessageThreadType
from .base import AuditMixin, Base, BigIntPK


class MessageThread(AuditMixin, Base):
    """Conversation between two or more users of one tenant."""

    __tablename__ = "message_thread"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    subject: Mapped[Optional[str]] = mapped_column(Text)
    thread_type: Mapped[str] = mapped_column(
        Text, default=MessageThreadType.GENERAL, nullable=False
    )
    camp_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("camp.id"))
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    participants: Mapped[list["MessageParticipant"]] = relationship(back_populates="thread")
    messages: Mapped[list["Message"]] = relationship(
        back_populates="thread", order_by="Message.id"
    )


class MessageParticipant(AuditMixin, Base):
    """Membership of a user in a thread. is_active=False means the user left."""

    __tablename__ = "message_participant"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    thread_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("message_thread.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("app_user.id"), nullable=False, index=True
    )
    last_read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("thread_id", "user_id", name="uq_participant_thread_user"),
    )

    thread: Mapped["MessageThread"] = relationship(back_populates="participants")


class Message(AuditMixin, Base):
    """A message in a thread. Soft-deleted messages (is_active=False) are hidden."""

    __tablename__ = "message"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    thread_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("message_thread.id"), nullable=False, index=True
    )
    sender_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("app_user.id"), nullable=False, index=True
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("ix_message_thread_created", "thread_id", "created_at"),
    )

    thread: Mapped["MessageThread"] = relationship(back_populates="messages")
