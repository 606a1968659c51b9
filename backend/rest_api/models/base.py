"""
Declarative base and the audit columns shared by every table.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# BIGINT keys on PostgreSQL; SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class AuditMixin:
    """
    Soft delete plus who/when columns.

    Rows are never physically deleted: `is_active=False` hides them from
    listings while registrations, invoices and messages that point at them
    stay intact. Actor ids are plain integers (no FK to app_user).
    """

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    # Python-side default keeps sub-second ordering on SQLite too
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    updated_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    deleted_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)

    def set_created_by(self, user_id: int | None) -> None:
        self.created_by_id = user_id

    def set_updated_by(self, user_id: int | None) -> None:
        self.updated_by_id = user_id
        self.updated_at = utcnow()

    def soft_delete(self, user_id: int | None) -> None:
        self.is_active = False
        self.deleted_at = utcnow()
        self.deleted_by_id = user_id

    def restore(self, user_id: int | None) -> None:
        """Reactivate a soft-deleted row, e.g. a re-added staff assignment."""
        self.is_active = True
        self.deleted_at = None
        self.deleted_by_id = None
        self.set_updated_by(user_id)

    def __repr__(self) -> str:
        state = "active" if self.is_active else "deleted"
        return f"<{type(self).__name__} id={getattr(self, 'id', None)} {state}>"
