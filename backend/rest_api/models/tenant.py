"""
Multi-Tenancy Model: Tenant (licensee).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import AuditMixin, Base, BigIntPK

if TYPE_CHECKING:
    from .user import User
    from .camp import Camp


class Tenant(AuditMixin, Base):
    """
    Represents a licensee that runs camps under the brand.
    All other entities belong to a tenant for complete data isolation.
    Inherits: is_active, created_at, updated_at, deleted_at, *_by_id from AuditMixin.
    """

    __tablename__ = "tenant"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    contact_email: Mapped[Optional[str]] = mapped_column(Text)
    contact_phone: Mapped[Optional[str]] = mapped_column(Text)
    # Licensee-specific royalty rate; falls back to the platform default
    royalty_rate_bps: Mapped[Optional[int]] = mapped_column(Integer)

    # Relationships
    users: Mapped[list["User"]] = relationship(back_populates="tenant")
    camps: Mapped[list["Camp"]] = relationship(back_populates="tenant")

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name='{self.name}', slug='{self.slug}')>"
