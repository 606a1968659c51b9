"""
CIT (Counselor-in-Training) Models: CitApplication, CitProgressEvent, CitAssignment.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import CitApplicationStatus
from .base import AuditMixin, Base, BigIntPK


class CitApplication(AuditMixin, Base):
    """A teenager applying to the CIT program."""

    __tablename__ = "cit_application"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("app_user.id"))
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(Text)
    school_name: Mapped[Optional[str]] = mapped_column(Text)
    grade: Mapped[Optional[str]] = mapped_column(Text)
    parent_name: Mapped[Optional[str]] = mapped_column(Text)
    parent_email: Mapped[Optional[str]] = mapped_column(Text)
    why_interested: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        Text, default=CitApplicationStatus.APPLIED, nullable=False
    )
    internal_notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_cit_application_tenant_status", "tenant_id", "status"),
    )

    events: Mapped[list["CitProgressEvent"]] = relationship(
        back_populates="application", order_by="CitProgressEvent.id"
    )
    assignments: Mapped[list["CitAssignment"]] = relationship(back_populates="application")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class CitProgressEvent(AuditMixin, Base):
    """Timeline entry of a CIT application."""

    __tablename__ = "cit_progress_event"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    application_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("cit_application.id"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(Text)
    to_status: Mapped[Optional[str]] = mapped_column(Text)
    details: Mapped[Optional[str]] = mapped_column(Text)

    application: Mapped["CitApplication"] = relationship(back_populates="events")


class CitAssignment(AuditMixin, Base):
    """Placement of a CIT on a camp."""

    __tablename__ = "cit_assignment"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    application_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("cit_application.id"), nullable=False, index=True
    )
    camp_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp.id"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(Text, default="cit", nullable=False)
    assignment_status: Mapped[str] = mapped_column(Text, default="planned", nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    application: Mapped["CitApplication"] = relationship(back_populates="assignments")
