"""
Volunteer Certification Model.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import BigInteger, Date, DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from shared.config.constants import CertificationStatus
from .base import AuditMixin, Base, BigIntPK


class VolunteerCertification(AuditMixin, Base):
    """
    Document a volunteer uploads (background check, CPR, concussion training)
    that an admin reviews before the volunteer can work a camp.
    """

    __tablename__ = "volunteer_certification"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("app_user.id"), nullable=False, index=True
    )
    certification_type: Mapped[str] = mapped_column(Text, nullable=False)
    document_url: Mapped[Optional[str]] = mapped_column(Text)
    document_name: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        Text, default=CertificationStatus.PENDING_REVIEW, nullable=False
    )
    expires_at: Mapped[Optional[date]] = mapped_column(Date)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    reviewed_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    reviewer_notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_certification_tenant_status", "tenant_id", "status"),
    )
