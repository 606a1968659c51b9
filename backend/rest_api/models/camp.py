"""
Camp Models: Camp, CampAddon, CampGroup, CamperSessionData,
StaffAssignment, SessionCompensation.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import CampStatus, GroupingStatus
from .base import AuditMixin, Base, BigIntPK

if TYPE_CHECKING:
    from .tenant import Tenant
    from .camp_day import CampDay


class Camp(AuditMixin, Base):
    """
    A camp session run by a licensee over a contiguous date range.
    Inherits: is_active, created_at, updated_at, deleted_at, *_by_id from AuditMixin.
    """

    __tablename__ = "camp"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    location_name: Mapped[Optional[str]] = mapped_column(Text)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Null capacity means the platform default
    capacity: Mapped[Optional[int]] = mapped_column(Integer)

    # Prices in cents
    price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    early_bird_price_cents: Mapped[Optional[int]] = mapped_column(Integer)
    early_bird_deadline: Mapped[Optional[date]] = mapped_column(Date)

    status: Mapped[str] = mapped_column(Text, default=CampStatus.DRAFT, nullable=False)

    # Lock / conclusion
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    lock_reason: Mapped[Optional[str]] = mapped_column(Text)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    locked_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    concluded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    concluded_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Grouping limits and progress
    max_group_size: Mapped[int] = mapped_column(Integer, default=12, nullable=False)
    num_groups: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    max_grade_spread: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    grouping_status: Mapped[str] = mapped_column(
        Text, default=GroupingStatus.NOT_STARTED, nullable=False
    )
    grouping_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    grouping_finalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    grouping_finalized_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)

    __table_args__ = (
        Index("ix_camp_tenant_status", "tenant_id", "status"),
        Index("ix_camp_tenant_start", "tenant_id", "start_date"),
    )

    # Relationships
    tenant: Mapped["Tenant"] = relationship(back_populates="camps")
    days: Mapped[list["CampDay"]] = relationship(
        back_populates="camp", order_by="CampDay.date"
    )
    addons: Mapped[list["CampAddon"]] = relationship(back_populates="camp")
    groups: Mapped[list["CampGroup"]] = relationship(back_populates="camp")
    staff: Mapped[list["StaffAssignment"]] = relationship(back_populates="camp")

    @property
    def grouping_finalized(self) -> bool:
        return self.grouping_finalized_at is not None

    @property
    def total_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def __repr__(self) -> str:
        return f"<Camp(id={self.id}, name='{self.name}', status='{self.status}')>"


class CampAddon(AuditMixin, Base):
    """Optional purchasable extra for a camp (t-shirt, lunch plan...)."""

    __tablename__ = "camp_addon"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    camp_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    camp: Mapped["Camp"] = relationship(back_populates="addons")


class CampGroup(AuditMixin, Base):
    """Grouping of campers inside a camp (by age or skill)."""

    __tablename__ = "camp_group"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    camp_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    color: Mapped[Optional[str]] = mapped_column(Text)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    camp: Mapped["Camp"] = relationship(back_populates="groups")


class CamperSessionData(AuditMixin, Base):
    """
    Per-camp record of a confirmed camper.
    Created when a registration is confirmed; holds the group assignment
    and the friend requests (free-text names) used by automatic grouping.
    """

    __tablename__ = "camper_session_data"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    camp_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp.id"), nullable=False, index=True
    )
    athlete_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("athlete.id"), nullable=False, index=True
    )
    registration_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("registration.id")
    )
    assigned_group_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("camp_group.id")
    )
    assignment_type: Mapped[Optional[str]] = mapped_column(Text)  # see AssignmentType
    friend_requests: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("camp_id", "athlete_id", name="uq_camper_session_camp_athlete"),
    )


class StaffAssignment(AuditMixin, Base):
    """A user working on a camp with a camp-level role."""

    __tablename__ = "staff_assignment"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    camp_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("app_user.id"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(Text, nullable=False)  # see StaffRole

    __table_args__ = (
        UniqueConstraint("camp_id", "user_id", "role", name="uq_staff_assignment"),
    )

    camp: Mapped["Camp"] = relationship(back_populates="staff")


class SessionCompensation(AuditMixin, Base):
    """
    Incentive compensation record for one staff member on one camp.
    All amounts in cents. csat_avg_score is the 1-5 parent survey average.
    """

    __tablename__ = "session_compensation"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    camp_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp.id"), nullable=False, index=True
    )
    staff_user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("app_user.id"), nullable=False, index=True
    )
    plan_name: Mapped[Optional[str]] = mapped_column(Text)
    fixed_stipend_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    enrollment_bonus_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    csat_bonus_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    budget_efficiency_bonus_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    guest_speaker_bonus_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_variable_bonus_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_compensation_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    csat_avg_score: Mapped[Optional[float]] = mapped_column(Float)
    is_finalized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("camp_id", "staff_user_id", name="uq_session_compensation"),
    )
