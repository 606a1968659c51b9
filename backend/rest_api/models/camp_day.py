"""
Camp Day Models: CampDay, CampAttendance, CampDayRecap, CampIncident.
"""

from __future__ import annotations

import datetime as dt
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import AttendanceStatus, CampDayStatus, IncidentCategory
from .base import AuditMixin, Base, BigIntPK

if TYPE_CHECKING:
    from .camp import Camp


class CampDay(AuditMixin, Base):
    """
    One calendar day of a camp. Created lazily the first time the day is
    opened; unique per (camp, date).
    """

    __tablename__ = "camp_day"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    camp_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp.id"), nullable=False, index=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    day_number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        Text, default=CampDayStatus.NOT_STARTED, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    started_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)

    __table_args__ = (
        UniqueConstraint("camp_id", "date", name="uq_camp_day_camp_date"),
    )

    camp: Mapped["Camp"] = relationship(back_populates="days")
    attendance: Mapped[list["CampAttendance"]] = relationship(back_populates="camp_day")
    recap: Mapped[Optional["CampDayRecap"]] = relationship(
        back_populates="camp_day", uselist=False
    )
    incidents: Mapped[list["CampIncident"]] = relationship(back_populates="camp_day")

    def __repr__(self) -> str:
        return f"<CampDay(id={self.id}, camp_id={self.camp_id}, day={self.day_number}, status='{self.status}')>"


class CampAttendance(AuditMixin, Base):
    """Attendance of one athlete on one camp day."""

    __tablename__ = "camp_attendance"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    camp_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp.id"), nullable=False, index=True
    )
    camp_day_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp_day.id"), nullable=False, index=True
    )
    athlete_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("athlete.id"), nullable=False, index=True
    )
    registration_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("registration.id")
    )
    group_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("camp_group.id"))
    status: Mapped[str] = mapped_column(
        Text, default=AttendanceStatus.NOT_ARRIVED, nullable=False
    )
    check_in_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    check_in_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    check_in_method: Mapped[Optional[str]] = mapped_column(Text)
    check_out_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    check_out_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("camp_day_id", "athlete_id", name="uq_attendance_day_athlete"),
        Index("ix_attendance_day_status", "camp_day_id", "status"),
    )

    camp_day: Mapped["CampDay"] = relationship(back_populates="attendance")


class CampDayRecap(AuditMixin, Base):
    """End-of-day summary sent to parents. One per camp day."""

    __tablename__ = "camp_day_recap"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    camp_day_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp_day.id"), nullable=False, unique=True
    )
    word_of_the_day: Mapped[Optional[str]] = mapped_column(Text)
    primary_sport: Mapped[Optional[str]] = mapped_column(Text)
    secondary_sport: Mapped[Optional[str]] = mapped_column(Text)
    guest_speaker: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    camp_day: Mapped["CampDay"] = relationship(back_populates="recap")


class CampIncident(AuditMixin, Base):
    """Incident or complaint logged during a camp day."""

    __tablename__ = "camp_incident"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    camp_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp.id"), nullable=False, index=True
    )
    camp_day_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp_day.id"), nullable=False, index=True
    )
    athlete_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("athlete.id"))
    severity: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(
        Text, default=IncidentCategory.OTHER, nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    action_taken: Mapped[Optional[str]] = mapped_column(Text)
    reported_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    resolved_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)

    camp_day: Mapped["CampDay"] = relationship(back_populates="incidents")
