"""
Schedule Models: ScheduleBlock, ScheduleTemplate, ScheduleTemplateBlock.

A camp day's schedule is an ordered list of time blocks. Templates are
reusable block layouts, either global (no tenant) or owned by a licensee,
and can span several days.
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import ScheduleBlockType
from .base import AuditMixin, Base, BigIntPK


class ScheduleBlock(AuditMixin, Base):
    """One time slot on a camp day (warm-up, lunch, pickup...)."""

    __tablename__ = "schedule_block"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    camp_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp.id"), nullable=False, index=True
    )
    camp_day_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp_day.id"), nullable=False
    )
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    location: Mapped[Optional[str]] = mapped_column(Text)
    staff_notes: Mapped[Optional[str]] = mapped_column(Text)
    block_type: Mapped[str] = mapped_column(
        Text, default=ScheduleBlockType.ACTIVITY, nullable=False
    )
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_schedule_block_day_order", "camp_day_id", "order_index"),
    )


class ScheduleTemplate(AuditMixin, Base):
    """Reusable schedule. `tenant_id` is null for templates HQ shares with everyone."""

    __tablename__ = "schedule_template"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    total_days: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    blocks: Mapped[list["ScheduleTemplateBlock"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="ScheduleTemplateBlock.order_index",
    )


class ScheduleTemplateBlock(Base):
    __tablename__ = "schedule_template_block"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    template_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("schedule_template.id"), nullable=False, index=True
    )
    day_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    default_location: Mapped[Optional[str]] = mapped_column(Text)
    block_type: Mapped[str] = mapped_column(
        Text, default=ScheduleBlockType.ACTIVITY, nullable=False
    )
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    template: Mapped["ScheduleTemplate"] = relationship(back_populates="blocks")
