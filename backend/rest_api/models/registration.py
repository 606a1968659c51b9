"""
Registration Models: Registration, RegistrationAddon, PromoCode.

All money columns are integer cents.
"""

from __future__ import annotations

from datetime import date, datetime
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

from shared.config.constants import PaymentStatus, PromoDiscountType, RegistrationStatus
from .base import AuditMixin, Base, BigIntPK

if TYPE_CHECKING:
    from .athlete import Athlete
    from .camp import Camp


class Registration(AuditMixin, Base):
    """
    One athlete registered to one camp by a parent.

    `status` tracks the enrollment and `payment_status` the money.
    A checkout batch shares `checkout_session_id` and, once paid,
    `payment_intent_id`.
    """

    __tablename__ = "registration"

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
    parent_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("app_user.id"), nullable=False, index=True
    )

    status: Mapped[str] = mapped_column(
        Text, default=RegistrationStatus.PENDING, nullable=False
    )
    payment_status: Mapped[str] = mapped_column(
        Text, default=PaymentStatus.PENDING, nullable=False
    )

    # Pricing breakdown (cents)
    base_price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    discount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    promo_code_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("promo_code.id")
    )
    promo_discount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sibling_discount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    addons_total_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tax_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Payment processor references
    checkout_session_id: Mapped[Optional[str]] = mapped_column(Text, index=True)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(Text, index=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    refund_amount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)

    __table_args__ = (
        Index("ix_registration_camp_status", "camp_id", "status"),
        Index("ix_registration_athlete_camp", "athlete_id", "camp_id"),
    )

    athlete: Mapped["Athlete"] = relationship()
    camp: Mapped["Camp"] = relationship()
    addons: Mapped[list["RegistrationAddon"]] = relationship(
        back_populates="registration", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return (
            f"<Registration(id={self.id}, camp_id={self.camp_id}, athlete_id={self.athlete_id}, "
            f"status='{self.status}', payment='{self.payment_status}')>"
        )


class RegistrationAddon(Base):
    """Addon purchased with a registration, priced at time of purchase."""

    __tablename__ = "registration_addon"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    registration_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("registration.id"), nullable=False, index=True
    )
    addon_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("camp_addon.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    registration: Mapped["Registration"] = relationship(back_populates="addons")


class PromoCode(AuditMixin, Base):
    """
    Discount code. `discount_value` is a whole percent for percentage codes
    and cents for fixed codes.
    """

    __tablename__ = "promo_code"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    code: Mapped[str] = mapped_column(Text, nullable=False)
    discount_type: Mapped[str] = mapped_column(
        Text, default=PromoDiscountType.PERCENTAGE, nullable=False
    )
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False)
    valid_from: Mapped[Optional[date]] = mapped_column(Date)
    valid_until: Mapped[Optional[date]] = mapped_column(Date)
    max_uses: Mapped[Optional[int]] = mapped_column(Integer)
    uses_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_promo_code_tenant_code"),
    )
