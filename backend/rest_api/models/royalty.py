"""
Royalty Models: RoyaltyInvoice and RoyaltyLineItem.

A licensee owes HQ a percentage (basis points) of net camp revenue.
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
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import RoyaltyInvoiceStatus
from .base import AuditMixin, Base, BigIntPK

if TYPE_CHECKING:
    from .camp import Camp
    from .tenant import Tenant


class RoyaltyInvoice(AuditMixin, Base):
    """
    Royalty invoice for one camp session.

    total_due_cents = royalty_due_cents + adjustment_cents
    """

    __tablename__ = "royalty_invoice"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, index=True
    )
    camp_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("camp.id"), index=True
    )
    invoice_number: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    # Revenue breakdown (cents)
    gross_revenue_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    registration_revenue_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    addon_revenue_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refunds_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    net_revenue_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    royalty_rate_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    royalty_due_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    adjustment_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_due_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[str] = mapped_column(
        Text, default=RoyaltyInvoiceStatus.PENDING, nullable=False
    )
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Payment
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    paid_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    paid_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    payment_method: Mapped[Optional[str]] = mapped_column(Text)
    payment_reference: Mapped[Optional[str]] = mapped_column(Text)

    # Dispute
    dispute_reason: Mapped[Optional[str]] = mapped_column(Text)
    disputed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    notes: Mapped[Optional[str]] = mapped_column(Text)
    generated_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)

    __table_args__ = (
        Index("ix_royalty_invoice_tenant_status", "tenant_id", "status"),
        Index("ix_royalty_invoice_status_due", "status", "due_date"),
    )

    tenant: Mapped["Tenant"] = relationship()
    camp: Mapped[Optional["Camp"]] = relationship()
    line_items: Mapped[list["RoyaltyLineItem"]] = relationship(
        back_populates="invoice", cascade="all, delete-orphan", order_by="RoyaltyLineItem.id"
    )

    def __repr__(self) -> str:
        return f"<RoyaltyInvoice(id={self.id}, number='{self.invoice_number}', status='{self.status}')>"


class RoyaltyLineItem(Base):
    """Revenue line contributing to an invoice (registration or addon)."""

    __tablename__ = "royalty_line_item"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("royalty_invoice.id"), nullable=False, index=True
    )
    line_type: Mapped[str] = mapped_column(Text, nullable=False)  # registration | addon
    description: Mapped[str] = mapped_column(Text, nullable=False)
    registration_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    invoice: Mapped["RoyaltyInvoice"] = relationship(back_populates="line_items")
