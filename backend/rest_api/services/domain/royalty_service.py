"""
Royalty Domain Service.

Royalty invoices owed by licensees to HQ, one per camp session:
generation from confirmed revenue, the invoice status machine,
adjustments, reporting and overdue sweeps.
"""

import re
import time
from datetime import date, timedelta
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from rest_api.models import (
    Athlete,
    Camp,
    CampAddon,
    Registration,
    RoyaltyInvoice,
    RoyaltyLineItem,
    Tenant,
    User,
    UserRole,
)
from rest_api.models.base import utcnow
from rest_api.services.events.outbox_service import (
    recipient_from_user,
    write_notification_event,
)
from shared.config.constants import (
    CampStatus,
    Limits,
    RegistrationStatus,
    Roles,
    ROYALTY_INVOICE_MACHINE,
    RoyaltyInvoiceStatus,
)
from shared.config.logging import royalties_logger as logger
from shared.config.settings import settings
from shared.infrastructure.db import safe_commit
from shared.infrastructure.events import (
    ROYALTY_INVOICE_CREATED,
    ROYALTY_INVOICE_STATUS_CHANGED,
)
from shared.utils.exceptions import (
    ConflictError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from shared.utils.money import apply_bps, format_cents
from shared.utils.validators import escape_like_pattern, sanitize_search_term

from .conclusion_service import REVENUE_STATUSES, summarize_revenue

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def invoice_number(tenant_slug: str | None, camp_id: int | None, now_ms: int | None = None) -> str:
    """ESC-<TENANT6>-<CAMP4>-<base36 millis>."""
    tenant_code = re.sub(r"[^A-Z0-9]", "", (tenant_slug or "unknown")[:6].upper())
    camp_code = f"{camp_id:04d}"[-4:] if camp_id is not None else "GEN"
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"ESC-{tenant_code}-{camp_code}-{to_base36(now_ms)}"


def _stamp(note: str) -> str:
    return f"[{utcnow().isoformat()}] {note}"


class RoyaltyService:
    """Domain service for royalty invoices."""

    def __init__(self, db: Session):
        self._db = db

    def _get_invoice(self, invoice_id: int, tenant_id: int | None = None, lock: bool = False) -> RoyaltyInvoice:
        query = (
            select(RoyaltyInvoice)
            .options(selectinload(RoyaltyInvoice.line_items))
            .where(RoyaltyInvoice.id == invoice_id, RoyaltyInvoice.is_active.is_(True))
        )
        if tenant_id is not None:
            query = query.where(RoyaltyInvoice.tenant_id == tenant_id)
        if lock:
            query = query.with_for_update()
        invoice = self._db.scalar(query)
        if not invoice:
            raise NotFoundError("Royalty invoice", invoice_id)
        return invoice

    def _licensee_recipients(self, tenant_id: int) -> list[dict[str, Any]]:
        owners = self._db.execute(
            select(User)
            .join(UserRole, UserRole.user_id == User.id)
            .where(
                UserRole.tenant_id == tenant_id,
                UserRole.role == Roles.LICENSEE_OWNER,
                UserRole.is_active.is_(True),
                User.is_active.is_(True),
            )
        ).scalars().all()
        return [recipient_from_user(u) for u in owners]

    @staticmethod
    def to_output(invoice: RoyaltyInvoice, include_lines: bool = False) -> dict[str, Any]:
        output = {
            "id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "tenant_id": invoice.tenant_id,
            "camp_id": invoice.camp_id,
            "period_start": invoice.period_start,
            "period_end": invoice.period_end,
            "gross_revenue_cents": invoice.gross_revenue_cents,
            "registration_revenue_cents": invoice.registration_revenue_cents,
            "addon_revenue_cents": invoice.addon_revenue_cents,
            "refunds_cents": invoice.refunds_cents,
            "net_revenue_cents": invoice.net_revenue_cents,
            "royalty_rate_bps": invoice.royalty_rate_bps,
            "royalty_due_cents": invoice.royalty_due_cents,
            "adjustment_cents": invoice.adjustment_cents,
            "total_due_cents": invoice.total_due_cents,
            "status": invoice.status,
            "invoice_date": invoice.invoice_date,
            "due_date": invoice.due_date,
            "paid_at": invoice.paid_at,
            "paid_amount_cents": invoice.paid_amount_cents,
            "payment_method": invoice.payment_method,
            "payment_reference": invoice.payment_reference,
            "dispute_reason": invoice.dispute_reason,
            "disputed_at": invoice.disputed_at,
            "resolved_at": invoice.resolved_at,
            "notes": invoice.notes,
        }
        if include_lines:
            output["line_items"] = [
                {
                    "id": line.id,
                    "line_type": line.line_type,
                    "description": line.description,
                    "registration_id": line.registration_id,
                    "quantity": line.quantity,
                    "unit_price_cents": line.unit_price_cents,
                    "amount_cents": line.amount_cents,
                }
                for line in invoice.line_items
            ]
        return output

    # =========================================================================
    # Generation
    # =========================================================================

    def generate_invoice_for_camp(
        self,
        camp_id: int,
        generated_by_id: int | None = None,
        due_in_days: int | None = None,
        today: date | None = None,
    ) -> dict[str, Any]:
        """
        Generate the royalty invoice for a camp session.

        A pending invoice is regenerated from fresh numbers; any other open
        invoice blocks generation.

        Raises:
            NotFoundError: Unknown camp
            ConflictError: An active invoice already exists
        """
        today = today or date.today()
        due_in_days = settings.royalty_due_in_days if due_in_days is None else due_in_days

        camp = self._db.scalar(
            select(Camp).where(Camp.id == camp_id, Camp.is_active.is_(True)).with_for_update()
        )
        if not camp:
            raise NotFoundError("Camp", camp_id)
        tenant = self._db.get(Tenant, camp.tenant_id)

        open_invoices = self._db.execute(
            select(RoyaltyInvoice).where(
                RoyaltyInvoice.camp_id == camp_id,
                RoyaltyInvoice.is_active.is_(True),
                RoyaltyInvoice.status.not_in(RoyaltyInvoiceStatus.CLOSED),
            )
        ).scalars().all()
        for existing in open_invoices:
            if existing.status != RoyaltyInvoiceStatus.PENDING:
                raise ConflictError(
                    "An active royalty invoice already exists for this camp",
                    camp_id=camp_id,
                    invoice_id=existing.id,
                )
        for existing in open_invoices:
            self._db.delete(existing)
        if open_invoices:
            self._db.flush()

        registrations = self._db.execute(
            select(Registration)
            .options(selectinload(Registration.addons))
            .where(
                Registration.camp_id == camp_id,
                Registration.status.in_(REVENUE_STATUSES),
            )
            .order_by(Registration.id)
        ).scalars().all()
        athletes = {
            a.id: a for a in self._db.execute(
                select(Athlete).where(Athlete.id.in_({r.athlete_id for r in registrations}))
            ).scalars()
        } if registrations else {}
        addon_names = dict(
            self._db.execute(select(CampAddon.id, CampAddon.name).where(CampAddon.camp_id == camp_id)).all()
        )

        revenue = summarize_revenue(registrations)
        rate_bps = (
            tenant.royalty_rate_bps
            if tenant is not None and tenant.royalty_rate_bps is not None
            else settings.royalty_default_rate_bps
        )
        royalty_due = apply_bps(max(0, revenue["net_revenue_cents"]), rate_bps)

        invoice = RoyaltyInvoice(
            tenant_id=camp.tenant_id,
            camp_id=camp.id,
            invoice_number=invoice_number(tenant.slug if tenant else None, camp.id),
            period_start=camp.start_date,
            period_end=camp.end_date,
            royalty_rate_bps=rate_bps,
            royalty_due_cents=royalty_due,
            adjustment_cents=0,
            total_due_cents=royalty_due,
            status=RoyaltyInvoiceStatus.INVOICED,
            invoice_date=today,
            due_date=today + timedelta(days=due_in_days),
            generated_by_id=generated_by_id,
            **revenue,
        )
        invoice.set_created_by(generated_by_id)

        for registration in registrations:
            athlete = athletes.get(registration.athlete_id)
            name = athlete.full_name if athlete else f"Athlete {registration.athlete_id}"
            amount = registration.total_price_cents - registration.addons_total_cents
            invoice.line_items.append(
                RoyaltyLineItem(
                    line_type="registration",
                    description=f"Registration: {name}",
                    registration_id=registration.id,
                    quantity=1,
                    unit_price_cents=amount,
                    amount_cents=amount,
                )
            )
            for addon in registration.addons:
                invoice.line_items.append(
                    RoyaltyLineItem(
                        line_type="addon",
                        description=f"{addon_names.get(addon.addon_id, 'Add-on')} - {name}",
                        registration_id=registration.id,
                        quantity=addon.quantity,
                        unit_price_cents=addon.price_cents,
                        amount_cents=addon.price_cents * addon.quantity,
                    )
                )

        self._db.add(invoice)
        self._db.flush()

        write_notification_event(
            self._db,
            tenant_id=camp.tenant_id,
            event_type=ROYALTY_INVOICE_CREATED,
            aggregate_type="royalty_invoice",
            aggregate_id=invoice.id,
            recipients=self._licensee_recipients(camp.tenant_id),
            data={
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "total_due_cents": invoice.total_due_cents,
                "due_date": invoice.due_date.isoformat(),
                "camp_name": camp.name,
            },
            actor_user_id=generated_by_id,
        )
        safe_commit(self._db)

        logger.info(
            "Royalty invoice generated",
            camp_id=camp_id,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            net_revenue_cents=invoice.net_revenue_cents,
            royalty_due_cents=royalty_due,
        )
        return {"invoice_id": invoice.id, "invoice_number": invoice.invoice_number}

    def bulk_generate(
        self,
        camp_ids: list[int],
        generated_by_id: int | None = None,
        due_in_days: int | None = None,
    ) -> dict[str, Any]:
        """Generate per camp; one camp failing does not stop the others."""
        generated = 0
        errors: list[str] = []
        for camp_id in camp_ids:
            try:
                self.generate_invoice_for_camp(camp_id, generated_by_id, due_in_days)
                generated += 1
            except (NotFoundError, ConflictError, ValidationError) as e:
                self._db.rollback()
                errors.append(f"Camp {camp_id}: {e.detail}")
        return {"generated": generated, "failed": len(errors), "errors": errors}

    # =========================================================================
    # Status and adjustments
    # =========================================================================

    def mark_status(
        self,
        invoice_id: int,
        new_status: str,
        updated_by_id: int | None = None,
        paid_amount_cents: int | None = None,
        payment_method: str | None = None,
        payment_reference: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """
        Move an invoice through its status machine.

        Raises:
            InvalidTransitionError: Edge not in the transition table. The
                invoice is left untouched.
        """
        if new_status not in RoyaltyInvoiceStatus.ALL:
            raise ValidationError(f"Invalid status: {new_status}", status=new_status)

        invoice = self._get_invoice(invoice_id, lock=True)
        old_status = invoice.status
        if not ROYALTY_INVOICE_MACHINE.can_transition(old_status, new_status):
            raise InvalidTransitionError("Royalty invoice", old_status, new_status)

        now = utcnow()
        invoice.status = new_status

        if new_status == RoyaltyInvoiceStatus.PAID:
            invoice.paid_at = now
            invoice.paid_amount_cents = (
                paid_amount_cents if paid_amount_cents is not None else invoice.total_due_cents
            )
            invoice.paid_by_id = updated_by_id
            if payment_method:
                invoice.payment_method = payment_method
            if payment_reference:
                invoice.payment_reference = payment_reference

        if new_status == RoyaltyInvoiceStatus.DISPUTED and notes:
            invoice.dispute_reason = notes
            invoice.disputed_at = now

        if old_status == RoyaltyInvoiceStatus.DISPUTED and new_status != RoyaltyInvoiceStatus.DISPUTED:
            invoice.resolved_at = now

        if notes and new_status != RoyaltyInvoiceStatus.DISPUTED:
            stamped = _stamp(notes)
            invoice.notes = f"{invoice.notes}\n---\n{stamped}" if invoice.notes else stamped

        invoice.set_updated_by(updated_by_id)

        if old_status != new_status:
            self._queue_status_changed(invoice, old_status, updated_by_id)
        safe_commit(self._db)

        logger.info(
            "Royalty invoice status changed",
            invoice_id=invoice_id,
            old_status=old_status,
            new_status=new_status,
            user_id=updated_by_id,
        )
        return self.to_output(invoice)

    def _queue_status_changed(
        self,
        invoice: RoyaltyInvoice,
        old_status: str,
        actor_user_id: int | None,
    ) -> None:
        camp_name = None
        if invoice.camp_id is not None:
            camp_name = self._db.scalar(select(Camp.name).where(Camp.id == invoice.camp_id))
        write_notification_event(
            self._db,
            tenant_id=invoice.tenant_id,
            event_type=ROYALTY_INVOICE_STATUS_CHANGED,
            aggregate_type="royalty_invoice",
            aggregate_id=invoice.id,
            recipients=self._licensee_recipients(invoice.tenant_id),
            data={
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "old_status": old_status,
                "new_status": invoice.status,
                "total_due_cents": invoice.total_due_cents,
                "camp_name": camp_name,
            },
            actor_user_id=actor_user_id,
        )

    def add_adjustment(
        self,
        invoice_id: int,
        amount_cents: int,
        notes: str,
        updated_by_id: int | None = None,
        updated_by_email: str | None = None,
    ) -> dict[str, Any]:
        """Add a signed adjustment; total due is recomputed from royalty due."""
        invoice = self._get_invoice(invoice_id, lock=True)
        if invoice.status in RoyaltyInvoiceStatus.CLOSED:
            raise InvalidStateError(
                "Royalty invoice",
                invoice.status,
                detail="Cannot adjust a paid or waived invoice",
            )

        invoice.adjustment_cents += amount_cents
        invoice.total_due_cents = invoice.royalty_due_cents + invoice.adjustment_cents

        sign = "+" if amount_cents >= 0 else "-"
        note = f"Adjustment: {sign}{format_cents(abs(amount_cents))} - {notes}"
        if updated_by_email:
            note = f"{note} (by {updated_by_email})"
        stamped = _stamp(note)
        invoice.notes = f"{invoice.notes}\n{stamped}" if invoice.notes else stamped
        invoice.set_updated_by(updated_by_id)
        safe_commit(self._db)

        logger.info(
            "Royalty adjustment added",
            invoice_id=invoice_id,
            amount_cents=amount_cents,
            total_due_cents=invoice.total_due_cents,
        )
        return {"success": True, "new_total_cents": invoice.total_due_cents}

    def mark_overdue(self, today: date | None = None) -> dict[str, int]:
        """Move invoiced rows past their due date to overdue."""
        today = today or date.today()
        invoices = self._db.execute(
            select(RoyaltyInvoice)
            .where(
                RoyaltyInvoice.status == RoyaltyInvoiceStatus.INVOICED,
                RoyaltyInvoice.due_date < today,
                RoyaltyInvoice.is_active.is_(True),
            )
            .with_for_update()
        ).scalars().all()

        for invoice in invoices:
            invoice.status = RoyaltyInvoiceStatus.OVERDUE
            self._queue_status_changed(invoice, RoyaltyInvoiceStatus.INVOICED, None)
        safe_commit(self._db)

        if invoices:
            logger.info("Royalty invoices marked overdue", count=len(invoices))
        return {"updated": len(invoices)}

    # =========================================================================
    # Queries
    # =========================================================================

    def list_invoices(
        self,
        tenant_id: int | None = None,
        status: str | None = None,
        search: str | None = None,
        due_from: date | None = None,
        due_to: date | None = None,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> dict[str, Any]:
        query = (
            select(RoyaltyInvoice)
            .join(Tenant, Tenant.id == RoyaltyInvoice.tenant_id)
            .outerjoin(Camp, Camp.id == RoyaltyInvoice.camp_id)
            .where(RoyaltyInvoice.is_active.is_(True))
        )
        if tenant_id is not None:
            query = query.where(RoyaltyInvoice.tenant_id == tenant_id)
        if status:
            query = query.where(RoyaltyInvoice.status == status)
        if due_from:
            query = query.where(RoyaltyInvoice.due_date >= due_from)
        if due_to:
            query = query.where(RoyaltyInvoice.due_date <= due_to)
        term = sanitize_search_term(search)
        if term:
            pattern = f"%{escape_like_pattern(term)}%"
            query = query.where(
                or_(
                    RoyaltyInvoice.invoice_number.ilike(pattern, escape="\\"),
                    Tenant.name.ilike(pattern, escape="\\"),
                    Camp.name.ilike(pattern, escape="\\"),
                )
            )

        total = self._db.scalar(select(func.count()).select_from(query.subquery())) or 0
        rows = self._db.execute(
            query.add_columns(Tenant.name, Camp.name)
            .order_by(RoyaltyInvoice.due_date.desc(), RoyaltyInvoice.id.desc())
            .limit(min(limit, Limits.MAX_PAGE_SIZE))
            .offset(offset)
        ).all()

        items = []
        for invoice, tenant_name, camp_name in rows:
            item = self.to_output(invoice)
            item["licensee_name"] = tenant_name
            item["camp_name"] = camp_name
            items.append(item)
        return {"items": items, "total_count": total}

    def get_invoice(self, invoice_id: int, tenant_id: int | None = None) -> dict[str, Any]:
        """Invoice with line items. `tenant_id` restricts to one licensee."""
        invoice = self._get_invoice(invoice_id, tenant_id=tenant_id)
        return self.to_output(invoice, include_lines=True)

    def summary(self, tenant_id: int | None = None) -> dict[str, Any]:
        base = select(RoyaltyInvoice).where(RoyaltyInvoice.is_active.is_(True))
        if tenant_id is not None:
            base = base.where(RoyaltyInvoice.tenant_id == tenant_id)
        sub = base.subquery()

        gross, due, paid, count = self._db.execute(
            select(
                func.coalesce(func.sum(sub.c.gross_revenue_cents), 0),
                func.coalesce(func.sum(sub.c.total_due_cents), 0),
                func.coalesce(func.sum(sub.c.paid_amount_cents), 0),
                func.count(sub.c.id),
            )
        ).one()
        by_status = dict(
            self._db.execute(select(sub.c.status, func.count(sub.c.id)).group_by(sub.c.status)).all()
        )
        paid_count = by_status.get(RoyaltyInvoiceStatus.PAID, 0)

        return {
            "total_gross_revenue_cents": gross,
            "total_royalty_due_cents": due,
            "total_royalty_paid_cents": paid,
            "total_outstanding_cents": due - paid,
            "invoices_count": count,
            "by_status": {s: by_status.get(s, 0) for s in RoyaltyInvoiceStatus.ALL},
            "compliance_rate": round(paid_count * 100 / count) if count else 100,
        }

    def camps_without_invoices(
        self,
        tenant_id: int | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
    ) -> list[dict[str, Any]]:
        """Completed or running camps in the range with no invoice at all."""
        date_from = date_from or date(date.today().year, 1, 1)
        date_to = date_to or date.today()

        invoiced = select(RoyaltyInvoice.camp_id).where(
            RoyaltyInvoice.camp_id.is_not(None),
            RoyaltyInvoice.is_active.is_(True),
        )
        query = (
            select(Camp, Tenant.name)
            .join(Tenant, Tenant.id == Camp.tenant_id)
            .where(
                Camp.is_active.is_(True),
                Camp.start_date >= date_from,
                Camp.start_date <= date_to,
                Camp.status.in_([CampStatus.COMPLETED, CampStatus.IN_PROGRESS]),
                Camp.id.not_in(invoiced),
            )
            .order_by(Camp.end_date.desc())
            .limit(min(limit, Limits.MAX_PAGE_SIZE))
        )
        if tenant_id is not None:
            query = query.where(Camp.tenant_id == tenant_id)
        rows = self._db.execute(query).all()
        if not rows:
            return []

        camp_ids = [camp.id for camp, _ in rows]
        stats = {
            camp_id: (count, total)
            for camp_id, count, total in self._db.execute(
                select(
                    Registration.camp_id,
                    func.count(Registration.id),
                    func.coalesce(func.sum(Registration.total_price_cents), 0),
                )
                .where(
                    Registration.camp_id.in_(camp_ids),
                    Registration.status == RegistrationStatus.CONFIRMED,
                )
                .group_by(Registration.camp_id)
            ).all()
        }
        return [
            {
                "id": camp.id,
                "name": camp.name,
                "tenant_name": tenant_name,
                "start_date": camp.start_date,
                "end_date": camp.end_date,
                "status": camp.status,
                "registration_count": stats.get(camp.id, (0, 0))[0],
                "estimated_revenue_cents": stats.get(camp.id, (0, 0))[1],
            }
            for camp, tenant_name in rows
        ]
