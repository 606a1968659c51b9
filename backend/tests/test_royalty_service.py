"""
Tests for RoyaltyService.

Covers:
- Invoice number format
- Generation from confirmed revenue (rate, refunds, line items)
- Conflict and regeneration rules
- The invoice status machine and adjustments
- Overdue sweep and reporting queries
"""

import json
import re
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from rest_api.models import OutboxEvent, RoyaltyInvoice
from rest_api.services.domain import RoyaltyService
from rest_api.services.domain.royalty_service import invoice_number, to_base36
from shared.config.constants import RoyaltyInvoiceStatus
from shared.infrastructure.events import ROYALTY_INVOICE_CREATED, ROYALTY_INVOICE_STATUS_CHANGED
from shared.utils.exceptions import (
    ConflictError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def invoice(db_session, seed_camp, confirmed_campers, seed_owner_user):
    """Invoice generated for the in-progress camp (two campers at $300)."""
    return RoyaltyService(db_session).generate_invoice_for_camp(
        seed_camp.id, generated_by_id=1, today=date(2026, 7, 1)
    )


class TestInvoiceNumber:

    def test_format(self):
        assert invoice_number("testcamps", 7, now_ms=36) == "ESC-TESTCA-0007-10"

    def test_long_camp_id_keeps_last_four_digits(self):
        assert invoice_number("abc", 123456, now_ms=0) == "ESC-ABC-3456-0"

    def test_slug_punctuation_dropped(self):
        assert invoice_number("a-b_c", 1, now_ms=1).startswith("ESC-ABC-0001-")

    def test_missing_slug(self):
        assert invoice_number(None, None, now_ms=35) == "ESC-UNKNOW-GEN-Z"

    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "Z"
        assert to_base36(36 * 36) == "100"


class TestGenerateInvoice:

    def test_generate_uses_default_rate(self, db_session, invoice, seed_camp):
        row = db_session.get(RoyaltyInvoice, invoice["invoice_id"])

        assert re.match(r"^ESC-TESTCA-\d{4}-[0-9A-Z]+$", invoice["invoice_number"])
        assert row.status == RoyaltyInvoiceStatus.INVOICED
        assert row.gross_revenue_cents == 60000
        assert row.net_revenue_cents == 60000
        assert row.royalty_rate_bps == 1000
        assert row.royalty_due_cents == 6000
        assert row.total_due_cents == 6000
        assert row.period_start == seed_camp.start_date
        assert row.due_date == date(2026, 7, 31)
        assert len(row.line_items) == 2

    def test_tenant_rate_and_refunds(self, db_session, seed_tenant, seed_camp, confirmed_campers):
        seed_tenant.royalty_rate_bps = 1250
        confirmed_campers[0].refund_amount_cents = 10000
        db_session.commit()

        result = RoyaltyService(db_session).generate_invoice_for_camp(seed_camp.id)
        row = db_session.get(RoyaltyInvoice, result["invoice_id"])

        assert row.refunds_cents == 10000
        assert row.net_revenue_cents == 50000
        assert row.royalty_due_cents == 6250

    def test_created_event_goes_to_owners(self, db_session, invoice, seed_owner_user):
        event = db_session.scalar(
            select(OutboxEvent).where(OutboxEvent.event_type == ROYALTY_INVOICE_CREATED)
        )
        payload = json.loads(event.payload)
        assert [r["user_id"] for r in payload["recipients"]] == [seed_owner_user.id]
        assert payload["data"]["total_due_cents"] == 6000

    def test_second_invoice_conflicts(self, db_session, invoice, seed_camp):
        with pytest.raises(ConflictError):
            RoyaltyService(db_session).generate_invoice_for_camp(seed_camp.id)

    def test_pending_invoice_is_regenerated(self, db_session, seed_camp, confirmed_campers):
        stale = RoyaltyInvoice(
            tenant_id=seed_camp.tenant_id,
            camp_id=seed_camp.id,
            invoice_number="ESC-OLD-0001-1",
            period_start=seed_camp.start_date,
            period_end=seed_camp.end_date,
            royalty_rate_bps=1000,
            status=RoyaltyInvoiceStatus.PENDING,
            invoice_date=date.today(),
            due_date=date.today(),
        )
        db_session.add(stale)
        db_session.commit()

        result = RoyaltyService(db_session).generate_invoice_for_camp(seed_camp.id)

        invoices = db_session.execute(select(RoyaltyInvoice)).scalars().all()
        assert [i.id for i in invoices] == [result["invoice_id"]]

    def test_unknown_camp(self, db_session):
        with pytest.raises(NotFoundError):
            RoyaltyService(db_session).generate_invoice_for_camp(404)

    def test_bulk_generate_collects_errors(self, db_session, invoice, seed_camp):
        result = RoyaltyService(db_session).bulk_generate([seed_camp.id, 404])
        assert result["generated"] == 0
        assert result["failed"] == 2
        assert result["errors"][1].startswith("Camp 404:")


class TestMarkStatus:

    def test_paid_defaults_to_total(self, db_session, invoice):
        result = RoyaltyService(db_session).mark_status(
            invoice["invoice_id"], RoyaltyInvoiceStatus.PAID, updated_by_id=1,
            payment_method="ach", payment_reference="TX-1",
        )
        assert result["status"] == RoyaltyInvoiceStatus.PAID
        assert result["paid_amount_cents"] == 6000
        assert result["payment_reference"] == "TX-1"
        assert result["paid_at"] is not None

    def test_dispute_then_resolve(self, db_session, invoice):
        service = RoyaltyService(db_session)
        disputed = service.mark_status(
            invoice["invoice_id"], RoyaltyInvoiceStatus.DISPUTED, notes="Refund missing"
        )
        assert disputed["dispute_reason"] == "Refund missing"

        resolved = service.mark_status(invoice["invoice_id"], RoyaltyInvoiceStatus.INVOICED)
        assert resolved["resolved_at"] is not None

    def test_paid_is_terminal(self, db_session, invoice):
        service = RoyaltyService(db_session)
        service.mark_status(invoice["invoice_id"], RoyaltyInvoiceStatus.PAID)

        with pytest.raises(InvalidTransitionError):
            service.mark_status(invoice["invoice_id"], RoyaltyInvoiceStatus.INVOICED)

        row = db_session.get(RoyaltyInvoice, invoice["invoice_id"])
        assert row.status == RoyaltyInvoiceStatus.PAID

    def test_same_status_is_allowed_and_silent(self, db_session, invoice):
        service = RoyaltyService(db_session)
        service.mark_status(invoice["invoice_id"], RoyaltyInvoiceStatus.INVOICED, notes="Sent reminder")

        row = db_session.get(RoyaltyInvoice, invoice["invoice_id"])
        assert "Sent reminder" in row.notes
        changed = db_session.execute(
            select(OutboxEvent).where(OutboxEvent.event_type == ROYALTY_INVOICE_STATUS_CHANGED)
        ).scalars().all()
        assert changed == []

    def test_unknown_status(self, db_session, invoice):
        with pytest.raises(ValidationError):
            RoyaltyService(db_session).mark_status(invoice["invoice_id"], "lost")


class TestAdjustments:

    def test_adjustment_recomputes_total(self, db_session, invoice):
        service = RoyaltyService(db_session)
        result = service.add_adjustment(
            invoice["invoice_id"], -1500, "Goodwill credit", updated_by_email="hq@test.com"
        )
        assert result == {"success": True, "new_total_cents": 4500}

        row = db_session.get(RoyaltyInvoice, invoice["invoice_id"])
        assert "Adjustment: -$15.00 - Goodwill credit (by hq@test.com)" in row.notes

        assert service.add_adjustment(invoice["invoice_id"], 500, "Late fee")["new_total_cents"] == 5000

    def test_closed_invoice_cannot_be_adjusted(self, db_session, invoice):
        service = RoyaltyService(db_session)
        service.mark_status(invoice["invoice_id"], RoyaltyInvoiceStatus.WAIVED)
        with pytest.raises(InvalidStateError):
            service.add_adjustment(invoice["invoice_id"], 100, "Too late")


class TestOverdueAndQueries:

    def test_mark_overdue(self, db_session, invoice):
        service = RoyaltyService(db_session)
        assert service.mark_overdue(today=date(2026, 7, 31)) == {"updated": 0}
        assert service.mark_overdue(today=date(2026, 8, 1)) == {"updated": 1}

        row = db_session.get(RoyaltyInvoice, invoice["invoice_id"])
        assert row.status == RoyaltyInvoiceStatus.OVERDUE

    def test_list_and_search(self, db_session, invoice):
        service = RoyaltyService(db_session)
        listing = service.list_invoices(search="Multi-Sport")
        assert listing["total_count"] == 1
        assert listing["items"][0]["licensee_name"] == "Test Sports Camps"
        assert listing["items"][0]["camp_name"] == "Summer Multi-Sport"

        assert service.list_invoices(status=RoyaltyInvoiceStatus.PAID)["total_count"] == 0

    def test_get_invoice_is_tenant_scoped(self, db_session, invoice, other_tenant):
        service = RoyaltyService(db_session)
        assert len(service.get_invoice(invoice["invoice_id"])["line_items"]) == 2
        with pytest.raises(NotFoundError):
            service.get_invoice(invoice["invoice_id"], tenant_id=other_tenant.id)

    def test_summary(self, db_session, invoice):
        service = RoyaltyService(db_session)
        service.mark_status(invoice["invoice_id"], RoyaltyInvoiceStatus.PAID, paid_amount_cents=6000)

        summary = service.summary()
        assert summary["invoices_count"] == 1
        assert summary["total_royalty_due_cents"] == 6000
        assert summary["total_outstanding_cents"] == 0
        assert summary["compliance_rate"] == 100

    def test_summary_without_invoices(self, db_session, seed_tenant):
        summary = RoyaltyService(db_session).summary(tenant_id=seed_tenant.id)
        assert summary["invoices_count"] == 0
        assert summary["compliance_rate"] == 100

    def test_camps_without_invoices(self, db_session, seed_camp, confirmed_campers):
        service = RoyaltyService(db_session)
        window = {"date_from": seed_camp.start_date - timedelta(days=1), "date_to": seed_camp.end_date}

        unbilled = service.camps_without_invoices(**window)
        assert [c["id"] for c in unbilled] == [seed_camp.id]
        assert unbilled[0]["registration_count"] == 2
        assert unbilled[0]["estimated_revenue_cents"] == 60000

        service.generate_invoice_for_camp(seed_camp.id)
        assert service.camps_without_invoices(**window) == []
