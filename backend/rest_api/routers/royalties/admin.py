"""
HQ royalty administration - /api/admin/royalties/*

Generates invoices from concluded camp revenue and tracks them through
invoiced → paid (or overdue, disputed, waived).
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from rest_api.routers._common import (
    Pagination,
    get_pagination,
    get_user_email,
    get_user_id,
    require_hq_admin,
)
from rest_api.services.domain import RoyaltyService
from shared.infrastructure.db import get_db
from shared.utils.admin_schemas import (
    RoyaltyAdjustment,
    RoyaltyBulkGenerateRequest,
    RoyaltyGenerateRequest,
    RoyaltyStatusUpdate,
)
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/admin/royalties", tags=["admin-royalties"])


@router.get("")
def list_invoices(
    tenant_id: int | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = None,
    due_from: date | None = None,
    due_to: date | None = None,
    pagination: Pagination = Depends(get_pagination),
    db: Session = Depends(get_db),
    user: dict = Depends(require_hq_admin),
) -> dict:
    result = RoyaltyService(db).list_invoices(
        tenant_id=tenant_id,
        status=status_filter,
        search=search,
        due_from=due_from,
        due_to=due_to,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return ok({**result, "pagination": pagination.to_dict(total=result["total_count"])})


@router.get("/summary")
def summary(
    tenant_id: int | None = None,
    db: Session = Depends(get_db),
    user: dict = Depends(require_hq_admin),
) -> dict:
    return ok(RoyaltyService(db).summary(tenant_id))


@router.get("/unbilled")
def unbilled_camps(
    tenant_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: dict = Depends(require_hq_admin),
) -> dict:
    """Completed camps that still need a royalty invoice."""
    return ok(RoyaltyService(db).camps_without_invoices(tenant_id, date_from, date_to, limit))


@router.post("/generate", status_code=status.HTTP_201_CREATED)
def generate_invoice(
    body: RoyaltyGenerateRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(require_hq_admin),
) -> dict:
    return ok(RoyaltyService(db).generate_invoice_for_camp(
        body.camp_id, get_user_id(user), due_in_days=body.due_in_days
    ))


@router.post("/bulk-generate")
def bulk_generate(
    body: RoyaltyBulkGenerateRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(require_hq_admin),
) -> dict:
    """Generate one invoice per camp; failures are reported, not raised."""
    return ok(RoyaltyService(db).bulk_generate(
        body.camp_ids, get_user_id(user), due_in_days=body.due_in_days
    ))


@router.post("/mark-overdue")
def mark_overdue(db: Session = Depends(get_db), user: dict = Depends(require_hq_admin)) -> dict:
    return ok(RoyaltyService(db).mark_overdue())


@router.get("/{invoice_id}")
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_hq_admin),
) -> dict:
    return ok(RoyaltyService(db).get_invoice(invoice_id))


@router.patch("/{invoice_id}/status")
def update_status(
    invoice_id: int,
    body: RoyaltyStatusUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_hq_admin),
) -> dict:
    return ok(RoyaltyService(db).mark_status(
        invoice_id,
        body.status,
        updated_by_id=get_user_id(user),
        paid_amount_cents=body.paid_amount_cents,
        payment_method=body.payment_method,
        payment_reference=body.payment_reference,
        notes=body.notes,
    ))


@router.post("/{invoice_id}/adjustments")
def add_adjustment(
    invoice_id: int,
    body: RoyaltyAdjustment,
    db: Session = Depends(get_db),
    user: dict = Depends(require_hq_admin),
) -> dict:
    return ok(RoyaltyService(db).add_adjustment(
        invoice_id,
        body.amount_cents,
        body.notes,
        updated_by_id=get_user_id(user),
        updated_by_email=get_user_email(user),
    ))
