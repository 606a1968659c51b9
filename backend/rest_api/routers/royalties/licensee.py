"""
Licensee royalty view - /api/licensee/royalties/*

Read-only access to the caller's own invoices.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from rest_api.routers._common import Pagination, get_pagination, get_tenant_id, require_admin
from rest_api.services.domain import RoyaltyService
from shared.infrastructure.db import get_db
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/licensee/royalties", tags=["licensee-royalties"])


@router.get("")
def list_own_invoices(
    status_filter: str | None = Query(default=None, alias="status"),
    due_from: date | None = None,
    due_to: date | None = None,
    pagination: Pagination = Depends(get_pagination),
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    result = RoyaltyService(db).list_invoices(
        tenant_id=get_tenant_id(user),
        status=status_filter,
        due_from=due_from,
        due_to=due_to,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return ok({**result, "pagination": pagination.to_dict(total=result["total_count"])})


@router.get("/summary")
def own_summary(db: Session = Depends(get_db), user: dict = Depends(require_admin)) -> dict:
    return ok(RoyaltyService(db).summary(get_tenant_id(user)))


@router.get("/{invoice_id}")
def get_own_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    # Another tenant's invoice reads as not found
    return ok(RoyaltyService(db).get_invoice(invoice_id, tenant_id=get_tenant_id(user)))
