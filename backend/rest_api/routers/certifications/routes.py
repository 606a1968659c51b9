"""
Volunteer certification endpoints - /api/certifications/*

Staff submit their own documents; admins review them.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from rest_api.models import VolunteerCertification
from rest_api.routers._common import (
    Pagination,
    get_pagination,
    get_tenant_id,
    get_user_id,
    require_admin,
    require_hq_admin,
    scoped_tenant_id,
)
from rest_api.services.domain import CertificationService
from shared.infrastructure.db import get_db
from shared.security.auth import current_user_context as current_user, require_tenant_access
from shared.utils.admin_schemas import CertificationReview, CertificationSubmit
from shared.utils.exceptions import NotFoundError
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/certifications", tags=["certifications"])


@router.post("", status_code=status.HTTP_201_CREATED)
def submit_certification(
    body: CertificationSubmit,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    return ok(CertificationService(db).submit(
        get_user_id(user), get_tenant_id(user), **body.model_dump()
    ))


@router.get("/mine")
def list_own(db: Session = Depends(get_db), user: dict = Depends(current_user)) -> dict:
    return ok(CertificationService(db).list_own(get_user_id(user)))


@router.delete("/{certification_id}")
def delete_own_pending(
    certification_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    return ok(CertificationService(db).delete_own_pending(certification_id, get_user_id(user)))


@router.get("")
def list_all(
    status_filter: str | None = Query(default=None, alias="status"),
    user_id: int | None = None,
    pagination: Pagination = Depends(get_pagination),
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    return ok(CertificationService(db).list_all(
        tenant_id=scoped_tenant_id(user),
        status=status_filter,
        user_id=user_id,
        limit=pagination.limit,
        offset=pagination.offset,
    ))


@router.post("/{certification_id}/review")
def review_certification(
    certification_id: int,
    body: CertificationReview,
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    cert = db.scalar(select(VolunteerCertification).where(VolunteerCertification.id == certification_id))
    if not cert:
        raise NotFoundError("Certification", certification_id)
    require_tenant_access(user, cert.tenant_id)
    return ok(CertificationService(db).review(
        certification_id,
        get_user_id(user),
        body.status,
        reviewer_notes=body.reviewer_notes,
        expires_at=body.expires_at,
    ))


@router.post("/expire")
def expire_past_due(db: Session = Depends(get_db), user: dict = Depends(require_hq_admin)) -> dict:
    return ok(CertificationService(db).expire_past_due())
