"""
CIT program endpoints - /api/cit/*

Anyone signed in may apply; camp management runs the pipeline.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from rest_api.models import CitApplication
from rest_api.routers._common import (
    Pagination,
    get_pagination,
    get_tenant_id,
    get_user_id,
    load_camp_for,
    require_camp_management,
    scoped_tenant_id,
)
from rest_api.services.domain import CitService
from shared.infrastructure.db import get_db
from shared.security.auth import current_user_context as current_user, require_tenant_access
from shared.utils.admin_schemas import (
    CitApplicationCreate,
    CitAssignmentCreate,
    CitEventCreate,
    CitNotesUpdate,
    CitStatusUpdate,
)
from shared.utils.exceptions import NotFoundError
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/cit", tags=["cit"])


def _check_access(db: Session, user: dict, application_id: int) -> None:
    tenant_id = db.scalar(select(CitApplication.tenant_id).where(CitApplication.id == application_id))
    if tenant_id is None:
        raise NotFoundError("CIT application", application_id)
    require_tenant_access(user, tenant_id)


@router.post("/applications", status_code=status.HTTP_201_CREATED)
def apply(
    body: CitApplicationCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    return ok(CitService(db).create_application(get_tenant_id(user), body.model_dump(), get_user_id(user)))


@router.get("/applications")
def list_applications(
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = None,
    pagination: Pagination = Depends(get_pagination),
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    result = CitService(db).list_applications(
        tenant_id=scoped_tenant_id(user),
        status=status_filter,
        search=search,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return ok({**result, "pagination": pagination.to_dict(total=result["total_count"])})


@router.get("/applications/counts")
def status_counts(db: Session = Depends(get_db), user: dict = Depends(require_camp_management)) -> dict:
    return ok(CitService(db).counts_by_status(scoped_tenant_id(user)))


@router.get("/applications/{application_id}")
def get_application(
    application_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    _check_access(db, user, application_id)
    return ok(CitService(db).get_application(application_id))


@router.patch("/applications/{application_id}/status")
def update_status(
    application_id: int,
    body: CitStatusUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    _check_access(db, user, application_id)
    return ok(CitService(db).update_status(
        application_id,
        body.status,
        get_user_id(user),
        details=body.details,
        internal_notes=body.internal_notes,
    ))


@router.patch("/applications/{application_id}/notes")
def update_notes(
    application_id: int,
    body: CitNotesUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    _check_access(db, user, application_id)
    return ok(CitService(db).update_notes(application_id, body.notes, get_user_id(user)))


@router.post("/applications/{application_id}/events", status_code=status.HTTP_201_CREATED)
def add_event(
    application_id: int,
    body: CitEventCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    _check_access(db, user, application_id)
    return ok(CitService(db).add_event(application_id, body.event_type, body.details, get_user_id(user)))


@router.post("/applications/{application_id}/assignments", status_code=status.HTTP_201_CREATED)
def assign_to_camp(
    application_id: int,
    body: CitAssignmentCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    _check_access(db, user, application_id)
    load_camp_for(db, user, body.camp_id)
    return ok(CitService(db).assign_to_camp(
        application_id, body.camp_id, get_user_id(user), role=body.role, notes=body.notes
    ))
