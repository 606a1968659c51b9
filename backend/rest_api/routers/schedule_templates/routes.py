"""
Schedule template endpoints - /api/schedule-templates/*

Licensees see the global templates plus their own; only HQ admins publish
global ones.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from rest_api.routers._common import get_user_id, require_camp_management, scoped_tenant_id
from rest_api.services.domain import ScheduleService
from shared.infrastructure.db import get_db
from shared.security.auth import is_hq_admin
from shared.utils.camp_schemas import ScheduleTemplateCreate
from shared.utils.exceptions import ForbiddenError
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/schedule-templates", tags=["schedule-templates"])


@router.get("")
def list_templates(db: Session = Depends(get_db), user: dict = Depends(require_camp_management)) -> dict:
    return ok(ScheduleService(db).list_templates(scoped_tenant_id(user)))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_template(
    body: ScheduleTemplateCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    if body.is_global and not is_hq_admin(user):
        raise ForbiddenError("publish a global schedule template")
    tenant_id = None if body.is_global else user["tenant_id"]
    return ok(ScheduleService(db).create_template(tenant_id, body, get_user_id(user)))
