"""
Registration endpoints - /api/registrations/*

Parents build a draft basket, pay through checkout, and the confirmation
page calls /confirm with the checkout session id.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from rest_api.routers._common import get_user_id, load_camp_for
from rest_api.services.domain import RegistrationService
from shared.config.constants import CAMP_OPS_ROLES, Roles
from shared.infrastructure.db import get_db
from shared.security.auth import current_user_context as current_user
from shared.utils.camp_schemas import ConfirmRegistrationRequest, RegistrationDraftRequest
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/registrations", tags=["registrations"])


def _is_staff(user: dict) -> bool:
    return bool(CAMP_OPS_ROLES.intersection(user.get("roles", [])))


@router.post("/draft", status_code=status.HTTP_201_CREATED)
def create_draft(
    body: RegistrationDraftRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    """Create or refresh pending registrations with pricing for each athlete."""
    load_camp_for(db, user, body.camp_id)
    result = RegistrationService(db).create_or_update_draft(
        parent_id=get_user_id(user),
        camp_id=body.camp_id,
        athletes=body.athlete_ids,
        promo_code=body.promo_code,
        addons=[a.model_dump() for a in body.addons],
    )
    return ok(result)


@router.get("")
def list_registrations(
    camp_id: int | None = None,
    include_cancelled: bool = False,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    """
    Parents see their own registrations. Camp staff may list a camp's
    registrations by passing camp_id.
    """
    service = RegistrationService(db)
    if camp_id is not None and _is_staff(user):
        load_camp_for(db, user, camp_id)
        return ok(service.get_registrations(camp_id=camp_id, include_cancelled=include_cancelled))
    return ok(service.get_registrations(
        parent_id=get_user_id(user), camp_id=camp_id, include_cancelled=include_cancelled
    ))


@router.post("/{registration_id}/cancel")
def cancel_registration(
    registration_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    user_id = get_user_id(user)
    # Only HQ may cancel on a parent's behalf
    parent_id = None if Roles.HQ_ADMIN in user.get("roles", []) else user_id
    return ok(RegistrationService(db).cancel_registration(registration_id, user_id, parent_id=parent_id))


@router.post("/confirm")
def confirm_registrations(
    body: ConfirmRegistrationRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    """Idempotent: a second call confirms nothing and still returns the summary."""
    return ok(RegistrationService(db).confirm_registrations_from_payment(body.session_id))
