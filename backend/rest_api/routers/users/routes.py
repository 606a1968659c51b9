"""
User administration endpoints - /api/users/*

Licensee owners manage their own tenant; HQ admins may pass tenant_id to
act on any licensee.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from rest_api.models import User
from rest_api.routers._common import Pagination, get_pagination, get_user_id, require_admin
from rest_api.services.domain import UserService
from shared.infrastructure.db import get_db
from shared.security.auth import current_user_context as current_user, is_hq_admin, require_tenant_access
from shared.utils.admin_schemas import RoleAssignment, UserCreate, UserUpdate
from shared.utils.exceptions import NotFoundError
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/users", tags=["users"])


def _target_tenant(user: dict, tenant_id: int | None) -> int:
    if tenant_id is not None and is_hq_admin(user):
        return tenant_id
    return user["tenant_id"]


def _check_user_access(db: Session, caller: dict, user_id: int) -> None:
    target = db.scalar(select(User).where(User.id == user_id, User.is_active.is_(True)))
    if not target:
        raise NotFoundError("User", user_id)
    require_tenant_access(caller, target.tenant_id)


@router.get("")
def list_users(
    tenant_id: int | None = None,
    search: str | None = None,
    role: str | None = None,
    pagination: Pagination = Depends(get_pagination),
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    return ok(UserService(db).list_users(
        _target_tenant(user, tenant_id),
        search=search,
        role=role,
        limit=pagination.limit,
        offset=pagination.offset,
    ))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(
    body: UserCreate,
    tenant_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    """Create a user with their initial role in one transaction."""
    return ok(UserService(db).create_user(
        _target_tenant(user, tenant_id),
        body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        password=body.password,
        role=body.role,
        created_by_id=get_user_id(user),
    ))


@router.patch("/me")
def update_own_profile(
    body: UserUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    user_id = get_user_id(user)
    return ok(UserService(db).update_profile(user_id, updated_by_id=user_id, **body.model_dump()))


@router.get("/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db), user: dict = Depends(require_admin)) -> dict:
    _check_user_access(db, user, user_id)
    return ok(UserService(db).get_user_details(user_id))


@router.patch("/{user_id}")
def update_user(
    user_id: int,
    body: UserUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    _check_user_access(db, user, user_id)
    return ok(UserService(db).update_profile(user_id, updated_by_id=get_user_id(user), **body.model_dump()))


@router.post("/{user_id}/roles")
def assign_role(
    user_id: int,
    body: RoleAssignment,
    tenant_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    """Assigning a role the user already holds succeeds with a message."""
    return ok(UserService(db).assign_role(
        user_id, _target_tenant(user, tenant_id), body.role, get_user_id(user)
    ))


@router.put("/{user_id}/roles")
def update_role(
    user_id: int,
    body: RoleAssignment,
    tenant_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    return ok(UserService(db).update_role(
        user_id, _target_tenant(user, tenant_id), body.role, get_user_id(user)
    ))


@router.delete("/{user_id}/roles/{role}")
def deactivate_role(
    user_id: int,
    role: str,
    tenant_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    return ok(UserService(db).deactivate_role(
        user_id, _target_tenant(user, tenant_id), role, get_user_id(user)
    ))


@router.post("/{user_id}/remove")
def remove_from_tenant(
    user_id: int,
    tenant_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    return ok(UserService(db).remove_from_tenant(
        user_id, _target_tenant(user, tenant_id), get_user_id(user)
    ))


@router.delete("/{user_id}")
def delete_user(user_id: int, db: Session = Depends(get_db), user: dict = Depends(require_admin)) -> dict:
    _check_user_access(db, user, user_id)
    return ok(UserService(db).delete_user(user_id, get_user_id(user)))
