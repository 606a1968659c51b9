"""
Caller helpers and role dependencies shared by every router.

The JWT context is a plain dict: sub (user id), tenant_id, roles, email.
"""

from typing import Any

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from rest_api.models import Camp, CampDay
from shared.config.constants import ADMIN_ROLES, CAMP_MANAGEMENT_ROLES, CAMP_OPS_ROLES, Roles
from shared.infrastructure.db import get_db
from shared.security.auth import current_user_context, require_roles, require_tenant_access
from shared.utils.exceptions import NotFoundError


def get_user_id(user: dict[str, Any]) -> int:
    return int(user["sub"])


def get_user_email(user: dict[str, Any]) -> str:
    return user.get("email", "")


def get_tenant_id(user: dict[str, Any]) -> int:
    return user["tenant_id"]


def scoped_tenant_id(user: dict[str, Any]) -> int | None:
    """HQ admins see every licensee; everyone else is pinned to their own."""
    if Roles.HQ_ADMIN in user.get("roles", []):
        return None
    return user["tenant_id"]


# =============================================================================
# Role-based Dependencies
# =============================================================================


def _role_dependency(allowed: frozenset[str] | list[str]):
    def dependency(user: dict = Depends(current_user_context)) -> dict:
        require_roles(user, list(allowed))
        return user

    return dependency


require_hq_admin = _role_dependency([Roles.HQ_ADMIN])
require_admin = _role_dependency(ADMIN_ROLES)
require_camp_management = _role_dependency(CAMP_MANAGEMENT_ROLES)
require_camp_ops = _role_dependency(CAMP_OPS_ROLES)
require_parent = _role_dependency([Roles.PARENT, Roles.HQ_ADMIN])


# =============================================================================
# Resource scoping
# =============================================================================


def load_camp_for(db: Session, user: dict[str, Any], camp_id: int) -> Camp:
    """Load an active camp and verify the caller's tenant owns it."""
    camp = db.scalar(select(Camp).where(Camp.id == camp_id, Camp.is_active.is_(True)))
    if not camp:
        raise NotFoundError("Camp", camp_id)
    require_tenant_access(user, camp.tenant_id)
    return camp


def load_camp_day_for(db: Session, user: dict[str, Any], camp_id: int, camp_day_id: int) -> CampDay:
    """Load a camp day that belongs to `camp_id` and the caller's tenant."""
    load_camp_for(db, user, camp_id)
    day = db.scalar(
        select(CampDay).where(CampDay.id == camp_day_id, CampDay.camp_id == camp_id)
    )
    if not day:
        raise NotFoundError("Camp day", camp_day_id)
    return day


def camp_scope(
    camp_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_ops),
) -> dict:
    """Dependency for camp sub-routes: staff roles plus tenant ownership."""
    load_camp_for(db, user, camp_id)
    return user
