"""
Camp setup endpoints - /api/camps/*

Thin router that delegates to CampService and GroupingService.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from rest_api.routers._common import (
    Pagination,
    camp_scope,
    get_pagination,
    get_user_id,
    load_camp_for,
    require_camp_management,
    scoped_tenant_id,
)
from rest_api.services.domain import CampService, GroupingService
from shared.infrastructure.db import get_db
from shared.security.auth import current_user_context as current_user, is_hq_admin
from shared.utils.camp_schemas import (
    AddonCreate,
    CampCreate,
    CampStatusUpdate,
    CampUpdate,
    CompensationUpsert,
    FriendRequestsUpdate,
    GroupAssignment,
    GroupCreate,
    StaffAssignmentCreate,
)
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/camps", tags=["camps"])


@router.post("", status_code=status.HTTP_201_CREATED)
def create_camp(
    body: CampCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    """Create a camp in draft status. HQ admins may target another licensee."""
    tenant_id = body.tenant_id if body.tenant_id and is_hq_admin(user) else user["tenant_id"]
    return ok(CampService(db).create_camp(tenant_id, body, get_user_id(user)))


@router.get("")
def list_camps(
    status_filter: str | None = Query(default=None, alias="status"),
    pagination: Pagination = Depends(get_pagination),
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    camps = CampService(db).list_camps(
        tenant_id=scoped_tenant_id(user),
        status=status_filter,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return ok(camps)


@router.get("/{camp_id}")
def get_camp(
    camp_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(CampService(db).get_camp(camp_id))


@router.patch("/{camp_id}")
def update_camp(
    camp_id: int,
    body: CampUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(CampService(db).update_camp(camp_id, body, get_user_id(user)))


@router.patch("/{camp_id}/status")
def update_camp_status(
    camp_id: int,
    body: CampStatusUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    """Move a camp along draft → registration_open → in_progress → completed."""
    load_camp_for(db, user, camp_id)
    return ok(CampService(db).update_status(camp_id, body.status, get_user_id(user)))


# =============================================================================
# Add-ons
# =============================================================================


@router.get("/{camp_id}/addons")
def list_addons(
    camp_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(current_user),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(CampService(db).list_addons(camp_id))


@router.post("/{camp_id}/addons", status_code=status.HTTP_201_CREATED)
def add_addon(
    camp_id: int,
    body: AddonCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(CampService(db).add_addon(camp_id, body, get_user_id(user)))


@router.delete("/{camp_id}/addons/{addon_id}")
def remove_addon(
    camp_id: int,
    addon_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(CampService(db).remove_addon(camp_id, addon_id, get_user_id(user)))


# =============================================================================
# Groups and campers
# =============================================================================


@router.get("/{camp_id}/groups")
def list_groups(camp_id: int, db: Session = Depends(get_db), user: dict = Depends(camp_scope)) -> dict:
    return ok(CampService(db).list_groups(camp_id))


@router.post("/{camp_id}/groups", status_code=status.HTTP_201_CREATED)
def create_group(
    camp_id: int,
    body: GroupCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    return ok(CampService(db).create_group(camp_id, body, get_user_id(user)))


@router.post("/{camp_id}/groups/assign")
def assign_group(
    camp_id: int,
    body: GroupAssignment,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    """Place a camper in a group, or clear the assignment with group_id null."""
    return ok(CampService(db).assign_group(camp_id, body.athlete_id, body.group_id, get_user_id(user)))


@router.get("/{camp_id}/campers")
def list_campers(camp_id: int, db: Session = Depends(get_db), user: dict = Depends(camp_scope)) -> dict:
    return ok(CampService(db).list_campers(camp_id))


# =============================================================================
# Automatic grouping
# =============================================================================


@router.get("/{camp_id}/grouping")
def get_grouping(camp_id: int, db: Session = Depends(get_db), user: dict = Depends(camp_scope)) -> dict:
    return ok(GroupingService(db).get_grouping_state(camp_id))


@router.post("/{camp_id}/grouping/auto")
def auto_group(
    camp_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    """Rebuild every group assignment from grades and friend requests."""
    load_camp_for(db, user, camp_id)
    return ok(GroupingService(db).auto_group(camp_id, get_user_id(user)))


@router.post("/{camp_id}/grouping/finalize")
def finalize_grouping(
    camp_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(GroupingService(db).finalize_grouping(camp_id, get_user_id(user)))


@router.post("/{camp_id}/grouping/unfinalize")
def unfinalize_grouping(
    camp_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(GroupingService(db).unfinalize_grouping(camp_id, get_user_id(user)))


@router.put("/{camp_id}/campers/{athlete_id}/friend-requests")
def set_friend_requests(
    camp_id: int,
    athlete_id: int,
    body: FriendRequestsUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    return ok(GroupingService(db).set_friend_requests(
        camp_id, athlete_id, body.friend_requests, get_user_id(user)
    ))


# =============================================================================
# Staff and compensation
# =============================================================================


@router.get("/{camp_id}/staff")
def list_staff(camp_id: int, db: Session = Depends(get_db), user: dict = Depends(camp_scope)) -> dict:
    return ok(CampService(db).list_staff(camp_id))


@router.post("/{camp_id}/staff", status_code=status.HTTP_201_CREATED)
def assign_staff(
    camp_id: int,
    body: StaffAssignmentCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(CampService(db).assign_staff(camp_id, body.user_id, body.role, get_user_id(user)))


@router.delete("/{camp_id}/staff/{assignment_id}")
def remove_staff(
    camp_id: int,
    assignment_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(CampService(db).remove_staff(camp_id, assignment_id, get_user_id(user)))


@router.get("/{camp_id}/compensation")
def list_compensation(
    camp_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(CampService(db).list_compensation(camp_id))


@router.put("/{camp_id}/compensation")
def upsert_compensation(
    camp_id: int,
    body: CompensationUpsert,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(CampService(db).upsert_compensation(camp_id, body, get_user_id(user)))
