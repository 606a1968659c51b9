"""
Camp Domain Service.

Camp setup: the camp record and its status machine, add-ons, groups and
group assignments, staff assignments and session compensation records.
"""

import re
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rest_api.models import (
    Athlete,
    Camp,
    CampAddon,
    CampGroup,
    CamperSessionData,
    Registration,
    SessionCompensation,
    StaffAssignment,
    User,
)
from shared.config.constants import (
    CAMP_MACHINE,
    AssignmentType,
    CampStatus,
    GroupingStatus,
    Limits,
    RegistrationStatus,
    StaffRole,
)
from shared.config.logging import camp_ops_logger as logger
from shared.infrastructure.db import safe_commit
from shared.utils.camp_schemas import (
    AddonCreate,
    CampCreate,
    CampUpdate,
    CompensationUpsert,
    GroupCreate,
)
from shared.utils.exceptions import (
    DuplicateEntityError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

from .camp_day_service import CAMP_LOCKED_MESSAGE
from .grouping_service import GroupingService


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "camp"


class CampService:
    """Domain service for camp setup."""

    def __init__(self, db: Session):
        self._db = db

    def get_camp_model(self, camp_id: int, tenant_id: int | None = None) -> Camp:
        query = select(Camp).where(Camp.id == camp_id, Camp.is_active.is_(True))
        if tenant_id is not None:
            query = query.where(Camp.tenant_id == tenant_id)
        camp = self._db.scalar(query)
        if not camp:
            raise NotFoundError("Camp", camp_id)
        return camp

    def _get_editable(self, camp_id: int) -> Camp:
        camp = self.get_camp_model(camp_id)
        if camp.is_locked:
            raise InvalidStateError("Camp", "locked", detail=CAMP_LOCKED_MESSAGE)
        return camp

    @staticmethod
    def to_output(camp: Camp) -> dict[str, Any]:
        return {
            "id": camp.id,
            "tenant_id": camp.tenant_id,
            "name": camp.name,
            "slug": camp.slug,
            "description": camp.description,
            "location_name": camp.location_name,
            "start_date": camp.start_date,
            "end_date": camp.end_date,
            "total_days": camp.total_days,
            "capacity": camp.capacity,
            "price_cents": camp.price_cents,
            "early_bird_price_cents": camp.early_bird_price_cents,
            "early_bird_deadline": camp.early_bird_deadline,
            "status": camp.status,
            "is_locked": camp.is_locked,
            "lock_reason": camp.lock_reason,
            "concluded_at": camp.concluded_at,
            "max_group_size": camp.max_group_size,
            "num_groups": camp.num_groups,
            "max_grade_spread": camp.max_grade_spread,
            "grouping_status": camp.grouping_status,
        }

    # =========================================================================
    # Camps
    # =========================================================================

    def create_camp(self, tenant_id: int, body: CampCreate, user_id: int | None = None) -> dict[str, Any]:
        if body.end_date < body.start_date:
            raise ValidationError("End date must be on or after start date")
        if body.early_bird_price_cents is not None and body.early_bird_deadline is None:
            raise ValidationError("Early bird price requires a deadline")

        camp = Camp(
            tenant_id=tenant_id,
            name=body.name,
            slug=body.slug or slugify(body.name),
            description=body.description,
            location_name=body.location_name,
            start_date=body.start_date,
            end_date=body.end_date,
            capacity=body.capacity,
            price_cents=body.price_cents,
            early_bird_price_cents=body.early_bird_price_cents,
            early_bird_deadline=body.early_bird_deadline,
            max_group_size=body.max_group_size,
            num_groups=body.num_groups,
            max_grade_spread=body.max_grade_spread,
            status=CampStatus.DRAFT,
        )
        camp.set_created_by(user_id)
        self._db.add(camp)
        safe_commit(self._db)
        self._db.refresh(camp)

        logger.info("Camp created", camp_id=camp.id, tenant_id=tenant_id, user_id=user_id)
        return self.to_output(camp)

    def update_camp(self, camp_id: int, body: CampUpdate, user_id: int | None = None) -> dict[str, Any]:
        camp = self._get_editable(camp_id)
        for field, value in body.model_dump(exclude_unset=True).items():
            setattr(camp, field, value)
        if camp.end_date < camp.start_date:
            raise ValidationError("End date must be on or after start date")
        camp.set_updated_by(user_id)
        safe_commit(self._db)
        return self.to_output(camp)

    def get_camp(self, camp_id: int, tenant_id: int | None = None) -> dict[str, Any]:
        camp = self.get_camp_model(camp_id, tenant_id)
        output = self.to_output(camp)
        output["registered_count"] = self._db.scalar(
            select(func.count(Registration.id)).where(
                Registration.camp_id == camp_id,
                Registration.status == RegistrationStatus.CONFIRMED,
            )
        ) or 0
        return output

    def list_camps(
        self,
        tenant_id: int | None = None,
        status: str | None = None,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        query = select(Camp).where(Camp.is_active.is_(True))
        if tenant_id is not None:
            query = query.where(Camp.tenant_id == tenant_id)
        if status:
            query = query.where(Camp.status == status)
        camps = self._db.execute(
            query.order_by(Camp.start_date.desc(), Camp.id.desc())
            .limit(min(limit, Limits.MAX_PAGE_SIZE))
            .offset(offset)
        ).scalars()
        return [self.to_output(c) for c in camps]

    def update_status(self, camp_id: int, new_status: str, user_id: int | None = None) -> dict[str, Any]:
        camp = self._get_editable(camp_id)
        if not CAMP_MACHINE.can_transition(camp.status, new_status):
            raise InvalidTransitionError("Camp", camp.status, new_status)
        old_status = camp.status
        camp.status = new_status
        camp.set_updated_by(user_id)
        safe_commit(self._db)

        logger.info(
            "Camp status changed",
            camp_id=camp_id,
            old_status=old_status,
            new_status=new_status,
            user_id=user_id,
        )
        return self.to_output(camp)

    # =========================================================================
    # Add-ons
    # =========================================================================

    def add_addon(self, camp_id: int, body: AddonCreate, user_id: int | None = None) -> dict[str, Any]:
        camp = self._get_editable(camp_id)
        addon = CampAddon(
            tenant_id=camp.tenant_id,
            camp_id=camp_id,
            name=body.name,
            description=body.description,
            price_cents=body.price_cents,
        )
        addon.set_created_by(user_id)
        self._db.add(addon)
        safe_commit(self._db)
        self._db.refresh(addon)
        return self._addon_output(addon)

    def list_addons(self, camp_id: int) -> list[dict[str, Any]]:
        addons = self._db.execute(
            select(CampAddon)
            .where(CampAddon.camp_id == camp_id, CampAddon.is_active.is_(True))
            .order_by(CampAddon.id)
        ).scalars()
        return [self._addon_output(a) for a in addons]

    def remove_addon(self, camp_id: int, addon_id: int, user_id: int | None = None) -> dict[str, bool]:
        self._get_editable(camp_id)
        addon = self._db.scalar(
            select(CampAddon).where(
                CampAddon.id == addon_id,
                CampAddon.camp_id == camp_id,
                CampAddon.is_active.is_(True),
            )
        )
        if not addon:
            raise NotFoundError("Addon", addon_id)
        addon.soft_delete(user_id)
        safe_commit(self._db)
        return {"deleted": True}

    @staticmethod
    def _addon_output(addon: CampAddon) -> dict[str, Any]:
        return {
            "id": addon.id,
            "camp_id": addon.camp_id,
            "name": addon.name,
            "description": addon.description,
            "price_cents": addon.price_cents,
        }

    # =========================================================================
    # Groups
    # =========================================================================

    def create_group(self, camp_id: int, body: GroupCreate, user_id: int | None = None) -> dict[str, Any]:
        camp = self._get_editable(camp_id)
        GroupingService.require_editable(camp)
        group = CampGroup(
            tenant_id=camp.tenant_id,
            camp_id=camp_id,
            name=body.name,
            color=body.color,
            sort_order=body.sort_order,
        )
        group.set_created_by(user_id)
        self._db.add(group)
        safe_commit(self._db)
        self._db.refresh(group)
        return {"id": group.id, "name": group.name, "color": group.color, "sort_order": group.sort_order}

    def list_groups(self, camp_id: int) -> list[dict[str, Any]]:
        groups = self._db.execute(
            select(CampGroup)
            .where(CampGroup.camp_id == camp_id, CampGroup.is_active.is_(True))
            .order_by(CampGroup.sort_order, CampGroup.id)
        ).scalars().all()
        counts = dict(
            self._db.execute(
                select(CamperSessionData.assigned_group_id, func.count(CamperSessionData.id))
                .where(CamperSessionData.camp_id == camp_id)
                .group_by(CamperSessionData.assigned_group_id)
            ).all()
        )
        return [
            {
                "id": g.id,
                "name": g.name,
                "color": g.color,
                "sort_order": g.sort_order,
                "camper_count": counts.get(g.id, 0),
            }
            for g in groups
        ]

    def assign_group(
        self,
        camp_id: int,
        athlete_id: int,
        group_id: int | None,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        """Place a confirmed camper in a group, or clear it with None."""
        camp = self._get_editable(camp_id)
        GroupingService.require_editable(camp)
        if group_id is not None:
            group = self._db.scalar(
                select(CampGroup).where(
                    CampGroup.id == group_id,
                    CampGroup.camp_id == camp_id,
                    CampGroup.is_active.is_(True),
                )
            )
            if not group:
                raise NotFoundError("Group", group_id)

        session_data = self._db.scalar(
            select(CamperSessionData).where(
                CamperSessionData.camp_id == camp_id,
                CamperSessionData.athlete_id == athlete_id,
            )
        )
        if session_data is None:
            raise NotFoundError(
                "Camper", athlete_id, detail="Athlete is not a confirmed camper in this camp"
            )
        session_data.assigned_group_id = group_id
        session_data.assignment_type = AssignmentType.MANUAL if group_id else None
        session_data.set_updated_by(user_id)
        if camp.grouping_status == GroupingStatus.AUTO_GROUPED:
            camp.grouping_status = GroupingStatus.REVIEWED
        safe_commit(self._db)
        return {"athlete_id": athlete_id, "group_id": group_id}

    def list_campers(self, camp_id: int) -> list[dict[str, Any]]:
        rows = self._db.execute(
            select(CamperSessionData, Athlete)
            .join(Athlete, Athlete.id == CamperSessionData.athlete_id)
            .where(CamperSessionData.camp_id == camp_id, CamperSessionData.is_active.is_(True))
            .order_by(Athlete.last_name, Athlete.first_name)
        ).all()
        return [
            {
                "athlete_id": athlete.id,
                "athlete_name": athlete.full_name,
                "registration_id": data.registration_id,
                "group_id": data.assigned_group_id,
            }
            for data, athlete in rows
        ]

    # =========================================================================
    # Staff
    # =========================================================================

    def assign_staff(self, camp_id: int, staff_user_id: int, role: str, user_id: int | None = None) -> dict[str, Any]:
        if role not in StaffRole.ALL:
            raise ValidationError(f"Invalid staff role: {role}", role=role)
        camp = self._get_editable(camp_id)
        staff_user = self._db.scalar(
            select(User).where(User.id == staff_user_id, User.is_active.is_(True))
        )
        if not staff_user:
            raise NotFoundError("User", staff_user_id)

        assignment = self._db.scalar(
            select(StaffAssignment).where(
                StaffAssignment.camp_id == camp_id,
                StaffAssignment.user_id == staff_user_id,
                StaffAssignment.role == role,
            )
        )
        if assignment is not None and assignment.is_active:
            raise DuplicateEntityError("Staff assignment", f"{staff_user_id}:{role}")
        if assignment is not None:
            assignment.restore(user_id)
        else:
            assignment = StaffAssignment(
                tenant_id=camp.tenant_id, camp_id=camp_id, user_id=staff_user_id, role=role
            )
            assignment.set_created_by(user_id)
            self._db.add(assignment)
        safe_commit(self._db)
        self._db.refresh(assignment)

        logger.info("Staff assigned", camp_id=camp_id, staff_user_id=staff_user_id, role=role)
        return {"id": assignment.id, "user_id": staff_user_id, "name": staff_user.full_name, "role": role}

    def list_staff(self, camp_id: int) -> list[dict[str, Any]]:
        rows = self._db.execute(
            select(StaffAssignment, User)
            .join(User, User.id == StaffAssignment.user_id)
            .where(StaffAssignment.camp_id == camp_id, StaffAssignment.is_active.is_(True))
            .order_by(StaffAssignment.role, User.last_name)
        ).all()
        return [
            {"id": a.id, "user_id": u.id, "name": u.full_name, "email": u.email, "role": a.role}
            for a, u in rows
        ]

    def remove_staff(self, camp_id: int, assignment_id: int, user_id: int | None = None) -> dict[str, bool]:
        self._get_editable(camp_id)
        assignment = self._db.scalar(
            select(StaffAssignment).where(
                StaffAssignment.id == assignment_id,
                StaffAssignment.camp_id == camp_id,
                StaffAssignment.is_active.is_(True),
            )
        )
        if not assignment:
            raise NotFoundError("Staff assignment", assignment_id)
        assignment.soft_delete(user_id)
        safe_commit(self._db)
        return {"deleted": True}

    # =========================================================================
    # Session compensation
    # =========================================================================

    @staticmethod
    def compensation_output(comp: SessionCompensation) -> dict[str, Any]:
        return {
            "id": comp.id,
            "camp_id": comp.camp_id,
            "staff_user_id": comp.staff_user_id,
            "plan_name": comp.plan_name,
            "fixed_stipend_cents": comp.fixed_stipend_cents,
            "enrollment_bonus_cents": comp.enrollment_bonus_cents,
            "csat_bonus_cents": comp.csat_bonus_cents,
            "budget_efficiency_bonus_cents": comp.budget_efficiency_bonus_cents,
            "guest_speaker_bonus_cents": comp.guest_speaker_bonus_cents,
            "total_variable_bonus_cents": comp.total_variable_bonus_cents,
            "total_compensation_cents": comp.total_compensation_cents,
            "csat_avg_score": comp.csat_avg_score,
            "is_finalized": comp.is_finalized,
        }

    def upsert_compensation(
        self,
        camp_id: int,
        body: CompensationUpsert,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        """Create or update a staff member's compensation; totals are derived."""
        camp = self.get_camp_model(camp_id)
        comp = self._db.scalar(
            select(SessionCompensation).where(
                SessionCompensation.camp_id == camp_id,
                SessionCompensation.staff_user_id == body.staff_user_id,
            )
        )
        if comp is not None and comp.is_finalized:
            raise InvalidStateError(
                "Session compensation", "finalized",
                detail="Compensation is finalized and cannot be changed",
            )
        if comp is None:
            comp = SessionCompensation(
                tenant_id=camp.tenant_id, camp_id=camp_id, staff_user_id=body.staff_user_id
            )
            comp.set_created_by(user_id)
            self._db.add(comp)
        else:
            comp.set_updated_by(user_id)
            if not comp.is_active:
                comp.restore(user_id)

        for field, value in body.model_dump(exclude={"staff_user_id"}).items():
            setattr(comp, field, value)
        comp.total_variable_bonus_cents = (
            comp.enrollment_bonus_cents
            + comp.csat_bonus_cents
            + comp.budget_efficiency_bonus_cents
            + comp.guest_speaker_bonus_cents
        )
        comp.total_compensation_cents = comp.fixed_stipend_cents + comp.total_variable_bonus_cents
        safe_commit(self._db)
        self._db.refresh(comp)
        return self.compensation_output(comp)

    def list_compensation(self, camp_id: int) -> list[dict[str, Any]]:
        comps = self._db.execute(
            select(SessionCompensation)
            .where(SessionCompensation.camp_id == camp_id, SessionCompensation.is_active.is_(True))
            .order_by(SessionCompensation.id)
        ).scalars()
        return [self.compensation_output(c) for c in comps]
