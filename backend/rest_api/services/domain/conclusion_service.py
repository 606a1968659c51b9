"""
Camp Conclusion Domain Service.

End-of-session workflow: pre-conclusion validation, the conclusion itself
(status, lock, wrap-up of days and attendance), the conclusion overview
report, and lock/unlock/archive.
"""

from collections import Counter
from datetime import date
from typing import Any, Iterable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from rest_api.models import (
    Camp,
    CampAttendance,
    CampDay,
    CampDayRecap,
    CampGroup,
    CampIncident,
    Registration,
    SessionCompensation,
    StaffAssignment,
    Tenant,
    User,
)
from rest_api.models.base import utcnow
from rest_api.services.events.outbox_service import (
    recipient_from_user,
    write_notification_event,
)
from shared.config.constants import (
    AttendanceStatus,
    CampDayStatus,
    CampStatus,
    IncidentSeverity,
    RegistrationStatus,
    StaffRole,
)
from shared.config.logging import camp_ops_logger as logger
from shared.config.settings import settings
from shared.infrastructure.db import safe_commit
from shared.infrastructure.events import CAMP_CONCLUDED
from shared.utils.exceptions import InvalidStateError, NotFoundError, ValidationError

from .camp_day_service import confirmed_parents

CONCLUDED_LOCK_REASON = "Camp concluded"
DEFAULT_LOCK_REASON = "Locked by administrator"
ARCHIVED_LOCK_REASON = "Archived"

# Registrations that brought money in, even if later refunded
REVENUE_STATUSES = (RegistrationStatus.CONFIRMED, RegistrationStatus.REFUNDED)


def rate(part: int, whole: int) -> int:
    """Whole-number percentage, 0 when the denominator is 0."""
    if whole <= 0:
        return 0
    return (part * 100 + whole // 2) // whole


def summarize_revenue(registrations: Iterable[Registration]) -> dict[str, int]:
    """Revenue breakdown in cents for a set of paid registrations."""
    registration_revenue = 0
    addon_revenue = 0
    refunds = 0
    for r in registrations:
        registration_revenue += r.total_price_cents - r.addons_total_cents
        addon_revenue += r.addons_total_cents
        refunds += r.refund_amount_cents or 0
    gross = registration_revenue + addon_revenue
    return {
        "gross_revenue_cents": gross,
        "registration_revenue_cents": registration_revenue,
        "addon_revenue_cents": addon_revenue,
        "refunds_cents": refunds,
        "net_revenue_cents": gross - refunds,
    }


class CampConclusionService:
    """Domain service for concluding, locking and reporting on a camp."""

    def __init__(self, db: Session):
        self._db = db

    def _get_camp(self, camp_id: int, lock: bool = False) -> Camp:
        query = select(Camp).where(Camp.id == camp_id, Camp.is_active.is_(True))
        if lock:
            query = query.with_for_update()
        camp = self._db.scalar(query)
        if not camp:
            raise NotFoundError("Camp", camp_id)
        return camp

    @staticmethod
    def camp_output(camp: Camp) -> dict[str, Any]:
        return {
            "id": camp.id,
            "name": camp.name,
            "status": camp.status,
            "is_locked": camp.is_locked,
            "lock_reason": camp.lock_reason,
            "concluded_at": camp.concluded_at,
        }

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_for_conclusion(
        self,
        camp_id: int,
        today: date | None = None,
    ) -> dict[str, Any]:
        """
        Check whether a camp can be concluded.

        Blockers prevent conclusion; warnings are informational.
        """
        camp = self._get_camp(camp_id)
        return self._validate(camp, today or date.today())

    def _validate(self, camp: Camp, today: date) -> dict[str, Any]:
        warnings: list[str] = []
        blockers: list[str] = []

        if camp.status == CampStatus.COMPLETED:
            blockers.append("Camp is already completed")
        if camp.status == CampStatus.CANCELLED:
            blockers.append("Camp has been cancelled")
        if camp.is_locked:
            blockers.append("Camp is locked")

        if today < camp.end_date:
            warnings.append(
                f"Camp end date ({camp.end_date.isoformat()}) has not passed yet"
            )

        day_statuses = Counter(
            self._db.execute(
                select(CampDay.status).where(
                    CampDay.camp_id == camp.id, CampDay.is_active.is_(True)
                )
            ).scalars()
        )
        day_rows = sum(day_statuses.values())
        never_started = (
            camp.total_days - day_rows + day_statuses.get(CampDayStatus.NOT_STARTED, 0)
        )
        if never_started > 0:
            warnings.append(f"{never_started} day(s) were never started")

        in_progress = day_statuses.get(CampDayStatus.IN_PROGRESS, 0)
        if in_progress > 0:
            warnings.append(f"{in_progress} day(s) are still in progress")

        unchecked_out = self._db.scalar(
            select(func.count(CampAttendance.id)).where(
                CampAttendance.camp_id == camp.id,
                CampAttendance.status == AttendanceStatus.CHECKED_IN,
            )
        ) or 0
        if unchecked_out > 0:
            warnings.append(f"{unchecked_out} camper(s) were never checked out across all days")

        unresolved = self._db.scalar(
            select(func.count(CampIncident.id)).where(
                CampIncident.camp_id == camp.id,
                CampIncident.is_active.is_(True),
                CampIncident.resolved_at.is_(None),
            )
        ) or 0
        if unresolved > 0:
            warnings.append(f"{unresolved} incident(s) are unresolved")

        return {"can_conclude": not blockers, "warnings": warnings, "blockers": blockers}

    # =========================================================================
    # Conclusion
    # =========================================================================

    def conclude_camp(
        self,
        camp_id: int,
        user_id: int | None,
        lock_camp: bool = True,
        force: bool = False,
        today: date | None = None,
    ) -> dict[str, Any]:
        """
        Conclude a camp in a single transaction.

        Without `force` any blocker aborts with nothing written. Open days
        are finished and every not_arrived row becomes absent.
        """
        today = today or date.today()
        camp = self._get_camp(camp_id, lock=True)

        if not force:
            validation = self._validate(camp, today)
            if not validation["can_conclude"]:
                raise InvalidStateError(
                    "Camp",
                    camp.status,
                    detail=f"Cannot conclude camp: {', '.join(validation['blockers'])}",
                    blockers=validation["blockers"],
                )

        now = utcnow()
        camp.status = CampStatus.COMPLETED
        camp.concluded_at = now
        camp.concluded_by_id = user_id
        if lock_camp:
            camp.is_locked = True
            camp.lock_reason = CONCLUDED_LOCK_REASON
            camp.locked_at = now
            camp.locked_by_id = user_id
        camp.set_updated_by(user_id)

        finished = self._db.execute(
            update(CampDay)
            .where(CampDay.camp_id == camp_id, CampDay.status == CampDayStatus.IN_PROGRESS)
            .values(status=CampDayStatus.FINISHED, completed_at=now, completed_by_id=user_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        absent = self._db.execute(
            update(CampAttendance)
            .where(
                CampAttendance.camp_id == camp_id,
                CampAttendance.status == AttendanceStatus.NOT_ARRIVED,
            )
            .values(status=AttendanceStatus.ABSENT)
            .execution_options(synchronize_session=False)
        ).rowcount

        write_notification_event(
            self._db,
            tenant_id=camp.tenant_id,
            event_type=CAMP_CONCLUDED,
            aggregate_type="camp",
            aggregate_id=camp.id,
            recipients=[recipient_from_user(p) for p in confirmed_parents(self._db, camp.id)],
            data={"camp_id": camp.id, "camp_name": camp.name},
            actor_user_id=user_id,
        )

        safe_commit(self._db)
        self._db.refresh(camp)

        logger.info(
            "Camp concluded",
            camp_id=camp_id,
            locked=lock_camp,
            forced=force,
            days_finished=finished,
            marked_absent=absent,
            user_id=user_id,
        )

        # Warnings reflect the camp after the transition
        validation = self._validate(camp, today)
        return {"success": True, "camp": self.camp_output(camp), "warnings": validation["warnings"]}

    # =========================================================================
    # Overview report
    # =========================================================================

    def get_conclusion_overview(self, camp_id: int) -> dict[str, Any]:
        """Aggregated end-of-session report for a camp. Money in cents."""
        camp = self._get_camp(camp_id)
        tenant = self._db.get(Tenant, camp.tenant_id)

        days = self._db.execute(
            select(CampDay)
            .where(CampDay.camp_id == camp_id, CampDay.is_active.is_(True))
            .order_by(CampDay.date)
        ).scalars().all()

        registrations = self._db.execute(
            select(Registration).where(
                Registration.camp_id == camp_id,
                Registration.status.in_(REVENUE_STATUSES),
            )
        ).scalars().all()
        registered = sum(1 for r in registrations if r.status == RegistrationStatus.CONFIRMED)

        return {
            "camp": {
                "id": camp.id,
                "name": camp.name,
                "start_date": camp.start_date,
                "end_date": camp.end_date,
                "status": camp.status,
                "is_locked": camp.is_locked,
                "concluded_at": camp.concluded_at,
                "location_name": camp.location_name,
                "tenant_id": camp.tenant_id,
                "tenant_name": tenant.name if tenant else None,
            },
            "attendance": self._attendance_overview(days, registered),
            "incidents": self._incident_overview(camp_id),
            "capacity": self._capacity_overview(camp, registered),
            "revenue": summarize_revenue(registrations),
            "staff": self._staff_overview(camp_id),
            "incentives": self._incentive_overview(camp_id),
            "recaps": self._recaps(days),
            "days_summary": {
                "total": camp.total_days,
                "completed": sum(1 for d in days if d.status == CampDayStatus.FINISHED),
                "not_started": sum(1 for d in days if d.status == CampDayStatus.NOT_STARTED),
                "in_progress": sum(1 for d in days if d.status == CampDayStatus.IN_PROGRESS),
            },
            "has_groups": self._db.scalar(
                select(func.count(CampGroup.id)).where(
                    CampGroup.camp_id == camp_id, CampGroup.is_active.is_(True)
                )
            ) > 0,
        }

    def _attendance_overview(self, days: list[CampDay], registered: int) -> dict[str, Any]:
        counts: dict[int, Counter] = {d.id: Counter() for d in days}
        if days:
            rows = self._db.execute(
                select(CampAttendance.camp_day_id, CampAttendance.status, func.count(CampAttendance.id))
                .where(CampAttendance.camp_day_id.in_(counts.keys()))
                .group_by(CampAttendance.camp_day_id, CampAttendance.status)
            ).all()
            for day_id, status, count in rows:
                counts[day_id][status] = count

        total_expected = 0
        total_attended = 0
        breakdown = []
        for day in days:
            day_counts = counts[day.id]
            attended = sum(day_counts[s] for s in AttendanceStatus.ATTENDED)
            expected = sum(day_counts.values()) or registered
            total_expected += expected
            total_attended += attended
            breakdown.append({
                "date": day.date,
                "day_number": day.day_number,
                "expected": expected,
                "attended": attended,
                "absent": day_counts[AttendanceStatus.ABSENT],
                "attendance_rate": rate(attended, expected),
            })

        return {
            "total_expected": total_expected,
            "total_attended": total_attended,
            "average_daily_attendance": (
                (total_attended + len(days) // 2) // len(days) if days else 0
            ),
            "attendance_rate": rate(total_attended, total_expected),
            "daily_breakdown": breakdown,
        }

    def _incident_overview(self, camp_id: int) -> dict[str, Any]:
        incidents = self._db.execute(
            select(CampIncident.severity, CampIncident.resolved_at).where(
                CampIncident.camp_id == camp_id, CampIncident.is_active.is_(True)
            )
        ).all()
        by_severity = Counter(severity for severity, _ in incidents)
        resolved = sum(1 for _, resolved_at in incidents if resolved_at is not None)
        return {
            "total": len(incidents),
            "by_severity": {s: by_severity.get(s, 0) for s in IncidentSeverity.ALL},
            "resolved": resolved,
            "unresolved": len(incidents) - resolved,
        }

    @staticmethod
    def _capacity_overview(camp: Camp, registered: int) -> dict[str, int]:
        capacity = camp.capacity or settings.default_camp_capacity
        return {
            "registered": registered,
            "capacity": capacity,
            "utilization_rate": rate(registered, capacity),
        }

    def _staff_overview(self, camp_id: int) -> dict[str, int]:
        roles = Counter(
            self._db.execute(
                select(StaffAssignment.role).where(
                    StaffAssignment.camp_id == camp_id, StaffAssignment.is_active.is_(True)
                )
            ).scalars()
        )
        return {
            "total_assigned": sum(roles.values()),
            "directors": roles.get(StaffRole.DIRECTOR, 0),
            "coaches": roles.get(StaffRole.COACH, 0),
            "assistants": roles.get(StaffRole.ASSISTANT, 0),
            "cits": roles.get(StaffRole.CIT, 0),
            "volunteers": roles.get(StaffRole.VOLUNTEER, 0),
        }

    def _incentive_overview(self, camp_id: int) -> dict[str, Any]:
        rows = self._db.execute(
            select(SessionCompensation, User)
            .outerjoin(User, User.id == SessionCompensation.staff_user_id)
            .where(
                SessionCompensation.camp_id == camp_id,
                SessionCompensation.is_active.is_(True),
            )
            .order_by(SessionCompensation.id)
        ).all()

        comps = [comp for comp, _ in rows]
        return {
            "total_compensation_cents": sum(c.total_compensation_cents for c in comps),
            "total_fixed_stipend_cents": sum(c.fixed_stipend_cents for c in comps),
            "total_variable_bonuses_cents": sum(c.total_variable_bonus_cents for c in comps),
            "bonuses_breakdown": {
                "enrollment_bonus_cents": sum(c.enrollment_bonus_cents for c in comps),
                "csat_bonus_cents": sum(c.csat_bonus_cents for c in comps),
                "budget_efficiency_bonus_cents": sum(c.budget_efficiency_bonus_cents for c in comps),
                "guest_speaker_bonus_cents": sum(c.guest_speaker_bonus_cents for c in comps),
            },
            "staff_summaries": [
                {
                    "staff_id": comp.staff_user_id,
                    "staff_name": (user.full_name if user else None) or "Unknown Staff",
                    "plan_name": comp.plan_name or "Unknown Plan",
                    "fixed_stipend_cents": comp.fixed_stipend_cents,
                    "variable_bonus_cents": comp.total_variable_bonus_cents,
                    "total_compensation_cents": comp.total_compensation_cents,
                    "is_finalized": comp.is_finalized,
                }
                for comp, user in rows
            ],
        }

    def _recaps(self, days: list[CampDay]) -> list[dict[str, Any]]:
        if not days:
            return []
        by_day = {d.id: d for d in days}
        recaps = self._db.execute(
            select(CampDayRecap).where(CampDayRecap.camp_day_id.in_(by_day.keys()))
        ).scalars().all()
        output = [
            {
                "day_number": by_day[r.camp_day_id].day_number,
                "date": by_day[r.camp_day_id].date,
                "word_of_the_day": r.word_of_the_day,
                "primary_sport": r.primary_sport,
                "guest_speaker": r.guest_speaker,
            }
            for r in recaps
        ]
        return sorted(output, key=lambda r: r["day_number"])

    # =========================================================================
    # Lock / unlock / archive
    # =========================================================================

    def lock_camp(self, camp_id: int, user_id: int | None, reason: str | None = None) -> dict[str, Any]:
        camp = self._get_camp(camp_id, lock=True)
        camp.is_locked = True
        camp.lock_reason = reason or DEFAULT_LOCK_REASON
        camp.locked_at = utcnow()
        camp.locked_by_id = user_id
        camp.set_updated_by(user_id)
        safe_commit(self._db)
        logger.info("Camp locked", camp_id=camp_id, reason=camp.lock_reason, user_id=user_id)
        return self.camp_output(camp)

    def unlock_camp(self, camp_id: int, user_id: int | None) -> dict[str, Any]:
        camp = self._get_camp(camp_id, lock=True)
        camp.is_locked = False
        camp.lock_reason = None
        camp.locked_at = None
        camp.locked_by_id = None
        camp.set_updated_by(user_id)
        safe_commit(self._db)
        logger.info("Camp unlocked", camp_id=camp_id, user_id=user_id)
        return self.camp_output(camp)

    def archive_camp(self, camp_id: int, user_id: int | None) -> dict[str, Any]:
        """Soft delete a finished camp. Only completed or cancelled camps qualify."""
        camp = self._get_camp(camp_id, lock=True)
        if camp.status not in (CampStatus.COMPLETED, CampStatus.CANCELLED):
            raise ValidationError(
                "Only completed or cancelled camps can be archived",
                camp_id=camp_id,
                status=camp.status,
            )
        camp.is_locked = True
        camp.lock_reason = ARCHIVED_LOCK_REASON
        camp.soft_delete(user_id)
        safe_commit(self._db)
        logger.info("Camp archived", camp_id=camp_id, user_id=user_id)
        return {"archived": True, "camp_id": camp_id}
