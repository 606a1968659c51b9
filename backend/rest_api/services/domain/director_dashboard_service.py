"""
Director Dashboard Domain Service.

Aggregates what a camp director needs at a glance: camps running today
with live attendance, upcoming camps, compensation snapshot and the
quick actions that follow from them.
"""

from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rest_api.models import Camp, CampAttendance, CampDay, Registration, SessionCompensation, User
from shared.config.constants import AttendanceStatus, CampDayStatus, RegistrationStatus
from shared.config.settings import settings
from shared.utils.exceptions import NotFoundError

ENROLLED_STATUSES = (RegistrationStatus.CONFIRMED, RegistrationStatus.PENDING)
GROUPING_WINDOW_DAYS = 7
UPCOMING_LIMIT = 10


class DirectorDashboardService:
    def __init__(self, db: Session):
        self._db = db

    def _enrolled_counts(self, camp_ids: list[int]) -> dict[int, int]:
        if not camp_ids:
            return {}
        return dict(self._db.execute(
            select(Registration.camp_id, func.count(Registration.id))
            .where(
                Registration.camp_id.in_(camp_ids),
                Registration.status.in_(ENROLLED_STATUSES),
            )
            .group_by(Registration.camp_id)
        ).all())

    def today_camps(self, tenant_id: int | None, today: date) -> list[dict[str, Any]]:
        query = select(Camp).where(
            Camp.is_active.is_(True),
            Camp.start_date <= today,
            Camp.end_date >= today,
        )
        if tenant_id is not None:
            query = query.where(Camp.tenant_id == tenant_id)
        camps = list(self._db.execute(query.order_by(Camp.start_date, Camp.id)).scalars())
        enrolled = self._enrolled_counts([c.id for c in camps])

        results = []
        for camp in camps:
            day = self._db.scalar(
                select(CampDay).where(CampDay.camp_id == camp.id, CampDay.date == today)
            )
            counts: dict[str, int] = {}
            if day:
                counts = dict(self._db.execute(
                    select(CampAttendance.status, func.count(CampAttendance.id))
                    .where(CampAttendance.camp_day_id == day.id)
                    .group_by(CampAttendance.status)
                ).all())
            registered = enrolled.get(camp.id, 0)
            on_site = counts.get(AttendanceStatus.CHECKED_IN, 0)
            checked_out = counts.get(AttendanceStatus.CHECKED_OUT, 0)
            absent = counts.get(AttendanceStatus.ABSENT, 0)
            finished = day is not None and day.completed_at is not None

            results.append({
                "camp_day_id": day.id if day else None,
                "camp_id": camp.id,
                "camp_name": camp.name,
                "location_name": camp.location_name,
                "day_number": day.day_number if day else (today - camp.start_date).days + 1,
                "total_days": (camp.end_date - camp.start_date).days + 1,
                "date": today,
                "status": day.status if day else CampDayStatus.NOT_STARTED,
                "stats": {
                    "registered": registered,
                    "checked_in": on_site + checked_out,
                    "checked_out": checked_out,
                    "on_site": on_site,
                    "not_arrived": max(0, registered - on_site - checked_out - absent),
                    "absent": absent,
                },
                "has_recap": finished,
                "recap_complete": finished and day.status == CampDayStatus.FINISHED,
            })
        return results

    def upcoming_camps(
        self, tenant_id: int | None, today: date, limit: int = UPCOMING_LIMIT
    ) -> list[dict[str, Any]]:
        query = select(Camp).where(Camp.is_active.is_(True), Camp.end_date >= today)
        if tenant_id is not None:
            query = query.where(Camp.tenant_id == tenant_id)
        camps = list(self._db.execute(query.order_by(Camp.start_date).limit(limit)).scalars())
        enrolled = self._enrolled_counts([c.id for c in camps])
        return [
            {
                "id": camp.id,
                "name": camp.name,
                "slug": camp.slug,
                "start_date": camp.start_date,
                "end_date": camp.end_date,
                "location_name": camp.location_name,
                "capacity": camp.capacity or settings.default_camp_capacity,
                "registered_count": enrolled.get(camp.id, 0),
                "status": camp.status,
                "days_until_start": max(0, (camp.start_date - today).days),
            }
            for camp in camps
        ]

    def incentive_snapshot(self, user_id: int, tenant_id: int | None, today: date) -> dict[str, Any]:
        query = (
            select(SessionCompensation, Camp)
            .join(Camp, Camp.id == SessionCompensation.camp_id)
            .where(
                SessionCompensation.staff_user_id == user_id,
                SessionCompensation.is_active.is_(True),
            )
        )
        if tenant_id is not None:
            query = query.where(SessionCompensation.tenant_id == tenant_id)
        rows = self._db.execute(query.order_by(Camp.start_date.desc())).all()

        total = pending = finalized = 0
        current_pending = False
        scores = []
        camps = []
        for comp, camp in rows:
            total += comp.total_compensation_cents
            if comp.is_finalized:
                finalized += comp.total_compensation_cents
            else:
                pending += comp.total_compensation_cents
                if camp.start_date <= today <= camp.end_date:
                    current_pending = True
            if comp.csat_avg_score is not None:
                scores.append(float(comp.csat_avg_score))
            camps.append({
                "camp_id": camp.id,
                "camp_name": camp.name,
                "start_date": camp.start_date,
                "end_date": camp.end_date,
                "plan_name": comp.plan_name,
                "fixed_stipend_cents": comp.fixed_stipend_cents,
                "variable_bonus_cents": comp.total_variable_bonus_cents,
                "total_cents": comp.total_compensation_cents,
                "is_finalized": comp.is_finalized,
            })

        return {
            "total_sessions": len(rows),
            "total_compensation_cents": total,
            "pending_compensation_cents": pending,
            "finalized_compensation_cents": finalized,
            "avg_csat_score": round(sum(scores) / len(scores), 2) if scores else None,
            "current_camp_pending": current_pending,
            "camps": camps,
        }

    def get_dashboard(
        self, user_id: int, tenant_id: int | None = None, today: date | None = None
    ) -> dict[str, Any]:
        user = self._db.scalar(select(User).where(User.id == user_id))
        if not user:
            raise NotFoundError("User", user_id)
        today = today or date.today()

        today_camps = self.today_camps(tenant_id, today)
        upcoming = self.upcoming_camps(tenant_id, today)
        active = next(
            (c for c in today_camps if c["status"] == CampDayStatus.IN_PROGRESS), None
        )

        return {
            "user": {
                "id": user.id,
                "name": user.full_name or user.email,
                "email": user.email,
            },
            "today_camps": today_camps,
            "upcoming_camps": upcoming,
            "incentive_snapshot": self.incentive_snapshot(user_id, tenant_id, today),
            "quick_actions": {
                "has_active_camp": active is not None,
                "active_camp_id": active["camp_id"] if active else None,
                "active_camp_day_id": active["camp_day_id"] if active else None,
                "needs_recap": any(
                    c["status"] in (CampDayStatus.IN_PROGRESS, CampDayStatus.FINISHED)
                    and not c["recap_complete"]
                    for c in today_camps
                ),
                "needs_grouping": any(
                    c["days_until_start"] <= GROUPING_WINDOW_DAYS and c["registered_count"] > 0
                    for c in upcoming
                ),
            },
        }
