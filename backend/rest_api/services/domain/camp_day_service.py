"""
Camp Day Domain Service.

Lifecycle of a single camp day: lazy creation, start, attendance
initialization, end-of-day wrap-up with recap and parent emails, and
incident reporting.
"""

from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rest_api.models import (
    Athlete,
    Camp,
    CampAttendance,
    CampDay,
    CampDayRecap,
    CampIncident,
    CamperSessionData,
    Registration,
    User,
)
from rest_api.models.base import utcnow
from rest_api.services.events.outbox_service import (
    recipient_from_user,
    write_notification_event,
)
from shared.config.constants import (
    AttendanceStatus,
    CAMP_DAY_MACHINE,
    CampDayStatus,
    RegistrationStatus,
)
from shared.config.logging import camp_ops_logger as logger
from shared.infrastructure.db import safe_commit
from shared.infrastructure.events import CAMP_DAY_RECAP_EMAIL, CAMP_SESSION_RECAP_EMAIL
from shared.utils.camp_schemas import DayRecapInput, EndDayRequest, IncidentCreate
from shared.utils.exceptions import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

CAMP_LOCKED_MESSAGE = "Camp is locked and cannot be modified"

RECAP_FIELDS = ("word_of_the_day", "primary_sport", "secondary_sport", "guest_speaker", "notes")


def as_calendar_day(value: date | datetime) -> date:
    """Strip the time part so a datetime maps to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value


def day_number_for(camp: Camp, day: date) -> int:
    return (day - camp.start_date).days + 1


def confirmed_parents(db: Session, camp_id: int) -> list[User]:
    """Distinct parents with at least one confirmed registration in the camp."""
    return list(
        db.execute(
            select(User)
            .where(
                User.id.in_(
                    select(Registration.parent_id).where(
                        Registration.camp_id == camp_id,
                        Registration.status == RegistrationStatus.CONFIRMED,
                    )
                ),
                User.is_active.is_(True),
            )
            .order_by(User.id)
        ).scalars()
    )


class CampDayService:
    """Domain service for camp-day lifecycle operations."""

    def __init__(self, db: Session):
        self._db = db

    # =========================================================================
    # Loading helpers
    # =========================================================================

    def _get_camp(self, camp_id: int, lock: bool = False) -> Camp:
        query = select(Camp).where(Camp.id == camp_id, Camp.is_active.is_(True))
        if lock:
            query = query.with_for_update()
        camp = self._db.scalar(query)
        if not camp:
            raise NotFoundError("Camp", camp_id)
        return camp

    def _get_day(self, camp_day_id: int, lock: bool = False) -> CampDay:
        query = select(CampDay).where(CampDay.id == camp_day_id, CampDay.is_active.is_(True))
        if lock:
            query = query.with_for_update()
        day = self._db.scalar(query)
        if not day:
            raise NotFoundError("Camp day", camp_day_id)
        return day

    def _stats(self, camp_day_id: int) -> dict[str, int]:
        rows = self._db.execute(
            select(CampAttendance.status, func.count(CampAttendance.id))
            .where(CampAttendance.camp_day_id == camp_day_id)
            .group_by(CampAttendance.status)
        ).all()
        counts = {status: count for status, count in rows}
        stats = {status: counts.get(status, 0) for status in AttendanceStatus.ALL}
        stats["registered"] = sum(counts.values())
        return stats

    @staticmethod
    def to_output(day: CampDay) -> dict[str, Any]:
        return {
            "id": day.id,
            "camp_id": day.camp_id,
            "date": day.date,
            "day_number": day.day_number,
            "title": day.title,
            "status": day.status,
            "notes": day.notes,
            "started_at": day.started_at,
            "completed_at": day.completed_at,
            "completed_by_id": day.completed_by_id,
        }

    @staticmethod
    def recap_output(recap: CampDayRecap | None) -> dict[str, Any] | None:
        if recap is None:
            return None
        output = {field: getattr(recap, field) for field in RECAP_FIELDS}
        output["id"] = recap.id
        return output

    # =========================================================================
    # Queries
    # =========================================================================

    def get_or_create_camp_day(self, camp_id: int, day: date | datetime) -> CampDay:
        """
        Return the day row for a calendar date, creating it on first use.

        Raises:
            NotFoundError: Unknown camp
            ValidationError: Date outside the camp's date range
        """
        camp = self._get_camp(camp_id)
        day = as_calendar_day(day)

        existing = self._db.scalar(
            select(CampDay).where(CampDay.camp_id == camp_id, CampDay.date == day)
        )
        if existing:
            return existing

        if day < camp.start_date or day > camp.end_date:
            raise ValidationError(
                "Date is outside camp date range", camp_id=camp_id, date=str(day)
            )

        number = day_number_for(camp, day)
        camp_day = CampDay(
            tenant_id=camp.tenant_id,
            camp_id=camp_id,
            date=day,
            day_number=number,
            title=f"Day {number}",
            status=CampDayStatus.NOT_STARTED,
        )
        self._db.add(camp_day)
        safe_commit(self._db)
        self._db.refresh(camp_day)

        logger.info("Camp day created", camp_id=camp_id, camp_day_id=camp_day.id, day_number=number)
        return camp_day

    def get_camp_day(self, camp_day_id: int) -> dict[str, Any]:
        day = self._get_day(camp_day_id)
        output = self.to_output(day)
        output["stats"] = self._stats(camp_day_id)
        return output

    def list_camp_days(self, camp_id: int) -> list[dict[str, Any]]:
        self._get_camp(camp_id)
        days = self._db.execute(
            select(CampDay)
            .where(CampDay.camp_id == camp_id, CampDay.is_active.is_(True))
            .order_by(CampDay.date)
        ).scalars()
        return [self.to_output(d) for d in days]

    def get_camp_day_with_details(self, camp_day_id: int) -> dict[str, Any]:
        """Day with stats, attendance rows (athlete names), recap and incidents."""
        day = self._get_day(camp_day_id)
        output = self.to_output(day)
        output["stats"] = self._stats(camp_day_id)

        rows = self._db.execute(
            select(CampAttendance, Athlete)
            .join(Athlete, Athlete.id == CampAttendance.athlete_id)
            .where(CampAttendance.camp_day_id == camp_day_id)
            .order_by(Athlete.last_name, Athlete.first_name)
        ).all()
        output["attendance"] = [
            {
                "id": att.id,
                "athlete_id": athlete.id,
                "athlete_name": athlete.full_name,
                "group_id": att.group_id,
                "status": att.status,
                "check_in_time": att.check_in_time,
                "check_out_time": att.check_out_time,
                "notes": att.notes,
            }
            for att, athlete in rows
        ]

        recap = self._db.scalar(select(CampDayRecap).where(CampDayRecap.camp_day_id == camp_day_id))
        output["recap"] = self.recap_output(recap)

        incidents = self._db.execute(
            select(CampIncident)
            .where(CampIncident.camp_day_id == camp_day_id, CampIncident.is_active.is_(True))
            .order_by(CampIncident.created_at)
        ).scalars()
        output["incidents"] = [self.incident_output(i) for i in incidents]
        return output

    # =========================================================================
    # Start of day
    # =========================================================================

    def start_camp_day(
        self,
        camp_id: int,
        day: date | datetime,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        """
        Open a day for check-in and seed its attendance rows.

        Starting an already started day is allowed and re-runs the
        (idempotent) attendance initialization.
        """
        camp = self._get_camp(camp_id)
        if camp.is_locked:
            raise InvalidStateError("Camp", "locked", detail=CAMP_LOCKED_MESSAGE)
        camp_day = self.get_or_create_camp_day(camp_id, day)
        if camp_day.status == CampDayStatus.FINISHED:
            raise InvalidStateError(
                "Camp day", camp_day.status, detail="Day has already been completed"
            )

        if camp_day.status == CampDayStatus.NOT_STARTED:
            camp_day.status = CampDayStatus.IN_PROGRESS
            camp_day.started_at = utcnow()
            camp_day.started_by_id = user_id
            camp_day.set_updated_by(user_id)

        initialized = self._insert_attendance(camp_day)
        safe_commit(self._db)
        self._db.refresh(camp_day)

        logger.info(
            "Camp day started",
            camp_id=camp_id,
            camp_day_id=camp_day.id,
            initialized=initialized,
            user_id=user_id,
        )
        return {"day": self.to_output(camp_day), "initialized": initialized}

    def _insert_attendance(self, camp_day: CampDay) -> int:
        """Add not_arrived rows for confirmed registrations not yet tracked. No commit."""
        tracked = select(CampAttendance.athlete_id).where(
            CampAttendance.camp_day_id == camp_day.id
        )
        rows = self._db.execute(
            select(Registration, CamperSessionData.assigned_group_id)
            .outerjoin(
                CamperSessionData,
                (CamperSessionData.camp_id == Registration.camp_id)
                & (CamperSessionData.athlete_id == Registration.athlete_id),
            )
            .where(
                Registration.camp_id == camp_day.camp_id,
                Registration.status == RegistrationStatus.CONFIRMED,
                Registration.athlete_id.not_in(tracked),
            )
            .order_by(Registration.id)
        ).all()

        seen: set[int] = set()
        for registration, group_id in rows:
            # An athlete with two confirmed rows is tracked once
            if registration.athlete_id in seen:
                continue
            seen.add(registration.athlete_id)
            self._db.add(
                CampAttendance(
                    tenant_id=camp_day.tenant_id,
                    camp_id=camp_day.camp_id,
                    camp_day_id=camp_day.id,
                    athlete_id=registration.athlete_id,
                    registration_id=registration.id,
                    group_id=group_id,
                    status=AttendanceStatus.NOT_ARRIVED,
                )
            )
        if seen:
            self._db.flush()
        return len(seen)

    def initialize_attendance(self, camp_day_id: int) -> int:
        """Seed not_arrived rows for the day. Returns how many were inserted."""
        camp_day = self._get_day(camp_day_id)
        inserted = self._insert_attendance(camp_day)
        safe_commit(self._db)
        return inserted

    # =========================================================================
    # Status and notes
    # =========================================================================

    def update_camp_day_status(
        self,
        camp_day_id: int,
        new_status: str,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        camp_day = self._get_day(camp_day_id, lock=True)
        if not CAMP_DAY_MACHINE.can_transition(camp_day.status, new_status):
            raise InvalidTransitionError("Camp day", camp_day.status, new_status)

        camp_day.status = new_status
        now = utcnow()
        if new_status == CampDayStatus.IN_PROGRESS:
            camp_day.started_at = now
            camp_day.started_by_id = user_id
        elif new_status == CampDayStatus.FINISHED:
            camp_day.completed_at = now
            camp_day.completed_by_id = user_id
        camp_day.set_updated_by(user_id)
        safe_commit(self._db)
        return self.to_output(camp_day)

    def update_camp_day_notes(
        self,
        camp_day_id: int,
        notes: str | None,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        camp_day = self._get_day(camp_day_id)
        camp_day.notes = notes
        camp_day.set_updated_by(user_id)
        safe_commit(self._db)
        return self.to_output(camp_day)

    # =========================================================================
    # End of day
    # =========================================================================

    def end_camp_day(
        self,
        camp_day_id: int,
        user_id: int | None,
        options: EndDayRequest | None = None,
    ) -> dict[str, Any]:
        """
        Close a day in one transaction.

        Checks, in order: camp not locked, day not finished, day started,
        and no camper left checked in unless auto-checkout or force is set.
        Nothing is written when a check fails.

        Returns:
            checked_out, marked_absent, is_last_day, recap_id
        """
        options = options or EndDayRequest()
        camp_day = self._get_day(camp_day_id, lock=True)
        camp = self._get_camp(camp_day.camp_id, lock=True)

        if camp.is_locked:
            raise InvalidStateError("Camp", "locked", detail=CAMP_LOCKED_MESSAGE)
        if camp_day.status == CampDayStatus.FINISHED:
            raise InvalidStateError(
                "Camp day", camp_day.status, detail="Day has already been completed"
            )
        if camp_day.status == CampDayStatus.NOT_STARTED:
            raise InvalidStateError(
                "Camp day", camp_day.status, detail="Day has not been started"
            )

        attendance = self._db.execute(
            select(CampAttendance)
            .where(CampAttendance.camp_day_id == camp_day_id)
            .with_for_update()
        ).scalars().all()

        still_in = [a for a in attendance if a.status == AttendanceStatus.CHECKED_IN]
        if still_in and not options.auto_checkout_all and not options.force:
            raise InvalidStateError(
                "Camp day",
                camp_day.status,
                detail=(
                    f"{len(still_in)} camper(s) still checked in. "
                    "Enable auto-checkout or force end."
                ),
                checked_in=len(still_in),
            )

        now = utcnow()
        checked_out = 0
        marked_absent = 0
        for record in attendance:
            if record.status == AttendanceStatus.CHECKED_IN:
                record.status = AttendanceStatus.CHECKED_OUT
                record.check_out_time = now
                record.check_out_by_id = user_id
                checked_out += 1
            elif record.status == AttendanceStatus.NOT_ARRIVED:
                record.status = AttendanceStatus.ABSENT
                marked_absent += 1

        recap = self._upsert_recap(camp_day, options.recap, user_id)

        camp_day.status = CampDayStatus.FINISHED
        camp_day.completed_at = now
        camp_day.completed_by_id = user_id
        if options.recap is not None and options.recap.notes:
            camp_day.notes = options.recap.notes
        camp_day.set_updated_by(user_id)

        is_last_day = camp_day.day_number == camp.total_days

        if options.send_emails:
            self._queue_recap_emails(camp, camp_day, recap, is_last_day, user_id)

        safe_commit(self._db)

        logger.info(
            "Camp day ended",
            camp_id=camp.id,
            camp_day_id=camp_day_id,
            checked_out=checked_out,
            marked_absent=marked_absent,
            is_last_day=is_last_day,
            user_id=user_id,
        )
        return {
            "camp_day_id": camp_day_id,
            "checked_out": checked_out,
            "marked_absent": marked_absent,
            "is_last_day": is_last_day,
            "recap_id": recap.id if recap is not None else None,
        }

    def _upsert_recap(
        self,
        camp_day: CampDay,
        recap_input: DayRecapInput | None,
        user_id: int | None,
    ) -> CampDayRecap | None:
        existing = self._db.scalar(
            select(CampDayRecap).where(CampDayRecap.camp_day_id == camp_day.id)
        )
        if recap_input is None:
            return existing

        values = recap_input.model_dump(exclude_none=True)
        if not values:
            return existing

        if existing is None:
            existing = CampDayRecap(tenant_id=camp_day.tenant_id, camp_day_id=camp_day.id)
            existing.set_created_by(user_id)
            self._db.add(existing)
        else:
            existing.set_updated_by(user_id)
        for field, value in values.items():
            setattr(existing, field, value)
        self._db.flush()
        return existing

    def _queue_recap_emails(
        self,
        camp: Camp,
        camp_day: CampDay,
        recap: CampDayRecap | None,
        is_last_day: bool,
        user_id: int | None,
    ) -> None:
        recipients = [recipient_from_user(p) for p in confirmed_parents(self._db, camp.id)]
        data = {
            "camp_id": camp.id,
            "camp_name": camp.name,
            "day_number": camp_day.day_number,
            "date": camp_day.date.isoformat(),
        }
        if recap is not None:
            data.update({
                "word_of_the_day": recap.word_of_the_day,
                "primary_sport": recap.primary_sport,
                "secondary_sport": recap.secondary_sport,
                "guest_speaker": recap.guest_speaker,
            })
        write_notification_event(
            self._db,
            tenant_id=camp.tenant_id,
            event_type=CAMP_DAY_RECAP_EMAIL,
            aggregate_type="camp_day",
            aggregate_id=camp_day.id,
            recipients=recipients,
            data=data,
            actor_user_id=user_id,
        )

        if is_last_day:
            write_notification_event(
                self._db,
                tenant_id=camp.tenant_id,
                event_type=CAMP_SESSION_RECAP_EMAIL,
                aggregate_type="camp",
                aggregate_id=camp.id,
                recipients=recipients,
                data={"camp_id": camp.id, "camp_name": camp.name, "total_days": camp.total_days},
                actor_user_id=user_id,
            )

    # =========================================================================
    # Incidents
    # =========================================================================

    @staticmethod
    def incident_output(incident: CampIncident) -> dict[str, Any]:
        return {
            "id": incident.id,
            "camp_day_id": incident.camp_day_id,
            "athlete_id": incident.athlete_id,
            "severity": incident.severity,
            "category": incident.category,
            "description": incident.description,
            "action_taken": incident.action_taken,
            "reported_by_id": incident.reported_by_id,
            "resolved_at": incident.resolved_at,
            "created_at": incident.created_at,
        }

    def report_incident(
        self,
        camp_day_id: int,
        body: IncidentCreate,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        camp_day = self._get_day(camp_day_id)
        camp = self._get_camp(camp_day.camp_id)
        if camp.is_locked:
            raise InvalidStateError("Camp", "locked", detail=CAMP_LOCKED_MESSAGE)

        incident = CampIncident(
            tenant_id=camp_day.tenant_id,
            camp_id=camp_day.camp_id,
            camp_day_id=camp_day.id,
            athlete_id=body.athlete_id,
            severity=body.severity,
            category=body.category,
            description=body.description,
            action_taken=body.action_taken,
            reported_by_id=user_id,
        )
        incident.set_created_by(user_id)
        self._db.add(incident)
        safe_commit(self._db)
        self._db.refresh(incident)

        log = logger.warning if body.severity in ("high", "critical") else logger.info
        log(
            "Incident reported",
            camp_day_id=camp_day_id,
            incident_id=incident.id,
            severity=body.severity,
            category=body.category,
        )
        return self.incident_output(incident)

    def resolve_incident(
        self,
        incident_id: int,
        user_id: int | None = None,
        camp_id: int | None = None,
    ) -> dict[str, Any]:
        query = select(CampIncident).where(
            CampIncident.id == incident_id, CampIncident.is_active.is_(True)
        )
        if camp_id is not None:
            query = query.where(CampIncident.camp_id == camp_id)
        incident = self._db.scalar(query)
        if not incident:
            raise NotFoundError("Incident", incident_id)
        if incident.resolved_at is None:
            incident.resolved_at = utcnow()
            incident.resolved_by_id = user_id
            incident.set_updated_by(user_id)
            safe_commit(self._db)
        return self.incident_output(incident)
