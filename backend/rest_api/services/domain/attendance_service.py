"""
Attendance Domain Service.

Check-in, check-out and absences for a camp day.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from rest_api.models import (
    Athlete,
    Camp,
    CampAttendance,
    CampDay,
    CampGroup,
    CamperSessionData,
    Registration,
)
from rest_api.models.base import utcnow
from shared.config.constants import (
    AttendanceStatus,
    CampDayStatus,
    CheckInMethod,
    RegistrationStatus,
)
from shared.config.logging import camp_ops_logger as logger
from shared.infrastructure.db import safe_commit
from shared.utils.exceptions import InvalidStateError, NotFoundError, ValidationError

from .camp_day_service import CAMP_LOCKED_MESSAGE


class AttendanceService:
    """Domain service for per-athlete attendance on a camp day."""

    def __init__(self, db: Session):
        self._db = db

    def _get_open_day(self, camp_day_id: int) -> CampDay:
        camp_day = self._db.scalar(
            select(CampDay).where(CampDay.id == camp_day_id, CampDay.is_active.is_(True))
        )
        if not camp_day:
            raise NotFoundError("Camp day", camp_day_id)

        camp = self._db.scalar(select(Camp).where(Camp.id == camp_day.camp_id))
        if camp is None or camp.is_locked:
            raise InvalidStateError("Camp", "locked", detail=CAMP_LOCKED_MESSAGE)
        if camp_day.status == CampDayStatus.FINISHED:
            raise InvalidStateError(
                "Camp day", camp_day.status, detail="Day has already been completed"
            )
        return camp_day

    def _get_record(self, camp_day_id: int, athlete_id: int) -> CampAttendance | None:
        return self._db.scalar(
            select(CampAttendance)
            .where(
                CampAttendance.camp_day_id == camp_day_id,
                CampAttendance.athlete_id == athlete_id,
            )
            .with_for_update()
        )

    @staticmethod
    def to_output(record: CampAttendance) -> dict[str, Any]:
        return {
            "id": record.id,
            "camp_day_id": record.camp_day_id,
            "athlete_id": record.athlete_id,
            "registration_id": record.registration_id,
            "group_id": record.group_id,
            "status": record.status,
            "check_in_time": record.check_in_time,
            "check_in_method": record.check_in_method,
            "check_out_time": record.check_out_time,
            "notes": record.notes,
        }

    # =========================================================================
    # Check-in / check-out
    # =========================================================================

    def check_in(
        self,
        camp_day_id: int,
        athlete_id: int,
        user_id: int | None = None,
        method: str = CheckInMethod.MANUAL,
    ) -> dict[str, Any]:
        """
        Check an athlete in.

        An athlete with a confirmed registration but no row yet (registered
        after the day started) gets one. Starts the day if it was not started.
        """
        if method not in CheckInMethod.ALL:
            raise ValidationError(f"Invalid check-in method: {method}", method=method)

        camp_day = self._get_open_day(camp_day_id)
        record = self._get_record(camp_day_id, athlete_id)

        if record is not None and record.status == AttendanceStatus.CHECKED_IN:
            return {**self.to_output(record), "message": "Athlete is already checked in"}

        if record is None:
            registration = self._db.scalar(
                select(Registration).where(
                    Registration.camp_id == camp_day.camp_id,
                    Registration.athlete_id == athlete_id,
                    Registration.status == RegistrationStatus.CONFIRMED,
                )
            )
            if registration is None:
                raise NotFoundError(
                    "Attendance record",
                    detail="Athlete is not registered for this camp",
                    athlete_id=athlete_id,
                )
            group_id = self._db.scalar(
                select(CamperSessionData.assigned_group_id).where(
                    CamperSessionData.camp_id == camp_day.camp_id,
                    CamperSessionData.athlete_id == athlete_id,
                )
            )
            record = CampAttendance(
                tenant_id=camp_day.tenant_id,
                camp_id=camp_day.camp_id,
                camp_day_id=camp_day.id,
                athlete_id=athlete_id,
                registration_id=registration.id,
                group_id=group_id,
            )
            self._db.add(record)

        record.status = AttendanceStatus.CHECKED_IN
        record.check_in_time = utcnow()
        record.check_in_by_id = user_id
        record.check_in_method = method
        record.check_out_time = None
        record.check_out_by_id = None

        if camp_day.status == CampDayStatus.NOT_STARTED:
            camp_day.status = CampDayStatus.IN_PROGRESS
            camp_day.started_at = utcnow()
            camp_day.started_by_id = user_id

        safe_commit(self._db)
        self._db.refresh(record)

        logger.info(
            "Athlete checked in",
            camp_day_id=camp_day_id,
            athlete_id=athlete_id,
            method=method,
            user_id=user_id,
        )
        return self.to_output(record)

    def check_out(
        self,
        camp_day_id: int,
        athlete_id: int,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        self._get_open_day(camp_day_id)
        record = self._get_record(camp_day_id, athlete_id)
        if record is None:
            raise NotFoundError("Attendance record", athlete_id=athlete_id)
        if record.status != AttendanceStatus.CHECKED_IN:
            raise InvalidStateError(
                "Attendance",
                record.status,
                detail="Athlete is not currently checked in",
            )

        record.status = AttendanceStatus.CHECKED_OUT
        record.check_out_time = utcnow()
        record.check_out_by_id = user_id
        safe_commit(self._db)

        logger.info("Athlete checked out", camp_day_id=camp_day_id, athlete_id=athlete_id, user_id=user_id)
        return self.to_output(record)

    def mark_absent(
        self,
        camp_day_id: int,
        athlete_id: int,
        user_id: int | None = None,
        reason: str | None = None,
    ) -> dict[str, Any]:
        self._get_open_day(camp_day_id)
        record = self._get_record(camp_day_id, athlete_id)
        if record is None:
            raise NotFoundError("Attendance record", athlete_id=athlete_id)

        record.status = AttendanceStatus.ABSENT
        if reason:
            record.notes = f"{record.notes or ''}\n[Absent] {reason}".strip()
        record.set_updated_by(user_id)
        safe_commit(self._db)
        return self.to_output(record)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_roster(self, camp_day_id: int) -> list[dict[str, Any]]:
        """Attendance rows with athlete and group details, by last name."""
        rows = self._db.execute(
            select(CampAttendance, Athlete, CampGroup)
            .join(Athlete, Athlete.id == CampAttendance.athlete_id)
            .outerjoin(CampGroup, CampGroup.id == CampAttendance.group_id)
            .where(CampAttendance.camp_day_id == camp_day_id)
            .order_by(CampAttendance.status, Athlete.last_name, Athlete.first_name)
        ).all()
        return [
            {
                **self.to_output(record),
                "athlete": {
                    "id": athlete.id,
                    "first_name": athlete.first_name,
                    "last_name": athlete.last_name,
                    "medical_notes": athlete.medical_notes,
                },
                "group": (
                    {"id": group.id, "name": group.name, "color": group.color}
                    if group is not None else None
                ),
            }
            for record, athlete, group in rows
        ]

    def get_stats(self, camp_day_id: int) -> dict[str, int]:
        statuses = self._db.execute(
            select(CampAttendance.status).where(CampAttendance.camp_day_id == camp_day_id)
        ).scalars().all()
        stats = {status: statuses.count(status) for status in AttendanceStatus.ALL}
        stats["registered"] = len(statuses)
        stats["on_site"] = stats[AttendanceStatus.CHECKED_IN]
        return stats
