"""
Tests for CampConclusionService.

Covers validation blockers and warnings, the conclusion transaction,
the overview report and lock / unlock / archive.
"""

import json
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from rest_api.models import Camp, CampAttendance, CampDay, OutboxEvent, Registration
from rest_api.services.domain import AttendanceService, CampConclusionService, CampDayService
from rest_api.services.domain.conclusion_service import rate, summarize_revenue
from shared.config.constants import AttendanceStatus, CampDayStatus, CampStatus, RegistrationStatus
from shared.infrastructure.events import CAMP_CONCLUDED
from shared.utils.camp_schemas import IncidentCreate
from shared.utils.exceptions import InvalidStateError, ValidationError


class TestHelpers:

    def test_rate_rounds_half_up(self):
        assert rate(1, 3) == 33
        assert rate(2, 3) == 67
        assert rate(1, 2) == 50

    def test_rate_zero_denominator(self):
        assert rate(5, 0) == 0

    def test_summarize_revenue(self):
        registrations = [
            Registration(total_price_cents=30000, addons_total_cents=5000, refund_amount_cents=0),
            Registration(total_price_cents=27000, addons_total_cents=0, refund_amount_cents=7000),
        ]
        assert summarize_revenue(registrations) == {
            "gross_revenue_cents": 57000,
            "registration_revenue_cents": 52000,
            "addon_revenue_cents": 5000,
            "refunds_cents": 7000,
            "net_revenue_cents": 50000,
        }


class TestValidateForConclusion:

    def test_fresh_camp_warns_about_unstarted_days(self, db_session, seed_camp):
        result = CampConclusionService(db_session).validate_for_conclusion(
            seed_camp.id, today=seed_camp.end_date + timedelta(days=1)
        )
        assert result["can_conclude"] is True
        assert result["blockers"] == []
        assert "3 day(s) were never started" in result["warnings"]

    def test_end_date_not_passed_warning(self, db_session, seed_camp):
        result = CampConclusionService(db_session).validate_for_conclusion(
            seed_camp.id, today=seed_camp.start_date
        )
        assert any("has not passed yet" in w for w in result["warnings"])

    def test_locked_camp_is_blocked(self, db_session, seed_camp):
        seed_camp.is_locked = True
        db_session.commit()
        result = CampConclusionService(db_session).validate_for_conclusion(seed_camp.id)
        assert result["can_conclude"] is False
        assert "Camp is locked" in result["blockers"]

    def test_cancelled_camp_is_blocked(self, db_session, seed_camp):
        seed_camp.status = CampStatus.CANCELLED
        db_session.commit()
        result = CampConclusionService(db_session).validate_for_conclusion(seed_camp.id)
        assert "Camp has been cancelled" in result["blockers"]

    def test_open_work_is_reported(self, db_session, seed_camp, confirmed_campers, seed_athletes):
        days = CampDayService(db_session)
        day = days.start_camp_day(seed_camp.id, seed_camp.start_date)["day"]
        AttendanceService(db_session).check_in(day["id"], seed_athletes[0].id)
        days.report_incident(day["id"], IncidentCreate(severity="low", description="Scrape"))

        warnings = CampConclusionService(db_session).validate_for_conclusion(
            seed_camp.id, today=seed_camp.end_date
        )["warnings"]

        assert "1 day(s) are still in progress" in warnings
        assert "1 camper(s) were never checked out across all days" in warnings
        assert "1 incident(s) are unresolved" in warnings


class TestConcludeCamp:

    def test_conclude_finishes_days_and_marks_absent(self, db_session, seed_camp, confirmed_campers, seed_athletes):
        day = CampDayService(db_session).start_camp_day(seed_camp.id, seed_camp.start_date)["day"]
        AttendanceService(db_session).check_in(day["id"], seed_athletes[0].id)

        result = CampConclusionService(db_session).conclude_camp(
            seed_camp.id, user_id=1, today=seed_camp.end_date
        )

        assert result["success"] is True
        assert result["camp"]["status"] == CampStatus.COMPLETED
        assert result["camp"]["is_locked"] is True
        assert result["camp"]["lock_reason"] == "Camp concluded"

        db_session.expire_all()
        camp_day = db_session.get(CampDay, day["id"])
        assert camp_day.status == CampDayStatus.FINISHED
        statuses = {
            r.athlete_id: r.status
            for r in db_session.execute(select(CampAttendance)).scalars()
        }
        assert statuses[seed_athletes[0].id] == AttendanceStatus.CHECKED_IN
        assert statuses[seed_athletes[1].id] == AttendanceStatus.ABSENT

    def test_conclude_notifies_parents(self, db_session, seed_camp, confirmed_campers, seed_parent_user):
        CampConclusionService(db_session).conclude_camp(seed_camp.id, user_id=1)

        event = db_session.scalar(select(OutboxEvent).where(OutboxEvent.event_type == CAMP_CONCLUDED))
        payload = json.loads(event.payload)
        assert [r["user_id"] for r in payload["recipients"]] == [seed_parent_user.id]

    def test_conclude_without_lock(self, db_session, seed_camp):
        result = CampConclusionService(db_session).conclude_camp(seed_camp.id, user_id=1, lock_camp=False)
        assert result["camp"]["is_locked"] is False
        assert result["camp"]["status"] == CampStatus.COMPLETED

    def test_completed_camp_cannot_conclude_again(self, db_session, seed_camp):
        service = CampConclusionService(db_session)
        service.conclude_camp(seed_camp.id, user_id=1, lock_camp=False)

        with pytest.raises(InvalidStateError):
            service.conclude_camp(seed_camp.id, user_id=1)

    def test_blocked_conclusion_writes_nothing(self, db_session, seed_camp, confirmed_campers):
        seed_camp.is_locked = True
        db_session.commit()

        with pytest.raises(InvalidStateError):
            CampConclusionService(db_session).conclude_camp(seed_camp.id, user_id=1)

        db_session.expire_all()
        assert db_session.get(Camp, seed_camp.id).status == CampStatus.IN_PROGRESS
        assert db_session.scalar(select(OutboxEvent)) is None

    def test_force_overrides_blockers(self, db_session, seed_camp):
        seed_camp.is_locked = True
        db_session.commit()
        result = CampConclusionService(db_session).conclude_camp(seed_camp.id, user_id=1, force=True)
        assert result["camp"]["status"] == CampStatus.COMPLETED


class TestConclusionOverview:

    def test_overview_aggregates(self, db_session, seed_camp, confirmed_campers, seed_athletes):
        day = CampDayService(db_session).start_camp_day(seed_camp.id, seed_camp.start_date)["day"]
        AttendanceService(db_session).check_in(day["id"], seed_athletes[0].id)
        CampDayService(db_session).end_camp_day(day["id"], user_id=1)

        confirmed_campers[1].refund_amount_cents = 10000
        confirmed_campers[1].status = RegistrationStatus.REFUNDED
        db_session.commit()

        overview = CampConclusionService(db_session).get_conclusion_overview(seed_camp.id)

        assert overview["camp"]["tenant_name"] == "Test Sports Camps"
        assert overview["attendance"]["total_expected"] == 2
        assert overview["attendance"]["total_attended"] == 1
        assert overview["attendance"]["attendance_rate"] == 50
        assert overview["attendance"]["daily_breakdown"][0]["absent"] == 1
        assert overview["capacity"] == {"registered": 1, "capacity": 40, "utilization_rate": 3}
        assert overview["revenue"]["gross_revenue_cents"] == 60000
        assert overview["revenue"]["net_revenue_cents"] == 50000
        assert overview["days_summary"] == {"total": 3, "completed": 1, "not_started": 0, "in_progress": 0}
        assert overview["has_groups"] is False

    def test_overview_without_days(self, db_session, seed_camp):
        overview = CampConclusionService(db_session).get_conclusion_overview(seed_camp.id)
        assert overview["attendance"]["average_daily_attendance"] == 0
        assert overview["recaps"] == []


class TestLockUnlockArchive:

    def test_lock_and_unlock(self, db_session, seed_camp):
        service = CampConclusionService(db_session)
        locked = service.lock_camp(seed_camp.id, user_id=1, reason="Audit")
        assert locked["is_locked"] is True
        assert locked["lock_reason"] == "Audit"

        unlocked = service.unlock_camp(seed_camp.id, user_id=1)
        assert unlocked["is_locked"] is False
        assert unlocked["lock_reason"] is None

    def test_default_lock_reason(self, db_session, seed_camp):
        locked = CampConclusionService(db_session).lock_camp(seed_camp.id, user_id=1)
        assert locked["lock_reason"] == "Locked by administrator"

    def test_archive_requires_finished_camp(self, db_session, seed_camp):
        with pytest.raises(ValidationError):
            CampConclusionService(db_session).archive_camp(seed_camp.id, user_id=1)

    def test_archive_completed_camp(self, db_session, seed_camp):
        service = CampConclusionService(db_session)
        service.conclude_camp(seed_camp.id, user_id=1)

        assert service.archive_camp(seed_camp.id, user_id=1) == {"archived": True, "camp_id": seed_camp.id}

        db_session.expire_all()
        camp = db_session.get(Camp, seed_camp.id)
        assert camp.is_active is False
        assert camp.lock_reason == "Archived"
