"""
Camp HQ endpoints - /api/camps/{camp_id}/hq/*

Daily operations (start/end day, attendance, incidents) and the
end-of-session conclusion workflow.
"""

from datetime import date

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from rest_api.routers._common import (
    camp_scope,
    get_user_id,
    load_camp_day_for,
    load_camp_for,
    require_admin,
    require_camp_management,
)
from rest_api.services.domain import AttendanceService, CampConclusionService, CampDayService
from shared.infrastructure.db import get_db
from shared.utils.camp_schemas import (
    AbsentRequest,
    CheckInRequest,
    CheckOutRequest,
    ConcludeRequest,
    DayNotesUpdate,
    DayStatusUpdate,
    EndDayRequest,
    IncidentCreate,
    LockRequest,
    StartDayRequest,
)
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/camps/{camp_id}/hq", tags=["camp-hq"])


# =============================================================================
# Camp days
# =============================================================================


@router.get("/days")
def list_days(camp_id: int, db: Session = Depends(get_db), user: dict = Depends(camp_scope)) -> dict:
    return ok(CampDayService(db).list_camp_days(camp_id))


@router.post("/day/start")
def start_day(
    camp_id: int,
    body: StartDayRequest | None = None,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    """Start (or resume) the camp day for the given date, today by default."""
    day = body.date if body else date.today()
    return ok(CampDayService(db).start_camp_day(camp_id, day, get_user_id(user)))


@router.get("/day/{camp_day_id}")
def get_day(
    camp_id: int,
    camp_day_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(CampDayService(db).get_camp_day_with_details(camp_day_id))


@router.post("/day/{camp_day_id}/end")
def end_day(
    camp_id: int,
    camp_day_id: int,
    body: EndDayRequest | None = None,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    """
    End the camp day: check out remaining campers, mark no-shows absent,
    save the recap and queue recap emails to parents.
    """
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(CampDayService(db).end_camp_day(camp_day_id, get_user_id(user), body or EndDayRequest()))


@router.patch("/day/{camp_day_id}/notes")
def update_day_notes(
    camp_id: int,
    camp_day_id: int,
    body: DayNotesUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(CampDayService(db).update_camp_day_notes(camp_day_id, body.notes, get_user_id(user)))


@router.patch("/day/{camp_day_id}/status")
def update_day_status(
    camp_id: int,
    camp_day_id: int,
    body: DayStatusUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(CampDayService(db).update_camp_day_status(camp_day_id, body.status, get_user_id(user)))


# =============================================================================
# Attendance
# =============================================================================


@router.post("/day/{camp_day_id}/check-in")
def check_in(
    camp_id: int,
    camp_day_id: int,
    body: CheckInRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(AttendanceService(db).check_in(camp_day_id, body.athlete_id, get_user_id(user), body.method))


@router.post("/day/{camp_day_id}/check-out")
def check_out(
    camp_id: int,
    camp_day_id: int,
    body: CheckOutRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(AttendanceService(db).check_out(camp_day_id, body.athlete_id, get_user_id(user)))


@router.post("/day/{camp_day_id}/absent")
def mark_absent(
    camp_id: int,
    camp_day_id: int,
    body: AbsentRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(AttendanceService(db).mark_absent(camp_day_id, body.athlete_id, get_user_id(user), body.reason))


@router.get("/day/{camp_day_id}/roster")
def roster(
    camp_id: int,
    camp_day_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    service = AttendanceService(db)
    return ok({"roster": service.get_roster(camp_day_id), "stats": service.get_stats(camp_day_id)})


# =============================================================================
# Incidents
# =============================================================================


@router.post("/day/{camp_day_id}/incidents", status_code=status.HTTP_201_CREATED)
def report_incident(
    camp_id: int,
    camp_day_id: int,
    body: IncidentCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(CampDayService(db).report_incident(camp_day_id, body, get_user_id(user)))


@router.post("/incidents/{incident_id}/resolve")
def resolve_incident(
    camp_id: int,
    incident_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    return ok(CampDayService(db).resolve_incident(incident_id, get_user_id(user), camp_id=camp_id))


# =============================================================================
# Conclusion workflow
# =============================================================================


@router.get("/conclusion")
def conclusion_overview(
    camp_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    return ok(CampConclusionService(db).get_conclusion_overview(camp_id))


@router.get("/conclusion/validate")
def validate_conclusion(
    camp_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    return ok(CampConclusionService(db).validate_for_conclusion(camp_id))


@router.post("/conclude")
def conclude(
    camp_id: int,
    body: ConcludeRequest | None = None,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    load_camp_for(db, user, camp_id)
    options = body or ConcludeRequest()
    return ok(CampConclusionService(db).conclude_camp(
        camp_id, get_user_id(user), lock_camp=options.lock_camp, force=options.force
    ))


@router.post("/lock")
def lock(
    camp_id: int,
    body: LockRequest | None = None,
    db: Session = Depends(get_db),
    user: dict = Depends(require_camp_management),
) -> dict:
    load_camp_for(db, user, camp_id)
    reason = body.reason if body else None
    return ok(CampConclusionService(db).lock_camp(camp_id, get_user_id(user), reason))


@router.post("/unlock")
def unlock(
    camp_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(CampConclusionService(db).unlock_camp(camp_id, get_user_id(user)))


@router.post("/archive")
def archive(
    camp_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
) -> dict:
    load_camp_for(db, user, camp_id)
    return ok(CampConclusionService(db).archive_camp(camp_id, get_user_id(user)))
