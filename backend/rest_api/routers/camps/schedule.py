"""
Camp schedule endpoints - /api/camps/{camp_id}/schedule/*

Per-day time blocks and applying schedule templates to a day.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from rest_api.routers._common import camp_scope, get_user_id, load_camp_day_for
from rest_api.services.domain import ScheduleService
from shared.infrastructure.db import get_db
from shared.utils.camp_schemas import (
    ApplyTemplateRequest,
    ScheduleBlockCreate,
    ScheduleBlockUpdate,
    ScheduleReorder,
    StartDayRequest,
)
from shared.utils.schemas import ok

router = APIRouter(prefix="/api/camps/{camp_id}/schedule", tags=["camp-schedule"])


@router.get("")
def get_schedule(camp_id: int, db: Session = Depends(get_db), user: dict = Depends(camp_scope)) -> dict:
    return ok(ScheduleService(db).get_camp_schedule(camp_id))


@router.post("/days", status_code=status.HTTP_201_CREATED)
def plan_day(
    camp_id: int,
    body: StartDayRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    """Create a camp day ahead of time so its schedule can be built."""
    return ok(ScheduleService(db).plan_day(camp_id, body.date, get_user_id(user)))


@router.get("/days/{camp_day_id}/blocks")
def list_blocks(
    camp_id: int,
    camp_day_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(ScheduleService(db).list_day_blocks(camp_day_id))


@router.post("/days/{camp_day_id}/blocks", status_code=status.HTTP_201_CREATED)
def create_block(
    camp_id: int,
    camp_day_id: int,
    body: ScheduleBlockCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(ScheduleService(db).create_block(camp_day_id, body, get_user_id(user)))


@router.put("/days/{camp_day_id}/order")
def reorder_blocks(
    camp_id: int,
    camp_day_id: int,
    body: ScheduleReorder,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(ScheduleService(db).reorder_blocks(camp_day_id, body.block_ids, get_user_id(user)))


@router.post("/days/{camp_day_id}/apply-template")
def apply_template(
    camp_id: int,
    camp_day_id: int,
    body: ApplyTemplateRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(ScheduleService(db).apply_template(camp_day_id, body, get_user_id(user)))


@router.delete("/days/{camp_day_id}/blocks")
def clear_day(
    camp_id: int,
    camp_day_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    load_camp_day_for(db, user, camp_id, camp_day_id)
    return ok(ScheduleService(db).clear_day(camp_day_id, get_user_id(user)))


@router.patch("/blocks/{block_id}")
def update_block(
    camp_id: int,
    block_id: int,
    body: ScheduleBlockUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    return ok(ScheduleService(db).update_block(camp_id, block_id, body, get_user_id(user)))


@router.delete("/blocks/{block_id}")
def delete_block(
    camp_id: int,
    block_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(camp_scope),
) -> dict:
    return ok(ScheduleService(db).delete_block(camp_id, block_id, get_user_id(user)))
