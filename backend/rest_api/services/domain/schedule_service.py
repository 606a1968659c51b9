"""
Schedule Domain Service.

Per-day schedule blocks (create, edit, delete, reorder, clear) and reusable
schedule templates that can be copied onto a camp day.
"""

from datetime import date, time
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from rest_api.models import Camp, CampDay, ScheduleBlock, ScheduleTemplate, ScheduleTemplateBlock
from shared.config.constants import CampDayStatus
from shared.config.logging import camp_ops_logger as logger
from shared.infrastructure.db import safe_commit
from shared.utils.camp_schemas import (
    ApplyTemplateRequest,
    ScheduleBlockCreate,
    ScheduleBlockUpdate,
    ScheduleTemplateCreate,
)
from shared.utils.exceptions import InvalidStateError, NotFoundError, ValidationError

from .camp_day_service import CAMP_LOCKED_MESSAGE, CampDayService


def check_time_range(start: time, end: time) -> None:
    if end <= start:
        raise ValidationError("End time must be after start time")


def hhmm(value: time) -> str:
    return value.isoformat(timespec="minutes")


class ScheduleService:
    """Domain service for camp day schedules and schedule templates."""

    def __init__(self, db: Session):
        self._db = db

    def _get_day(self, camp_day_id: int) -> CampDay:
        day = self._db.scalar(
            select(CampDay).where(CampDay.id == camp_day_id, CampDay.is_active.is_(True))
        )
        if not day:
            raise NotFoundError("Camp day", camp_day_id)
        return day

    def _get_editable_day(self, camp_day_id: int) -> CampDay:
        day = self._get_day(camp_day_id)
        camp = self._db.get(Camp, day.camp_id)
        if camp.is_locked:
            raise InvalidStateError("Camp", "locked", detail=CAMP_LOCKED_MESSAGE)
        if day.status == CampDayStatus.FINISHED:
            raise InvalidStateError(
                "Camp day", day.status, detail="Schedule of a completed day cannot change"
            )
        return day

    def _get_block(self, camp_id: int, block_id: int) -> ScheduleBlock:
        block = self._db.scalar(
            select(ScheduleBlock).where(
                ScheduleBlock.id == block_id,
                ScheduleBlock.camp_id == camp_id,
                ScheduleBlock.is_active.is_(True),
            )
        )
        if not block:
            raise NotFoundError("Schedule block", block_id)
        return block

    def _blocks(self, camp_day_id: int) -> list[ScheduleBlock]:
        return list(self._db.execute(
            select(ScheduleBlock)
            .where(ScheduleBlock.camp_day_id == camp_day_id, ScheduleBlock.is_active.is_(True))
            .order_by(ScheduleBlock.order_index, ScheduleBlock.start_time, ScheduleBlock.id)
        ).scalars())

    def _next_order(self, camp_day_id: int) -> int:
        current = self._db.scalar(
            select(func.max(ScheduleBlock.order_index)).where(
                ScheduleBlock.camp_day_id == camp_day_id, ScheduleBlock.is_active.is_(True)
            )
        )
        return 0 if current is None else current + 1

    def _remove_all(self, camp_day_id: int, user_id: int | None) -> int:
        blocks = self._blocks(camp_day_id)
        for block in blocks:
            block.soft_delete(user_id)
        self._db.flush()
        return len(blocks)

    @staticmethod
    def block_output(block: ScheduleBlock) -> dict[str, Any]:
        return {
            "id": block.id,
            "camp_day_id": block.camp_day_id,
            "start_time": hhmm(block.start_time),
            "end_time": hhmm(block.end_time),
            "label": block.label,
            "description": block.description,
            "location": block.location,
            "staff_notes": block.staff_notes,
            "block_type": block.block_type,
            "order_index": block.order_index,
        }

    # =========================================================================
    # Day schedules
    # =========================================================================

    def list_day_blocks(self, camp_day_id: int) -> list[dict[str, Any]]:
        self._get_day(camp_day_id)
        return [self.block_output(b) for b in self._blocks(camp_day_id)]

    def get_camp_schedule(self, camp_id: int) -> list[dict[str, Any]]:
        """Every created day of the camp, in date order, with its blocks."""
        days = self._db.execute(
            select(CampDay)
            .where(CampDay.camp_id == camp_id, CampDay.is_active.is_(True))
            .order_by(CampDay.date)
        ).scalars().all()
        blocks_by_day: dict[int, list[dict[str, Any]]] = {d.id: [] for d in days}
        if days:
            rows = self._db.execute(
                select(ScheduleBlock)
                .where(ScheduleBlock.camp_day_id.in_(list(blocks_by_day)), ScheduleBlock.is_active.is_(True))
                .order_by(ScheduleBlock.order_index, ScheduleBlock.start_time, ScheduleBlock.id)
            ).scalars()
            for block in rows:
                blocks_by_day[block.camp_day_id].append(self.block_output(block))
        return [
            {
                "camp_day_id": d.id,
                "date": d.date,
                "day_number": d.day_number,
                "title": d.title,
                "status": d.status,
                "blocks": blocks_by_day[d.id],
            }
            for d in days
        ]

    def plan_day(self, camp_id: int, day: date, user_id: int | None = None) -> dict[str, Any]:
        """Create the day row ahead of time so its schedule can be prepared."""
        camp = self._db.get(Camp, camp_id)
        if camp is None or not camp.is_active:
            raise NotFoundError("Camp", camp_id)
        if camp.is_locked:
            raise InvalidStateError("Camp", "locked", detail=CAMP_LOCKED_MESSAGE)
        camp_day = CampDayService(self._db).get_or_create_camp_day(camp_id, day)
        logger.info("Camp day planned", camp_id=camp_id, camp_day_id=camp_day.id, user_id=user_id)
        return {
            "camp_day_id": camp_day.id,
            "date": camp_day.date,
            "day_number": camp_day.day_number,
            "title": camp_day.title,
            "status": camp_day.status,
            "blocks": self.list_day_blocks(camp_day.id),
        }

    def create_block(
        self, camp_day_id: int, body: ScheduleBlockCreate, user_id: int | None = None
    ) -> dict[str, Any]:
        day = self._get_editable_day(camp_day_id)
        check_time_range(body.start_time, body.end_time)

        block = ScheduleBlock(
            tenant_id=day.tenant_id,
            camp_id=day.camp_id,
            camp_day_id=day.id,
            start_time=body.start_time,
            end_time=body.end_time,
            label=body.label,
            description=body.description,
            location=body.location,
            staff_notes=body.staff_notes,
            block_type=body.block_type,
            order_index=body.order_index if body.order_index is not None else self._next_order(day.id),
        )
        block.set_created_by(user_id)
        self._db.add(block)
        safe_commit(self._db)
        self._db.refresh(block)
        return self.block_output(block)

    def update_block(
        self, camp_id: int, block_id: int, body: ScheduleBlockUpdate, user_id: int | None = None
    ) -> dict[str, Any]:
        block = self._get_block(camp_id, block_id)
        self._get_editable_day(block.camp_day_id)

        changes = body.model_dump(exclude_unset=True)
        if changes.get("label", "") is None:
            raise ValidationError("Label cannot be empty")
        check_time_range(
            changes.get("start_time") or block.start_time,
            changes.get("end_time") or block.end_time,
        )
        for name, value in changes.items():
            if name in ("start_time", "end_time", "block_type") and value is None:
                continue
            setattr(block, name, value)
        block.set_updated_by(user_id)
        safe_commit(self._db)
        return self.block_output(block)

    def delete_block(self, camp_id: int, block_id: int, user_id: int | None = None) -> dict[str, Any]:
        block = self._get_block(camp_id, block_id)
        self._get_editable_day(block.camp_day_id)
        block.soft_delete(user_id)
        safe_commit(self._db)
        logger.info("Schedule block deleted", block_id=block_id, user_id=user_id)
        return {"deleted": True}

    def reorder_blocks(
        self, camp_day_id: int, block_ids: list[int], user_id: int | None = None
    ) -> list[dict[str, Any]]:
        """`block_ids` must list every block of the day exactly once, in the new order."""
        self._get_editable_day(camp_day_id)
        blocks = {b.id: b for b in self._blocks(camp_day_id)}
        if len(set(block_ids)) != len(block_ids) or set(block_ids) != set(blocks):
            raise ValidationError(
                "Reorder must list every block of the day exactly once",
                camp_day_id=camp_day_id,
            )
        for position, block_id in enumerate(block_ids):
            blocks[block_id].order_index = position
            blocks[block_id].set_updated_by(user_id)
        safe_commit(self._db)
        return [self.block_output(blocks[block_id]) for block_id in block_ids]

    def clear_day(self, camp_day_id: int, user_id: int | None = None) -> dict[str, Any]:
        self._get_editable_day(camp_day_id)
        removed = self._remove_all(camp_day_id, user_id)
        safe_commit(self._db)
        logger.info("Day schedule cleared", camp_day_id=camp_day_id, removed=removed, user_id=user_id)
        return {"removed": removed}

    # =========================================================================
    # Templates
    # =========================================================================

    @staticmethod
    def template_output(template: ScheduleTemplate) -> dict[str, Any]:
        return {
            "id": template.id,
            "name": template.name,
            "description": template.description,
            "total_days": template.total_days,
            "is_global": template.tenant_id is None,
            "blocks": [
                {
                    "day_number": b.day_number,
                    "start_time": hhmm(b.start_time),
                    "end_time": hhmm(b.end_time),
                    "label": b.label,
                    "description": b.description,
                    "default_location": b.default_location,
                    "block_type": b.block_type,
                }
                for b in sorted(template.blocks, key=lambda b: (b.day_number, b.order_index))
            ],
        }

    def create_template(
        self,
        tenant_id: int | None,
        body: ScheduleTemplateCreate,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        """Create a template for `tenant_id`, or a global one when it is None."""
        for item in body.blocks:
            check_time_range(item.start_time, item.end_time)

        template = ScheduleTemplate(
            tenant_id=tenant_id,
            name=body.name,
            description=body.description,
            total_days=max(item.day_number for item in body.blocks),
        )
        positions: dict[int, int] = {}
        for item in body.blocks:
            position = positions.get(item.day_number, 0)
            positions[item.day_number] = position + 1
            template.blocks.append(ScheduleTemplateBlock(
                day_number=item.day_number,
                start_time=item.start_time,
                end_time=item.end_time,
                label=item.label,
                description=item.description,
                default_location=item.default_location,
                block_type=item.block_type,
                order_index=position,
            ))
        template.set_created_by(user_id)
        self._db.add(template)
        safe_commit(self._db)
        self._db.refresh(template)

        logger.info("Schedule template created", template_id=template.id, tenant_id=tenant_id)
        return self.template_output(template)

    def _visible_templates(self, tenant_id: int | None):
        query = (
            select(ScheduleTemplate)
            .options(selectinload(ScheduleTemplate.blocks))
            .where(ScheduleTemplate.is_active.is_(True))
        )
        if tenant_id is not None:
            query = query.where(
                or_(ScheduleTemplate.tenant_id.is_(None), ScheduleTemplate.tenant_id == tenant_id)
            )
        return query

    def list_templates(self, tenant_id: int | None) -> list[dict[str, Any]]:
        """Global templates plus the licensee's own; HQ (tenant_id None) sees all."""
        templates = self._db.execute(
            self._visible_templates(tenant_id).order_by(
                ScheduleTemplate.tenant_id.is_not(None), ScheduleTemplate.name
            )
        ).scalars()
        return [self.template_output(t) for t in templates]

    def apply_template(
        self, camp_day_id: int, body: ApplyTemplateRequest, user_id: int | None = None
    ) -> list[dict[str, Any]]:
        """
        Copy a template day onto a camp day. The template day defaults to the
        camp day's number and falls back to template day 1 when the template
        is shorter than the camp.
        """
        day = self._get_editable_day(camp_day_id)
        template = self._db.scalar(
            self._visible_templates(day.tenant_id).where(ScheduleTemplate.id == body.template_id)
        )
        if template is None:
            raise NotFoundError("Schedule template", body.template_id)

        wanted = body.day_number or day.day_number
        source = [b for b in template.blocks if b.day_number == wanted]
        if not source:
            source = [b for b in template.blocks if b.day_number == 1]
        if not source:
            raise ValidationError("Template has no blocks for this day", template_id=template.id)

        if body.replace_existing:
            self._remove_all(day.id, user_id)
            start = 0
        else:
            start = self._next_order(day.id)

        for offset, item in enumerate(sorted(source, key=lambda b: b.order_index)):
            block = ScheduleBlock(
                tenant_id=day.tenant_id,
                camp_id=day.camp_id,
                camp_day_id=day.id,
                start_time=item.start_time,
                end_time=item.end_time,
                label=item.label,
                description=item.description,
                location=item.default_location,
                block_type=item.block_type,
                order_index=start + offset,
            )
            block.set_created_by(user_id)
            self._db.add(block)
        safe_commit(self._db)

        logger.info(
            "Schedule template applied",
            camp_day_id=day.id,
            template_id=template.id,
            blocks=len(source),
            replaced=body.replace_existing,
            user_id=user_id,
        )
        return [self.block_output(b) for b in self._blocks(day.id)]
