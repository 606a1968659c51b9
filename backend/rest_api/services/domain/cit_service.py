"""
CIT (Counselor-in-Training) Domain Service.

Applications move through the CIT pipeline; every change is recorded as
a progress event so the history can be replayed.
"""

from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from rest_api.models import Camp, CitApplication, CitAssignment, CitProgressEvent
from shared.config.constants import (
    CIT_APPLICATION_MACHINE,
    CitApplicationStatus,
    CitProgressEventType,
    Limits,
)
from shared.config.logging import get_logger
from shared.infrastructure.db import safe_commit
from shared.utils.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from shared.utils.validators import escape_like_pattern, sanitize_search_term

logger = get_logger(__name__)

APPLICATION_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "school_name",
    "grade",
    "parent_name",
    "parent_email",
    "why_interested",
)


class CitService:
    """Domain service for CIT applications."""

    def __init__(self, db: Session):
        self._db = db

    def _get(self, application_id: int, with_history: bool = False) -> CitApplication:
        query = select(CitApplication).where(
            CitApplication.id == application_id,
            CitApplication.is_active.is_(True),
        )
        if with_history:
            query = query.options(
                selectinload(CitApplication.events),
                selectinload(CitApplication.assignments),
            )
        application = self._db.scalar(query)
        if not application:
            raise NotFoundError("CIT application", application_id)
        return application

    def _record(
        self,
        application: CitApplication,
        event_type: str,
        details: str | None,
        user_id: int | None,
        from_status: str | None = None,
        to_status: str | None = None,
    ) -> CitProgressEvent:
        event = CitProgressEvent(
            tenant_id=application.tenant_id,
            application_id=application.id,
            event_type=event_type,
            from_status=from_status,
            to_status=to_status,
            details=details,
        )
        event.set_created_by(user_id)
        self._db.add(event)
        return event

    @staticmethod
    def to_output(application: CitApplication) -> dict[str, Any]:
        output = {field: getattr(application, field) for field in APPLICATION_FIELDS}
        output.update({
            "id": application.id,
            "tenant_id": application.tenant_id,
            "user_id": application.user_id,
            "status": application.status,
            "internal_notes": application.internal_notes,
            "created_at": application.created_at,
            "updated_at": application.updated_at,
        })
        return output

    @staticmethod
    def event_output(event: CitProgressEvent) -> dict[str, Any]:
        return {
            "id": event.id,
            "event_type": event.event_type,
            "from_status": event.from_status,
            "to_status": event.to_status,
            "details": event.details,
            "changed_by_id": event.created_by_id,
            "created_at": event.created_at,
        }

    # =========================================================================
    # Applications
    # =========================================================================

    def create_application(
        self,
        tenant_id: int,
        data: dict[str, Any],
        user_id: int | None = None,
    ) -> dict[str, Any]:
        values = {k: v for k, v in data.items() if k in APPLICATION_FIELDS}
        if not values.get("first_name") or not values.get("last_name") or not values.get("email"):
            raise ValidationError("First name, last name and email are required")

        application = CitApplication(
            tenant_id=tenant_id,
            user_id=user_id,
            status=CitApplicationStatus.APPLIED,
            **values,
        )
        application.set_created_by(user_id)
        self._db.add(application)
        self._db.flush()
        self._record(
            application,
            CitProgressEventType.STATUS_CHANGE,
            "Application submitted",
            user_id,
            to_status=CitApplicationStatus.APPLIED,
        )
        safe_commit(self._db)
        self._db.refresh(application)

        logger.info("CIT application created", application_id=application.id, tenant_id=tenant_id)
        return self.to_output(application)

    def list_applications(
        self,
        tenant_id: int | None = None,
        status: str | None = None,
        search: str | None = None,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> dict[str, Any]:
        query = select(CitApplication).where(CitApplication.is_active.is_(True))
        if tenant_id is not None:
            query = query.where(CitApplication.tenant_id == tenant_id)
        if status:
            query = query.where(CitApplication.status == status)
        term = sanitize_search_term(search)
        if term:
            pattern = f"%{escape_like_pattern(term)}%"
            query = query.where(
                or_(
                    CitApplication.first_name.ilike(pattern, escape="\\"),
                    CitApplication.last_name.ilike(pattern, escape="\\"),
                    CitApplication.email.ilike(pattern, escape="\\"),
                    CitApplication.school_name.ilike(pattern, escape="\\"),
                )
            )

        total = self._db.scalar(select(func.count()).select_from(query.subquery())) or 0
        applications = self._db.execute(
            query.order_by(CitApplication.created_at.desc(), CitApplication.id.desc())
            .limit(min(limit, Limits.MAX_PAGE_SIZE))
            .offset(offset)
        ).scalars()
        return {"applications": [self.to_output(a) for a in applications], "total_count": total}

    def get_application(self, application_id: int) -> dict[str, Any]:
        """Application with its progress history and camp assignments."""
        application = self._get(application_id, with_history=True)
        output = self.to_output(application)
        output["events"] = [
            self.event_output(e)
            for e in sorted(application.events, key=lambda e: (e.created_at, e.id))
        ]
        output["assignments"] = [
            {
                "id": a.id,
                "camp_id": a.camp_id,
                "role": a.role,
                "assignment_status": a.assignment_status,
                "notes": a.notes,
            }
            for a in application.assignments
            if a.is_active
        ]
        return output

    def update_status(
        self,
        application_id: int,
        new_status: str,
        user_id: int | None = None,
        details: str | None = None,
        internal_notes: str | None = None,
    ) -> dict[str, Any]:
        application = self._get(application_id)
        old_status = application.status
        if not CIT_APPLICATION_MACHINE.can_transition(old_status, new_status):
            raise InvalidTransitionError("CIT application", old_status, new_status)

        application.status = new_status
        if internal_notes is not None:
            application.internal_notes = internal_notes
        application.set_updated_by(user_id)
        self._record(
            application,
            CitProgressEventType.STATUS_CHANGE,
            details or f"Status changed from {old_status} to {new_status}",
            user_id,
            from_status=old_status,
            to_status=new_status,
        )
        safe_commit(self._db)

        logger.info(
            "CIT application status changed",
            application_id=application_id,
            old_status=old_status,
            new_status=new_status,
        )
        return self.to_output(application)

    def update_notes(self, application_id: int, notes: str, user_id: int | None = None) -> dict[str, Any]:
        application = self._get(application_id)
        application.internal_notes = notes
        application.set_updated_by(user_id)
        self._record(application, CitProgressEventType.NOTE_ADDED, "Internal notes updated", user_id)
        safe_commit(self._db)
        return self.to_output(application)

    def add_event(
        self,
        application_id: int,
        event_type: str,
        details: str | None = None,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        if event_type not in CitProgressEventType.ALL:
            raise ValidationError(f"Invalid event type: {event_type}", event_type=event_type)
        application = self._get(application_id)
        event = self._record(application, event_type, details, user_id)
        safe_commit(self._db)
        self._db.refresh(event)
        return self.event_output(event)

    def assign_to_camp(
        self,
        application_id: int,
        camp_id: int,
        user_id: int | None = None,
        role: str = "cit",
        notes: str | None = None,
    ) -> dict[str, Any]:
        application = self._get(application_id)
        camp = self._db.scalar(select(Camp).where(Camp.id == camp_id, Camp.is_active.is_(True)))
        if not camp:
            raise NotFoundError("Camp", camp_id)

        assignment = CitAssignment(
            tenant_id=application.tenant_id,
            application_id=application.id,
            camp_id=camp_id,
            role=role,
            assignment_status="planned",
            notes=notes,
        )
        assignment.set_created_by(user_id)
        self._db.add(assignment)
        self._record(
            application,
            CitProgressEventType.CAMP_ASSIGNED,
            f"Assigned to camp {camp.name}",
            user_id,
        )
        safe_commit(self._db)
        self._db.refresh(assignment)
        return {
            "id": assignment.id,
            "application_id": application.id,
            "camp_id": camp_id,
            "role": assignment.role,
            "assignment_status": assignment.assignment_status,
            "notes": assignment.notes,
        }

    def counts_by_status(self, tenant_id: int | None = None) -> dict[str, int]:
        query = (
            select(CitApplication.status, func.count(CitApplication.id))
            .where(CitApplication.is_active.is_(True))
            .group_by(CitApplication.status)
        )
        if tenant_id is not None:
            query = query.where(CitApplication.tenant_id == tenant_id)
        counts = dict(self._db.execute(query).all())
        return {status: counts.get(status, 0) for status in CitApplicationStatus.ALL}
