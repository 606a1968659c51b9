"""
Writing side effects into the outbox.

Notifications and emails are never sent inline. Services add an OutboxEvent
in the same session as the change that caused it, so both commit or roll
back together; the outbox processor delivers them afterwards.

    day.status = CampDayStatus.FINISHED
    write_notification_event(
        db, camp.tenant_id, CAMP_DAY_RECAP_EMAIL, "camp_day", day.id,
        recipients=[recipient_from_user(p) for p in parents],
        data={"camp_name": camp.name, "day_number": day.day_number},
    )
    safe_commit(db)
"""

import json
from typing import Any, Iterable

from sqlalchemy.orm import Session

from rest_api.models import OutboxEvent, OutboxStatus, User
from shared.config.logging import get_logger
from shared.infrastructure.events import EMAIL_SEND

logger = get_logger(__name__)


def write_outbox_event(
    db: Session,
    tenant_id: int,
    event_type: str,
    aggregate_type: str,
    aggregate_id: int,
    payload: dict[str, Any],
) -> OutboxEvent:
    """Add a PENDING event to the session. The caller owns the commit."""
    event = OutboxEvent(
        tenant_id=tenant_id,
        event_type=event_type,
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        payload=json.dumps(payload, default=str),
        status=OutboxStatus.PENDING,
        retry_count=0,
    )
    db.add(event)
    logger.debug(
        "Outbox event queued",
        event_type=event_type,
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
    )
    return event


def recipient_from_user(user: User) -> dict[str, Any]:
    """Snapshot of a user for delivery, resolved at write time."""
    return {
        "user_id": user.id,
        "email": user.email,
        "name": user.full_name or user.email,
    }


def write_notification_event(
    db: Session,
    tenant_id: int,
    event_type: str,
    aggregate_type: str,
    aggregate_id: int,
    recipients: Iterable[dict[str, Any]],
    data: dict[str, Any] | None = None,
    actor_user_id: int | None = None,
) -> OutboxEvent | None:
    """
    Write a domain event addressed to a set of users.

    Recipients are de-duplicated by user id. Nothing is written when there
    is nobody to notify.
    """
    unique: dict[int, dict[str, Any]] = {}
    for r in recipients:
        unique.setdefault(r["user_id"], r)

    if not unique:
        logger.debug("No recipients for event", event_type=event_type, aggregate_id=aggregate_id)
        return None

    payload = {
        "recipients": list(unique.values()),
        "data": data or {},
        "actor_user_id": actor_user_id,
    }
    return write_outbox_event(
        db=db,
        tenant_id=tenant_id,
        event_type=event_type,
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        payload=payload,
    )


def write_email_event(
    db: Session,
    tenant_id: int,
    user_id: int,
    to: str,
    subject: str,
    text: str,
    source_event_type: str | None = None,
) -> OutboxEvent:
    """Queue a single email. Each email retries independently of the others."""
    return write_outbox_event(
        db=db,
        tenant_id=tenant_id,
        event_type=EMAIL_SEND,
        aggregate_type="user",
        aggregate_id=user_id,
        payload={
            "to": to,
            "subject": subject,
            "text": text,
            "source_event_type": source_event_type,
        },
    )
