"""
Notification dispatcher: turns outbox domain events into deliveries.

For each recipient of a domain event:
- an in-app Notification row is written (same session as the outbox update)
- a realtime event is pushed to Redis channel `user:{id}` (best effort,
  the inbox row is the durable copy)
- for email-worthy events, an `email.send` outbox event is queued so each
  email retries on its own
"""

from __future__ import annotations

import json
from typing import Any, Callable

import redis.asyncio as redis
from sqlalchemy.orm import Session

from rest_api.models import Notification, OutboxEvent
from rest_api.services.events.email_client import EmailClient
from rest_api.services.events.outbox_service import write_email_event
from shared.config.logging import get_logger
from shared.infrastructure.events import (
    Event,
    channel_user,
    publish_event,
    REGISTRATION_CONFIRMED,
    PAYMENT_FAILED,
    REFUND_PROCESSED,
    CAMP_DAY_RECAP_EMAIL,
    CAMP_SESSION_RECAP_EMAIL,
    CAMP_CONCLUDED,
    ROYALTY_INVOICE_CREATED,
    ROYALTY_INVOICE_STATUS_CHANGED,
    MESSAGE_RECEIVED,
    EMAIL_SEND,
)
from shared.utils.money import format_cents

logger = get_logger(__name__)


# =============================================================================
# Templates
# =============================================================================


def _registration_confirmed(data: dict[str, Any]) -> tuple[str, str]:
    athletes = ", ".join(data.get("athlete_names", []))
    return (
        f"Registration confirmed: {data.get('camp_name', 'camp')}",
        f"{athletes} {'are' if len(data.get('athlete_names', [])) > 1 else 'is'} registered. "
        f"Total paid {format_cents(data.get('total_paid_cents', 0))}. "
        f"Confirmation number {data.get('confirmation_number', '')}.",
    )


def _payment_failed(data: dict[str, Any]) -> tuple[str, str]:
    return (
        "Payment failed",
        f"We could not process your payment for {data.get('camp_name', 'your camp registration')}. "
        "Please try again.",
    )


def _refund_processed(data: dict[str, Any]) -> tuple[str, str]:
    kind = "Full refund" if data.get("full_refund") else "Partial refund"
    return (
        f"{kind} processed",
        f"{format_cents(data.get('amount_refunded_cents', 0))} was refunded for "
        f"{data.get('camp_name', 'your registration')}.",
    )


def _camp_day_recap(data: dict[str, Any]) -> tuple[str, str]:
    lines = [f"Day {data.get('day_number')} at {data.get('camp_name')} is a wrap!"]
    if data.get("word_of_the_day"):
        lines.append(f"Word of the day: {data['word_of_the_day']}")
    sports = [s for s in (data.get("primary_sport"), data.get("secondary_sport")) if s]
    if sports:
        lines.append(f"Today we played: {', '.join(sports)}")
    if data.get("guest_speaker"):
        lines.append(f"Guest speaker: {data['guest_speaker']}")
    return f"{data.get('camp_name')}: Day {data.get('day_number')} recap", "\n".join(lines)


def _camp_session_recap(data: dict[str, Any]) -> tuple[str, str]:
    return (
        f"{data.get('camp_name')}: session recap",
        f"Thank you for a great {data.get('total_days')}-day camp! "
        "Here is a look back at the session.",
    )


def _camp_concluded(data: dict[str, Any]) -> tuple[str, str]:
    return (
        f"Camp concluded: {data.get('camp_name')}",
        f"{data.get('camp_name')} has been concluded and its final report is available.",
    )


def _royalty_created(data: dict[str, Any]) -> tuple[str, str]:
    return (
        f"Royalty invoice {data.get('invoice_number')}",
        f"A royalty invoice of {format_cents(data.get('total_due_cents', 0))} for "
        f"{data.get('camp_name', 'your camp')} is due on {data.get('due_date')}.",
    )


def _royalty_status_changed(data: dict[str, Any]) -> tuple[str, str]:
    return (
        f"Royalty invoice {data.get('invoice_number')} is {data.get('new_status')}",
        f"Status changed from {data.get('old_status')} to {data.get('new_status')}.",
    )


def _message_received(data: dict[str, Any]) -> tuple[str, str]:
    return f"New message from {data.get('sender_name')}", data.get("preview", "")


TEMPLATES: dict[str, Callable[[dict[str, Any]], tuple[str, str]]] = {
    REGISTRATION_CONFIRMED: _registration_confirmed,
    PAYMENT_FAILED: _payment_failed,
    REFUND_PROCESSED: _refund_processed,
    CAMP_DAY_RECAP_EMAIL: _camp_day_recap,
    CAMP_SESSION_RECAP_EMAIL: _camp_session_recap,
    CAMP_CONCLUDED: _camp_concluded,
    ROYALTY_INVOICE_CREATED: _royalty_created,
    ROYALTY_INVOICE_STATUS_CHANGED: _royalty_status_changed,
    MESSAGE_RECEIVED: _message_received,
}

# Events that also go out by email
EMAIL_EVENT_TYPES = frozenset({
    REGISTRATION_CONFIRMED,
    PAYMENT_FAILED,
    REFUND_PROCESSED,
    CAMP_DAY_RECAP_EMAIL,
    CAMP_SESSION_RECAP_EMAIL,
    ROYALTY_INVOICE_CREATED,
    ROYALTY_INVOICE_STATUS_CHANGED,
})


# =============================================================================
# Dispatch
# =============================================================================


class UnknownEventTypeError(ValueError):
    pass


async def dispatch_outbox_event(
    db: Session,
    event: OutboxEvent,
    redis_client: redis.Redis | None,
    email_client: EmailClient,
) -> int:
    """
    Deliver one outbox event.

    Returns:
        Number of recipients (or 1 for a sent email).

    Raises:
        UnknownEventTypeError: If no template exists for the event type.
        ExternalServiceError: If an email send fails (the event is retried).
    """
    payload = json.loads(event.payload)

    if event.event_type == EMAIL_SEND:
        await email_client.send(payload["to"], payload["subject"], payload["text"])
        return 1

    template = TEMPLATES.get(event.event_type)
    if template is None:
        raise UnknownEventTypeError(f"No template for event type {event.event_type}")

    data = payload.get("data", {})
    title, body = template(data)
    recipients = payload.get("recipients", [])

    for recipient in recipients:
        user_id = recipient["user_id"]
        db.add(
            Notification(
                tenant_id=event.tenant_id,
                user_id=user_id,
                type=event.event_type,
                title=title,
                body=body,
                data=json.dumps(
                    {"aggregate_type": event.aggregate_type, "aggregate_id": event.aggregate_id, **data},
                    default=str,
                ),
            )
        )

        if event.event_type in EMAIL_EVENT_TYPES and recipient.get("email"):
            write_email_event(
                db,
                tenant_id=event.tenant_id,
                user_id=user_id,
                to=recipient["email"],
                subject=title,
                text=body,
                source_event_type=event.event_type,
            )

        if redis_client is not None:
            await _push_realtime(redis_client, event, user_id, title, data)

    logger.debug(
        "Outbox event dispatched",
        event_id=event.id,
        event_type=event.event_type,
        recipients=len(recipients),
    )
    return len(recipients)


async def _push_realtime(
    redis_client: redis.Redis,
    event: OutboxEvent,
    user_id: int,
    title: str,
    data: dict[str, Any],
) -> None:
    realtime = Event(
        type=event.event_type,
        tenant_id=event.tenant_id,
        user_id=user_id,
        entity={"aggregate_type": event.aggregate_type, "aggregate_id": event.aggregate_id, "title": title, **data},
    )
    try:
        await publish_event(redis_client, channel_user(user_id), realtime)
    except Exception as e:
        # The Notification row is the durable copy; clients refetch on reconnect
        logger.warning(
            "Realtime push failed",
            event_id=event.id,
            user_id=user_id,
            error=str(e),
        )
