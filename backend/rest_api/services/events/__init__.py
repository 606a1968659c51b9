"""
Event Services - transactional outbox and delivery.

Provides:
- outbox_service: write events atomically with business data
- outbox_processor: background delivery loop
- notification_dispatcher: in-app notifications, realtime pushes, emails
- email_client: transactional email HTTP client
"""

from .outbox_service import (
    write_outbox_event,
    write_notification_event,
    write_email_event,
    recipient_from_user,
)

from .outbox_processor import (
    OutboxProcessor,
    get_outbox_processor,
    start_outbox_processor,
    stop_outbox_processor,
    process_pending_events_once,
)

from .email_client import EmailClient, get_email_client, close_email_client

__all__ = [
    "write_outbox_event",
    "write_notification_event",
    "write_email_event",
    "recipient_from_user",
    "OutboxProcessor",
    "get_outbox_processor",
    "start_outbox_processor",
    "stop_outbox_processor",
    "process_pending_events_once",
    "EmailClient",
    "get_email_client",
    "close_email_client",
]
