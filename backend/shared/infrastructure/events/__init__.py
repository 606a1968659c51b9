"""
Realtime pushes over Redis pub/sub.

- event_types.py: event type constants (shared with the outbox)
- event_schema.py: Event dataclass with validation
- channels.py: per-user channel names
- redis_pool.py: connection pool management
- publisher.py: publish_event with retry
"""

from .event_types import (
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
    MAX_EVENT_SIZE,
)
from .event_schema import Event
from .channels import channel_user
from .redis_pool import get_redis_pool, get_redis_client, close_redis_pool
from .publisher import publish_event

__all__ = [
    "REGISTRATION_CONFIRMED",
    "PAYMENT_FAILED",
    "REFUND_PROCESSED",
    "CAMP_DAY_RECAP_EMAIL",
    "CAMP_SESSION_RECAP_EMAIL",
    "CAMP_CONCLUDED",
    "ROYALTY_INVOICE_CREATED",
    "ROYALTY_INVOICE_STATUS_CHANGED",
    "MESSAGE_RECEIVED",
    "EMAIL_SEND",
    "MAX_EVENT_SIZE",
    "Event",
    "channel_user",
    "get_redis_pool",
    "get_redis_client",
    "close_redis_pool",
    "publish_event",
]
