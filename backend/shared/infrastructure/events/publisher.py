"""
Redis publish with a short retry.
"""

from __future__ import annotations

import asyncio

import redis.asyncio as redis

from shared.config.logging import get_logger
from .event_types import MAX_EVENT_SIZE
from .event_schema import Event

logger = get_logger(__name__)

PUBLISH_ATTEMPTS = 3
PUBLISH_BACKOFF_SECONDS = 0.1


async def publish_event(redis_client: redis.Redis, channel: str, event: Event) -> int:
    """
    Publish `event` on `channel` and return the subscriber count.

    Oversized events raise ValueError without touching Redis. Connection
    errors are retried with doubling delays; the last one is re-raised.
    """
    body = event.to_json()
    size = len(body.encode("utf-8"))
    if size > MAX_EVENT_SIZE:
        raise ValueError(f"Event {event.type} is {size} bytes, limit is {MAX_EVENT_SIZE}")

    for attempt in range(1, PUBLISH_ATTEMPTS + 1):
        try:
            return await redis_client.publish(channel, body)
        except Exception as e:
            if attempt == PUBLISH_ATTEMPTS:
                logger.error("Redis publish gave up", channel=channel, event_type=event.type, error=str(e))
                raise
            delay = PUBLISH_BACKOFF_SECONDS * 2 ** (attempt - 1)
            logger.warning(
                "Redis publish failed, retrying",
                channel=channel,
                event_type=event.type,
                attempt=attempt,
                error=str(e),
            )
            await asyncio.sleep(delay)
    return 0
