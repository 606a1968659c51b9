"""
Shared async Redis client.

One pooled client per process, created on first use. It carries realtime
pushes to `user:{id}` channels and the detailed health check; nothing
durable lives in Redis (the outbox table is the source of truth).
"""

from __future__ import annotations

import asyncio

import redis.asyncio as redis

from shared.config.settings import settings, REDIS_URL
from shared.config.logging import get_logger

logger = get_logger(__name__)

_client: redis.Redis | None = None
_client_lock: asyncio.Lock | None = None


async def get_redis_pool() -> redis.Redis:
    """Return the process-wide client, creating the pool once."""
    global _client, _client_lock

    if _client is not None:
        return _client

    if _client_lock is None:
        _client_lock = asyncio.Lock()

    async with _client_lock:
        if _client is None:
            _client = redis.from_url(
                REDIS_URL,
                max_connections=settings.redis_pool_max_connections,
                decode_responses=True,
                socket_connect_timeout=settings.redis_socket_timeout,
                socket_timeout=settings.redis_socket_timeout,
                health_check_interval=30,
            )
            logger.info("Redis pool created", max_connections=settings.redis_pool_max_connections)
    return _client


async def get_redis_client() -> redis.Redis:
    return await get_redis_pool()


async def close_redis_pool() -> None:
    """Close the pool on shutdown; the next call to get_redis_pool reopens it."""
    global _client, _client_lock

    if _client is not None:
        await _client.aclose()
        logger.info("Redis pool closed")
    _client = None
    _client_lock = None
