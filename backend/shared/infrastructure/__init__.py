"""
Infrastructure: database sessions, request correlation, Redis realtime pushes.
"""

from shared.infrastructure.db import (
    engine,
    SessionLocal,
    get_db,
    get_db_context,
    safe_commit,
)
from shared.infrastructure.events import (
    get_redis_pool,
    get_redis_client,
    close_redis_pool,
    publish_event,
)

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "safe_commit",
    "get_redis_pool",
    "get_redis_client",
    "close_redis_pool",
    "publish_event",
]
