"""
Dependency health checks for the detailed health endpoint.
"""

from __future__ import annotations

import asyncio
from typing import Any

from sqlalchemy import text

from shared.config.settings import settings
from shared.infrastructure.db import SessionLocal, engine
from shared.utils.health import health_check_with_timeout

from .redis_pool import get_redis_pool


@health_check_with_timeout(timeout=3.0, component="database")
async def check_database_health() -> dict[str, Any]:
    def ping() -> None:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))

    await asyncio.to_thread(ping)
    return {"dialect": engine.dialect.name}


@health_check_with_timeout(timeout=3.0, component="redis")
async def check_redis_health() -> dict[str, Any]:
    """Redis only carries realtime pushes, so it is an optional dependency."""
    pool = await get_redis_pool()
    await pool.ping()
    return {"max_connections": settings.redis_pool_max_connections}
