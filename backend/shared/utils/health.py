"""
Health Check Utilities.

Every dependency check is wrapped with the same timeout handling and
result shape.

Usage:
    from shared.utils.health import health_check_with_timeout

    @health_check_with_timeout(timeout=3.0, component="redis")
    async def check_redis_health():
        await redis.ping()

    # Returns HealthCheckResult(status=HEALTHY, component="redis", latency_ms=...)
    # On timeout: status=UNHEALTHY, error="timeout after 3.0s"
"""

from __future__ import annotations

import asyncio
import functools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine

from shared.config.logging import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class HealthCheckResult:
    """Result of one dependency check."""

    status: HealthStatus
    component: str
    latency_ms: float | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result = {
            "status": self.status.value,
            "component": self.component,
        }
        if self.latency_ms is not None:
            result["latency_ms"] = round(self.latency_ms, 2)
        if self.error:
            result["error"] = self.error
        if self.details:
            result["details"] = self.details
        return result


def health_check_with_timeout(timeout: float = 5.0, component: str | None = None):
    """
    Wrap an async dependency check.

    The check may return a dict of details. Timeouts and exceptions become an
    UNHEALTHY result rather than propagating, so one slow dependency cannot
    fail the whole health response.
    """

    def decorator(
        func: Callable[..., Coroutine[Any, Any, dict[str, Any] | None]]
    ) -> Callable[..., Coroutine[Any, Any, HealthCheckResult]]:
        name = component or func.__name__.removeprefix("check_").removesuffix("_health")

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> HealthCheckResult:
            started = time.perf_counter()
            status, error, details = HealthStatus.HEALTHY, None, {}
            try:
                result = await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
                details = result if isinstance(result, dict) else {}
            except asyncio.TimeoutError:
                status, error = HealthStatus.UNHEALTHY, f"timeout after {timeout}s"
            except Exception as exc:
                status, error = HealthStatus.UNHEALTHY, str(exc)
            if error:
                logger.warning("Health check failed", component=name, error=error)
            return HealthCheckResult(
                status=status,
                component=name,
                latency_ms=(time.perf_counter() - started) * 1000,
                error=error,
                details=details,
            )

        return wrapper

    return decorator


def overall_status(results: list[HealthCheckResult], required: set[str]) -> HealthStatus:
    """
    Unhealthy when a required component fails, degraded when only an
    optional one does.
    """
    failed = {r.component for r in results if r.status != HealthStatus.HEALTHY}
    if failed & required:
        return HealthStatus.UNHEALTHY
    if failed:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY
