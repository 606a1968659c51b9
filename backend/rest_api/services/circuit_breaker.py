"""
Circuit Breaker for external HTTP services (payment processor, email API).

States:
1. CLOSED: requests pass through, failures are counted
2. OPEN: after `failure_threshold` consecutive failures requests fail fast
3. HALF_OPEN: after `timeout_seconds` a limited number of trial requests
   decide whether to close again or reopen

Usage:
    from rest_api.services.circuit_breaker import payments_breaker

    async with payments_breaker.call():
        charge = await stripe.create_checkout_session(payload)
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, asdict
from enum import Enum
from typing import AsyncGenerator

from shared.config.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Thresholds for one breaker."""
    name: str
    failure_threshold: int = 5       # Consecutive failures before opening
    success_threshold: int = 2       # Trial successes before closing
    timeout_seconds: float = 30.0    # Open period before trial calls
    half_open_max_calls: int = 2     # Concurrent trial calls allowed


@dataclass
class CircuitBreakerStats:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0


class CircuitBreakerError(Exception):
    """The breaker is open (or its trial slots are taken); the call was not made."""

    def __init__(self, breaker_name: str, retry_after: float):
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{breaker_name}' is open. Retry after {retry_after:.1f}s")


class CircuitBreaker:
    """Async circuit breaker guarded by an asyncio lock."""

    def __init__(self, config: CircuitBreakerConfig):
        self.config = config
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._trial_successes = 0
        self._trials_in_flight = 0
        self._opened_at: float | None = None
        self._lock = asyncio.Lock()
        self.stats = CircuitBreakerStats()

    @property
    def state(self) -> CircuitState:
        return self._state

    def _set_state(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        logger.info(
            "Circuit breaker state change",
            breaker=self.config.name,
            old_state=self._state.value,
            new_state=new_state.value,
            failures=self._failures,
        )
        self._state = new_state
        self.stats.state_changes += 1
        if new_state == CircuitState.CLOSED:
            self._failures = 0
            self._opened_at = None
        elif new_state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
        self._trial_successes = 0
        self._trials_in_flight = 0

    async def _admit(self) -> None:
        async with self._lock:
            if self._state == CircuitState.OPEN:
                elapsed = time.monotonic() - (self._opened_at or 0.0)
                if elapsed < self.config.timeout_seconds:
                    self.stats.rejected_calls += 1
                    raise CircuitBreakerError(
                        self.config.name, self.config.timeout_seconds - elapsed
                    )
                self._set_state(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._trials_in_flight >= self.config.half_open_max_calls:
                    self.stats.rejected_calls += 1
                    raise CircuitBreakerError(self.config.name, 1.0)
                self._trials_in_flight += 1

    async def record_success(self) -> None:
        async with self._lock:
            self.stats.total_calls += 1
            self.stats.successful_calls += 1
            if self._state == CircuitState.HALF_OPEN:
                self._trials_in_flight = max(0, self._trials_in_flight - 1)
                self._trial_successes += 1
                if self._trial_successes >= self.config.success_threshold:
                    self._set_state(CircuitState.CLOSED)
            else:
                self._failures = 0

    async def record_failure(self, error: Exception | None = None) -> None:
        async with self._lock:
            self.stats.total_calls += 1
            self.stats.failed_calls += 1
            self._failures += 1
            logger.warning(
                "Circuit breaker recorded failure",
                breaker=self.config.name,
                error=str(error) if error else None,
                failures=self._failures,
                threshold=self.config.failure_threshold,
            )
            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN)
            elif self._failures >= self.config.failure_threshold:
                self._set_state(CircuitState.OPEN)

    @asynccontextmanager
    async def call(self) -> AsyncGenerator[None, None]:
        """
        Wrap one outbound call. Exceptions raised inside count as failures.

        Raises:
            CircuitBreakerError: while open, or when no trial slot is free
        """
        await self._admit()
        try:
            yield
        except Exception as e:
            await self.record_failure(e)
            raise
        await self.record_success()

    async def reset(self) -> None:
        """Force the breaker closed. Used by tests and operators."""
        async with self._lock:
            self._set_state(CircuitState.CLOSED)
            self._failures = 0


payments_breaker = CircuitBreaker(
    CircuitBreakerConfig(name="payments", failure_threshold=5, timeout_seconds=30.0)
)

# Email is retried by the outbox, so open sooner and retry less often
email_breaker = CircuitBreaker(
    CircuitBreakerConfig(
        name="email",
        failure_threshold=3,
        success_threshold=1,
        timeout_seconds=60.0,
        half_open_max_calls=1,
    )
)


def get_all_breaker_stats() -> dict[str, dict]:
    """Statistics for all circuit breakers, used by the health endpoint."""
    return {
        breaker.config.name: {"state": breaker.state.value, **asdict(breaker.stats)}
        for breaker in (payments_breaker, email_breaker)
    }
