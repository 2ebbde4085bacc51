"""Named circuit breakers for object storage and media downloads.

States:
- CLOSED: calls pass through
- OPEN: calls are rejected until `timeout` has elapsed since the last failure
- HALF_OPEN: trial calls; `success_threshold` successes close the circuit,
  one failure reopens it

Circuits in use:
- "s3": uploads of generated media
- "media_download": fetching provider output URLs

Usage:
    from mediagen.core.circuit_breaker import get_circuit_breaker

    cb = get_circuit_breaker("s3")
    result = await cb.call(lambda: client.put_object(...))
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, TypeVar

from mediagen.app.metrics.collector import (
    CIRCUIT_BREAKER_CALLS_TOTAL,
    CIRCUIT_BREAKER_REJECTIONS_TOTAL,
    CIRCUIT_BREAKER_STATE,
)
from mediagen.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATE_GAUGE = {"closed": 0, "half_open": 1, "open": 2}


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when a call is rejected by an open circuit."""

    def __init__(self, service: str, retry_after: float) -> None:
        self.service = service
        self.retry_after = retry_after
        super().__init__(f"Circuit open for {service}, retry after {retry_after:.1f}s")


class CircuitBreaker:
    """Async circuit breaker.

    Args:
        name: Circuit name (metric label and log field)
        failure_threshold: Consecutive failures that open the circuit
        success_threshold: Half-open successes that close it again
        timeout: Seconds an open circuit waits before going half-open
        error_classifier: Returns 'permanent', 'retryable' or 'unknown'.
            Permanent errors (a 404 on a provider URL) are the caller's
            problem, not the service's, and do not count as failures.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout: float = 60.0,
        error_classifier: Callable[[Exception], str] | None = None,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout
        self._error_classifier = error_classifier

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def _retry_after(self) -> float:
        elapsed = time.time() - (self._last_failure_time or 0)
        return max(0.0, self.timeout - elapsed)

    def _set_state(self, state: CircuitState, **fields: Any) -> None:
        log = logger.info if state == CircuitState.CLOSED else logger.warning
        log(
            "Circuit %s: %s -> %s",
            self.name,
            self._state.value,
            state.value,
            extra={"event": LogEvent.STATE_CHANGED, "circuit": self.name, **fields},
        )
        self._state = state
        CIRCUIT_BREAKER_STATE.labels(circuit=self.name).set(_STATE_GAUGE[state.value])

    def snapshot(self) -> dict[str, Any]:
        """State for the admin providers endpoint."""
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "retry_after": self._retry_after() if self._state == CircuitState.OPEN else 0.0,
        }

    async def call(self, coro_factory: Callable[[], Awaitable[T]]) -> T:
        """Run coro_factory() under the breaker.

        Raises:
            CircuitOpenError: If the circuit is open
            Exception: Whatever the operation raised
        """
        async with self._lock:
            if (
                self._state == CircuitState.OPEN
                and self._last_failure_time is not None
                and time.time() - self._last_failure_time >= self.timeout
            ):
                self._success_count = 0
                self._set_state(CircuitState.HALF_OPEN)

            if self._state == CircuitState.OPEN:
                retry_after = self._retry_after()
                CIRCUIT_BREAKER_REJECTIONS_TOTAL.labels(circuit=self.name).inc()
                logger.warning(
                    "Circuit OPEN, rejecting call",
                    extra={
                        "event": LogEvent.OPERATION_FAILED,
                        "circuit": self.name,
                        "retry_after": retry_after,
                    },
                )
                raise CircuitOpenError(self.name, retry_after)

        try:
            result = await coro_factory()
        except Exception as exc:
            CIRCUIT_BREAKER_CALLS_TOTAL.labels(circuit=self.name, result="failure").inc()
            if self._error_classifier and self._error_classifier(exc) == "permanent":
                logger.debug(
                    "Permanent error, not counted",
                    extra={"circuit": self.name, "error": str(exc)},
                )
                raise
            await self._record_failure()
            raise

        CIRCUIT_BREAKER_CALLS_TOTAL.labels(circuit=self.name, result="success").inc()
        await self._record_success()
        return result

    async def _record_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._failure_count = 0
                    self._set_state(CircuitState.CLOSED, success_count=self._success_count)
            else:
                self._failure_count = 0

    async def _record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.time()

            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._set_state(CircuitState.OPEN, failure_count=self._failure_count)


_circuit_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str = "default",
    error_classifier: Callable[[Exception], str] | None = None,
) -> CircuitBreaker:
    """Get or create a circuit breaker by name.

    error_classifier only applies when the breaker is created.
    """
    if name not in _circuit_breakers:
        _circuit_breakers[name] = CircuitBreaker(
            name=name,
            error_classifier=error_classifier,
        )
    return _circuit_breakers[name]


def circuit_breaker_states() -> dict[str, dict[str, Any]]:
    return {name: cb.snapshot() for name, cb in _circuit_breakers.items()}


def reset_all_circuit_breakers() -> None:
    """Drop all circuit breakers (for testing)."""
    _circuit_breakers.clear()
