"""Retryable error classification with exponential backoff retry.

Classifies exceptions as retryable (transient) or non-retryable (permanent).
Used around provider polling, media downloads, S3 uploads and DB inserts.

Usage:
    from mediagen.core.retryable import is_retryable, with_retry

    if is_retryable(exc):
        ...

    result = await with_retry(lambda: some_async_operation())
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from botocore.exceptions import ClientError
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from mediagen.app.metrics.collector import EXTERNAL_CALL_ERRORS_TOTAL
from mediagen.core.circuit_breaker import CircuitOpenError, get_circuit_breaker

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# httpx error classification
# =============================================================================

HTTPX_RETRYABLE = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.RemoteProtocolError,
)

HTTPX_NON_RETRYABLE = (
    httpx.InvalidURL,
    httpx.TooManyRedirects,
)


def is_httpx_retryable(exc: Exception) -> bool:
    """Check if httpx exception is retryable."""
    if isinstance(exc, HTTPX_RETRYABLE):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return True
        if 400 <= status < 500:
            return False
        if status >= 500:
            return True
    return False


# =============================================================================
# S3 (botocore) error classification
# =============================================================================

S3_RETRYABLE_CODES = frozenset({
    "RequestTimeout",
    "RequestTimeoutException",
    "ServiceUnavailable",
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "InternalError",
    "InternalServerError",
    "SlowDown",
})

S3_NON_RETRYABLE_CODES = frozenset({
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "NoSuchBucket",
    "NoSuchKey",
    "InvalidBucketName",
})


def is_s3_retryable(exc: ClientError) -> bool:
    """Check if S3 ClientError is retryable."""
    error_code = exc.response.get("Error", {}).get("Code", "")
    return error_code in S3_RETRYABLE_CODES


# =============================================================================
# Database error classification
# =============================================================================


def is_db_retryable(exc: Exception) -> bool:
    """Dropped connections and socket-level failures are retryable.

    Constraint violations and programming errors are not.
    """
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, (ConnectionError, OSError))


# =============================================================================
# Unified classification
# =============================================================================


def classify_error(exc: Exception) -> str:
    """Classify error as 'retryable', 'permanent', or 'unknown'."""
    if isinstance(exc, asyncio.TimeoutError):
        return "retryable"

    if isinstance(exc, httpx.HTTPStatusError):
        return "retryable" if is_httpx_retryable(exc) else "permanent"
    if isinstance(exc, HTTPX_RETRYABLE):
        return "retryable"
    if isinstance(exc, HTTPX_NON_RETRYABLE):
        return "permanent"

    if isinstance(exc, ClientError):
        error_code = exc.response.get("Error", {}).get("Code", "")
        if error_code in S3_RETRYABLE_CODES:
            return "retryable"
        if error_code in S3_NON_RETRYABLE_CODES:
            return "permanent"
        return "unknown"

    if isinstance(exc, DBAPIError):
        return "retryable" if is_db_retryable(exc) else "permanent"
    if isinstance(exc, (ConnectionError, OSError)):
        return "retryable"

    return "unknown"


def is_retryable(exc: Exception) -> bool:
    """Check if error is transient. Unknown errors are not retryable."""
    return classify_error(exc) == "retryable"


# =============================================================================
# Retry utility
# =============================================================================


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    circuit_breaker: str | None = None,
    retry_unknown: bool = True,
) -> T:
    """Execute async operation with exponential backoff retry.

    Permanent errors are raised immediately. Unknown errors are retried
    unless retry_unknown is False (DB inserts must not retry on e.g.
    IntegrityError wrapped in something unexpected).

    Args:
        coro_factory: Factory function that creates new coroutine for each attempt
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 30.0)
        circuit_breaker: Circuit breaker name (None to disable)
        retry_unknown: Whether 'unknown' errors are retried

    Raises:
        CircuitOpenError: If circuit breaker is open
        Exception: The last exception if all retries fail, or immediately
                   for non-retryable errors
    """
    cb = (
        get_circuit_breaker(circuit_breaker, error_classifier=classify_error)
        if circuit_breaker
        else None
    )
    last_exc: Exception | None = None

    for attempt in range(max_retries + 1):
        try:
            if cb:
                return await cb.call(coro_factory)
            return await coro_factory()
        except CircuitOpenError:
            EXTERNAL_CALL_ERRORS_TOTAL.labels(error_type="circuit_open").inc()
            raise
        except Exception as exc:
            last_exc = exc
            error_class = classify_error(exc)
            EXTERNAL_CALL_ERRORS_TOTAL.labels(error_type=error_class).inc()

            if error_class == "permanent" or (
                error_class == "unknown" and not retry_unknown
            ):
                logger.warning(
                    "Non-retryable error: %s",
                    exc,
                    extra={"error_class": error_class, "attempt": attempt + 1},
                )
                raise

            if attempt == max_retries:
                logger.error(
                    "Max retries exceeded (%d attempts): %s",
                    max_retries + 1,
                    exc,
                    extra={"error_class": error_class, "attempt": attempt + 1},
                )
                raise

            delay = min(base_delay * (2**attempt), max_delay)
            # Jitter: 50% ~ 150% of delay
            jittered_delay = delay * (0.5 + random.random())
            logger.warning(
                "Retryable error (attempt %d/%d, retry in %.1fs): %s",
                attempt + 1,
                max_retries + 1,
                jittered_delay,
                exc,
                extra={
                    "error_class": error_class,
                    "attempt": attempt + 1,
                    "delay": jittered_delay,
                },
            )
            await asyncio.sleep(jittered_delay)

    if last_exc:
        raise last_exc
    raise RuntimeError("Unexpected state in with_retry")
