"""
Resilience helpers for remote API clients (Google, HubSpot).

Provides circuit breaker protection and retry logic with exponential backoff
for transient failures (rate limits, server errors, timeouts).

Usage:
    from ..utils.resilience import with_resilience

    async def my_api_call():
        def _sync():
            return service.users().messages().list(...).execute()
        return await with_resilience("gmail", lambda: asyncio.to_thread(_sync))
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

import httpx

from ..config import settings
from ..exceptions import RemoteAPIError
from .circuit_breaker import get_circuit_breaker

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP status codes that indicate transient failures worth retrying
TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0


def _status_code(error: Exception) -> int | None:
    from googleapiclient.errors import HttpError

    if isinstance(error, HttpError):
        return error.resp.status
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, RemoteAPIError):
        return error.status_code
    return None


def is_transient_error(error: Exception) -> bool:
    """Check if an error is transient and worth retrying."""
    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException, httpx.TransportError)):
        return True

    status = _status_code(error)
    if status is not None:
        return status in TRANSIENT_STATUS_CODES

    error_str = str(error).lower()
    return any(indicator in error_str for indicator in [
        "rate limit", "quota", "timeout", "connection reset",
        "connection refused", "temporarily unavailable",
    ])


def _get_retry_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Calculate retry delay with exponential backoff and jitter."""
    delay = base_delay * (2 ** attempt)
    delay = min(delay, max_delay)
    jitter = random.uniform(0, delay * 0.1)
    return delay + jitter


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> T:
    """
    Execute an async operation with exponential backoff retry.

    Args:
        coro_factory: A callable that returns a new coroutine each time.
                     This is needed because coroutines can only be awaited once.
        max_retries: Maximum number of attempts.
        base_delay: Initial delay between retries in seconds.
        max_delay: Maximum delay between retries in seconds.

    Raises:
        The last exception if all retries are exhausted, or immediately for
        a non-transient error.
    """
    last_error: Exception | None = None

    for attempt in range(max_retries):
        try:
            return await coro_factory()
        except Exception as e:
            last_error = e

            if not is_transient_error(e):
                logger.debug("Non-transient error (not retrying): %s", e)
                raise

            if attempt < max_retries - 1:
                delay = _get_retry_delay(attempt, base_delay, max_delay)
                logger.warning(
                    "Transient error on attempt %d/%d, retrying in %.1fs: %s",
                    attempt + 1, max_retries, delay, e,
                )
                await asyncio.sleep(delay)
            else:
                logger.error("All %d retry attempts exhausted: %s", max_retries, e)

    if last_error:
        raise last_error
    raise RuntimeError("Retry loop completed without result or error")


async def with_resilience(
    service_name: str,
    coro_factory: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> T:
    """
    Execute a remote call with full resilience: circuit breaker + retry.

    The breaker is shared per service name, so a failing provider fails fast
    for every user until it recovers.

    Raises:
        CircuitOpenError: If the circuit breaker is open.
        Any exception from the underlying operation once retries are exhausted.
    """
    breaker = get_circuit_breaker(
        service_name,
        failure_threshold=settings.cb_failure_threshold,
        recovery_timeout=settings.cb_recovery_timeout,
        trips_on=is_transient_error,
    )

    async def _with_breaker() -> T:
        return await breaker.call(coro_factory())

    return await with_retry(_with_breaker, max_retries=max_retries, base_delay=base_delay)
