"""
Per-provider circuit breakers for the remote APIs the sync engine and the
tools talk to (gmail, calendar, hubspot).

A breaker opens after `failure_threshold` consecutive failures that its
`trips_on` predicate accepts and then fails fast with CircuitOpenError until
`recovery_timeout` has passed. One trial call (or `half_open_max_calls`) is
then let through; success closes the breaker, failure re-opens it.

Failures the predicate rejects, such as a 404 for one missing record, are
re-raised without counting: one bad record says nothing about the provider.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from ..exceptions import ServiceUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(ServiceUnavailableError):
    """The provider's breaker is open; the call was not attempted."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"{name} is unavailable, retry in {retry_after:.1f}s")


def _always(error: Exception) -> bool:
    return True


@dataclass
class CircuitBreaker:
    name: str
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    half_open_max_calls: int = 1
    trips_on: Callable[[Exception], bool] = _always

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def _open_for(self) -> float:
        return time.monotonic() - self._opened_at

    def _check_state_transition(self) -> None:
        if self._state == CircuitState.OPEN and self._open_for() >= self.recovery_timeout:
            logger.info("%s breaker half-open, allowing a trial call", self.name)
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0

    def _admit(self) -> CircuitOpenError | None:
        self._check_state_transition()
        if self._state == CircuitState.OPEN:
            return CircuitOpenError(self.name, max(0.0, self.recovery_timeout - self._open_for()))
        if self._state == CircuitState.HALF_OPEN:
            if self._half_open_calls >= self.half_open_max_calls:
                return CircuitOpenError(self.name, self.recovery_timeout / 2)
            self._half_open_calls += 1
        return None

    async def call(self, coro: Awaitable[T]) -> T:
        """
        Await `coro` unless the breaker is open.

        A rejected coroutine is closed without being run, so callers may build
        it eagerly.
        """
        async with self._lock:
            blocked = self._admit()
        if blocked is not None:
            if hasattr(coro, "close"):
                coro.close()
            raise blocked

        try:
            result = await coro
        except Exception as e:
            if self.trips_on(e):
                await self._record_failure(e)
            else:
                await self._record_success()
            raise
        await self._record_success()
        return result

    async def _record_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info("%s breaker closed, provider recovered", self.name)
                self._state = CircuitState.CLOSED
            self._failure_count = 0

    async def _record_failure(self, error: Exception) -> None:
        async with self._lock:
            self._failure_count += 1
            logger.warning(
                "%s call failed (%d/%d before opening): %s",
                self.name, self._failure_count, self.failure_threshold, error,
            )
            if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        "%s breaker opened for %.0fs", self.name, self.recovery_timeout
                    )
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._half_open_calls = 0


# One breaker per provider, shared by every user
_circuit_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    recovery_timeout: float = 60.0,
    trips_on: Callable[[Exception], bool] = _always,
) -> CircuitBreaker:
    """Get the breaker for `name`, creating it with these settings on first use."""
    if name not in _circuit_breakers:
        _circuit_breakers[name] = CircuitBreaker(
            name=name,
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            trips_on=trips_on,
        )
    return _circuit_breakers[name]


def open_circuits() -> list[str]:
    """Names of providers whose breaker is currently not closed."""
    return sorted(name for name, b in _circuit_breakers.items() if not b.is_closed)


def reset_all_circuits() -> None:
    for breaker in _circuit_breakers.values():
        breaker.reset()
