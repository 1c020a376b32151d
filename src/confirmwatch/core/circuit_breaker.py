"""
Circuit breaker for JSON-RPC transports.

After repeated failures the breaker opens and requests fail fast with
CircuitBreakerOpenError until the endpoint had time to recover.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Awaitable, Callable, Optional, TypeVar

from confirmwatch.core.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(Enum):
    CLOSED = "closed"        # requests pass
    OPEN = "open"            # requests rejected
    HALF_OPEN = "half_open"  # probing recovery


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5       # consecutive failures to open
    success_threshold: int = 2       # half-open successes to close
    timeout_seconds: float = 30.0    # time spent open before probing
    half_open_max_calls: int = 3
    expected_exceptions: tuple = (Exception,)


@dataclass
class CircuitBreakerStats:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None


class CircuitBreaker:
    """
    Circuit Breaker around async calls.

    Usage:
        cb = CircuitBreaker("rpc:https://node")

        @cb.protect
        async def call_rpc():
            ...

        # or
        result = await cb.call(call_rpc)
    """

    def __init__(self, name: str, config: CircuitBreakerConfig = None):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        self._half_open_calls = 0
        self._stats = CircuitBreakerStats()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    async def _check_state(self) -> bool:
        """Return True if a call may go through right now."""
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._last_failure_time is not None:
                    elapsed = time.monotonic() - self._last_failure_time
                    if elapsed >= self.config.timeout_seconds:
                        self._transition_to(CircuitState.HALF_OPEN)
                        self._half_open_calls = 1
                        return True

                self._stats.rejected_calls += 1
                return False

            if self._half_open_calls < self.config.half_open_max_calls:
                self._half_open_calls += 1
                return True
            self._stats.rejected_calls += 1
            return False

    async def _record_success(self) -> None:
        async with self._lock:
            self._stats.total_calls += 1
            self._stats.successful_calls += 1
            self._stats.last_success_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    async def _record_failure(self) -> None:
        async with self._lock:
            now = time.monotonic()
            self._stats.total_calls += 1
            self._stats.failed_calls += 1
            self._stats.last_failure_time = now
            self._last_failure_time = now

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            else:
                self._failure_count += 1
                if self._failure_count >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return

        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._half_open_calls = 0

        logger.warning(f"Circuit Breaker '{self.name}': {old_state.value} -> {new_state.value}")

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Run func through the breaker."""
        if not await self._check_state():
            raise CircuitBreakerOpenError(
                f"Circuit Breaker '{self.name}' is open",
                details={"breaker": self.name},
            )

        try:
            result = await func(*args, **kwargs)
        except self.config.expected_exceptions:
            await self._record_failure()
            raise
        await self._record_success()
        return result

    def protect(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await self.call(func, *args, **kwargs)
        return wrapper

    def get_stats(self) -> dict:
        return {
            'name': self.name,
            'state': self._state.value,
            'failure_count': self._failure_count,
            'success_count': self._success_count,
            **{k: v for k, v in self._stats.__dict__.items()}
        }

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._last_failure_time = None
        logger.info(f"Circuit Breaker '{self.name}' reset")

