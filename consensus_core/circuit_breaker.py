"""
CONSENSUS CORE v1.0 - Circuit Breaker
=====================================

Fail-fast protection around unreliable provider calls.

State machine:
    CLOSED     -> OPEN       after `failure_threshold` consecutive failures
    OPEN       -> HALF_OPEN  on the first call after `recovery_timeout_sec`
    HALF_OPEN  -> CLOSED     after `success_threshold` successes
    HALF_OPEN  -> OPEN       on any failure

While OPEN the wrapped callable is never invoked; `CircuitOpenError`
is raised immediately. State is only mutated between awaits, so a
breaker shared by concurrent coroutines on one event loop stays
consistent without a lock.

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from .constants import (
    CB_EXPECTED_RESPONSE_TIME_SEC,
    CB_FAILURE_THRESHOLD,
    CB_RECOVERY_TIMEOUT_SEC,
    CB_SUCCESS_THRESHOLD,
)
from .exceptions import CircuitOpenError

logger = logging.getLogger("CONSENSUS_CircuitBreaker")

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""

    failure_threshold: int = CB_FAILURE_THRESHOLD
    recovery_timeout_sec: float = CB_RECOVERY_TIMEOUT_SEC
    success_threshold: int = CB_SUCCESS_THRESHOLD
    expected_response_time_sec: float = CB_EXPECTED_RESPONSE_TIME_SEC  # Slow-call warning


@dataclass
class CircuitBreakerStats:
    """Point-in-time view of a breaker."""

    name: str
    state: CircuitState
    consecutive_failures: int
    half_open_successes: int
    total_requests: int
    total_successes: int
    total_failures: int
    rejected_requests: int
    average_response_time_ms: float
    last_failure_at: Optional[float]
    next_attempt_at: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "half_open_successes": self.half_open_successes,
            "total_requests": self.total_requests,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "rejected_requests": self.rejected_requests,
            "average_response_time_ms": self.average_response_time_ms,
            "last_failure_at": self.last_failure_at,
            "next_attempt_at": self.next_attempt_at,
        }


class CircuitBreaker:
    """
    Per-provider circuit breaker.

    Example:
        breaker = CircuitBreaker("openai", CircuitBreakerConfig(failure_threshold=3))

        try:
            signal = await breaker.execute(lambda: adapter.generate(prompt, ctx))
        except CircuitOpenError:
            logger.warning("openai is cooling down")
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.cfg = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._half_open_successes = 0
        self._last_failure_at: Optional[float] = None
        self._next_attempt_at: Optional[float] = None

        self._total_requests = 0
        self._total_successes = 0
        self._total_failures = 0
        self._rejected_requests = 0
        self._total_response_time = 0.0

        logger.info(
            f"CircuitBreaker initialized: {name} "
            f"(failures={self.cfg.failure_threshold}, "
            f"recovery={self.cfg.recovery_timeout_sec}s, "
            f"successes={self.cfg.success_threshold})"
        )

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    async def execute(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``func`` under breaker protection.

        Args:
            func: Zero-argument coroutine factory

        Returns:
            Whatever ``func`` returns

        Raises:
            CircuitOpenError: Breaker is open and recovery timeout not reached
        """
        self._total_requests += 1

        if not self._can_attempt():
            self._rejected_requests += 1
            raise CircuitOpenError(
                f"Circuit breaker '{self.name}' is OPEN",
                breaker_name=self.name,
                next_attempt_at=self._next_attempt_at,
            )

        started = self._clock()
        try:
            result = await func()
        except asyncio.CancelledError:
            # Abandoned by the caller, not a provider failure
            self._total_response_time += self._clock() - started
            raise
        except Exception as e:
            self._total_response_time += self._clock() - started
            self._on_failure(e)
            raise

        elapsed = self._clock() - started
        self._total_response_time += elapsed
        if elapsed > self.cfg.expected_response_time_sec:
            logger.warning(
                f"Slow call on '{self.name}': {elapsed:.2f}s "
                f"> {self.cfg.expected_response_time_sec}s"
            )
        self._on_success()
        return result

    def _can_attempt(self) -> bool:
        if self._state != CircuitState.OPEN:
            return True

        if self._next_attempt_at is not None and self._clock() >= self._next_attempt_at:
            self._transition(CircuitState.HALF_OPEN)
            self._half_open_successes = 0
            return True

        return False

    def _on_success(self) -> None:
        self._total_successes += 1

        if self._state == CircuitState.HALF_OPEN:
            self._half_open_successes += 1
            if self._half_open_successes >= self.cfg.success_threshold:
                self._consecutive_failures = 0
                self._half_open_successes = 0
                self._next_attempt_at = None
                self._transition(CircuitState.CLOSED)
        else:
            self._consecutive_failures = 0

    def _on_failure(self, error: Exception) -> None:
        self._total_failures += 1
        self._consecutive_failures += 1
        self._last_failure_at = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._open(f"probe failed: {error}")
        elif (
            self._state == CircuitState.CLOSED
            and self._consecutive_failures >= self.cfg.failure_threshold
        ):
            self._open(
                f"{self._consecutive_failures} consecutive failures, last: {error}"
            )

    def _open(self, reason: str) -> None:
        self._next_attempt_at = self._clock() + self.cfg.recovery_timeout_sec
        self._half_open_successes = 0
        self._transition(CircuitState.OPEN)
        logger.warning(f"Circuit '{self.name}' OPENED - {reason}")

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        logger.info(f"Circuit '{self.name}': {self._state.value} -> {new_state.value}")
        self._state = new_state

    def force_open(self) -> None:
        """Administratively open the breaker for a full recovery timeout."""
        self._open("forced open")

    def reset(self) -> None:
        """Return to CLOSED and clear failure counters."""
        self._consecutive_failures = 0
        self._half_open_successes = 0
        self._last_failure_at = None
        self._next_attempt_at = None
        self._transition(CircuitState.CLOSED)
        logger.info(f"Circuit '{self.name}' reset")

    def get_stats(self) -> CircuitBreakerStats:
        avg_ms = (
            self._total_response_time / self._total_requests * 1000.0
            if self._total_requests > 0
            else 0.0
        )
        return CircuitBreakerStats(
            name=self.name,
            state=self._state,
            consecutive_failures=self._consecutive_failures,
            half_open_successes=self._half_open_successes,
            total_requests=self._total_requests,
            total_successes=self._total_successes,
            total_failures=self._total_failures,
            rejected_requests=self._rejected_requests,
            average_response_time_ms=avg_ms,
            last_failure_at=self._last_failure_at,
            next_attempt_at=self._next_attempt_at,
        )


class CircuitBreakerRegistry:
    """
    Owns one breaker per provider.

    Constructed explicitly and passed to whoever needs it; there is no
    module-level instance.
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it on first use."""
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, config or self._default_config, clock=self._clock)
            self._breakers[name] = breaker
        return breaker

    def find(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(name)

    def register(self, name: str, breaker: CircuitBreaker) -> None:
        """Track an externally built breaker under ``name``."""
        self._breakers[name] = breaker

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    def names(self) -> List[str]:
        return list(self._breakers)

    def names_in_state(self, state: CircuitState) -> List[str]:
        return [n for n, b in self._breakers.items() if b.state == state]

    def reset(self, name: str) -> bool:
        breaker = self._breakers.get(name)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

    def force_open_all(self) -> None:
        """Emergency stop: open every breaker."""
        for breaker in self._breakers.values():
            breaker.force_open()
        logger.critical(f"All circuit breakers forced OPEN ({len(self._breakers)})")

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: b.get_stats().to_dict() for name, b in self._breakers.items()}


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "CircuitState",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
]
