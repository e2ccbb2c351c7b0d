"""
CONSENSUS CORE v1.0 - Retry Policy
==================================

Exponential backoff with jitter for transient provider failures.

Formula:
    capped(n) = min(initial_delay * multiplier^(n-1), max_delay)
    delay(n)  = capped(n) + U(jitter_min, jitter_max) * capped(n)

Only errors classified as transient are retried. An open circuit is
never retried here: the breaker already knows the provider is down,
so the rejection is surfaced immediately without using up attempts.

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from .constants import (
    RETRY_BACKOFF_MULTIPLIER,
    RETRY_INITIAL_DELAY_MS,
    RETRY_JITTER_MAX,
    RETRY_JITTER_MIN,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_MS,
    RETRYABLE_MESSAGE_SIGNATURES,
    RETRYABLE_STATUS_CODES,
)
from .exceptions import CircuitOpenError, ProviderError, RetryExhaustedError

logger = logging.getLogger("CONSENSUS_Retry")

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Backoff configuration (all delays in milliseconds)."""

    max_attempts: int = RETRY_MAX_ATTEMPTS
    initial_delay_ms: float = RETRY_INITIAL_DELAY_MS
    max_delay_ms: float = RETRY_MAX_DELAY_MS
    backoff_multiplier: float = RETRY_BACKOFF_MULTIPLIER
    jitter_min: float = RETRY_JITTER_MIN  # Fraction of the capped delay
    jitter_max: float = RETRY_JITTER_MAX

    def max_total_delay_ms(self) -> float:
        """Upper bound on the time spent sleeping across all attempts."""
        return self.max_attempts * self.max_delay_ms * (1.0 + self.jitter_max)


class RetryPresets:
    """Named configurations for common call types."""

    @staticmethod
    def network() -> RetryConfig:
        return RetryConfig(
            max_attempts=3,
            initial_delay_ms=1000.0,
            max_delay_ms=10000.0,
            backoff_multiplier=2.0,
            jitter_min=0.1,
            jitter_max=0.1,
        )

    @staticmethod
    def ai_provider() -> RetryConfig:
        return RetryConfig(
            max_attempts=5,
            initial_delay_ms=2000.0,
            max_delay_ms=30000.0,
            backoff_multiplier=2.0,
            jitter_min=0.1,
            jitter_max=0.2,
        )

    @staticmethod
    def critical() -> RetryConfig:
        return RetryConfig(
            max_attempts=10,
            initial_delay_ms=500.0,
            max_delay_ms=60000.0,
            backoff_multiplier=1.5,
            jitter_min=0.1,
            jitter_max=0.3,
        )


@dataclass(frozen=True)
class RetryAttempt:
    """One failed attempt and the delay scheduled after it."""

    attempt_number: int
    delay_ms: float
    error: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def compute_backoff_delay(
    attempt: int,
    config: RetryConfig,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Delay to wait after failed attempt number ``attempt`` (1-based).

    Returns:
        Delay in milliseconds
    """
    base = config.initial_delay_ms * (config.backoff_multiplier ** (attempt - 1))
    capped = min(base, config.max_delay_ms)
    jitter_fraction = config.jitter_min + (config.jitter_max - config.jitter_min) * rand()
    return capped + capped * jitter_fraction


def _status_code_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable_error(error: BaseException) -> bool:
    """
    Classify an error as transient (retry) or permanent (give up).

    Transient: network/timeout errors, HTTP 408/429/5xx, and rate-limit
    or quota messages. Permanent: open circuits, validation and auth
    failures, and anything unrecognized.
    """
    if isinstance(error, (CircuitOpenError, RetryExhaustedError)):
        return False

    if isinstance(error, ProviderError):
        return error.retryable

    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError, httpx.TransportError)):
        return True

    status = _status_code_of(error)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES or 500 <= status < 600

    message = str(error).lower()
    return any(signature in message for signature in RETRYABLE_MESSAGE_SIGNATURES)


class RetryPolicy:
    """
    Async retry executor.

    Example:
        policy = RetryPolicy(RetryPresets.ai_provider(), name="claude")
        signal = await policy.execute(lambda: breaker.execute(call))
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        name: str = "default",
        retryable: Callable[[BaseException], bool] = is_retryable_error,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
        on_retry: Optional[Callable[[RetryAttempt], None]] = None,
    ):
        self.cfg = config or RetryConfig()
        self.name = name
        self._retryable = retryable
        self._sleep = sleep
        self._rand = rand
        self._on_retry = on_retry

        self._stats = {
            "executions": 0,
            "successes": 0,
            "retries": 0,
            "exhausted": 0,
            "permanent_failures": 0,
        }

        if self.cfg.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    async def execute(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Call ``func`` until it succeeds, fails permanently, or attempts run out.

        Raises:
            RetryExhaustedError: All attempts failed with transient errors
            Exception: The first permanent error, unchanged
        """
        self._stats["executions"] += 1
        attempts: List[RetryAttempt] = []
        total_delay_ms = 0.0

        for attempt in range(1, self.cfg.max_attempts + 1):
            try:
                result = await func()
            except Exception as e:
                if not self._retryable(e):
                    self._stats["permanent_failures"] += 1
                    raise

                if attempt >= self.cfg.max_attempts:
                    attempts.append(RetryAttempt(attempt, 0.0, repr(e)))
                    self._stats["exhausted"] += 1
                    logger.error(
                        f"[{self.name}] retries exhausted after {attempt} attempts: {e}"
                    )
                    raise RetryExhaustedError(
                        f"{self.name}: failed after {attempt} attempts: {e}",
                        attempts=attempts,
                        last_error=e,
                        total_delay_ms=total_delay_ms,
                    ) from e

                delay_ms = compute_backoff_delay(attempt, self.cfg, self._rand)
                record = RetryAttempt(attempt, delay_ms, repr(e))
                attempts.append(record)
                self._stats["retries"] += 1

                if self._on_retry is not None:
                    self._on_retry(record)

                logger.warning(
                    f"[{self.name}] attempt {attempt}/{self.cfg.max_attempts} failed "
                    f"({e}); retrying in {delay_ms:.0f}ms"
                )
                await self._sleep(delay_ms / 1000.0)
                total_delay_ms += delay_ms
                continue

            if attempt > 1:
                logger.info(f"[{self.name}] succeeded on attempt {attempt}")
            self._stats["successes"] += 1
            return result

        # Unreachable: the loop either returns or raises
        raise RetryExhaustedError(f"{self.name}: no attempts made", attempts=attempts)

    def get_statistics(self) -> Dict[str, Any]:
        return {"name": self.name, "max_attempts": self.cfg.max_attempts, **self._stats}


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "RetryConfig",
    "RetryPresets",
    "RetryAttempt",
    "RetryPolicy",
    "compute_backoff_delay",
    "is_retryable_error",
]
