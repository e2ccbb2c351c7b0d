"""
CONSENSUS CORE v1.0 - Centralized Exception Hierarchy
======================================================

Structured exception types for the decision core.

Exception Categories:
    - ProviderError: Signal provider call and reply failures
    - CircuitOpenError: Fail-fast rejection by an open circuit breaker
    - RetryExhaustedError: All retry attempts consumed
    - EnsembleError: Aggregation failures
    - RiskError: Risk parameter and limit problems
    - DataError: Collaborator data validation issues
    - ConfigurationError: Configuration and setup problems

Author: CONSENSUS Development Team
Version: 1.0.0
"""

from typing import Any, Dict, List, Optional


class ConsensusError(Exception):
    """
    Base exception for all decision core errors.

    Attributes:
        message: Human-readable error description
        code: Optional error code for programmatic handling
        details: Optional dict with additional context
        recoverable: Whether error can potentially be retried
    """

    recoverable: bool = True

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


# =============================================================================
# PROVIDER ERRORS
# =============================================================================


class ProviderError(ConsensusError):
    """
    Failure reported by a signal provider adapter.

    ``retryable`` marks transient conditions (network, 408/429/5xx);
    everything else is permanent for the current request.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        retryable: bool = False,
        provider_id: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, code=code, **kwargs)
        self.retryable = retryable
        self.provider_id = provider_id
        self.status_code = status_code

    @property
    def recoverable(self) -> bool:  # type: ignore[override]
        return self.retryable


class ProviderResponseError(ProviderError):
    """Provider answered but the reply could not be turned into a signal."""

    def __init__(self, message: str, code: str = "PARSE_ERROR", **kwargs):
        kwargs.setdefault("retryable", False)
        super().__init__(message, code=code, **kwargs)


# =============================================================================
# RESILIENCE ERRORS
# =============================================================================


class CircuitOpenError(ConsensusError):
    """Circuit breaker is open - call rejected without reaching the provider."""

    recoverable: bool = False

    def __init__(
        self,
        message: str,
        breaker_name: Optional[str] = None,
        next_attempt_at: Optional[float] = None,
        **kwargs,
    ):
        kwargs.setdefault("code", "CIRCUIT_OPEN")
        super().__init__(message, **kwargs)
        self.breaker_name = breaker_name
        self.next_attempt_at = next_attempt_at


class RetryExhaustedError(ConsensusError):
    """Every retry attempt failed; carries the full attempt history."""

    recoverable: bool = False

    def __init__(
        self,
        message: str,
        attempts: Optional[List[Any]] = None,
        last_error: Optional[BaseException] = None,
        total_delay_ms: float = 0.0,
        **kwargs,
    ):
        kwargs.setdefault("code", "RETRY_EXHAUSTED")
        super().__init__(message, **kwargs)
        self.attempts = list(attempts or [])
        self.last_error = last_error
        self.total_delay_ms = total_delay_ms


# =============================================================================
# ENSEMBLE & RISK ERRORS
# =============================================================================


class EnsembleError(ConsensusError):
    """Aggregation of provider signals failed."""

    pass


class RiskError(ConsensusError):
    """Base exception for risk-related errors."""

    pass


class InvalidRiskParametersError(RiskError):
    """Rejected risk parameter update."""

    recoverable: bool = False


class EmergencyStopError(RiskError):
    """Drawdown crossed the emergency stop threshold."""

    recoverable: bool = False


# =============================================================================
# DATA & CONFIGURATION ERRORS
# =============================================================================


class DataError(ConsensusError):
    """Invalid or missing data from a collaborator."""

    pass


class ConfigurationError(ConsensusError):
    """Base exception for configuration errors."""

    recoverable: bool = False


class InvalidConfigError(ConfigurationError):
    """Invalid configuration value."""

    pass


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def is_recoverable(error: BaseException) -> bool:
    """
    Determine if an error is potentially recoverable.

    Recoverable errors can be retried after a delay.
    Non-recoverable errors require intervention.
    """
    if hasattr(error, "recoverable"):
        return bool(error.recoverable)

    return not isinstance(error, (SystemExit, KeyboardInterrupt, MemoryError))


def is_critical(error: BaseException) -> bool:
    """Critical errors block trading and need operator attention."""
    return isinstance(error, (EmergencyStopError, InvalidRiskParametersError))


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "ConsensusError",
    "ProviderError",
    "ProviderResponseError",
    "CircuitOpenError",
    "RetryExhaustedError",
    "EnsembleError",
    "RiskError",
    "InvalidRiskParametersError",
    "EmergencyStopError",
    "DataError",
    "ConfigurationError",
    "InvalidConfigError",
    "is_recoverable",
    "is_critical",
]
