"""
CONSENSUS CORE v1.0 - System Constants
=======================================

Centralized constants for the decision core.
Defaults for every tunable component live here so configuration
files only need to list what they change.

Author: CONSENSUS Development Team
Version: 1.0.0
"""

# =============================================================================
# SYSTEM IDENTIFICATION
# =============================================================================

VERSION = "1.0.0"
SYSTEM_NAME = "CONSENSUS CORE"

# =============================================================================
# CIRCUIT BREAKER DEFAULTS
# =============================================================================

CB_FAILURE_THRESHOLD = 5
CB_RECOVERY_TIMEOUT_SEC = 60.0
CB_SUCCESS_THRESHOLD = 3
CB_EXPECTED_RESPONSE_TIME_SEC = 5.0

# =============================================================================
# RETRY DEFAULTS (milliseconds)
# =============================================================================

RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_DELAY_MS = 1000.0
RETRY_MAX_DELAY_MS = 30000.0
RETRY_BACKOFF_MULTIPLIER = 2.0
RETRY_JITTER_MIN = 0.1
RETRY_JITTER_MAX = 0.3

# HTTP status codes considered transient
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# Lower-cased message fragments that mark transient provider failures
RETRYABLE_MESSAGE_SIGNATURES = (
    "rate limit",
    "rate_limit",
    "too many requests",
    "quota exceeded",
    "temporary failure",
    "service unavailable",
    "overloaded",
    "timeout",
    "timed out",
    "econnreset",
    "connection reset",
)

# =============================================================================
# CACHE / COST DEFAULTS
# =============================================================================

CACHE_TTL_SEC = 60.0
CACHE_MAX_ENTRIES = 1000

MAX_PROMPT_CHARS = 8000
MAX_TOKENS_SOFT_CAP = 2000
MAX_TOKENS_FLOOR = 1000
MAX_TEMPERATURE = 0.7
CHARS_PER_TOKEN = 4

# =============================================================================
# ENSEMBLE DEFAULTS
# =============================================================================

ENSEMBLE_DEADLINE_SEC = 10.0
ENSEMBLE_MIN_PROVIDERS = 2
RELIABILITY_INITIAL = 0.5
RELIABILITY_ALPHA = 0.2
DISAGREEMENT_CONFIDENCE_FLOOR = 0.05

# =============================================================================
# RISK DEFAULTS
# =============================================================================

DEFAULT_MAX_POSITION_SIZE_USD = 10000.0
DEFAULT_MIN_POSITION_SIZE_USD = 10.0
DEFAULT_RISK_PER_TRADE_PCT = 2.0
DEFAULT_MAX_DAILY_LOSS_PCT = 5.0
DEFAULT_MAX_DRAWDOWN = 0.15             # Fraction of peak value
DEFAULT_EMERGENCY_STOP = 0.225          # 1.5x the drawdown threshold
DEFAULT_CORRELATION_THRESHOLD = 0.7
DEFAULT_MAX_SECTOR_EXPOSURE = 0.40
DEFAULT_MAX_TOP_TWO_SECTOR_EXPOSURE = 0.60

# Drawdown ratio bands (ratio of drawdown to threshold) -> size multiplier
DRAWDOWN_SIZE_BANDS = (
    (1.0, 0.1),
    (0.8, 0.3),
    (0.6, 0.6),
    (0.4, 0.8),
    (0.2, 1.0),
)
DRAWDOWN_PROTECTION_RATIO = 0.8

VOLATILITY_MULTIPLIERS = {
    "LOW": 1.2,
    "NORMAL": 1.0,
    "HIGH": 0.5,
    "EXTREME": 0.3,
}

# Volatility classification cut-offs (fractional daily range)
VOLATILITY_EXTREME = 0.05
VOLATILITY_HIGH = 0.03
VOLATILITY_NORMAL = 0.015

# =============================================================================
# ORCHESTRATOR DEFAULTS
# =============================================================================

DECISION_COOLDOWN_SEC = 60.0
TASK_CANCEL_TIMEOUT_SEC = 5.0

# =============================================================================
# STATISTICS
# =============================================================================

TRADING_DAYS_PER_YEAR = 365  # Crypto markets trade every day
VAR_CONFIDENCE_95 = 0.95
VAR_CONFIDENCE_99 = 0.99
STRESS_TEST_SIMULATIONS = 1000
STRESS_TEST_BASE_STDDEV = 0.02


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "VERSION",
    "SYSTEM_NAME",
    # Circuit breaker
    "CB_FAILURE_THRESHOLD",
    "CB_RECOVERY_TIMEOUT_SEC",
    "CB_SUCCESS_THRESHOLD",
    "CB_EXPECTED_RESPONSE_TIME_SEC",
    # Retry
    "RETRY_MAX_ATTEMPTS",
    "RETRY_INITIAL_DELAY_MS",
    "RETRY_MAX_DELAY_MS",
    "RETRY_BACKOFF_MULTIPLIER",
    "RETRY_JITTER_MIN",
    "RETRY_JITTER_MAX",
    "RETRYABLE_STATUS_CODES",
    "RETRYABLE_MESSAGE_SIGNATURES",
    # Cache / cost
    "CACHE_TTL_SEC",
    "CACHE_MAX_ENTRIES",
    "MAX_PROMPT_CHARS",
    "MAX_TOKENS_SOFT_CAP",
    "MAX_TOKENS_FLOOR",
    "MAX_TEMPERATURE",
    "CHARS_PER_TOKEN",
    # Ensemble
    "ENSEMBLE_DEADLINE_SEC",
    "ENSEMBLE_MIN_PROVIDERS",
    "RELIABILITY_INITIAL",
    "RELIABILITY_ALPHA",
    "DISAGREEMENT_CONFIDENCE_FLOOR",
    # Risk
    "DEFAULT_MAX_POSITION_SIZE_USD",
    "DEFAULT_MIN_POSITION_SIZE_USD",
    "DEFAULT_RISK_PER_TRADE_PCT",
    "DEFAULT_MAX_DAILY_LOSS_PCT",
    "DEFAULT_MAX_DRAWDOWN",
    "DEFAULT_EMERGENCY_STOP",
    "DEFAULT_CORRELATION_THRESHOLD",
    "DEFAULT_MAX_SECTOR_EXPOSURE",
    "DEFAULT_MAX_TOP_TWO_SECTOR_EXPOSURE",
    "DRAWDOWN_SIZE_BANDS",
    "DRAWDOWN_PROTECTION_RATIO",
    "VOLATILITY_MULTIPLIERS",
    "VOLATILITY_EXTREME",
    "VOLATILITY_HIGH",
    "VOLATILITY_NORMAL",
    # Orchestrator
    "DECISION_COOLDOWN_SEC",
    "TASK_CANCEL_TIMEOUT_SEC",
    # Statistics
    "TRADING_DAYS_PER_YEAR",
    "VAR_CONFIDENCE_95",
    "VAR_CONFIDENCE_99",
    "STRESS_TEST_SIMULATIONS",
    "STRESS_TEST_BASE_STDDEV",
]
