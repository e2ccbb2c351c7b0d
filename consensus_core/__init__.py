# CONSENSUS Core - Decision Logic
"""
Consensus and risk logic for the CONSENSUS trading bot.

Modules:
    constants: System-wide constants and default limits
    exceptions: Centralized exception hierarchy
    models: Signals, decisions, portfolio and market records
    circuit_breaker: Fail-fast protection for external calls
    retry: Exponential backoff with jitter
    response_cache: TTL/LRU response cache and request cost optimizer
    ensemble: Multi-provider signal aggregation
    correlation_tracker: Correlation strategies and sector exposure
    var_engine: VaR/CVaR and Monte-Carlo stress testing
    dynamic_risk: Drawdown- and volatility-aware position sizing
"""

from .constants import (
    VERSION,
    SYSTEM_NAME,
    TRADING_DAYS_PER_YEAR,
)

from .exceptions import (
    ConsensusError,
    ProviderError,
    ProviderResponseError,
    CircuitOpenError,
    RetryExhaustedError,
    EnsembleError,
    RiskError,
    InvalidRiskParametersError,
    EmergencyStopError,
    DataError,
    ConfigurationError,
    InvalidConfigError,
    is_recoverable,
    is_critical,
)

from .models import (
    TradeAction,
    VolatilityRegime,
    MarketRegime,
    TrendDirection,
    Sentiment,
    Liquidity,
    TimeOfDay,
    PositionSide,
    DrawdownAction,
    RiskLevel,
    ProviderSignal,
    EnsembleDecision,
    MarketData,
    MarketVolatility,
    MarketCondition,
    Position,
    PortfolioSnapshot,
    DrawdownState,
    RiskAssessment,
    TradingDecision,
)

from .circuit_breaker import (
    CircuitState,
    CircuitBreakerConfig,
    CircuitBreakerStats,
    CircuitBreaker,
    CircuitBreakerRegistry,
)

from .retry import (
    RetryConfig,
    RetryPresets,
    RetryAttempt,
    RetryPolicy,
    is_retryable_error,
)

from .response_cache import (
    ProviderRequest,
    CacheConfig,
    ResponseCache,
    CostConfig,
    CostOptimizer,
)

from .ensemble import (
    SignalSource,
    EnsembleConfig,
    EnsembleMember,
    ReliabilityTracker,
    EnsembleAggregator,
)

from .correlation_tracker import (
    CorrelationConfig,
    CorrelationStrategy,
    SectorCorrelationStrategy,
    ReturnsCorrelationStrategy,
)

from .var_engine import (
    VaRConfig,
    StressScenario,
    StressTestResult,
    VaREngine,
)

from .dynamic_risk import (
    RiskParameters,
    DynamicRiskEngine,
    classify_volatility,
    classify_market_condition,
)

__version__ = VERSION

__all__ = [
    # Version
    "__version__",

    # Constants
    "VERSION",
    "SYSTEM_NAME",
    "TRADING_DAYS_PER_YEAR",

    # Exceptions
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

    # Models
    "TradeAction",
    "VolatilityRegime",
    "MarketRegime",
    "TrendDirection",
    "Sentiment",
    "Liquidity",
    "TimeOfDay",
    "PositionSide",
    "DrawdownAction",
    "RiskLevel",
    "ProviderSignal",
    "EnsembleDecision",
    "MarketData",
    "MarketVolatility",
    "MarketCondition",
    "Position",
    "PortfolioSnapshot",
    "DrawdownState",
    "RiskAssessment",
    "TradingDecision",

    # Circuit Breaker
    "CircuitState",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitBreaker",
    "CircuitBreakerRegistry",

    # Retry
    "RetryConfig",
    "RetryPresets",
    "RetryAttempt",
    "RetryPolicy",
    "is_retryable_error",

    # Response Cache
    "ProviderRequest",
    "CacheConfig",
    "ResponseCache",
    "CostConfig",
    "CostOptimizer",

    # Ensemble
    "SignalSource",
    "EnsembleConfig",
    "EnsembleMember",
    "ReliabilityTracker",
    "EnsembleAggregator",

    # Correlation
    "CorrelationConfig",
    "CorrelationStrategy",
    "SectorCorrelationStrategy",
    "ReturnsCorrelationStrategy",

    # VaR
    "VaRConfig",
    "StressScenario",
    "StressTestResult",
    "VaREngine",

    # Dynamic Risk
    "RiskParameters",
    "DynamicRiskEngine",
    "classify_volatility",
    "classify_market_condition",
]
