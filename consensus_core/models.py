"""
CONSENSUS CORE v1.0 - Data Model
================================

Records exchanged between providers, the ensemble aggregator, the
dynamic risk engine and the decision orchestrator.

Signals and ensemble decisions are immutable once produced; they are
shared between concurrent tasks without copying.

Author: CONSENSUS Development Team
Version: 1.0.0
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMERATIONS
# =============================================================================


class TradeAction(Enum):
    """Action proposed by a provider or decided by the ensemble."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"

    @classmethod
    def parse(cls, value: Any) -> "TradeAction":
        """Parse a free-form action; anything unrecognized becomes HOLD."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                return cls.HOLD
        return cls.HOLD


class VolatilityRegime(Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class MarketRegime(Enum):
    TRENDING = "TRENDING"
    RANGING = "RANGING"
    VOLATILE = "VOLATILE"
    REVERSAL = "REVERSAL"


class TrendDirection(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class Sentiment(Enum):
    FEARFUL = "FEARFUL"
    NEUTRAL = "NEUTRAL"
    GREEDY = "GREEDY"


class Liquidity(Enum):
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


class TimeOfDay(Enum):
    OPENING = "OPENING"
    MID_DAY = "MID_DAY"
    CLOSING = "CLOSING"
    AFTER_HOURS = "AFTER_HOURS"


class PositionSide(Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class DrawdownAction(Enum):
    """Recommended response to the current drawdown."""

    NONE = "NONE"
    REDUCE_POSITIONS = "REDUCE_POSITIONS"
    STOP_TRADING = "STOP_TRADING"
    EMERGENCY_EXIT = "EMERGENCY_EXIT"


class RiskLevel(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# =============================================================================
# PROVIDER / ENSEMBLE RECORDS
# =============================================================================


@dataclass(frozen=True)
class ProviderSignal:
    """One provider's trading recommendation."""

    provider_id: str
    action: TradeAction
    confidence: float  # 0-1
    entry_price: float
    stop_loss: float
    take_profit: float
    reasoning: str = ""
    latency_ms: float = 0.0
    model: str = ""
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "action": self.action.value,
            "confidence": self.confidence,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "reasoning": self.reasoning,
            "latency_ms": self.latency_ms,
            "model": self.model,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class EnsembleDecision:
    """Consensus reached over the signals that arrived before the deadline."""

    action: TradeAction
    confidence: float
    consensus_ratio: float
    disagreement_index: float
    contributing_signals: Tuple[ProviderSignal, ...] = ()
    reasoning: str = ""
    fallback_used: bool = False
    excluded_providers: Tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def provider_count(self) -> int:
        return len(self.contributing_signals)

    def agreeing_signals(self) -> List[ProviderSignal]:
        return [s for s in self.contributing_signals if s.action == self.action]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "confidence": self.confidence,
            "consensus_ratio": self.consensus_ratio,
            "disagreement_index": self.disagreement_index,
            "contributing_signals": [s.to_dict() for s in self.contributing_signals],
            "reasoning": self.reasoning,
            "fallback_used": self.fallback_used,
            "excluded_providers": list(self.excluded_providers),
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# MARKET RECORDS
# =============================================================================


@dataclass
class MarketData:
    """Snapshot supplied by the market data collaborator."""

    symbol: str
    price: float
    volume: float = 0.0
    high_24h: float = 0.0
    low_24h: float = 0.0
    volatility: float = 0.0  # Fractional daily range
    trend: TrendDirection = TrendDirection.NEUTRAL
    momentum: float = 0.0
    support: Optional[float] = None
    resistance: Optional[float] = None
    sentiment: Sentiment = Sentiment.NEUTRAL
    liquidity: Liquidity = Liquidity.NORMAL
    timestamp: datetime = field(default_factory=_utcnow)

    def to_context(self) -> Dict[str, Any]:
        """Flatten into the provider prompt context."""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "volume": self.volume,
            "high_24h": self.high_24h,
            "low_24h": self.low_24h,
            "volatility": self.volatility,
            "trend": self.trend.value,
            "momentum": self.momentum,
            "support": self.support,
            "resistance": self.resistance,
        }


@dataclass(frozen=True)
class MarketVolatility:
    current: float
    regime: VolatilityRegime


@dataclass(frozen=True)
class MarketCondition:
    regime: MarketRegime = MarketRegime.RANGING
    trend: TrendDirection = TrendDirection.NEUTRAL
    sentiment: Sentiment = Sentiment.NEUTRAL
    liquidity: Liquidity = Liquidity.NORMAL
    time_of_day: TimeOfDay = TimeOfDay.MID_DAY


# =============================================================================
# PORTFOLIO RECORDS
# =============================================================================


@dataclass(frozen=True)
class Position:
    """Open position as reported by the position store."""

    symbol: str
    quantity: float
    entry_price: float
    current_price: float
    side: PositionSide = PositionSide.LONG
    sector: Optional[str] = None

    @property
    def value(self) -> float:
        return abs(self.quantity) * self.current_price

    @property
    def unrealized_pnl(self) -> float:
        direction = 1.0 if self.side == PositionSide.LONG else -1.0
        return direction * self.quantity * (self.current_price - self.entry_price)


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Portfolio state read once per decision cycle."""

    total_value: float
    open_positions: Tuple[Position, ...] = ()
    historical_values: Tuple[Tuple[datetime, float], ...] = ()

    @property
    def values(self) -> List[float]:
        """Historical values followed by the current total value."""
        return [v for _, v in self.historical_values] + [self.total_value]

    @property
    def peak_value(self) -> float:
        return max(self.values)

    @property
    def invested_value(self) -> float:
        return sum(p.value for p in self.open_positions)


@dataclass(frozen=True)
class DrawdownState:
    current_drawdown: float  # Fraction of peak
    drawdown_ratio: float  # current_drawdown / max threshold
    protection_active: bool
    recommended_action: DrawdownAction
    size_multiplier: float


@dataclass
class RiskAssessment:
    """Outcome of the dynamic risk pipeline for one decision."""

    base_size_usd: float
    adjusted_size_usd: float
    risk_level: RiskLevel
    multiplier: float
    drawdown: DrawdownState
    adjustment_factors: Dict[str, float] = field(default_factory=dict)
    reasoning: List[str] = field(default_factory=list)
    veto_reason: Optional[str] = None
    portfolio_var: Optional[float] = None

    @property
    def vetoed(self) -> bool:
        return self.veto_reason is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_size_usd": self.base_size_usd,
            "adjusted_size_usd": self.adjusted_size_usd,
            "risk_level": self.risk_level.value,
            "multiplier": self.multiplier,
            "adjustment_factors": dict(self.adjustment_factors),
            "reasoning": list(self.reasoning),
            "veto_reason": self.veto_reason,
            "portfolio_var": self.portfolio_var,
            "drawdown": {
                "current_drawdown": self.drawdown.current_drawdown,
                "drawdown_ratio": self.drawdown.drawdown_ratio,
                "protection_active": self.drawdown.protection_active,
                "recommended_action": self.drawdown.recommended_action.value,
                "size_multiplier": self.drawdown.size_multiplier,
            },
        }


@dataclass
class TradingDecision:
    """Final, risk-adjusted decision emitted by the orchestrator."""

    symbol: str
    action: TradeAction
    size_usd: float
    stop_loss: float
    take_profit: float
    confidence: float
    reasoning: str
    should_execute: bool
    ensemble_decision: Optional[EnsembleDecision] = None
    risk_assessment: Optional[RiskAssessment] = None
    veto_reason: Optional[str] = None
    decision_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def hold(cls, symbol: str, reasoning: str, **kwargs) -> "TradingDecision":
        """A non-executable HOLD with zero size."""
        return cls(
            symbol=symbol,
            action=TradeAction.HOLD,
            size_usd=0.0,
            stop_loss=0.0,
            take_profit=0.0,
            confidence=kwargs.pop("confidence", 0.0),
            reasoning=reasoning,
            should_execute=False,
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "action": self.action.value,
            "size_usd": self.size_usd,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "should_execute": self.should_execute,
            "veto_reason": self.veto_reason,
            "decision_id": self.decision_id,
            "timestamp": self.timestamp.isoformat(),
            "ensemble_decision": (
                self.ensemble_decision.to_dict() if self.ensemble_decision else None
            ),
            "risk_assessment": (
                self.risk_assessment.to_dict() if self.risk_assessment else None
            ),
        }


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
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
]
