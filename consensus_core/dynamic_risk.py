"""
CONSENSUS CORE v1.0 - Dynamic Risk Engine
=========================================

Turns an ensemble decision into a capital allocation, shrinking or
blocking it according to portfolio drawdown, market volatility,
market conditions, and concentration.

Pipeline (BUY/SELL decisions; HOLD allocates nothing):
    1. Drawdown gate      - veto at emergency/max threshold, else band multiplier
    2. Volatility regime  - LOW 1.2, NORMAL 1.0, HIGH 0.5, EXTREME 0.3
    3. Market condition   - REVERSAL 0.6, VOLATILE 0.7, NEUTRAL+LOW liquidity 0.8
    4. Session/sentiment  - OPENING/CLOSING 0.8, AFTER_HOURS 0.5, FEARFUL 0.8, GREEDY 0.9
    5. Correlation/sector - shrink to fit sector ceilings, veto below minimum size
    6. Clamp              - base size, max position size, risk-per-trade budget

The engine is a pure function of its inputs and the current
parameters. Parameters are replaced copy-on-write, so an assessment
always sees one consistent parameter set.

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import dataclasses
import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .constants import (
    DEFAULT_CORRELATION_THRESHOLD,
    DEFAULT_EMERGENCY_STOP,
    DEFAULT_MAX_DAILY_LOSS_PCT,
    DEFAULT_MAX_DRAWDOWN,
    DEFAULT_MAX_POSITION_SIZE_USD,
    DEFAULT_MAX_SECTOR_EXPOSURE,
    DEFAULT_MAX_TOP_TWO_SECTOR_EXPOSURE,
    DEFAULT_MIN_POSITION_SIZE_USD,
    DEFAULT_RISK_PER_TRADE_PCT,
    DRAWDOWN_PROTECTION_RATIO,
    DRAWDOWN_SIZE_BANDS,
    VOLATILITY_EXTREME,
    VOLATILITY_HIGH,
    VOLATILITY_MULTIPLIERS,
    VOLATILITY_NORMAL,
)
from .correlation_tracker import (
    CorrelationStrategy,
    SectorCorrelationStrategy,
    correlation_size_multiplier,
    portfolio_correlation_score,
    resolve_sector,
    sector_exposure,
)
from .exceptions import InvalidRiskParametersError
from .models import (
    DrawdownAction,
    DrawdownState,
    EnsembleDecision,
    Liquidity,
    MarketCondition,
    MarketData,
    MarketRegime,
    MarketVolatility,
    PortfolioSnapshot,
    RiskAssessment,
    RiskLevel,
    Sentiment,
    TimeOfDay,
    TradeAction,
    TrendDirection,
    VolatilityRegime,
)
from .var_engine import VaREngine

logger = logging.getLogger("CONSENSUS_DynamicRisk")


@dataclass(frozen=True)
class RiskParameters:
    """Risk limits. Thresholds are fractions unless suffixed _pct."""

    max_position_size_usd: float = DEFAULT_MAX_POSITION_SIZE_USD
    min_position_size_usd: float = DEFAULT_MIN_POSITION_SIZE_USD
    risk_per_trade_pct: float = DEFAULT_RISK_PER_TRADE_PCT  # % of portfolio value
    max_daily_loss_pct: float = DEFAULT_MAX_DAILY_LOSS_PCT
    max_drawdown_threshold: float = DEFAULT_MAX_DRAWDOWN
    emergency_stop_threshold: float = DEFAULT_EMERGENCY_STOP
    correlation_threshold: float = DEFAULT_CORRELATION_THRESHOLD
    max_sector_exposure: float = DEFAULT_MAX_SECTOR_EXPOSURE
    max_top_two_sector_exposure: float = DEFAULT_MAX_TOP_TWO_SECTOR_EXPOSURE
    volatility_adjustment: bool = True
    market_condition_adjustment: bool = True
    drawdown_protection: bool = True

    def validate(self) -> List[str]:
        """Return a list of problems (empty if valid)."""
        errors = []

        if self.max_position_size_usd <= 0:
            errors.append("max_position_size_usd must be > 0")
        if self.min_position_size_usd < 0:
            errors.append("min_position_size_usd must be >= 0")
        if self.min_position_size_usd > self.max_position_size_usd:
            errors.append("min_position_size_usd must be <= max_position_size_usd")
        if not 0 < self.risk_per_trade_pct <= 100:
            errors.append("risk_per_trade_pct must be in (0, 100]")
        if not 0 < self.max_daily_loss_pct <= 100:
            errors.append("max_daily_loss_pct must be in (0, 100]")
        if not 0 < self.max_drawdown_threshold < 1:
            errors.append("max_drawdown_threshold must be in (0, 1)")
        if self.emergency_stop_threshold < self.max_drawdown_threshold:
            errors.append("emergency_stop_threshold must be >= max_drawdown_threshold")
        if not 0 <= self.correlation_threshold <= 1:
            errors.append("correlation_threshold must be in [0, 1]")
        if not 0 < self.max_sector_exposure <= 1:
            errors.append("max_sector_exposure must be in (0, 1]")
        if not self.max_sector_exposure <= self.max_top_two_sector_exposure <= 1:
            errors.append("max_top_two_sector_exposure must be in [max_sector_exposure, 1]")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


# =============================================================================
# MARKET CLASSIFICATION
# =============================================================================


def classify_volatility(volatility: float) -> MarketVolatility:
    """Map a fractional daily range onto a volatility regime."""
    if volatility >= VOLATILITY_EXTREME:
        regime = VolatilityRegime.EXTREME
    elif volatility >= VOLATILITY_HIGH:
        regime = VolatilityRegime.HIGH
    elif volatility >= VOLATILITY_NORMAL:
        regime = VolatilityRegime.NORMAL
    else:
        regime = VolatilityRegime.LOW
    return MarketVolatility(current=volatility, regime=regime)


def session_of(moment: datetime) -> TimeOfDay:
    """UTC session buckets around the US equity session, which drives crypto flow."""
    hour = moment.astimezone(timezone.utc).hour
    if 13 <= hour < 15:
        return TimeOfDay.OPENING
    if 19 <= hour < 21:
        return TimeOfDay.CLOSING
    if 0 <= hour < 6:
        return TimeOfDay.AFTER_HOURS
    return TimeOfDay.MID_DAY


def classify_market_condition(
    market_data: MarketData, reversal_momentum: float = 0.02
) -> MarketCondition:
    """Derive the market condition record from a market data snapshot."""
    volatility = classify_volatility(market_data.volatility)
    trend = market_data.trend
    momentum = market_data.momentum

    if (trend == TrendDirection.BULLISH and momentum <= -reversal_momentum) or (
        trend == TrendDirection.BEARISH and momentum >= reversal_momentum
    ):
        regime = MarketRegime.REVERSAL
    elif volatility.regime in (VolatilityRegime.HIGH, VolatilityRegime.EXTREME):
        regime = MarketRegime.VOLATILE
    elif trend != TrendDirection.NEUTRAL:
        regime = MarketRegime.TRENDING
    else:
        regime = MarketRegime.RANGING

    return MarketCondition(
        regime=regime,
        trend=trend,
        sentiment=market_data.sentiment,
        liquidity=market_data.liquidity,
        time_of_day=session_of(market_data.timestamp),
    )


# =============================================================================
# ENGINE
# =============================================================================


class DynamicRiskEngine:
    """
    Drawdown- and volatility-aware position sizing.

    Example:
        engine = DynamicRiskEngine(RiskParameters(max_position_size_usd=5000))

        assessment = engine.assess(
            "BTCUSDT", ensemble_decision, snapshot, volatility, condition
        )
        if assessment.vetoed:
            logger.warning(assessment.veto_reason)
    """

    def __init__(
        self,
        parameters: Optional[RiskParameters] = None,
        correlation: Optional[CorrelationStrategy] = None,
        var_engine: Optional[VaREngine] = None,
    ):
        params = parameters or RiskParameters()
        errors = params.validate()
        if errors:
            raise InvalidRiskParametersError("; ".join(errors), code="INVALID_RISK_PARAMETERS")

        self._params = params
        self._write_lock = threading.Lock()
        self.correlation = correlation or SectorCorrelationStrategy()
        self.var_engine = var_engine

        logger.info(
            f"DynamicRiskEngine initialized: max_position=${params.max_position_size_usd:,.0f}, "
            f"max_drawdown={params.max_drawdown_threshold:.1%}, "
            f"emergency_stop={params.emergency_stop_threshold:.1%}"
        )

    @property
    def parameters(self) -> RiskParameters:
        return self._params

    def update_risk_parameters(self, **changes: Any) -> RiskParameters:
        """
        Replace parameters with a validated copy.

        Raises:
            InvalidRiskParametersError: Unknown field or invalid resulting set
        """
        known = {f.name for f in dataclasses.fields(RiskParameters)}
        unknown = set(changes) - known
        if unknown:
            raise InvalidRiskParametersError(
                f"Unknown risk parameters: {sorted(unknown)}", code="UNKNOWN_PARAMETER"
            )

        with self._write_lock:
            candidate = dataclasses.replace(self._params, **changes)
            errors = candidate.validate()
            if errors:
                raise InvalidRiskParametersError("; ".join(errors), code="INVALID_RISK_PARAMETERS")
            self._params = candidate

        logger.info(f"Risk parameters updated: {changes}")
        return candidate

    # -------------------------------------------------------------------------
    # Drawdown
    # -------------------------------------------------------------------------

    @staticmethod
    def _band_multiplier(ratio: float) -> float:
        for threshold, multiplier in DRAWDOWN_SIZE_BANDS:
            if ratio >= threshold:
                return multiplier
        return 1.0

    def compute_drawdown_state(
        self, snapshot: PortfolioSnapshot, params: Optional[RiskParameters] = None
    ) -> DrawdownState:
        params = params or self._params
        peak = snapshot.peak_value
        current = snapshot.total_value
        drawdown = max((peak - current) / peak, 0.0) if peak > 0 else 0.0
        ratio = drawdown / params.max_drawdown_threshold

        if drawdown >= params.emergency_stop_threshold:
            return DrawdownState(drawdown, ratio, True, DrawdownAction.EMERGENCY_EXIT, 0.0)
        if drawdown >= params.max_drawdown_threshold:
            return DrawdownState(drawdown, ratio, True, DrawdownAction.STOP_TRADING, 0.0)

        protection = ratio >= DRAWDOWN_PROTECTION_RATIO
        return DrawdownState(
            current_drawdown=drawdown,
            drawdown_ratio=ratio,
            protection_active=protection,
            recommended_action=(
                DrawdownAction.REDUCE_POSITIONS if protection else DrawdownAction.NONE
            ),
            size_multiplier=self._band_multiplier(ratio),
        )

    @staticmethod
    def daily_loss_pct(snapshot: PortfolioSnapshot) -> float:
        """Loss over the 24h ending at the most recent history point, in %."""
        if not snapshot.historical_values:
            return 0.0

        latest_ts = max(ts for ts, _ in snapshot.historical_values)
        window_start = latest_ts - timedelta(hours=24)
        in_window = sorted(
            (ts, v) for ts, v in snapshot.historical_values if ts >= window_start
        )
        if not in_window:
            return 0.0

        reference = in_window[0][1]
        if reference <= 0:
            return 0.0
        return max((reference - snapshot.total_value) / reference * 100.0, 0.0)

    def dynamic_limits(self, snapshot: PortfolioSnapshot) -> Dict[str, float]:
        """Progressively tightened limits for the current drawdown."""
        params = self._params
        state = self.compute_drawdown_state(snapshot, params)
        ratio = state.drawdown_ratio

        if ratio >= 1.0:
            size_m, risk_m, loss_m = 0.0, 0.0, 0.0
        elif ratio >= 0.8:
            size_m, risk_m, loss_m = 0.1, 0.2, 0.3
        elif ratio >= 0.6:
            size_m, risk_m, loss_m = 0.3, 0.4, 0.5
        elif ratio >= 0.4:
            size_m, risk_m, loss_m = 0.6, 0.7, 0.7
        elif ratio >= 0.2:
            size_m, risk_m, loss_m = 0.8, 0.9, 0.9
        else:
            size_m, risk_m, loss_m = 1.0, 1.0, 1.0

        return {
            "drawdown_ratio": ratio,
            "max_position_size_usd": params.max_position_size_usd * size_m,
            "risk_per_trade_pct": params.risk_per_trade_pct * risk_m,
            "max_daily_loss_pct": params.max_daily_loss_pct * loss_m,
        }

    def check_recovery_mode(
        self,
        snapshot: PortfolioSnapshot,
        last_protection_trigger: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Whether a drawdown is healing and how much risk may be restored.

        Recovery requires the drawdown to be below 80% of the threshold
        and the last 10 values to average above the 10 before them.
        Restoration starts 7 days after the last protection trigger and
        is complete after 30.
        """
        params = self._params
        state = self.compute_drawdown_state(snapshot, params)
        values = [v for _, v in sorted(snapshot.historical_values)]

        improving = False
        if len(values) >= 20:
            recent = values[-10:]
            older = values[-20:-10]
            improving = sum(recent) / len(recent) > sum(older) / len(older)

        limit = params.max_drawdown_threshold * DRAWDOWN_PROTECTION_RATIO
        in_recovery = state.current_drawdown < limit and improving

        now = now or datetime.now(timezone.utc)
        days_since = (
            (now - last_protection_trigger).total_seconds() / 86400.0
            if last_protection_trigger
            else 0.0
        )

        restoration = 0.0
        if in_recovery and days_since >= 7:
            improvement = max(0.0, (limit - state.current_drawdown) / limit)
            time_factor = min(1.0, days_since / 30.0)
            restoration = min(100.0, (improvement * 0.7 + time_factor * 0.3) * 100.0)

        return {
            "in_recovery_mode": in_recovery,
            "can_restore_risk": restoration >= 50.0,
            "restoration_level": restoration,
            "current_drawdown": state.current_drawdown,
        }

    def suggest_parameter_adjustments(
        self, volatility: MarketVolatility, snapshot: PortfolioSnapshot
    ) -> Dict[str, float]:
        """Proposed parameter changes; callers decide whether to apply them."""
        params = self._params
        updates: Dict[str, float] = {}

        if volatility.regime == VolatilityRegime.EXTREME:
            updates["risk_per_trade_pct"] = max(1.0, params.risk_per_trade_pct * 0.5)
        elif volatility.regime == VolatilityRegime.HIGH:
            updates["risk_per_trade_pct"] = max(1.5, params.risk_per_trade_pct * 0.75)

        state = self.compute_drawdown_state(snapshot, params)
        if state.drawdown_ratio > DRAWDOWN_PROTECTION_RATIO:
            updates["max_daily_loss_pct"] = max(1.0, params.max_daily_loss_pct * 0.5)

        return updates

    # -------------------------------------------------------------------------
    # Sizing
    # -------------------------------------------------------------------------

    def sector_headroom(
        self, symbol: str, snapshot: PortfolioSnapshot, params: Optional[RiskParameters] = None
    ) -> float:
        """
        Largest USD amount of ``symbol`` that keeps sector ceilings intact.

        Exposure is measured against total portfolio value. Only the
        growth of the symbol's own sector is constrained; concentration
        elsewhere that predates the trade is not held against it.
        """
        params = params or self._params
        total = snapshot.total_value if snapshot.total_value > 0 else snapshot.invested_value
        if total <= 0:
            return 0.0

        exposure = sector_exposure(self.correlation, snapshot.open_positions)
        sector = resolve_sector(self.correlation, symbol, snapshot.open_positions)
        own = exposure.get(sector, 0.0)
        others = sorted((v for s, v in exposure.items() if s != sector), reverse=True)
        largest_other = others[0] if others else 0.0
        second_other = others[1] if len(others) > 1 else 0.0

        single_cap = params.max_sector_exposure * total - own
        # Either the sector stays out of the top two, or the top two fit the ceiling
        top_two_cap = max(
            second_other - own,
            params.max_top_two_sector_exposure * total - own - largest_other,
        )
        return max(min(single_cap, top_two_cap), 0.0)

    @staticmethod
    def _risk_level(multiplier: float) -> RiskLevel:
        if multiplier >= 0.9:
            return RiskLevel.LOW
        if multiplier >= 0.5:
            return RiskLevel.MEDIUM
        if multiplier >= 0.25:
            return RiskLevel.HIGH
        return RiskLevel.CRITICAL

    def _condition_factors(self, condition: MarketCondition) -> Dict[str, float]:
        factors: Dict[str, float] = {}

        if condition.regime == MarketRegime.REVERSAL:
            factors["market_regime"] = 0.6
        elif condition.regime == MarketRegime.VOLATILE:
            factors["market_regime"] = 0.7
        if condition.trend == TrendDirection.NEUTRAL and condition.liquidity == Liquidity.LOW:
            factors["liquidity"] = 0.8

        if condition.time_of_day in (TimeOfDay.OPENING, TimeOfDay.CLOSING):
            factors["time_of_day"] = 0.8
        elif condition.time_of_day == TimeOfDay.AFTER_HOURS:
            factors["time_of_day"] = 0.5

        if condition.sentiment == Sentiment.FEARFUL:
            factors["sentiment"] = 0.8
        elif condition.sentiment == Sentiment.GREEDY:
            factors["sentiment"] = 0.9

        return factors

    def assess(
        self,
        symbol: str,
        decision: EnsembleDecision,
        snapshot: PortfolioSnapshot,
        volatility: MarketVolatility,
        condition: MarketCondition,
        base_size_usd: Optional[float] = None,
    ) -> RiskAssessment:
        """
        Run the sizing pipeline for one decision.

        Args:
            symbol: Traded symbol (for concentration limits)
            decision: Ensemble consensus
            snapshot: Portfolio value, positions and value history
            volatility: Current volatility and regime
            condition: Market regime, trend, sentiment, liquidity, session
            base_size_usd: Starting size; defaults to max_position_size_usd

        Returns:
            RiskAssessment; ``veto_reason`` set when the trade is blocked
        """
        params = self._params
        base = params.max_position_size_usd if base_size_usd is None else max(base_size_usd, 0.0)
        drawdown = self.compute_drawdown_state(snapshot, params)
        portfolio_var = self.var_engine.portfolio_var(snapshot) if self.var_engine else None

        def veto(reason: str, factors: Dict[str, float], notes: List[str]) -> RiskAssessment:
            logger.warning(f"{symbol} {decision.action.value} vetoed: {reason}")
            return RiskAssessment(
                base_size_usd=base,
                adjusted_size_usd=0.0,
                risk_level=RiskLevel.CRITICAL,
                multiplier=0.0,
                drawdown=drawdown,
                adjustment_factors=factors,
                reasoning=notes + [reason],
                veto_reason=reason,
                portfolio_var=portfolio_var,
            )

        if decision.action == TradeAction.HOLD:
            return RiskAssessment(
                base_size_usd=base,
                adjusted_size_usd=0.0,
                risk_level=self._risk_level(drawdown.size_multiplier),
                multiplier=0.0,
                drawdown=drawdown,
                reasoning=["HOLD - no capital allocated"],
                portfolio_var=portfolio_var,
            )

        factors: Dict[str, float] = {}
        notes: List[str] = []

        # 1. Drawdown gate
        if drawdown.recommended_action == DrawdownAction.EMERGENCY_EXIT:
            logger.critical(
                f"Emergency stop: drawdown {drawdown.current_drawdown:.2%} "
                f">= {params.emergency_stop_threshold:.2%}"
            )
            return veto(
                f"EMERGENCY_EXIT: drawdown {drawdown.current_drawdown:.2%} reached the "
                f"emergency stop threshold {params.emergency_stop_threshold:.2%}",
                factors,
                notes,
            )

        if params.drawdown_protection:
            if drawdown.recommended_action == DrawdownAction.STOP_TRADING:
                return veto(
                    f"STOP_TRADING: drawdown {drawdown.current_drawdown:.2%} reached the "
                    f"maximum drawdown threshold {params.max_drawdown_threshold:.2%}",
                    factors,
                    notes,
                )

            daily_loss = self.daily_loss_pct(snapshot)
            if daily_loss >= params.max_daily_loss_pct:
                return veto(
                    f"Daily loss {daily_loss:.2f}% reached the limit of "
                    f"{params.max_daily_loss_pct:.2f}%",
                    factors,
                    notes,
                )

            factors["drawdown"] = drawdown.size_multiplier
            if drawdown.protection_active:
                notes.append(
                    f"Drawdown protection active ({drawdown.drawdown_ratio:.0%} of threshold)"
                )

        # 2. Volatility regime
        if params.volatility_adjustment:
            factors["volatility"] = VOLATILITY_MULTIPLIERS[volatility.regime.value]
            if volatility.regime != VolatilityRegime.NORMAL:
                notes.append(f"{volatility.regime.value} volatility ({volatility.current:.2%})")

        # 3-4. Market condition, session, sentiment
        if params.market_condition_adjustment:
            condition_factors = self._condition_factors(condition)
            factors.update(condition_factors)
            if condition_factors:
                notes.append(
                    "Market condition adjustments: "
                    + ", ".join(f"{k}={v}" for k, v in condition_factors.items())
                )

        multiplier = math.prod(factors.values()) if factors else 1.0
        size = base * multiplier

        # 5. Correlation and sector concentration (adding exposure only)
        if decision.action == TradeAction.BUY and size > 0:
            score = portfolio_correlation_score(
                self.correlation, snapshot.open_positions, symbol, size
            )
            corr_multiplier = correlation_size_multiplier(score, params.correlation_threshold)
            if corr_multiplier < 1.0:
                size *= corr_multiplier
                factors["correlation"] = corr_multiplier
                notes.append(f"Portfolio correlation {score:.2f} above threshold")

            headroom = self.sector_headroom(symbol, snapshot, params)
            if size > headroom:
                sector = resolve_sector(self.correlation, symbol, snapshot.open_positions)
                if headroom < params.min_position_size_usd:
                    return veto(
                        f"Sector concentration: {sector} has ${headroom:,.2f} headroom, "
                        f"below the ${params.min_position_size_usd:,.2f} minimum",
                        factors,
                        notes,
                    )
                notes.append(f"Sector {sector} capped at ${headroom:,.2f}")
                size = headroom

        # 6. Clamp
        caps = [base, params.max_position_size_usd]
        if snapshot.total_value > 0:
            caps.append(snapshot.total_value * params.risk_per_trade_pct / 100.0)
        cap = min(caps)
        if size > cap:
            size = cap

        if size < params.min_position_size_usd:
            return veto(
                f"Adjusted size ${size:,.2f} below minimum tradable size "
                f"${params.min_position_size_usd:,.2f}",
                factors,
                notes,
            )

        # Level reflects every reduction, including concentration and clamps
        risk_level = self._risk_level(size / base if base > 0 else 0.0)
        logger.info(
            f"{symbol} {decision.action.value}: ${base:,.2f} -> ${size:,.2f} "
            f"(x{multiplier:.3f}, {risk_level.value})"
        )

        return RiskAssessment(
            base_size_usd=base,
            adjusted_size_usd=size,
            risk_level=risk_level,
            multiplier=multiplier,
            drawdown=drawdown,
            adjustment_factors=factors,
            reasoning=notes,
            portfolio_var=portfolio_var,
        )


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "RiskParameters",
    "classify_volatility",
    "classify_market_condition",
    "session_of",
    "DynamicRiskEngine",
]
