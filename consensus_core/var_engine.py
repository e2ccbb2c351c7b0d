"""
CONSENSUS CORE v1.0 - VaR & Stress Engine
=========================================

Tail risk measures and Monte-Carlo stress testing for the portfolio.

Formulas:
    VaR(alpha)  = percentile(returns, (1-alpha)*100)
    CVaR(alpha) = mean(returns | returns <= VaR(alpha))   (Expected Shortfall)

Stress test:
    Each simulation shocks every open position with
        shock = -market_drop + sigma * (sqrt(rho) * Z_market + sqrt(1-rho) * Z_asset)
    where sigma = base_stddev * volatility_spike. Cash is not shocked.

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .constants import (
    STRESS_TEST_BASE_STDDEV,
    STRESS_TEST_SIMULATIONS,
    TRADING_DAYS_PER_YEAR,
    VAR_CONFIDENCE_95,
)
from .models import PortfolioSnapshot, Position, PositionSide

logger = logging.getLogger("CONSENSUS_VaREngine")


@dataclass
class VaRConfig:
    """Configuration for VaR and portfolio metrics."""

    lookback: int = 60  # Observations used for VaR/CVaR
    min_observations: int = 10
    confidence: float = VAR_CONFIDENCE_95
    periods_per_year: int = TRADING_DAYS_PER_YEAR
    risk_free_rate: float = 0.0  # Annualized


@dataclass
class StressScenario:
    """Parameters of one Monte-Carlo stress scenario."""

    name: str = "market_crash"
    market_drop: float = 0.20  # Mean shock applied to every position
    volatility_spike: float = 2.0
    correlation: float = 0.7  # Share of variance from the common factor
    simulations: int = STRESS_TEST_SIMULATIONS
    base_stddev: float = STRESS_TEST_BASE_STDDEV
    seed: Optional[int] = None


@dataclass
class StressTestResult:
    """Distribution of simulated portfolio values under a scenario."""

    scenario: str
    initial_value: float
    mean_value: float
    worst_value: float
    mean_impact_pct: float  # Mean change as % of initial value
    worst_loss: float  # USD
    var: float  # USD loss at the engine confidence
    expected_shortfall: float  # USD mean loss beyond VaR
    probability_of_loss: float
    simulated_values: np.ndarray = field(repr=False, default_factory=lambda: np.array([]))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "initial_value": self.initial_value,
            "mean_value": self.mean_value,
            "worst_value": self.worst_value,
            "mean_impact_pct": self.mean_impact_pct,
            "worst_loss": self.worst_loss,
            "var": self.var,
            "expected_shortfall": self.expected_shortfall,
            "probability_of_loss": self.probability_of_loss,
            "simulations": int(self.simulated_values.size),
        }


@dataclass
class PortfolioRiskMetrics:
    volatility: float  # Annualized
    sharpe_ratio: float
    sortino_ratio: float
    max_drawdown: float  # Fraction of peak
    var: float  # Return at the engine confidence (negative = loss)
    cvar: float
    concentration: float  # Herfindahl index of position values
    position_count: int


class VaREngine:
    """
    Historical VaR/CVaR, portfolio metrics and Monte-Carlo stress tests.

    Example:
        engine = VaREngine()
        var_usd = engine.portfolio_var(snapshot)

        result = engine.run_stress_test(snapshot, StressScenario(market_drop=0.3, seed=7))
        print(result.expected_shortfall)
    """

    def __init__(self, config: Optional[VaRConfig] = None):
        self.cfg = config or VaRConfig()
        self._stress_history: List[Dict[str, Any]] = []

        logger.info(
            f"VaREngine initialized: lookback={self.cfg.lookback}, "
            f"confidence={self.cfg.confidence:.0%}"
        )

    # -------------------------------------------------------------------------
    # Historical measures
    # -------------------------------------------------------------------------

    def compute_var(self, returns: pd.Series, confidence: Optional[float] = None) -> float:
        """
        Value at Risk on a returns series.

        Returns:
            VaR return (typically negative), NaN if data is insufficient
        """
        confidence = confidence or self.cfg.confidence
        if len(returns) < self.cfg.min_observations:
            return np.nan

        window = returns.tail(self.cfg.lookback)
        return float(np.percentile(window, (1 - confidence) * 100))

    def compute_cvar(self, returns: pd.Series, confidence: Optional[float] = None) -> float:
        """
        Conditional VaR (Expected Shortfall) on a returns series.

        Returns:
            Mean tail return (typically negative), NaN if data is insufficient
        """
        confidence = confidence or self.cfg.confidence
        if len(returns) < self.cfg.min_observations:
            return np.nan

        window = returns.tail(self.cfg.lookback)
        sorted_returns = np.sort(window.values)

        tail_count = max(1, int((1 - confidence) * len(sorted_returns)))
        return float(sorted_returns[:tail_count].mean())

    @staticmethod
    def returns_from_values(values: Sequence[float]) -> pd.Series:
        series = pd.Series(list(values), dtype=float)
        return series.pct_change().dropna()

    def portfolio_var(
        self, snapshot: PortfolioSnapshot, confidence: Optional[float] = None
    ) -> Optional[float]:
        """One-period VaR in USD (positive = loss), None without enough history."""
        returns = self.returns_from_values(snapshot.values)
        var = self.compute_var(returns, confidence)
        if np.isnan(var):
            return None
        return max(-var, 0.0) * snapshot.total_value

    @staticmethod
    def max_drawdown(values: Sequence[float]) -> float:
        if len(values) == 0:
            return 0.0
        arr = np.asarray(values, dtype=float)
        peaks = np.maximum.accumulate(arr)
        with np.errstate(divide="ignore", invalid="ignore"):
            drawdowns = np.where(peaks > 0, (peaks - arr) / peaks, 0.0)
        return float(drawdowns.max())

    @staticmethod
    def herfindahl(positions: Sequence[Position]) -> float:
        values = np.array([p.value for p in positions], dtype=float)
        total = values.sum()
        if total <= 0:
            return 0.0
        weights = values / total
        return float(np.sum(weights ** 2))

    def risk_metrics(self, snapshot: PortfolioSnapshot) -> PortfolioRiskMetrics:
        """Summary risk metrics from portfolio history and holdings."""
        returns = self.returns_from_values(snapshot.values)
        periods = self.cfg.periods_per_year
        rf_per_period = self.cfg.risk_free_rate / periods

        if len(returns) >= 2:
            std = float(returns.std())
            mean_excess = float(returns.mean()) - rf_per_period
            volatility = std * math.sqrt(periods)
            sharpe = mean_excess / std * math.sqrt(periods) if std > 0 else 0.0

            downside = returns[returns < 0]
            downside_std = float(np.sqrt(np.mean(downside ** 2))) if len(downside) else 0.0
            sortino = mean_excess / downside_std * math.sqrt(periods) if downside_std > 0 else 0.0
        else:
            volatility = sharpe = sortino = 0.0

        var = self.compute_var(returns)
        cvar = self.compute_cvar(returns)

        return PortfolioRiskMetrics(
            volatility=volatility,
            sharpe_ratio=sharpe,
            sortino_ratio=sortino,
            max_drawdown=self.max_drawdown(snapshot.values),
            var=0.0 if np.isnan(var) else var,
            cvar=0.0 if np.isnan(cvar) else cvar,
            concentration=self.herfindahl(snapshot.open_positions),
            position_count=len(snapshot.open_positions),
        )

    # -------------------------------------------------------------------------
    # Monte-Carlo stress test
    # -------------------------------------------------------------------------

    def run_stress_test(
        self, snapshot: PortfolioSnapshot, scenario: Optional[StressScenario] = None
    ) -> StressTestResult:
        """Simulate the portfolio under a shocked market."""
        scenario = scenario or StressScenario()
        if scenario.simulations < 1:
            raise ValueError("simulations must be >= 1")

        rng = np.random.default_rng(scenario.seed)
        positions = list(snapshot.open_positions)
        initial = snapshot.total_value

        if positions:
            values = np.array([p.value for p in positions], dtype=float)
            direction = np.array(
                [1.0 if p.side == PositionSide.LONG else -1.0 for p in positions]
            )
            sigma = scenario.base_stddev * scenario.volatility_spike
            rho = min(max(scenario.correlation, 0.0), 1.0)

            market = rng.standard_normal((scenario.simulations, 1))
            idio = rng.standard_normal((scenario.simulations, len(positions)))
            shocks = -scenario.market_drop + sigma * (
                math.sqrt(rho) * market + math.sqrt(1.0 - rho) * idio
            )
            shocks = np.maximum(shocks, -1.0)  # An asset cannot lose more than its value

            pnl = (shocks * values * direction).sum(axis=1)
            simulated = initial + pnl
        else:
            simulated = np.full(scenario.simulations, initial, dtype=float)

        losses = initial - simulated
        var = float(np.percentile(losses, self.cfg.confidence * 100))
        tail = losses[losses >= var]
        expected_shortfall = float(tail.mean()) if tail.size else var

        result = StressTestResult(
            scenario=scenario.name,
            initial_value=initial,
            mean_value=float(simulated.mean()),
            worst_value=float(simulated.min()),
            mean_impact_pct=(
                float((simulated.mean() - initial) / initial * 100) if initial > 0 else 0.0
            ),
            worst_loss=float(max(losses.max(), 0.0)),
            var=max(var, 0.0),
            expected_shortfall=max(expected_shortfall, 0.0),
            probability_of_loss=float(np.mean(losses > 0)),
            simulated_values=simulated,
        )

        self._stress_history.append(result.to_dict())
        if result.worst_loss > 0:
            logger.info(
                f"Stress test '{scenario.name}': mean impact {result.mean_impact_pct:.2f}%, "
                f"VaR ${result.var:,.2f}, ES ${result.expected_shortfall:,.2f}"
            )
        return result

    def get_stress_history(self) -> List[Dict[str, Any]]:
        return self._stress_history.copy()

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "lookback": self.cfg.lookback,
            "confidence": self.cfg.confidence,
            "stress_tests_run": len(self._stress_history),
        }


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "VaRConfig",
    "StressScenario",
    "StressTestResult",
    "PortfolioRiskMetrics",
    "VaREngine",
]
