"""
Tests for VaR & Stress Engine
=============================

Tests historical VaR/CVaR, portfolio metrics and Monte-Carlo stress
testing.
"""

import numpy as np
import pandas as pd
import pytest

from consensus_core.models import PortfolioSnapshot, Position, PositionSide
from consensus_core.var_engine import StressScenario, VaRConfig, VaREngine

from tests.conftest import history


class TestVaRCalculation:
    """Tests for Value at Risk calculation."""

    def test_var_negative_for_losses(self, sample_returns):
        engine = VaREngine()
        assert engine.compute_var(sample_returns, confidence=0.95) < 0

    def test_var_insufficient_data(self):
        engine = VaREngine(VaRConfig(min_observations=10))
        assert np.isnan(engine.compute_var(pd.Series([0.01, -0.01, 0.005])))

    def test_higher_confidence_more_extreme(self, sample_returns):
        engine = VaREngine()

        var_95 = engine.compute_var(sample_returns, confidence=0.95)
        var_99 = engine.compute_var(sample_returns, confidence=0.99)

        assert var_99 <= var_95


class TestCVaRCalculation:
    """Tests for Expected Shortfall."""

    def test_cvar_beyond_var(self, sample_returns):
        engine = VaREngine()

        var = engine.compute_var(sample_returns)
        cvar = engine.compute_cvar(sample_returns)

        assert cvar <= var

    def test_cvar_insufficient_data(self):
        engine = VaREngine()
        assert np.isnan(engine.compute_cvar(pd.Series([0.01, -0.01])))


class TestPortfolioMeasures:
    """Tests for snapshot-level metrics."""

    def test_portfolio_var_needs_history(self):
        engine = VaREngine()
        snapshot = PortfolioSnapshot(total_value=1000.0, historical_values=history([1000.0]))

        assert engine.portfolio_var(snapshot) is None

    def test_portfolio_var_in_usd(self):
        engine = VaREngine()
        values = [100.0 * (1.02 if i % 2 else 0.98) for i in range(30)]
        snapshot = PortfolioSnapshot(total_value=100.0, historical_values=history(values))

        var_usd = engine.portfolio_var(snapshot)

        assert var_usd is not None
        assert 0 < var_usd < 100.0

    def test_max_drawdown(self):
        assert VaREngine.max_drawdown([100.0, 120.0, 90.0, 110.0]) == pytest.approx(0.25)
        assert VaREngine.max_drawdown([]) == 0.0

    def test_herfindahl(self, sample_positions):
        concentration = VaREngine.herfindahl(sample_positions)

        assert 0.5 < concentration < 1.0
        assert VaREngine.herfindahl([]) == 0.0

    def test_risk_metrics(self, sample_positions):
        engine = VaREngine()
        values = [1000.0 + 10.0 * i for i in range(20)]
        snapshot = PortfolioSnapshot(
            total_value=1200.0,
            open_positions=sample_positions,
            historical_values=history(values),
        )

        metrics = engine.risk_metrics(snapshot)

        assert metrics.position_count == 2
        assert metrics.max_drawdown == 0.0
        assert metrics.sharpe_ratio > 0
        assert metrics.sortino_ratio == 0.0


class TestStressTest:
    """Tests for Monte-Carlo stress testing."""

    def _snapshot(self):
        return PortfolioSnapshot(
            total_value=100_000.0,
            open_positions=(
                Position(symbol="BTCUSDT", quantity=1.0, entry_price=50_000.0, current_price=50_000.0),
                Position(symbol="ETHUSDT", quantity=10.0, entry_price=2_000.0, current_price=2_000.0),
            ),
        )

    def test_crash_loses_money(self):
        engine = VaREngine()
        result = engine.run_stress_test(self._snapshot(), StressScenario(seed=1))

        assert result.mean_value < result.initial_value
        # 70k of longs with a 20% mean drop
        assert result.mean_impact_pct == pytest.approx(-14.0, abs=1.0)
        assert result.expected_shortfall >= result.var > 0
        assert result.probability_of_loss > 0.9
        assert engine.get_statistics()["stress_tests_run"] == 1

    def test_seed_reproducible(self):
        engine = VaREngine()
        a = engine.run_stress_test(self._snapshot(), StressScenario(seed=3, simulations=200))
        b = engine.run_stress_test(self._snapshot(), StressScenario(seed=3, simulations=200))

        assert np.array_equal(a.simulated_values, b.simulated_values)

    def test_short_positions_gain_in_crash(self):
        snapshot = PortfolioSnapshot(
            total_value=10_000.0,
            open_positions=(
                Position(
                    symbol="BTCUSDT", quantity=0.1, entry_price=50_000.0,
                    current_price=50_000.0, side=PositionSide.SHORT,
                ),
            ),
        )

        result = VaREngine().run_stress_test(snapshot, StressScenario(seed=5))

        assert result.mean_value > result.initial_value

    def test_cash_only_unchanged(self):
        snapshot = PortfolioSnapshot(total_value=5_000.0)
        result = VaREngine().run_stress_test(snapshot, StressScenario(simulations=50))

        assert result.worst_loss == 0.0
        assert result.probability_of_loss == 0.0

    def test_invalid_simulations(self):
        with pytest.raises(ValueError):
            VaREngine().run_stress_test(self._snapshot(), StressScenario(simulations=0))
