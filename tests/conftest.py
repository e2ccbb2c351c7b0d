"""
CONSENSUS Test Configuration
============================

Pytest fixtures and helpers shared by the CONSENSUS test suites.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import pytest

from consensus_core.models import (
    Liquidity,
    MarketCondition,
    MarketData,
    MarketRegime,
    PortfolioSnapshot,
    Position,
    ProviderSignal,
    Sentiment,
    TimeOfDay,
    TradeAction,
    TrendDirection,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_signal(
    provider_id: str,
    action: TradeAction,
    confidence: float,
    price: float = 100.0,
    latency_ms: float = 0.0,
) -> ProviderSignal:
    return ProviderSignal(
        provider_id=provider_id,
        action=action,
        confidence=confidence,
        entry_price=price,
        stop_loss=price * 0.98,
        take_profit=price * 1.06,
        reasoning=f"{provider_id} says {action.value}",
        latency_ms=latency_ms,
    )


class FakeSource:
    """Scripted signal source."""

    def __init__(
        self,
        provider_id: str,
        action: TradeAction = TradeAction.BUY,
        confidence: float = 0.8,
        delay: float = 0.0,
        error: Optional[BaseException] = None,
    ):
        self.provider_id = provider_id
        self.action = action
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.calls = 0

    async def generate(
        self,
        prompt: str,
        context: Dict[str, Any],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> ProviderSignal:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return make_signal(
            self.provider_id, self.action, self.confidence, price=context.get("price", 100.0)
        )


def history(values: List[float], end: Optional[datetime] = None, step_hours: float = 1.0):
    """Evenly spaced (timestamp, value) pairs ending at ``end``."""
    end = end or datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
    n = len(values)
    return tuple(
        (end - timedelta(hours=step_hours * (n - 1 - i)), v) for i, v in enumerate(values)
    )


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def market_data():
    """Calm BTC snapshot at mid-day UTC."""
    return MarketData(
        symbol="BTCUSDT",
        price=65000.0,
        volume=1_000_000.0,
        high_24h=65500.0,
        low_24h=64500.0,
        volatility=0.02,
        trend=TrendDirection.BULLISH,
        momentum=0.01,
        support=64000.0,
        resistance=66000.0,
        timestamp=datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def neutral_condition():
    """Market condition that applies no adjustment."""
    return MarketCondition(
        regime=MarketRegime.TRENDING,
        trend=TrendDirection.BULLISH,
        sentiment=Sentiment.NEUTRAL,
        liquidity=Liquidity.NORMAL,
        time_of_day=TimeOfDay.MID_DAY,
    )


@pytest.fixture
def flat_snapshot():
    """$1M portfolio at its peak, no positions."""
    return PortfolioSnapshot(
        total_value=1_000_000.0,
        historical_values=history([1_000_000.0] * 5),
    )


@pytest.fixture
def sample_positions():
    return (
        Position(symbol="BTCUSDT", quantity=1.0, entry_price=60000.0, current_price=65000.0),
        Position(symbol="ETHUSDT", quantity=10.0, entry_price=3000.0, current_price=3200.0),
    )


@pytest.fixture
def sample_returns():
    """Reproducible daily return series."""
    rng = np.random.default_rng(42)
    dates = pd.date_range(start="2024-01-01", periods=100, freq="D")
    return pd.Series(rng.normal(0.0005, 0.02, 100), index=dates)
