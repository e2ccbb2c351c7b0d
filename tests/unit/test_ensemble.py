"""
Tests for Ensemble Aggregator
=============================

Weighted voting, disagreement, deadline handling, fallback and
reliability feedback.
"""

import pytest

from consensus_core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from consensus_core.ensemble import (
    EnsembleAggregator,
    EnsembleConfig,
    EnsembleMember,
    ReliabilityTracker,
    build_trading_prompt,
)
from consensus_core.exceptions import ProviderError
from consensus_core.models import TradeAction
from consensus_core.response_cache import CacheConfig, ResponseCache
from consensus_core.retry import RetryConfig, RetryPolicy

from tests.conftest import FakeSource, make_signal


def member(source, weight=1.0, failure_threshold=5):
    return EnsembleMember(
        source=source,
        breaker=CircuitBreaker(
            source.provider_id, CircuitBreakerConfig(failure_threshold=failure_threshold)
        ),
        retry=RetryPolicy(RetryConfig(max_attempts=1), name=source.provider_id),
        weight=weight,
    )


def aggregator(*sources, **config):
    return EnsembleAggregator(
        [member(s) for s in sources],
        EnsembleConfig(**config),
    )


class TestVoting:
    """Tests for combine()."""

    def test_weighted_majority(self):
        """Three BUYs outvote one SELL; confidence averages the agreeing side."""
        ensemble = aggregator(*(FakeSource(p) for p in ("a", "b", "c", "d")))
        signals = [
            make_signal("a", TradeAction.BUY, 0.9),
            make_signal("b", TradeAction.BUY, 0.8),
            make_signal("c", TradeAction.BUY, 0.3),
            make_signal("d", TradeAction.SELL, 0.6),
        ]

        decision = ensemble.combine(signals)

        assert decision.action == TradeAction.BUY
        assert decision.consensus_ratio == pytest.approx(0.75)
        assert decision.confidence == pytest.approx((0.9 + 0.8 + 0.3) / 3)
        assert 0.0 < decision.disagreement_index < 1.0
        assert decision.fallback_used is False
        assert len(decision.agreeing_signals()) == 3

    def test_unanimous_has_no_disagreement(self):
        ensemble = aggregator(FakeSource("a"), FakeSource("b"))
        decision = ensemble.combine([
            make_signal("a", TradeAction.SELL, 0.7),
            make_signal("b", TradeAction.SELL, 0.2),
        ])

        assert decision.action == TradeAction.SELL
        assert decision.disagreement_index == 0.0
        assert decision.consensus_ratio == 1.0

    def test_tie_resolves_to_hold(self):
        ensemble = aggregator(FakeSource("a"), FakeSource("b"))
        decision = ensemble.combine([
            make_signal("a", TradeAction.BUY, 0.8),
            make_signal("b", TradeAction.SELL, 0.8),
        ])

        assert decision.action == TradeAction.HOLD
        assert decision.disagreement_index > 0.0

    def test_configured_weight_breaks_tie(self):
        ensemble = EnsembleAggregator(
            [member(FakeSource("a"), weight=2.0), member(FakeSource("b"))],
            EnsembleConfig(),
        )
        decision = ensemble.combine([
            make_signal("a", TradeAction.BUY, 0.6),
            make_signal("b", TradeAction.SELL, 0.9),
        ])

        assert decision.action == TradeAction.BUY

    def test_latency_reduces_weight(self):
        ensemble = aggregator(FakeSource("a"), deadline_sec=10.0, latency_penalty=0.5)

        fast = make_signal("a", TradeAction.BUY, 0.5, latency_ms=0.0)
        slow = make_signal("a", TradeAction.BUY, 0.5, latency_ms=10000.0)

        assert ensemble.vote_weight(fast) == pytest.approx(0.5)
        assert ensemble.vote_weight(slow) == pytest.approx(0.25)

    def test_fallback_below_minimum(self):
        ensemble = aggregator(FakeSource("a"), FakeSource("b"), min_providers=2)
        decision = ensemble.combine([make_signal("a", TradeAction.SELL, 0.65)], ["b"])

        assert decision.fallback_used is True
        assert decision.action == TradeAction.SELL
        assert decision.confidence == 0.65
        assert decision.excluded_providers == ("b",)
        assert "Fallback to a" in decision.reasoning

    def test_no_signals_is_hold(self):
        ensemble = aggregator(FakeSource("a"))
        decision = ensemble.combine([], ["a"])

        assert decision.action == TradeAction.HOLD
        assert decision.confidence == 0.0
        assert decision.fallback_used is True


class TestAggregate:
    """Tests for the concurrent aggregate() round."""

    @pytest.mark.asyncio
    async def test_all_providers_respond(self, market_data):
        sources = [FakeSource("a", confidence=0.9), FakeSource("b", confidence=0.7)]
        ensemble = aggregator(*sources)

        decision = await ensemble.aggregate(market_data)

        assert decision.action == TradeAction.BUY
        assert decision.provider_count == 2
        assert all(s.calls == 1 for s in sources)
        assert decision.contributing_signals[0].entry_price == market_data.price

    @pytest.mark.asyncio
    async def test_deadline_excludes_slow_provider(self, market_data):
        ensemble = aggregator(
            FakeSource("fast-1"),
            FakeSource("fast-2"),
            FakeSource("slow", action=TradeAction.SELL, delay=5.0),
            deadline_sec=0.1,
        )

        decision = await ensemble.aggregate(market_data)

        assert decision.action == TradeAction.BUY
        assert decision.excluded_providers == ("slow",)
        assert ensemble.get_statistics()["deadline_cancellations"] == 1

    @pytest.mark.asyncio
    async def test_failed_provider_excluded(self, market_data):
        broken = FakeSource("broken", error=ProviderError("bad key", code="401"))
        ensemble = aggregator(FakeSource("a"), FakeSource("b"), broken)

        decision = await ensemble.aggregate(market_data)

        assert decision.provider_count == 2
        assert "broken" in decision.excluded_providers
        assert ensemble.get_statistics()["provider_errors"] == {"broken": 1}

    @pytest.mark.asyncio
    async def test_open_breakers_yield_hold(self, market_data):
        ensemble = aggregator(FakeSource("a"), FakeSource("b"))
        for m in ensemble.members:
            m.breaker.force_open()

        decision = await ensemble.aggregate(market_data)

        assert decision.action == TradeAction.HOLD
        assert decision.confidence == 0.0
        assert set(decision.excluded_providers) == {"a", "b"}

    @pytest.mark.asyncio
    async def test_disabled_provider_not_queried(self, market_data):
        skipped = FakeSource("b")
        ensemble = aggregator(FakeSource("a"), skipped, min_providers=1)
        ensemble.set_enabled("b", False)

        await ensemble.aggregate(market_data)

        assert skipped.calls == 0
        assert ensemble.get_provider_health()["b"]["available"] is False

    @pytest.mark.asyncio
    async def test_cache_reuses_reply(self, market_data):
        source = FakeSource("a")
        ensemble = EnsembleAggregator(
            [member(source)],
            EnsembleConfig(min_providers=1),
            cache=ResponseCache(CacheConfig(ttl_sec=60.0)),
        )

        await ensemble.aggregate(market_data)
        await ensemble.aggregate(market_data)

        assert source.calls == 1


class TestConstruction:
    """Tests for member validation."""

    def test_duplicate_id_rejected(self):
        with pytest.raises(ValueError):
            aggregator(FakeSource("a"), FakeSource("a"))

    def test_non_positive_weight_rejected(self):
        with pytest.raises(ValueError):
            EnsembleAggregator([member(FakeSource("a"), weight=0.0)])


class TestReliability:
    """Tests for outcome feedback."""

    def test_ewma_update(self):
        tracker = ReliabilityTracker(alpha=0.2, initial=0.5)

        assert tracker.record_outcome("a", True) == pytest.approx(0.6)
        assert tracker.record_outcome("a", False) == pytest.approx(0.48)
        assert tracker.snapshot()["a"]["samples"] == 2

        tracker.reset("a")
        assert tracker.get("a") == 0.5

    def test_invalid_alpha(self):
        with pytest.raises(ValueError):
            ReliabilityTracker(alpha=0.0)

    def test_decision_outcome_updates_contributors(self):
        ensemble = aggregator(FakeSource("a"), FakeSource("b"))
        decision = ensemble.combine([
            make_signal("a", TradeAction.BUY, 0.9),
            make_signal("b", TradeAction.SELL, 0.4),
        ])

        updated = ensemble.record_decision_outcome(decision, TradeAction.BUY)

        assert updated["a"] == pytest.approx(0.6)
        assert updated["b"] == pytest.approx(0.4)
        assert ensemble.reliability.get("a") > ensemble.reliability.get("b")


class TestPrompt:
    def test_prompt_mentions_symbol_and_format(self, market_data):
        prompt = build_trading_prompt(market_data)

        assert "BTCUSDT" in prompt
        assert '"action": "BUY|SELL|HOLD"' in prompt
        assert "Support: $64,000.0000" in prompt
