"""
Tests for Circuit Breaker
=========================

State transitions, fail-fast rejection and the breaker registry.
"""

import asyncio

import pytest

from consensus_core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from consensus_core.exceptions import CircuitOpenError, ProviderError


async def _ok():
    return "ok"


async def _fail():
    raise ProviderError("boom", code="503", retryable=True)


@pytest.fixture
def breaker(fake_clock):
    config = CircuitBreakerConfig(
        failure_threshold=3,
        recovery_timeout_sec=30.0,
        success_threshold=2,
    )
    return CircuitBreaker("openai", config, clock=fake_clock)


async def _trip(breaker, failures=3):
    for _ in range(failures):
        with pytest.raises(ProviderError):
            await breaker.execute(_fail)


class TestClosedState:
    """Tests for the normal closed state."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self, breaker):
        """Successful calls return their result."""
        assert await breaker.execute(_ok) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        """Consecutive failures at the threshold open the circuit."""
        await _trip(breaker, failures=2)
        assert breaker.state == CircuitState.CLOSED

        await _trip(breaker, failures=1)
        assert breaker.state == CircuitState.OPEN
        assert breaker.is_open

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        """A success between failures restarts the count."""
        await _trip(breaker, failures=2)
        await breaker.execute(_ok)
        await _trip(breaker, failures=2)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().consecutive_failures == 2


class TestOpenState:
    """Tests for fail-fast rejection."""

    @pytest.mark.asyncio
    async def test_rejects_without_invoking(self, breaker):
        """An open breaker never calls the wrapped function."""
        await _trip(breaker)
        calls = []

        async def tracked():
            calls.append(1)
            return "ok"

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(tracked)

        assert calls == []
        assert exc_info.value.breaker_name == "openai"
        assert exc_info.value.code == "CIRCUIT_OPEN"

    @pytest.mark.asyncio
    async def test_rejections_counted(self, breaker):
        """Rejected calls still count as requests."""
        await _trip(breaker)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(_ok)

        stats = breaker.get_stats()
        assert stats.total_requests == 4
        assert stats.rejected_requests == 1
        assert stats.total_failures == 3

    @pytest.mark.asyncio
    async def test_still_open_before_timeout(self, breaker, fake_clock):
        """The breaker stays open until the recovery timeout elapses."""
        await _trip(breaker)
        fake_clock.advance(29.0)

        with pytest.raises(CircuitOpenError):
            await breaker.execute(_ok)


class TestHalfOpenState:
    """Tests for recovery probing."""

    @pytest.mark.asyncio
    async def test_recovers_after_successes(self, breaker, fake_clock):
        """After the timeout, enough successes close the circuit."""
        await _trip(breaker)
        fake_clock.advance(30.0)

        await breaker.execute(_ok)
        assert breaker.state == CircuitState.HALF_OPEN

        await breaker.execute(_ok)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_probe_failure_reopens(self, breaker, fake_clock):
        """Any failure while half-open reopens for a new timeout."""
        await _trip(breaker)
        fake_clock.advance(30.0)

        with pytest.raises(ProviderError):
            await breaker.execute(_fail)

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_stats().next_attempt_at == fake_clock.now + 30.0


class TestCancellation:
    """Tests for abandoned calls."""

    @pytest.mark.asyncio
    async def test_cancellation_not_a_failure(self, breaker):
        """A cancelled call does not count towards opening the circuit."""

        async def cancelled():
            raise asyncio.CancelledError()

        for _ in range(5):
            with pytest.raises(asyncio.CancelledError):
                await breaker.execute(cancelled)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().total_failures == 0


class TestAdministration:
    """Tests for force-open and reset."""

    @pytest.mark.asyncio
    async def test_force_open_and_reset(self, breaker):
        breaker.force_open()
        with pytest.raises(CircuitOpenError):
            await breaker.execute(_ok)

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.execute(_ok) == "ok"


class TestRegistry:
    """Tests for CircuitBreakerRegistry."""

    def test_get_creates_once(self, fake_clock):
        registry = CircuitBreakerRegistry(clock=fake_clock)
        first = registry.get("claude")
        assert registry.get("claude") is first
        assert "claude" in registry
        assert registry.names() == ["claude"]

    def test_reset_unknown_returns_false(self):
        registry = CircuitBreakerRegistry()
        assert registry.reset("missing") is False

    def test_force_open_all(self, fake_clock):
        registry = CircuitBreakerRegistry(clock=fake_clock)
        registry.get("a")
        registry.get("b")

        registry.force_open_all()

        assert sorted(registry.names_in_state(CircuitState.OPEN)) == ["a", "b"]
        stats = registry.get_all_stats()
        assert stats["a"]["state"] == "OPEN"

        registry.reset_all()
        assert registry.names_in_state(CircuitState.OPEN) == []
