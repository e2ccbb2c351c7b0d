"""
CONSENSUS CORE v1.0 - Ensemble Aggregator
=========================================

Queries every enabled signal provider concurrently and reconciles
their answers into one weighted consensus.

Call stack per provider:
    ResponseCache -> RetryPolicy -> CircuitBreaker -> provider adapter

Scheduling:
    All provider tasks share one deadline. The aggregator waits until
    every task has finished or the deadline fires, whichever comes
    first; late tasks are cancelled and their results discarded.

Voting:
    vote_weight     = configured_weight * reliability * latency_factor
    latency_factor  = 1 - penalty * min(latency / deadline, 1)
    winner          = action with the largest vote-weight sum (ties -> HOLD)
    confidence      = weighted mean confidence of agreeing signals
    consensus_ratio = agreeing signals / contributing signals

Disagreement:
    Normalized Gini impurity of the action distribution, where each
    signal contributes mass vote_weight * max(confidence, floor):
        disagreement = (1 - sum_a p_a^2) / (2/3)
    It is 0 exactly when every contributing signal has the same action.

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .circuit_breaker import CircuitBreaker
from .constants import (
    DISAGREEMENT_CONFIDENCE_FLOOR,
    ENSEMBLE_DEADLINE_SEC,
    ENSEMBLE_MIN_PROVIDERS,
    RELIABILITY_ALPHA,
    RELIABILITY_INITIAL,
    TASK_CANCEL_TIMEOUT_SEC,
)
from .exceptions import CircuitOpenError, RetryExhaustedError
from .models import EnsembleDecision, MarketData, ProviderSignal, TradeAction
from .response_cache import CostOptimizer, ProviderRequest, ResponseCache, make_cache_key
from .retry import RetryPolicy

logger = logging.getLogger("CONSENSUS_Ensemble")

_MAX_GINI = 2.0 / 3.0  # Three actions, uniform split


class SignalSource(Protocol):
    """Anything that can turn a prompt into a provider signal."""

    provider_id: str

    async def generate(
        self,
        prompt: str,
        context: Dict[str, Any],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> ProviderSignal:
        ...


@dataclass
class EnsembleConfig:
    """Configuration for the ensemble aggregator."""

    deadline_sec: float = ENSEMBLE_DEADLINE_SEC
    min_providers: int = ENSEMBLE_MIN_PROVIDERS
    latency_penalty: float = 0.5  # Max weight lost by a provider at the deadline
    confidence_floor: float = DISAGREEMENT_CONFIDENCE_FLOOR
    max_tokens: int = 1024
    temperature: float = 0.3


@dataclass
class EnsembleMember:
    """A provider together with its own breaker and retry policy."""

    source: SignalSource
    breaker: CircuitBreaker
    retry: RetryPolicy
    weight: float = 1.0
    enabled: bool = True

    @property
    def provider_id(self) -> str:
        return self.source.provider_id


class ReliabilityTracker:
    """
    EWMA success rate per provider.

    Updated only from explicit outcome feedback; values persist until
    an operator resets them.
    """

    def __init__(self, alpha: float = RELIABILITY_ALPHA, initial: float = RELIABILITY_INITIAL):
        if not 0.0 < alpha <= 1.0:
            raise ValueError("alpha must be in (0, 1]")
        self.alpha = alpha
        self.initial = initial
        self._scores: Dict[str, float] = {}
        self._samples: Dict[str, int] = {}

    def get(self, provider_id: str) -> float:
        return self._scores.get(provider_id, self.initial)

    def record_outcome(self, provider_id: str, success: bool) -> float:
        previous = self.get(provider_id)
        score = self.alpha * (1.0 if success else 0.0) + (1.0 - self.alpha) * previous
        self._scores[provider_id] = score
        self._samples[provider_id] = self._samples.get(provider_id, 0) + 1
        return score

    def reset(self, provider_id: Optional[str] = None) -> None:
        if provider_id is None:
            self._scores.clear()
            self._samples.clear()
        else:
            self._scores.pop(provider_id, None)
            self._samples.pop(provider_id, None)
        logger.info(f"Reliability reset: {provider_id or 'all providers'}")

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        return {
            pid: {"reliability": score, "samples": self._samples.get(pid, 0)}
            for pid, score in self._scores.items()
        }


def build_trading_prompt(market_data: MarketData) -> str:
    """Prompt asking a provider for a JSON trading recommendation."""
    md = market_data

    def fmt(value: Optional[float]) -> str:
        return "n/a" if value is None else f"{value:,.4f}"

    return (
        f"You are an expert cryptocurrency trading analyst. "
        f"Analyze the following market data for {md.symbol}:\n\n"
        f"Current Market Data:\n"
        f"- Price: ${fmt(md.price)}\n"
        f"- Volume: {md.volume:,.2f}\n"
        f"- High 24h: ${fmt(md.high_24h)}\n"
        f"- Low 24h: ${fmt(md.low_24h)}\n"
        f"- Volatility: {md.volatility * 100:.2f}%\n"
        f"- Trend: {md.trend.value}\n"
        f"- Momentum: {md.momentum:.4f}\n"
        f"- Support: ${fmt(md.support)}\n"
        f"- Resistance: ${fmt(md.resistance)}\n\n"
        "Respond with a single JSON object:\n"
        "{\n"
        '  "action": "BUY|SELL|HOLD",\n'
        '  "confidence": 0.00-1.00,\n'
        '  "reasoning": "short analysis",\n'
        '  "entryPrice": number,\n'
        '  "stopLoss": number,\n'
        '  "takeProfit": number\n'
        "}\n\n"
        "Focus on risk management and give specific, actionable levels."
    )


class EnsembleAggregator:
    """
    Weighted consensus over concurrent provider signals.

    Example:
        aggregator = EnsembleAggregator(members, EnsembleConfig(deadline_sec=10))
        decision = await aggregator.aggregate(market_data)

        if decision.fallback_used:
            logger.warning(decision.reasoning)
    """

    def __init__(
        self,
        members: Sequence[EnsembleMember],
        config: Optional[EnsembleConfig] = None,
        cache: Optional[ResponseCache] = None,
        cost_optimizer: Optional[CostOptimizer] = None,
        reliability: Optional[ReliabilityTracker] = None,
    ):
        self.cfg = config or EnsembleConfig()
        self._members: Dict[str, EnsembleMember] = {}
        for member in members:
            if member.weight <= 0:
                raise ValueError(f"{member.provider_id}: weight must be > 0")
            if member.provider_id in self._members:
                raise ValueError(f"duplicate provider id: {member.provider_id}")
            self._members[member.provider_id] = member

        self._cache = cache
        self._cost = cost_optimizer
        self.reliability = reliability or ReliabilityTracker()

        self._stats: Dict[str, Any] = {
            "rounds": 0,
            "fallbacks": 0,
            "empty_rounds": 0,
            "deadline_cancellations": 0,
            "provider_errors": {},
        }

        logger.info(
            f"EnsembleAggregator initialized: providers={list(self._members)}, "
            f"deadline={self.cfg.deadline_sec}s, min_providers={self.cfg.min_providers}"
        )

    @property
    def members(self) -> List[EnsembleMember]:
        return list(self._members.values())

    def get_member(self, provider_id: str) -> Optional[EnsembleMember]:
        return self._members.get(provider_id)

    async def aggregate(self, market_data: MarketData) -> EnsembleDecision:
        """Query all enabled providers and return their consensus."""
        self._stats["rounds"] += 1

        request = ProviderRequest(
            prompt=build_trading_prompt(market_data),
            context=market_data.to_context(),
            max_tokens=self.cfg.max_tokens,
            temperature=self.cfg.temperature,
        )

        active = [m for m in self._members.values() if m.enabled]
        if not active:
            return self.combine([], [])

        tasks: Dict[asyncio.Task, EnsembleMember] = {
            asyncio.create_task(
                self._query_member(member, request),
                name=f"ensemble:{member.provider_id}:{market_data.symbol}",
            ): member
            for member in active
        }

        done, pending = await asyncio.wait(tasks.keys(), timeout=self.cfg.deadline_sec)

        excluded: List[str] = []
        if pending:
            self._stats["deadline_cancellations"] += len(pending)
            for task in pending:
                task.cancel()
                excluded.append(tasks[task].provider_id)
                logger.warning(
                    f"{tasks[task].provider_id} missed the {self.cfg.deadline_sec}s "
                    f"deadline for {market_data.symbol}"
                )
            await asyncio.wait(pending, timeout=TASK_CANCEL_TIMEOUT_SEC)

        signals: List[ProviderSignal] = []
        for task, member in tasks.items():
            if task not in done:
                continue
            if task.cancelled():
                excluded.append(member.provider_id)
                continue
            error = task.exception()
            if error is not None:
                excluded.append(member.provider_id)
                self._record_provider_error(member.provider_id, error)
                continue
            signals.append(task.result())

        return self.combine(signals, excluded)

    async def _query_member(
        self, member: EnsembleMember, request: ProviderRequest
    ) -> ProviderSignal:
        provider_id = member.provider_id
        if self._cost is not None:
            request = self._cost.optimize_request(provider_id, request)

        async def call_provider() -> ProviderSignal:
            signal = await member.retry.execute(
                lambda: member.breaker.execute(
                    lambda: member.source.generate(
                        request.prompt,
                        request.context,
                        max_tokens=request.max_tokens,
                        temperature=request.temperature,
                    )
                )
            )
            if self._cost is not None:
                self._cost.record_cost(
                    provider_id,
                    self._cost.estimate_tokens(request.prompt),
                    self._cost.estimate_tokens(signal.reasoning),
                )
            return signal

        if self._cache is None:
            return await call_provider()

        key = make_cache_key(provider_id, request)
        signal, from_cache = await self._cache.get_or_compute(key, call_provider)
        if from_cache and self._cost is not None:
            self._cost.record_cache_saving(provider_id, request)
        return signal

    def _record_provider_error(self, provider_id: str, error: BaseException) -> None:
        errors = self._stats["provider_errors"]
        errors[provider_id] = errors.get(provider_id, 0) + 1

        if isinstance(error, CircuitOpenError):
            logger.info(f"{provider_id} skipped: circuit open")
        elif isinstance(error, RetryExhaustedError):
            logger.warning(
                f"{provider_id} failed after {len(error.attempts)} attempts: {error.last_error}"
            )
        else:
            logger.error(f"{provider_id} failed: {error}")

    # -------------------------------------------------------------------------
    # Voting
    # -------------------------------------------------------------------------

    def vote_weight(self, signal: ProviderSignal) -> float:
        member = self._members.get(signal.provider_id)
        configured = member.weight if member is not None else 1.0
        reliability = self.reliability.get(signal.provider_id)

        deadline_ms = self.cfg.deadline_sec * 1000.0
        lateness = min(signal.latency_ms / deadline_ms, 1.0) if deadline_ms > 0 else 0.0
        latency_factor = 1.0 - self.cfg.latency_penalty * max(lateness, 0.0)

        return configured * reliability * latency_factor

    def combine(
        self, signals: Sequence[ProviderSignal], excluded: Sequence[str] = ()
    ) -> EnsembleDecision:
        """Reduce completed signals to a single decision."""
        excluded_ids = tuple(excluded)

        if not signals:
            self._stats["empty_rounds"] += 1
            logger.warning("No provider responded; defaulting to HOLD")
            return EnsembleDecision(
                action=TradeAction.HOLD,
                confidence=0.0,
                consensus_ratio=0.0,
                disagreement_index=0.0,
                reasoning="No provider responded before the deadline",
                fallback_used=True,
                excluded_providers=excluded_ids,
            )

        weights = [self.vote_weight(s) for s in signals]

        if len(signals) < self.cfg.min_providers:
            self._stats["fallbacks"] += 1
            best_index = max(range(len(signals)), key=lambda i: weights[i])
            best = signals[best_index]
            logger.warning(
                f"Only {len(signals)}/{self.cfg.min_providers} providers responded; "
                f"falling back to {best.provider_id}"
            )
            return EnsembleDecision(
                action=best.action,
                confidence=best.confidence,
                consensus_ratio=1.0,
                disagreement_index=0.0,
                contributing_signals=(best,),
                reasoning=(
                    f"Fallback to {best.provider_id} ({len(signals)} of "
                    f"{self.cfg.min_providers} required providers responded): {best.reasoning}"
                ),
                fallback_used=True,
                excluded_providers=excluded_ids,
            )

        action, totals = self._pick_winner(signals, weights)

        agreeing = [(s, w) for s, w in zip(signals, weights) if s.action == action]
        agreeing_weight = sum(w for _, w in agreeing)
        if agreeing and agreeing_weight > 0:
            confidence = sum(s.confidence * w for s, w in agreeing) / agreeing_weight
        elif agreeing:
            confidence = sum(s.confidence for s, _ in agreeing) / len(agreeing)
        else:
            confidence = 0.0

        consensus_ratio = len(agreeing) / len(signals)
        disagreement = self.disagreement_index(signals, weights)

        vote_summary = ", ".join(
            f"{a.value}={totals.get(a, 0.0):.2f}" for a in TradeAction
        )
        reasoning = (
            f"{action.value} by {len(agreeing)}/{len(signals)} providers "
            f"(weights {vote_summary}; disagreement {disagreement:.2f})"
        )

        logger.info(
            f"Ensemble decision: {action.value} conf={confidence:.2f} "
            f"consensus={consensus_ratio:.2f} disagreement={disagreement:.2f}"
        )

        return EnsembleDecision(
            action=action,
            confidence=min(max(confidence, 0.0), 1.0),
            consensus_ratio=consensus_ratio,
            disagreement_index=disagreement,
            contributing_signals=tuple(signals),
            reasoning=reasoning,
            fallback_used=False,
            excluded_providers=excluded_ids,
        )

    @staticmethod
    def _pick_winner(
        signals: Sequence[ProviderSignal], weights: Sequence[float]
    ) -> Tuple[TradeAction, Dict[TradeAction, float]]:
        totals: Dict[TradeAction, float] = {}
        for signal, weight in zip(signals, weights):
            totals[signal.action] = totals.get(signal.action, 0.0) + weight

        best = max(totals.values())
        leaders = [a for a, t in totals.items() if math.isclose(t, best, rel_tol=1e-9, abs_tol=1e-12)]
        if len(leaders) == 1:
            return leaders[0], totals
        return TradeAction.HOLD, totals

    def disagreement_index(
        self, signals: Sequence[ProviderSignal], weights: Sequence[float]
    ) -> float:
        mass: Dict[TradeAction, float] = {}
        for signal, weight in zip(signals, weights):
            contribution = max(weight, 0.0) * max(signal.confidence, self.cfg.confidence_floor)
            mass[signal.action] = mass.get(signal.action, 0.0) + contribution

        total = sum(mass.values())
        if total <= 0 or len(mass) < 2:
            return 0.0

        gini = 1.0 - sum((m / total) ** 2 for m in mass.values())
        return min(max(gini / _MAX_GINI, 0.0), 1.0)

    # -------------------------------------------------------------------------
    # Feedback & introspection
    # -------------------------------------------------------------------------

    def record_decision_outcome(
        self, decision: EnsembleDecision, realized_action: TradeAction
    ) -> Dict[str, float]:
        """Feed a realized outcome back into provider reliability."""
        updated = {}
        for signal in decision.contributing_signals:
            updated[signal.provider_id] = self.reliability.record_outcome(
                signal.provider_id, signal.action == realized_action
            )
        return updated

    def set_enabled(self, provider_id: str, enabled: bool) -> bool:
        member = self._members.get(provider_id)
        if member is None:
            return False
        member.enabled = enabled
        logger.info(f"Provider {provider_id} {'enabled' if enabled else 'disabled'}")
        return True

    def get_provider_health(self) -> Dict[str, Dict[str, Any]]:
        health = {}
        for pid, member in self._members.items():
            stats = member.breaker.get_stats()
            health[pid] = {
                "enabled": member.enabled,
                "weight": member.weight,
                "reliability": self.reliability.get(pid),
                "circuit_state": stats.state.value,
                "available": member.enabled and not member.breaker.is_open,
                "breaker": stats.to_dict(),
                "retry": member.retry.get_statistics(),
                "errors": self._stats["provider_errors"].get(pid, 0),
            }
        return health

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "rounds": self._stats["rounds"],
            "fallbacks": self._stats["fallbacks"],
            "empty_rounds": self._stats["empty_rounds"],
            "deadline_cancellations": self._stats["deadline_cancellations"],
            "provider_errors": dict(self._stats["provider_errors"]),
            "reliability": self.reliability.snapshot(),
        }


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "SignalSource",
    "EnsembleConfig",
    "EnsembleMember",
    "ReliabilityTracker",
    "EnsembleAggregator",
    "build_trading_prompt",
]
