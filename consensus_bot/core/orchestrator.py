# CONSENSUS_FEAT: orchestrator-001
"""
CONSENSUS BOT - Decision Orchestrator
=====================================

Root of the decision pipeline and the only component external callers
invoke. For each symbol it applies the cooldown gate, asks the ensemble
for a consensus, sizes it through the dynamic risk engine, and emits a
TradingDecision.

Guarantees:
- make_trading_decision never raises; failures degrade to HOLD, confidence 0
- Cooldown starts only after a non-HOLD decision
- Persisting a decision never delays its return

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from consensus_core.circuit_breaker import CircuitBreakerRegistry
from consensus_core.constants import DECISION_COOLDOWN_SEC
from consensus_core.correlation_tracker import (
    CorrelationStrategy,
    ReturnsCorrelationStrategy,
    SectorCorrelationStrategy,
)
from consensus_core.dynamic_risk import (
    DynamicRiskEngine,
    RiskParameters,
    classify_market_condition,
    classify_volatility,
)
from consensus_core.ensemble import EnsembleAggregator, EnsembleMember, ReliabilityTracker
from consensus_core.models import (
    DrawdownAction,
    EnsembleDecision,
    PortfolioSnapshot,
    RiskAssessment,
    TradeAction,
    TradingDecision,
)
from consensus_core.response_cache import CostOptimizer, ProviderPricing, ResponseCache
from consensus_core.retry import RetryPolicy
from consensus_core.var_engine import VaREngine

from consensus_bot.providers import ProviderSecrets, create_adapter

from .collaborators import Collaborators
from .config_manager import ConfigManager
from .event_bus import Event, EventBus, EventType

logger = logging.getLogger("CONSENSUS_Orchestrator")


@dataclass
class OrchestratorConfig:
    cooldown_sec: float = DECISION_COOLDOWN_SEC
    base_size_usd: Optional[float] = None  # None = risk max position size


class DecisionOrchestrator:
    """
    Per-symbol decision pipeline.

    Example:
        orchestrator = build_orchestrator(config_manager, collaborators, client)

        decision = await orchestrator.make_trading_decision("BTCUSDT")
        if decision.should_execute:
            await executor.submit(decision)
    """

    def __init__(
        self,
        ensemble: EnsembleAggregator,
        risk_engine: DynamicRiskEngine,
        collaborators: Collaborators,
        breakers: Optional[CircuitBreakerRegistry] = None,
        cache: Optional[ResponseCache] = None,
        cost_optimizer: Optional[CostOptimizer] = None,
        event_bus: Optional[EventBus] = None,
        config: Optional[OrchestratorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cfg = config or OrchestratorConfig()
        self.ensemble = ensemble
        self.risk_engine = risk_engine
        self.collaborators = collaborators
        self.breakers = breakers if breakers is not None else CircuitBreakerRegistry()
        # Admin operations must reach the breakers the ensemble actually calls
        for member in ensemble.members:
            if self.breakers.find(member.provider_id) is not member.breaker:
                self.breakers.register(member.provider_id, member.breaker)
        self.cache = cache
        self.cost_optimizer = cost_optimizer
        self.event_bus = event_bus
        self._clock = clock

        self._last_trade_at: Dict[str, float] = {}
        self._last_trade: Dict[str, TradingDecision] = {}
        self._pending_records: Set[asyncio.Task] = set()
        self._stats = {
            "decisions": 0,
            "executable": 0,
            "holds": 0,
            "vetoes": 0,
            "cooldown_hits": 0,
            "failures": 0,
            "sink_failures": 0,
        }

        logger.info(
            f"DecisionOrchestrator initialized: providers={len(ensemble.members)}, "
            f"cooldown={self.cfg.cooldown_sec}s"
        )

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    async def make_trading_decision(self, symbol: str) -> TradingDecision:
        """
        Produce the decision for one symbol.

        Never raises: any failure in data gathering, aggregation or risk
        assessment yields a HOLD with confidence 0 and the error text in
        ``reasoning``.
        """
        self._stats["decisions"] += 1

        cooled = self._cooldown_hold(symbol)
        if cooled is not None:
            self._stats["cooldown_hits"] += 1
            await self._notify(
                EventType.COOLDOWN_ACTIVE, {"symbol": symbol, "reasoning": cooled.reasoning}
            )
            return cooled

        try:
            decision = await self._decide(symbol)
        except Exception as e:
            self._stats["failures"] += 1
            logger.error(f"Decision for {symbol} failed: {type(e).__name__}: {e}")
            decision = TradingDecision.hold(
                symbol,
                f"Decision failed, defaulting to HOLD: {type(e).__name__}: {e}",
                decision_id=self._new_id(),
            )
            await self._notify(
                EventType.DECISION_FAILED,
                {"symbol": symbol, "error": str(e), "error_type": type(e).__name__},
                decision,
            )
            self._record(decision)
            return decision

        if decision.action != TradeAction.HOLD:
            self._last_trade_at[symbol] = self._clock()
            self._last_trade[symbol] = decision

        if decision.should_execute:
            self._stats["executable"] += 1
        else:
            self._stats["holds"] += 1

        self._record(decision)
        await self._publish_outcome(decision)
        return decision

    async def make_batch_decisions(self, symbols: List[str]) -> Dict[str, TradingDecision]:
        """Decide for several symbols concurrently."""
        unique = list(dict.fromkeys(symbols))
        decisions = await asyncio.gather(*(self.make_trading_decision(s) for s in unique))
        return dict(zip(unique, decisions))

    def _cooldown_hold(self, symbol: str) -> Optional[TradingDecision]:
        last_at = self._last_trade_at.get(symbol)
        if last_at is None:
            return None

        elapsed = self._clock() - last_at
        if elapsed >= self.cfg.cooldown_sec:
            return None

        last = self._last_trade[symbol]
        remaining = self.cfg.cooldown_sec - elapsed
        return TradingDecision.hold(
            symbol,
            f"Cooldown active: last {last.action.value} decision {elapsed:.1f}s ago, "
            f"{remaining:.1f}s remaining",
            decision_id=self._new_id(),
        )

    async def _decide(self, symbol: str) -> TradingDecision:
        data = self.collaborators.market_data
        store = self.collaborators.positions

        market_data = await data.get_current_market_data(symbol)
        positions, history, total_value = await asyncio.gather(
            store.get_open_positions(),
            store.get_portfolio_history(),
            store.get_total_value(),
        )
        snapshot = PortfolioSnapshot(
            total_value=total_value,
            open_positions=tuple(positions),
            historical_values=tuple((ts, value) for ts, value in history),
        )

        ensemble_decision = await self.ensemble.aggregate(market_data)

        volatility = classify_volatility(market_data.volatility)
        condition = classify_market_condition(market_data)
        assessment = self.risk_engine.assess(
            symbol,
            ensemble_decision,
            snapshot,
            volatility,
            condition,
            base_size_usd=self.cfg.base_size_usd,
        )

        return self._combine(symbol, ensemble_decision, assessment)

    def _combine(
        self, symbol: str, ensemble: EnsembleDecision, assessment: RiskAssessment
    ) -> TradingDecision:
        reasoning = ensemble.reasoning
        if assessment.reasoning:
            reasoning = f"{reasoning} | Risk: {'; '.join(assessment.reasoning)}"

        if assessment.vetoed:
            self._stats["vetoes"] += 1
            return TradingDecision.hold(
                symbol,
                f"{ensemble.action.value} vetoed by risk engine: {assessment.veto_reason} | "
                f"{ensemble.reasoning}",
                confidence=ensemble.confidence,
                ensemble_decision=ensemble,
                risk_assessment=assessment,
                veto_reason=assessment.veto_reason,
                decision_id=self._new_id(),
            )

        stop_loss, take_profit = self._levels(ensemble)
        size = assessment.adjusted_size_usd
        return TradingDecision(
            symbol=symbol,
            action=ensemble.action,
            size_usd=size,
            stop_loss=stop_loss,
            take_profit=take_profit,
            confidence=ensemble.confidence,
            reasoning=reasoning,
            should_execute=ensemble.action != TradeAction.HOLD and size > 0,
            ensemble_decision=ensemble,
            risk_assessment=assessment,
            decision_id=self._new_id(),
        )

    @staticmethod
    def _levels(ensemble: EnsembleDecision) -> tuple:
        """Confidence-weighted stop loss / take profit of the agreeing signals."""
        agreeing = ensemble.agreeing_signals()
        if ensemble.action == TradeAction.HOLD or not agreeing:
            return 0.0, 0.0

        weights = [max(s.confidence, 1e-9) for s in agreeing]
        total = sum(weights)
        stop_loss = sum(w * s.stop_loss for w, s in zip(weights, agreeing)) / total
        take_profit = sum(w * s.take_profit for w, s in zip(weights, agreeing)) / total
        return stop_loss, take_profit

    @staticmethod
    def _new_id() -> str:
        return f"dec_{uuid.uuid4().hex[:16]}"

    # -------------------------------------------------------------------------
    # Side channels
    # -------------------------------------------------------------------------

    def _record(self, decision: TradingDecision) -> None:
        """Hand the decision to the sink without waiting for it."""
        try:
            pending = self.collaborators.sink.record_decision(decision)
            if not inspect.isawaitable(pending):
                # Synchronous sink, already recorded
                return
            task = asyncio.ensure_future(pending)
        except Exception as e:
            self._stats["sink_failures"] += 1
            logger.error(f"Failed to record decision {decision.decision_id}: {e}")
            return

        self._pending_records.add(task)
        task.add_done_callback(self._on_recorded)

    def _on_recorded(self, task: asyncio.Task) -> None:
        self._pending_records.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._stats["sink_failures"] += 1
            logger.error(f"Failed to record decision: {error}")

    async def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding decision records."""
        if self._pending_records:
            await asyncio.wait(set(self._pending_records), timeout=timeout)

    async def _notify(
        self,
        event_type: EventType,
        data: Dict[str, Any],
        decision: Optional[TradingDecision] = None,
    ) -> None:
        if self.event_bus is None:
            return
        try:
            await self.event_bus.publish(
                Event(
                    event_type=event_type,
                    data=data,
                    source="orchestrator",
                    correlation_id=decision.decision_id if decision else None,
                )
            )
        except Exception as e:
            logger.error(f"Failed to publish {event_type.name}: {e}")

    async def _publish_outcome(self, decision: TradingDecision) -> None:
        ensemble = decision.ensemble_decision
        assessment = decision.risk_assessment

        if ensemble is not None and ensemble.fallback_used:
            await self._notify(
                EventType.FALLBACK_USED,
                {
                    "symbol": decision.symbol,
                    "responders": ensemble.provider_count,
                    "excluded": list(ensemble.excluded_providers),
                },
                decision,
            )

        if assessment is not None:
            drawdown = assessment.drawdown
            if drawdown.recommended_action == DrawdownAction.EMERGENCY_EXIT:
                await self._notify(
                    EventType.EMERGENCY_STOP,
                    {"symbol": decision.symbol, "drawdown": drawdown.current_drawdown},
                    decision,
                )
            elif drawdown.protection_active:
                await self._notify(
                    EventType.DRAWDOWN_WARNING,
                    {
                        "symbol": decision.symbol,
                        "drawdown": drawdown.current_drawdown,
                        "drawdown_ratio": drawdown.drawdown_ratio,
                        "action": drawdown.recommended_action.value,
                    },
                    decision,
                )

        if decision.veto_reason:
            await self._notify(
                EventType.DECISION_VETOED,
                {"symbol": decision.symbol, "reason": decision.veto_reason},
                decision,
            )

        await self._notify(EventType.DECISION_MADE, decision.to_dict(), decision)

    # -------------------------------------------------------------------------
    # Administration & introspection
    # -------------------------------------------------------------------------

    def get_provider_health(self) -> Dict[str, Dict[str, Any]]:
        return self.ensemble.get_provider_health()

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.get_stats() if self.cache else None,
            "cost": self.cost_optimizer.get_metrics() if self.cost_optimizer else None,
        }

    async def reset_circuit_breaker(self, provider_id: str) -> bool:
        if not self.breakers.reset(provider_id):
            logger.warning(f"No circuit breaker named {provider_id}")
            return False
        await self._notify(EventType.CIRCUIT_RESET, {"provider_id": provider_id})
        return True

    async def force_open_all(self) -> None:
        """Open every provider circuit; decisions degrade to HOLD until reset."""
        self.breakers.force_open_all()
        await self._notify(EventType.CIRCUITS_FORCED_OPEN, {"breakers": self.breakers.names()})

    async def update_risk_parameters(self, **changes: Any) -> RiskParameters:
        """
        Apply a validated partial update to the risk parameters.

        Raises:
            InvalidRiskParametersError: Rejected update; parameters unchanged
        """
        parameters = self.risk_engine.update_risk_parameters(**changes)
        await self._notify(
            EventType.RISK_PARAMETERS_UPDATED,
            {"changes": changes, "parameters": parameters.to_dict()},
        )
        return parameters

    def record_decision_outcome(
        self, decision: TradingDecision, realized_action: TradeAction
    ) -> Dict[str, float]:
        """Feed the market's realized direction back into provider reliability."""
        if decision.ensemble_decision is None:
            return {}
        return self.ensemble.record_decision_outcome(decision.ensemble_decision, realized_action)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "pending_records": len(self._pending_records),
            "symbols_in_cooldown": [
                s for s, t in self._last_trade_at.items()
                if self._clock() - t < self.cfg.cooldown_sec
            ],
            "ensemble": self.ensemble.get_statistics(),
            "risk_parameters": self.risk_engine.parameters.to_dict(),
        }


# =============================================================================
# FACTORY
# =============================================================================


def build_orchestrator(
    config_manager: ConfigManager,
    collaborators: Collaborators,
    client: httpx.AsyncClient,
    secrets: Optional[ProviderSecrets] = None,
    event_bus: Optional[EventBus] = None,
    correlation: Optional[CorrelationStrategy] = None,
) -> DecisionOrchestrator:
    """Wire explicit instances of every component from configuration."""
    breakers = CircuitBreakerRegistry(config_manager.breaker.to_config())
    retry_config = config_manager.retry.to_config()

    cache_settings = config_manager.cache
    cache = ResponseCache(cache_settings.to_cache_config()) if cache_settings.enabled else None
    cost_optimizer = CostOptimizer(cache_settings.to_cost_config())

    members = []
    for provider in config_manager.providers:
        cost_optimizer.set_pricing(
            provider.provider_id,
            ProviderPricing(
                input_per_1k=provider.input_cost_per_1k,
                output_per_1k=provider.output_cost_per_1k,
            ),
        )
        members.append(
            EnsembleMember(
                source=create_adapter(provider, client, secrets),
                breaker=breakers.get(provider.provider_id),
                retry=RetryPolicy(retry_config, name=provider.provider_id),
                weight=provider.weight,
                enabled=provider.enabled,
            )
        )

    ensemble_settings = config_manager.ensemble
    ensemble = EnsembleAggregator(
        members,
        config=ensemble_settings.to_config(),
        cache=cache,
        cost_optimizer=cost_optimizer,
        reliability=ReliabilityTracker(alpha=ensemble_settings.reliability_alpha),
    )

    risk_settings = config_manager.risk
    if correlation is None:
        correlation = (
            ReturnsCorrelationStrategy()
            if risk_settings.correlation_model == "returns"
            else SectorCorrelationStrategy()
        )
    risk_engine = DynamicRiskEngine(
        risk_settings.to_parameters(),
        correlation=correlation,
        var_engine=VaREngine(),
    )

    orchestrator_settings = config_manager.orchestrator
    return DecisionOrchestrator(
        ensemble,
        risk_engine,
        collaborators,
        breakers=breakers,
        cache=cache,
        cost_optimizer=cost_optimizer,
        event_bus=event_bus,
        config=OrchestratorConfig(
            cooldown_sec=orchestrator_settings.cooldown_sec,
            base_size_usd=orchestrator_settings.base_size_usd,
        ),
    )


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "OrchestratorConfig",
    "DecisionOrchestrator",
    "build_orchestrator",
]
