# CONSENSUS_FEAT: collaborators-001
"""
CONSENSUS BOT - External Collaborators
======================================

Boundary contracts for the services the orchestrator depends on but
does not own: market data, the position store, and the decision sink.
In-memory implementations back paper mode and tests.

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Tuple

from consensus_core.exceptions import DataError
from consensus_core.models import MarketData, Position, TradingDecision

logger = logging.getLogger("CONSENSUS_Collaborators")


class MarketDataSupplier(Protocol):
    async def get_current_market_data(self, symbol: str) -> MarketData:
        ...


class PositionStore(Protocol):
    async def get_open_positions(self) -> List[Position]:
        ...

    async def get_portfolio_history(self) -> List[Tuple[datetime, float]]:
        ...

    async def get_total_value(self) -> float:
        ...


class DecisionSink(Protocol):
    async def record_decision(self, decision: TradingDecision) -> str:
        """Persist a decision and return its id."""
        ...


@dataclass
class Collaborators:
    """Bundle handed to the orchestrator factory."""

    market_data: MarketDataSupplier
    positions: PositionStore
    sink: DecisionSink


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================


class StaticMarketDataSupplier:
    """Serves market data snapshots set by the caller."""

    def __init__(self, snapshots: Optional[Dict[str, MarketData]] = None):
        self._snapshots: Dict[str, MarketData] = dict(snapshots or {})

    def set(self, market_data: MarketData) -> None:
        self._snapshots[market_data.symbol] = market_data

    async def get_current_market_data(self, symbol: str) -> MarketData:
        try:
            return self._snapshots[symbol]
        except KeyError:
            raise DataError(f"No market data for {symbol}", code="NO_MARKET_DATA") from None


class InMemoryPositionStore:
    """Open positions and a value history kept in process memory."""

    def __init__(
        self,
        total_value: float = 0.0,
        positions: Optional[List[Position]] = None,
        history: Optional[List[Tuple[datetime, float]]] = None,
    ):
        self.total_value = total_value
        self.positions: List[Position] = list(positions or [])
        self.history: List[Tuple[datetime, float]] = list(history or [])

    def record_value(self, value: float, at: Optional[datetime] = None) -> None:
        self.history.append((at or datetime.now(timezone.utc), value))
        self.total_value = value

    async def get_open_positions(self) -> List[Position]:
        return list(self.positions)

    async def get_portfolio_history(self) -> List[Tuple[datetime, float]]:
        return list(self.history)

    async def get_total_value(self) -> float:
        return self.total_value


class InMemoryDecisionSink:
    """Keeps recorded decisions in a list; optional artificial latency."""

    def __init__(self, delay_sec: float = 0.0):
        self.decisions: List[TradingDecision] = []
        self.delay_sec = delay_sec

    async def record_decision(self, decision: TradingDecision) -> str:
        if self.delay_sec:
            await asyncio.sleep(self.delay_sec)
        self.decisions.append(decision)
        decision_id = decision.decision_id or f"dec_{uuid.uuid4().hex[:12]}"
        logger.debug(f"Decision recorded: {decision_id} {decision.symbol} {decision.action.value}")
        return decision_id


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "MarketDataSupplier",
    "PositionStore",
    "DecisionSink",
    "Collaborators",
    "StaticMarketDataSupplier",
    "InMemoryPositionStore",
    "InMemoryDecisionSink",
]
