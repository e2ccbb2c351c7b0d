"""
CONSENSUS CORE v1.0 - Correlation Tracker
=========================================

Pluggable correlation models used by the risk engine to avoid
stacking exposure in assets that move together.

Strategies:
    SectorCorrelationStrategy  - deterministic sector heuristic
    ReturnsCorrelationStrategy - rolling correlation of observed returns,
                                 falling back to the sector heuristic

Portfolio score:
    score = sum_{i<j} w_i w_j rho_ij / sum_{i<j} w_i w_j
    (value-weighted mean pairwise correlation, in [-1, 1])

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import pandas as pd

from .models import Position

logger = logging.getLogger("CONSENSUS_CorrelationTracker")

UNKNOWN_SECTOR = "OTHER"

QUOTE_ASSETS = ("USDT", "USDC", "BUSD", "FDUSD", "USD", "THB", "EUR")


def base_asset(symbol: str) -> str:
    """BTCUSDT, BTC/USDT, BTC-USD and THB_BTC all map to BTC."""
    s = symbol.upper().strip()
    for sep in ("/", "-", "_"):
        if sep in s:
            left, right = s.split(sep, 1)
            # Bitkub style quotes the fiat first: THB_BTC
            return right if left in QUOTE_ASSETS else left
    for quote in QUOTE_ASSETS:
        if s.endswith(quote) and len(s) > len(quote):
            return s[: -len(quote)]
    return s


@dataclass
class CorrelationConfig:
    """Configuration for correlation models."""

    same_sector_correlation: float = 0.8
    related_sector_correlation: float = 0.5
    unrelated_correlation: float = 0.1
    lookback_bars: int = 60
    min_observations: int = 20

    # Base asset -> sector
    sector_map: Dict[str, str] = field(
        default_factory=lambda: {
            "BTC": "STORE_OF_VALUE",
            "LTC": "STORE_OF_VALUE",
            "BCH": "STORE_OF_VALUE",
            "ETH": "SMART_CONTRACT",
            "SOL": "SMART_CONTRACT",
            "ADA": "SMART_CONTRACT",
            "AVAX": "SMART_CONTRACT",
            "DOT": "SMART_CONTRACT",
            "UNI": "DEFI",
            "AAVE": "DEFI",
            "LINK": "DEFI",
            "MKR": "DEFI",
            "BNB": "EXCHANGE",
            "OKB": "EXCHANGE",
            "CRO": "EXCHANGE",
            "XRP": "PAYMENTS",
            "XLM": "PAYMENTS",
            "DOGE": "MEME",
            "SHIB": "MEME",
            "PEPE": "MEME",
        }
    )

    related_sectors: Set[FrozenSet[str]] = field(
        default_factory=lambda: {
            frozenset({"SMART_CONTRACT", "DEFI"}),
            frozenset({"STORE_OF_VALUE", "PAYMENTS"}),
            frozenset({"SMART_CONTRACT", "EXCHANGE"}),
        }
    )


class CorrelationStrategy(ABC):
    """Correlation model consulted by the risk engine."""

    @abstractmethod
    def correlation(self, symbol_a: str, symbol_b: str) -> float:
        """Correlation estimate in [-1, 1]."""

    @abstractmethod
    def sector_of(self, symbol: str) -> str:
        """Sector label used for concentration limits."""


class SectorCorrelationStrategy(CorrelationStrategy):
    """
    Static sector heuristic.

    Same asset 1.0, same sector 0.8, related sectors 0.5, otherwise 0.1.
    Deterministic so that identical portfolios always get identical gates.
    """

    def __init__(self, config: Optional[CorrelationConfig] = None):
        self.config = config or CorrelationConfig()

    def sector_of(self, symbol: str) -> str:
        return self.config.sector_map.get(base_asset(symbol), UNKNOWN_SECTOR)

    def correlation(self, symbol_a: str, symbol_b: str) -> float:
        if base_asset(symbol_a) == base_asset(symbol_b):
            return 1.0

        sector_a = self.sector_of(symbol_a)
        sector_b = self.sector_of(symbol_b)

        if sector_a == sector_b and sector_a != UNKNOWN_SECTOR:
            return self.config.same_sector_correlation
        if frozenset({sector_a, sector_b}) in self.config.related_sectors:
            return self.config.related_sector_correlation
        return self.config.unrelated_correlation


class ReturnsCorrelationStrategy(SectorCorrelationStrategy):
    """
    Rolling correlation of observed returns.

    Example:
        strategy = ReturnsCorrelationStrategy()
        strategy.update_returns("BTCUSDT", btc_returns)
        strategy.update_returns("ETHUSDT", eth_returns)
        strategy.update_correlation_matrix()

        rho = strategy.correlation("BTCUSDT", "ETHUSDT")
    """

    def __init__(self, config: Optional[CorrelationConfig] = None):
        super().__init__(config)
        self.returns_data: Dict[str, pd.Series] = {}
        self.correlation_matrix: Optional[pd.DataFrame] = None
        self.last_update: Optional[datetime] = None

        logger.info(
            f"ReturnsCorrelationStrategy initialized: lookback={self.config.lookback_bars}"
        )

    def update_returns(self, symbol: str, returns: pd.Series) -> None:
        self.returns_data[symbol] = returns.tail(self.config.lookback_bars)

    def update_prices(self, symbol: str, prices: pd.Series) -> None:
        self.update_returns(symbol, prices.pct_change().dropna())

    def update_correlation_matrix(self) -> None:
        """Recalculate the matrix from stored returns."""
        if len(self.returns_data) < 2:
            return

        returns_df = pd.DataFrame(self.returns_data)
        self.correlation_matrix = returns_df.corr(min_periods=self.config.min_observations)
        self.last_update = datetime.now(timezone.utc)
        logger.info(f"Correlation matrix updated: {len(self.returns_data)} symbols")

    def correlation(self, symbol_a: str, symbol_b: str) -> float:
        matrix = self.correlation_matrix
        if (
            matrix is not None
            and symbol_a in matrix.columns
            and symbol_b in matrix.columns
        ):
            value = matrix.loc[symbol_a, symbol_b]
            if pd.notna(value):
                return float(value)

        return super().correlation(symbol_a, symbol_b)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "symbols_tracked": len(self.returns_data),
            "last_update": self.last_update.isoformat() if self.last_update else None,
        }


# =============================================================================
# PORTFOLIO HELPERS
# =============================================================================


def portfolio_correlation_score(
    strategy: CorrelationStrategy,
    positions: Iterable[Position],
    new_symbol: str,
    new_value: float,
) -> float:
    """
    Value-weighted mean pairwise correlation after adding ``new_symbol``.

    Returns 0.0 when there is nothing to correlate against.
    """
    holdings: List[Tuple[str, float]] = [(p.symbol, p.value) for p in positions if p.value > 0]
    if not holdings:
        return 0.0
    holdings.append((new_symbol, max(new_value, 0.0)))

    total = sum(v for _, v in holdings)
    if total <= 0:
        return 0.0

    weighted = 0.0
    pair_weight = 0.0
    for i in range(len(holdings)):
        for j in range(i + 1, len(holdings)):
            w = (holdings[i][1] / total) * (holdings[j][1] / total)
            weighted += w * strategy.correlation(holdings[i][0], holdings[j][0])
            pair_weight += w

    if pair_weight <= 0:
        return 0.0
    return weighted / pair_weight


def correlation_size_multiplier(score: float, threshold: float) -> float:
    """Shrink linearly from 1.0 at ``threshold`` to 0.5 at perfect correlation."""
    if score <= threshold or threshold >= 1.0:
        return 1.0
    reduction = (score - threshold) / (1.0 - threshold)
    return 1.0 - 0.5 * min(reduction, 1.0)


def resolve_sector(
    strategy: CorrelationStrategy, symbol: str, positions: Iterable[Position] = ()
) -> str:
    """
    Sector of ``symbol``, preferring a label the position store put on a
    holding of the same base asset over the strategy's own mapping.
    """
    asset = base_asset(symbol)
    for position in positions:
        if position.sector and base_asset(position.symbol) == asset:
            return position.sector
    return strategy.sector_of(symbol)


def sector_exposure(
    strategy: CorrelationStrategy, positions: Iterable[Position]
) -> Dict[str, float]:
    """Absolute USD exposure per sector."""
    positions = list(positions)
    exposure: Dict[str, float] = {}
    for position in positions:
        sector = position.sector or resolve_sector(strategy, position.symbol, positions)
        exposure[sector] = exposure.get(sector, 0.0) + position.value
    return exposure


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "UNKNOWN_SECTOR",
    "base_asset",
    "CorrelationConfig",
    "CorrelationStrategy",
    "SectorCorrelationStrategy",
    "ReturnsCorrelationStrategy",
    "portfolio_correlation_score",
    "correlation_size_multiplier",
    "resolve_sector",
    "sector_exposure",
]
