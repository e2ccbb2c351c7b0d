#!/usr/bin/env python3
# CONSENSUS_FEAT: main-entry-001
"""
CONSENSUS BOT - Main Entry Point
================================

Runs the decision loop against the configured signal providers.

Usage:
    python -m consensus_bot.main --config config/paper.yaml
    python -m consensus_bot.main --config config/paper.yaml --symbols BTCUSDT ETHUSDT --once
    python -m consensus_bot.main --config config/paper.yaml --dry-run

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from consensus_core.models import Liquidity, MarketData, Sentiment, TrendDirection

from consensus_bot.core.collaborators import (
    Collaborators,
    InMemoryDecisionSink,
    InMemoryPositionStore,
    StaticMarketDataSupplier,
)
from consensus_bot.core.config_manager import ConfigManager
from consensus_bot.core.event_bus import Event, EventBus, EventType
from consensus_bot.core.orchestrator import DecisionOrchestrator, build_orchestrator
from consensus_bot.providers import ProviderSecrets


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="CONSENSUS - Multi-provider trading decision bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        default="config/paper.yaml",
        help="Path to configuration file (default: config/paper.yaml)",
    )

    parser.add_argument(
        "-s", "--symbols",
        type=str,
        nargs="+",
        default=None,
        help="Symbols to decide on (overrides orchestrator.symbols)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single decision round and exit",
    )

    parser.add_argument(
        "-l", "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: monitoring.log_level)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate config and exit without querying providers",
    )

    return parser.parse_args(argv)


def _market_data_from_config(symbol: str, raw: Dict[str, Any]) -> MarketData:
    return MarketData(
        symbol=symbol,
        price=float(raw["price"]),
        volume=float(raw.get("volume", 0.0)),
        high_24h=float(raw.get("high_24h", raw["price"])),
        low_24h=float(raw.get("low_24h", raw["price"])),
        volatility=float(raw.get("volatility", 0.02)),
        trend=TrendDirection(raw.get("trend", "NEUTRAL")),
        momentum=float(raw.get("momentum", 0.0)),
        support=raw.get("support"),
        resistance=raw.get("resistance"),
        sentiment=Sentiment(raw.get("sentiment", "NEUTRAL")),
        liquidity=Liquidity(raw.get("liquidity", "NORMAL")),
        timestamp=datetime.now(timezone.utc),
    )


def build_paper_collaborators(config_manager: ConfigManager) -> Collaborators:
    """In-memory collaborators seeded from the ``paper`` config section."""
    paper = config_manager.get("paper", {}) or {}
    initial_value = float(paper.get("initial_value", 100_000.0))

    supplier = StaticMarketDataSupplier()
    for symbol, raw in (paper.get("market_data") or {}).items():
        supplier.set(_market_data_from_config(symbol, raw))

    store = InMemoryPositionStore()
    store.record_value(initial_value)
    return Collaborators(market_data=supplier, positions=store, sink=InMemoryDecisionSink())


async def _log_event(event: Event) -> None:
    logging.getLogger("CONSENSUS_Events").info(
        f"{event.event_type.name}: {event.data.get('symbol', '')} "
        f"{event.data.get('reason') or event.data.get('action') or ''}".rstrip()
    )


async def run_rounds(
    orchestrator: DecisionOrchestrator,
    symbols: List[str],
    interval_sec: float,
    once: bool,
) -> None:
    logger = logging.getLogger("CONSENSUS_MAIN")

    while True:
        decisions = await orchestrator.make_batch_decisions(symbols)
        for symbol, decision in decisions.items():
            logger.info(
                f"{symbol}: {decision.action.value} ${decision.size_usd:,.2f} "
                f"conf={decision.confidence:.2f} execute={decision.should_execute}"
            )
        if once:
            return
        await asyncio.sleep(interval_sec)


async def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    config_path = Path(args.config)
    config_manager = ConfigManager(config_path if config_path.exists() else None)
    setup_logging(args.log_level or config_manager.monitoring.log_level)
    logger = logging.getLogger("CONSENSUS_MAIN")

    logger.info("=" * 60)
    logger.info("CONSENSUS - Multi-provider trading decision bot")
    logger.info("=" * 60)

    if not config_path.exists():
        logger.error(f"Configuration file not found: {config_path}")
        return 1

    errors = config_manager.validate()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        return 1

    symbols = args.symbols or config_manager.orchestrator.symbols

    if args.dry_run:
        logger.info("Configuration valid!")
        logger.info(f"Mode: {config_manager.config.mode}")
        logger.info(f"Symbols: {symbols}")
        logger.info(f"Providers: {[p.provider_id for p in config_manager.providers]}")
        return 0

    if config_manager.is_live:
        logger.error("Live collaborators are not wired in this entry point; use mode: paper")
        return 1

    event_bus = EventBus(history_size=config_manager.monitoring.event_history_size)
    event_bus.subscribe(
        "log",
        {
            EventType.DECISION_VETOED,
            EventType.DECISION_FAILED,
            EventType.FALLBACK_USED,
            EventType.EMERGENCY_STOP,
            EventType.DRAWDOWN_WARNING,
        },
        _log_event,
    )
    await event_bus.start()

    collaborators = build_paper_collaborators(config_manager)

    async with httpx.AsyncClient() as client:
        orchestrator = build_orchestrator(
            config_manager,
            collaborators,
            client,
            secrets=ProviderSecrets(),
            event_bus=event_bus,
        )

        logger.info(f"Running decision rounds for {symbols}. Press Ctrl+C to stop.")
        try:
            await run_rounds(
                orchestrator,
                symbols,
                config_manager.orchestrator.loop_interval_sec,
                args.once,
            )
        except asyncio.CancelledError:
            logger.info("Shutdown requested...")
        finally:
            await orchestrator.flush(timeout=5.0)
            await event_bus.stop()
            logger.info(f"Statistics: {orchestrator.get_statistics()}")

    logger.info("CONSENSUS shutdown complete")
    return 0


def run() -> None:
    """Synchronous entry point."""
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        exit_code = 0
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
