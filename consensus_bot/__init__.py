# CONSENSUS BOT - Decision Service
"""
CONSENSUS BOT: multi-provider trading decision service.

Core Components:
    - Orchestrator: per-symbol decision pipeline
    - Event Bus: notification channel for decisions and alerts
    - Config Manager: YAML/JSON configuration with env overrides
    - Providers: HTTP adapters for OpenAI, Claude and custom endpoints

Example:
    from consensus_bot import ConfigManager, build_orchestrator

    config_manager = ConfigManager("config/paper.yaml")
    async with httpx.AsyncClient() as client:
        orchestrator = build_orchestrator(config_manager, collaborators, client)
        decision = await orchestrator.make_trading_decision("BTCUSDT")

Author: CONSENSUS Development Team
Version: 1.0.0
"""

from consensus_bot.core.config_manager import ConfigManager
from consensus_bot.core.event_bus import Event, EventBus, EventType
from consensus_bot.core.orchestrator import DecisionOrchestrator, build_orchestrator

__version__ = "1.0.0"
__author__ = "CONSENSUS Development Team"

__all__ = [
    "ConfigManager",
    "EventBus",
    "Event",
    "EventType",
    "DecisionOrchestrator",
    "build_orchestrator",
]
