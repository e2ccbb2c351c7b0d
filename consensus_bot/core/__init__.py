# CONSENSUS BOT Core Infrastructure
"""
Core infrastructure components for the CONSENSUS bot.

Modules:
    event_bus: Async notification channel
    config_manager: Configuration management
    collaborators: External service contracts and in-memory implementations
    orchestrator: Decision orchestrator and factory
"""

from .collaborators import (
    Collaborators,
    InMemoryDecisionSink,
    InMemoryPositionStore,
    StaticMarketDataSupplier,
)
from .config_manager import ConfigManager
from .event_bus import Event, EventBus, EventType
from .orchestrator import DecisionOrchestrator, OrchestratorConfig, build_orchestrator

__all__ = [
    "EventBus",
    "Event",
    "EventType",
    "ConfigManager",
    "Collaborators",
    "StaticMarketDataSupplier",
    "InMemoryPositionStore",
    "InMemoryDecisionSink",
    "DecisionOrchestrator",
    "OrchestratorConfig",
    "build_orchestrator",
]
