# CONSENSUS BOT Signal Providers
"""
HTTP adapters for external signal providers.

Modules:
    config: Validated provider configuration records and API key settings
    base: Shared adapter plumbing, error mapping and reply parsing
    openai_adapter: OpenAI Chat Completions
    claude_adapter: Anthropic Messages
    custom_adapter: OpenAI-compatible or plain-text custom endpoints
"""

from typing import Optional

import httpx

from .base import ProviderAdapter, ProviderMetrics
from .claude_adapter import ClaudeAdapter
from .config import (
    BaseProviderConfig,
    ClaudeProviderConfig,
    CustomProviderConfig,
    OpenAIProviderConfig,
    ProviderKind,
    ProviderSecrets,
    parse_provider_configs,
)
from .custom_adapter import CustomAdapter
from .openai_adapter import OpenAIAdapter

_ADAPTERS = {
    ProviderKind.OPENAI: OpenAIAdapter,
    ProviderKind.CLAUDE: ClaudeAdapter,
    ProviderKind.CUSTOM: CustomAdapter,
}


def create_adapter(
    config: BaseProviderConfig,
    client: httpx.AsyncClient,
    secrets: Optional[ProviderSecrets] = None,
) -> ProviderAdapter:
    """Build the adapter for a validated provider record."""
    api_key = secrets.key_for(config) if secrets is not None else (
        config.api_key.get_secret_value() if config.api_key is not None else None
    )
    return _ADAPTERS[config.provider_kind](config, client, api_key)


__all__ = [
    "ProviderKind",
    "BaseProviderConfig",
    "OpenAIProviderConfig",
    "ClaudeProviderConfig",
    "CustomProviderConfig",
    "ProviderSecrets",
    "parse_provider_configs",
    "ProviderMetrics",
    "ProviderAdapter",
    "OpenAIAdapter",
    "ClaudeAdapter",
    "CustomAdapter",
    "create_adapter",
]
