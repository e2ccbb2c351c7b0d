# CONSENSUS_FEAT: provider-config-001
"""
CONSENSUS BOT - Provider Configuration
======================================

Validated configuration records for signal providers. The set of
provider kinds is closed; each kind has exactly one record type,
selected from raw config through the ``kind`` discriminator.

API keys are read from the environment (or ``.env``) by
ProviderSecrets unless a record carries its own key.

Author: CONSENSUS Development Team
Version: 1.0.0
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, SecretStr, TypeAdapter, ValidationError
from pydantic_settings import BaseSettings

from consensus_core.exceptions import InvalidConfigError


class ProviderKind(str, Enum):
    OPENAI = "openai"
    CLAUDE = "claude"
    CUSTOM = "custom"


class BaseProviderConfig(BaseModel):
    """Fields shared by every provider kind."""

    provider_id: str = Field(min_length=1)
    enabled: bool = True
    weight: float = Field(default=1.0, gt=0)
    model: str
    base_url: str
    timeout_sec: float = Field(default=30.0, gt=0)
    max_tokens: int = Field(default=1024, gt=0)
    temperature: float = Field(default=0.3, ge=0, le=2)
    api_key: Optional[SecretStr] = None

    # USD per 1k tokens
    input_cost_per_1k: float = Field(default=0.0, ge=0)
    output_cost_per_1k: float = Field(default=0.0, ge=0)

    model_config = {"extra": "forbid"}

    @property
    def provider_kind(self) -> ProviderKind:
        return ProviderKind(self.kind)  # type: ignore[attr-defined]


class OpenAIProviderConfig(BaseProviderConfig):
    kind: Literal["openai"] = "openai"
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com"
    input_cost_per_1k: float = Field(default=0.01, ge=0)
    output_cost_per_1k: float = Field(default=0.03, ge=0)


class ClaudeProviderConfig(BaseProviderConfig):
    kind: Literal["claude"] = "claude"
    model: str = "claude-3-5-sonnet-latest"
    base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    input_cost_per_1k: float = Field(default=0.003, ge=0)
    output_cost_per_1k: float = Field(default=0.015, ge=0)


class CustomProviderConfig(BaseProviderConfig):
    """Self-hosted or third-party endpoint speaking an OpenAI-like dialect."""

    kind: Literal["custom"] = "custom"
    model: str = "default"
    path: str = "/v1/chat/completions"
    headers: Dict[str, str] = Field(default_factory=dict)


ProviderConfig = Annotated[
    Union[OpenAIProviderConfig, ClaudeProviderConfig, CustomProviderConfig],
    Field(discriminator="kind"),
]

_PROVIDER_LIST = TypeAdapter(List[ProviderConfig])


def parse_provider_configs(raw: List[Dict[str, Any]]) -> List[BaseProviderConfig]:
    """
    Validate raw provider records.

    Raises:
        InvalidConfigError: Unknown kind, missing or malformed fields,
            or duplicate provider ids
    """
    try:
        configs = _PROVIDER_LIST.validate_python(raw or [])
    except ValidationError as e:
        raise InvalidConfigError(
            f"Invalid provider configuration: {e.error_count()} error(s)",
            code="INVALID_PROVIDER_CONFIG",
            details={"errors": e.errors(include_url=False)},
        ) from e

    seen = set()
    for config in configs:
        if config.provider_id in seen:
            raise InvalidConfigError(
                f"Duplicate provider_id: {config.provider_id}",
                code="DUPLICATE_PROVIDER",
            )
        seen.add(config.provider_id)

    return configs


class ProviderSecrets(BaseSettings):
    """API keys loaded from environment variables or .env."""

    OPENAI_API_KEY: Optional[SecretStr] = None
    ANTHROPIC_API_KEY: Optional[SecretStr] = None
    CUSTOM_PROVIDER_API_KEY: Optional[SecretStr] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    def key_for(self, config: BaseProviderConfig) -> Optional[str]:
        """Record-level key first, then the environment key for its kind."""
        if config.api_key is not None:
            return config.api_key.get_secret_value()

        secret = {
            ProviderKind.OPENAI: self.OPENAI_API_KEY,
            ProviderKind.CLAUDE: self.ANTHROPIC_API_KEY,
            ProviderKind.CUSTOM: self.CUSTOM_PROVIDER_API_KEY,
        }[config.provider_kind]
        return secret.get_secret_value() if secret is not None else None


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "ProviderKind",
    "BaseProviderConfig",
    "OpenAIProviderConfig",
    "ClaudeProviderConfig",
    "CustomProviderConfig",
    "ProviderConfig",
    "parse_provider_configs",
    "ProviderSecrets",
]
