# CONSENSUS_FEAT: config-manager-001
"""
CONSENSUS BOT - Configuration Manager
=====================================

Loads the bot configuration from YAML/JSON, applies environment
overrides, and exposes typed sections plus validated provider records.

Environment overrides use the ``CONSENSUS_`` prefix with ``__`` as the
nesting separator:

    CONSENSUS_RISK__MAX_DRAWDOWN_THRESHOLD=0.10
    CONSENSUS_ENSEMBLE__DEADLINE_SEC=8

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from consensus_core.circuit_breaker import CircuitBreakerConfig
from consensus_core.constants import (
    CACHE_MAX_ENTRIES,
    CACHE_TTL_SEC,
    CB_EXPECTED_RESPONSE_TIME_SEC,
    CB_FAILURE_THRESHOLD,
    CB_RECOVERY_TIMEOUT_SEC,
    CB_SUCCESS_THRESHOLD,
    DECISION_COOLDOWN_SEC,
    DEFAULT_CORRELATION_THRESHOLD,
    DEFAULT_EMERGENCY_STOP,
    DEFAULT_MAX_DAILY_LOSS_PCT,
    DEFAULT_MAX_DRAWDOWN,
    DEFAULT_MAX_POSITION_SIZE_USD,
    DEFAULT_MAX_SECTOR_EXPOSURE,
    DEFAULT_MAX_TOP_TWO_SECTOR_EXPOSURE,
    DEFAULT_MIN_POSITION_SIZE_USD,
    DEFAULT_RISK_PER_TRADE_PCT,
    ENSEMBLE_DEADLINE_SEC,
    ENSEMBLE_MIN_PROVIDERS,
    MAX_PROMPT_CHARS,
    RELIABILITY_ALPHA,
    RETRY_BACKOFF_MULTIPLIER,
    RETRY_INITIAL_DELAY_MS,
    RETRY_JITTER_MAX,
    RETRY_JITTER_MIN,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_MS,
)
from consensus_core.dynamic_risk import RiskParameters
from consensus_core.ensemble import EnsembleConfig
from consensus_core.exceptions import InvalidConfigError
from consensus_core.response_cache import CacheConfig, CostConfig
from consensus_core.retry import RetryConfig

from consensus_bot.providers.config import BaseProviderConfig, parse_provider_configs

logger = logging.getLogger("CONSENSUS_ConfigManager")


@dataclass
class EnsembleSettings:
    deadline_sec: float = ENSEMBLE_DEADLINE_SEC
    min_providers: int = ENSEMBLE_MIN_PROVIDERS
    latency_penalty: float = 0.5
    max_tokens: int = 1024
    temperature: float = 0.3
    reliability_alpha: float = RELIABILITY_ALPHA

    def to_config(self) -> EnsembleConfig:
        return EnsembleConfig(
            deadline_sec=self.deadline_sec,
            min_providers=self.min_providers,
            latency_penalty=self.latency_penalty,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


@dataclass
class BreakerSettings:
    failure_threshold: int = CB_FAILURE_THRESHOLD
    recovery_timeout_sec: float = CB_RECOVERY_TIMEOUT_SEC
    success_threshold: int = CB_SUCCESS_THRESHOLD
    expected_response_time_sec: float = CB_EXPECTED_RESPONSE_TIME_SEC

    def to_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            recovery_timeout_sec=self.recovery_timeout_sec,
            success_threshold=self.success_threshold,
            expected_response_time_sec=self.expected_response_time_sec,
        )


@dataclass
class RetrySettings:
    max_attempts: int = RETRY_MAX_ATTEMPTS
    initial_delay_ms: float = RETRY_INITIAL_DELAY_MS
    max_delay_ms: float = RETRY_MAX_DELAY_MS
    backoff_multiplier: float = RETRY_BACKOFF_MULTIPLIER
    jitter_min: float = RETRY_JITTER_MIN
    jitter_max: float = RETRY_JITTER_MAX

    def to_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.max_attempts,
            initial_delay_ms=self.initial_delay_ms,
            max_delay_ms=self.max_delay_ms,
            backoff_multiplier=self.backoff_multiplier,
            jitter_min=self.jitter_min,
            jitter_max=self.jitter_max,
        )


@dataclass
class CacheSettings:
    enabled: bool = True
    ttl_sec: float = CACHE_TTL_SEC
    max_entries: int = CACHE_MAX_ENTRIES
    cost_optimization: bool = True
    max_prompt_chars: int = MAX_PROMPT_CHARS
    cost_threshold_usd: Optional[float] = 0.05
    tier: str = "standard"

    def to_cache_config(self) -> CacheConfig:
        return CacheConfig(enabled=self.enabled, ttl_sec=self.ttl_sec, max_entries=self.max_entries)

    def to_cost_config(self) -> CostConfig:
        return CostConfig(
            enabled=self.cost_optimization,
            max_prompt_chars=self.max_prompt_chars,
            cost_threshold_usd=self.cost_threshold_usd,
            tier=self.tier,
        )


@dataclass
class RiskSettings:
    max_position_size_usd: float = DEFAULT_MAX_POSITION_SIZE_USD
    min_position_size_usd: float = DEFAULT_MIN_POSITION_SIZE_USD
    risk_per_trade_pct: float = DEFAULT_RISK_PER_TRADE_PCT
    max_daily_loss_pct: float = DEFAULT_MAX_DAILY_LOSS_PCT
    max_drawdown_threshold: float = DEFAULT_MAX_DRAWDOWN
    emergency_stop_threshold: float = DEFAULT_EMERGENCY_STOP
    correlation_threshold: float = DEFAULT_CORRELATION_THRESHOLD
    max_sector_exposure: float = DEFAULT_MAX_SECTOR_EXPOSURE
    max_top_two_sector_exposure: float = DEFAULT_MAX_TOP_TWO_SECTOR_EXPOSURE
    volatility_adjustment: bool = True
    market_condition_adjustment: bool = True
    drawdown_protection: bool = True
    correlation_model: str = "sector"  # sector, returns

    def to_parameters(self) -> RiskParameters:
        values = {f.name: getattr(self, f.name) for f in fields(RiskParameters)}
        return RiskParameters(**values)


@dataclass
class OrchestratorSettings:
    symbols: List[str] = field(default_factory=lambda: ["BTCUSDT", "ETHUSDT"])
    cooldown_sec: float = DECISION_COOLDOWN_SEC
    loop_interval_sec: float = 60.0
    base_size_usd: Optional[float] = None  # None = risk max position size


@dataclass
class MonitoringSettings:
    log_level: str = "INFO"
    stats_interval_sec: float = 300.0
    event_history_size: int = 1000


@dataclass
class SystemConfig:
    mode: str = "paper"  # paper, live
    ensemble: EnsembleSettings = field(default_factory=EnsembleSettings)
    breaker: BreakerSettings = field(default_factory=BreakerSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    risk: RiskSettings = field(default_factory=RiskSettings)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    providers: List[BaseProviderConfig] = field(default_factory=list)


_SECTIONS = {
    "ensemble": EnsembleSettings,
    "breaker": BreakerSettings,
    "retry": RetrySettings,
    "cache": CacheSettings,
    "risk": RiskSettings,
    "orchestrator": OrchestratorSettings,
    "monitoring": MonitoringSettings,
}


class ConfigManager:
    """
    Configuration manager for the CONSENSUS bot.

    Example:
        config_manager = ConfigManager()
        config_manager.load("config/paper.yaml")

        deadline = config_manager.get("ensemble.deadline_sec")
        params = config_manager.risk.to_parameters()
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None, env_prefix: str = "CONSENSUS_"):
        self._config_path: Optional[Path] = Path(config_path) if config_path else None
        self._config: SystemConfig = SystemConfig()
        self._raw_config: Dict[str, Any] = {}
        self._loaded_at: Optional[datetime] = None
        self._env_prefix = env_prefix
        self._parse_errors: List[str] = []

        if self._config_path:
            self.load(self._config_path)
        else:
            self._apply_env_overrides()
            self._parse_config()

        logger.info("ConfigManager initialized")

    def load(self, path: Union[str, Path]) -> bool:
        """
        Load configuration from a YAML or JSON file.

        Returns:
            True if the file was read and parsed
        """
        path = Path(path)

        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return False

        try:
            with open(path, "r") as f:
                if path.suffix in (".yaml", ".yml"):
                    raw = yaml.safe_load(f) or {}
                elif path.suffix == ".json":
                    raw = json.load(f)
                else:
                    logger.error(f"Unsupported config format: {path.suffix}")
                    return False
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load config: {e}")
            return False

        if not isinstance(raw, dict):
            logger.error(f"Config root must be a mapping: {path}")
            return False

        self._raw_config = raw
        self._apply_env_overrides()
        self._parse_config()

        self._config_path = path
        self._loaded_at = datetime.now(timezone.utc)
        logger.info(f"Configuration loaded from: {path}")
        return True

    def load_dict(self, raw: Dict[str, Any]) -> None:
        """Use an in-memory mapping as the configuration source."""
        self._raw_config = dict(raw)
        self._apply_env_overrides()
        self._parse_config()
        self._loaded_at = datetime.now(timezone.utc)

    def _apply_env_overrides(self) -> None:
        for key, value in os.environ.items():
            if key.startswith(self._env_prefix):
                config_key = key[len(self._env_prefix):].lower().replace("__", ".")
                self._set_nested(config_key, self._parse_value(value))
                logger.debug(f"Environment override: {config_key}")

    @staticmethod
    def _parse_value(value: str) -> Any:
        lowered = value.lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        if lowered in ("none", "null"):
            return None

        for cast in (int, float):
            try:
                return cast(value)
            except ValueError:
                pass

        if "," in value:
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    def _set_nested(self, key: str, value: Any) -> None:
        parts = key.split(".")
        current = self._raw_config

        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = value

    def _build_section(self, name: str, cls: type) -> Any:
        raw = self._raw_config.get(name)
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            self._parse_errors.append(f"{name} must be a mapping")
            return cls()

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            logger.warning(f"Ignoring unknown {name} keys: {unknown}")
        return cls(**{k: v for k, v in raw.items() if k in known})

    def _parse_config(self) -> None:
        """Rebuild the typed configuration from the raw mapping."""
        self._parse_errors = []
        config = SystemConfig(mode=self._raw_config.get("mode", "paper"))

        for name, cls in _SECTIONS.items():
            setattr(config, name, self._build_section(name, cls))

        try:
            config.providers = parse_provider_configs(self._raw_config.get("providers") or [])
        except InvalidConfigError as e:
            self._parse_errors.append(str(e))
            for error in (e.details or {}).get("errors", []):
                location = ".".join(str(part) for part in error.get("loc", ()))
                self._parse_errors.append(f"providers.{location}: {error.get('msg')}")
            config.providers = []

        self._config = config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a raw value by dot-notation key (e.g. "risk.max_drawdown_threshold").
        """
        current: Any = self._raw_config
        for part in key.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def set(self, key: str, value: Any) -> None:
        """Set a value at runtime and re-parse."""
        self._set_nested(key, value)
        self._parse_config()

    @property
    def config(self) -> SystemConfig:
        return self._config

    @property
    def ensemble(self) -> EnsembleSettings:
        return self._config.ensemble

    @property
    def breaker(self) -> BreakerSettings:
        return self._config.breaker

    @property
    def retry(self) -> RetrySettings:
        return self._config.retry

    @property
    def cache(self) -> CacheSettings:
        return self._config.cache

    @property
    def risk(self) -> RiskSettings:
        return self._config.risk

    @property
    def orchestrator(self) -> OrchestratorSettings:
        return self._config.orchestrator

    @property
    def monitoring(self) -> MonitoringSettings:
        return self._config.monitoring

    @property
    def providers(self) -> List[BaseProviderConfig]:
        return list(self._config.providers)

    @property
    def is_live(self) -> bool:
        return self._config.mode == "live"

    @property
    def is_paper(self) -> bool:
        return self._config.mode == "paper"

    def reload(self) -> bool:
        if self._config_path:
            return self.load(self._config_path)
        return False

    def save(self, path: Optional[Union[str, Path]] = None) -> bool:
        target = Path(path) if path else self._config_path
        if not target:
            logger.error("No config path specified")
            return False

        try:
            with open(target, "w") as f:
                if target.suffix in (".yaml", ".yml"):
                    yaml.safe_dump(self._raw_config, f, default_flow_style=False)
                else:
                    json.dump(self._raw_config, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save config: {e}")
            return False

        logger.info(f"Configuration saved to: {target}")
        return True

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = list(self._parse_errors)
        cfg = self._config

        if cfg.mode not in ("paper", "live"):
            errors.append("mode must be 'paper' or 'live'")

        if cfg.ensemble.deadline_sec <= 0:
            errors.append("ensemble.deadline_sec must be > 0")
        if cfg.ensemble.min_providers < 1:
            errors.append("ensemble.min_providers must be >= 1")
        if not 0 <= cfg.ensemble.latency_penalty <= 1:
            errors.append("ensemble.latency_penalty must be in [0, 1]")
        if not 0 < cfg.ensemble.reliability_alpha <= 1:
            errors.append("ensemble.reliability_alpha must be in (0, 1]")

        if cfg.breaker.failure_threshold < 1:
            errors.append("breaker.failure_threshold must be >= 1")
        if cfg.breaker.success_threshold < 1:
            errors.append("breaker.success_threshold must be >= 1")
        if cfg.breaker.recovery_timeout_sec <= 0:
            errors.append("breaker.recovery_timeout_sec must be > 0")

        if cfg.retry.max_attempts < 1:
            errors.append("retry.max_attempts must be >= 1")
        if cfg.retry.initial_delay_ms < 0 or cfg.retry.max_delay_ms < cfg.retry.initial_delay_ms:
            errors.append("retry delays must satisfy 0 <= initial_delay_ms <= max_delay_ms")
        if not 0 <= cfg.retry.jitter_min <= cfg.retry.jitter_max:
            errors.append("retry jitter must satisfy 0 <= jitter_min <= jitter_max")

        if cfg.cache.ttl_sec <= 0:
            errors.append("cache.ttl_sec must be > 0")
        if cfg.cache.max_entries < 1:
            errors.append("cache.max_entries must be >= 1")

        if cfg.risk.correlation_model not in ("sector", "returns"):
            errors.append("risk.correlation_model must be 'sector' or 'returns'")
        errors.extend(f"risk.{e}" for e in cfg.risk.to_parameters().validate())

        if cfg.orchestrator.cooldown_sec < 0:
            errors.append("orchestrator.cooldown_sec must be >= 0")
        if not cfg.orchestrator.symbols:
            errors.append("orchestrator.symbols must not be empty")

        enabled = [p for p in cfg.providers if p.enabled]
        if not enabled:
            errors.append("at least one enabled provider is required")
        elif len(enabled) < cfg.ensemble.min_providers:
            errors.append(
                f"{len(enabled)} enabled provider(s) is below ensemble.min_providers "
                f"({cfg.ensemble.min_providers}); every round would fall back"
            )

        return errors

    def get_info(self) -> Dict[str, Any]:
        return {
            "path": str(self._config_path) if self._config_path else None,
            "loaded_at": self._loaded_at.isoformat() if self._loaded_at else None,
            "mode": self._config.mode,
            "symbols": self._config.orchestrator.symbols,
            "providers": [p.provider_id for p in self._config.providers],
            "validation_errors": self.validate(),
        }


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "EnsembleSettings",
    "BreakerSettings",
    "RetrySettings",
    "CacheSettings",
    "RiskSettings",
    "OrchestratorSettings",
    "MonitoringSettings",
    "SystemConfig",
    "ConfigManager",
]
