"""
CONSENSUS CORE v1.0 - Response Cache & Cost Optimizer
=====================================================

Short-lived memoization of provider replies plus request shaping to
keep per-call spend bounded.

Cache keys are content addressed:
    key = sha256(provider_id | normalized(request))

so two cycles asking the same provider the same question within the
TTL share one answer. Concurrent identical requests share a single
in-flight call (single flight).

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import asyncio
import dataclasses
import hashlib
import json
import logging
import math
import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Tuple, TypeVar

from .constants import (
    CACHE_MAX_ENTRIES,
    CACHE_TTL_SEC,
    CHARS_PER_TOKEN,
    MAX_PROMPT_CHARS,
    MAX_TEMPERATURE,
    MAX_TOKENS_FLOOR,
    MAX_TOKENS_SOFT_CAP,
)

logger = logging.getLogger("CONSENSUS_ResponseCache")

T = TypeVar("T")

_WHITESPACE = re.compile(r"\s+")


# =============================================================================
# REQUEST & KEYING
# =============================================================================


@dataclass(frozen=True)
class ProviderRequest:
    """Prompt and sampling parameters sent to one provider."""

    prompt: str
    context: Dict[str, Any] = field(default_factory=dict, hash=False)
    max_tokens: int = 1000
    temperature: float = 0.3
    model: str = ""


def _normalize_value(value: Any) -> Any:
    if isinstance(value, float):
        return round(value, 8)
    if isinstance(value, dict):
        return {str(k): _normalize_value(v) for k, v in sorted(value.items())}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    if hasattr(value, "value"):  # Enum members
        return value.value
    return value


def normalize_request(request: ProviderRequest) -> str:
    """Canonical text form: collapsed whitespace, sorted keys, rounded floats."""
    payload = {
        "prompt": _WHITESPACE.sub(" ", request.prompt).strip(),
        "context": _normalize_value(request.context),
        "max_tokens": request.max_tokens,
        "temperature": round(request.temperature, 4),
        "model": request.model,
    }
    return json.dumps(payload, sort_keys=True, default=str)


def make_cache_key(provider_id: str, request: ProviderRequest) -> str:
    digest = hashlib.sha256()
    digest.update(provider_id.encode("utf-8"))
    digest.update(b"|")
    digest.update(normalize_request(request).encode("utf-8"))
    return digest.hexdigest()


# =============================================================================
# RESPONSE CACHE
# =============================================================================


@dataclass
class CacheConfig:
    """Configuration for the response cache."""

    enabled: bool = True
    ttl_sec: float = CACHE_TTL_SEC
    max_entries: int = CACHE_MAX_ENTRIES  # LRU bound


@dataclass
class _CacheEntry(Generic[T]):
    value: T
    expires_at: float


class ResponseCache(Generic[T]):
    """
    TTL + LRU cache with single-flight computation.

    Example:
        cache = ResponseCache(CacheConfig(ttl_sec=60))
        key = make_cache_key("openai", request)
        signal, hit = await cache.get_or_compute(key, lambda: call_provider())
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cfg = config or CacheConfig()
        self._clock = clock
        self._entries: "OrderedDict[str, _CacheEntry[T]]" = OrderedDict()
        self._inflight: Dict[str, asyncio.Future] = {}
        self._lock = asyncio.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._shared = 0

        logger.info(
            f"ResponseCache initialized: ttl={self.cfg.ttl_sec}s, "
            f"max_entries={self.cfg.max_entries}, enabled={self.cfg.enabled}"
        )

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[T]:
        """Return a live entry or None; expired entries are dropped."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry.value

    def put(self, key: str, value: T, ttl_sec: Optional[float] = None) -> None:
        ttl = self.cfg.ttl_sec if ttl_sec is None else ttl_sec
        self._entries[key] = _CacheEntry(value=value, expires_at=self._clock() + ttl)
        self._entries.move_to_end(key)

        while len(self._entries) > self.cfg.max_entries:
            self._entries.popitem(last=False)
            self._evictions += 1

    async def get_or_compute(
        self, key: str, factory: Callable[[], Awaitable[T]]
    ) -> Tuple[T, bool]:
        """
        Return the cached value for ``key`` or compute it once.

        Concurrent callers with the same key wait on the first caller's
        computation instead of issuing their own.

        Returns:
            Tuple of (value, served_from_cache)
        """
        if not self.cfg.enabled:
            self._misses += 1
            return await factory(), False

        async with self._lock:
            cached = self.get(key)
            if cached is not None:
                self._hits += 1
                return cached, True

            pending = self._inflight.get(key)
            if pending is None:
                pending = asyncio.get_running_loop().create_future()
                pending.add_done_callback(_consume_future_exception)
                self._inflight[key] = pending
                owner = True
                self._misses += 1
            else:
                owner = False
                self._shared += 1

        if not owner:
            return await asyncio.shield(pending), True

        try:
            value = await factory()
        except asyncio.CancelledError:
            pending.cancel()
            raise
        except Exception as e:
            pending.set_exception(e)
            raise
        else:
            self.put(key, value)
            pending.set_result(value)
            return value, False
        finally:
            self._inflight.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        logger.info("ResponseCache cleared")

    def get_stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "shared_inflight": self._shared,
            "evictions": self._evictions,
            "hit_rate": self._hits / lookups if lookups > 0 else 0.0,
            "inflight": len(self._inflight),
            "ttl_sec": self.cfg.ttl_sec,
        }


def _consume_future_exception(future: asyncio.Future) -> None:
    # Mark the exception as retrieved when nobody else was waiting on it
    if not future.cancelled():
        future.exception()


# =============================================================================
# COST OPTIMIZER
# =============================================================================


@dataclass(frozen=True)
class ProviderPricing:
    """USD per 1k tokens."""

    input_per_1k: float
    output_per_1k: float


DEFAULT_PRICING: Dict[str, ProviderPricing] = {
    "openai": ProviderPricing(input_per_1k=0.01, output_per_1k=0.03),
    "claude": ProviderPricing(input_per_1k=0.003, output_per_1k=0.015),
    "custom": ProviderPricing(input_per_1k=0.001, output_per_1k=0.002),
}

MIN_COMPLETION_TOKENS = 256


@dataclass
class CostConfig:
    """Configuration for request shaping and cost tracking."""

    enabled: bool = True
    max_prompt_chars: int = MAX_PROMPT_CHARS
    max_tokens_soft_cap: int = MAX_TOKENS_SOFT_CAP
    max_tokens_floor: int = MAX_TOKENS_FLOOR
    max_temperature: float = MAX_TEMPERATURE
    cost_threshold_usd: Optional[float] = 0.05  # Per request
    tier: str = "standard"
    tier_discounts: Dict[str, float] = field(
        default_factory=lambda: {"standard": 0.0, "premium": 0.1, "enterprise": 0.2}
    )


class CostOptimizer:
    """
    Shapes provider requests and tracks spend.

    Rules applied by ``optimize_request``:
        - prompts longer than ``max_prompt_chars`` are compressed, keeping
          the head (market data) and tail (response format)
        - max_tokens above the soft cap drops to 80%, never below the floor
        - temperature is capped
        - max_tokens shrinks further if the estimate exceeds the threshold
    """

    def __init__(
        self,
        config: Optional[CostConfig] = None,
        pricing: Optional[Dict[str, ProviderPricing]] = None,
    ):
        self.cfg = config or CostConfig()
        self._pricing = dict(DEFAULT_PRICING)
        if pricing:
            self._pricing.update(pricing)

        self._total_cost = 0.0
        self._saved_cost = 0.0
        self._requests = 0
        self._cost_by_provider: Dict[str, float] = {}
        self._tokens_by_provider: Dict[str, int] = {}

        logger.info(
            f"CostOptimizer initialized: tier={self.cfg.tier}, "
            f"threshold={self.cfg.cost_threshold_usd}"
        )

    def set_pricing(self, provider_id: str, pricing: ProviderPricing) -> None:
        self._pricing[provider_id] = pricing

    def pricing_for(self, provider_id: str) -> ProviderPricing:
        return self._pricing.get(provider_id) or self._pricing["custom"]

    @staticmethod
    def estimate_tokens(text: str) -> int:
        return int(math.ceil(len(text) / CHARS_PER_TOKEN))

    def estimate_cost(self, provider_id: str, request: ProviderRequest) -> float:
        pricing = self.pricing_for(provider_id)
        input_tokens = self.estimate_tokens(request.prompt)
        cost = (
            input_tokens / 1000.0 * pricing.input_per_1k
            + request.max_tokens / 1000.0 * pricing.output_per_1k
        )
        return cost * (1.0 - self._discount())

    def _discount(self) -> float:
        return self.cfg.tier_discounts.get(self.cfg.tier, 0.0)

    def compress_prompt(self, prompt: str) -> str:
        compact = _WHITESPACE.sub(" ", prompt).strip()
        limit = self.cfg.max_prompt_chars
        if len(compact) <= limit:
            return compact

        marker = " ... "
        keep = max(limit - len(marker), 0)
        head = keep // 2
        tail = keep - head
        return compact[:head] + marker + (compact[-tail:] if tail else "")

    def optimize_request(self, provider_id: str, request: ProviderRequest) -> ProviderRequest:
        """Return a cheaper equivalent of ``request``."""
        if not self.cfg.enabled:
            return request

        prompt = request.prompt
        if len(prompt) > self.cfg.max_prompt_chars:
            prompt = self.compress_prompt(prompt)

        max_tokens = request.max_tokens
        if max_tokens > self.cfg.max_tokens_soft_cap:
            max_tokens = max(self.cfg.max_tokens_floor, int(max_tokens * 0.8))

        temperature = min(request.temperature, self.cfg.max_temperature)

        optimized = dataclasses.replace(
            request, prompt=prompt, max_tokens=max_tokens, temperature=temperature
        )

        threshold = self.cfg.cost_threshold_usd
        if threshold is not None and self.estimate_cost(provider_id, optimized) > threshold:
            pricing = self.pricing_for(provider_id)
            factor = 1.0 - self._discount()
            input_cost = self.estimate_tokens(prompt) / 1000.0 * pricing.input_per_1k * factor
            budget = max(threshold - input_cost, 0.0)
            if pricing.output_per_1k > 0 and factor > 0:
                affordable = int(budget / (pricing.output_per_1k * factor) * 1000.0)
            else:
                affordable = max_tokens
            fitted = max(MIN_COMPLETION_TOKENS, min(max_tokens, affordable))
            if fitted < max_tokens:
                logger.debug(
                    f"{provider_id}: max_tokens {max_tokens} -> {fitted} to fit ${threshold}"
                )
                optimized = dataclasses.replace(optimized, max_tokens=fitted)

        return optimized

    def record_cost(
        self, provider_id: str, prompt_tokens: int, completion_tokens: int
    ) -> float:
        """Record actual usage; returns the cost charged."""
        pricing = self.pricing_for(provider_id)
        cost = (
            prompt_tokens / 1000.0 * pricing.input_per_1k
            + completion_tokens / 1000.0 * pricing.output_per_1k
        ) * (1.0 - self._discount())

        self._requests += 1
        self._total_cost += cost
        self._cost_by_provider[provider_id] = self._cost_by_provider.get(provider_id, 0.0) + cost
        self._tokens_by_provider[provider_id] = (
            self._tokens_by_provider.get(provider_id, 0) + prompt_tokens + completion_tokens
        )
        return cost

    def record_cache_saving(self, provider_id: str, request: ProviderRequest) -> None:
        self._saved_cost += self.estimate_cost(provider_id, request)

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "total_cost_usd": self._total_cost,
            "saved_by_cache_usd": self._saved_cost,
            "requests": self._requests,
            "average_cost_usd": self._total_cost / self._requests if self._requests else 0.0,
            "cost_by_provider": dict(self._cost_by_provider),
            "tokens_by_provider": dict(self._tokens_by_provider),
            "tier": self.cfg.tier,
        }


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "ProviderRequest",
    "normalize_request",
    "make_cache_key",
    "CacheConfig",
    "ResponseCache",
    "ProviderPricing",
    "DEFAULT_PRICING",
    "CostConfig",
    "CostOptimizer",
]
