# CONSENSUS_FEAT: provider-adapter-001
"""
CONSENSUS BOT - Provider Adapter Base
=====================================

Shared HTTP plumbing for signal providers: request dispatch over an
injected httpx.AsyncClient, error mapping into ProviderError, reply
parsing into a ProviderSignal, and per-adapter request metrics.

Error mapping:
    httpx.TimeoutException   -> TIMEOUT        (retryable)
    httpx.TransportError     -> NETWORK_ERROR  (retryable)
    HTTP 408/429/5xx         -> "<status>"     (retryable)
    other HTTP >= 400        -> "<status>"     (permanent)
    unparseable reply        -> PARSE_ERROR    (permanent)

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import json
import logging
import math
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx

from consensus_core.exceptions import ProviderError, ProviderResponseError
from consensus_core.models import ProviderSignal, TradeAction

from .config import BaseProviderConfig

logger = logging.getLogger("CONSENSUS_Provider")

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

SYSTEM_PROMPT = (
    "You are an expert cryptocurrency trading analyst specializing in technical "
    "analysis and risk management. Prioritize capital preservation, reason from "
    "the data provided, and always answer with the requested JSON object."
)

DEFAULT_CONFIDENCE = 0.5
DEFAULT_STOP_LOSS_PCT = 0.02
DEFAULT_TAKE_PROFIT_PCT = 0.06
MAX_RECENT_ERRORS = 100


@dataclass
class ProviderMetrics:
    """Request counters for one adapter."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_cost_usd: float = 0.0
    last_used: Optional[float] = None
    recent_errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def average_latency_ms(self) -> float:
        if self.successful_requests == 0:
            return 0.0
        return self.total_latency_ms / self.successful_requests

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "average_latency_ms": self.average_latency_ms,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_cost_usd": self.total_cost_usd,
            "recent_error_count": len(self.recent_errors),
        }


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) and number > 0 else None


def default_levels(action: TradeAction, entry: float) -> Tuple[float, float]:
    """Stop loss / take profit when the provider did not give any."""
    if action == TradeAction.SELL:
        return entry * (1 + DEFAULT_STOP_LOSS_PCT), entry * (1 - DEFAULT_TAKE_PROFIT_PCT)
    return entry * (1 - DEFAULT_STOP_LOSS_PCT), entry * (1 + DEFAULT_TAKE_PROFIT_PCT)


class ProviderAdapter(ABC):
    """
    Base class for HTTP signal providers.

    Subclasses describe their wire dialect (endpoint, headers, payload,
    reply text extraction); everything else is shared.

    Example:
        async with httpx.AsyncClient() as client:
            adapter = OpenAIAdapter(OpenAIProviderConfig(provider_id="gpt"), client, api_key)
            signal = await adapter.generate(prompt, market_data.to_context())
    """

    def __init__(
        self,
        config: BaseProviderConfig,
        client: httpx.AsyncClient,
        api_key: Optional[str] = None,
    ):
        self.config = config
        self.client = client
        self._api_key = api_key
        self.metrics = ProviderMetrics()

        logger.info(
            f"{type(self).__name__} initialized: id={config.provider_id}, "
            f"model={config.model}, key={'set' if api_key else 'missing'}"
        )

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    # -------------------------------------------------------------------------
    # Dialect
    # -------------------------------------------------------------------------

    @abstractmethod
    def endpoint(self) -> str:
        """Absolute URL of the completion endpoint."""

    @abstractmethod
    def headers(self) -> Dict[str, str]:
        """Request headers including authentication."""

    @abstractmethod
    def build_payload(
        self, prompt: str, context: Dict[str, Any], max_tokens: int, temperature: float
    ) -> Dict[str, Any]:
        """JSON request body."""

    @abstractmethod
    def extract_text(self, body: Dict[str, Any]) -> Tuple[str, Dict[str, int]]:
        """
        Pull the reply text and token usage out of a response body.

        Raises:
            ProviderResponseError: Body has no usable content
        """

    # -------------------------------------------------------------------------
    # Request
    # -------------------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        context: Dict[str, Any],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> ProviderSignal:
        """
        Ask the provider for a trading signal.

        Raises:
            ProviderError: Transport, HTTP or parse failure (``retryable`` set)
        """
        max_tokens = max_tokens or self.config.max_tokens
        temperature = self.config.temperature if temperature is None else temperature
        payload = self.build_payload(prompt, context, max_tokens, temperature)

        self.metrics.total_requests += 1
        self.metrics.last_used = time.time()
        start = time.perf_counter()

        try:
            response = await self.client.post(
                self.endpoint(),
                json=payload,
                headers=self.headers(),
                timeout=self.config.timeout_sec,
            )
            self._raise_for_status(response)

            try:
                body = response.json()
            except ValueError as e:
                raise ProviderResponseError(
                    "Response body is not JSON", provider_id=self.provider_id
                ) from e
            if not isinstance(body, dict):
                raise ProviderResponseError(
                    "Response body is not a JSON object", provider_id=self.provider_id
                )

            text, usage = self.extract_text(body)
            latency_ms = (time.perf_counter() - start) * 1000
            signal = self.parse_signal(text, context, latency_ms, body.get("model"))

        except httpx.TimeoutException as e:
            self._record_failure("TIMEOUT", str(e))
            raise ProviderError(
                f"{self.provider_id} timed out after {self.config.timeout_sec}s",
                code="TIMEOUT",
                retryable=True,
                provider_id=self.provider_id,
            ) from e
        except httpx.TransportError as e:
            self._record_failure("NETWORK_ERROR", str(e))
            raise ProviderError(
                f"{self.provider_id} network error: {e}",
                code="NETWORK_ERROR",
                retryable=True,
                provider_id=self.provider_id,
            ) from e
        except ProviderError as e:
            self._record_failure(e.code or "PROVIDER_ERROR", e.message)
            raise

        self._record_success(latency_ms, usage)
        return signal

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        detail = response.reason_phrase
        try:
            body = response.json()
            error = body.get("error") if isinstance(body, dict) else None
            if isinstance(error, dict) and error.get("message"):
                detail = error["message"]
            elif isinstance(error, str):
                detail = error
        except ValueError:
            pass

        raise ProviderError(
            f"{self.provider_id} API error {status}: {detail}",
            code=str(status),
            retryable=status in (408, 429) or 500 <= status < 600,
            provider_id=self.provider_id,
            status_code=status,
        )

    # -------------------------------------------------------------------------
    # Parsing
    # -------------------------------------------------------------------------

    def parse_signal(
        self,
        text: str,
        context: Dict[str, Any],
        latency_ms: float = 0.0,
        model: Optional[str] = None,
    ) -> ProviderSignal:
        """
        Turn reply text into a signal.

        The first ``{...}`` span is parsed as JSON. Unknown actions become
        HOLD, confidence is clamped into [0, 1] (missing or non-finite means
        0.5), and
        missing levels default from the entry price.

        Raises:
            ProviderResponseError: No parseable JSON object in the text
        """
        match = _JSON_OBJECT.search(text or "")
        if match is None:
            raise ProviderResponseError(
                f"{self.provider_id} reply contains no JSON object",
                provider_id=self.provider_id,
            )
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ProviderResponseError(
                f"{self.provider_id} reply JSON is malformed: {e.msg}",
                provider_id=self.provider_id,
            ) from e
        if not isinstance(data, dict):
            raise ProviderResponseError(
                f"{self.provider_id} reply JSON is not an object",
                provider_id=self.provider_id,
            )

        action = TradeAction.parse(data.get("action"))

        raw_confidence = data.get("confidence")
        if (
            isinstance(raw_confidence, (int, float))
            and not isinstance(raw_confidence, bool)
            and math.isfinite(raw_confidence)
        ):
            confidence = min(max(float(raw_confidence), 0.0), 1.0)
        else:
            confidence = DEFAULT_CONFIDENCE

        entry = (
            _as_float(data.get("entryPrice"))
            or _as_float(data.get("entry_price"))
            or _as_float(context.get("price"))
            or 0.0
        )
        default_sl, default_tp = default_levels(action, entry)
        stop_loss = _as_float(data.get("stopLoss")) or _as_float(data.get("stop_loss")) or default_sl
        take_profit = (
            _as_float(data.get("takeProfit")) or _as_float(data.get("take_profit")) or default_tp
        )

        return ProviderSignal(
            provider_id=self.provider_id,
            action=action,
            confidence=confidence,
            entry_price=entry,
            stop_loss=stop_loss,
            take_profit=take_profit,
            reasoning=str(data.get("reasoning") or text).strip(),
            latency_ms=latency_ms,
            model=model or self.config.model,
        )

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    def estimate_cost(self, usage: Dict[str, int]) -> float:
        return (
            usage.get("prompt_tokens", 0) / 1000 * self.config.input_cost_per_1k
            + usage.get("completion_tokens", 0) / 1000 * self.config.output_cost_per_1k
        )

    def _record_success(self, latency_ms: float, usage: Dict[str, int]) -> None:
        m = self.metrics
        m.successful_requests += 1
        m.total_latency_ms += latency_ms
        m.prompt_tokens += usage.get("prompt_tokens", 0)
        m.completion_tokens += usage.get("completion_tokens", 0)
        m.total_cost_usd += self.estimate_cost(usage)

    def _record_failure(self, code: str, message: str) -> None:
        m = self.metrics
        m.failed_requests += 1
        m.recent_errors.append({"timestamp": time.time(), "code": code, "error": message})
        if len(m.recent_errors) > MAX_RECENT_ERRORS:
            m.recent_errors = m.recent_errors[-MAX_RECENT_ERRORS:]
        logger.warning(f"{self.provider_id} request failed [{code}]: {message}")

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "kind": self.config.provider_kind.value,
            "model": self.config.model,
            **self.metrics.to_dict(),
        }


def openai_usage(body: Dict[str, Any]) -> Dict[str, int]:
    usage = body.get("usage") or {}
    return {
        "prompt_tokens": int(usage.get("prompt_tokens", 0) or 0),
        "completion_tokens": int(usage.get("completion_tokens", 0) or 0),
    }


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "SYSTEM_PROMPT",
    "ProviderMetrics",
    "ProviderAdapter",
    "default_levels",
    "openai_usage",
]
