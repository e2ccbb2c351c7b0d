# CONSENSUS_FEAT: provider-custom-001
"""
CONSENSUS BOT - Custom Endpoint Adapter
=======================================

Self-hosted models behind an OpenAI-compatible or simple text API.
Accepted reply shapes, first match wins:
    {"choices": [{"message": {"content": ...}}]} or {"choices": [{"text": ...}]}
    {"content": ...}
    {"output": ...}
    {"text": ...}

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import json
from typing import Any, Dict, Tuple

from consensus_core.exceptions import ProviderResponseError

from .base import SYSTEM_PROMPT, ProviderAdapter, openai_usage


class CustomAdapter(ProviderAdapter):
    """Generic provider for custom endpoints."""

    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/{self.config.path.lstrip('/')}"

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        headers.update(self.config.headers)
        return headers

    def build_payload(
        self, prompt: str, context: Dict[str, Any], max_tokens: int, temperature: float
    ) -> Dict[str, Any]:
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        if context:
            messages.append(
                {"role": "system", "content": f"Context: {json.dumps(context, default=str)}"}
            )
        messages.append({"role": "user", "content": prompt})

        return {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

    def extract_text(self, body: Dict[str, Any]) -> Tuple[str, Dict[str, int]]:
        text = None
        choices = body.get("choices")
        if choices:
            first = choices[0] or {}
            text = (first.get("message") or {}).get("content") or first.get("text")
        else:
            for key in ("content", "output", "text"):
                value = body.get(key)
                if isinstance(value, str) and value:
                    text = value
                    break

        if not text:
            raise ProviderResponseError(
                f"No content in {self.provider_id} response",
                code="NO_CONTENT",
                provider_id=self.provider_id,
            )
        return text, openai_usage(body)


__all__ = ["CustomAdapter"]
