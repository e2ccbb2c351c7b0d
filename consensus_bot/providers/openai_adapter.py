# CONSENSUS_FEAT: provider-openai-001
"""
CONSENSUS BOT - OpenAI Adapter
==============================

Chat Completions dialect (``POST /v1/chat/completions``).

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import json
from typing import Any, Dict, Tuple

from consensus_core.exceptions import ProviderResponseError

from .base import SYSTEM_PROMPT, ProviderAdapter, openai_usage


class OpenAIAdapter(ProviderAdapter):
    """OpenAI chat completion provider."""

    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/v1/chat/completions"

    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key or ''}",
        }

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
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
        }

    def extract_text(self, body: Dict[str, Any]) -> Tuple[str, Dict[str, int]]:
        choices = body.get("choices") or []
        if not choices:
            raise ProviderResponseError(
                f"No choices returned from {self.provider_id}",
                code="NO_CHOICES",
                provider_id=self.provider_id,
            )

        message = choices[0].get("message") or {}
        content = message.get("content")
        if not content:
            raise ProviderResponseError(
                f"No content in {self.provider_id} response",
                code="NO_CONTENT",
                provider_id=self.provider_id,
            )
        return content, openai_usage(body)


__all__ = ["OpenAIAdapter"]
