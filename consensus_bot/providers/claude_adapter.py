# CONSENSUS_FEAT: provider-claude-001
"""
CONSENSUS BOT - Claude Adapter
==============================

Anthropic Messages dialect (``POST /v1/messages``).

Author: CONSENSUS Development Team
Version: 1.0.0
"""

import json
from typing import Any, Dict, Tuple

from consensus_core.exceptions import ProviderResponseError

from .base import SYSTEM_PROMPT, ProviderAdapter


class ClaudeAdapter(ProviderAdapter):
    """Anthropic Messages API provider."""

    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/v1/messages"

    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._api_key or "",
            "anthropic-version": self.config.anthropic_version,
        }

    def build_payload(
        self, prompt: str, context: Dict[str, Any], max_tokens: int, temperature: float
    ) -> Dict[str, Any]:
        system = SYSTEM_PROMPT
        if context:
            system = f"{system}\n\nContext: {json.dumps(context, default=str)}"

        return {
            "model": self.config.model,
            "system": system,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

    def extract_text(self, body: Dict[str, Any]) -> Tuple[str, Dict[str, int]]:
        blocks = body.get("content") or []
        if not blocks:
            raise ProviderResponseError(
                f"No content in {self.provider_id} response",
                code="NO_CONTENT",
                provider_id=self.provider_id,
            )

        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        if not text:
            raise ProviderResponseError(
                f"No text content in {self.provider_id} response",
                code="NO_TEXT_CONTENT",
                provider_id=self.provider_id,
            )

        usage = body.get("usage") or {}
        return text, {
            "prompt_tokens": int(usage.get("input_tokens", 0) or 0),
            "completion_tokens": int(usage.get("output_tokens", 0) or 0),
        }


__all__ = ["ClaudeAdapter"]
