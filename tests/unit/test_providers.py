"""
Tests for Signal Provider Adapters
==================================

Wire dialects, error mapping and reply parsing against an in-process
httpx.MockTransport.
"""

import json

import httpx
import pytest

from consensus_core.exceptions import InvalidConfigError, ProviderError, ProviderResponseError
from consensus_core.models import TradeAction
from consensus_bot.providers import (
    ClaudeAdapter,
    ClaudeProviderConfig,
    CustomAdapter,
    CustomProviderConfig,
    OpenAIAdapter,
    OpenAIProviderConfig,
    ProviderSecrets,
    create_adapter,
    parse_provider_configs,
)

CONTEXT = {"symbol": "BTCUSDT", "price": 65000.0}

REPLY = json.dumps({
    "action": "BUY",
    "confidence": 0.82,
    "reasoning": "Breakout above resistance",
    "entryPrice": 65100,
    "stopLoss": 63800,
    "takeProfit": 69000,
})


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def openai_body(content, **extra):
    body = {
        "model": "gpt-4o-mini",
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 120, "completion_tokens": 40},
    }
    body.update(extra)
    return body


class TestOpenAIAdapter:
    """Tests for the Chat Completions dialect."""

    @pytest.mark.asyncio
    async def test_successful_signal(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=openai_body(REPLY))

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(OpenAIProviderConfig(provider_id="gpt"), client, "sk-test")
            signal = await adapter.generate("Analyze BTC", CONTEXT, max_tokens=300)

        assert seen["url"] == "https://api.openai.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["max_tokens"] == 300
        assert seen["body"]["messages"][-1] == {"role": "user", "content": "Analyze BTC"}
        assert "BTCUSDT" in seen["body"]["messages"][1]["content"]

        assert signal.provider_id == "gpt"
        assert signal.action == TradeAction.BUY
        assert signal.confidence == 0.82
        assert signal.entry_price == 65100.0
        assert signal.stop_loss == 63800.0
        assert signal.take_profit == 69000.0
        assert signal.reasoning == "Breakout above resistance"

        metrics = adapter.get_metrics()
        assert metrics["successful_requests"] == 1
        assert metrics["prompt_tokens"] == 120
        assert metrics["total_cost_usd"] == pytest.approx(0.12 * 0.01 + 0.04 * 0.03)

    @pytest.mark.asyncio
    async def test_no_choices(self):
        def handler(request):
            return httpx.Response(200, json={"choices": []})

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(OpenAIProviderConfig(provider_id="gpt"), client, "k")
            with pytest.raises(ProviderResponseError) as exc_info:
                await adapter.generate("p", CONTEXT)

        assert exc_info.value.code == "NO_CHOICES"
        assert exc_info.value.retryable is False
        assert adapter.metrics.failed_requests == 1

    @pytest.mark.asyncio
    async def test_nan_confidence_reply(self):
        def handler(request):
            return httpx.Response(
                200, json=openai_body('{"action": "BUY", "confidence": NaN}')
            )

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(OpenAIProviderConfig(provider_id="gpt"), client, "k")
            signal = await adapter.generate("p", CONTEXT)

        assert signal.action == TradeAction.BUY
        assert signal.confidence == 0.5
        assert adapter.metrics.successful_requests == 1


class TestErrorMapping:
    """Tests for transport and HTTP error classification."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,retryable", [(429, True), (503, True), (401, False), (400, False)])
    async def test_http_status(self, status, retryable):
        def handler(request):
            return httpx.Response(status, json={"error": {"message": "nope"}})

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(OpenAIProviderConfig(provider_id="gpt"), client, "k")
            with pytest.raises(ProviderError) as exc_info:
                await adapter.generate("p", CONTEXT)

        error = exc_info.value
        assert error.code == str(status)
        assert error.status_code == status
        assert error.retryable is retryable
        assert "nope" in error.message

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(OpenAIProviderConfig(provider_id="gpt"), client, "k")
            with pytest.raises(ProviderError) as exc_info:
                await adapter.generate("p", CONTEXT)

        assert exc_info.value.code == "TIMEOUT"
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(OpenAIProviderConfig(provider_id="gpt"), client, "k")
            with pytest.raises(ProviderError) as exc_info:
                await adapter.generate("p", CONTEXT)

        assert exc_info.value.code == "NETWORK_ERROR"
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>maintenance</html>")

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(OpenAIProviderConfig(provider_id="gpt"), client, "k")
            with pytest.raises(ProviderResponseError):
                await adapter.generate("p", CONTEXT)


class TestClaudeAdapter:
    """Tests for the Messages dialect."""

    @pytest.mark.asyncio
    async def test_successful_signal(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "model": "claude-3-5-sonnet-latest",
                "content": [
                    {"type": "text", "text": "Analysis: "},
                    {"type": "text", "text": '{"action": "sell", "confidence": 0.7}'},
                ],
                "usage": {"input_tokens": 50, "output_tokens": 20},
            })

        async with mock_client(handler) as client:
            adapter = ClaudeAdapter(ClaudeProviderConfig(provider_id="claude"), client, "ak")
            signal = await adapter.generate("Analyze BTC", CONTEXT)

        assert seen["url"] == "https://api.anthropic.com/v1/messages"
        assert seen["headers"]["x-api-key"] == "ak"
        assert seen["headers"]["anthropic-version"] == "2023-06-01"
        assert "Context:" in seen["body"]["system"]
        assert seen["body"]["messages"] == [{"role": "user", "content": "Analyze BTC"}]

        assert signal.action == TradeAction.SELL
        assert signal.confidence == 0.7
        # SELL defaults: stop above, target below the context price
        assert signal.stop_loss == pytest.approx(65000.0 * 1.02)
        assert signal.take_profit == pytest.approx(65000.0 * 0.94)
        assert adapter.metrics.completion_tokens == 20

    @pytest.mark.asyncio
    async def test_no_text_blocks(self):
        def handler(request):
            return httpx.Response(200, json={"content": [{"type": "tool_use", "id": "x"}]})

        async with mock_client(handler) as client:
            adapter = ClaudeAdapter(ClaudeProviderConfig(provider_id="claude"), client, "ak")
            with pytest.raises(ProviderResponseError) as exc_info:
                await adapter.generate("p", CONTEXT)

        assert exc_info.value.code == "NO_TEXT_CONTENT"


class TestCustomAdapter:
    """Tests for custom endpoints."""

    def _config(self, **kwargs):
        return CustomProviderConfig(
            provider_id="local", base_url="http://localhost:8080/", **kwargs
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"choices": [{"message": {"content": REPLY}}]},
            {"choices": [{"text": REPLY}]},
            {"content": REPLY},
            {"output": REPLY},
            {"text": REPLY},
        ],
    )
    async def test_reply_shapes(self, body):
        def handler(request):
            return httpx.Response(200, json=body)

        async with mock_client(handler) as client:
            adapter = CustomAdapter(self._config(), client)
            signal = await adapter.generate("p", CONTEXT)

        assert signal.action == TradeAction.BUY

    @pytest.mark.asyncio
    async def test_headers_and_path(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            return httpx.Response(200, json={"text": REPLY})

        config = self._config(path="/generate", headers={"X-Team": "desk"})
        async with mock_client(handler) as client:
            await CustomAdapter(config, client, "tok").generate("p", CONTEXT)

        assert seen["url"] == "http://localhost:8080/generate"
        assert seen["headers"]["Authorization"] == "Bearer tok"
        assert seen["headers"]["X-Team"] == "desk"

    @pytest.mark.asyncio
    async def test_unknown_shape(self):
        def handler(request):
            return httpx.Response(200, json={"result": 1})

        async with mock_client(handler) as client:
            with pytest.raises(ProviderResponseError) as exc_info:
                await CustomAdapter(self._config(), client).generate("p", CONTEXT)

        assert exc_info.value.code == "NO_CONTENT"


class TestParseSignal:
    """Tests for reply text parsing."""

    @pytest.fixture
    def adapter(self):
        return OpenAIAdapter(
            OpenAIProviderConfig(provider_id="gpt"), httpx.AsyncClient(), "k"
        )

    def test_json_inside_prose(self, adapter):
        text = 'Here you go:\n```json\n{"action": "HOLD", "confidence": 0.4}\n```\nGood luck'
        signal = adapter.parse_signal(text, CONTEXT)

        assert signal.action == TradeAction.HOLD
        assert signal.confidence == 0.4

    def test_unknown_action_is_hold(self, adapter):
        signal = adapter.parse_signal('{"action": "YOLO", "confidence": 0.9}', CONTEXT)
        assert signal.action == TradeAction.HOLD

    def test_confidence_clamped_and_defaulted(self, adapter):
        assert adapter.parse_signal('{"action": "BUY", "confidence": 1.7}', CONTEXT).confidence == 1.0
        assert adapter.parse_signal('{"action": "BUY", "confidence": -2}', CONTEXT).confidence == 0.0
        assert adapter.parse_signal('{"action": "BUY", "confidence": "high"}', CONTEXT).confidence == 0.5
        assert adapter.parse_signal('{"action": "BUY"}', CONTEXT).confidence == 0.5

    @pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_confidence_defaulted(self, adapter, raw):
        signal = adapter.parse_signal(
            '{"action": "BUY", "confidence": ' + raw + ', "entryPrice": Infinity}', CONTEXT
        )

        assert signal.confidence == 0.5
        assert signal.entry_price == 65000.0

    def test_buy_default_levels(self, adapter):
        signal = adapter.parse_signal('{"action": "BUY", "confidence": 0.6}', {"price": 100.0})

        assert signal.entry_price == 100.0
        assert signal.stop_loss == pytest.approx(98.0)
        assert signal.take_profit == pytest.approx(106.0)

    def test_reasoning_falls_back_to_text(self, adapter):
        text = '{"action": "BUY", "confidence": 0.6}'
        assert adapter.parse_signal(text, CONTEXT).reasoning == text

    def test_no_json(self, adapter):
        with pytest.raises(ProviderResponseError) as exc_info:
            adapter.parse_signal("I think you should buy", CONTEXT)
        assert exc_info.value.code == "PARSE_ERROR"

    def test_malformed_json(self, adapter):
        with pytest.raises(ProviderResponseError):
            adapter.parse_signal('{"action": BUY}', CONTEXT)


class TestProviderConfig:
    """Tests for provider record validation."""

    def test_discriminated_records(self):
        configs = parse_provider_configs([
            {"kind": "openai", "provider_id": "gpt"},
            {"kind": "claude", "provider_id": "claude", "weight": 1.5},
            {"kind": "custom", "provider_id": "local", "base_url": "http://localhost"},
        ])

        assert [type(c) for c in configs] == [
            OpenAIProviderConfig, ClaudeProviderConfig, CustomProviderConfig,
        ]
        assert configs[1].weight == 1.5

    def test_unknown_kind(self):
        with pytest.raises(InvalidConfigError) as exc_info:
            parse_provider_configs([{"kind": "gemini", "provider_id": "g"}])
        assert exc_info.value.code == "INVALID_PROVIDER_CONFIG"

    def test_custom_requires_base_url(self):
        with pytest.raises(InvalidConfigError):
            parse_provider_configs([{"kind": "custom", "provider_id": "local"}])

    def test_non_positive_weight(self):
        with pytest.raises(InvalidConfigError):
            parse_provider_configs([{"kind": "openai", "provider_id": "gpt", "weight": 0}])

    def test_extra_field_rejected(self):
        with pytest.raises(InvalidConfigError):
            parse_provider_configs([{"kind": "openai", "provider_id": "gpt", "temprature": 0.2}])

    def test_duplicate_ids(self):
        with pytest.raises(InvalidConfigError) as exc_info:
            parse_provider_configs([
                {"kind": "openai", "provider_id": "x"},
                {"kind": "claude", "provider_id": "x"},
            ])
        assert exc_info.value.code == "DUPLICATE_PROVIDER"

    def test_secrets_from_environment(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key")
        secrets = ProviderSecrets(_env_file=None)

        claude = ClaudeProviderConfig(provider_id="claude")
        own_key = ClaudeProviderConfig(provider_id="c2", api_key="record-key")

        assert secrets.key_for(claude) == "env-key"
        assert secrets.key_for(own_key) == "record-key"

    @pytest.mark.asyncio
    async def test_create_adapter(self):
        async with httpx.AsyncClient() as client:
            adapter = create_adapter(
                CustomProviderConfig(provider_id="local", base_url="http://x"), client
            )
        assert isinstance(adapter, CustomAdapter)
        assert adapter.provider_id == "local"
