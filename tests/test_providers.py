"""AI provider adapters, registry and the ccxt price source."""

import json
from unittest.mock import AsyncMock, MagicMock

import ccxt.async_support as ccxt
import pytest

from conftest import ANTHROPIC_KEY, FakeResponse, FakeSession, anthropic_body
from hatchery.errors import (
    InvalidApiKeyError,
    ProviderError,
    ProviderParseError,
    StepError,
    UnknownProviderError,
)
from hatchery.market import CcxtPriceSource, ticker_to_price
from hatchery.providers import (
    AnthropicProvider,
    GoogleProvider,
    OpenAIProvider,
    ProviderRegistry,
    XAIProvider,
    create_default_registry,
)

GOOGLE_KEY = "AIza" + "x" * 35


def openai_body(content="[]"):
    return {
        "model": "gpt-test",
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5},
    }


def gemini_body(text="[]"):
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}],
        "usageMetadata": {"promptTokenCount": 7, "candidatesTokenCount": 3},
    }


class TestApiKeyValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider_cls,bad_key", [
        (AnthropicProvider, "sk-openai-style"),
        (OpenAIProvider, "pk-123"),
        (GoogleProvider, "short"),
        (XAIProvider, "tooshort"),
        (AnthropicProvider, None),
    ])
    async def test_invalid_key_fails_without_network(self, provider_cls, bad_key):
        session = FakeSession()
        provider = provider_cls(session=session)

        with pytest.raises(InvalidApiKeyError) as exc:
            await provider.generate("system", "user", bad_key)

        assert session.calls == []
        assert exc.value.retryable is False


class TestAnthropic:

    @pytest.mark.asyncio
    async def test_request_and_response(self):
        session = FakeSession(FakeResponse(200, anthropic_body("hello")))
        provider = AnthropicProvider(model="claude-test", session=session)

        response = await provider.generate("be brief", "hi", ANTHROPIC_KEY, {"max_tokens": 100})

        call = session.calls[0]
        assert call["url"] == "https://api.anthropic.com/v1/messages"
        assert call["headers"]["x-api-key"] == ANTHROPIC_KEY
        assert call["headers"]["anthropic-version"] == "2023-06-01"
        assert call["json"]["system"] == "be brief"
        assert call["json"]["max_tokens"] == 100
        assert response.content == "hello"
        assert response.usage.total_tokens == 1600
        assert response.finish_reason == "end_turn"

    @pytest.mark.asyncio
    async def test_non_2xx_raises_provider_error(self):
        body = {"error": {"type": "overloaded_error", "message": "Overloaded"}}
        provider = AnthropicProvider(session=FakeSession(FakeResponse(529, body)))

        with pytest.raises(ProviderError) as exc:
            await provider.generate("s", "u", ANTHROPIC_KEY)

        assert exc.value.status == 529
        assert exc.value.retryable is True
        assert "Overloaded" in str(exc.value)

    @pytest.mark.asyncio
    async def test_client_error_is_not_retryable(self):
        provider = AnthropicProvider(session=FakeSession(FakeResponse(400, {"message": "bad request"})))
        with pytest.raises(ProviderError) as exc:
            await provider.generate("s", "u", ANTHROPIC_KEY)
        assert exc.value.retryable is False

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable(self):
        provider = AnthropicProvider(session=FakeSession(FakeResponse(429, text="slow down")))
        with pytest.raises(ProviderError) as exc:
            await provider.generate("s", "u", ANTHROPIC_KEY)
        assert exc.value.retryable is True
        assert exc.value.provider_message == "slow down"

    @pytest.mark.asyncio
    async def test_missing_content_raises_parse_error(self):
        provider = AnthropicProvider(session=FakeSession(FakeResponse(200, {"content": []})))
        with pytest.raises(ProviderParseError):
            await provider.generate("s", "u", ANTHROPIC_KEY)

    @pytest.mark.asyncio
    async def test_invalid_json_body(self):
        provider = AnthropicProvider(session=FakeSession(FakeResponse(200, text="<html>")))
        with pytest.raises(ProviderParseError):
            await provider.generate("s", "u", ANTHROPIC_KEY)


class TestOpenAICompatible:

    @pytest.mark.asyncio
    async def test_openai_uses_bearer_and_json_format(self):
        session = FakeSession(FakeResponse(200, openai_body("{}")))
        response = await OpenAIProvider(session=session).generate("sys", "usr", "sk-test")

        call = session.calls[0]
        assert call["headers"]["Authorization"] == "Bearer sk-test"
        assert call["json"]["messages"][0] == {"role": "system", "content": "sys"}
        assert call["json"]["response_format"] == {"type": "json_object"}
        assert response.content == "{}"
        assert response.usage.input_tokens == 10

    @pytest.mark.asyncio
    async def test_xai_has_no_response_format(self):
        session = FakeSession(FakeResponse(200, openai_body()))
        await XAIProvider(session=session).generate("sys", "usr", "x" * 24)

        call = session.calls[0]
        assert call["url"] == "https://api.x.ai/v1/chat/completions"
        assert "response_format" not in call["json"]

    @pytest.mark.asyncio
    async def test_missing_choices(self):
        provider = OpenAIProvider(session=FakeSession(FakeResponse(200, {"choices": []})))
        with pytest.raises(ProviderParseError):
            await provider.generate("s", "u", "sk-test")


class TestGoogle:

    @pytest.mark.asyncio
    async def test_key_in_header_and_prompts_combined(self):
        session = FakeSession(FakeResponse(200, gemini_body("ok")))
        provider = GoogleProvider(model="gemini-test", session=session)

        response = await provider.generate("system text", "user text", GOOGLE_KEY)

        call = session.calls[0]
        assert call["url"] == "https://generativelanguage.googleapis.com/v1beta/models/gemini-test:generateContent"
        assert GOOGLE_KEY not in call["url"]
        assert call["headers"]["x-goog-api-key"] == GOOGLE_KEY
        assert call["json"]["contents"][0]["parts"][0]["text"] == "system text\n\n---\n\nuser text"
        assert response.content == "ok"
        assert response.usage.output_tokens == 3

    @pytest.mark.asyncio
    async def test_blocked_prompt(self):
        body = {"promptFeedback": {"blockReason": "SAFETY"}}
        provider = GoogleProvider(session=FakeSession(FakeResponse(200, body)))
        with pytest.raises(ProviderParseError) as exc:
            await provider.generate("s", "u", GOOGLE_KEY)
        assert "SAFETY" in str(exc.value)


class TestMalformedResponses:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider_cls,api_key,body", [
        (OpenAIProvider, "sk-test", {"choices": ["oops"]}),
        (OpenAIProvider, "sk-test", {"choices": [{"message": "text"}]}),
        (OpenAIProvider, "sk-test", dict(openai_body(), usage=[1, 2])),
        (AnthropicProvider, ANTHROPIC_KEY, {"content": [{"text": "[]"}], "usage": ["x"]}),
        (GoogleProvider, GOOGLE_KEY, {"candidates": ["oops"]}),
        (GoogleProvider, GOOGLE_KEY, {"candidates": [{"content": "text"}]}),
        (GoogleProvider, GOOGLE_KEY, dict(gemini_body(), usageMetadata="n/a")),
    ])
    async def test_wrong_shape_raises_parse_error(self, provider_cls, api_key, body):
        provider = provider_cls(session=FakeSession(FakeResponse(200, body)))

        with pytest.raises(ProviderParseError) as exc:
            await provider.generate("s", "u", api_key)

        assert exc.value.retryable is False

    @pytest.mark.asyncio
    async def test_non_string_metadata_is_dropped(self):
        body = dict(anthropic_body("ok"), stop_reason=1, model=["x"])
        provider = AnthropicProvider(model="claude-test", session=FakeSession(FakeResponse(200, body)))

        response = await provider.generate("s", "u", ANTHROPIC_KEY)

        assert response.finish_reason is None
        assert response.model == "claude-test"


class TestRegistry:

    def test_default_registry(self):
        registry = create_default_registry()
        assert registry.available() == ["anthropic", "openai", "google", "xai"]
        assert "Anthropic" in registry
        assert len(registry) == 4

    def test_unknown_provider(self):
        with pytest.raises(UnknownProviderError) as exc:
            ProviderRegistry().get("mistral")
        assert exc.value.retryable is False

    def test_register_custom(self):
        registry = ProviderRegistry()
        custom = AnthropicProvider(model="claude-local")
        registry.register("Local", custom)
        assert registry.get("local") is custom
        assert registry.all_info()[0].model == "claude-local"

    def test_register_rejects_non_provider(self):
        with pytest.raises(TypeError):
            ProviderRegistry().register("x", object())


class TestCcxtPriceSource:

    def _exchange(self, markets, tickers):
        exchange = MagicMock()
        exchange.load_markets = AsyncMock(return_value=markets)
        exchange.fetch_tickers = AsyncMock(return_value=tickers)
        exchange.close = AsyncMock()
        return exchange

    def test_ticker_mapping(self):
        price = ticker_to_price(
            {"last": "95000.5", "percentage": 2.1, "high": 96000, "low": 94000, "quoteVolume": 1e9, "timestamp": 1},
            "binance",
        )
        assert price.price == 95000.5
        assert price.quote_volume_24h == 1e9
        assert price.timestamp == 1
        assert ticker_to_price({"last": None}, "binance") is None

    @pytest.mark.asyncio
    async def test_unknown_symbols_filtered(self, monkeypatch):
        exchange = self._exchange(
            markets={"BTC/USDT": {}},
            tickers={"BTC/USDT": {"last": 95000}},
        )
        source = CcxtPriceSource("binance")
        monkeypatch.setattr(source, "_create_exchange", lambda: exchange)

        prices = await source.fetch_prices(["BTC/USDT", "NOPE/USDT"])

        assert list(prices) == ["BTC/USDT"]
        exchange.fetch_tickers.assert_awaited_once_with(["BTC/USDT"])
        exchange.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exchange_error_wrapped_and_closed(self, monkeypatch):
        exchange = self._exchange(markets={}, tickers={})
        exchange.load_markets.side_effect = ccxt.NetworkError("down")
        source = CcxtPriceSource("binance")
        monkeypatch.setattr(source, "_create_exchange", lambda: exchange)

        with pytest.raises(StepError):
            await source.fetch_prices(["BTC/USDT"])
        exchange.close.assert_awaited_once()

    def test_unknown_exchange(self):
        with pytest.raises(StepError):
            CcxtPriceSource("not-an-exchange")._create_exchange()
