"""End-to-end runs of the default seven-step trade pipeline with fake I/O."""

import json

import pytest

from conftest import (
    ANTHROPIC_KEY,
    FakePriceSource,
    FakeResponse,
    FakeSession,
    ai_trades_payload,
    anthropic_body,
)
from hatchery.config import SecretsSettings, Settings
from hatchery.constants import REDACTED
from hatchery.core.event import PipelineEventType
from hatchery.errors import ResponseParseError, StepError
from hatchery.pipeline import StepName, create_trade_pipeline
from hatchery.pipeline.steps import EnrichmentResult, GenerationOutcome
from hatchery.providers import create_default_registry

ALL_STEPS = [s.value for s in StepName]


def make_settings(data=None, **secrets) -> Settings:
    return Settings.from_dict(data or {}, secrets=SecretsSettings(_env_file=None, **secrets))


def registry_returning(*responses):
    session = FakeSession(*responses)
    return create_default_registry(session=session), session


def ai_reply(payload) -> FakeResponse:
    return FakeResponse(200, anthropic_body(json.dumps(payload)))


class TestTradePipeline:

    def test_default_step_order(self):
        pipeline = create_trade_pipeline(
            registry=create_default_registry(),
            price_source=FakePriceSource(),
            settings=make_settings(),
        )
        assert [s.name for s in pipeline.steps] == ALL_STEPS
        assert pipeline.get_step("call_ai").timeout_ms == 60_000

    def test_step_overrides_from_settings(self):
        settings = make_settings({
            "pipeline": {"steps": {"call_ai": {"timeout_ms": 1234, "max_retries": 4}}},
        })
        pipeline = create_trade_pipeline(
            registry=create_default_registry(), price_source=FakePriceSource(), settings=settings,
        )
        step = pipeline.get_step("call_ai")
        assert (step.timeout_ms, step.max_retries) == (1234, 4)

    @pytest.mark.asyncio
    async def test_happy_path(self, pipeline_input):
        registry, session = registry_returning(ai_reply(ai_trades_payload()))
        pipeline = create_trade_pipeline(registry=registry, price_source=FakePriceSource(), settings=make_settings())
        completed = []
        pipeline.on(PipelineEventType.STEP_COMPLETE, lambda e: completed.append(e.step))

        ctx = await pipeline.execute(pipeline_input)

        assert ctx.status == "completed", ctx.summary()
        assert list(ctx.results.keys()) == ALL_STEPS
        assert completed == ALL_STEPS

        result = ctx.result(StepName.ENRICH_GLASS_BOX.value, EnrichmentResult)
        assert result.summary.outcome == GenerationOutcome.OK
        assert result.summary.valid == 2
        assert [t.asset for t in result.trades] == ["BTC/USDT", "ETH/USDT"]
        assert all(t.glass_box is not None for t in result.trades)
        assert result.trades[0].glass_box.risk_analysis.assessment.level.value == "medium"
        assert result.summary.ai_provider == "anthropic"

        sent = session.calls[0]
        assert "Momentum" in sent["json"]["messages"][0]["content"]

        exported = json.dumps(ctx.telemetry.export(), default=str)
        assert ANTHROPIC_KEY not in exported

    @pytest.mark.asyncio
    async def test_all_trades_filtered(self, pipeline_input):
        payload = [dict(t, ipe=50) for t in ai_trades_payload()]
        registry, _ = registry_returning(ai_reply(payload))
        pipeline = create_trade_pipeline(registry=registry, price_source=FakePriceSource(), settings=make_settings())

        ctx = await pipeline.execute(pipeline_input)

        result = ctx.result(StepName.ENRICH_GLASS_BOX.value, EnrichmentResult)
        assert ctx.status == "completed"
        assert result.summary.outcome == GenerationOutcome.ALL_FILTERED
        assert len(result.invalid_trades) == 2
        assert "Confidence Score" in result.invalid_trades[0].reason

    @pytest.mark.asyncio
    async def test_unparseable_reply_fails_without_retry(self, pipeline_input):
        registry, session = registry_returning(FakeResponse(200, anthropic_body("No trades today.")))
        pipeline = create_trade_pipeline(registry=registry, price_source=FakePriceSource(), settings=make_settings())

        ctx = await pipeline.execute(pipeline_input)

        assert ctx.status == "failed"
        assert ctx.error_step == StepName.PARSE_RESPONSE.value
        assert isinstance(ctx.error, ResponseParseError)
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_invalid_key_from_provider_is_redacted(self, pipeline_input):
        env_key = "sk-ant-REDACTED"
        body = {"error": {"type": "authentication_error", "message": f"invalid x-api-key: {env_key}"}}
        registry, session = registry_returning(FakeResponse(401, body))
        pipeline = create_trade_pipeline(
            registry=registry,
            price_source=FakePriceSource(),
            settings=make_settings(ANTHROPIC_API_KEY=env_key),
        )
        errors = []
        pipeline.on(PipelineEventType.PIPELINE_ERROR, errors.append)

        pipeline_input["config"].pop("api_key")
        ctx = await pipeline.execute(pipeline_input)

        assert ctx.error_step == StepName.CALL_AI.value
        assert session.calls[0]["headers"]["x-api-key"] == env_key
        assert len(session.calls) == 1
        assert "Invalid API key for anthropic" in errors[0].error
        assert env_key not in errors[0].error
        assert REDACTED in errors[0].error
        assert env_key not in json.dumps(ctx.telemetry.export(), default=str)

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, pipeline_input):
        registry, session = registry_returning(
            FakeResponse(503, {"error": {"message": "overloaded"}}),
            ai_reply(ai_trades_payload()),
        )
        settings = make_settings({"pipeline": {"backoff_base_ms": 1, "max_backoff_ms": 2}})
        pipeline = create_trade_pipeline(registry=registry, price_source=FakePriceSource(), settings=settings)
        retries = []
        pipeline.on(PipelineEventType.STEP_RETRY, retries.append)

        ctx = await pipeline.execute(pipeline_input)

        assert ctx.status == "completed"
        assert ctx.attempts["call_ai"] == 2
        assert "temporarily unavailable" in retries[0].error

    @pytest.mark.asyncio
    async def test_optional_price_step_leaves_gap(self, pipeline_input):
        registry, _ = registry_returning(ai_reply(ai_trades_payload()))
        settings = make_settings({
            "pipeline": {"steps": {"fetch_prices": {"optional": True, "max_retries": 0}}},
        })
        source = FakePriceSource(error=StepError("exchange down", retryable=False))
        pipeline = create_trade_pipeline(registry=registry, price_source=source, settings=settings)

        ctx = await pipeline.execute(pipeline_input)

        assert ctx.status == "completed"
        assert StepName.FETCH_PRICES.value not in ctx.results
        assert list(ctx.failed_steps) == [StepName.FETCH_PRICES.value]
        result = ctx.result(StepName.ENRICH_GLASS_BOX.value, EnrichmentResult)
        assert result.summary.valid == 2
        assert result.trades[0].current_price == result.trades[0].entry

    @pytest.mark.asyncio
    async def test_unknown_provider_fails_fast(self, pipeline_input):
        registry, session = registry_returning(ai_reply(ai_trades_payload()))
        pipeline = create_trade_pipeline(registry=registry, price_source=FakePriceSource(), settings=make_settings())
        pipeline_input["config"]["ai_provider"] = "mistral"

        ctx = await pipeline.execute(pipeline_input)

        assert ctx.error_step == StepName.CALL_AI.value
        assert "Unknown AI provider" in ctx.summary()["error"]
        assert ctx.attempts["call_ai"] == 1
        assert session.calls == []
