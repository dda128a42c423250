"""Tests for the individual trade generation steps and their helpers."""

import json

import pytest

from conftest import (
    FakePriceSource,
    ai_trades_payload,
    make_trade,
    sample_prices,
)
from hatchery.constants import DEFAULT_MIN_CONFIDENCE
from hatchery.errors import MissingApiKeyError, ProviderError, ResponseParseError, StepError
from hatchery.models import PipelineInput, StructureCheck, TokenUsage, TradeType
from hatchery.pipeline import ExecutionContext, StepName
from hatchery.pipeline.steps import (
    AIResponse,
    GenerationOutcome,
    ParsedTrades,
    classify_outcome,
    create_fetch_prices_step,
    create_validate_trades_step,
    extract_json_from_text,
    friendly_provider_error,
    normalize_trade,
    resolve_api_key,
    validate_trade_structure,
)
from hatchery.pipeline.steps.call_ai import AICallMetadata, PromptsUsed
from hatchery.pipeline.steps.enrich_glass_box import enrich_glass_box
from hatchery.pipeline.steps.generate_prompt import generate_prompt
from hatchery.pipeline.steps.parse_response import parse_response, to_number
from hatchery.pipeline.steps.build_context import (
    analyze_market_conditions,
    build_context,
    calculate_position_sizing,
    summarize_prices,
)
from hatchery.pipeline.steps.generate_prompt import format_change, format_price, format_volume
from hatchery.telemetry import create_telemetry
from hatchery.validators import ValidationThresholds, create_standard_validator


def make_ctx(config=None, strategy=None) -> ExecutionContext:
    pipeline_input = PipelineInput.model_validate({
        "strategy": strategy or {"id": "p-1", "name": "Momentum", "content": "Buy strength"},
        "config": config or {},
    })
    return ExecutionContext("exec-test", pipeline_input, create_telemetry("exec-test"))


def ai_response(text: str) -> AIResponse:
    return AIResponse(
        response=text,
        metadata=AICallMetadata(
            provider="anthropic",
            model="claude-test",
            latency_ms=850,
            usage=TokenUsage(input_tokens=1000, output_tokens=300),
            prompts_used=PromptsUsed(system="s", user="u"),
        ),
    )


class TestExtractJson:

    def test_bare_array(self):
        assert extract_json_from_text('[{"asset": "BTC/USDT"}]') == [{"asset": "BTC/USDT"}]

    def test_array_inside_prose(self):
        text = 'Here are the trades:\n[{"a": 1}, {"a": 2}]\nGood luck!'
        assert extract_json_from_text(text) == [{"a": 1}, {"a": 2}]

    def test_fenced_block(self):
        text = 'Sure.\n```json\n[{"a": 1}]\n```'
        assert extract_json_from_text(text) == [{"a": 1}]

    def test_single_object_with_nested_array(self):
        text = 'Result: {"asset": "BTC/USDT", "criteriaMatched": [{"criterion": "x"}]}'
        assert extract_json_from_text(text) == {"asset": "BTC/USDT", "criteriaMatched": [{"criterion": "x"}]}

    def test_no_json(self):
        assert extract_json_from_text("I cannot help with that.") is None
        assert extract_json_from_text("") is None
        assert extract_json_from_text(None) is None

    def test_malformed_json_raises(self):
        with pytest.raises(ResponseParseError):
            extract_json_from_text("[{'asset': 'BTC',}]")


class TestStructureAndNormalize:

    def test_to_number(self):
        assert to_number("3,500") == 3500.0
        assert to_number("$95,000.50") == 95000.5
        assert to_number(7) == 7.0
        assert to_number("abc") is None
        assert to_number(True) is None

    def test_complete_trade_has_no_errors(self):
        check = validate_trade_structure(ai_trades_payload()[0])
        assert check.valid
        assert check.errors == []
        assert check.warnings == []

    def test_missing_fields_and_bad_direction(self):
        check = validate_trade_structure({"asset": "BTC/USDT", "strategy": "SIDEWAYS", "entry": 1})
        assert not check.valid
        assert "Missing required field: take_profit" in check.errors
        assert "Missing required field: stop_loss" in check.errors
        assert "Missing required field: confidence" in check.errors
        assert any("Invalid direction" in e for e in check.errors)

    def test_warnings_do_not_invalidate(self):
        raw = dict(ai_trades_payload()[1], ipe=60, criteriaMatched=[{"criterion": "x"}])
        check = validate_trade_structure(raw)
        assert check.valid
        assert any("outside recommended range" in w for w in check.warnings)
        assert "Missing reasoning object" in check.warnings
        assert "Less than 3 criteria provided" in check.warnings

    def test_factor_weight_sum_warning(self):
        raw = dict(ai_trades_payload()[0], confidenceFactors=[{"factor": "a", "weight": 60, "score": 80}])
        assert any("sum to 60" in w for w in validate_trade_structure(raw).warnings)

    def test_normalize_trade(self):
        ctx = make_ctx({"capital": 1000, "num_results": 2, "leverage": 3})
        trade = normalize_trade(ai_trades_payload()[1], 1, ctx)

        assert trade.asset == "ETH/USDT"
        assert trade.direction == TradeType.SHORT
        assert trade.entry == 3500.0
        assert trade.risk_reward_ratio == 2.0
        assert trade.risk_percent == pytest.approx(4.29)
        assert trade.reward_percent == pytest.approx(8.57)
        assert trade.confidence == 80
        assert trade.leverage == 3
        assert trade.capital == 500.0
        assert trade.prompt_id == "p-1"
        assert trade.reasoning.why_asset == "Not provided"
        assert trade.criteria_matched[0].value == "28"

    def test_normalize_rejects_missing_prices(self):
        raw = dict(ai_trades_payload()[0])
        del raw["stopLoss"]
        with pytest.raises(ValueError):
            normalize_trade(raw, 0, make_ctx())

    def test_normalize_rejects_non_positive_entry(self):
        raw = dict(ai_trades_payload()[0], entry=0)
        with pytest.raises(ValueError):
            normalize_trade(raw, 0, make_ctx())

    def test_non_numeric_confidence_is_structure_error(self):
        raw = dict(ai_trades_payload()[0], ipe="high")

        check = validate_trade_structure(raw)
        trade = normalize_trade(raw, 0, make_ctx())

        assert "Invalid confidence: must be a number" in check.errors
        assert trade.confidence == 0.0
        assert not create_standard_validator().validate(trade).usable

    def test_zero_confidence_is_kept(self):
        raw = dict(ai_trades_payload()[0], ipe=0)

        trade = normalize_trade(raw, 0, make_ctx())
        report = create_standard_validator().validate(trade)

        assert trade.confidence == 0.0
        assert not report.usable
        assert any(v.name == "Confidence Score" and not v.passed for v in report.verdicts)

    def test_missing_confidence_falls_back_to_default(self):
        raw = dict(ai_trades_payload()[0])
        del raw["ipe"]

        trade = normalize_trade(raw, 0, make_ctx())

        assert trade.confidence == DEFAULT_MIN_CONFIDENCE
        assert "Missing required field: confidence" in trade.structure_check.errors


class TestFetchPrices:

    @pytest.mark.asyncio
    async def test_assets_from_config(self):
        source = FakePriceSource()
        step = create_fetch_prices_step(source)
        ctx = make_ctx({"assets": ["btc/usdt", "ETH/USDT", "BTC/USDT", "DOGE/USDT"]})

        result = await step.run(ctx)

        assert source.calls == [["BTC/USDT", "ETH/USDT", "DOGE/USDT"]]
        assert set(result.prices) == {"BTC/USDT", "ETH/USDT"}
        assert result.metadata.missing_assets == ["DOGE/USDT"]
        assert result.metadata.has_24h_stats
        assert any(e.level == "warn" for e in ctx.telemetry.events)

    @pytest.mark.asyncio
    async def test_default_assets(self):
        source = FakePriceSource()
        step = create_fetch_prices_step(source, default_assets=["SOL/USDT"])
        await step.run(make_ctx())
        assert source.calls == [["SOL/USDT"]]

    @pytest.mark.asyncio
    async def test_no_prices_is_an_error(self):
        step = create_fetch_prices_step(FakePriceSource(prices={}))
        with pytest.raises(StepError):
            await step.run(make_ctx())


class TestBuildContext:

    def test_market_analysis(self):
        analysis = analyze_market_conditions(sample_prices())

        assert analysis.average_change == pytest.approx((2.5 - 1.2 + 4.1) / 3)
        assert [g.symbol for g in analysis.top_gainers] == ["SOL/USDT", "BTC/USDT", "ETH/USDT"]
        assert analysis.top_losers[0].symbol == "ETH/USDT"
        assert [v.symbol for v in analysis.high_volume] == ["BTC/USDT", "ETH/USDT"]
        assert [s.symbol for s in analysis.near_support] == ["ETH/USDT"]
        assert {r.symbol for r in analysis.near_resistance} == {"BTC/USDT", "SOL/USDT"}

    def test_empty_prices(self):
        analysis = analyze_market_conditions({})
        assert analysis.average_change == 0.0
        assert analysis.top_gainers == []

    def test_position_sizing(self):
        ctx = make_ctx({"capital": 1000, "num_results": 4, "leverage": 5})
        sizing = calculate_position_sizing(ctx.input.config)
        assert sizing.capital_per_trade == 250.0
        assert sizing.effective_capital == 1250.0
        assert sizing.max_risk_per_trade == 5.0

    def test_prices_sorted_by_volume(self):
        rows = summarize_prices(sample_prices())
        assert [r.symbol for r in rows] == ["BTC/USDT", "ETH/USDT", "SOL/USDT"]

    @pytest.mark.asyncio
    async def test_without_price_result(self):
        ctx = make_ctx({"execution_time": "swing"})
        trading = await build_context(ctx)
        assert trading.prices == {}
        assert trading.execution_params.min_risk_reward == 2.5
        assert trading.execution_params.chart_timeframes == ["4h", "1d", "1w"]


class TestGeneratePrompt:

    def test_formatters(self):
        assert format_price(95000) == "95000.00"
        assert format_price(1.5) == "1.5000"
        assert format_price(0.00001234) == "0.00001234"
        assert format_volume(2.4e9) == "$2.40B"
        assert format_volume(None) == "N/A"
        assert format_change(-1.234) == "-1.23%"

    @pytest.mark.asyncio
    async def test_prompt_contents(self):
        ctx = make_ctx({"num_results": 2, "min_confidence": 80})
        ctx.set_result(StepName.FETCH_PRICES.value, await create_fetch_prices_step(FakePriceSource()).run(ctx))
        ctx.set_result(StepName.BUILD_CONTEXT.value, await build_context(ctx))

        prompt = await generate_prompt(ctx)

        assert 'USER\'S TRADING STRATEGY: "Momentum"' in prompt.user_prompt
        assert "| BTC/USDT | 95500.00 | +2.50% |" in prompt.user_prompt
        assert "exactly 2" in prompt.user_prompt
        assert prompt.full_prompt.startswith(prompt.system_prompt)
        assert prompt.metadata.estimated_tokens == -(-len(prompt.full_prompt) // 4)

    @pytest.mark.asyncio
    async def test_requires_context(self):
        with pytest.raises(StepError):
            await generate_prompt(make_ctx())


class TestCallAiHelpers:

    def test_key_precedence(self):
        ctx = make_ctx({"api_key": "sk-ant-direct", "api_keys": {"anthropic": "sk-ant-mapped"}})
        assert resolve_api_key(ctx, "anthropic", lambda name: "sk-ant-env") == "sk-ant-direct"

        ctx = make_ctx({"api_keys": {"anthropic": "sk-ant-mapped"}})
        assert resolve_api_key(ctx, "anthropic", lambda name: "sk-ant-env") == "sk-ant-mapped"

        ctx = make_ctx()
        assert resolve_api_key(ctx, "anthropic", lambda name: "sk-ant-env") == "sk-ant-env"

    def test_missing_key(self):
        with pytest.raises(MissingApiKeyError) as exc:
            resolve_api_key(make_ctx(), "openai", lambda name: None)
        assert exc.value.retryable is False

    @pytest.mark.parametrize("status,fragment,retryable", [
        (401, "Invalid API key for anthropic", False),
        (429, "Rate limit exceeded", True),
        (503, "temporarily unavailable", True),
    ])
    def test_friendly_errors(self, status, fragment, retryable):
        original = ProviderError("anthropic", "raw", status=status)
        friendly = friendly_provider_error(original)
        assert fragment in str(friendly)
        assert friendly.status == status
        assert friendly.retryable is retryable
        assert friendly.__cause__ is original

    def test_other_errors_unchanged(self):
        original = ProviderError("anthropic", "bad request", status=400)
        assert friendly_provider_error(original) is original


class TestParseResponse:

    @pytest.mark.asyncio
    async def test_parses_and_collects_errors(self):
        payload = ai_trades_payload() + [{"asset": "SOL/USDT", "strategy": "LONG"}, "not a trade"]
        ctx = make_ctx({"num_results": 2})
        ctx.set_result(StepName.CALL_AI.value, ai_response(f"Trades:\n{json.dumps(payload)}"))

        parsed = await parse_response(ctx)

        assert [t.asset for t in parsed.trades] == ["BTC/USDT", "ETH/USDT"]
        assert [issue.index for issue in parsed.parse_errors] == [2, 3]
        assert parsed.metadata.raw_count == 4
        assert parsed.metadata.normalized_count == 2

    @pytest.mark.asyncio
    async def test_structure_errors_keep_trade(self):
        raw = dict(ai_trades_payload()[0])
        del raw["ipe"]
        ctx = make_ctx()
        ctx.set_result(StepName.CALL_AI.value, ai_response(json.dumps([raw])))

        parsed = await parse_response(ctx)

        assert len(parsed.trades) == 1
        assert not parsed.trades[0].structure_check.valid
        assert parsed.parse_errors[0].messages == ["Missing required field: confidence"]

    @pytest.mark.asyncio
    async def test_no_json_raises(self):
        ctx = make_ctx()
        ctx.set_result(StepName.CALL_AI.value, ai_response("Sorry, no trades today."))
        with pytest.raises(ResponseParseError):
            await parse_response(ctx)


class TestValidateAndEnrich:

    def _ctx_with_trades(self, trades, config=None):
        ctx = make_ctx(config or {"num_results": 2})
        ctx.set_result(StepName.PARSE_RESPONSE.value, ParsedTrades(trades=trades))
        return ctx

    @pytest.mark.asyncio
    async def test_validation_splits_trades(self):
        good = make_trade(id="good")
        bad = make_trade(id="bad", confidence=40)
        broken = make_trade(id="broken", structure_check=StructureCheck(valid=False, errors=["Missing field"]))
        ctx = self._ctx_with_trades([good, bad, broken])

        outcome = await create_validate_trades_step().run(ctx)

        assert [t.id for t in outcome.valid_trades] == ["good"]
        assert [i.trade.id for i in outcome.invalid_trades] == ["bad", "broken"]
        assert "Confidence Score" in outcome.invalid_trades[0].reason
        assert "Trade Structure" in outcome.invalid_trades[1].reason
        assert outcome.valid_trades[0].validation_results
        assert outcome.metadata.total_trades == 3

    @pytest.mark.asyncio
    async def test_defaults_fill_unset_thresholds(self):
        ctx = self._ctx_with_trades([make_trade(confidence=65)])
        step = create_validate_trades_step(defaults=ValidationThresholds(min_confidence=60))
        outcome = await step.run(ctx)
        assert len(outcome.valid_trades) == 1

    @pytest.mark.parametrize("requested,generated,valid,outcome", [
        (3, 3, 3, GenerationOutcome.OK),
        (3, 3, 1, GenerationOutcome.PARTIAL),
        (3, 2, 2, GenerationOutcome.PARTIAL),
        (3, 0, 0, GenerationOutcome.NO_TRADES_FROM_PROVIDER),
        (3, 2, 0, GenerationOutcome.ALL_FILTERED),
    ])
    def test_classify_outcome(self, requested, generated, valid, outcome):
        assert classify_outcome(requested, generated, valid) == outcome

    @pytest.mark.asyncio
    async def test_enrich_attaches_glass_box(self):
        ctx = self._ctx_with_trades([make_trade(id="good"), make_trade(id="bad", confidence=40)])
        ctx.set_result(StepName.VALIDATE_TRADES.value, await create_validate_trades_step().run(ctx))
        ctx.set_result(StepName.CALL_AI.value, ai_response("[]"))

        result = await enrich_glass_box(ctx)

        assert result.summary.outcome == GenerationOutcome.PARTIAL
        assert (result.summary.requested, result.summary.generated, result.summary.valid) == (2, 2, 1)
        assert result.summary.tokens_used == 1300
        assert result.trades[0].glass_box == result.glass_box_data["good"]
        assert result.glass_box_data["good"].audit_trail.ai.provider == "anthropic"
        assert [s.valid for s in result.summary.validation_summary] == [True, False]

    @pytest.mark.asyncio
    async def test_enrich_all_filtered(self):
        ctx = self._ctx_with_trades([make_trade(confidence=40)])
        ctx.set_result(StepName.VALIDATE_TRADES.value, await create_validate_trades_step().run(ctx))

        result = await enrich_glass_box(ctx)

        assert result.summary.outcome == GenerationOutcome.ALL_FILTERED
        assert result.summary.ai_provider is None
        assert result.trades == []
