"""
Step 7: Glass Box 增强

为每笔有效交易构建完整的 Glass Box，并生成本次执行的汇总。
汇总始终报告 请求数 / 生成数 / 有效数 / 无效数，
区分“提供商没有返回可用交易”和“全部被校验器过滤”。
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ...glassbox import AuditInputs, AuditStep, GlassBox, create_full_glass_box
from ...models import Trade, get_current_timestamp_ms
from ..context import ExecutionContext, StepDefinition
from ..names import StepName
from .build_context import TradingContext
from .call_ai import AIResponse
from .generate_prompt import GeneratedPrompt
from .validate_trades import InvalidTrade, ValidationOutcome


class GenerationOutcome(str, Enum):
    OK = "ok"
    PARTIAL = "partial"
    NO_TRADES_FROM_PROVIDER = "no_trades_from_provider"
    ALL_FILTERED = "all_filtered"


_OUTCOME_MESSAGES = {
    GenerationOutcome.OK: "All requested trades generated and validated",
    GenerationOutcome.PARTIAL: "Fewer valid trades than requested; some were filtered by validators or not generated",
    GenerationOutcome.NO_TRADES_FROM_PROVIDER: "The AI provider returned no usable trades; retry the generation",
    GenerationOutcome.ALL_FILTERED: "Every generated trade was filtered by validators; relax the configuration",
}


class TradeCheckSummary(BaseModel):
    trade_id: str
    asset: str
    valid: bool
    checks_count: int
    passed_count: int


class GenerationSummary(BaseModel):
    execution_id: str
    requested: int
    generated: int
    valid: int
    invalid: int
    outcome: GenerationOutcome
    message: str
    ai_provider: Optional[str] = None
    ai_model: Optional[str] = None
    latency_ms: Optional[int] = None
    tokens_used: Optional[int] = None
    validation_summary: List[TradeCheckSummary] = Field(default_factory=list)
    timestamp: int = Field(default_factory=get_current_timestamp_ms)


class EnrichmentResult(BaseModel):
    """Final pipeline output."""

    trades: List[Trade] = Field(default_factory=list)
    invalid_trades: List[InvalidTrade] = Field(default_factory=list)
    glass_box_data: Dict[str, GlassBox] = Field(default_factory=dict)
    summary: GenerationSummary


def classify_outcome(requested: int, generated: int, valid: int) -> GenerationOutcome:
    if generated == 0:
        return GenerationOutcome.NO_TRADES_FROM_PROVIDER
    if valid == 0:
        return GenerationOutcome.ALL_FILTERED
    if valid < requested:
        return GenerationOutcome.PARTIAL
    return GenerationOutcome.OK


def build_audit_inputs(ctx: ExecutionContext) -> AuditInputs:
    """汇总前序步骤的输出，供审计轨迹使用（缺失的结果跳过）"""
    config = ctx.input.config
    values: Dict[str, Any] = {
        "execution_id": ctx.execution_id,
        "execution_time": config.execution_time.value,
        "steps": [
            AuditStep(step=entry.step, status=entry.status, duration_ms=entry.duration_ms)
            for entry in ctx.logs
        ],
        "duration_ms": get_current_timestamp_ms() - ctx.start_time,
        "min_confidence": config.min_confidence,
        "min_risk_reward": config.min_risk_reward,
    }

    ai = ctx.maybe_result(StepName.CALL_AI.value, AIResponse)
    if ai is not None:
        values.update(
            provider=ai.metadata.provider,
            model=ai.metadata.model,
            latency_ms=ai.metadata.latency_ms,
            usage=ai.metadata.usage,
        )

    prompt = ctx.maybe_result(StepName.GENERATE_PROMPT.value, GeneratedPrompt)
    if prompt is not None:
        values.update(system_prompt=prompt.system_prompt, user_prompt=prompt.user_prompt)

    trading = ctx.maybe_result(StepName.BUILD_CONTEXT.value, TradingContext)
    if trading is not None:
        analysis = trading.market_analysis
        values.update(
            prices=trading.prices,
            average_change=analysis.average_change,
            top_gainers=[g.symbol for g in analysis.top_gainers],
            top_losers=[loser.symbol for loser in analysis.top_losers],
        )

    if ctx.telemetry is not None:
        values["telemetry_summary"] = ctx.telemetry.get_summary()

    return AuditInputs(**values)


async def enrich_glass_box(ctx: ExecutionContext) -> EnrichmentResult:
    validation = ctx.result(StepName.VALIDATE_TRADES.value, ValidationOutcome)
    ai = ctx.maybe_result(StepName.CALL_AI.value, AIResponse)

    ctx.record("debug", f"Enriching {len(validation.valid_trades)} trades with Glass Box data")

    audit = build_audit_inputs(ctx)
    trades: List[Trade] = []
    glass_boxes: Dict[str, GlassBox] = {}
    for trade in validation.valid_trades:
        glass_box = create_full_glass_box(trade, audit)
        trades.append(trade.model_copy(update={"glass_box": glass_box}))
        glass_boxes[trade.id] = glass_box

    requested = ctx.input.config.num_results
    generated = validation.metadata.total_trades
    outcome = classify_outcome(requested, generated, len(trades))
    assets = {t.id: t.asset for t in validation.valid_trades}
    assets.update({i.trade.id: i.trade.asset for i in validation.invalid_trades})

    summary = GenerationSummary(
        execution_id=ctx.execution_id,
        requested=requested,
        generated=generated,
        valid=len(trades),
        invalid=len(validation.invalid_trades),
        outcome=outcome,
        message=_OUTCOME_MESSAGES[outcome],
        ai_provider=ai.metadata.provider if ai else None,
        ai_model=ai.metadata.model if ai else None,
        latency_ms=ai.metadata.latency_ms if ai else None,
        tokens_used=ai.metadata.usage.total_tokens if ai else None,
        validation_summary=[
            TradeCheckSummary(
                trade_id=report.trade_id,
                asset=assets.get(report.trade_id, ""),
                valid=report.usable,
                checks_count=len(report.verdicts),
                passed_count=report.passed_count,
            )
            for report in validation.validation_results
        ],
    )

    level = "info" if outcome == GenerationOutcome.OK else "warn"
    ctx.record(level, f"Glass Box enrichment complete: {outcome.value}", {
        "requested": requested,
        "generated": generated,
        "valid": len(trades),
        "invalid": len(validation.invalid_trades),
    })

    return EnrichmentResult(
        trades=trades,
        invalid_trades=validation.invalid_trades,
        glass_box_data=glass_boxes,
        summary=summary,
    )


def create_enrich_glass_box_step(timeout_ms: int = 5000, max_retries: int = 0, optional: bool = False) -> StepDefinition:
    return StepDefinition(
        name=StepName.ENRICH_GLASS_BOX.value,
        run=enrich_glass_box,
        description="Enriches trades with full Glass Box transparency data",
        optional=optional,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
    )
