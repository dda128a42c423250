"""
Step 5: 解析 AI 响应

从模型返回的文本中提取 JSON（整段文本 → 最先出现的数组/对象 → 代码块），
逐条做结构检查并规范化为 Trade。无法规范化的条目进入 parse_errors，
不影响其它条目。
"""
import json
import re
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ...constants import DEFAULT_MIN_CONFIDENCE, MAX_CONFIDENCE
from ...errors import ResponseParseError
from ...models import (
    ConfidenceFactor,
    CriteriaMatch,
    StructureCheck,
    Trade,
    TradeReasoning,
    TradeType,
    generate_trade_id,
    get_current_timestamp_ms,
)
from ..context import ExecutionContext, StepDefinition
from ..names import StepName
from .build_context import TradingContext
from .call_ai import AIResponse

_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")
_FENCED_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")

REQUIRED_FIELDS = ("asset", "direction", "entry", "take_profit", "stop_loss", "confidence")
PRICE_FIELDS = ("entry", "take_profit", "stop_loss")
NUMERIC_FIELDS = PRICE_FIELDS + ("confidence",)
MIN_RECOMMENDED_CONFIDENCE = 70
MIN_CRITERIA = 3

# 规范字段名 -> 模型可能使用的键
_FIELD_KEYS = {
    "asset": ("asset", "symbol"),
    "direction": ("direction", "strategy", "side"),
    "entry": ("entry", "entry_price", "entryPrice"),
    "take_profit": ("take_profit", "takeProfit", "tp"),
    "stop_loss": ("stop_loss", "stopLoss", "sl"),
    "confidence": ("confidence", "ipe"),
    "summary": ("summary",),
    "reasoning": ("reasoning",),
    "criteria_matched": ("criteria_matched", "criteriaMatched"),
    "confidence_factors": ("confidence_factors", "confidenceFactors"),
}
_REASONING_KEYS = {
    "why_asset": ("why_asset", "whyAsset"),
    "why_direction": ("why_direction", "whyDirection"),
    "why_entry": ("why_entry", "whyEntry"),
    "why_levels": ("why_levels", "whyLevels"),
}


class ParseIssue(BaseModel):
    index: int
    messages: List[str] = Field(default_factory=list)


class ParseMetadata(BaseModel):
    raw_count: int = 0
    normalized_count: int = 0
    error_count: int = 0
    warning_count: int = 0
    expected_count: int = 0
    timestamp: int = Field(default_factory=get_current_timestamp_ms)


class ParsedTrades(BaseModel):
    trades: List[Trade] = Field(default_factory=list)
    parse_errors: List[ParseIssue] = Field(default_factory=list)
    validation_warnings: List[ParseIssue] = Field(default_factory=list)
    metadata: ParseMetadata = Field(default_factory=ParseMetadata)


# ============================================================================
# JSON extraction
# ============================================================================


def _candidates(text: str) -> Iterator[str]:
    stripped = text.strip()
    if stripped[:1] in ("[", "{"):
        yield stripped

    array = _ARRAY_PATTERN.search(text)
    obj = _OBJECT_PATTERN.search(text)
    # 单个对象内部的数组（如 criteriaMatched）不能被当成交易数组
    if obj and (not array or obj.start() < array.start()):
        yield obj.group()
    if array:
        yield array.group()

    fenced = _FENCED_PATTERN.search(text)
    if fenced:
        content = fenced.group(1).strip()
        inner = _ARRAY_PATTERN.search(content)
        yield inner.group() if inner else content


def extract_json_from_text(text: Optional[str]) -> Optional[Any]:
    """
    从文本中提取第一段可解析的 JSON

    Returns:
        解析后的对象；文本中找不到 JSON 时返回 None

    Raises:
        ResponseParseError: 找到了候选片段但都不是合法 JSON
    """
    if not text:
        return None

    last_error: Optional[ValueError] = None
    found = False
    for candidate in _candidates(text):
        found = True
        try:
            return json.loads(candidate)
        except ValueError as e:
            last_error = e

    if found:
        raise ResponseParseError(f"Failed to parse JSON: {last_error}")
    return None


# ============================================================================
# Structure check / normalization
# ============================================================================


def _pick(raw: Dict[str, Any], keys) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _canonical(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {field: _pick(raw, keys) for field, keys in _FIELD_KEYS.items()}


def to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").replace("$", "").strip())
    except ValueError:
        return None


def validate_trade_structure(raw: Dict[str, Any]) -> StructureCheck:
    """检查 AI 返回条目的形状；errors 阻止使用，warnings 仅提示"""
    fields = _canonical(raw)
    errors: List[str] = []
    warnings: List[str] = []

    for name in REQUIRED_FIELDS:
        if fields[name] is None:
            errors.append(f"Missing required field: {name}")

    direction = fields["direction"]
    if direction is not None and str(direction).upper() not in (TradeType.LONG.value, TradeType.SHORT.value):
        errors.append(f"Invalid direction: {direction}. Must be LONG or SHORT")

    confidence = to_number(fields["confidence"])
    if confidence is not None and not MIN_RECOMMENDED_CONFIDENCE <= confidence <= MAX_CONFIDENCE:
        warnings.append(
            f"Confidence {confidence:g} outside recommended range {MIN_RECOMMENDED_CONFIDENCE}-{MAX_CONFIDENCE}"
        )

    for name in NUMERIC_FIELDS:
        if fields[name] is not None and to_number(fields[name]) is None:
            errors.append(f"Invalid {name}: must be a number")

    reasoning = fields["reasoning"]
    if isinstance(reasoning, dict):
        for name, keys in _REASONING_KEYS.items():
            if not _pick(reasoning, keys):
                warnings.append(f"Missing reasoning field: {name}")
    else:
        warnings.append("Missing reasoning object")

    criteria = fields["criteria_matched"]
    if not isinstance(criteria, list):
        warnings.append("Missing or invalid criteria_matched array")
    elif len(criteria) < MIN_CRITERIA:
        warnings.append(f"Less than {MIN_CRITERIA} criteria provided")

    factors = fields["confidence_factors"]
    if not isinstance(factors, list):
        warnings.append("Missing or invalid confidence_factors array")
    else:
        total_weight = sum(to_number(f.get("weight")) or 0 for f in factors if isinstance(f, dict))
        if abs(total_weight - 100) > 1e-6:
            warnings.append(f"Confidence factor weights sum to {total_weight:g}, should be 100")

    return StructureCheck(valid=not errors, errors=errors, warnings=warnings)


def _normalize_reasoning(value: Any) -> TradeReasoning:
    if not isinstance(value, dict):
        return TradeReasoning()
    picked = {name: _pick(value, keys) for name, keys in _REASONING_KEYS.items()}
    return TradeReasoning(**{k: str(v) for k, v in picked.items() if v})


def _normalize_criteria(value: Any) -> List[CriteriaMatch]:
    if not isinstance(value, list):
        return []
    criteria = []
    for item in value:
        if not isinstance(item, dict):
            continue
        criteria.append(CriteriaMatch(
            criterion=str(item.get("criterion") or "Unknown"),
            value=str(item.get("value", "N/A")),
            threshold=str(item.get("threshold", "N/A")),
            passed=bool(item.get("passed", True)),
        ))
    return criteria


def _normalize_factors(value: Any) -> List[ConfidenceFactor]:
    if not isinstance(value, list):
        return []
    return [
        ConfidenceFactor(
            factor=str(item.get("factor") or "Unknown"),
            weight=to_number(item.get("weight")) or 0.0,
            score=to_number(item.get("score")) or 0.0,
        )
        for item in value
        if isinstance(item, dict)
    ]


def normalize_trade(
    raw: Dict[str, Any],
    index: int,
    ctx: ExecutionContext,
    trading: Optional[TradingContext] = None,
) -> Trade:
    """
    规范化单条交易

    Raises:
        ValueError / ValidationError: 缺少价格或方向等无法补全的字段
    """
    fields = _canonical(raw)
    check = validate_trade_structure(raw)

    entry = to_number(fields["entry"])
    take_profit = to_number(fields["take_profit"])
    stop_loss = to_number(fields["stop_loss"])
    if entry is None or take_profit is None or stop_loss is None:
        raise ValueError("Trade is missing entry, take_profit or stop_loss")
    if entry <= 0:
        raise ValueError(f"Invalid entry price: {entry}")

    asset = str(fields["asset"] or "").strip().upper()
    if not asset:
        raise ValueError("Trade is missing asset")

    config = trading.config if trading else ctx.input.config
    live = trading.prices.get(asset) if trading else None
    capital = trading.position_sizing.capital_per_trade if trading else config.capital / config.num_results

    reward = abs(take_profit - entry)
    risk = abs(entry - stop_loss)
    strategy = ctx.input.strategy

    # 仅在字段缺失时使用默认值；非数字的置信度记为 0，由校验规则拒绝
    confidence = to_number(fields["confidence"])
    if confidence is None:
        confidence = DEFAULT_MIN_CONFIDENCE if fields["confidence"] is None else 0.0

    return Trade(
        id=generate_trade_id(index),
        prompt_id=strategy.id,
        prompt_name=strategy.name,
        asset=asset,
        direction=TradeType(str(fields["direction"] or TradeType.LONG.value).upper()),
        entry=entry,
        take_profit=take_profit,
        stop_loss=stop_loss,
        current_price=live.price if live else entry,
        risk_reward_ratio=round(reward / risk, 2) if risk > 0 else 0.0,
        risk_percent=round(risk / entry * 100, 2),
        reward_percent=round(reward / entry * 100, 2),
        confidence=confidence,
        leverage=config.leverage,
        capital=capital,
        summary=str(fields["summary"] or ""),
        reasoning=_normalize_reasoning(fields["reasoning"]),
        criteria_matched=_normalize_criteria(fields["criteria_matched"]),
        confidence_factors=_normalize_factors(fields["confidence_factors"]),
        structure_check=check,
        raw=raw,
    )


# ============================================================================
# Step
# ============================================================================


async def parse_response(ctx: ExecutionContext) -> ParsedTrades:
    ai = ctx.result(StepName.CALL_AI.value, AIResponse)
    trading = ctx.maybe_result(StepName.BUILD_CONTEXT.value, TradingContext)
    expected = ctx.input.config.num_results

    ctx.record("debug", "Parsing AI response", {"response_length": len(ai.response)})

    payload = extract_json_from_text(ai.response)
    if payload is None:
        ctx.record("error", "No JSON found in response")
        raise ResponseParseError("Failed to extract JSON from AI response")

    raw_trades = payload if isinstance(payload, list) else [payload]
    ctx.record("info", f"Parsed {len(raw_trades)} trades from response")

    result = ParsedTrades()
    for index, raw in enumerate(raw_trades):
        if not isinstance(raw, dict):
            result.parse_errors.append(ParseIssue(index=index, messages=["Trade entry is not a JSON object"]))
            continue
        try:
            trade = normalize_trade(raw, index, ctx, trading)
        except (ValueError, ValidationError) as e:
            result.parse_errors.append(ParseIssue(index=index, messages=[str(e)]))
            ctx.record("error", f"Failed to normalize trade {index}", {"error": str(e)})
            continue

        check = trade.structure_check
        if check.errors:
            result.parse_errors.append(ParseIssue(index=index, messages=check.errors))
            ctx.record("warn", f"Trade {index} has structure errors", {"errors": check.errors})
        if check.warnings:
            result.validation_warnings.append(ParseIssue(index=index, messages=check.warnings))
        result.trades.append(trade)

    if len(result.trades) < expected:
        ctx.record("warn", f"Got {len(result.trades)} trades, expected {expected}")

    result.metadata = ParseMetadata(
        raw_count=len(raw_trades),
        normalized_count=len(result.trades),
        error_count=len(result.parse_errors),
        warning_count=len(result.validation_warnings),
        expected_count=expected,
    )
    return result


def create_parse_response_step(timeout_ms: int = 5000, max_retries: int = 0, optional: bool = False) -> StepDefinition:
    return StepDefinition(
        name=StepName.PARSE_RESPONSE.value,
        run=parse_response,
        description="Parses AI response and extracts trade data",
        optional=optional,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
    )
