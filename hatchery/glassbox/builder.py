"""
Glass Box 构建器

按需逐段累积，最后 build() 生成不可变的 GlassBox：

    glass_box = (
        GlassBoxBuilder(trade, audit)
        .add_reasoning()
        .add_criteria_matched()
        .add_confidence_factors()
        .add_validation_results()
        .add_audit_trail()
        .build()
    )

构建是确定性的：相同输入（除时间戳外）得到相同输出。
"""
import hashlib
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..constants import LEVERAGE_LIMITS, MAX_CONFIDENCE
from ..models import (
    ConfidenceFactor,
    CriteriaMatch,
    Severity,
    Trade,
    TradeReasoning,
    get_current_timestamp_ms,
)
from .models import (
    AIAudit,
    AssetSnapshot,
    AuditInputs,
    AuditTrail,
    ConfidenceBreakdown,
    ConfidenceTotals,
    FactorContribution,
    GlassBox,
    MarketContextSection,
    MarketSnapshot,
    PipelineAudit,
    PositionDetails,
    PromptDigest,
    RiskAnalysis,
    RiskAssessment,
    RiskLevel,
    RiskLevels,
    RiskRatios,
    ValidationSection,
    ValidationSummary,
)

NOT_PROVIDED = "Not provided"
PROMPT_PREVIEW_CHARS = 200

# (上限, 等级)，按顺序取第一个满足 value <= 上限 的等级
LEVERAGE_BANDS: Tuple[Tuple[float, RiskLevel], ...] = (
    (5, RiskLevel.LOW),
    (10, RiskLevel.MEDIUM),
    (20, RiskLevel.HIGH),
)
STOP_DISTANCE_BANDS: Tuple[Tuple[float, RiskLevel], ...] = (
    (2, RiskLevel.LOW),
    (5, RiskLevel.MEDIUM),
    (10, RiskLevel.HIGH),
)
MIN_HEALTHY_RISK_REWARD = 1.5

RECOMMENDATIONS = {
    RiskLevel.LOW: "Risk parameters are well-balanced",
    RiskLevel.MEDIUM: "Risk is acceptable, ensure proper position sizing",
    RiskLevel.HIGH: "Consider reducing position size or leverage",
    RiskLevel.EXTREME: "Risk is extreme: reduce leverage and tighten the stop before trading",
}


def band(value: float, bands: Tuple[Tuple[float, RiskLevel], ...]) -> RiskLevel:
    for ceiling, level in bands:
        if value <= ceiling:
            return level
    return RiskLevel.EXTREME


def confidence_total(factors: List[ConfidenceFactor]) -> float:
    """加权置信度总分：fsum(w * s / 100)，限制在 [0, 100]"""
    total = math.fsum(f.weight * f.score / 100 for f in factors)
    return min(100.0, max(0.0, total))


def assess_risk(risk_reward: float, leverage: float, stop_distance_pct: float) -> RiskAssessment:
    """
    风险等级 = 杠杆档位与止损距离档位中较高者，R:R 过低时至少为 high
    """
    leverage_level = band(leverage, LEVERAGE_BANDS)
    stop_level = band(stop_distance_pct, STOP_DISTANCE_BANDS)
    level = max(leverage_level, stop_level, key=lambda lv: lv.rank)

    warnings = []
    if risk_reward < MIN_HEALTHY_RISK_REWARD:
        warnings.append("Low risk/reward ratio")
        if level.rank < RiskLevel.HIGH.rank:
            level = RiskLevel.HIGH
    if leverage_level == RiskLevel.EXTREME:
        warnings.append("Extreme leverage")
    elif leverage_level == RiskLevel.HIGH:
        warnings.append("High leverage")
    if stop_level.rank >= RiskLevel.HIGH.rank:
        warnings.append("Large stop loss distance")

    return RiskAssessment(level=level, warnings=warnings, recommendation=RECOMMENDATIONS[level])


class GlassBoxBuilder:
    """Glass Box 构建器（链式调用）"""

    def __init__(self, trade: Trade, audit: Optional[AuditInputs] = None):
        self.trade = trade
        self.audit = audit or AuditInputs()
        self._sections: Dict[str, Any] = {}

    # ==================== 各部分 ====================

    def add_reasoning(self) -> "GlassBoxBuilder":
        """推理说明，缺失的字段由交易数据生成"""
        r = self.trade.reasoning
        self._sections["reasoning"] = TradeReasoning(
            why_asset=self._or_generated(r.why_asset, self._explain_asset),
            why_direction=self._or_generated(r.why_direction, self._explain_direction),
            why_entry=self._or_generated(r.why_entry, self._explain_entry),
            why_levels=self._or_generated(r.why_levels, self._explain_levels),
        )
        return self

    def add_criteria_matched(self) -> "GlassBoxBuilder":
        criteria = list(self.trade.criteria_matched) or self._basic_criteria()
        self._sections["criteria_matched"] = criteria
        return self

    def add_confidence_factors(self) -> "GlassBoxBuilder":
        factors = list(self.trade.confidence_factors) or self._default_factors()
        total_weight = math.fsum(f.weight for f in factors)
        total_score = confidence_total(factors)

        self._sections["confidence_factors"] = ConfidenceBreakdown(
            factors=[
                FactorContribution(
                    factor=f.factor,
                    weight=f.weight,
                    score=f.score,
                    contribution=f.contribution,
                )
                for f in factors
            ],
            totals=ConfidenceTotals(
                weight=total_weight,
                score=total_score,
                normalized=total_score if total_weight > 0 else 0.0,
            ),
        )
        return self

    def add_validation_results(self) -> "GlassBoxBuilder":
        results = list(self.trade.validation_results)
        self._sections["validation_results"] = ValidationSection(
            results=results,
            summary=ValidationSummary(
                total=len(results),
                passed=sum(1 for v in results if v.passed),
                failed=sum(1 for v in results if not v.passed),
                warnings=sum(1 for v in results if not v.passed and v.severity == Severity.WARNING),
            ),
        )
        return self

    def add_market_context(self) -> "GlassBoxBuilder":
        price = self.audit.prices.get(self.trade.asset)
        self._sections["market_context"] = MarketContextSection(
            asset=AssetSnapshot(
                symbol=self.trade.asset,
                current_price=price.price if price else None,
                change_24h=price.price_change_percent if price else None,
                high_24h=price.high_24h if price else None,
                low_24h=price.low_24h if price else None,
                volume_24h=price.quote_volume_24h if price else None,
            ),
            market=MarketSnapshot(
                average_change=self.audit.average_change,
                top_gainers=self.audit.top_gainers[:3],
                top_losers=self.audit.top_losers[:3],
            ),
        )
        return self

    def add_risk_analysis(self) -> "GlassBoxBuilder":
        t = self.trade
        if t.is_long:
            reward, risk = t.take_profit - t.entry, t.entry - t.stop_loss
        else:
            reward, risk = t.entry - t.take_profit, t.stop_loss - t.entry

        risk_reward = reward / risk if risk > 0 else 0.0
        risk_pct = risk / t.entry * 100 if t.entry else 0.0
        reward_pct = reward / t.entry * 100 if t.entry else 0.0

        position_size = t.capital * t.leverage
        self._sections["risk_analysis"] = RiskAnalysis(
            levels=RiskLevels(
                entry=t.entry,
                take_profit=t.take_profit,
                stop_loss=t.stop_loss,
                current_price=t.current_price,
            ),
            ratios=RiskRatios(
                risk_reward=round(risk_reward, 2),
                risk_percent=round(risk_pct, 2),
                reward_percent=round(reward_pct, 2),
            ),
            position=PositionDetails(
                capital=t.capital,
                leverage=t.leverage,
                position_size=position_size,
                max_loss=round(position_size * risk_pct / 100, 2),
                potential_profit=round(position_size * reward_pct / 100, 2),
            ),
            assessment=assess_risk(risk_reward, t.leverage, abs(risk_pct)),
        )
        return self

    def add_audit_trail(self) -> "GlassBoxBuilder":
        a = self.audit
        digest = None
        preview = ""
        if a.system_prompt:
            digest = hashlib.sha256(a.system_prompt.encode("utf-8")).hexdigest()
            preview = a.system_prompt[:PROMPT_PREVIEW_CHARS]
            if len(a.system_prompt) > PROMPT_PREVIEW_CHARS:
                preview += "..."

        self._sections["audit_trail"] = AuditTrail(
            execution_id=a.execution_id,
            timestamp=get_current_timestamp_ms(),
            pipeline=PipelineAudit(steps=list(a.steps), total_duration_ms=a.duration_ms),
            ai=AIAudit(provider=a.provider, model=a.model, latency_ms=a.latency_ms, tokens_used=a.usage),
            prompts=PromptDigest(
                system_prompt_preview=preview,
                system_prompt_sha256=digest,
                user_prompt_length=len(a.user_prompt),
            ),
            telemetry=dict(a.telemetry_summary),
        )
        return self

    def build(self) -> GlassBox:
        return GlassBox(
            trade_id=self.trade.id,
            asset=self.trade.asset,
            direction=self.trade.direction,
            generated_at=datetime.now(timezone.utc).isoformat(),
            **self._sections,
        )

    # ==================== 内部方法 ====================

    @staticmethod
    def _or_generated(value: str, generate) -> str:
        if value and value != NOT_PROVIDED:
            return value
        return generate()

    def _explain_asset(self) -> str:
        asset = self.trade.asset
        price = self.audit.prices.get(asset)
        if price is None:
            return f"{asset} selected based on strategy criteria"

        text = f"{asset} selected. Current price: ${price.price:,.2f}"
        if price.price_change_percent is not None:
            text += f", {price.price_change_percent:+.2f}% in 24h"
        return text

    def _explain_direction(self) -> str:
        t = self.trade
        return f"{t.direction.value} position recommended with {t.confidence:g}% confidence based on technical analysis"

    def _explain_entry(self) -> str:
        t = self.trade
        deviation = (t.entry - t.current_price) / t.current_price * 100 if t.current_price else 0.0
        side = "above" if deviation >= 0 else "below"
        return f"Entry at ${t.entry:,.2f}, {abs(deviation):.2f}% {side} current price"

    def _explain_levels(self) -> str:
        t = self.trade
        if not t.entry:
            return "Levels unavailable: entry price is zero"
        tp_pct = (t.take_profit - t.entry) / t.entry * 100
        sl_pct = (t.stop_loss - t.entry) / t.entry * 100
        rr = f"{t.risk_reward_ratio:g}" if t.risk_reward_ratio else "N/A"
        return (
            f"TP at ${t.take_profit:,.2f} ({tp_pct:+.2f}%), "
            f"SL at ${t.stop_loss:,.2f} ({sl_pct:+.2f}%). R:R ratio: {rr}:1"
        )

    def _basic_criteria(self) -> List[CriteriaMatch]:
        t, a = self.trade, self.audit
        max_leverage = LEVERAGE_LIMITS.get(a.execution_time, LEVERAGE_LIMITS["intraday"])["max"]
        return [
            CriteriaMatch(
                criterion="Risk/Reward Ratio",
                value=f"{t.risk_reward_ratio:g}:1",
                threshold=f">= {a.min_risk_reward:g}:1",
                passed=t.risk_reward_ratio >= a.min_risk_reward,
            ),
            CriteriaMatch(
                criterion="Confidence Score",
                value=f"{t.confidence:g}%",
                threshold=f">= {a.min_confidence:g}%",
                passed=t.confidence >= a.min_confidence,
            ),
            CriteriaMatch(
                criterion="Leverage",
                value=f"{t.leverage:g}x",
                threshold=f"<= {max_leverage}x",
                passed=t.leverage <= max_leverage,
            ),
        ]

    def _default_factors(self) -> List[ConfidenceFactor]:
        t = self.trade
        return [
            ConfidenceFactor(
                factor="Technical Signal Strength",
                weight=40,
                score=min(MAX_CONFIDENCE, t.confidence + 5),
            ),
            ConfidenceFactor(
                factor="Risk Management Quality",
                weight=35,
                score=min(MAX_CONFIDENCE, 70 + t.risk_reward_ratio * 5),
            ),
            ConfidenceFactor(factor="Market Context", weight=25, score=75),
        ]


def create_full_glass_box(trade: Trade, audit: Optional[AuditInputs] = None) -> GlassBox:
    """构建包含所有部分的 Glass Box"""
    return (
        GlassBoxBuilder(trade, audit)
        .add_reasoning()
        .add_criteria_matched()
        .add_confidence_factors()
        .add_validation_results()
        .add_market_context()
        .add_risk_analysis()
        .add_audit_trail()
        .build()
    )


def create_minimal_glass_box(trade: Trade, audit: Optional[AuditInputs] = None) -> GlassBox:
    """只包含推理、条件和置信度的精简版本"""
    return (
        GlassBoxBuilder(trade, audit)
        .add_reasoning()
        .add_criteria_matched()
        .add_confidence_factors()
        .build()
    )
