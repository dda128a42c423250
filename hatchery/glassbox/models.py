"""
Glass Box 数据模型

Glass Box 是附加在每笔交易上的解释对象：推理、匹配条件、置信度因子、
校验结果、市场背景、风险分析与审计轨迹。构建后不可变。
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..constants import DEFAULT_EXECUTION_TIME, DEFAULT_MIN_CONFIDENCE, DEFAULT_MIN_RISK_REWARD
from ..models import CriteriaMatch, PriceData, TokenUsage, TradeReasoning, TradeType, ValidationVerdict


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# ==================== 置信度 ====================

class FactorContribution(FrozenModel):
    factor: str
    weight: float
    score: float
    contribution: float


class ConfidenceTotals(FrozenModel):
    weight: float
    score: float       # 加权和，已限制在 [0, 100]
    normalized: float  # 总权重为 0 时为 0


class ConfidenceBreakdown(FrozenModel):
    factors: List[FactorContribution] = Field(default_factory=list)
    totals: ConfidenceTotals


# ==================== 校验 ====================

class ValidationSummary(FrozenModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    warnings: int = 0


class ValidationSection(FrozenModel):
    results: List[ValidationVerdict] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)


# ==================== 市场背景 ====================

class AssetSnapshot(FrozenModel):
    symbol: str
    current_price: Optional[float] = None
    change_24h: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    volume_24h: Optional[float] = None


class MarketSnapshot(FrozenModel):
    average_change: Optional[float] = None
    top_gainers: List[str] = Field(default_factory=list)
    top_losers: List[str] = Field(default_factory=list)


class MarketContextSection(FrozenModel):
    asset: AssetSnapshot
    market: MarketSnapshot = Field(default_factory=MarketSnapshot)


# ==================== 风险分析 ====================

class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)


class RiskLevels(FrozenModel):
    entry: float
    take_profit: float
    stop_loss: float
    current_price: float


class RiskRatios(FrozenModel):
    risk_reward: float
    risk_percent: float
    reward_percent: float


class PositionDetails(FrozenModel):
    capital: float
    leverage: float
    position_size: float
    max_loss: float
    potential_profit: float


class RiskAssessment(FrozenModel):
    level: RiskLevel
    warnings: List[str] = Field(default_factory=list)
    recommendation: str


class RiskAnalysis(FrozenModel):
    levels: RiskLevels
    ratios: RiskRatios
    position: PositionDetails
    assessment: RiskAssessment


# ==================== 审计轨迹 ====================

class AuditStep(FrozenModel):
    step: str
    status: str
    duration_ms: int = 0


class PipelineAudit(FrozenModel):
    steps: List[AuditStep] = Field(default_factory=list)
    total_duration_ms: int = 0


class AIAudit(FrozenModel):
    provider: str = "unknown"
    model: str = "unknown"
    latency_ms: Optional[int] = None
    tokens_used: Optional[TokenUsage] = None


class PromptDigest(FrozenModel):
    system_prompt_preview: str = ""
    system_prompt_sha256: Optional[str] = None
    user_prompt_length: int = 0


class AuditTrail(FrozenModel):
    execution_id: str
    timestamp: int
    pipeline: PipelineAudit = Field(default_factory=PipelineAudit)
    ai: AIAudit = Field(default_factory=AIAudit)
    prompts: PromptDigest = Field(default_factory=PromptDigest)
    telemetry: Dict[str, Any] = Field(default_factory=dict)


# ==================== Glass Box ====================

class GlassBox(FrozenModel):
    """一笔交易的完整解释，未添加的部分为 None"""

    trade_id: str
    asset: str
    direction: TradeType
    generated_at: str
    reasoning: Optional[TradeReasoning] = None
    criteria_matched: Optional[List[CriteriaMatch]] = None
    confidence_factors: Optional[ConfidenceBreakdown] = None
    validation_results: Optional[ValidationSection] = None
    market_context: Optional[MarketContextSection] = None
    risk_analysis: Optional[RiskAnalysis] = None
    audit_trail: Optional[AuditTrail] = None


class AuditInputs(BaseModel):
    """
    构建 Glass Box 所需的执行信息

    由 enrich 步骤从执行上下文中收集，构建器本身不依赖流水线。
    """

    execution_id: str = "unknown"
    execution_time: str = DEFAULT_EXECUTION_TIME
    steps: List[AuditStep] = Field(default_factory=list)
    duration_ms: int = 0
    provider: str = "unknown"
    model: str = "unknown"
    latency_ms: Optional[int] = None
    usage: Optional[TokenUsage] = None
    system_prompt: str = ""
    user_prompt: str = ""
    prices: Dict[str, PriceData] = Field(default_factory=dict)
    average_change: Optional[float] = None
    top_gainers: List[str] = Field(default_factory=list)
    top_losers: List[str] = Field(default_factory=list)
    min_risk_reward: float = DEFAULT_MIN_RISK_REWARD
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    telemetry_summary: Dict[str, Any] = Field(default_factory=dict)
