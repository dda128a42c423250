"""Trade generation data models.

This module provides the value objects that flow through the pipeline:
- Input models (StrategyPrompt, TradeConfig, PipelineInput)
- Market data models (PriceData)
- Provider models (TokenUsage, ProviderResponse, ProviderInfo)
- Trade models (TradeReasoning, CriteriaMatch, ConfidenceFactor, Trade)
- Validation models (ValidationVerdict, ValidationReport)
"""

from enum import Enum
from typing import Any, Dict, List, Optional
import secrets
import time
from datetime import datetime, timezone

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel

from .constants import (
    DEFAULT_AI_PROVIDER,
    DEFAULT_CAPITAL,
    DEFAULT_EXECUTION_TIME,
    DEFAULT_LEVERAGE,
    DEFAULT_MAX_ENTRY_DEVIATION,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_MIN_RISK_REWARD,
    DEFAULT_MIN_VOLUME,
    DEFAULT_NUM_RESULTS,
    DEFAULT_TARGET_PCT,
)


def get_current_timestamp_ms() -> int:
    """Get current timestamp in milliseconds."""
    return int(time.time() * 1000)


def generate_execution_id() -> str:
    """Generate unique execution ID."""
    return f"exec-{get_current_timestamp_ms()}-{secrets.token_hex(4)}"


def generate_trade_id(index: int = 0) -> str:
    """Generate unique trade ID."""
    return f"trade-{get_current_timestamp_ms()}-{index}-{secrets.token_hex(3)}"


class CamelModel(BaseModel):
    """Accepts both snake_case and camelCase keys (UI payloads are camelCase)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Enums
# =============================================================================

class TradeType(str, Enum):
    """Trade direction."""
    LONG = "LONG"
    SHORT = "SHORT"


class ExecutionTime(str, Enum):
    """Execution timeframe for generated trades."""
    TARGET = "target"
    SCALPING = "scalping"
    INTRADAY = "intraday"
    SWING = "swing"


class Severity(str, Enum):
    """Validator severity. Only ERROR blocks a trade."""
    ERROR = "error"
    WARNING = "warning"


class TradeStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CLOSED = "closed"


# =============================================================================
# Input Models
# =============================================================================

class StrategyPrompt(CamelModel):
    """User authored natural-language strategy."""

    id: Optional[str] = None
    name: str = "Custom Strategy"
    content: str = ""


class TradeConfig(CamelModel):
    """Trade generation configuration supplied by the caller.

    ``api_key`` / ``api_keys`` are secrets and never serialized in clear text.
    """

    assets: Optional[List[str]] = None
    capital: float = Field(default=DEFAULT_CAPITAL, gt=0)
    leverage: float = Field(default=DEFAULT_LEVERAGE, ge=1)
    execution_time: ExecutionTime = ExecutionTime(DEFAULT_EXECUTION_TIME)
    target_pct: float = DEFAULT_TARGET_PCT
    min_confidence: float = Field(
        default=DEFAULT_MIN_CONFIDENCE,
        validation_alias=AliasChoices("minConfidence", "min_confidence", "minIpe"),
    )
    num_results: int = Field(default=DEFAULT_NUM_RESULTS, ge=1, le=10)
    ai_provider: str = DEFAULT_AI_PROVIDER
    api_key: Optional[SecretStr] = None
    api_keys: Dict[str, SecretStr] = Field(default_factory=dict)
    min_risk_reward: float = DEFAULT_MIN_RISK_REWARD
    max_entry_deviation: float = DEFAULT_MAX_ENTRY_DEVIATION
    min_volume: float = DEFAULT_MIN_VOLUME

    @field_validator("ai_provider")
    @classmethod
    def _lower_provider(cls, v: str) -> str:
        return v.strip().lower()

    def secret_values(self) -> List[str]:
        """Return all configured secret values (for scrubbing error text)."""
        values = [s.get_secret_value() for s in self.api_keys.values()]
        if self.api_key is not None:
            values.append(self.api_key.get_secret_value())
        return [v for v in values if v]


class PipelineInput(CamelModel):
    """Pipeline input contract: ``{strategy, config}``."""

    strategy: StrategyPrompt = Field(default_factory=StrategyPrompt)
    config: TradeConfig = Field(default_factory=TradeConfig)


# =============================================================================
# Market Data Models
# =============================================================================

class PriceData(BaseModel):
    """Ticker snapshot for one symbol."""

    price: float
    timestamp: int = Field(default_factory=get_current_timestamp_ms)
    source: str = "binance"
    price_change: Optional[float] = None
    price_change_percent: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    volume_24h: Optional[float] = None
    quote_volume_24h: Optional[float] = None


# =============================================================================
# Provider Models
# =============================================================================

class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ProviderResponse(BaseModel):
    """Normalized AI provider result."""

    content: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    raw: Dict[str, Any] = Field(default_factory=dict)
    finish_reason: Optional[str] = None
    provider: str = ""
    model: str = ""


class ProviderInfo(BaseModel):
    name: str
    model: str
    base_url: str
    supports_system_prompt: bool = True


# =============================================================================
# Trade Models
# =============================================================================

class TradeReasoning(BaseModel):
    why_asset: str = "Not provided"
    why_direction: str = "Not provided"
    why_entry: str = "Not provided"
    why_levels: str = "Not provided"


class CriteriaMatch(BaseModel):
    criterion: str = "Unknown"
    value: str = "N/A"
    threshold: str = "N/A"
    passed: bool = True


class ConfidenceFactor(BaseModel):
    factor: str = "Unknown"
    weight: float = 0.0
    score: float = 0.0

    @property
    def contribution(self) -> float:
        return self.weight * self.score / 100


class StructureCheck(BaseModel):
    """Shape check of the raw AI trade before normalization."""

    valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ValidationVerdict(BaseModel):
    """Outcome of one rule applied to one trade."""

    name: str
    passed: bool
    severity: Severity = Severity.ERROR
    message: str = ""
    value: Any = None
    threshold: Any = None

    @property
    def blocking(self) -> bool:
        return not self.passed and self.severity == Severity.ERROR


class ValidationReport(BaseModel):
    """All verdicts for one trade plus the aggregate classification."""

    trade_id: str
    verdicts: List[ValidationVerdict] = Field(default_factory=list)
    timestamp: int = Field(default_factory=get_current_timestamp_ms)

    @property
    def usable(self) -> bool:
        return not any(v.blocking for v in self.verdicts)

    @property
    def passed_count(self) -> int:
        return sum(1 for v in self.verdicts if v.passed)

    @property
    def failed_count(self) -> int:
        return sum(1 for v in self.verdicts if not v.passed)

    @property
    def error_count(self) -> int:
        return sum(1 for v in self.verdicts if v.blocking)

    @property
    def warning_count(self) -> int:
        return sum(1 for v in self.verdicts if not v.passed and v.severity == Severity.WARNING)

    @property
    def failed(self) -> List[ValidationVerdict]:
        return [v for v in self.verdicts if not v.passed]


class Trade(BaseModel):
    """Trade proposal produced by the pipeline (value object)."""

    id: str
    prompt_id: Optional[str] = None
    prompt_name: str = "Custom Strategy"
    asset: str
    direction: TradeType
    entry: float
    take_profit: float
    stop_loss: float
    current_price: float
    risk_reward_ratio: float = 0.0
    risk_percent: float = 0.0
    reward_percent: float = 0.0
    confidence: float = DEFAULT_MIN_CONFIDENCE
    leverage: float = DEFAULT_LEVERAGE
    capital: float = 0.0
    summary: str = ""
    reasoning: TradeReasoning = Field(default_factory=TradeReasoning)
    criteria_matched: List[CriteriaMatch] = Field(default_factory=list)
    confidence_factors: List[ConfidenceFactor] = Field(default_factory=list)
    validation_results: List[ValidationVerdict] = Field(default_factory=list)
    glass_box: Optional[Any] = None
    status: TradeStatus = TradeStatus.PENDING
    selected: bool = False
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    structure_check: StructureCheck = Field(default_factory=StructureCheck)
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @property
    def is_long(self) -> bool:
        return self.direction == TradeType.LONG
