"""Validator base classes and the aggregating TradeValidator."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..constants import (
    DEFAULT_EXECUTION_TIME,
    DEFAULT_MAX_ENTRY_DEVIATION,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_MIN_RISK_REWARD,
    DEFAULT_MIN_VOLUME,
)
from ..models import PriceData, Severity, Trade, TradeConfig, ValidationReport, ValidationVerdict


class ValidationThresholds(BaseModel):
    """Numeric thresholds shared by the standard rules."""

    min_risk_reward: float = DEFAULT_MIN_RISK_REWARD
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    max_entry_deviation: float = DEFAULT_MAX_ENTRY_DEVIATION
    min_volume: float = DEFAULT_MIN_VOLUME

    @classmethod
    def from_trade_config(cls, config: TradeConfig, defaults: Optional[BaseModel] = None) -> "ValidationThresholds":
        """Thresholds from the caller's config.

        Fields the caller did not set explicitly fall back to ``defaults``
        (the YAML validation section) when given.
        """
        values = {
            "min_risk_reward": config.min_risk_reward,
            "min_confidence": config.min_confidence,
            "max_entry_deviation": config.max_entry_deviation,
            "min_volume": config.min_volume,
        }
        if defaults is not None:
            for field in values:
                if field not in config.model_fields_set and hasattr(defaults, field):
                    values[field] = getattr(defaults, field)
        return cls(**values)


class ValidationContext(BaseModel):
    """Everything a rule may look at besides the trade itself."""

    config: ValidationThresholds = Field(default_factory=ValidationThresholds)
    prices: Dict[str, PriceData] = Field(default_factory=dict)
    execution_time: str = DEFAULT_EXECUTION_TIME


class BaseRule(ABC):
    """Abstract base class for trade validation rules.

    A rule inspects one trade and returns a verdict. Rules are independent of
    each other and must not mutate the trade.
    """

    RULE_NAME: str = "unnamed"
    severity: Severity = Severity.ERROR

    @property
    def name(self) -> str:
        return self.RULE_NAME

    @abstractmethod
    def check(self, trade: Trade, ctx: ValidationContext) -> ValidationVerdict:
        """Evaluate the rule.

        Args:
            trade: Trade to inspect
            ctx: Thresholds and market data

        Returns:
            ValidationVerdict for this (trade, rule) pair
        """
        raise NotImplementedError

    def verdict(self, passed: bool, message: str, value=None, threshold=None) -> ValidationVerdict:
        return ValidationVerdict(
            name=self.RULE_NAME,
            passed=passed,
            severity=self.severity,
            message=message,
            value=value,
            threshold=threshold,
        )


class TradeValidator:
    """Composable validator chain.

    Example:
        validator = TradeValidator().add(RiskRewardRule()).add(PriceLevelRule())
        report = validator.validate(trade, ctx)
        if report.usable:
            ...
    """

    def __init__(self, rules: Optional[List[BaseRule]] = None):
        self._rules: List[BaseRule] = []
        for rule in rules or []:
            self.add(rule)

    def add(self, rule: BaseRule) -> "TradeValidator":
        if not isinstance(rule, BaseRule):
            raise TypeError("Validator must extend BaseRule")
        self._rules.append(rule)
        return self

    def remove(self, name: str) -> "TradeValidator":
        self._rules = [r for r in self._rules if r.name != name]
        return self

    def validate(self, trade: Trade, ctx: Optional[ValidationContext] = None) -> ValidationReport:
        """Run every rule over the trade.

        A rule that raises is recorded as a failed error-severity verdict.
        """
        ctx = ctx or ValidationContext()
        verdicts: List[ValidationVerdict] = []

        for rule in self._rules:
            try:
                verdicts.append(rule.check(trade, ctx))
            except Exception as e:
                logger.warning(f"Validator {rule.name} raised on trade {trade.id}: {e}")
                verdicts.append(ValidationVerdict(
                    name=rule.name,
                    passed=False,
                    severity=Severity.ERROR,
                    message=f"Validator error: {e}",
                ))

        return ValidationReport(trade_id=trade.id, verdicts=verdicts)

    @property
    def validator_count(self) -> int:
        return len(self._rules)

    @property
    def validator_names(self) -> List[str]:
        return [r.name for r in self._rules]
