"""Composable trade validators."""

from .base import BaseRule, TradeValidator, ValidationContext, ValidationThresholds
from .rules import (
    ConfidenceRule,
    LeverageRule,
    PriceDeviationRule,
    PriceLevelRule,
    RiskRewardRule,
    StructureRule,
    VolumeRule,
    create_standard_validator,
    risk_reward_ratio,
)

__all__ = [
    "BaseRule",
    "TradeValidator",
    "ValidationContext",
    "ValidationThresholds",
    "ConfidenceRule",
    "LeverageRule",
    "PriceDeviationRule",
    "PriceLevelRule",
    "RiskRewardRule",
    "StructureRule",
    "VolumeRule",
    "create_standard_validator",
    "risk_reward_ratio",
]
