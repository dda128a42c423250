"""Standard trade validation rules."""

from ..constants import LEVERAGE_LIMITS, MAX_CONFIDENCE
from ..models import Severity, Trade, ValidationVerdict
from .base import BaseRule, TradeValidator, ValidationContext


def risk_reward_ratio(trade: Trade) -> float:
    """Reward / risk measured from entry, 0 when there is no risk distance."""
    if trade.is_long:
        reward = abs(trade.take_profit - trade.entry)
        risk = abs(trade.entry - trade.stop_loss)
    else:
        reward = abs(trade.entry - trade.take_profit)
        risk = abs(trade.stop_loss - trade.entry)
    return reward / risk if risk > 0 else 0.0


class RiskRewardRule(BaseRule):
    RULE_NAME = "Risk/Reward Ratio"
    severity = Severity.ERROR

    def check(self, trade: Trade, ctx: ValidationContext) -> ValidationVerdict:
        min_ratio = ctx.config.min_risk_reward
        ratio = risk_reward_ratio(trade)
        passed = ratio >= min_ratio
        state = "meets minimum" if passed else "below minimum"
        return self.verdict(
            passed,
            f"R:R {ratio:.2f}:1 {state} {min_ratio:g}:1",
            value=round(ratio, 2),
            threshold=min_ratio,
        )


class PriceLevelRule(BaseRule):
    """TP and SL must sit on the correct side of entry for the direction."""

    RULE_NAME = "Price Levels"
    severity = Severity.ERROR

    def check(self, trade: Trade, ctx: ValidationContext) -> ValidationVerdict:
        entry, tp, sl = trade.entry, trade.take_profit, trade.stop_loss

        if trade.is_long:
            passed = tp > entry and sl < entry
            message = (
                "LONG: TP above entry, SL below entry" if passed
                else f"LONG invalid: TP ({tp}) should be > entry ({entry}), SL ({sl}) should be < entry"
            )
        else:
            passed = tp < entry and sl > entry
            message = (
                "SHORT: TP below entry, SL above entry" if passed
                else f"SHORT invalid: TP ({tp}) should be < entry ({entry}), SL ({sl}) should be > entry"
            )

        return self.verdict(
            passed,
            message,
            value={"entry": entry, "take_profit": tp, "stop_loss": sl, "direction": trade.direction.value},
            threshold="Coherent with direction",
        )


class ConfidenceRule(BaseRule):
    RULE_NAME = "Confidence Score"
    severity = Severity.ERROR

    def check(self, trade: Trade, ctx: ValidationContext) -> ValidationVerdict:
        low, high = ctx.config.min_confidence, MAX_CONFIDENCE
        passed = low <= trade.confidence <= high
        state = "within acceptable range" if passed else "outside range"
        return self.verdict(
            passed,
            f"Confidence {trade.confidence:g} {state} ({low:g}-{high})",
            value=trade.confidence,
            threshold={"min": low, "max": high},
        )


class LeverageRule(BaseRule):
    RULE_NAME = "Leverage"
    severity = Severity.WARNING

    def check(self, trade: Trade, ctx: ValidationContext) -> ValidationVerdict:
        timeframe = ctx.execution_time if ctx.execution_time in LEVERAGE_LIMITS else "intraday"
        limit = LEVERAGE_LIMITS[timeframe]
        passed = trade.leverage <= limit["max"]
        message = (
            f"Leverage {trade.leverage:g}x within {timeframe} limit (max {limit['max']}x)" if passed
            else f"Leverage {trade.leverage:g}x exceeds {timeframe} recommended max {limit['max']}x"
        )
        return self.verdict(passed, message, value=trade.leverage, threshold=dict(limit))


class PriceDeviationRule(BaseRule):
    """Entry must be close to the live market price."""

    RULE_NAME = "Entry Price Deviation"
    severity = Severity.WARNING

    def check(self, trade: Trade, ctx: ValidationContext) -> ValidationVerdict:
        max_deviation = ctx.config.max_entry_deviation
        market_price = trade.current_price
        if not market_price and trade.asset in ctx.prices:
            market_price = ctx.prices[trade.asset].price

        if not market_price:
            return self.verdict(
                True,
                "Cannot validate: current price not available",
                threshold=max_deviation,
            )

        deviation = abs(trade.entry - market_price) / market_price
        pct = deviation * 100
        passed = deviation <= max_deviation
        message = (
            f"Entry {pct:.2f}% from current (max {max_deviation * 100:g}%)" if passed
            else f"Entry {pct:.2f}% from current exceeds max {max_deviation * 100:g}%"
        )
        return self.verdict(passed, message, value=round(pct, 2), threshold=max_deviation * 100)


class VolumeRule(BaseRule):
    RULE_NAME = "Trading Volume"
    severity = Severity.WARNING

    def check(self, trade: Trade, ctx: ValidationContext) -> ValidationVerdict:
        min_volume = ctx.config.min_volume
        price_data = ctx.prices.get(trade.asset)
        volume = price_data.quote_volume_24h if price_data else None

        if not volume:
            return self.verdict(True, "Cannot validate: volume data not available", threshold=min_volume)

        passed = volume >= min_volume
        message = (
            f"24h volume ${volume / 1e6:.2f}M meets minimum" if passed
            else f"24h volume ${volume / 1e6:.2f}M below ${min_volume / 1e6:.0f}M minimum"
        )
        return self.verdict(passed, message, value=volume, threshold=min_volume)


class StructureRule(BaseRule):
    """The raw AI entry must have had every required field."""

    RULE_NAME = "Trade Structure"
    severity = Severity.ERROR

    def check(self, trade: Trade, ctx: ValidationContext) -> ValidationVerdict:
        errors = trade.structure_check.errors
        if not errors:
            return self.verdict(True, "All required fields present")
        return self.verdict(False, "; ".join(errors), value=len(errors), threshold=0)


def create_standard_validator(
    include_leverage: bool = True,
    include_price_deviation: bool = True,
    include_volume: bool = False,
) -> TradeValidator:
    """Create a validator with the standard checks.

    Structure, risk/reward, price levels and confidence are always included.
    """
    validator = (
        TradeValidator()
        .add(StructureRule())
        .add(RiskRewardRule())
        .add(PriceLevelRule())
        .add(ConfidenceRule())
    )

    if include_leverage:
        validator.add(LeverageRule())
    if include_price_deviation:
        validator.add(PriceDeviationRule())
    if include_volume:
        validator.add(VolumeRule())

    return validator
