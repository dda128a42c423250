"""Trade validator chain tests."""

import pytest

from conftest import make_trade, sample_prices
from hatchery.models import Severity, StructureCheck, TradeConfig, TradeType
from hatchery.validators import (
    BaseRule,
    ConfidenceRule,
    LeverageRule,
    PriceDeviationRule,
    PriceLevelRule,
    RiskRewardRule,
    StructureRule,
    TradeValidator,
    ValidationContext,
    ValidationThresholds,
    VolumeRule,
    create_standard_validator,
    risk_reward_ratio,
)


class ExplodingRule(BaseRule):
    RULE_NAME = "Exploding"

    def check(self, trade, ctx):
        raise ZeroDivisionError("bad math")


class TestRiskReward:

    def test_ratio_long_and_short(self):
        assert risk_reward_ratio(make_trade()) == pytest.approx(2.0)
        short = make_trade(direction=TradeType.SHORT, take_profit=85.0, stop_loss=105.0)
        assert risk_reward_ratio(short) == pytest.approx(3.0)

    def test_zero_risk_distance(self):
        assert risk_reward_ratio(make_trade(stop_loss=100.0)) == 0.0

    def test_rule_threshold(self):
        ctx = ValidationContext(config=ValidationThresholds(min_risk_reward=2.5))
        verdict = RiskRewardRule().check(make_trade(), ctx)
        assert not verdict.passed
        assert verdict.blocking
        assert verdict.value == 2.0


class TestRules:

    def test_price_levels_wrong_side(self):
        ctx = ValidationContext()
        assert PriceLevelRule().check(make_trade(), ctx).passed
        bad_short = make_trade(direction=TradeType.SHORT)
        verdict = PriceLevelRule().check(bad_short, ctx)
        assert not verdict.passed
        assert verdict.message.startswith("SHORT invalid")

    @pytest.mark.parametrize("confidence,passed", [(74, False), (75, True), (95, True), (96, False)])
    def test_confidence_range(self, confidence, passed):
        verdict = ConfidenceRule().check(make_trade(confidence=confidence), ValidationContext())
        assert verdict.passed is passed

    def test_leverage_is_warning_per_timeframe(self):
        trade = make_trade(leverage=10.0)
        assert LeverageRule().check(trade, ValidationContext(execution_time="intraday")).passed
        verdict = LeverageRule().check(trade, ValidationContext(execution_time="swing"))
        assert not verdict.passed
        assert verdict.severity == Severity.WARNING
        assert not verdict.blocking

    def test_price_deviation(self):
        far = make_trade(entry=90.0, take_profit=100.0, stop_loss=85.0, current_price=100.0)
        verdict = PriceDeviationRule().check(far, ValidationContext())
        assert not verdict.passed
        assert verdict.value == 10.0

    def test_price_deviation_without_market_price(self):
        trade = make_trade(asset="XYZ/USDT", current_price=0.0)
        verdict = PriceDeviationRule().check(trade, ValidationContext())
        assert verdict.passed
        assert "not available" in verdict.message

    def test_volume(self):
        ctx = ValidationContext(prices=sample_prices())
        assert VolumeRule().check(make_trade(asset="BTC/USDT"), ctx).passed
        ctx = ValidationContext(prices=sample_prices(), config=ValidationThresholds(min_volume=5e9))
        assert not VolumeRule().check(make_trade(asset="BTC/USDT"), ctx).passed

    def test_structure(self):
        broken = make_trade(structure_check=StructureCheck(valid=False, errors=["Missing field: stop_loss"]))
        verdict = StructureRule().check(broken, ValidationContext())
        assert not verdict.passed
        assert "stop_loss" in verdict.message


class TestTradeValidator:

    def test_standard_chain(self):
        validator = create_standard_validator()
        assert validator.validator_names == [
            "Trade Structure",
            "Risk/Reward Ratio",
            "Price Levels",
            "Confidence Score",
            "Leverage",
            "Entry Price Deviation",
        ]
        assert create_standard_validator(include_volume=True).validator_count == 7

    def test_warnings_do_not_make_trade_unusable(self):
        report = create_standard_validator().validate(
            make_trade(leverage=30.0), ValidationContext(execution_time="intraday")
        )
        assert report.usable
        assert report.warning_count == 1
        assert report.error_count == 0

    def test_error_makes_trade_unusable(self):
        report = create_standard_validator().validate(make_trade(confidence=50))
        assert not report.usable
        assert [v.name for v in report.failed] == ["Confidence Score"]

    def test_raising_rule_becomes_failed_verdict(self):
        report = TradeValidator([ExplodingRule(), ConfidenceRule()]).validate(make_trade())
        assert len(report.verdicts) == 2
        assert report.verdicts[0].blocking
        assert "bad math" in report.verdicts[0].message
        assert report.verdicts[1].passed

    def test_add_rejects_non_rules(self):
        with pytest.raises(TypeError):
            TradeValidator().add(object())

    def test_remove(self):
        validator = create_standard_validator().remove("Leverage")
        assert "Leverage" not in validator.validator_names


class TestThresholds:

    def test_explicit_config_wins_over_defaults(self):
        config = TradeConfig(min_risk_reward=3.0)
        defaults = ValidationThresholds(min_risk_reward=1.5, min_confidence=60)

        thresholds = ValidationThresholds.from_trade_config(config, defaults)

        assert thresholds.min_risk_reward == 3.0
        assert thresholds.min_confidence == 60

    def test_without_defaults_uses_config(self):
        thresholds = ValidationThresholds.from_trade_config(TradeConfig())
        assert thresholds.min_risk_reward == 2.0
        assert thresholds.min_confidence == 75
