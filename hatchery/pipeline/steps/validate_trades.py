"""Step 6: run the composable validator chain over parsed trades.

Never raises on a failing trade: blocked trades are returned in
``invalid_trades`` with the verdicts that blocked them.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from ...errors import TradeValidationError
from ...models import Trade, ValidationReport, ValidationVerdict, get_current_timestamp_ms
from ...validators import TradeValidator, ValidationContext, ValidationThresholds, create_standard_validator
from ..context import ExecutionContext, StepDefinition
from ..names import StepName
from .build_context import TradingContext
from .parse_response import ParsedTrades


class InvalidTrade(BaseModel):
    trade: Trade
    failed_validations: List[ValidationVerdict] = Field(default_factory=list)
    reason: str = ""


class ValidationMetadata(BaseModel):
    total_trades: int = 0
    valid_count: int = 0
    invalid_count: int = 0
    validator_count: int = 0
    timestamp: int = Field(default_factory=get_current_timestamp_ms)


class ValidationOutcome(BaseModel):
    valid_trades: List[Trade] = Field(default_factory=list)
    invalid_trades: List[InvalidTrade] = Field(default_factory=list)
    validation_results: List[ValidationReport] = Field(default_factory=list)
    metadata: ValidationMetadata = Field(default_factory=ValidationMetadata)


def build_validation_context(
    ctx: ExecutionContext,
    trading: Optional[TradingContext] = None,
    defaults: Optional[BaseModel] = None,
) -> ValidationContext:
    config = ctx.input.config
    return ValidationContext(
        config=ValidationThresholds.from_trade_config(config, defaults),
        prices=trading.prices if trading else {},
        execution_time=config.execution_time.value,
    )


def create_validate_trades_step(
    validator: Optional[TradeValidator] = None,
    defaults: Optional[BaseModel] = None,
    timeout_ms: int = 5000,
    max_retries: int = 0,
    optional: bool = False,
) -> StepDefinition:
    """
    Args:
        validator: validator chain, standard chain when None
        defaults: fallback thresholds (``ValidationSettings``) for fields the
            caller's config leaves unset
    """
    validator = validator or create_standard_validator()

    async def validate_trades(ctx: ExecutionContext) -> ValidationOutcome:
        parsed = ctx.result(StepName.PARSE_RESPONSE.value, ParsedTrades)
        trading = ctx.maybe_result(StepName.BUILD_CONTEXT.value, TradingContext)
        vctx = build_validation_context(ctx, trading, defaults)

        ctx.record("debug", f"Validating {len(parsed.trades)} trades", {
            "validators": validator.validator_names,
        })

        outcome = ValidationOutcome()
        for trade in parsed.trades:
            report = validator.validate(trade, vctx)
            outcome.validation_results.append(report)

            if report.usable:
                outcome.valid_trades.append(trade.model_copy(update={"validation_results": report.verdicts}))
                if report.warning_count:
                    ctx.record("warn", f"Trade {trade.asset} passed with warnings", {
                        "warnings": [v.name for v in report.failed],
                    })
                continue

            blocking = [v for v in report.failed if v.blocking]
            reason = TradeValidationError(trade.id, blocking).message
            outcome.invalid_trades.append(InvalidTrade(
                trade=trade.model_copy(update={"validation_results": report.verdicts}),
                failed_validations=report.failed,
                reason=reason,
            ))
            ctx.record("warn", f"Trade {trade.asset} failed validation", {
                "failures": [v.name for v in blocking],
            })

        outcome.metadata = ValidationMetadata(
            total_trades=len(parsed.trades),
            valid_count=len(outcome.valid_trades),
            invalid_count=len(outcome.invalid_trades),
            validator_count=validator.validator_count,
        )
        ctx.record("info", "Validation complete", {
            "total": outcome.metadata.total_trades,
            "valid": outcome.metadata.valid_count,
            "invalid": outcome.metadata.invalid_count,
        })
        if parsed.trades and not outcome.valid_trades:
            ctx.record("error", "All trades failed validation")

        return outcome

    return StepDefinition(
        name=StepName.VALIDATE_TRADES.value,
        run=validate_trades,
        description="Validates trades using composable validators",
        optional=optional,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
    )
