"""
流水线工厂

按配置组装默认的七步交易生成流水线：
- 步骤超时/重试/可选 由 config.yaml 的 pipeline.steps 覆盖
- 价格源默认 ccxt（market.exchange_id）
- 提供商注册表默认包含四个内置提供商
- 校验阈值缺省值来自 validation 段
"""
import dataclasses
from typing import Optional

from loguru import logger

from ..config import Settings, get_settings
from ..market import BasePriceSource, CcxtPriceSource
from ..providers import ProviderRegistry, create_default_registry
from ..validators import TradeValidator, create_standard_validator
from .context import StepDefinition
from .orchestrator import PipelineOptions, TradePipeline
from .steps import (
    create_build_context_step,
    create_call_ai_step,
    create_enrich_glass_box_step,
    create_fetch_prices_step,
    create_generate_prompt_step,
    create_parse_response_step,
    create_validate_trades_step,
)


def apply_step_override(step: StepDefinition, settings: Settings) -> StepDefinition:
    """用配置中的覆盖值替换步骤的超时/重试/可选设置"""
    override = settings.get_step_override(step.name)
    changes = {k: v for k, v in override.model_dump().items() if v is not None}
    if not changes:
        return step
    logger.debug(f"Step {step.name} overrides: {changes}")
    return dataclasses.replace(step, **changes)


def pipeline_options_from_settings(settings: Settings) -> PipelineOptions:
    cfg = settings.pipeline
    return PipelineOptions(
        stop_on_error=cfg.stop_on_error,
        enable_telemetry=cfg.enable_telemetry,
        backoff_base_ms=cfg.backoff_base_ms,
        max_backoff_ms=cfg.max_backoff_ms,
    )


def create_trade_pipeline(
    registry: Optional[ProviderRegistry] = None,
    price_source: Optional[BasePriceSource] = None,
    settings: Optional[Settings] = None,
    options: Optional[PipelineOptions] = None,
    validator: Optional[TradeValidator] = None,
) -> TradePipeline:
    """
    创建默认交易生成流水线

    Args:
        registry: 提供商注册表（None 时按配置创建内置提供商）
        price_source: 价格源（None 时使用 ccxt）
        settings: 配置（None 时使用全局配置）
        options: 流水线选项（None 时取自配置）
        validator: 校验器链（None 时按配置创建标准链）

    Returns:
        TradePipeline
    """
    settings = settings or get_settings()
    registry = registry or create_default_registry(settings=settings)
    price_source = price_source or CcxtPriceSource(settings.market.exchange_id)
    options = options or pipeline_options_from_settings(settings)

    vcfg = settings.validation
    validator = validator or create_standard_validator(
        include_leverage=vcfg.include_leverage,
        include_price_deviation=vcfg.include_price_deviation,
        include_volume=vcfg.include_volume,
    )

    steps = [
        create_fetch_prices_step(price_source, default_assets=settings.config.assets or None),
        create_build_context_step(),
        create_generate_prompt_step(),
        create_call_ai_step(registry, key_resolver=settings.get_llm_api_key),
        create_parse_response_step(),
        create_validate_trades_step(validator, defaults=vcfg),
        create_enrich_glass_box_step(),
    ]

    pipeline = TradePipeline(options)
    for step in steps:
        pipeline.add_step(apply_step_override(step, settings))

    logger.info(
        f"Trade pipeline ready: {len(pipeline.steps)} steps, "
        f"providers={registry.available()}, prices={price_source.name}"
    )
    return pipeline
