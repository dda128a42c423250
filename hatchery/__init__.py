"""
hatchery - AI 交易提案生成

把自然语言策略和实时行情交给可插拔的 AI 后端，生成经过校验、
附带 Glass Box 解释数据的交易提案。
"""
from .core.event import PipelineEventType
from .models import PipelineInput, StrategyPrompt, Trade, TradeConfig
from .pipeline import ExecutionContext, PipelineOptions, StepDefinition, StepName, TradePipeline, create_trade_pipeline

__version__ = "0.1.0"

__all__ = [
    "PipelineEventType",
    "PipelineInput",
    "StrategyPrompt",
    "Trade",
    "TradeConfig",
    "ExecutionContext",
    "PipelineOptions",
    "StepDefinition",
    "StepName",
    "TradePipeline",
    "create_trade_pipeline",
]
