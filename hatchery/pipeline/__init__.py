"""
交易生成流水线

- TradePipeline: 顺序执行、超时、重试、取消、观察者事件
- ExecutionContext / StepDefinition: 运行状态与步骤声明
- create_trade_pipeline: 默认七步流水线
"""
from .context import ExecutionContext, StepDefinition, StepFailure, StepLogEntry
from .factory import create_trade_pipeline, pipeline_options_from_settings
from .names import StepName
from .orchestrator import PipelineOptions, TradePipeline, create_pipeline

__all__ = [
    "ExecutionContext",
    "StepDefinition",
    "StepFailure",
    "StepLogEntry",
    "create_trade_pipeline",
    "pipeline_options_from_settings",
    "StepName",
    "PipelineOptions",
    "TradePipeline",
    "create_pipeline",
]
