"""
事件系统

提供：
- 封闭的流水线事件类型及其载荷模型
- 事件发射器（发布/订阅模式）
"""
from .types import (
    AnyPipelineEvent,
    BaseEvent,
    EVENT_MODELS,
    PipelineCompleteEvent,
    PipelineErrorEvent,
    PipelineEventType,
    PipelineStartEvent,
    StepCompleteEvent,
    StepErrorEvent,
    StepRetryEvent,
    StepStartEvent,
)
from .emitter import EventEmitter, Listener

__all__ = [
    "AnyPipelineEvent",
    "BaseEvent",
    "EVENT_MODELS",
    "PipelineCompleteEvent",
    "PipelineErrorEvent",
    "PipelineEventType",
    "PipelineStartEvent",
    "StepCompleteEvent",
    "StepErrorEvent",
    "StepRetryEvent",
    "StepStartEvent",
    "EventEmitter",
    "Listener",
]
