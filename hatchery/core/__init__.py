"""
核心模块

- event: 流水线事件系统
"""
from .event import EventEmitter, PipelineEventType

__all__ = ["EventEmitter", "PipelineEventType"]
