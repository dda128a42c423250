"""
事件类型定义

流水线向观察者发出的事件是一个封闭集合，每种事件都有固定的载荷模型。
载荷只包含脱敏后的摘要，不包含原始上下文或密钥。
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from datetime import datetime
from pydantic import BaseModel, Field
import uuid


class PipelineEventType(str, Enum):
    """流水线事件类型"""
    # 步骤生命周期
    STEP_START = "step:start"
    STEP_COMPLETE = "step:complete"
    STEP_ERROR = "step:error"
    STEP_RETRY = "step:retry"

    # 流水线生命周期
    PIPELINE_START = "pipeline:start"
    PIPELINE_COMPLETE = "pipeline:complete"
    PIPELINE_ERROR = "pipeline:error"


class BaseEvent(BaseModel):
    """事件基类"""
    event_id: str = Field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = Field(default_factory=datetime.now)
    execution_id: str

    model_config = {"frozen": True}


class PipelineStartEvent(BaseEvent):
    """流水线开始"""
    event_type: PipelineEventType = PipelineEventType.PIPELINE_START
    steps_count: int
    step_names: List[str] = Field(default_factory=list)
    input: Dict[str, Any] = Field(default_factory=dict)  # 已脱敏的输入摘要

    def __str__(self) -> str:
        return f"[{self.event_type.value}] {self.execution_id} steps={self.steps_count}"


class StepStartEvent(BaseEvent):
    """步骤开始"""
    event_type: PipelineEventType = PipelineEventType.STEP_START
    step: str
    index: int
    description: str = ""
    optional: bool = False

    def __str__(self) -> str:
        return f"[{self.event_type.value}] #{self.index} {self.step}"


class StepCompleteEvent(BaseEvent):
    """步骤成功"""
    event_type: PipelineEventType = PipelineEventType.STEP_COMPLETE
    step: str
    duration_ms: int
    attempts: int = 1
    output: Optional[Dict[str, Any]] = None  # 输出的形状摘要

    def __str__(self) -> str:
        return f"[{self.event_type.value}] {self.step} in {self.duration_ms}ms"


class StepRetryEvent(BaseEvent):
    """步骤失败后即将重试"""
    event_type: PipelineEventType = PipelineEventType.STEP_RETRY
    step: str
    attempt: int
    max_attempts: int
    delay_ms: int
    error: str

    def __str__(self) -> str:
        return (
            f"[{self.event_type.value}] {self.step} "
            f"attempt={self.attempt}/{self.max_attempts} delay={self.delay_ms}ms error={self.error}"
        )


class StepErrorEvent(BaseEvent):
    """步骤最终失败（含可选步骤）"""
    event_type: PipelineEventType = PipelineEventType.STEP_ERROR
    step: str
    error: str
    error_type: str
    duration_ms: int
    attempts: int
    optional: bool = False

    def __str__(self) -> str:
        return f"[{self.event_type.value}] {self.step} error={self.error}"


class PipelineCompleteEvent(BaseEvent):
    """流水线完成"""
    event_type: PipelineEventType = PipelineEventType.PIPELINE_COMPLETE
    duration_ms: int
    completed_steps: List[str] = Field(default_factory=list)
    failed_steps: List[str] = Field(default_factory=list)
    results: Dict[str, Any] = Field(default_factory=dict)  # 各步骤输出的形状摘要

    def __str__(self) -> str:
        return f"[{self.event_type.value}] {self.execution_id} in {self.duration_ms}ms"


class PipelineErrorEvent(BaseEvent):
    """流水线终止（失败或取消）"""
    event_type: PipelineEventType = PipelineEventType.PIPELINE_ERROR
    step: Optional[str] = None
    error: str
    error_type: str
    aborted: bool = False
    duration_ms: int
    completed_steps: List[str] = Field(default_factory=list)
    failed_steps: List[str] = Field(default_factory=list)

    def __str__(self) -> str:
        return f"[{self.event_type.value}] step={self.step} error={self.error}"


# 联合类型，方便类型检查
AnyPipelineEvent = Union[
    PipelineStartEvent,
    StepStartEvent,
    StepCompleteEvent,
    StepRetryEvent,
    StepErrorEvent,
    PipelineCompleteEvent,
    PipelineErrorEvent,
]

EVENT_MODELS = {
    PipelineEventType.PIPELINE_START: PipelineStartEvent,
    PipelineEventType.STEP_START: StepStartEvent,
    PipelineEventType.STEP_COMPLETE: StepCompleteEvent,
    PipelineEventType.STEP_RETRY: StepRetryEvent,
    PipelineEventType.STEP_ERROR: StepErrorEvent,
    PipelineEventType.PIPELINE_COMPLETE: PipelineCompleteEvent,
    PipelineEventType.PIPELINE_ERROR: PipelineErrorEvent,
}
