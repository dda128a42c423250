"""
流水线遥测

为单次执行记录分级事件、步骤耗时与元数据，提供：
- 结构化日志（同时写入 loguru）
- 步骤计时
- 摘要与完整时间线（审计用）

遥测调用绝不抛出异常，日志失败不能中断流水线。
"""
import secrets
from typing import Any, Dict, List, Literal, Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..models import get_current_timestamp_ms
from .sanitize import sanitize_data

LogLevel = Literal["info", "warn", "error", "debug"]
StepStatus = Literal["success", "error", "skipped"]

_LOGURU_LEVELS = {
    "info": "INFO",
    "warn": "WARNING",
    "error": "ERROR",
    "debug": "DEBUG",
}


class TelemetryEvent(BaseModel):
    """遥测事件"""
    timestamp: int
    elapsed: int
    level: LogLevel
    step: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)


class StepTiming(BaseModel):
    """步骤计时"""
    start: int
    end: Optional[int] = None
    duration: Optional[int] = None
    status: Optional[StepStatus] = None


class PipelineTelemetry:
    """
    单次执行的遥测记录器

    只属于一个执行上下文，不在并发执行之间共享。

    使用示例:
        telemetry = create_telemetry()
        telemetry.start_step("fetch_prices")
        telemetry.info("fetch_prices", "Fetched 15 prices", {"count": 15})
        telemetry.end_step("fetch_prices", "success")
        summary = telemetry.get_summary()
    """

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        self.events: List[TelemetryEvent] = []
        self.start_time = get_current_timestamp_ms()
        self.step_timings: Dict[str, StepTiming] = {}
        self.metadata: Dict[str, Any] = {}
        self._logger = logger.bind(execution_id=execution_id)

    # ==================== 事件记录 ====================

    def log(
        self,
        level: LogLevel,
        step: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Optional[TelemetryEvent]:
        """
        记录一条事件

        Args:
            level: 日志级别
            step: 步骤名
            message: 事件消息
            data: 附加数据（会被脱敏）

        Returns:
            记录的事件；内部失败时返回 None
        """
        try:
            now = get_current_timestamp_ms()
            event = TelemetryEvent(
                timestamp=now,
                elapsed=now - self.start_time,
                level=level,
                step=step,
                message=str(message),
                data=sanitize_data(data),
            )
            self.events.append(event)
            self._mirror(event)
            return event
        except Exception as e:
            try:
                self._logger.warning(f"Telemetry log failed for step {step}: {e}")
            except Exception:
                pass
            return None

    def info(self, step: str, message: str, data: Optional[Dict[str, Any]] = None) -> Optional[TelemetryEvent]:
        return self.log("info", step, message, data)

    def warn(self, step: str, message: str, data: Optional[Dict[str, Any]] = None) -> Optional[TelemetryEvent]:
        return self.log("warn", step, message, data)

    def error(self, step: str, message: str, data: Optional[Dict[str, Any]] = None) -> Optional[TelemetryEvent]:
        return self.log("error", step, message, data)

    def debug(self, step: str, message: str, data: Optional[Dict[str, Any]] = None) -> Optional[TelemetryEvent]:
        return self.log("debug", step, message, data)

    def _mirror(self, event: TelemetryEvent) -> None:
        bound = self._logger.bind(step=event.step)
        if event.data:
            bound.log(_LOGURU_LEVELS[event.level], f"[{event.step}] {event.message} {event.data}")
        else:
            bound.log(_LOGURU_LEVELS[event.level], f"[{event.step}] {event.message}")

    # ==================== 步骤计时 ====================

    def start_step(self, step: str) -> None:
        """开始计时"""
        try:
            self.step_timings[step] = StepTiming(start=get_current_timestamp_ms())
        except Exception:
            pass
        self.info(step, f"Starting step: {step}")

    def end_step(self, step: str, status: StepStatus = "success") -> None:
        """结束计时"""
        timing = self.step_timings.get(step)
        if timing is None:
            return
        try:
            timing.end = get_current_timestamp_ms()
            timing.duration = timing.end - timing.start
            timing.status = status
        except Exception:
            return
        self.info(step, f"Completed step: {step}", {
            "duration": timing.duration,
            "status": status,
        })

    def set_metadata(self, key: str, value: Any) -> None:
        try:
            self.metadata[key] = sanitize_data({key: value}).get(key)
        except Exception:
            pass

    # ==================== 查询 ====================

    def get_step_timing(self, step: str) -> Optional[StepTiming]:
        return self.step_timings.get(step)

    def get_all_timings(self) -> Dict[str, Dict[str, Any]]:
        return {step: t.model_dump() for step, t in self.step_timings.items()}

    def get_summary(self) -> Dict[str, Any]:
        """
        执行摘要（供 UI 展示）

        Returns:
            错误/警告计数、总耗时、已执行步骤等
        """
        errors = [e for e in self.events if e.level == "error"]
        warnings = [e for e in self.events if e.level == "warn"]

        return {
            "execution_id": self.execution_id,
            "start_time": self.start_time,
            "total_duration": get_current_timestamp_ms() - self.start_time,
            "steps_executed": list(self.step_timings.keys()),
            "step_timings": self.get_all_timings(),
            "error_count": len(errors),
            "warning_count": len(warnings),
            "errors": [{"step": e.step, "message": e.message} for e in errors],
            "warnings": [{"step": e.step, "message": e.message} for e in warnings],
            "metadata": dict(self.metadata),
        }

    def get_progress_updates(self) -> List[Dict[str, Any]]:
        return [
            {
                "step": e.step,
                "message": e.message,
                "elapsed": e.elapsed,
                "timestamp": e.timestamp,
            }
            for e in self.events
            if e.level == "info"
        ]

    def get_timeline(self) -> List[TelemetryEvent]:
        return list(self.events)

    def get_step_events(self, step: str) -> List[TelemetryEvent]:
        return [e for e in self.events if e.step == step]

    def has_errors(self) -> bool:
        return any(e.level == "error" for e in self.events)

    def export(self) -> Dict[str, Any]:
        """导出完整时间线（持久化/审计用，JSON 安全）"""
        return {
            "execution_id": self.execution_id,
            "start_time": self.start_time,
            "end_time": get_current_timestamp_ms(),
            "events": [e.model_dump() for e in self.events],
            "step_timings": self.get_all_timings(),
            "metadata": dict(self.metadata),
            "summary": self.get_summary(),
        }


def create_telemetry(execution_id: Optional[str] = None) -> PipelineTelemetry:
    """
    创建遥测实例

    Args:
        execution_id: 可选的执行 ID

    Returns:
        新的遥测实例
    """
    exec_id = execution_id or f"exec-{get_current_timestamp_ms()}-{secrets.token_hex(3)}"
    return PipelineTelemetry(exec_id)
