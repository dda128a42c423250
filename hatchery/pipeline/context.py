"""
执行上下文与步骤定义

ExecutionContext 是一次 execute() 的全部运行状态：
- 只由编排器和当前运行的步骤修改
- 步骤之间只通过 results 通信
- execute() 返回前被 seal()，之后任何写入都会抛出 ContextSealedError
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Literal, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, Field

from ..constants import DEFAULT_STEP_TIMEOUT_MS
from ..errors import ContextSealedError, MissingStepResultError, PipelineConfigError, StepError
from ..models import PipelineInput, get_current_timestamp_ms
from ..telemetry import PipelineTelemetry, scrub_secrets

T = TypeVar("T")

StepRunner = Callable[["ExecutionContext"], Awaitable[Any]]
ExecutionStatus = Literal["completed", "failed", "aborted", "running"]


@dataclass(frozen=True)
class StepDefinition:
    """
    流水线步骤（组装时声明，之后不可变）

    Attributes:
        name: 步骤名，在同一流水线中唯一
        run: 工作函数 context -> result，失败时抛出异常
        description: 说明
        optional: 失败时是否继续执行后续步骤
        timeout_ms: 单次尝试超时
        max_retries: 额外重试次数
    """
    name: str
    run: StepRunner
    description: str = ""
    optional: bool = False
    timeout_ms: int = DEFAULT_STEP_TIMEOUT_MS
    max_retries: int = 0

    def __post_init__(self):
        if not self.name:
            raise PipelineConfigError("Step name must not be empty")
        if not callable(self.run):
            raise PipelineConfigError(f"Step '{self.name}' run must be callable")
        if self.timeout_ms <= 0:
            raise PipelineConfigError(f"Step '{self.name}' timeout_ms must be positive")
        if self.max_retries < 0:
            raise PipelineConfigError(f"Step '{self.name}' max_retries must be >= 0")


class StepLogEntry(BaseModel):
    """步骤结果日志（追加写）"""
    step: str
    status: Literal["success", "error"]
    duration_ms: int
    attempts: int = 1
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    timestamp: int = Field(default_factory=get_current_timestamp_ms)


class StepFailure(BaseModel):
    """步骤最终失败记录，error 已脱敏"""
    step: str
    error: str
    error_type: str
    attempts: int
    optional: bool = False


class ExecutionContext:
    """
    单次执行的上下文

    使用示例（步骤内部）:
        prices = ctx.result(StepName.FETCH_PRICES, PriceFetchResult)
        analysis = ctx.maybe_result(StepName.BUILD_CONTEXT, TradingContext)
        ctx.record("info", "Market analysis complete", {"assets": 15})
    """

    def __init__(
        self,
        execution_id: str,
        pipeline_input: PipelineInput,
        telemetry: Optional[PipelineTelemetry] = None,
    ):
        self.execution_id = execution_id
        self.input = pipeline_input
        self.telemetry = telemetry
        self.start_time = get_current_timestamp_ms()
        self.end_time: Optional[int] = None
        self.current_step: Optional[str] = None
        self.completed_steps: List[str] = []
        self.failed_steps: List[str] = []
        self.failures: List[StepFailure] = []
        self.attempts: Dict[str, int] = {}
        self.error: Optional[BaseException] = None
        self.error_step: Optional[str] = None
        self.aborted = False
        self._results: Dict[str, Any] = {}
        self._logs: List[StepLogEntry] = []
        self._secrets = tuple(pipeline_input.config.secret_values())
        self._sealed = False

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_sealed", False):
            raise ContextSealedError(self.execution_id)
        super().__setattr__(name, value)

    # ==================== 结果 ====================

    @property
    def results(self) -> Mapping[str, Any]:
        """步骤名 -> 输出（只读，按执行顺序）"""
        return MappingProxyType(self._results)

    @property
    def logs(self) -> Tuple[StepLogEntry, ...]:
        return tuple(self._logs)

    def set_result(self, step: str, value: Any) -> None:
        self._check_writable()
        self._results[step] = value

    def append_log(self, entry: StepLogEntry) -> None:
        self._check_writable()
        self._logs.append(entry)

    def result(self, name: str, expected_type: Optional[Type[T]] = None) -> T:
        """
        获取前序步骤的输出

        Raises:
            MissingStepResultError: 结果不存在（步骤未运行或可选步骤失败）
            StepError: 类型不符
        """
        if name not in self._results:
            raise MissingStepResultError(self.current_step or "unknown", str(name))
        return self._typed(name, self._results[name], expected_type)

    def maybe_result(self, name: str, expected_type: Optional[Type[T]] = None) -> Optional[T]:
        """获取前序步骤的输出，不存在时返回 None"""
        if name not in self._results:
            return None
        return self._typed(name, self._results[name], expected_type)

    def _typed(self, name: str, value: Any, expected_type: Optional[type]) -> Any:
        if expected_type is not None and not isinstance(value, expected_type):
            raise StepError(
                f"Result of '{name}' is {type(value).__name__}, expected {expected_type.__name__}",
                step=self.current_step,
                retryable=False,
            )
        return value

    # ==================== 日志 / 脱敏 ====================

    def record(self, level: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        """以当前步骤名写入遥测（未启用遥测时忽略），消息中的已知密钥会被替换"""
        if self.telemetry is not None:
            message = scrub_secrets(message, self._secrets)
            self.telemetry.log(level, self.current_step or "pipeline", message, data)

    def add_secret(self, value: Optional[str]) -> None:
        """登记运行时解析到的密钥（如环境变量中的 API key），使其同样被脱敏"""
        if value and value not in self._secrets:
            self._secrets = self._secrets + (value,)

    def redact(self, error: BaseException) -> str:
        """错误消息中的已知密钥替换为脱敏标记"""
        message = str(error) or type(error).__name__
        return scrub_secrets(message, self._secrets)

    # ==================== 状态 ====================

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        """冻结上下文，之后不可修改"""
        if self._sealed:
            return
        self.completed_steps = tuple(self.completed_steps)
        self.failed_steps = tuple(self.failed_steps)
        self.failures = tuple(self.failures)
        self.attempts = MappingProxyType(dict(self.attempts))
        self._sealed = True

    def _check_writable(self) -> None:
        if self._sealed:
            raise ContextSealedError(self.execution_id)

    @property
    def status(self) -> ExecutionStatus:
        if self.aborted:
            return "aborted"
        if self.error is not None:
            return "failed"
        if self.end_time is None:
            return "running"
        return "completed"

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def summary(self) -> Dict[str, Any]:
        """可直接展示的摘要（错误消息已脱敏）"""
        return {
            "execution_id": self.execution_id,
            "status": self.status,
            "error_step": self.error_step,
            "error": self.redact(self.error) if self.error is not None else None,
            "completed_steps": list(self.completed_steps),
            "failed_steps": list(self.failed_steps),
            "attempts": dict(self.attempts),
            "duration_ms": self.duration_ms,
        }

    def __repr__(self) -> str:
        return f"ExecutionContext(id={self.execution_id!r}, status={self.status!r})"
