"""
错误类型定义

流水线、AI 提供商与校验器共享的异常层级。每个异常都带有 ``retryable``
标志，编排器据此决定是否进入重试循环。
"""
from typing import Any, List, Optional


class HatcheryError(Exception):
    """所有流水线异常的基类"""

    retryable: bool = True

    def __init__(self, message: str = "", *, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable


# ============================================================================
# Step errors
# ============================================================================


class StepError(HatcheryError):
    """步骤内部的一般性失败"""

    def __init__(self, message: str = "", *, step: Optional[str] = None, retryable: Optional[bool] = None):
        super().__init__(message, retryable=retryable)
        self.step = step


class StepTimeoutError(StepError):
    """步骤超过了分配的时间"""

    def __init__(self, step: str, timeout_ms: int):
        super().__init__(f"Step '{step}' timed out after {timeout_ms}ms", step=step)
        self.timeout_ms = timeout_ms


class MissingStepResultError(StepError):
    """后续步骤依赖的结果不存在（可选步骤失败留下的空缺）"""

    retryable = False

    def __init__(self, step: str, required: str):
        super().__init__(
            f"Step '{step}' requires result of '{required}', which is not available",
            step=step,
        )
        self.required = required


class ResponseParseError(StepError):
    """AI 返回的文本中无法提取交易数据"""

    retryable = False


# ============================================================================
# Provider errors
# ============================================================================


class ProviderError(HatcheryError):
    """AI 提供商返回非成功状态码或传输失败"""

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status: Optional[int] = None,
        retryable: Optional[bool] = None,
    ):
        if retryable is None:
            # 4xx（除 429 外）重试无意义
            retryable = not (status is not None and 400 <= status < 500 and status != 429)
        prefix = f"{provider} API error" + (f" ({status})" if status is not None else "")
        super().__init__(f"{prefix}: {message}", retryable=retryable)
        self.provider = provider
        self.status = status
        self.provider_message = message


class ProviderParseError(ProviderError):
    """提供商响应缺少预期字段或不是合法 JSON"""

    def __init__(self, provider: str, message: str, *, status: Optional[int] = None):
        super().__init__(provider, message, status=status, retryable=False)


class InvalidApiKeyError(ProviderError):
    """API 密钥格式不正确，不发起网络请求"""

    def __init__(self, provider: str, hint: str = ""):
        message = f"Invalid {provider} API key format"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(provider, message, retryable=False)


class MissingApiKeyError(ProviderError):
    """没有为提供商配置 API 密钥"""

    def __init__(self, provider: str):
        super().__init__(provider, f"No API key found for provider: {provider}", retryable=False)


class UnknownProviderError(HatcheryError):
    """注册表中不存在该提供商"""

    retryable = False

    def __init__(self, name: str, available: List[str]):
        super().__init__(
            f"Unknown AI provider: {name}. Available: {', '.join(available)}"
        )
        self.name = name
        self.available = available


# ============================================================================
# Validation / pipeline errors
# ============================================================================


class TradeValidationError(HatcheryError):
    """交易未通过必需校验（不终止流水线，仅用于描述 invalid trades）"""

    retryable = False

    def __init__(self, trade_id: str, failed: List[Any]):
        names = ", ".join(getattr(v, "name", str(v)) for v in failed)
        super().__init__(f"Trade {trade_id} failed validation: {names}")
        self.trade_id = trade_id
        self.failed = failed


class PipelineAbortedError(HatcheryError):
    """调用方请求取消"""

    retryable = False

    def __init__(self, message: str = "Pipeline execution was cancelled"):
        super().__init__(message)


class PipelineConfigError(HatcheryError):
    """流水线组装错误"""

    retryable = False


class DuplicateStepError(PipelineConfigError):
    def __init__(self, name: str):
        super().__init__(f"Step '{name}' is already registered")
        self.name = name


class ContextSealedError(PipelineConfigError):
    def __init__(self, execution_id: str):
        super().__init__(f"Execution context {execution_id} is sealed")
