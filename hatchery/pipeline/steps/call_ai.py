"""
Step 4: 调用 AI 提供商

- 从注册表取适配器（未知名称不可重试）
- 密钥解析顺序：config.api_key → config.api_keys[provider] → 环境变量
- 提供商错误转换为用户可读的消息，保留状态码与 retryable
"""
import time
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field

from ...errors import MissingApiKeyError, ProviderError
from ...models import TokenUsage, get_current_timestamp_ms
from ...providers import ProviderRegistry
from ..context import ExecutionContext, StepDefinition
from ..names import StepName
from .generate_prompt import GeneratedPrompt

KeyResolver = Callable[[str], Optional[str]]


class PromptsUsed(BaseModel):
    system: str
    user: str


class AICallMetadata(BaseModel):
    provider: str
    model: str
    latency_ms: int
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: Optional[str] = None
    prompts_used: PromptsUsed
    raw_response: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int = Field(default_factory=get_current_timestamp_ms)


class AIResponse(BaseModel):
    """Output of the AI step: raw text plus call metadata for the audit trail."""

    response: str
    metadata: AICallMetadata


def resolve_api_key(ctx: ExecutionContext, provider_name: str, key_resolver: Optional[KeyResolver] = None) -> str:
    """
    解析 API 密钥

    Raises:
        MissingApiKeyError: 三个来源都没有密钥
    """
    config = ctx.input.config
    if config.api_key is not None and config.api_key.get_secret_value():
        return config.api_key.get_secret_value()

    per_provider = config.api_keys.get(provider_name)
    if per_provider is not None and per_provider.get_secret_value():
        return per_provider.get_secret_value()

    if key_resolver is not None:
        key = key_resolver(provider_name)
        if key:
            return key

    raise MissingApiKeyError(provider_name)


def friendly_provider_error(error: ProviderError) -> ProviderError:
    """把状态码映射为可操作的提示，其它错误原样返回"""
    name, status = error.provider, error.status
    if status in (401, 403):
        message = f"Invalid API key for {name}"
    elif status == 429:
        message = f"Rate limit exceeded for {name}. Please try again later."
    elif status is not None and status >= 500:
        message = f"{name} service is temporarily unavailable"
    else:
        return error

    friendly = ProviderError(name, f"{message} ({error.provider_message})", status=status, retryable=error.retryable)
    friendly.__cause__ = error
    return friendly


def create_call_ai_step(
    registry: ProviderRegistry,
    key_resolver: Optional[KeyResolver] = None,
    timeout_ms: int = 60_000,
    max_retries: int = 1,
    optional: bool = False,
) -> StepDefinition:
    """
    构建 AI 调用步骤

    Args:
        registry: 提供商注册表
        key_resolver: 环境密钥回退（通常是 Settings.get_llm_api_key）
    """

    async def call_ai(ctx: ExecutionContext) -> AIResponse:
        prompt = ctx.result(StepName.GENERATE_PROMPT.value, GeneratedPrompt)
        provider_name = ctx.input.config.ai_provider

        provider = registry.get(provider_name)
        ctx.record("info", f"Calling AI provider: {provider_name}", {
            "provider": provider.name,
            "model": provider.model,
        })

        api_key = resolve_api_key(ctx, provider_name, key_resolver)
        ctx.add_secret(api_key)

        started = time.monotonic()
        try:
            response = await provider.generate(prompt.system_prompt, prompt.user_prompt, api_key)
        except ProviderError as e:
            ctx.record("error", f"AI provider error: {e}", {
                "provider": provider_name,
                "status": e.status,
                "latency_ms": int((time.monotonic() - started) * 1000),
            })
            raise friendly_provider_error(e)

        latency_ms = int((time.monotonic() - started) * 1000)
        ctx.record("info", "AI response received", {
            "latency_ms": latency_ms,
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
            "content_length": len(response.content),
        })

        return AIResponse(
            response=response.content,
            metadata=AICallMetadata(
                provider=provider.name,
                model=response.model or provider.model,
                latency_ms=latency_ms,
                usage=response.usage,
                finish_reason=response.finish_reason,
                prompts_used=PromptsUsed(system=prompt.system_prompt, user=prompt.user_prompt),
                raw_response=response.raw,
            ),
        )

    return StepDefinition(
        name=StepName.CALL_AI.value,
        run=call_ai,
        description="Calls the selected AI provider to generate trades",
        optional=optional,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
    )
