"""
AI 提供商注册表

名称 -> 适配器实例的显式映射，在流水线组装时注入，不使用全局单例。

使用示例：
    registry = create_default_registry()
    provider = registry.get("anthropic")

    # 注册自定义提供商
    registry.register("local", MyLocalProvider())
"""
from typing import TYPE_CHECKING, Dict, List, Optional, Type

import aiohttp
from loguru import logger

from ..errors import UnknownProviderError
from ..models import ProviderInfo
from .anthropic import AnthropicProvider
from .base import BaseProvider
from .google import GoogleProvider
from .openai import OpenAIProvider
from .xai import XAIProvider

if TYPE_CHECKING:
    from ..config import Settings


DEFAULT_PROVIDERS: Dict[str, Type[BaseProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "google": GoogleProvider,
    "xai": XAIProvider,
}


class ProviderRegistry:
    """提供商注册表"""

    def __init__(self, providers: Optional[Dict[str, BaseProvider]] = None):
        self._providers: Dict[str, BaseProvider] = {}
        for name, provider in (providers or {}).items():
            self.register(name, provider)

    def register(self, name: str, provider: BaseProvider) -> None:
        """
        注册提供商

        Args:
            name: 提供商名称（大小写不敏感）
            provider: 适配器实例，必须继承 BaseProvider
        """
        if not isinstance(provider, BaseProvider):
            raise TypeError("Provider must extend BaseProvider")
        self._providers[name.lower()] = provider
        logger.debug(f"Registered AI provider: {name} ({provider.model})")

    def get(self, name: str) -> BaseProvider:
        """
        获取提供商

        Raises:
            UnknownProviderError: 名称未注册
        """
        provider = self._providers.get((name or "").lower())
        if provider is None:
            raise UnknownProviderError(name, self.available())
        return provider

    def available(self) -> List[str]:
        return list(self._providers.keys())

    def all_info(self) -> List[ProviderInfo]:
        return [provider.get_info() for provider in self._providers.values()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._providers

    def __len__(self) -> int:
        return len(self._providers)


def create_default_registry(
    session: Optional[aiohttp.ClientSession] = None,
    settings: Optional["Settings"] = None,
) -> ProviderRegistry:
    """
    创建包含四个内置提供商的注册表

    Args:
        session: 共享的 aiohttp 会话（可选）
        settings: 配置，用于覆盖模型/地址/超时

    Returns:
        ProviderRegistry
    """
    registry = ProviderRegistry()
    for name, provider_cls in DEFAULT_PROVIDERS.items():
        kwargs = {"session": session}
        if settings is not None:
            cfg = settings.providers.for_provider(name)
            kwargs.update(
                model=cfg.model,
                base_url=cfg.base_url,
                request_timeout=cfg.request_timeout,
                default_options={"max_tokens": cfg.max_tokens, "temperature": cfg.temperature},
            )
        registry.register(name, provider_cls(**kwargs))
    return registry
