"""
AI 提供商模块

统一接口封装不同的 AI 后端：
- Anthropic (Claude)
- OpenAI (GPT)
- Google (Gemini)
- xAI (Grok)
"""
from .base import BaseProvider
from .anthropic import AnthropicProvider
from .openai import OpenAIProvider
from .google import GoogleProvider
from .xai import XAIProvider
from .registry import DEFAULT_PROVIDERS, ProviderRegistry, create_default_registry

__all__ = [
    "BaseProvider",
    "AnthropicProvider",
    "OpenAIProvider",
    "GoogleProvider",
    "XAIProvider",
    "DEFAULT_PROVIDERS",
    "ProviderRegistry",
    "create_default_registry",
]
