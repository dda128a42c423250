"""
xAI Grok 提供商（OpenAI 兼容协议）
"""
from typing import Optional

from .openai import OpenAIProvider


class XAIProvider(OpenAIProvider):
    name = "xai"
    default_model = "grok-beta"
    default_base_url = "https://api.x.ai/v1"
    key_hint = "Key should be at least 20 characters"
    json_response_format = False

    def validate_api_key(self, api_key: Optional[str]) -> bool:
        return isinstance(api_key, str) and len(api_key) >= 20
