"""
Anthropic Claude 提供商
"""
from typing import Any, Dict, Optional

from ..errors import ProviderParseError
from ..models import ProviderResponse, TokenUsage
from .base import BaseProvider

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API"""

    name = "anthropic"
    default_model = "claude-sonnet-4-20250514"
    default_base_url = "https://api.anthropic.com/v1"
    key_hint = 'Key should start with "sk-ant-"'

    def validate_api_key(self, api_key: Optional[str]) -> bool:
        return isinstance(api_key, str) and api_key.startswith("sk-ant-")

    def _build_url(self) -> str:
        return f"{self.base_url}/messages"

    def _build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _build_body(self, system_prompt: str, user_prompt: str, options: Dict[str, Any]) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": options["max_tokens"],
            "messages": [{"role": "user", "content": user_prompt}],
            "temperature": options["temperature"],
        }
        if system_prompt:
            body["system"] = system_prompt
        return body

    def _parse_response(self, payload: Dict[str, Any]) -> ProviderResponse:
        blocks = payload.get("content")
        if not isinstance(blocks, list) or not blocks:
            raise ProviderParseError(self.name, "Response has no content blocks")

        text = next(
            (b.get("text") for b in blocks if isinstance(b, dict) and isinstance(b.get("text"), str)),
            None,
        )
        if text is None:
            raise ProviderParseError(self.name, "Response has no text content")

        usage = self._as_dict(payload.get("usage"), "usage", optional=True)
        return ProviderResponse(
            content=text,
            usage=TokenUsage(
                input_tokens=self._as_int(usage.get("input_tokens")),
                output_tokens=self._as_int(usage.get("output_tokens")),
            ),
            raw=payload,
            finish_reason=self._as_str(payload.get("stop_reason")),
            provider=self.name,
            model=self._as_str(payload.get("model")) or self.model,
        )
