"""
OpenAI GPT 提供商
"""
from typing import Any, Dict, Optional

from ..errors import ProviderParseError
from ..models import ProviderResponse, TokenUsage
from .base import BaseProvider


class OpenAIProvider(BaseProvider):
    """OpenAI Chat Completions API

    xAI 使用兼容协议，直接继承本类。
    """

    name = "openai"
    default_model = "gpt-4-turbo-preview"
    default_base_url = "https://api.openai.com/v1"
    key_hint = 'Key should start with "sk-"'
    json_response_format = True

    def validate_api_key(self, api_key: Optional[str]) -> bool:
        return isinstance(api_key, str) and api_key.startswith("sk-")

    def _build_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _build_headers(self, api_key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def _build_body(self, system_prompt: str, user_prompt: str, options: Dict[str, Any]) -> Dict[str, Any]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        body: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": options["max_tokens"],
            "temperature": options["temperature"],
        }
        if self.json_response_format:
            body["response_format"] = {"type": "json_object"}
        return body

    def _parse_response(self, payload: Dict[str, Any]) -> ProviderResponse:
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProviderParseError(self.name, "Response has no choices")

        choice = self._as_dict(choices[0], "choices[0]")
        message = self._as_dict(choice.get("message"), "choices[0].message")
        content = message.get("content")
        if not isinstance(content, str):
            raise ProviderParseError(self.name, "Response choice has no message content")

        usage = self._as_dict(payload.get("usage"), "usage", optional=True)
        return ProviderResponse(
            content=content,
            usage=TokenUsage(
                input_tokens=self._as_int(usage.get("prompt_tokens")),
                output_tokens=self._as_int(usage.get("completion_tokens")),
            ),
            raw=payload,
            finish_reason=self._as_str(choice.get("finish_reason")),
            provider=self.name,
            model=self._as_str(payload.get("model")) or self.model,
        )
