"""
Google Gemini 提供商

Gemini 没有独立的 system 角色，系统提示词与用户提示词拼接成一条消息。
安全设置放宽到 BLOCK_ONLY_HIGH，避免正常的金融文本被拦截。
"""
from typing import Any, Dict, Optional

from ..errors import ProviderParseError
from ..models import ProviderResponse, TokenUsage
from .base import BaseProvider

PROMPT_SEPARATOR = "\n\n---\n\n"

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


class GoogleProvider(BaseProvider):
    """Gemini generateContent API"""

    name = "google"
    default_model = "gemini-1.5-pro"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    supports_system_prompt = False
    key_hint = "Key should be at least 30 characters"

    def validate_api_key(self, api_key: Optional[str]) -> bool:
        # Google API key 通常为 39 个字符
        return isinstance(api_key, str) and len(api_key) >= 30

    def _build_url(self) -> str:
        # 密钥放在请求头里，不拼进 URL
        return f"{self.base_url}/models/{self.model}:generateContent"

    def _build_headers(self, api_key: str) -> Dict[str, str]:
        return {"x-goog-api-key": api_key}

    @staticmethod
    def combine_prompts(system_prompt: str, user_prompt: str) -> str:
        if system_prompt:
            return f"{system_prompt}{PROMPT_SEPARATOR}{user_prompt}"
        return user_prompt

    def _build_body(self, system_prompt: str, user_prompt: str, options: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "contents": [
                {"parts": [{"text": self.combine_prompts(system_prompt, user_prompt)}]}
            ],
            "generationConfig": {
                "maxOutputTokens": options["max_tokens"],
                "temperature": options["temperature"],
            },
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_ONLY_HIGH"}
                for category in SAFETY_CATEGORIES
            ],
        }

    def _parse_response(self, payload: Dict[str, Any]) -> ProviderResponse:
        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            feedback = payload.get("promptFeedback")
            reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
            message = f"Response has no candidates (blocked: {reason})" if reason else "Response has no candidates"
            raise ProviderParseError(self.name, message)

        candidate = self._as_dict(candidates[0], "candidates[0]")
        content = self._as_dict(candidate.get("content"), "candidates[0].content")
        parts = content.get("parts")
        text = parts[0].get("text") if isinstance(parts, list) and parts and isinstance(parts[0], dict) else None
        if not isinstance(text, str):
            raise ProviderParseError(self.name, "Response candidate has no text part")

        usage = self._as_dict(payload.get("usageMetadata"), "usageMetadata", optional=True)
        return ProviderResponse(
            content=text,
            usage=TokenUsage(
                input_tokens=self._as_int(usage.get("promptTokenCount")),
                output_tokens=self._as_int(usage.get("candidatesTokenCount")),
            ),
            raw=payload,
            finish_reason=self._as_str(candidate.get("finishReason")),
            provider=self.name,
            model=self.model,
        )
