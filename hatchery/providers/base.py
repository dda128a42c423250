"""
AI 提供商基类

定义所有 AI 提供商适配器必须实现的接口，确保不同后端的统一调用方式：
    generate(system_prompt, user_prompt, api_key, options) -> ProviderResponse

每个 ``generate()`` 调用只发起一次 HTTPS POST。
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import asyncio
import json

import aiohttp
from loguru import logger

from ..constants import DEFAULT_MAX_TOKENS, DEFAULT_REQUEST_TIMEOUT, DEFAULT_TEMPERATURE
from ..errors import InvalidApiKeyError, ProviderError, ProviderParseError
from ..models import ProviderInfo, ProviderResponse


class BaseProvider(ABC):
    """
    AI 提供商基类

    所有适配器都必须继承此类并实现 ``validate_api_key`` / ``generate``。
    HTTP 会话可以注入（测试或连接复用），未注入时每次调用创建临时会话。
    """

    name: str = "unknown"
    default_model: str = "unknown"
    default_base_url: str = ""
    supports_system_prompt: bool = True
    key_hint: str = ""

    def __init__(
        self,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        default_options: Optional[Dict[str, Any]] = None,
    ):
        """
        初始化提供商

        Args:
            model: 模型名（None 使用默认模型）
            base_url: API 基础地址（None 使用默认地址）
            session: 可选的 aiohttp 会话
            request_timeout: 单次请求超时（秒）
            default_options: 默认生成参数（max_tokens, temperature）
        """
        self.model = model or self.default_model
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.request_timeout = request_timeout
        self.default_options: Dict[str, Any] = {
            "max_tokens": DEFAULT_MAX_TOKENS,
            "temperature": DEFAULT_TEMPERATURE,
            **(default_options or {}),
        }
        self._session = session

    # ========== 接口 ==========

    @abstractmethod
    def validate_api_key(self, api_key: Optional[str]) -> bool:
        """
        检查 API 密钥格式（只做格式检查，不发请求）

        Args:
            api_key: API 密钥

        Returns:
            格式是否正确
        """
        pass

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        api_key: Optional[str],
        options: Optional[Dict[str, Any]] = None,
    ) -> ProviderResponse:
        """
        调用 AI 生成文本

        Args:
            system_prompt: 系统提示词
            user_prompt: 用户提示词
            api_key: API 密钥
            options: 生成参数，覆盖默认值

        Returns:
            ProviderResponse

        Raises:
            InvalidApiKeyError: 密钥格式错误（不会发起网络请求）
            ProviderError: 非 2xx 响应或传输失败
            ProviderParseError: 响应缺少预期字段
        """
        if not self.validate_api_key(api_key):
            raise InvalidApiKeyError(self.name, self.key_hint)

        merged = {**self.default_options, **(options or {})}
        url = self._build_url()
        headers = self._build_headers(api_key)
        body = self._build_body(system_prompt, user_prompt, merged)

        logger.debug(f"{self.name}: POST {url} model={self.model}")
        payload = await self._post_json(url, headers, body)
        return self._parse_response(payload)

    @abstractmethod
    def _build_url(self) -> str:
        pass

    @abstractmethod
    def _build_headers(self, api_key: str) -> Dict[str, str]:
        pass

    @abstractmethod
    def _build_body(self, system_prompt: str, user_prompt: str, options: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def _parse_response(self, payload: Dict[str, Any]) -> ProviderResponse:
        pass

    def get_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.name,
            model=self.model,
            base_url=self.base_url,
            supports_system_prompt=self.supports_system_prompt,
        )

    # ========== HTTP ==========

    async def _post_json(self, url: str, headers: Dict[str, str], body: Dict[str, Any]) -> Dict[str, Any]:
        """
        发送 JSON POST 请求

        Returns:
            解析后的 JSON 响应体
        """
        all_headers = {"Content-Type": "application/json", **headers}
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        try:
            if self._session is not None:
                return await self._send(self._session, url, all_headers, body, timeout)
            async with aiohttp.ClientSession() as session:
                return await self._send(session, url, all_headers, body, timeout)
        except (ProviderError, asyncio.CancelledError):
            raise
        except asyncio.TimeoutError:
            raise ProviderError(self.name, f"Request timed out after {self.request_timeout}s")
        except aiohttp.ClientError as e:
            raise ProviderError(self.name, f"Request failed: {e}")

    async def _send(
        self,
        session: aiohttp.ClientSession,
        url: str,
        headers: Dict[str, str],
        body: Dict[str, Any],
        timeout: aiohttp.ClientTimeout,
    ) -> Dict[str, Any]:
        async with session.post(url, json=body, headers=headers, timeout=timeout) as resp:
            text = await resp.text()
            if not 200 <= resp.status < 300:
                raise ProviderError(self.name, self._extract_error_message(text), status=resp.status)

        try:
            payload = json.loads(text)
        except ValueError:
            raise ProviderParseError(self.name, "Response body is not valid JSON")
        if not isinstance(payload, dict):
            raise ProviderParseError(self.name, "Response body is not a JSON object")
        return payload

    @staticmethod
    def _extract_error_message(text: str) -> str:
        """从错误响应中取 error.message / message，否则返回原文"""
        try:
            data = json.loads(text)
        except ValueError:
            return text or "Unknown error"

        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str) and error:
                return error
            if data.get("message"):
                return str(data["message"])
        return text or "Unknown error"

    def _as_dict(self, value: Any, field: str, optional: bool = False) -> Dict[str, Any]:
        """
        取响应中的对象字段

        Raises:
            ProviderParseError: 字段不是对象（optional 时允许缺失）
        """
        if value is None and optional:
            return {}
        if not isinstance(value, dict):
            raise ProviderParseError(self.name, f"Response field '{field}' is not an object")
        return value

    @staticmethod
    def _as_str(value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None

    @staticmethod
    def _as_int(value: Any) -> int:
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0
