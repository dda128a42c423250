"""
数据脱敏

遥测与观察者回调中出现的任何数据都先经过这里：
- 无法序列化（例如循环引用）的数据整体丢弃
- 敏感键（api key、password、secret、token、authorization）替换为脱敏标记
"""
import json
from typing import Any, Dict, Iterable, Optional

from ..constants import REDACTED

# 键名归一化后（小写、去掉 _ 和 -）与之比较
SENSITIVE_KEYS = frozenset({
    "apikey",
    "apikeys",
    "xapikey",
    "password",
    "secret",
    "token",
    "authorization",
})

UNSERIALIZABLE = {"_error": "Data could not be serialized"}


def _normalize_key(key: Any) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


def is_sensitive_key(key: Any) -> bool:
    return _normalize_key(key) in SENSITIVE_KEYS


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: (REDACTED if is_sensitive_key(k) else _redact(v))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


def _json_default(obj: Any) -> Any:
    # pydantic 模型按 JSON 模式导出，SecretStr 会被掩码
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    return str(obj)


def sanitize_data(data: Optional[Any]) -> Dict[str, Any]:
    """
    返回可 JSON 序列化、已脱敏的数据副本

    Args:
        data: 任意数据（通常为 dict）

    Returns:
        脱敏后的 dict；无法序列化时返回 ``{"_error": ...}``
    """
    if data is None:
        return {}
    try:
        copied = json.loads(json.dumps(data, default=_json_default))
    except (TypeError, ValueError, RecursionError):
        return dict(UNSERIALIZABLE)

    redacted = _redact(copied)
    if not isinstance(redacted, dict):
        return {"value": redacted}
    return redacted


def scrub_secrets(text: str, secrets: Iterable[str]) -> str:
    """把文本中出现的已知密钥值替换为脱敏标记"""
    if not text:
        return text
    for secret in secrets:
        if secret and len(secret) >= 4:
            text = text.replace(secret, REDACTED)
    return text
