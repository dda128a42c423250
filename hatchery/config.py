"""Configuration management for the trade generation pipeline.

Hybrid configuration system:
- General settings from YAML (config/config.yaml)
- Provider API keys from environment variables (.env)
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings

from .constants import (
    DEFAULT_BACKOFF_BASE_MS,
    DEFAULT_MAX_BACKOFF_MS,
    DEFAULT_MAX_ENTRY_DEVIATION,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MIN_RISK_REWARD,
    DEFAULT_MIN_VOLUME,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TEMPERATURE,
)


# ============================================================================
# Environment Variables (Secrets Only)
# ============================================================================


class SecretsSettings(BaseSettings):
    """Provider API keys loaded from environment variables."""

    anthropic_api_key: Optional[SecretStr] = Field(default=None, alias="ANTHROPIC_API_KEY")
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    google_api_key: Optional[SecretStr] = Field(default=None, alias="GOOGLE_API_KEY")
    xai_api_key: Optional[SecretStr] = Field(default=None, alias="XAI_API_KEY")

    def get_llm_api_key(self, provider: str) -> Optional[str]:
        """Get API key for the specified AI provider."""
        provider_lower = provider.lower()
        if provider_lower in ("anthropic", "claude"):
            secret = self.anthropic_api_key
        elif provider_lower == "openai":
            secret = self.openai_api_key
        elif provider_lower in ("google", "gemini"):
            secret = self.google_api_key
        elif provider_lower in ("xai", "grok"):
            secret = self.xai_api_key
        else:
            return None
        return secret.get_secret_value() if secret else None

    class Config:
        extra = "ignore"
        env_file = ".env"
        env_file_encoding = "utf-8"


# ============================================================================
# YAML Configuration Models
# ============================================================================


class ProviderConfig(BaseModel):
    """Per-provider overrides."""

    model: Optional[str] = None
    base_url: Optional[str] = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT  # 秒


class ProviderSettings(BaseModel):
    """AI provider configuration from YAML."""

    default: str = "anthropic"
    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    google: ProviderConfig = Field(default_factory=ProviderConfig)
    xai: ProviderConfig = Field(default_factory=ProviderConfig)

    def for_provider(self, name: str) -> ProviderConfig:
        return getattr(self, name, None) or ProviderConfig()


class StepOverride(BaseModel):
    """Per-step timeout / retry override."""

    timeout_ms: Optional[int] = None
    max_retries: Optional[int] = None
    optional: Optional[bool] = None


class PipelineSettings(BaseModel):
    """Pipeline configuration from YAML."""

    stop_on_error: bool = True
    enable_telemetry: bool = True
    backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS
    max_backoff_ms: int = DEFAULT_MAX_BACKOFF_MS
    steps: Dict[str, StepOverride] = Field(default_factory=dict)


class MarketDataSettings(BaseModel):
    """Market data configuration from YAML."""

    exchange_id: str = "binance"


class ValidationSettings(BaseModel):
    """Validator configuration from YAML."""

    min_risk_reward: float = DEFAULT_MIN_RISK_REWARD
    max_entry_deviation: float = DEFAULT_MAX_ENTRY_DEVIATION
    min_volume: float = DEFAULT_MIN_VOLUME
    include_leverage: bool = True
    include_price_deviation: bool = True
    include_volume: bool = False


class LoggingConfig(BaseModel):
    """Logging configuration from YAML."""

    level: str = "INFO"
    file: str = "logs/hatchery.log"
    rotation: str = "1 day"
    retention: str = "30 days"
    compression: str = "zip"
    debug: bool = False


class YAMLConfig(BaseModel):
    """Complete YAML configuration."""

    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    market: MarketDataSettings = Field(default_factory=MarketDataSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    assets: List[str] = Field(default_factory=list)


# ============================================================================
# Unified Settings
# ============================================================================


class Settings:
    """Combined settings from YAML config and environment variables."""

    def __init__(self, config_path: Optional[str] = None, secrets: Optional[SecretsSettings] = None):
        """Initialize settings.

        Args:
            config_path: Path to YAML config file. If None, uses default path.
            secrets: Pre-built secrets (tests). If None, read from environment.
        """
        self.secrets = secrets if secrets is not None else SecretsSettings()

        if config_path is None:
            project_root = Path(__file__).parent.parent
            yaml_path = project_root / "config" / "config.yaml"
        else:
            yaml_path = Path(config_path)

        self._yaml_config = self._load_yaml(yaml_path)
        self.config = YAMLConfig(**self._yaml_config)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], secrets: Optional[SecretsSettings] = None) -> "Settings":
        """Build settings from an in-memory mapping instead of a file."""
        settings = cls.__new__(cls)
        settings.secrets = secrets if secrets is not None else SecretsSettings()
        settings._yaml_config = dict(data)
        settings.config = YAMLConfig(**settings._yaml_config)
        return settings

    @staticmethod
    def _load_yaml(path: Path) -> Dict[str, Any]:
        """Load YAML configuration file."""
        if not path.exists():
            return {}

        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    # ========================================================================
    # Convenience Properties
    # ========================================================================

    @property
    def providers(self) -> ProviderSettings:
        return self.config.providers

    @property
    def pipeline(self) -> PipelineSettings:
        return self.config.pipeline

    @property
    def market(self) -> MarketDataSettings:
        return self.config.market

    @property
    def validation(self) -> ValidationSettings:
        return self.config.validation

    @property
    def logging_config(self) -> LoggingConfig:
        return self.config.logging

    # ========================================================================
    # Combined Accessors (YAML + Secrets)
    # ========================================================================

    def get_llm_api_key(self, provider: Optional[str] = None) -> Optional[str]:
        """Get API key for the given (or default) provider."""
        return self.secrets.get_llm_api_key(provider or self.providers.default)

    def get_step_override(self, step_name: str) -> StepOverride:
        return self.pipeline.steps.get(step_name) or StepOverride()


# ============================================================================
# Global Instance
# ============================================================================

_settings: Optional[Settings] = None


def get_settings(config_path: Optional[str] = None) -> Settings:
    """Get or create settings instance.

    Args:
        config_path: Optional path to YAML config file.

    Returns:
        Settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings(config_path)
    return _settings


def reload_settings(config_path: Optional[str] = None) -> Settings:
    """Force reload settings."""
    global _settings
    _settings = Settings(config_path)
    return _settings


def load_dotenv():
    """Load environment variables from .env file."""
    from dotenv import load_dotenv as _load_dotenv
    _load_dotenv()
