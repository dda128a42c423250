"""Settings loading: YAML sections, secrets and the cached instance."""

import pytest

from hatchery import config
from hatchery.config import Settings, SecretsSettings, get_settings, reload_settings


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GOOGLE_API_KEY", "XAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "_settings", None)


def write_config(path, backoff_ms: int):
    path.write_text(f"pipeline:\n  backoff_base_ms: {backoff_ms}\n", encoding="utf-8")
    return str(path)


class TestSettings:

    def test_yaml_sections(self, tmp_path):
        settings = Settings(write_config(tmp_path / "a.yaml", 5))
        assert settings.pipeline.backoff_base_ms == 5
        assert settings.market.exchange_id == "binance"

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = Settings(str(tmp_path / "missing.yaml"))
        assert settings.pipeline.max_backoff_ms == 30000

    def test_get_settings_is_cached(self, tmp_path):
        first = get_settings(write_config(tmp_path / "a.yaml", 5))
        second = get_settings(write_config(tmp_path / "b.yaml", 7))

        assert second is first
        assert second.pipeline.backoff_base_ms == 5

    def test_reload_settings_replaces_cache(self, tmp_path):
        get_settings(write_config(tmp_path / "a.yaml", 5))

        reloaded = reload_settings(write_config(tmp_path / "b.yaml", 7))

        assert reloaded.pipeline.backoff_base_ms == 7
        assert get_settings() is reloaded

    def test_secret_lookup(self):
        settings = Settings.from_dict({}, secrets=SecretsSettings(_env_file=None, ANTHROPIC_API_KEY="sk-ant-x"))
        assert settings.get_llm_api_key("anthropic") == "sk-ant-x"
        assert settings.get_llm_api_key("openai") is None
