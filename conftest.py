"""
Root conftest — isolate provider credentials so that Settings() behaves as if
no keys are configured unless a test explicitly provides them.

Also disables .env file loading so a developer's local .env never leaks real
credentials into tests, and drops the cached settings singleton.
"""
import os

import pytest

_ENV_VARS = ["GEMINI_API_KEY", "GEMINI_PROXY", "MAYBOT_CONFIG"]


@pytest.fixture(autouse=True)
def _isolate_provider_env(monkeypatch):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.upper().startswith("GEMINI_API_KEY_"):
            monkeypatch.delenv(var, raising=False)

    import maybot.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    settings_module.reset_settings()
    yield
    settings_module.reset_settings()
