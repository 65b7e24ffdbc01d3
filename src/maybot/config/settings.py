"""
config/settings.py — maybot Runtime Settings

config.yaml supplies the structure, .env supplies the API keys. Every
section is a typed pydantic model.

  - Provider keys come from GEMINI_API_KEY plus any number of numbered
    GEMINI_API_KEY_1 … GEMINI_API_KEY_N variables; gemini_api_keys() collects
    them in order, de-duplicated.
  - validate_all() checks cross-field rules at startup and raises one
    ConfigError that numbers each problem.
  - load_settings() respects the MAYBOT_CONFIG env var as a fallback when no
    explicit config_path argument is given.
"""

from __future__ import annotations

import os
import re
import threading as _threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """validate_all() found at least one problem."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_NUMBERED_KEY_RE = re.compile(r"^GEMINI_API_KEY_(\d+)$", re.IGNORECASE)


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AgentConfig(BaseModel):
    name: str = "Mây"
    persona_file: Optional[str] = None
    max_iterations: int = 10
    plan_attempts: int = 3
    retry_delay_seconds: float = 1.0
    turn_timeout_seconds: float = 180.0
    history_limit: int = 50

    @field_validator("max_iterations", "plan_attempts")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("agent.max_iterations and agent.plan_attempts must be >= 1")
        return v

    @field_validator("history_limit")
    @classmethod
    def _non_negative_history(cls, v: int) -> int:
        if v < 0:
            raise ValueError("agent.history_limit must be >= 0 (0 disables history)")
        return v

    @field_validator("retry_delay_seconds")
    @classmethod
    def _non_negative_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("agent.retry_delay_seconds must be >= 0")
        return v


class LLMConfig(BaseModel):
    provider: str = "gemini"
    model: str = "gemini-2.5-flash"
    temperature: float = 0.9
    max_tokens: int = 2048
    timeout_seconds: float = 60.0

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        if v != "gemini":
            raise ValueError(f"llm.provider '{v}' is not supported. Supported: ['gemini']")
        return v

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: float) -> float:
        if not (0.0 <= v <= 2.0):
            raise ValueError("llm.temperature must be between 0.0 and 2.0")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _positive_tokens(cls, v: int) -> int:
        if v < 1:
            raise ValueError("llm.max_tokens must be >= 1")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("llm.timeout_seconds must be > 0")
        return v


class CredentialsConfig(BaseModel):
    """Per-key quotas and health policy for the credential pool."""
    rpm_limit: int = 15
    rpd_limit: int = 1500
    max_failures: int = 3
    cooldown_seconds: float = 60.0
    throttle_backoff_seconds: float = 10.0
    max_attempts: int = 3

    @field_validator("rpm_limit", "rpd_limit", "max_failures", "max_attempts")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("credentials limits and counts must be >= 1")
        return v


class DatabaseConfig(BaseModel):
    sqlite_path: str = "./data/app.db"          # data the model may query
    state_path: str = "./data/state.db"         # keys, mood, audit, chat log
    app_schema_file: Optional[str] = None       # optional DDL run on the app db at startup

    @model_validator(mode="after")
    def _distinct_files(self) -> "DatabaseConfig":
        if self.sqlite_path != ":memory:" and Path(self.sqlite_path) == Path(self.state_path):
            raise ValueError(
                "database.sqlite_path and database.state_path must be different files; "
                "the SQL tools must not reach engine state"
            )
        return self


class ToolsConfig(BaseModel):
    timeout_seconds: float = 30.0
    max_result_chars: int = 8_000

    @field_validator("max_result_chars")
    @classmethod
    def _sane_limit(cls, v: int) -> int:
        if v < 256:
            raise ValueError("tools.max_result_chars must be >= 256")
        return v


class AffectConfig(BaseModel):
    """Personality knobs and decay rate for the affect engine."""
    sensitivity: float = 0.75
    forgiveness_rate: float = 0.4
    rumination: float = 0.7
    optimism: float = 0.65
    social_dependency: float = 0.85
    max_delta_per_interaction: float = 0.15
    update_cooldown_ms: int = 1000
    base_decay_rate: float = 0.05
    scope_mode: str = "chat"     # "chat" → one mood per conversation, "global" → shared

    @field_validator(
        "sensitivity", "forgiveness_rate", "optimism",
        "social_dependency", "max_delta_per_interaction",
    )
    @classmethod
    def _unit_interval(cls, v: float) -> float:
        if not (0.0 <= v <= 1.0):
            raise ValueError("affect personality knobs must be between 0.0 and 1.0")
        return v

    @field_validator("rumination")
    @classmethod
    def _positive_rumination(cls, v: float) -> float:
        if not (0.0 < v <= 1.0):
            raise ValueError("affect.rumination must be in (0.0, 1.0]")
        return v

    @field_validator("scope_mode")
    @classmethod
    def _valid_scope(cls, v: str) -> str:
        if v not in {"chat", "global"}:
            raise ValueError("affect.scope_mode must be 'chat' or 'global'")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 20
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    maybot runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    gemini_proxy: Optional[str] = Field(default=None, alias="GEMINI_PROXY")
    extra_gemini_keys: dict[str, str] = Field(default_factory=dict, exclude=True)

    # -- Structured config (from config.yaml) --------------------------------
    agent: AgentConfig = Field(default_factory=AgentConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    affect: AffectConfig = Field(default_factory=AffectConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("gemini_api_key", "gemini_proxy", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Optional[str]:
        if v in (None, "", "null"):
            return None
        return str(v).strip()

    @model_validator(mode="after")
    def _collect_numbered_keys(self) -> "Settings":
        """Pick up GEMINI_API_KEY_1 … GEMINI_API_KEY_N from the process env."""
        if not self.extra_gemini_keys:
            found = {}
            for name, value in os.environ.items():
                match = _NUMBERED_KEY_RE.match(name)
                if match and value.strip():
                    found[f"key_{int(match.group(1))}"] = value.strip()
            self.extra_gemini_keys = found
        return self

    # -- Convenience ----------------------------------------------------------

    def gemini_api_keys(self) -> list[tuple[str, str]]:
        """
        Return (label, secret) pairs: "primary" first, then key_1 … key_N in
        numeric order. A secret listed twice is kept once, under its first label.
        """
        pairs: list[tuple[str, str]] = []
        seen: set[str] = set()
        if self.gemini_api_key:
            pairs.append(("primary", self.gemini_api_key))
            seen.add(self.gemini_api_key)
        for label in sorted(self.extra_gemini_keys, key=lambda k: int(k.split("_")[1])):
            secret = self.extra_gemini_keys[label]
            if secret not in seen:
                pairs.append((label, secret))
                seen.add(secret)
        return pairs

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    def validate_all(self) -> None:
        """
        Startup checks that span sections or touch the filesystem. Field
        validators already ran at parse time; this collects every remaining
        problem before raising a single ConfigError.
        """
        errors: list[str] = []

        if not self.gemini_api_keys():
            errors.append(
                "No Gemini API key configured. Set GEMINI_API_KEY (and optionally "
                "GEMINI_API_KEY_1 … GEMINI_API_KEY_N) in your .env file."
            )

        if self.credentials.rpm_limit > self.credentials.rpd_limit:
            errors.append(
                f"credentials.rpm_limit ({self.credentials.rpm_limit}) cannot exceed "
                f"credentials.rpd_limit ({self.credentials.rpd_limit})."
            )

        if self.llm.timeout_seconds >= self.agent.turn_timeout_seconds:
            errors.append(
                "llm.timeout_seconds must be shorter than agent.turn_timeout_seconds."
            )

        if self.gemini_proxy and not self.gemini_proxy.startswith(("http://", "https://")):
            errors.append(
                f"GEMINI_PROXY '{self.gemini_proxy}' must be an http(s) URL."
            )

        if not self.database.sqlite_path.strip():
            errors.append("database.sqlite_path must not be empty.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nmaybot startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {
    "agent", "llm", "credentials", "database", "tools", "affect", "logging",
}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Pick the config file, first match wins:
      1. config_path (the --config flag)
      2. MAYBOT_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("MAYBOT_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config
    path on first use. Guarded by _singleton_lock against double-initialisation.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            yaml_data = _load_yaml(_resolve_config_path(None))
            init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
            _singleton = Settings(**init_kwargs)
    return _singleton


def reset_settings() -> None:
    """Drop the cached singleton (used by tests)."""
    global _singleton
    with _singleton_lock:
        _singleton = None
