"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SummarizerConfig(BaseModel):
    api_key: str = ""
    endpoint: str = "https://api.openai.com/v1/chat/completions"
    model: str = "gpt-4"
    max_tokens: int = 300
    temperature: float = 0.7
    timeout: float = 30.0


class NotifierConfig(BaseModel):
    webhook_url: str = ""
    timeout: float = 10.0


class WebhooksConfig(BaseModel):
    bind: str = "0.0.0.0"
    port: int = 8420
    path: str = "/webhooks/github"
    mode: Literal["streaming", "sync"] = "streaming"
    process_all_events: bool = False
    drain_timeout: float = 60.0


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="HERALD_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    summarizer: SummarizerConfig = Field(default_factory=SummarizerConfig)
    notifier: NotifierConfig = Field(default_factory=NotifierConfig)
    webhooks: WebhooksConfig = Field(default_factory=WebhooksConfig)
    log_level: str = "INFO"
    log_json: bool = False


# Variable names used by earlier deployments of the relay
_LEGACY_API_KEY_ENV = "OPENAI_API_KEY"
_LEGACY_WEBHOOK_URL_ENV = "SLACK_WEB_HOOK_URL"


def _config_dir() -> Path:
    env = os.environ.get("HERALD_CONFIG_DIR")
    if env:
        return Path(env)
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config") / "herald"


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings from env vars, optionally overlaying a YAML config.

    Fields still empty afterwards fall back to ``OPENAI_API_KEY`` and
    ``SLACK_WEB_HOOK_URL``.
    """
    yaml_data: dict[str, Any] = {}

    # Determine config file path
    if config_path is None:
        config_path = os.environ.get("HERALD_CONFIG")
    if config_path is None:
        default = _config_dir() / "config.yaml"
        if default.exists():
            config_path = default

    # Load YAML if found
    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

    # Env values first, YAML sections merged over them key by key
    env_data = Settings().model_dump()
    settings = Settings(**_deep_merge(env_data, yaml_data))

    if not settings.summarizer.api_key:
        settings.summarizer.api_key = os.environ.get(_LEGACY_API_KEY_ENV, "")
    if not settings.notifier.webhook_url:
        settings.notifier.webhook_url = os.environ.get(_LEGACY_WEBHOOK_URL_ENV, "")
    return settings
