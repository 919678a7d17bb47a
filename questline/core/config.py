"""
Configuration
YAML defaults + local overrides, validated with pydantic
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class SystemConfig(BaseModel):
    name: str = "Questline"
    version: str = "0.3.0"


class WebConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 5000


class ChannelConfig(BaseModel):
    path: str = "socket.io"
    # token -> user id; stands in for the external session issuer
    tokens: dict[str, str] = Field(default_factory=dict)
    reconnection_attempts: int = 5
    reconnection_delay: float = 1.0
    request_timeout: float = 3.0
    push_on_connect: bool = True


class QuestsConfig(BaseModel):
    max_suggestions: int = 3
    ai_enabled: bool = False


class AIConfig(BaseModel):
    api_base: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    api_key: str = ""
    max_tokens: int = 1024
    temperature: float = 0.7
    timeout: float = 30.0


class StorageConfig(BaseModel):
    database: str = "data/questline.db"
    registry_dir: str = "data/registry"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None


class Config(BaseModel):
    system: SystemConfig = Field(default_factory=SystemConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    quests: QuestsConfig = Field(default_factory=QuestsConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_dir: str | Path | None = None) -> Config:
    """Load configuration, priority: local.yaml > default.yaml > built-in defaults"""
    config_dir = Path(config_dir or os.environ.get("QUESTLINE_CONFIG_DIR", "config"))
    data: dict[str, Any] = {}

    default_path = config_dir / "default.yaml"
    if default_path.exists():
        with open(default_path) as f:
            data = yaml.safe_load(f) or {}

    local_path = config_dir / "local.yaml"
    if local_path.exists():
        with open(local_path) as f:
            local_data = yaml.safe_load(f) or {}
            data = _deep_merge(data, local_data)

    if not data.get("ai", {}).get("api_key"):
        env_key = os.environ.get("QUESTLINE_AI_API_KEY", "")
        if env_key:
            data.setdefault("ai", {})["api_key"] = env_key

    return Config(**data)


def _deep_merge(base: dict, override: dict) -> dict:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
