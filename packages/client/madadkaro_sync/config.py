"""
Configuration loading and validation.

Loads sync client configuration from a YAML file. The bearer token is resolved
from an environment variable and is never stored in the config file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    url: str = "http://localhost:8000"
    verify_tls: bool = True
    request_timeout_seconds: float = 10.0
    token_env: str = "MADADKARO_TOKEN"

    @property
    def token(self) -> str | None:
        return os.environ.get(self.token_env)


class SyncSettings(BaseModel):
    reconcile_delay_seconds: float = 0.5
    reconcile_timeout_seconds: float = 5.0
    reconcile_retries: int = Field(default=3, ge=1)
    reconcile_backoff_seconds: float = 0.5
    reconnect_base_seconds: float = 1.0
    reconnect_max_seconds: float = 60.0


class WatchConfig(BaseModel):
    # Task detail to keep open from startup, if any
    task_id: Optional[str] = None


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "json"


class MetricsConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 9091


class SyncConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def load_config(path: str | Path) -> SyncConfig:
    """Load and validate sync configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return SyncConfig.model_validate(raw)
