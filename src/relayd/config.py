from __future__ import annotations

import json
import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = "config.json"
PERSIST_FILE_NAME = "relay-buffer.json"


class ApiSettings(BaseModel):
    url: str = "http://localhost:8000/ingest"
    key: str = ""
    timeout: float = 30.0


class BufferSettings(BaseModel):
    max_size: int = 10_000
    persist_file: str = "data/relay-buffer.json"
    flush_interval: float = 10.0
    max_retries: int = 5
    cleanup_interval: float = 3600.0
    message_retention_days: float = 7.0
    backoff_cap: float = 300.0
    dead_letter_file: Optional[str] = None

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.message_retention_days)


class CircuitBreakerSettings(BaseModel):
    max_failures: int = 5
    timeout: float = 30.0


class LoggingSettings(BaseModel):
    level: str = "INFO"
    stats_interval: float = 60.0


class RelaySettings(BaseSettings):
    """Service configuration.

    Values come from (highest priority first) the JSON config file, then
    ``RELAY_*`` environment variables (nested with ``__``, e.g.
    ``RELAY_API__KEY``), then ``.env``, then defaults.
    """

    api: ApiSettings = ApiSettings()
    buffer: BufferSettings = BufferSettings()
    circuit_breaker: CircuitBreakerSettings = CircuitBreakerSettings()
    topics: list[str] = []
    logging: LoggingSettings = LoggingSettings()

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


def load_settings(path: str | Path | None = None) -> RelaySettings:
    """Load settings from a JSON file plus environment.

    The file path is ``path``, else ``$RELAY_CONFIG``, else ``config.json``;
    a missing file falls back to environment and defaults. ``$RELAY_PST_PATH``
    relocates the buffer file into that directory.
    """
    config_path = Path(path or os.getenv("RELAY_CONFIG", DEFAULT_CONFIG_PATH))
    data: dict = {}
    if config_path.exists():
        data = json.loads(config_path.read_text(encoding="utf-8"))
        logger.debug(f"Loaded configuration file {config_path}")
    else:
        logger.info(f"Config file {config_path} not found, using environment and defaults")

    settings = RelaySettings(**data)

    pst_path = os.getenv("RELAY_PST_PATH")
    if pst_path:
        settings.buffer.persist_file = str(Path(pst_path) / PERSIST_FILE_NAME)
        logger.info(f"Using persistent storage path: {settings.buffer.persist_file}")

    return settings


@lru_cache()
def get_settings() -> RelaySettings:
    return load_settings()
