from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./catalog.db")

    # Application
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: str = Field(default="")  # empty: stderr only
    data_dir: str = Field(default="./data")
    config_path: str = Field(default="config.yml")

    # Scheduler
    scheduler_enabled: bool = Field(default=True)
    scheduler_timezone: str = Field(default="UTC")

    # HTTP
    http_timeout_seconds: float = Field(default=30.0)  # catalog lookups, icons
    download_timeout_seconds: float = Field(default=1800.0)  # bulk feeds
    user_agent: str = Field(default="CatalogSync/1.0")


class ImportConfig:
    """Streaming import tunables from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.batch_size: int = data.get("batch_size", 1000)
        # Real-world feeds carry ~0.1-0.5% incomplete records
        self.max_failure_rate: float = data.get("max_failure_rate", 0.05)
        self.max_failure_examples: int = data.get("max_failure_examples", 10)
        self.failure_message_length: int = data.get("failure_message_length", 100)


class AppConfig:
    """Combined application configuration from .env and config.yml."""

    def __init__(self) -> None:
        self.settings = Settings()
        self._load_yaml()

    def _load_yaml(self) -> None:
        config_path = Path(self.settings.config_path)
        if config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        else:
            data = {}

        self.imports = ImportConfig(data.get("imports", {}))
        # Overrides for the seeded runtime settings (settings table)
        self.setting_defaults: dict[str, str] = {
            str(key): str(value) for key, value in (data.get("defaults") or {}).items()
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@lru_cache
def get_config() -> AppConfig:
    """Get cached full config instance."""
    return AppConfig()
