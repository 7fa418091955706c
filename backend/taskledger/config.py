from __future__ import annotations

import os
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_env(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "TaskLedger"
    host: str = os.getenv("TL_HOST", "127.0.0.1")
    port: int = int(os.getenv("TL_PORT", "8080"))

    storage_backend: str = os.getenv("TL_STORAGE", "sqlite")
    sqlite_path: Path = Path(os.getenv("TL_SQLITE_PATH", "./data/taskledger.db"))
    persistence_timeout: float = float(os.getenv("TL_PERSISTENCE_TIMEOUT", "5"))
    max_reconcile_attempts: int = int(os.getenv("TL_MAX_RECONCILE_ATTEMPTS", "3"))

    timezone: str = os.getenv("TZ", "Europe/Berlin")
    daily_cap_minutes: int = int(os.getenv("TL_DAILY_CAP_MINUTES", str(24 * 60)))

    completed_statuses: List[str] = Field(default_factory=lambda: _split_env("TL_COMPLETED_STATUSES", "done"))
    terminal_statuses: List[str] = Field(
        default_factory=lambda: _split_env("TL_TERMINAL_STATUSES", "done,closed")
    )

    cache_ttl_seconds: int = int(os.getenv("TL_CACHE_TTL", "120"))
    broadcast_buffer_size: int = int(os.getenv("TL_BROADCAST_BUFFER", "100"))

    log_level: str = os.getenv("TL_LOG_LEVEL", "INFO")

    @field_validator("completed_statuses", "terminal_statuses", mode="before")
    @classmethod
    def _split_statuses(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return [item.strip() for item in value if item.strip()]
        if not value:
            return []
        return [item.strip() for item in value.split(",") if item.strip()]

    @field_validator("max_reconcile_attempts")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        return max(1, value)


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
