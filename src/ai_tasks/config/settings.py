"""Application settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "ai-tasks"
    log_level: str = "INFO"
    remote_base_url: str = "http://localhost:8000/api/v1"
    remote_api_token: str = ""
    remote_timeout_s: float = Field(default=10.0, ge=0.1)
    # Sync generation holds the request open until the artifact is ready.
    remote_sync_timeout_s: float = Field(default=120.0, ge=0.1)
    poll_interval_s: float = Field(default=2.0, ge=0.0)
    poll_max_attempts: int = Field(default=30, ge=1)
    default_mode: Literal["sync", "async"] = "sync"
    default_save_to_history: bool = True
    pending_retention_ttl_s: float = Field(default=3600.0, gt=0.0)
    database_url: str = ""
    history_page_size: int = Field(default=20, ge=1, le=100)

    model_config = SettingsConfigDict(
        env_prefix="AI_TASKS_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
