"""Editor configuration loaded from environment variables."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Timing (seconds)
    commit_delay: float = 0.5
    toggle_debounce: float = 0.05
    restore_followup_delay: float = 0.1
    frame_interval: float = 1 / 60

    # History / view state
    history_max_depth: Optional[int] = None
    session_retention_days: int = 7

    # Storage
    store_backend: Literal["json", "redis"] = "json"
    storage_path: Path = Path("notes_data.json")
    storage_namespace: str = "app1"
    redis_url: str = "redis://localhost:6379"

    # Tool server
    editor_host: str = "0.0.0.0"
    editor_port: int = 8005
    metrics_port: int = 9105
    log_level: str = "INFO"

    @property
    def session_retention(self) -> timedelta:
        """Age after which stored view states are discarded."""
        return timedelta(days=self.session_retention_days)


settings = Settings()
