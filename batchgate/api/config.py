"""Process settings for the API layer."""
from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings


class ApiSettings(BaseSettings):
    """Immutable settings loaded from environment / .env file."""

    host: str = "0.0.0.0"
    port: int = 50111
    cors_origins: str = "http://localhost:5173,http://localhost:8000"
    job_db_path: str = "batchgate_jobs.db"
    log_level: str = "INFO"
    log_format: str = "plain"
    config_path: Optional[str] = None
    auth_enabled: bool = True
    auth_token: str = ""

    model_config = {"env_prefix": "BATCHGATE_API_", "env_file": ".env", "extra": "ignore"}
