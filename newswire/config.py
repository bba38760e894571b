"""
Configuration and settings for the newswire backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service and scheduler."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # RabbitMQ management API
    rabbitmq_url: str = Field(default="http://127.0.0.1:15672")
    rabbitmq_user: str = Field(default="guest")
    rabbitmq_password: str = Field(default="guest")
    rabbitmq_vhost: str = Field(default="/")
    rabbitmq_exchange: str = Field(default="amq.default")
    rabbitmq_timeout_seconds: float = Field(default=10.0)

    # Validate messages but never contact the broker.
    skip_jobs: bool = Field(default=False)

    # Scheduling
    search_batch_size: int = Field(default=5, ge=1)

    # Projects
    default_project_limit: int = Field(default=3, ge=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
