"""Application settings loaded from the environment."""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """StageFlow settings. Every field can be set as ``STAGEFLOW_<NAME>``."""

    model_config = SettingsConfigDict(env_prefix="STAGEFLOW_", env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./stageflow.db"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"])
    log_level: str = "INFO"

    # Workflow event delivery (events are only logged when unset)
    webhook_url: Optional[str] = None
    webhook_timeout: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
