"""Application configuration."""

import os
from dataclasses import dataclass
from datetime import timedelta

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    admin_token: str
    openai_api_key: str
    openai_model: str = "gpt-5.2"
    openai_reasoning_effort: str = "medium"
    session_default_duration_mins: int = 15
    session_cleanup_interval_mins: int = 1
    session_max_concurrent_cleanup: int = 10
    max_parallel_tasks: int = 5
    recipes_to_return_per_retrieval: int = 3
    acceptable_score_threshold: int = 70
    conversation_persistence_enabled: bool = True
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    def session_config(self) -> "SessionConfig":
        """Return the session subset of the settings."""
        return SessionConfig(
            default_duration=timedelta(minutes=self.session_default_duration_mins),
            cleanup_interval=timedelta(minutes=self.session_cleanup_interval_mins),
            max_concurrent_cleanup=self.session_max_concurrent_cleanup,
        )


@dataclass(frozen=True)
class SessionConfig:
    """Session expiry and cleanup settings."""

    default_duration: timedelta = timedelta(minutes=15)
    cleanup_interval: timedelta = timedelta(minutes=1)
    max_concurrent_cleanup: int = 10
