"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables.

    Built once at startup and handed to the worker, the completion service and
    the dispatcher; nothing below reads the process environment at call time.
    """

    app_name: str = "renewal-orchestrator"
    app_env: str = "dev"
    database_url: str = ""

    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout_s: float = Field(default=120.0, ge=0.5)
    llm_max_retries: int = Field(default=1, ge=0)
    llm_backoff_s: float = Field(default=0.2, ge=0.0)
    llm_trace: bool = False
    validator_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    openai_api_key: str = ""

    artifact_min_length: int = Field(default=100, ge=0)

    # Primary completion endpoint; empty means "go straight to the fallback".
    completion_base_url: str = ""
    completion_max_retries: int = Field(default=3, ge=0)
    completion_backoff_s: float = Field(default=0.5, ge=0.0)
    completion_timeout_s: float = Field(default=10.0, ge=0.1)

    dispatch_max_workers: int = Field(default=4, ge=1)
    dispatch_max_pending: int = Field(default=32, ge=1)
    dispatch_enqueue_timeout_s: float = Field(default=5.0, ge=0.0)

    model_config = SettingsConfigDict(
        env_prefix="RENEWAL_ORCHESTRATOR_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("ORCHESTRATOR_DATABASE_URL", "")

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")

    def resolved_completion_base_url(self) -> str:
        return self.completion_base_url.rstrip("/")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
