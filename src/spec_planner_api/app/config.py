"""Application settings."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "spec-planner"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = ""
    llm_api_key: str = ""
    llm_model: str = "gemini-2.5-flash"
    llm_base_url: str = GEMINI_OPENAI_BASE_URL
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=3000, ge=1)
    # None leaves the transport default in place.
    llm_timeout_s: float | None = Field(default=None, gt=0.0)
    llm_max_retries: int = Field(default=0, ge=0)
    llm_backoff_s: float = Field(default=0.0, ge=0.0)
    llm_trace: bool = False
    recent_limit: int = Field(default=5, ge=1)
    cors_origins: list[str] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_prefix="SPEC_PLANNER_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def resolved_llm_api_key(self) -> str:
        return self.llm_api_key or os.getenv("GEMINI_API_KEY", "")

    def resolved_cors_origins(self) -> list[str]:
        if self.cors_origins:
            return self.cors_origins
        client_url = os.getenv("CLIENT_URL", "").strip()
        return [client_url] if client_url else []


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
