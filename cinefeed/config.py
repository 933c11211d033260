"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="CineFeed", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")
    tmdb_region: str | None = Field(default=None, alias="TMDB_REGION")
    tmdb_max_retries: int = Field(default=2, alias="TMDB_MAX_RETRIES", ge=0, le=10)

    database_url: str = Field(
        default="sqlite+aiosqlite:///./cinefeed.db", alias="DATABASE_URL"
    )
    ledger_id: str = Field(default="default", alias="LEDGER_ID", max_length=64)
    ledger_persist_retries: int = Field(
        default=2, alias="LEDGER_PERSIST_RETRIES", ge=0, le=10
    )

    recommendations_threshold: int = Field(
        default=20, alias="RECOMMENDATIONS_THRESHOLD", ge=1
    )
    personalized_limit: int = Field(
        default=200, alias="PERSONALIZED_LIMIT", ge=1, le=1_000
    )
    cold_start_sample_size: int = Field(
        default=300, alias="COLD_START_SAMPLE_SIZE", ge=1, le=2_000
    )
    cold_start_pages: int = Field(default=3, alias="COLD_START_PAGES", ge=1, le=10)
    cold_start_seed: int | None = Field(default=None, alias="COLD_START_SEED")

    trailer_concurrency: int = Field(
        default=16, alias="TRAILER_CONCURRENCY", ge=1, le=100
    )
    trailer_site: str = Field(default="YouTube", alias="TRAILER_SITE")
    query_timeout_seconds: float = Field(
        default=15.0, alias="QUERY_TIMEOUT", gt=0, le=120
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_region", "tmdb_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        """Treat blank environment values as unset."""

        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def tmdb_base_url(self) -> str:
        return str(self.tmdb_api_url).rstrip("/")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
