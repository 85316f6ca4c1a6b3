"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Iterable

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_TRUSTED_SURFACES: tuple[str, ...] = ("dashboard", "popup", "options")
DEFAULT_CLIENT_VERSION = "2.20250109.00.00"


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_id: str = Field(default="tubequeue", alias="APP_ID")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    youtube_origin: HttpUrl = Field(
        default="https://www.youtube.com", alias="YOUTUBE_ORIGIN"
    )
    innertube_client_name: str = Field(default="WEB", alias="INNERTUBE_CLIENT_NAME")
    innertube_client_version: str = Field(
        default=DEFAULT_CLIENT_VERSION, alias="INNERTUBE_CLIENT_VERSION"
    )
    locale: str = Field(default="en-US", alias="LOCALE")

    cookie_header: str | None = Field(
        default=None,
        alias="YOUTUBE_COOKIES",
        validation_alias=AliasChoices("YOUTUBE_COOKIES", "YT_COOKIES"),
    )
    cookie_file: Path | None = Field(default=None, alias="YOUTUBE_COOKIE_FILE")

    operation_retries: int = Field(
        default=2, alias="OPERATION_RETRIES", ge=0, le=5
    )
    operation_concurrency: int = Field(
        default=4, alias="OPERATION_CONCURRENCY", ge=1, le=8
    )
    backoff_base_seconds: float = Field(
        default=0.4, alias="BACKOFF_BASE_SECONDS", ge=0
    )
    backoff_jitter_seconds: float = Field(
        default=0.15, alias="BACKOFF_JITTER_SECONDS", ge=0
    )
    request_timeout_seconds: float = Field(
        default=20.0, alias="REQUEST_TIMEOUT", gt=0
    )
    options_cache_seconds: float = Field(
        default=30.0, alias="OPTIONS_CACHE_TTL", ge=0
    )

    executor_ready_timeout_seconds: float = Field(
        default=30.0, alias="EXECUTOR_READY_TIMEOUT", gt=0
    )
    executor_grace_seconds: float = Field(
        default=1.0, alias="EXECUTOR_GRACE_SECONDS", ge=0
    )
    delivery_attempts: int = Field(default=3, alias="DELIVERY_ATTEMPTS", ge=1, le=10)
    delivery_retry_delay_seconds: float = Field(
        default=0.5, alias="DELIVERY_RETRY_DELAY", ge=0
    )
    trusted_surfaces: tuple[str, ...] = Field(
        default=DEFAULT_TRUSTED_SURFACES, alias="TRUSTED_SURFACES"
    )

    undo_limit: int = Field(default=50, alias="UNDO_LIMIT", ge=1, le=500)
    watched_override_retention_days: int = Field(
        default=90, alias="WATCHED_OVERRIDE_RETENTION_DAYS", ge=1
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./tubequeue.db", alias="DATABASE_URL"
    )

    @field_validator("trusted_surfaces", mode="before")
    @classmethod
    def _parse_trusted_surfaces(cls, value: object) -> tuple[str, ...]:
        """Normalise surface names from comma separated environment values."""

        if value is None:
            return DEFAULT_TRUSTED_SURFACES
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("TRUSTED_SURFACES must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            slug = entry.lower().strip("/")
            if slug.endswith(".html"):
                slug = slug[: -len(".html")]
            if slug and slug not in cleaned:
                cleaned.append(slug)
        if not cleaned:
            return DEFAULT_TRUSTED_SURFACES
        return tuple(cleaned)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    @property
    def origin(self) -> str:
        """Return the platform origin without a trailing slash."""

        return str(self.youtube_origin).rstrip("/")

    @property
    def locale_parts(self) -> tuple[str, str]:
        """Split the configured locale into InnerTube ``hl``/``gl`` values."""

        normalized = (self.locale or "en-US").replace("_", "-")
        hl_raw, _, gl_raw = normalized.partition("-")
        return (hl_raw or "en").lower(), (gl_raw or "US").upper()

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]
