"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


KNOWN_MIRRORS: tuple[str, ...] = ("animeindo", "oploverz")
DEFAULT_BLACKLIST: tuple[str, ...] = ("apk", "komiku plus")


def _split_values(value: object, *, name: str) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    if isinstance(value, Iterable):
        return [str(part).strip() for part in value]
    raise TypeError(f"{name} must be a string or iterable of strings")


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="TanyaAyomi", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    provider_base_url: HttpUrl = Field(
        default="https://www.sankavollerei.com", alias="PROVIDER_BASE_URL"
    )
    provider_rate_capacity: int = Field(
        default=70, alias="PROVIDER_RATE_CAPACITY", ge=1, le=10_000
    )
    provider_rate_refill_ms: int = Field(
        default=857, alias="PROVIDER_RATE_REFILL_MS", ge=1
    )
    provider_timeout_seconds: float = Field(
        default=20.0, alias="PROVIDER_TIMEOUT", gt=0
    )
    mirror_timeout_seconds: float = Field(default=15.0, alias="MIRROR_TIMEOUT", gt=0)
    mirror_providers: tuple[str, ...] | str = Field(
        default=KNOWN_MIRRORS, alias="MIRROR_PROVIDERS"
    )
    http_proxy: str | None = Field(default=None, alias="HTTP_PROXY")

    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-1.5-flash", alias="GEMINI_MODEL")
    gemini_api_url: HttpUrl = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_API_URL",
    )
    ai_timeout_seconds: float = Field(default=30.0, alias="AI_TIMEOUT", gt=0)

    enrichment_cache_seconds: int = Field(
        default=3_600, alias="ENRICHMENT_CACHE_SECONDS", ge=1
    )
    enrichment_concurrency: int = Field(
        default=5, alias="ENRICHMENT_CONCURRENCY", ge=1, le=50
    )
    cache_sweep_seconds: int = Field(default=60, alias="CACHE_SWEEP_SECONDS", ge=1)

    title_blacklist: tuple[str, ...] | str = Field(
        default=DEFAULT_BLACKLIST, alias="TITLE_BLACKLIST"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./tanyaayomi.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("mirror_providers", mode="before")
    @classmethod
    def _parse_mirror_providers(cls, value: object) -> tuple[str, ...]:
        """Normalise mirror selections from environment values."""

        if value is None:
            return KNOWN_MIRRORS
        cleaned: list[str] = []
        for entry in _split_values(value, name="MIRROR_PROVIDERS"):
            key = entry.replace("-", "").replace("_", "").replace(" ", "").lower()
            if not key:
                continue
            if key not in KNOWN_MIRRORS:
                raise ValueError(f"Unknown mirror provider configured: {entry}")
            if key not in cleaned:
                cleaned.append(key)
        return tuple(cleaned)

    @field_validator("title_blacklist", mode="before")
    @classmethod
    def _parse_title_blacklist(cls, value: object) -> tuple[str, ...]:
        if value is None:
            return DEFAULT_BLACKLIST
        cleaned: list[str] = []
        for entry in _split_values(value, name="TITLE_BLACKLIST"):
            lowered = entry.lower()
            if lowered and lowered not in cleaned:
                cleaned.append(lowered)
        return tuple(cleaned)

    @property
    def provider_refill_seconds(self) -> float:
        return self.provider_rate_refill_ms / 1000.0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
