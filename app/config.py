"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="SteamBubbles", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=5174, alias="PORT")

    backend_url: str = Field(
        default="https://steambubbles.onrender.com", alias="BACKEND_URL"
    )
    frontend_url: str = Field(default="http://localhost:5173", alias="FRONTEND_URL")
    client_origin: str | None = Field(default=None, alias="CLIENT_ORIGIN")

    steam_api_key: str | None = Field(
        default=None,
        alias="STEAM_API_KEY",
        validation_alias=AliasChoices("STEAM_API_KEY", "STEAM_KEY"),
    )
    steam_return_url: str | None = Field(default=None, alias="STEAM_RETURN_URL")
    steam_realm: str | None = Field(default=None, alias="STEAM_REALM")

    steam_api_url: HttpUrl = Field(
        default="https://api.steampowered.com", alias="STEAM_API_URL"
    )
    steam_store_url: HttpUrl = Field(
        default="https://store.steampowered.com", alias="STEAM_STORE_URL"
    )
    steam_openid_url: HttpUrl = Field(
        default="https://steamcommunity.com/openid/login", alias="STEAM_OPENID_URL"
    )

    default_top_n: int = Field(default=100, alias="DEFAULT_TOP_N", ge=10, le=300)
    appdetails_batch_limit: int = Field(
        default=250, alias="APPDETAILS_BATCH_LIMIT", ge=1, le=1_000
    )

    session_cookie_name: str = Field(default="sb_session", alias="SESSION_COOKIE_NAME")
    session_ttl_seconds: int = Field(
        default=7 * 24 * 3_600, alias="SESSION_TTL", ge=300
    )
    profile_cache_size: int = Field(
        default=500, alias="PROFILE_CACHE_SIZE", ge=1, le=100_000
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./steambubbles.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator(
        "backend_url",
        "frontend_url",
        "client_origin",
        "steam_return_url",
        "steam_realm",
        mode="before",
    )
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        """Normalise URL-ish settings so derived URLs join cleanly."""

        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return None
            return stripped.rstrip("/")
        return value

    @field_validator("steam_api_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _derive_steam_urls(self) -> "Settings":
        """Fill in OpenID and CORS settings that default from other URLs."""

        if not self.client_origin:
            self.client_origin = self.frontend_url
        if not self.steam_return_url:
            self.steam_return_url = f"{self.backend_url}/auth/steam/return"
        if not self.steam_realm:
            self.steam_realm = f"{self.backend_url}/"
        elif not self.steam_realm.endswith("/"):
            self.steam_realm = f"{self.steam_realm}/"
        return self

    @property
    def cookie_secure(self) -> bool:
        """Cross-site cookies are only accepted by browsers over HTTPS."""

        return self.backend_url.startswith("https://")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
