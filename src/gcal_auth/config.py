# Settings for the authorization server.
# Created: 2026-10-18
#
# Values come from GCAL_AUTH_* environment variables or a local .env file.

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Authorization server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GCAL_AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: int = 3080
    # Public base URL; defaults to http://localhost:{port}
    issuer: str = ""
    # The single protected resource (the calendar MCP server) tokens are minted for.
    resource_id: str = "http://localhost:3002"

    google_client_id: str = ""
    google_client_secret: str = ""
    # Defaults to {issuer}/oauth/google/callback
    google_redirect_uri: str = ""

    rotate_refresh_tokens: bool = False
    cleanup_interval_seconds: int = Field(default=3600, gt=0)
    cors_allowed_origins: list[str] = Field(default_factory=list)
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _derive_urls(self) -> Settings:
        if not self.issuer:
            self.issuer = f"http://localhost:{self.port}"
        self.issuer = self.issuer.rstrip("/")
        if not self.google_redirect_uri:
            self.google_redirect_uri = f"{self.issuer}/oauth/google/callback"
        return self

    @classmethod
    def load(cls) -> Settings:
        return cls()


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
