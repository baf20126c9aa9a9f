"""Mirror configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SEVEN_DAYS_SECONDS = 7 * 24 * 60 * 60


class Settings(BaseSettings):
    """unixmirror settings."""

    model_config = SettingsConfigDict(
        env_prefix="UNIXMIRROR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///data/unixmirror.db"
    debug: bool = False

    # Mirrors
    suffix: str = Field(default="_unix", min_length=1)
    existence_ttl_seconds: int = Field(default=SEVEN_DAYS_SECONDS, ge=0)
    default_timezone: str = "UTC"

    # CLI model discovery, as "package.module:ClassName"
    models: list[str] = Field(default_factory=list)
