from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import AnyHttpUrl, AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Database credentials are optional: when any of them is missing the service
    falls back to a local SQLite file so it can run without MySQL.
    """

    app_name: str = Field(default="ticketsync", validation_alias="APP_NAME")
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    database_host: str | None = Field(default=None, validation_alias="DB_HOST")
    database_user: str | None = Field(default=None, validation_alias="DB_USER")
    database_password: str | None = Field(default=None, validation_alias="DB_PASSWORD")
    database_name: str | None = Field(default=None, validation_alias="DB_NAME")
    sqlite_path: Path | None = Field(default=None, validation_alias="SQLITE_PATH")
    migration_lock_timeout: int = Field(
        default=60, validation_alias="MIGRATION_LOCK_TIMEOUT"
    )
    redis_url: str | None = Field(default=None, validation_alias="REDIS_URL")
    allowed_origins: List[AnyHttpUrl] = Field(
        default_factory=list,
        validation_alias="ALLOWED_ORIGINS",
    )
    identity_header: str = Field(
        default="X-Authenticated-User-Id", validation_alias="IDENTITY_HEADER"
    )
    azure_devops_base_url: AnyHttpUrl | None = Field(
        default=None,
        validation_alias=AliasChoices("AZURE_DEVOPS_BASE_URL", "AZURE_DEVOPS_ORGANIZATION_URL"),
    )
    azure_devops_pat: str | None = Field(default=None, validation_alias="AZURE_DEVOPS_PAT")
    azure_devops_api_version: str = Field(
        default="7.1", validation_alias="AZURE_DEVOPS_API_VERSION"
    )
    azure_devops_timeout: float = Field(default=15.0, validation_alias="AZURE_DEVOPS_TIMEOUT")
    webhook_service_principal: str = Field(
        default="ticketsync", validation_alias="WEBHOOK_SERVICE_PRINCIPAL"
    )
    webhook_username: str | None = Field(default=None, validation_alias="WEBHOOK_USERNAME")
    webhook_password: str | None = Field(default=None, validation_alias="WEBHOOK_PASSWORD")
    log_file_path: Path | None = Field(default=None, validation_alias="LOG_FILE_PATH")

    @field_validator("azure_devops_base_url", "redis_url", "log_file_path", mode="before")
    @classmethod
    def _empty_string_to_none(cls, value):  # type: ignore[override]
        """Coerce blank environment variables to ``None`` so optional values stay optional."""

        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    model_config = SettingsConfigDict(
        env_file=(Path(__file__).resolve().parent.parent.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
