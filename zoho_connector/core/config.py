"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI routes, the bulk export worker
and the maintenance scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ALLOWED_ENVIRONMENTS = ("", "development", "stage", "production")
DEFAULT_SCOPES = (
    "ZohoCreator.report.ALL",
    "ZohoCreator.form.CREATE",
    "ZohoCreator.bulk.CREATE",
    "ZohoCreator.bulk.READ",
)


class ZohoSettings(BaseSettings):
    """Credentials and target application for the Zoho Creator API."""

    model_config = SettingsConfigDict(
        env_prefix="ZOHO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    account_domain: str = Field("eu", description="Zoho data center suffix (eu, com, in...).")
    accounts_url: Optional[AnyHttpUrl] = Field(
        None,
        description="Override for the OAuth server; derived from account_domain when omitted.",
    )
    api_url: Optional[AnyHttpUrl] = Field(
        None,
        description="Override for the Creator API server; derived from account_domain when omitted.",
    )
    client_id: str = Field(..., description="OAuth client identifier.")
    client_secret: str = Field(..., description="OAuth client secret.")
    redirect_uri: AnyHttpUrl = Field(
        ..., description="Callback registered for the authorization-code flow."
    )
    user: str = Field(..., description="Account owner name of the Creator application.")
    app_name: str = Field(..., description="Link name of the Creator application.")
    scope: Annotated[tuple[str, ...], NoDecode] = Field(
        DEFAULT_SCOPES,
        description="OAuth scopes requested during consent.",
    )
    environment: str = Field(
        "",
        description="Value of the 'environment' header sent with every API call.",
    )

    @field_validator("scope", mode="before")
    @classmethod
    def _split_scopes(cls, value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope.strip() for scope in value.split(",") if scope.strip())

    @field_validator("environment")
    @classmethod
    def _check_environment(cls, value: str) -> str:
        cleaned = (value or "").strip()
        if cleaned not in ALLOWED_ENVIRONMENTS:
            raise ValueError(
                f"ZOHO_ENVIRONMENT is not set correctly ({value}). "
                "Choices are: empty, development, stage or production."
            )
        return cleaned

    @property
    def base_account_url(self) -> str:
        if self.accounts_url:
            return str(self.accounts_url).rstrip("/")
        return f"https://accounts.zoho.{self.account_domain}"

    @property
    def api_base_url(self) -> str:
        if self.api_url:
            return str(self.api_url).rstrip("/")
        return f"https://www.zohoapis.{self.account_domain}"

    @property
    def token_url(self) -> str:
        return f"{self.base_account_url}/oauth/v2/token"


class TokenSettings(BaseSettings):
    """Token lifecycle tuning."""

    model_config = SettingsConfigDict(
        env_prefix="ZOHO_TOKEN_", env_file=".env", extra="ignore"
    )

    refresh_buffer_seconds: int = Field(
        60,
        ge=0,
        description="Tokens are treated as expired this many seconds before their deadline.",
    )
    clear_on_invalid_grant: bool = Field(
        True,
        description="Drop the stored token when Zoho rejects the refresh token itself.",
    )
    max_refresh_failures: int = Field(
        3,
        ge=0,
        description="Consecutive refresh failures before the token is dropped (0 disables).",
    )
    http_timeout_seconds: float = Field(10.0, gt=0)


class BulkSettings(BaseSettings):
    """Bulk export pipeline tuning."""

    model_config = SettingsConfigDict(
        env_prefix="ZOHO_BULK_", env_file=".env", extra="ignore"
    )

    storage_root: Path = Field(
        Path("storage/zoho/bulk"),
        description="Directory receiving downloaded archives and produced JSON files.",
    )
    max_records: int = Field(200000, gt=0, le=200000)
    poll_interval_seconds: float = Field(10.0, ge=0)
    poll_backoff_factor: float = Field(1.5, ge=1.0)
    poll_max_interval_seconds: float = Field(60.0, ge=0)
    poll_max_wait_seconds: float = Field(
        3600.0,
        gt=0,
        description="Upper bound on the time spent waiting for Zoho to complete a job.",
    )
    http_timeout_seconds: float = Field(60.0, gt=0)
    callback_timeout_seconds: float = Field(10.0, gt=0)
    max_concurrent_jobs: int = Field(4, gt=0)
    worker_poll_interval_seconds: float = Field(1.0, gt=0)
    request_attempts: int = Field(3, gt=0)
    request_backoff_seconds: float = Field(1.0, ge=0)


class StorageSettings(BaseSettings):
    """Local persistence for tokens, bulk history and the job queue."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    database_path: str = Field("data/zoho_connector.db", validation_alias="ZOHO_DATABASE_PATH")
    tokens_table_name: str = Field(
        "zoho_connector_tokens", validation_alias="ZOHO_TOKENS_TABLE_NAME"
    )
    bulks_table_name: str = Field(
        "zoho_connector_bulk_history", validation_alias="ZOHO_BULKS_TABLE_NAME"
    )

    @field_validator("tokens_table_name", "bulks_table_name")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        if not value.replace("_", "").isalnum():
            raise ValueError("Table names may only contain letters, digits and underscores.")
        return value


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    oauth_state_ttl_seconds: int = Field(900, validation_alias="OAUTH_STATE_TTL")


class AppSettings(BaseSettings):
    """Root settings object for the connector."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back once OAuth completes.",
    )
    zoho: ZohoSettings = Field(default_factory=ZohoSettings)
    token: TokenSettings = Field(default_factory=TokenSettings)
    bulk: BulkSettings = Field(default_factory=BulkSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


def load_settings(env_file: str | Path) -> AppSettings:
    """Build settings from a specific env file instead of ``./.env``."""
    return AppSettings(  # type: ignore[call-arg]
        _env_file=env_file,
        zoho=ZohoSettings(_env_file=env_file),  # type: ignore[call-arg]
        token=TokenSettings(_env_file=env_file),
        bulk=BulkSettings(_env_file=env_file),
        storage=StorageSettings(_env_file=env_file),
        security=SecuritySettings(_env_file=env_file),
    )


__all__ = [
    "ALLOWED_ENVIRONMENTS",
    "DEFAULT_SCOPES",
    "AppSettings",
    "BulkSettings",
    "SecuritySettings",
    "StorageSettings",
    "TokenSettings",
    "ZohoSettings",
    "get_settings",
    "load_settings",
]
