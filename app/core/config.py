"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the token service and the
maintenance scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import (
    AnyHttpUrl,
    Field,
    HttpUrl,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


_HTTP_URL = TypeAdapter(AnyHttpUrl)


def _split_csv(value: str | tuple[str, ...] | list[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (tuple, list)):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


class _Settings(BaseSettings):
    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")


class HubSpotSettings(_Settings):
    """Configuration required for talking to HubSpot's OAuth and CRM APIs."""

    client_id: str = Field(..., validation_alias="HUBSPOT_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="HUBSPOT_CLIENT_SECRET")
    redirect_uri: str = Field(
        ...,
        validation_alias="HUBSPOT_REDIRECT_URI",
        description="Sent to HubSpot exactly as configured; it must match the app settings.",
    )
    api_base_url: str = Field(
        "https://api.hubapi.com",
        validation_alias="HUBSPOT_API_BASE_URL",
        description="Origin prepended to relative API paths.",
    )
    authorize_url: str = Field(
        "https://app.hubspot.com/oauth/authorize",
        validation_alias="HUBSPOT_AUTHORIZE_URL",
    )
    http_timeout: float = Field(15.0, validation_alias="HUBSPOT_HTTP_TIMEOUT")

    @field_validator("redirect_uri")
    @classmethod
    def _check_redirect_uri(cls, value: str) -> str:
        # Blank values are reported by HubSpotOAuthClient as misconfiguration.
        if value.strip():
            try:
                _HTTP_URL.validate_python(value)
            except ValidationError as exc:
                raise ValueError("must be an absolute http(s) URL") from exc
        return value


class OAuthSettings(_Settings):
    """OAuth flow configuration."""

    state_ttl_seconds: int = Field(900, validation_alias="OAUTH_STATE_TTL")
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "oauth",
            "crm.objects.contacts.read",
            "crm.objects.contacts.write",
        ),
        validation_alias="OAUTH_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)


class StorageSettings(_Settings):
    """Where OAuth token rows are persisted."""

    token_db_path: str = Field(
        "data/oauth_tokens.sqlite3", validation_alias="TOKEN_DB_PATH"
    )


class SecuritySettings(_Settings):
    """Security-related configuration."""

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    token_encryption_previous_secrets: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        validation_alias="TOKEN_ENCRYPTION_PREVIOUS_SECRETS",
        description="Retired secrets still accepted when decrypting stored tokens.",
    )
    require_signature: bool = Field(True, validation_alias="REQUIRE_HUBSPOT_SIGNATURE")
    signature_max_age_ms: int = Field(300_000, validation_alias="SIGNATURE_MAX_AGE_MS")
    public_base_url: Optional[str] = Field(
        None,
        validation_alias="PUBLIC_BASE_URL",
        description=(
            "Externally visible origin (and optional path prefix) HubSpot calls. "
            "Used to rebuild the signed URL when a proxy rewrites requests."
        ),
    )
    signature_path_prefix: str = Field(
        "",
        validation_alias="SIGNATURE_PATH_PREFIX",
        description="Path prefix stripped by the serving layer, e.g. /functions/v1.",
    )
    trust_forwarded_headers: bool = Field(
        False, validation_alias="TRUST_FORWARDED_HEADERS"
    )

    @field_validator("token_encryption_previous_secrets", mode="before")
    @classmethod
    def _split_previous(cls, value):
        return _split_csv(value)


class AppSettings(_Settings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        populate_by_name=True,
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users after a successful install.",
    )
    cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        (), validation_alias="CORS_ORIGINS"
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    hubspot: HubSpotSettings = Field(default_factory=HubSpotSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        return _split_csv(value)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "HubSpotSettings",
    "OAuthSettings",
    "SecuritySettings",
    "StorageSettings",
    "get_settings",
]
