"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from app.clients import (
    HubSpotClient,
    HubSpotOAuthClient,
    OAuthStateEncoder,
    SQLiteTokenStore,
)
from app.core.config import get_settings
from app.services import HubSpotTokenService, TokenCipherService


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Provide an OAuth state encoder derived from the HubSpot client secret."""
    settings = _settings()
    return OAuthStateEncoder(secret_key=settings.hubspot.client_secret)


@lru_cache()
def get_hubspot_oauth_client() -> HubSpotOAuthClient:
    """Create a singleton HubSpot OAuth client."""
    settings = _settings()
    return HubSpotOAuthClient(settings.hubspot, settings.oauth)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.hubspot.client_secret
    return TokenCipherService(
        secret=secret,
        previous_secrets=settings.security.token_encryption_previous_secrets,
    )


@lru_cache()
def get_token_store() -> SQLiteTokenStore:
    """Provide the shared SQLite token store."""
    settings = _settings()
    return SQLiteTokenStore(settings.storage.token_db_path, get_token_cipher_service())


@lru_cache()
def get_hubspot_token_service() -> HubSpotTokenService:
    """Provide the process-wide token cache and refresher."""
    return HubSpotTokenService(
        store=get_token_store(),
        oauth_client=get_hubspot_oauth_client(),
    )


@lru_cache()
def get_hubspot_client() -> HubSpotClient:
    """Provide the authenticated HubSpot API client."""
    settings = _settings()
    return HubSpotClient(
        get_hubspot_token_service(),
        base_url=settings.hubspot.api_base_url,
        timeout=settings.hubspot.http_timeout,
    )


__all__ = [
    "get_hubspot_client",
    "get_hubspot_oauth_client",
    "get_hubspot_token_service",
    "get_oauth_state_encoder",
    "get_token_cipher_service",
    "get_token_store",
]
