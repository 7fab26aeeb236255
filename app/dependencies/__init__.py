"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_hubspot_client,
    get_hubspot_oauth_client,
    get_hubspot_token_service,
    get_oauth_state_encoder,
    get_token_cipher_service,
    get_token_store,
)
from .config import get_app_settings, get_security_settings

__all__ = [
    "get_app_settings",
    "get_hubspot_client",
    "get_hubspot_oauth_client",
    "get_hubspot_token_service",
    "get_oauth_state_encoder",
    "get_security_settings",
    "get_token_cipher_service",
    "get_token_store",
]
