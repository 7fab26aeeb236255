"""Expose constructed client wrappers."""

from .hubspot_api import HubSpotClient
from .hubspot_auth import HubSpotOAuthClient, OAuthStateEncoder
from .token_store import SQLiteTokenStore

__all__ = [
    "HubSpotClient",
    "HubSpotOAuthClient",
    "OAuthStateEncoder",
    "SQLiteTokenStore",
]
