"""Service layer exports."""

from .hubspot_tokens import CachedToken, HubSpotTokenService
from .request_signature import SignatureContext, SignatureResult, validate_signature
from .token_cipher import TokenCipherService

__all__ = [
    "CachedToken",
    "HubSpotTokenService",
    "SignatureContext",
    "SignatureResult",
    "TokenCipherService",
    "validate_signature",
]
