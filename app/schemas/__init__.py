"""Public schema exports."""

from .auth import (
    AuthorizationUrlResponse,
    ConnectionResult,
    RefreshRequest,
    RefreshResult,
)
from .hubspot import ContactListResponse

__all__ = [
    "AuthorizationUrlResponse",
    "ConnectionResult",
    "ContactListResponse",
    "RefreshRequest",
    "RefreshResult",
]
