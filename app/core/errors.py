"""
Error taxonomy shared by the HubSpot OAuth, token and API layers.

Services raise these; only the HTTP layer maps them onto status codes.
"""

from __future__ import annotations


class HubSpotIntegrationError(Exception):
    """Base class for every failure surfaced by the integration core."""


class NotAuthorizedError(HubSpotIntegrationError):
    """No OAuth tokens are on file for the requested portal."""

    def __init__(self, portal_id: int) -> None:
        super().__init__(f"No OAuth tokens found for portal {portal_id}.")
        self.portal_id = portal_id


class RefreshFailedError(HubSpotIntegrationError):
    """HubSpot rejected the refresh token or the refresh call did not complete.

    Usually terminal for the portal until it is re-authorized.
    """

    def __init__(self, portal_id: int, detail: str) -> None:
        super().__init__(f"Token refresh failed for portal {portal_id}: {detail}")
        self.portal_id = portal_id
        self.detail = detail


class StoreError(HubSpotIntegrationError):
    """The token store is unreachable or returned an unusable row."""


class ExchangeFailedError(HubSpotIntegrationError):
    """The token endpoint answered a grant request with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MisconfiguredClientError(HubSpotIntegrationError):
    """Static OAuth configuration is missing, or an exchange lacks its account key."""


class InvalidResponseError(HubSpotIntegrationError):
    """HubSpot returned a body that could not be parsed as JSON."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


__all__ = [
    "ExchangeFailedError",
    "HubSpotIntegrationError",
    "InvalidResponseError",
    "MisconfiguredClientError",
    "NotAuthorizedError",
    "RefreshFailedError",
    "StoreError",
]
