"""
HubSpot OAuth utilities.

These helpers build the install URL, speak the token endpoint protocol for the
authorization-code and refresh-token grants, and resolve the portal behind a
freshly issued access token.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
from hashlib import sha256
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import httpx

from app.core.config import HubSpotSettings, OAuthSettings
from app.core.errors import ExchangeFailedError, MisconfiguredClientError
from app.models.oauth import TokenGrant

logger = logging.getLogger(__name__)


class OAuthStateError(ValueError):
    """Raised when an OAuth state value is malformed or tampered with."""


class OAuthStateEncoder:
    """Encode and decode OAuth state values to guard against tampering."""

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key.encode("utf-8")

    def encode(self, payload: Dict[str, Any]) -> str:
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized.encode("utf-8")).decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            decoded = base64.urlsafe_b64decode(token.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise OAuthStateError("Malformed OAuth state.") from exc
        signature, serialized = decoded[:32], decoded[32:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise OAuthStateError("Invalid OAuth state signature.")
        return json.loads(serialized)


class HubSpotOAuthClient:
    """Build HubSpot authorization URLs and exchange grants for token pairs."""

    TOKEN_PATH = "/oauth/v1/token"
    TOKEN_INFO_PATH = "/oauth/v1/access-tokens/"

    def __init__(
        self,
        hubspot_settings: HubSpotSettings,
        oauth_settings: OAuthSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        missing = [
            name
            for name, value in (
                ("client_id", hubspot_settings.client_id),
                ("client_secret", hubspot_settings.client_secret),
                ("redirect_uri", hubspot_settings.redirect_uri),
            )
            if not value or not value.strip()
        ]
        if missing:
            raise MisconfiguredClientError(
                f"HubSpot OAuth client is missing: {', '.join(missing)}"
            )
        self._hubspot = hubspot_settings
        self._oauth = oauth_settings
        self._transport = transport

    @property
    def token_url(self) -> str:
        return f"{self._hubspot.api_base_url.rstrip('/')}{self.TOKEN_PATH}"

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._hubspot.http_timeout, transport=self._transport)

    def build_authorization_url(self, state: str) -> str:
        """Construct the HubSpot install (consent) URL."""
        params = {
            "client_id": self._hubspot.client_id,
            "redirect_uri": self._hubspot.redirect_uri,
            "scope": " ".join(self._oauth.scopes),
            "state": state,
        }
        return f"{self._hubspot.authorize_url}?{urlencode(params, quote_via=quote)}"

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for an access/refresh token pair."""
        return await self._request_grant(
            {"grant_type": "authorization_code", "code": code}
        )

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Trade a refresh token for a new pair; HubSpot rotates the refresh token."""
        return await self._request_grant(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def fetch_portal_id(self, access_token: str) -> int:
        """Look up the ``hub_id`` an access token was issued for."""
        url = (
            f"{self._hubspot.api_base_url.rstrip('/')}{self.TOKEN_INFO_PATH}"
            f"{quote(access_token, safe='')}"
        )
        async with self._http_client() as client:
            response = await client.get(url)

        if not response.is_success:
            raise ExchangeFailedError(
                "Failed to get account information for the new access token.",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            token_info = response.json()
        except ValueError as exc:
            raise ExchangeFailedError(
                "Token info endpoint returned non-JSON content.",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        hub_id = token_info.get("hub_id") if isinstance(token_info, dict) else None
        if not hub_id:
            raise MisconfiguredClientError("Token info response did not include a hub_id.")
        try:
            return int(hub_id)
        except (TypeError, ValueError) as exc:
            raise MisconfiguredClientError(
                f"Token info response carried a non-numeric hub_id: {hub_id!r}"
            ) from exc

    async def _request_grant(self, grant: Dict[str, str]) -> TokenGrant:
        payload = {
            "client_id": self._hubspot.client_id,
            "client_secret": self._hubspot.client_secret,
            "redirect_uri": self._hubspot.redirect_uri,
            **grant,
        }

        async with self._http_client() as client:
            response = await client.post(self.token_url, data=payload)

        if not response.is_success:
            logger.warning(
                "HubSpot %s grant rejected with status %s",
                grant["grant_type"],
                response.status_code,
            )
            raise ExchangeFailedError(
                f"HubSpot token endpoint returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise ExchangeFailedError(
                "HubSpot token endpoint returned non-JSON content.",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        access_token = token_payload.get("access_token")
        refresh_token = token_payload.get("refresh_token")
        expires_in = token_payload.get("expires_in")
        if not access_token or not refresh_token or expires_in is None:
            raise ExchangeFailedError(
                "Incomplete token payload returned from HubSpot.",
                status_code=response.status_code,
                body=response.text,
            )

        scopes = token_payload.get("scopes") or token_payload.get("scope") or []
        if isinstance(scopes, str):
            scopes = scopes.split()

        return TokenGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(expires_in),
            scopes=list(scopes),
        )


__all__ = [
    "HubSpotOAuthClient",
    "OAuthStateEncoder",
    "OAuthStateError",
]
