"""HubSpot REST client that injects portal bearer tokens."""

from __future__ import annotations

import json
import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Mapping, Optional
from urllib.parse import urlsplit

import httpx

from app.core.errors import InvalidResponseError

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from app.services.hubspot_tokens import HubSpotTokenService

logger = logging.getLogger(__name__)


class HubSpotClient:
    """Issue authenticated calls to the HubSpot API on behalf of a portal.

    A 401 answer triggers exactly one forced token refresh followed by a single
    replay of the same request. Whatever the replay returns is final.
    """

    def __init__(
        self,
        token_service: "HubSpotTokenService",
        *,
        base_url: str = "https://api.hubapi.com",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._tokens = token_service
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def resolve_url(self, path_or_url: str) -> str:
        """Absolute URLs pass through; anything else is joined to the API origin."""
        if urlsplit(path_or_url).scheme:
            return path_or_url
        if not path_or_url.startswith("/"):
            path_or_url = f"/{path_or_url}"
        return f"{self._base_url}{path_or_url}"

    async def request(
        self,
        portal_id: int,
        method: str,
        path_or_url: str,
        *,
        body: str | bytes | None = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        """Perform one logical call and return the raw response.

        Caller headers override the defaults. When the caller supplies its own
        ``Authorization`` header the portal's tokens are not used at all and no
        refresh is attempted.
        """
        url = self.resolve_url(path_or_url)
        caller_headers = httpx.Headers(headers or {})
        manages_auth = "authorization" not in caller_headers

        token = await self._tokens.get_access_token(portal_id) if manages_auth else None

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.request(
                method,
                url,
                content=body,
                params=params,
                headers=self._build_headers(token, caller_headers),
            )
            if response.status_code != HTTPStatus.UNAUTHORIZED or not manages_auth:
                return response

            logger.info(
                "HubSpot returned 401 for portal %s on %s %s; retrying after refresh",
                portal_id,
                method,
                urlsplit(url).path,
            )
            token = await self._tokens.force_refresh(portal_id, stale_token=token)
            return await client.request(
                method,
                url,
                content=body,
                params=params,
                headers=self._build_headers(token, caller_headers),
            )

    async def get(
        self, portal_id: int, path_or_url: str, *, params: Optional[Mapping[str, Any]] = None
    ) -> Any:
        response = await self.request(portal_id, "GET", path_or_url, params=params)
        return self.parse_json(response)

    async def post(self, portal_id: int, path_or_url: str, payload: Any) -> Any:
        response = await self.request(portal_id, "POST", path_or_url, body=json.dumps(payload))
        return self.parse_json(response)

    async def patch(self, portal_id: int, path_or_url: str, payload: Any) -> Any:
        response = await self.request(portal_id, "PATCH", path_or_url, body=json.dumps(payload))
        return self.parse_json(response)

    async def delete(self, portal_id: int, path_or_url: str) -> Any:
        response = await self.request(portal_id, "DELETE", path_or_url)
        return self.parse_json(response)

    @staticmethod
    def _build_headers(token: Optional[str], caller_headers: httpx.Headers) -> httpx.Headers:
        merged = httpx.Headers({"Content-Type": "application/json"})
        if token is not None:
            merged["Authorization"] = f"Bearer {token}"
        merged.update(caller_headers)
        return merged

    @staticmethod
    def parse_json(response: httpx.Response) -> Any:
        # 204s and other empty bodies carry nothing to decode.
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise InvalidResponseError(
                f"HubSpot returned non-JSON content (status {response.status_code}).",
                status_code=response.status_code,
            ) from exc


__all__ = ["HubSpotClient"]
