"""
FastAPI routes for the HubSpot OAuth bridge.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from typing import Annotated, Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from app.api.security import require_hubspot_signature
from app.clients.hubspot_api import HubSpotClient
from app.clients.hubspot_auth import OAuthStateError
from app.core.errors import (
    ExchangeFailedError,
    HubSpotIntegrationError,
    InvalidResponseError,
    MisconfiguredClientError,
    NotAuthorizedError,
    RefreshFailedError,
    StoreError,
)
from app.dependencies import (
    get_app_settings,
    get_hubspot_client,
    get_hubspot_oauth_client,
    get_hubspot_token_service,
    get_oauth_state_encoder,
)
from app.schemas import (
    AuthorizationUrlResponse,
    ConnectionResult,
    ContactListResponse,
    RefreshRequest,
    RefreshResult,
)

router = APIRouter()
logger = logging.getLogger(__name__)

_REAUTHORIZE_HINT = "Reauthorize the app via /api/oauth/install."


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "").lower()


def _append_query(url: str, **params: Any) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, str(value)) for key, value in params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _http_error(exc: HubSpotIntegrationError) -> HTTPException:
    """Translate a core failure into the response the caller can act on."""
    if isinstance(exc, (NotAuthorizedError, RefreshFailedError)):
        return HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail={"error": str(exc), "action": "reauthorize", "hint": _REAUTHORIZE_HINT},
        )
    if isinstance(exc, StoreError):
        return HTTPException(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            detail={"error": "Token storage is temporarily unavailable.", "retryable": True},
        )
    if isinstance(exc, InvalidResponseError):
        return HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, ExchangeFailedError):
        return HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=str(exc))


def _decode_state(state_encoder: Any, state: str, ttl_seconds: int) -> dict:
    try:
        state_data = state_encoder.decode(state)
    except OAuthStateError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc

    issued_at_raw = state_data.get("issued_at")
    if not issued_at_raw:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Missing issued_at in state token.",
        )
    try:
        issued_at = datetime.fromisoformat(issued_at_raw)
    except ValueError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Invalid issued_at in state token.",
        ) from exc
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)

    if datetime.now(timezone.utc) - issued_at > timedelta(seconds=ttl_seconds):
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST, detail="OAuth state token has expired."
        )
    return state_data


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/oauth/install", status_code=HTTPStatus.OK)
async def start_hubspot_install(
    request: Request,
    oauth_client: Annotated[Any, Depends(get_hubspot_oauth_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    redirect_to: Optional[str] = Query(
        default=None,
        description="Optional URL to send the browser to once the install completes.",
    ),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the HubSpot consent screen.",
    ),
) -> Response:
    """Kick off the install by generating a state token and the consent URL."""
    state = state_encoder.encode(
        {
            "nonce": uuid.uuid4().hex,
            "redirect_to": redirect_to,
            "issued_at": datetime.now(timezone.utc).isoformat(),
        }
    )
    authorization_url = oauth_client.build_authorization_url(state=state)

    if redirect or _wants_html(request):
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)

    payload = AuthorizationUrlResponse(authorization_url=authorization_url, state=state)
    return JSONResponse(content=payload.model_dump())


@router.get("/oauth/callback", status_code=HTTPStatus.OK)
async def handle_hubspot_oauth_callback(
    request: Request,
    oauth_client: Annotated[Any, Depends(get_hubspot_oauth_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    token_service: Annotated[Any, Depends(get_hubspot_token_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    code: Optional[str] = Query(None, description="Authorization code returned by HubSpot."),
    state: Optional[str] = Query(None, description="OAuth state token."),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    redirect: bool = Query(
        default=False,
        description="When true, redirect browser clients instead of returning JSON.",
    ),
) -> Response:
    """Complete the install: exchange the code, resolve the portal, store tokens."""
    if error:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail=f"OAuth Error: {error} {error_description or ''}".strip(),
        )
    if not code:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST, detail="No authorization code provided"
        )
    if not state:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="Missing OAuth state")

    state_data = _decode_state(state_encoder, state, settings.oauth.state_ttl_seconds)

    try:
        grant = await oauth_client.exchange_authorization_code(code)
    except ExchangeFailedError as exc:
        logger.warning("Authorization code exchange failed: %s", exc.status_code)
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail=f"Failed to exchange code for tokens: {exc.body or exc}",
        ) from exc
    except httpx.HTTPError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY, detail="HubSpot token endpoint unreachable."
        ) from exc

    try:
        portal_id = await oauth_client.fetch_portal_id(grant.access_token)
    except (ExchangeFailedError, MisconfiguredClientError, httpx.HTTPError) as exc:
        logger.error("Could not resolve portal for new access token: %s", exc)
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY, detail="Failed to get account information"
        ) from exc

    try:
        await token_service.save_authorization(portal_id, grant)
    except StoreError as exc:
        logger.exception("Failed to store tokens for portal %s", portal_id)
        raise _http_error(exc) from exc

    result = ConnectionResult(portal_id=portal_id, redirect_to=state_data.get("redirect_to"))
    redirect_target = result.redirect_to or settings.frontend_base_url
    if redirect_target and (redirect or _wants_html(request)):
        return RedirectResponse(
            url=_append_query(str(redirect_target), portal_id=portal_id),
            status_code=HTTPStatus.TEMPORARY_REDIRECT,
        )

    return JSONResponse(content=result.model_dump())


async def _refresh_portal(token_service: Any, portal_id: int) -> RefreshResult:
    try:
        await token_service.force_refresh(portal_id)
    except HubSpotIntegrationError as exc:
        raise _http_error(exc) from exc
    cached = token_service.cached(portal_id)
    return RefreshResult(portal_id=portal_id, expires_at=cached.expires_at)


@router.get("/oauth/refresh", status_code=HTTPStatus.OK, response_model=RefreshResult)
async def refresh_portal_tokens(
    token_service: Annotated[Any, Depends(get_hubspot_token_service)],
    portal_id: int = Query(..., gt=0, description="HubSpot portal whose tokens to refresh."),
) -> RefreshResult:
    """Force a token refresh for a portal."""
    return await _refresh_portal(token_service, portal_id)


@router.post("/oauth/refresh", status_code=HTTPStatus.OK, response_model=RefreshResult)
async def refresh_portal_tokens_post(
    payload: RefreshRequest,
    token_service: Annotated[Any, Depends(get_hubspot_token_service)],
) -> RefreshResult:
    return await _refresh_portal(token_service, payload.portal_id)


@router.api_route(
    "/example-api",
    methods=["GET", "POST"],
    status_code=HTTPStatus.OK,
    response_model=ContactListResponse,
    dependencies=[Depends(require_hubspot_signature)],
)
async def list_portal_contacts(
    hubspot: Annotated[HubSpotClient, Depends(get_hubspot_client)],
    portal_id: Optional[int] = Query(
        None,
        alias="portalId",
        description="Portal id HubSpot appends to extension and card requests.",
    ),
) -> ContactListResponse:
    """Fetch a page of CRM contacts for the calling portal."""
    if not portal_id or portal_id <= 0:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST, detail="Valid portalId is required"
        )

    try:
        response = await hubspot.request(
            portal_id, "GET", "/crm/v3/objects/contacts", params={"limit": 10}
        )
        if response.status_code == HTTPStatus.UNAUTHORIZED:
            raise HTTPException(
                status_code=HTTPStatus.UNAUTHORIZED,
                detail={"error": "HubSpot rejected the portal's token.", "action": "reauthorize"},
            )
        if not response.is_success:
            raise HTTPException(
                status_code=HTTPStatus.BAD_GATEWAY,
                detail=f"HubSpot API error: {response.status_code}",
            )
        payload = HubSpotClient.parse_json(response) or {}
    except HubSpotIntegrationError as exc:
        raise _http_error(exc) from exc
    except httpx.HTTPError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY, detail="HubSpot API unreachable."
        ) from exc

    return ContactListResponse(portal_id=portal_id, contacts=payload.get("results", []))


__all__ = ["router"]
