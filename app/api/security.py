"""
FastAPI dependency enforcing HubSpot request signatures.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request

from app.core.config import AppSettings, SecuritySettings
from app.dependencies import get_app_settings, get_security_settings
from app.services.request_signature import (
    SignatureContext,
    SignatureResult,
    reconstruct_external_url,
    validate_signature,
)

logger = logging.getLogger(__name__)


def _first(value: str) -> str:
    return value.split(",")[0].strip()


def build_signature_context(
    request: Request, body: bytes, security: SecuritySettings
) -> SignatureContext:
    """Describe ``request`` as HubSpot saw it.

    The path is taken from the raw, still percent-encoded request target so
    that escapes HubSpot signed are not lost to ASGI path decoding. HubSpot
    only calls HTTPS endpoints, so the scheme is ``https`` unless forwarded
    headers are trusted and say otherwise.
    """
    raw_path = request.scope.get("raw_path")
    # Some ASGI servers include the query string in raw_path.
    path = raw_path.decode("latin-1").split("?", 1)[0] if raw_path else request.url.path
    query = request.scope.get("query_string", b"").decode("latin-1")

    scheme = "https"
    host = request.headers.get("host") or request.url.netloc
    if security.trust_forwarded_headers:
        forwarded_proto = request.headers.get("x-forwarded-proto")
        forwarded_host = request.headers.get("x-forwarded-host")
        if forwarded_proto:
            scheme = _first(forwarded_proto)
        if forwarded_host:
            host = _first(forwarded_host)

    internal_url = f"{scheme}://{host}{path}"
    if query:
        internal_url = f"{internal_url}?{query}"

    external_url = reconstruct_external_url(
        internal_url,
        public_base_url=security.public_base_url,
        path_prefix=security.signature_path_prefix,
    )
    return SignatureContext(
        method=request.method,
        url=external_url,
        body=body,
        headers=dict(request.headers),
    )


async def require_hubspot_signature(
    request: Request,
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    security: Annotated[SecuritySettings, Depends(get_security_settings)],
) -> Optional[SignatureResult]:
    """Reject requests that are not signed by HubSpot with our client secret."""
    if not security.require_signature:
        logger.warning(
            "Signature enforcement disabled; accepting %s %s without verification",
            request.method,
            request.url.path,
        )
        return None

    body = await request.body()
    context = build_signature_context(request, body, security)
    result = validate_signature(
        context,
        settings.hubspot.client_secret,
        max_age_ms=security.signature_max_age_ms,
    )

    if result.version is None:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail=(
                "HubSpot signature required. For development/testing, "
                "set REQUIRE_HUBSPOT_SIGNATURE=false"
            ),
        )
    if not result.valid:
        logger.warning(
            "Rejected %s signature for %s %s", result.version, context.method, context.url
        )
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail="Invalid HubSpot signature",
        )

    logger.info("Valid HubSpot signature (%s)", result.version)
    return result


__all__ = ["build_signature_context", "require_hubspot_signature"]
