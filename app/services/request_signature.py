"""
HubSpot request signature validation.

HubSpot signs webhook, workflow-action, CRM-card and UI-extension callbacks with
one of three schemes. Which one applies is decided by the headers present on
the request, checked in a fixed order: v3, then v2, then v1.

* v3: base64(HMAC-SHA256(secret, method + uri + body + timestamp)), where the
  uri has a small set of percent-encoded punctuation decoded, and the
  timestamp header must be at most five minutes old.
* v2: hex(SHA-256(secret + method + uri + body)).
* v1: hex(SHA-256(secret + body)).

The uri in every case is the URL HubSpot called, which is not necessarily the
URL this process sees. ``reconstruct_external_url`` rebuilds it.

See https://developers.hubspot.com/docs/api/webhooks/validating-requests
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import re
import time
from dataclasses import dataclass, field
from typing import Dict, Literal, Mapping, Optional
from urllib.parse import urlsplit

SIGNATURE_V3_HEADER = "x-hubspot-signature-v3"
REQUEST_TIMESTAMP_HEADER = "x-hubspot-request-timestamp"
SIGNATURE_VERSION_HEADER = "x-hubspot-signature-version"
SIGNATURE_HEADER = "x-hubspot-signature"

SIGNATURE_HEADERS = (
    SIGNATURE_V3_HEADER,
    REQUEST_TIMESTAMP_HEADER,
    SIGNATURE_VERSION_HEADER,
    SIGNATURE_HEADER,
)

MAX_TIMESTAMP_AGE_MS = 300_000

SignatureVersion = Literal["v1", "v2", "v3"]

_V3_DECODED = {
    "3A": ":",
    "2F": "/",
    "3F": "?",
    "40": "@",
    "21": "!",
    "24": "$",
    "27": "'",
    "28": "(",
    "29": ")",
    "2A": "*",
    "2C": ",",
    "3B": ";",
}
_V3_ENCODED = re.compile(
    "%(" + "|".join(_V3_DECODED) + ")",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class SignatureContext:
    """Everything about one inbound request that a signature can cover."""

    method: str
    url: str
    body: bytes
    headers: Mapping[str, str]
    _normalized: Dict[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(
            self,
            "_normalized",
            {name.lower(): value for name, value in self.headers.items()},
        )

    def header(self, name: str) -> Optional[str]:
        return self._normalized.get(name.lower())


@dataclass(frozen=True)
class SignatureResult:
    """Verdict of a signature check.

    ``version`` is ``None`` only when the request carried no recognisable
    signature headers at all, which callers must not confuse with a request
    that declared a scheme and failed it.
    """

    valid: bool
    version: Optional[SignatureVersion]


def reconstruct_external_url(
    internal_url: str,
    *,
    public_base_url: Optional[str] = None,
    path_prefix: str = "",
) -> str:
    """Rebuild the URL HubSpot signed from the URL this process received.

    ``public_base_url`` replaces the scheme and host (and may carry its own
    path prefix); ``path_prefix`` re-adds a prefix that the serving layer
    stripped before routing, e.g. ``/functions/v1``. Path and query of
    ``internal_url`` are kept byte for byte.
    """
    parts = urlsplit(internal_url)
    path_and_query = parts.path or "/"
    if parts.query:
        path_and_query = f"{path_and_query}?{parts.query}"

    prefix = path_prefix.strip("/")
    prefix = f"/{prefix}" if prefix else ""

    if public_base_url:
        base = public_base_url.rstrip("/")
    else:
        base = f"{parts.scheme}://{parts.netloc}"
    return f"{base}{prefix}{path_and_query}"


def canonicalize_v3_uri(uri: str) -> str:
    """Decode the punctuation escapes HubSpot decodes before v3 signing."""
    return _V3_ENCODED.sub(lambda match: _V3_DECODED[match.group(1).upper()], uri)


def _current_time_ms() -> int:
    return int(time.time() * 1000)


def _matches(expected: str, provided: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def validate_v3_signature(
    context: SignatureContext,
    client_secret: str,
    signature: str,
    timestamp: str,
    *,
    now_ms: Optional[int] = None,
    max_age_ms: int = MAX_TIMESTAMP_AGE_MS,
) -> bool:
    try:
        request_ms = int(timestamp)
    except (TypeError, ValueError):
        return False

    current_ms = _current_time_ms() if now_ms is None else now_ms
    if current_ms - request_ms > max_age_ms:
        return False

    source = b"".join(
        (
            context.method.encode("utf-8"),
            canonicalize_v3_uri(context.url).encode("utf-8"),
            context.body,
            timestamp.encode("utf-8"),
        )
    )
    digest = hmac.new(client_secret.encode("utf-8"), source, hashlib.sha256).digest()
    return _matches(base64.b64encode(digest).decode("ascii"), signature)


def validate_v2_signature(
    context: SignatureContext, client_secret: str, signature: str
) -> bool:
    source = b"".join(
        (
            client_secret.encode("utf-8"),
            context.method.encode("utf-8"),
            context.url.encode("utf-8"),
            context.body,
        )
    )
    return _matches(hashlib.sha256(source).hexdigest(), signature)


def validate_v1_signature(
    context: SignatureContext, client_secret: str, signature: str
) -> bool:
    source = client_secret.encode("utf-8") + context.body
    return _matches(hashlib.sha256(source).hexdigest(), signature)


def validate_signature(
    context: SignatureContext,
    client_secret: str,
    *,
    now_ms: Optional[int] = None,
    max_age_ms: int = MAX_TIMESTAMP_AGE_MS,
) -> SignatureResult:
    """Pick the scheme from the request headers and check it."""
    v3_signature = context.header(SIGNATURE_V3_HEADER)
    timestamp = context.header(REQUEST_TIMESTAMP_HEADER)
    if v3_signature and timestamp:
        valid = validate_v3_signature(
            context,
            client_secret,
            v3_signature,
            timestamp,
            now_ms=now_ms,
            max_age_ms=max_age_ms,
        )
        return SignatureResult(valid=valid, version="v3")

    declared_version = context.header(SIGNATURE_VERSION_HEADER)
    signature = context.header(SIGNATURE_HEADER)
    if signature and declared_version == "v2":
        return SignatureResult(
            valid=validate_v2_signature(context, client_secret, signature),
            version="v2",
        )
    if signature and declared_version == "v1":
        return SignatureResult(
            valid=validate_v1_signature(context, client_secret, signature),
            version="v1",
        )

    return SignatureResult(valid=False, version=None)


__all__ = [
    "MAX_TIMESTAMP_AGE_MS",
    "REQUEST_TIMESTAMP_HEADER",
    "SIGNATURE_HEADER",
    "SIGNATURE_HEADERS",
    "SIGNATURE_V3_HEADER",
    "SIGNATURE_VERSION_HEADER",
    "SignatureContext",
    "SignatureResult",
    "canonicalize_v3_uri",
    "reconstruct_external_url",
    "validate_signature",
    "validate_v1_signature",
    "validate_v2_signature",
    "validate_v3_signature",
]
