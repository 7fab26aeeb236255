try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import copy
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from app.clients.hubspot_auth import OAuthStateEncoder
from app.core.errors import ExchangeFailedError, NotAuthorizedError, StoreError
from app.main import app
from app.models.oauth import TokenGrant
from app.services.hubspot_tokens import CachedToken

EXPIRES_AT = datetime(2030, 1, 1, tzinfo=timezone.utc)


class DummyOAuthClient:
    def __init__(self) -> None:
        self.states: list[str] = []
        self.codes: list[str] = []
        self.exchange_error: Exception | None = None

    def build_authorization_url(self, state: str) -> str:
        self.states.append(state)
        return f"https://app.hubspot.test/oauth/authorize?state={state}"

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        self.codes.append(code)
        if self.exchange_error is not None:
            raise self.exchange_error
        return TokenGrant(
            access_token="access-token",
            refresh_token="refresh-token",
            expires_in=1800,
            scopes=["oauth"],
        )

    async def fetch_portal_id(self, access_token: str) -> int:
        assert access_token == "access-token"
        return 555


class DummyTokenService:
    def __init__(self) -> None:
        self.saved: list[tuple[int, TokenGrant]] = []
        self.refreshed: list[int] = []
        self.refresh_error: Exception | None = None

    async def save_authorization(self, portal_id: int, grant: TokenGrant):
        self.saved.append((portal_id, grant))

    async def force_refresh(self, portal_id: int, *, stale_token=None) -> str:
        if self.refresh_error is not None:
            raise self.refresh_error
        self.refreshed.append(portal_id)
        return "new-access-token"

    def cached(self, portal_id: int):
        return CachedToken(access_token="new-access-token", expires_at=EXPIRES_AT)


@pytest.fixture()
def oauth_overrides():
    from app import dependencies
    from app.core.config import get_settings

    dummy_client = DummyOAuthClient()
    token_service = DummyTokenService()
    encoder = OAuthStateEncoder(secret_key="state-secret")
    base_settings = copy.deepcopy(get_settings())
    base_settings.frontend_base_url = None

    app.dependency_overrides.update(
        {
            dependencies.get_hubspot_oauth_client: lambda: dummy_client,
            dependencies.get_hubspot_token_service: lambda: token_service,
            dependencies.get_oauth_state_encoder: lambda: encoder,
            dependencies.get_app_settings: lambda: base_settings,
        }
    )

    yield dummy_client, token_service, encoder, base_settings

    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )


@pytest.mark.anyio
async def test_healthcheck() -> None:
    async with _client() as client:
        response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_install_returns_json_by_default(oauth_overrides):
    dummy_client, _, encoder, _ = oauth_overrides
    async with _client() as client:
        response = await client.get("/api/oauth/install")

    assert response.status_code == 200
    data = response.json()
    assert data["authorization_url"].startswith("https://app.hubspot.test/oauth/authorize")
    assert data["state"] == dummy_client.states[-1]
    assert "issued_at" in encoder.decode(data["state"])


@pytest.mark.anyio
async def test_install_redirects_for_html_accept(oauth_overrides):
    async with _client() as client:
        response = await client.get("/api/oauth/install", headers={"accept": "text/html"})

    assert response.status_code == 307
    assert response.headers["location"].startswith("https://app.hubspot.test/oauth/authorize")


@pytest.mark.anyio
async def test_callback_returns_json_when_no_frontend(oauth_overrides):
    dummy_client, token_service, _, _ = oauth_overrides

    async with _client() as client:
        await client.get("/api/oauth/install")
        state = dummy_client.states[-1]
        response = await client.get(
            "/api/oauth/callback", params={"state": state, "code": "oauth-code"}
        )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "connected"
    assert data["portal_id"] == 555
    assert dummy_client.codes == ["oauth-code"]
    assert token_service.saved[0][0] == 555
    assert token_service.saved[0][1].refresh_token == "refresh-token"


@pytest.mark.anyio
async def test_callback_redirects_to_frontend_with_portal_id(oauth_overrides):
    dummy_client, _, _, settings = oauth_overrides
    settings.frontend_base_url = "https://app.example.com/oauth/success?tab=crm"

    async with _client() as client:
        await client.get("/api/oauth/install")
        state = dummy_client.states[-1]
        response = await client.get(
            "/api/oauth/callback",
            params={"state": state, "code": "oauth-code"},
            headers={"accept": "text/html"},
        )

    assert response.status_code == 307
    location = urlsplit(response.headers["location"])
    assert location.netloc == "app.example.com"
    assert location.path == "/oauth/success"
    assert parse_qs(location.query) == {"tab": ["crm"], "portal_id": ["555"]}


@pytest.mark.anyio
async def test_callback_prefers_redirect_target_from_state(oauth_overrides):
    dummy_client, _, _, settings = oauth_overrides
    settings.frontend_base_url = "https://app.example.com/oauth/success"

    async with _client() as client:
        await client.get(
            "/api/oauth/install", params={"redirect_to": "https://other.example.com/done"}
        )
        state = dummy_client.states[-1]
        response = await client.get(
            "/api/oauth/callback",
            params={"state": state, "code": "oauth-code", "redirect": "true"},
        )

    assert response.status_code == 307
    assert response.headers["location"] == "https://other.example.com/done?portal_id=555"


@pytest.mark.anyio
async def test_callback_reports_oauth_error_from_hubspot(oauth_overrides):
    dummy_client, token_service, _, _ = oauth_overrides

    async with _client() as client:
        response = await client.get(
            "/api/oauth/callback",
            params={"error": "access_denied", "error_description": "User declined"},
        )

    assert response.status_code == 400
    assert "access_denied" in response.json()["detail"]
    assert "User declined" in response.json()["detail"]
    assert dummy_client.codes == []
    assert token_service.saved == []


@pytest.mark.anyio
async def test_callback_requires_code(oauth_overrides):
    async with _client() as client:
        response = await client.get("/api/oauth/callback", params={"state": "anything"})

    assert response.status_code == 400
    assert response.json()["detail"] == "No authorization code provided"


@pytest.mark.anyio
async def test_callback_rejects_tampered_state(oauth_overrides):
    dummy_client, _, _, _ = oauth_overrides
    forged = OAuthStateEncoder(secret_key="attacker").encode(
        {"issued_at": datetime.now(timezone.utc).isoformat()}
    )

    async with _client() as client:
        response = await client.get(
            "/api/oauth/callback", params={"state": forged, "code": "oauth-code"}
        )

    assert response.status_code == 400
    assert dummy_client.codes == []


@pytest.mark.anyio
async def test_callback_rejects_expired_state(oauth_overrides):
    _, _, encoder, settings = oauth_overrides
    issued_at = datetime.now(timezone.utc) - timedelta(
        seconds=settings.oauth.state_ttl_seconds + 60
    )
    state = encoder.encode({"issued_at": issued_at.isoformat()})

    async with _client() as client:
        response = await client.get(
            "/api/oauth/callback", params={"state": state, "code": "oauth-code"}
        )

    assert response.status_code == 400
    assert "expired" in response.json()["detail"]


@pytest.mark.anyio
async def test_callback_surfaces_failed_exchange(oauth_overrides):
    dummy_client, token_service, encoder, _ = oauth_overrides
    dummy_client.exchange_error = ExchangeFailedError(
        "rejected", status_code=400, body='{"status":"BAD_AUTH_CODE"}'
    )
    state = encoder.encode({"issued_at": datetime.now(timezone.utc).isoformat()})

    async with _client() as client:
        response = await client.get(
            "/api/oauth/callback", params={"state": state, "code": "stale-code"}
        )

    assert response.status_code == 400
    assert "BAD_AUTH_CODE" in response.json()["detail"]
    assert token_service.saved == []


@pytest.mark.anyio
async def test_refresh_get_returns_expiry_without_token(oauth_overrides):
    _, token_service, _, _ = oauth_overrides

    async with _client() as client:
        response = await client.get("/api/oauth/refresh", params={"portal_id": 555})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["portal_id"] == 555
    assert data["expires_at"].startswith("2030-01-01")
    assert "new-access-token" not in response.text
    assert token_service.refreshed == [555]


@pytest.mark.anyio
async def test_refresh_post_accepts_json_body(oauth_overrides):
    _, token_service, _, _ = oauth_overrides

    async with _client() as client:
        response = await client.post("/api/oauth/refresh", json={"portal_id": 777})

    assert response.status_code == 200
    assert token_service.refreshed == [777]


@pytest.mark.anyio
async def test_refresh_rejects_non_positive_portal(oauth_overrides):
    async with _client() as client:
        response = await client.get("/api/oauth/refresh", params={"portal_id": 0})

    assert response.status_code == 422


@pytest.mark.anyio
async def test_refresh_for_unknown_portal_asks_for_reauthorization(oauth_overrides):
    _, token_service, _, _ = oauth_overrides
    token_service.refresh_error = NotAuthorizedError(31337)

    async with _client() as client:
        response = await client.get("/api/oauth/refresh", params={"portal_id": 31337})

    assert response.status_code == 401
    assert response.json()["detail"]["action"] == "reauthorize"


@pytest.mark.anyio
async def test_refresh_store_outage_is_retryable(oauth_overrides):
    _, token_service, _, _ = oauth_overrides
    token_service.refresh_error = StoreError("database is locked")

    async with _client() as client:
        response = await client.post("/api/oauth/refresh", json={"portal_id": 555})

    assert response.status_code == 503
    assert response.json()["detail"]["retryable"] is True
