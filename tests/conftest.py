"""Pytest configuration shared across the suite."""

import pytest


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _fresh_dependency_singletons():
    """Drop cached clients so no test sees another test's store or settings."""
    from app.core.config import get_settings
    from app.dependencies import clients

    yield
    get_settings.cache_clear()
    for factory in (
        clients._settings,
        clients.get_oauth_state_encoder,
        clients.get_hubspot_oauth_client,
        clients.get_token_cipher_service,
        clients.get_token_store,
        clients.get_hubspot_token_service,
        clients.get_hubspot_client,
    ):
        factory.cache_clear()
