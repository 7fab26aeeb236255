"""
FastAPI application entrypoint for the HubSpot OAuth bridge.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.logging import configure_logging
from app.services.request_signature import SIGNATURE_HEADERS


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="HubSpot OAuth Bridge",
        version="0.1.0",
        description=(
            "Installs a HubSpot public app, keeps per-portal OAuth tokens fresh "
            "and verifies signed requests coming back from HubSpot."
        ),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins) or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "content-type", *SIGNATURE_HEADERS],
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
