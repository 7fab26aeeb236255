"""
FastAPI dependency utilities for injecting configuration.

Routes depend on these instead of calling ``get_settings`` directly so tests
can swap configuration through ``app.dependency_overrides``.
"""

from fastapi import Depends

from app.core.config import AppSettings, SecuritySettings, get_settings


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return get_settings()


def get_security_settings(
    settings: AppSettings = Depends(get_app_settings),
) -> SecuritySettings:
    """Signature enforcement and URL reconstruction settings."""
    return settings.security


__all__ = ["get_app_settings", "get_security_settings"]
