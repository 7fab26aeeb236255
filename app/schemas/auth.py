"""Schemas related to the HubSpot OAuth flows."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class AuthorizationUrlResponse(BaseModel):
    """Install URL handed to API clients that do not follow redirects."""

    authorization_url: str
    state: str


class ConnectionResult(BaseModel):
    """Outcome of a completed OAuth callback."""

    status: str = "connected"
    portal_id: int
    redirect_to: Optional[str] = None


class RefreshRequest(BaseModel):
    """Body accepted by the POST variant of the refresh endpoint."""

    portal_id: int = Field(..., gt=0, description="HubSpot portal whose tokens to refresh.")


class RefreshResult(BaseModel):
    success: bool = True
    portal_id: int
    expires_at: datetime
