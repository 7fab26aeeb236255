"""
Domain models for OAuth token persistence.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenGrant(BaseModel):
    """Token pair returned by HubSpot's token endpoint for either grant type."""

    access_token: str
    refresh_token: str
    expires_in: int = Field(..., description="Lifetime of the access token in seconds.")
    scopes: List[str] = Field(default_factory=list)


class TokenRecord(BaseModel):
    """Represents the single token row stored for a portal."""

    portal_id: int = Field(..., description="HubSpot hub_id of the installing account.")
    access_token: str
    refresh_token: str
    expires_at: datetime
    scopes: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        """Naive timestamps are treated as UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at


__all__ = ["TokenGrant", "TokenRecord"]
