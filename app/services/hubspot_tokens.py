"""
Helpers for retrieving, caching and refreshing HubSpot OAuth tokens.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Dict, Optional

import httpx

from app.core.errors import (
    ExchangeFailedError,
    NotAuthorizedError,
    RefreshFailedError,
    StoreError,
)
from app.models.oauth import TokenGrant, TokenRecord

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from app.clients.hubspot_auth import HubSpotOAuthClient
    from app.clients.token_store import SQLiteTokenStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CachedToken:
    """In-memory copy of a portal's current access token."""

    access_token: str
    expires_at: datetime


class HubSpotTokenService:
    """Hands out valid access tokens per portal, refreshing them on demand.

    One instance is meant to live for the whole process. Valid tokens are served
    from memory without touching the store or the network. Refreshes are
    serialized per portal with an ``asyncio.Lock`` so concurrent callers that
    discover an expired token at the same time share a single refresh; portals
    never wait on each other.

    The refresh token is always re-read from the store because HubSpot rotates
    it on every use and another process may already have done so. The store
    write itself is last-write-wins, so two processes refreshing the same
    portal at once can still strand one of the rotated refresh tokens.
    """

    def __init__(
        self,
        store: "SQLiteTokenStore",
        oauth_client: "HubSpotOAuthClient",
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._clock = clock or _utcnow
        self._cache: Dict[int, CachedToken] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, portal_id: int) -> asyncio.Lock:
        lock = self._locks.get(portal_id)
        if lock is None:
            lock = self._locks[portal_id] = asyncio.Lock()
        return lock

    def _cached_if_valid(self, portal_id: int) -> Optional[str]:
        cached = self._cache.get(portal_id)
        if cached and self._clock() < cached.expires_at:
            return cached.access_token
        return None

    async def get_access_token(self, portal_id: int) -> str:
        """Return an access token for ``portal_id`` that is unexpired right now."""
        token = self._cached_if_valid(portal_id)
        if token:
            return token

        async with self._lock_for(portal_id):
            # Another caller may have refreshed while we waited for the lock.
            token = self._cached_if_valid(portal_id)
            if token:
                return token

            record = await self._load(portal_id)
            if not record.is_expired(self._clock()):
                self._remember(record.portal_id, record.access_token, record.expires_at)
                return record.access_token

            logger.info("Access token for portal %s expired; refreshing", portal_id)
            return await self._refresh(record)

    async def force_refresh(self, portal_id: int, *, stale_token: Optional[str] = None) -> str:
        """Refresh regardless of the cached expiry and return the new access token.

        ``stale_token`` is the token the caller saw rejected. If the cache
        already holds a different, unexpired token, a concurrent caller has
        refreshed in the meantime and that token is returned instead.
        """
        async with self._lock_for(portal_id):
            if stale_token is not None:
                token = self._cached_if_valid(portal_id)
                if token and token != stale_token:
                    return token

            record = await self._load(portal_id, expected=portal_id in self._cache)
            logger.info("Forcing token refresh for portal %s", portal_id)
            return await self._refresh(record)

    def cached(self, portal_id: int) -> Optional[CachedToken]:
        return self._cache.get(portal_id)

    async def save_authorization(self, portal_id: int, grant: TokenGrant) -> TokenRecord:
        """Persist the token pair issued by a completed install and cache it."""
        now = self._clock()
        record = TokenRecord(
            portal_id=portal_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=now + timedelta(seconds=grant.expires_in),
            scopes=grant.scopes,
            created_at=now,
            updated_at=now,
        )
        async with self._lock_for(portal_id):
            await asyncio.to_thread(self._store.upsert, record)
            self._remember(portal_id, record.access_token, record.expires_at)
        logger.info("Stored new authorization for portal %s", portal_id)
        return record

    async def _load(self, portal_id: int, *, expected: bool = False) -> TokenRecord:
        record = await asyncio.to_thread(self._store.get, portal_id)
        if record is None:
            if expected:
                raise StoreError(f"Token row for portal {portal_id} disappeared from the store")
            raise NotAuthorizedError(portal_id)
        return record

    async def _refresh(self, record: TokenRecord) -> str:
        """Run the refresh protocol; the caller holds the portal lock."""
        portal_id = record.portal_id
        try:
            grant = await self._oauth.refresh_token(record.refresh_token)
        except ExchangeFailedError as exc:
            raise RefreshFailedError(portal_id, exc.body or str(exc)) from exc
        except httpx.HTTPError as exc:
            raise RefreshFailedError(portal_id, str(exc) or type(exc).__name__) from exc

        now = self._clock()
        refreshed = record.model_copy(
            update={
                "access_token": grant.access_token,
                "refresh_token": grant.refresh_token,
                "expires_at": now + timedelta(seconds=grant.expires_in),
                "scopes": grant.scopes or record.scopes,
                "updated_at": now,
            }
        )
        # TODO: make this a conditional update keyed on record.refresh_token so a
        # concurrent refresh in another process cannot be silently overwritten.
        await asyncio.to_thread(self._store.upsert, refreshed)
        self._remember(portal_id, refreshed.access_token, refreshed.expires_at)
        logger.info("Refreshed tokens for portal %s", portal_id)
        return refreshed.access_token

    def _remember(self, portal_id: int, access_token: str, expires_at: datetime) -> None:
        self._cache[portal_id] = CachedToken(access_token=access_token, expires_at=expires_at)


__all__ = ["CachedToken", "HubSpotTokenService"]
