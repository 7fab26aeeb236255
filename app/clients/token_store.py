"""SQLite-backed store holding one encrypted OAuth token row per portal."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from app.core.errors import StoreError
from app.models.oauth import TokenRecord
from app.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class SQLiteTokenStore:
    """Upsert-only token table keyed by HubSpot portal id.

    Access and refresh tokens are encrypted with ``TokenCipherService`` before
    they touch disk. Writes are last-write-wins.
    """

    def __init__(self, db_path: str, cipher: TokenCipherService) -> None:
        self._db_path = Path(db_path)
        self._cipher = cipher
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS oauth_tokens (
                        portal_id INTEGER PRIMARY KEY,
                        access_token_encrypted TEXT NOT NULL,
                        refresh_token_encrypted TEXT NOT NULL,
                        expires_at TEXT NOT NULL,
                        scopes TEXT NOT NULL DEFAULT '[]',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to initialise token store at {self._db_path}") from exc

    def get(self, portal_id: int) -> Optional[TokenRecord]:
        """Return the stored record for ``portal_id`` or ``None``."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM oauth_tokens WHERE portal_id = ?",
                    (portal_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Token lookup failed for portal {portal_id}") from exc
        if not row:
            return None

        try:
            access_token = self._cipher.decrypt(row["access_token_encrypted"])
            refresh_token = self._cipher.decrypt(row["refresh_token_encrypted"])
        except ValueError as exc:
            raise StoreError(
                f"Stored tokens for portal {portal_id} cannot be decrypted"
            ) from exc

        return TokenRecord(
            portal_id=row["portal_id"],
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.fromisoformat(row["expires_at"]),
            scopes=json.loads(row["scopes"] or "[]"),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def upsert(self, record: TokenRecord) -> None:
        """Insert or replace the single row for ``record.portal_id``."""
        now_iso = datetime.now(timezone.utc).isoformat()
        params = (
            record.portal_id,
            self._cipher.encrypt(record.access_token),
            self._cipher.encrypt(record.refresh_token),
            record.expires_at.isoformat(),
            json.dumps(list(record.scopes)),
            record.created_at.isoformat(),
            now_iso,
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO oauth_tokens (
                        portal_id,
                        access_token_encrypted,
                        refresh_token_encrypted,
                        expires_at,
                        scopes,
                        created_at,
                        updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(portal_id) DO UPDATE SET
                        access_token_encrypted = excluded.access_token_encrypted,
                        refresh_token_encrypted = excluded.refresh_token_encrypted,
                        expires_at = excluded.expires_at,
                        scopes = excluded.scopes,
                        updated_at = excluded.updated_at
                    """,
                    params,
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Token write failed for portal {record.portal_id}") from exc
        logger.debug("Stored tokens for portal %s", record.portal_id)


__all__ = ["SQLiteTokenStore"]
