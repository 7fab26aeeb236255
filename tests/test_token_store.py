try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from app.clients.token_store import SQLiteTokenStore
from app.core.errors import StoreError
from app.models.oauth import TokenRecord
from app.services.token_cipher import TokenCipherService


def _record(portal_id: int = 555, **overrides) -> TokenRecord:
    now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    values = {
        "portal_id": portal_id,
        "access_token": "A1",
        "refresh_token": "R1",
        "expires_at": now + timedelta(minutes=30),
        "scopes": ["oauth", "crm.objects.contacts.read"],
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    return TokenRecord(**values)


@pytest.fixture()
def store(tmp_path):
    cipher = TokenCipherService(secret="store-secret")
    return SQLiteTokenStore(str(tmp_path / "nested" / "tokens.sqlite3"), cipher)


def test_get_returns_none_for_unknown_portal(store) -> None:
    assert store.get(999) is None


def test_upsert_then_get_roundtrips_record(store) -> None:
    record = _record()
    store.upsert(record)

    loaded = store.get(555)
    assert loaded is not None
    assert loaded.access_token == "A1"
    assert loaded.refresh_token == "R1"
    assert loaded.expires_at == record.expires_at
    assert loaded.scopes == ["oauth", "crm.objects.contacts.read"]


def test_tokens_are_encrypted_at_rest(store, tmp_path) -> None:
    store.upsert(_record(access_token="plain-access", refresh_token="plain-refresh"))

    with sqlite3.connect(tmp_path / "nested" / "tokens.sqlite3") as conn:
        row = conn.execute(
            "SELECT access_token_encrypted, refresh_token_encrypted FROM oauth_tokens"
        ).fetchone()

    assert "plain-access" not in row[0]
    assert "plain-refresh" not in row[1]


def test_upsert_replaces_tokens_and_keeps_created_at(store) -> None:
    original = _record()
    store.upsert(original)

    later = original.created_at + timedelta(hours=1)
    store.upsert(
        _record(
            access_token="A2",
            refresh_token="R2",
            expires_at=later + timedelta(minutes=30),
            created_at=later,
            updated_at=later,
        )
    )

    loaded = store.get(555)
    assert loaded.access_token == "A2"
    assert loaded.refresh_token == "R2"
    assert loaded.created_at == original.created_at


def test_portals_are_isolated(store) -> None:
    store.upsert(_record(portal_id=1, access_token="one"))
    store.upsert(_record(portal_id=2, access_token="two"))

    assert store.get(1).access_token == "one"
    assert store.get(2).access_token == "two"


def test_undecryptable_row_raises_store_error(tmp_path) -> None:
    db_path = str(tmp_path / "tokens.sqlite3")
    SQLiteTokenStore(db_path, TokenCipherService(secret="first")).upsert(_record())

    other = SQLiteTokenStore(db_path, TokenCipherService(secret="second"))
    with pytest.raises(StoreError):
        other.get(555)
