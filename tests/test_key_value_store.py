"""Tests for the persistent key/value store."""

from __future__ import annotations

import sqlite3
from typing import Any

import pytest

from thaicraft.database import DatabaseManager
from thaicraft.logger import StructuredLogger
from thaicraft.services.credential_cipher import CredentialCipher
from thaicraft.services.key_value_store import KeyValueStore


class _FailingConnection:
    """Connection proxy whose DELETE of one key raises."""

    def __init__(self, conn: sqlite3.Connection, fail_key: str) -> None:
        self._conn = conn
        self._fail_key = fail_key

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        if sql.lstrip().startswith("DELETE") and params and params[0] == self._fail_key:
            raise sqlite3.OperationalError("disk I/O error")
        return self._conn.execute(sql, params)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._conn, name)


class TestReadWrite:
    """Tests for get / set / remove."""

    def test_round_trip(self, store: KeyValueStore) -> None:
        assert store.set("sessionId", "s1") is True
        assert store.get("sessionId") == "s1"

    def test_overwrite_keeps_single_row(self, store: KeyValueStore) -> None:
        store.set("lastActivity", "1")
        store.set("lastActivity", "2")
        assert store.get("lastActivity") == "2"
        assert store.keys() == ["lastActivity"]

    def test_missing_key_is_none(self, store: KeyValueStore) -> None:
        assert store.get("nope") is None

    def test_removing_absent_key_succeeds(self, store: KeyValueStore) -> None:
        assert store.remove("nope") is True

    def test_closed_database_degrades_to_defaults(
        self, store: KeyValueStore, db: DatabaseManager
    ) -> None:
        db.close()
        assert store.get("sessionId") is None
        assert store.set("sessionId", "s1") is False
        assert store.remove("sessionId") is False
        assert store.remove_many(["sessionId"]) is False


class TestBulkRemoval:
    """Tests for remove_each (best-effort) and remove_many (atomic)."""

    def _seed(self, store: KeyValueStore) -> None:
        for key in ("sessionId", "userData", "lastActivity"):
            store.set(key, "x")

    def test_remove_many_clears_every_key(self, store: KeyValueStore) -> None:
        self._seed(store)
        assert store.remove_many(["sessionId", "userData", "lastActivity"]) is True
        assert store.keys() == []

    def test_remove_many_rolls_back_on_failure(
        self, store: KeyValueStore, db: DatabaseManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        self._seed(store)
        proxy = _FailingConnection(db.sqlite, fail_key="userData")
        monkeypatch.setattr(DatabaseManager, "sqlite", property(lambda self: proxy))

        assert store.remove_many(["sessionId", "userData", "lastActivity"]) is False

        monkeypatch.undo()
        assert sorted(store.keys()) == ["lastActivity", "sessionId", "userData"]

    def test_remove_each_continues_past_failures(
        self, store: KeyValueStore, db: DatabaseManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        self._seed(store)
        proxy = _FailingConnection(db.sqlite, fail_key="userData")
        monkeypatch.setattr(DatabaseManager, "sqlite", property(lambda self: proxy))

        failed = store.remove_each(["sessionId", "userData", "lastActivity"])

        monkeypatch.undo()
        assert failed == ["userData"]
        assert store.keys() == ["userData"]


class TestEncryptedValues:
    """Tests for at-rest encryption of sensitive keys."""

    @pytest.fixture
    def encrypted_store(self, db: DatabaseManager, logger: StructuredLogger) -> KeyValueStore:
        cipher = CredentialCipher(logger=logger, key=bytes(range(32)))
        return KeyValueStore(db=db, logger=logger, cipher=cipher)

    def _raw(self, db: DatabaseManager, key: str) -> str:
        return db.sqlite.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()["value"]

    def test_sensitive_values_are_encrypted_at_rest(
        self, encrypted_store: KeyValueStore, db: DatabaseManager
    ) -> None:
        encrypted_store.set("mwaAuthToken", "wallet-token")

        assert self._raw(db, "mwaAuthToken").startswith(CredentialCipher.PREFIX)
        assert encrypted_store.get("mwaAuthToken") == "wallet-token"

    def test_other_values_stay_plain(
        self, encrypted_store: KeyValueStore, db: DatabaseManager
    ) -> None:
        encrypted_store.set("userData", '{"id": "u1"}')
        assert self._raw(db, "userData") == '{"id": "u1"}'

    def test_undecryptable_value_reads_as_absent(
        self, encrypted_store: KeyValueStore, db: DatabaseManager
    ) -> None:
        db.sqlite.execute(
            "INSERT INTO kv_store (key, value) VALUES ('sessionId', ?)",
            (CredentialCipher.PREFIX + "AAAA",),
        )
        db.sqlite.commit()
        assert encrypted_store.get("sessionId") is None

    def test_plaintext_written_before_encryption_is_still_readable(
        self, encrypted_store: KeyValueStore, db: DatabaseManager
    ) -> None:
        db.sqlite.execute("INSERT INTO kv_store (key, value) VALUES ('sessionId', 'legacy')")
        db.sqlite.commit()
        assert encrypted_store.get("sessionId") == "legacy"
