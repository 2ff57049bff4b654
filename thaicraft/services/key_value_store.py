"""
Persistent Key/Value Store.

Read/write access to the ``kv_store`` table in the local SQLite
database: the durable store that survives app restarts and holds the
session handle, the cached wallet credential, and policy consent.

Failures are logged and reported through return values (``None`` /
``False``) rather than raised, so that a flaky disk degrades a single
operation instead of the whole sign-in flow.  The one exception is
:meth:`KeyValueStore.remove_many`, which is all-or-nothing and reports
whether the whole batch landed.

The ``kv_store`` table is created by ``schema.py``::

    CREATE TABLE IF NOT EXISTS kv_store (
        key   TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

from thaicraft.database import DatabaseManager
from thaicraft.logger import StructuredLogger
from thaicraft.models.enums import StoreKey
from thaicraft.services.credential_cipher import CredentialCipher

# Values encrypted at rest when a cipher is configured.
SENSITIVE_KEYS: frozenset[str] = frozenset({
    StoreKey.SESSION_ID,
    StoreKey.WALLET_AUTH_TOKEN,
})


class KeyValueStore:
    """String key/value persistence over local SQLite.

    Parameters
    ----------
    db:
        Initialised ``DatabaseManager`` with active SQLite connection.
    logger:
        Structured logger instance.
    cipher:
        Optional ``CredentialCipher``; when given, values under
        ``sensitive_keys`` are stored encrypted.
    sensitive_keys:
        Keys whose values are encrypted.  Defaults to
        :data:`SENSITIVE_KEYS`.
    """

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        cipher: Optional[CredentialCipher] = None,
        sensitive_keys: frozenset[str] = SENSITIVE_KEYS,
    ) -> None:
        self._db = db
        self._logger = logger
        self._cipher = cipher
        self._sensitive_keys = sensitive_keys

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        """Read a value by key.  Returns ``None`` if absent or unreadable."""
        try:
            row = self._db.sqlite.execute(
                "SELECT value FROM kv_store WHERE key = ?",
                (key,),
            ).fetchone()
        except Exception as exc:
            self._logger.warning("Failed to read kv_store[%s]: %s", key, exc)
            return None

        if row is None:
            return None

        value: str = row["value"]
        if self._cipher is not None and CredentialCipher.is_encrypted(value):
            try:
                return self._cipher.decrypt(value)
            except (ValueError, OSError) as exc:
                self._logger.warning(
                    "Could not decrypt kv_store[%s] (corrupted data or "
                    "machine identity changed): %s",
                    key,
                    exc,
                )
                return None
        return value

    def keys(self) -> list[str]:
        """Return every key currently stored, sorted."""
        try:
            rows = self._db.sqlite.execute(
                "SELECT key FROM kv_store ORDER BY key",
            ).fetchall()
        except Exception as exc:
            self._logger.warning("Failed to list kv_store keys: %s", exc)
            return []
        return [row["key"] for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: str, value: str) -> bool:
        """Upsert a value.  Returns ``True`` on success."""
        if self._cipher is not None and key in self._sensitive_keys:
            try:
                value = self._cipher.encrypt(value)
            except (ValueError, OSError) as exc:
                # Refuse to write the credential in the clear.
                self._logger.error(
                    "Failed to encrypt kv_store[%s]; value not stored: %s", key, exc,
                )
                return False

        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    """
                    INSERT INTO kv_store (key, value)
                    VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value      = excluded.value,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
                self._commit()
            self._logger.debug("kv_store[%s] updated.", key)
            return True
        except Exception as exc:
            self._logger.error("Failed to write kv_store[%s]: %s", key, exc)
            return False

    def remove(self, key: str) -> bool:
        """Delete *key*.  Removing an absent key counts as success."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                self._commit()
            return True
        except Exception as exc:
            self._logger.warning("Failed to remove kv_store[%s]: %s", key, exc)
            return False

    def remove_each(self, keys: Iterable[str]) -> list[str]:
        """Best-effort removal: try every key independently.

        Returns the keys that could not be removed (empty on full
        success).  Never raises.
        """
        return [key for key in keys if not self.remove(key)]

    def remove_many(self, keys: Iterable[str]) -> bool:
        """All-or-nothing removal of *keys* in a single transaction."""
        key_list: list[str] = list(keys)
        try:
            with self._db.batch_write():
                for key in key_list:
                    self._db.sqlite.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            return True
        except Exception as exc:
            self._logger.warning(
                "Batch removal of %d kv_store keys rolled back: %s", len(key_list), exc,
            )
            return False

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _commit(self) -> None:
        if not self._db.in_batch:
            self._db.sqlite.commit()
