"""
Local Store Database.

One SQLite connection backs the persistent key/value store (session,
cached wallet credential, policy consent) and the auth audit trail.
Writes are serialised through :attr:`DatabaseManager.write_lock`;
multi-key operations that must land together use
:meth:`DatabaseManager.batch_write`.

Queries live in the services; this module only owns the connection.

Usage::

    db = DatabaseManager(
        sqlite_path=Path(config.STORE_PATH),
        logger=StructuredLogger(name="database"),
    )
    initialize_schema(db.sqlite, logger)
    store = KeyValueStore(db=db, logger=logger)
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from thaicraft.logger import StructuredLogger

MEMORY_PATH: str = ":memory:"


class DatabaseManager:
    """Owner of the local SQLite connection.

    Parameters
    ----------
    sqlite_path:
        Database file, or ``":memory:"`` for a throwaway store.  The
        parent directory is created when missing.
    logger:
        Structured logger instance.

    Raises
    ------
    PermissionError
        When the file cannot be opened or created.
    """

    def __init__(
        self,
        sqlite_path: Union[Path, str],
        logger: StructuredLogger,
    ) -> None:
        self._logger = logger
        self._write_lock = threading.RLock()
        self._batch_depth: int = 0
        self._closed: bool = False
        self._conn: sqlite3.Connection = _open(sqlite_path, logger)

    @property
    def sqlite(self) -> sqlite3.Connection:
        return self._conn

    @property
    def write_lock(self) -> threading.RLock:
        """Re-entrant lock every writer holds around execute + commit."""
        return self._write_lock

    @property
    def in_batch(self) -> bool:
        """``True`` inside :meth:`batch_write`; writers skip their own commit."""
        return self._batch_depth > 0

    @property
    def is_closed(self) -> bool:
        return self._closed

    @contextmanager
    def batch_write(self) -> Iterator[None]:
        """Group every write in the block into one transaction.

        The outermost block commits once on success and rolls back on
        any exception, which is re-raised.  Nested blocks join the
        outer transaction.
        """
        with self._write_lock:
            self._batch_depth += 1
            try:
                yield
            except Exception:
                self._batch_depth -= 1
                if self._batch_depth == 0:
                    self._conn.rollback()
                    self._logger.warning("Batch write rolled back.")
                raise
            self._batch_depth -= 1
            if self._batch_depth == 0:
                self._conn.commit()

    def close(self) -> None:
        """Close the connection.  Idempotent."""
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._conn.close()
            except sqlite3.ProgrammingError:
                return
            self._logger.info("Local store closed.")


def _open(path: Union[Path, str], logger: StructuredLogger) -> sqlite3.Connection:
    """Connect with ``sqlite3.Row`` rows; WAL journal for file databases."""
    in_memory = str(path) == MEMORY_PATH
    try:
        if not in_memory:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), check_same_thread=False)
    except (PermissionError, sqlite3.OperationalError) as exc:
        message = (
            f"Cannot open the local store at '{path}'. The file or its "
            "folder may be read-only or locked by another process."
        )
        logger.error(message)
        raise PermissionError(message) from exc

    conn.row_factory = sqlite3.Row
    if not in_memory:
        conn.execute("PRAGMA journal_mode=WAL")
    logger.info("Local store opened at %s", path)
    return conn
