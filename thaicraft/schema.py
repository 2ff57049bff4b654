"""
Local Store Schema.

The local database holds two things: the ``kv_store`` table behind
:class:`~thaicraft.services.key_value_store.KeyValueStore` and the
``audit_log`` trail written by :mod:`thaicraft.utils.audit`.

Schema changes are listed in :data:`_MIGRATIONS` as numbered steps.  A
fresh database replays every step; an existing one replays only the
steps above its recorded version.  All pending steps and the version
bump run in one transaction, so a failed upgrade leaves the stored
session untouched and is retried on the next start.
"""

from __future__ import annotations

import sqlite3
from typing import NamedTuple

from thaicraft.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]


class _Migration(NamedTuple):
    version: int
    description: str
    statements: tuple[str, ...]


_VERSION_TABLE = """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

_MIGRATIONS: tuple[_Migration, ...] = (
    _Migration(
        version=1,
        description="key/value store for session, wallet credential and consent",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """,
        ),
    ),
    _Migration(
        version=2,
        description="auth audit trail",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                action TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                details TEXT DEFAULT '{}',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_audit_log_action ON audit_log(action)",
        ),
    ),
)

CURRENT_SCHEMA_VERSION: int = _MIGRATIONS[-1].version


def _stored_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return 0 if row is None else int(row[0])


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Bring *conn* up to :data:`CURRENT_SCHEMA_VERSION`.

    Safe to call on every start.  Raises whatever SQLite raised if a
    step fails, after rolling the whole upgrade back.
    """
    conn.execute(_VERSION_TABLE)
    conn.commit()

    current = _stored_version(conn)
    pending = [m for m in _MIGRATIONS if m.version > current]
    if not pending:
        logger.info("Local store schema at version %d.", current)
        return

    # DDL does not open an implicit transaction in sqlite3.
    conn.execute("BEGIN")
    try:
        for migration in pending:
            for statement in migration.statements:
                conn.execute(statement)
            logger.info(
                "Schema step %d applied: %s.", migration.version, migration.description,
            )
        conn.execute(
            "INSERT INTO schema_version (id, version) VALUES (1, ?) "
            "ON CONFLICT(id) DO UPDATE SET version = excluded.version, "
            "applied_at = CURRENT_TIMESTAMP",
            (CURRENT_SCHEMA_VERSION,),
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        logger.error("Schema upgrade from version %d failed; rolled back.", current)
        raise

    logger.info(
        "Local store schema upgraded from version %d to %d.",
        current,
        CURRENT_SCHEMA_VERSION,
    )
