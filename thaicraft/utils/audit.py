"""
Structured Audit Logging Utility.

Every auth lifecycle change (login, registration, logout, expiry,
policy consent) is logged as a structured JSON object and, when a
database is available, persisted to the ``audit_log`` table.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from thaicraft.database import DatabaseManager
from thaicraft.logger import StructuredLogger

__all__ = ["AuditAction", "AuditEvent", "log_audit_event", "persist_audit_event"]

# Flat scalars only; nested payloads belong in a real model.
DetailValue = Union[str, int, float, bool, None]


class AuditAction:
    """Action names written to the audit trail."""

    LOGIN = "LOGIN"
    REGISTER = "REGISTER"
    LOGOUT = "LOGOUT"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    POLICY_ACCEPTED = "POLICY_ACCEPTED"


class AuditEvent(BaseModel):
    """Schema-validated representation of a single audit trail entry."""

    timestamp: str
    action: str
    entity_type: str
    entity_id: str
    user_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str,
    details: Optional[dict[str, DetailValue]] = None,
    db: Optional[DatabaseManager] = None,
) -> AuditEvent:
    """Log a structured JSON audit event, with optional SQLite persistence.

    Always emits a JSON log line via *logger*.  When *db* is provided the
    event is also written to ``audit_log``; a failed write is logged and
    never propagated, so auditing cannot break sign-in or logout.

    Args:
        logger: The logger instance to write to.
        action: What happened (see :class:`AuditAction`).
        entity_type: Type of entity affected (``"Session"``,
            ``"WalletCredential"``, ``"PolicyConsent"``).
        entity_id: Identifier of the affected entity.  Session ids are
            sensitive; callers pass the user id instead.
        user_id: ID of the user the event concerns, or ``"anonymous"``.
        details: Optional flat context.
        db: Optional database manager for persistence.

    Returns:
        The validated event.
    """
    event = AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        details=details or {},
    )
    logger.info("AUDIT: %s", json.dumps(event.model_dump(), default=str))

    if db is not None:
        try:
            persist_audit_event(db, event)
        except Exception as db_err:
            logger.warning("Failed to persist audit event to SQLite: %s", db_err)

    return event


def persist_audit_event(db: DatabaseManager, event: AuditEvent) -> None:
    """Write a validated *event* to the ``audit_log`` table.

    Participates in an enclosing :meth:`DatabaseManager.batch_write`
    rather than committing on its own when one is active.
    """
    with db.write_lock:
        db.sqlite.execute(
            """
            INSERT INTO audit_log (timestamp, action, entity_type, entity_id, user_id, details)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                event.timestamp,
                event.action,
                event.entity_type,
                event.entity_id,
                event.user_id,
                json.dumps(event.details, default=str),
            ),
        )
        if not db.in_batch:
            db.sqlite.commit()
