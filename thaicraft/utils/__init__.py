"""Shared utilities for the Thai Craft auth core.

Re-exports the audit helpers so consumers can write
``from thaicraft.utils import log_audit_event``.
"""

from thaicraft.utils.audit import AuditAction, AuditEvent, log_audit_event

__all__ = [
    "AuditAction",
    "AuditEvent",
    "log_audit_event",
]
