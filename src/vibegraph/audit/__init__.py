"""Audit subsystem — async JSONL event logging."""

from vibegraph.audit.schemas import AuditEvent
from vibegraph.audit.schemas import AuditEventType
from vibegraph.audit.store import AuditLogger

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
]
