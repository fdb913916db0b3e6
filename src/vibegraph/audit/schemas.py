"""Audit event types and data models."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field


class AuditEventType(str, Enum):
    """Categories of auditable graph mutations."""

    ENTITY_CREATED = "ENTITY_CREATED"
    ENTITY_UPDATED = "ENTITY_UPDATED"
    ENTITY_RENAMED = "ENTITY_RENAMED"
    IDENTITY_CONFLICT = "IDENTITY_CONFLICT"
    BATCH_UPSERT = "BATCH_UPSERT"
    EDGES_LINKED = "EDGES_LINKED"
    FOLLOWS_SYNCED = "FOLLOWS_SYNCED"
    CLASSIFICATION_RUN = "CLASSIFICATION_RUN"
    DUPLICATES_MERGED = "DUPLICATES_MERGED"


class AuditEvent(BaseModel):
    """A single immutable audit log entry."""

    model_config = {"frozen": True}

    timestamp: float = Field(
        default_factory=time.time,
        description="Unix epoch when the event occurred.",
    )
    event_type: AuditEventType = Field(
        description="Category of the audited action.",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific data (handles, counters, ids).",
    )


# Events that describe the identity of a single entity
ENTITY_EVENT_TYPES = frozenset(
    {
        AuditEventType.ENTITY_CREATED,
        AuditEventType.ENTITY_UPDATED,
        AuditEventType.ENTITY_RENAMED,
        AuditEventType.IDENTITY_CONFLICT,
        AuditEventType.FOLLOWS_SYNCED,
    }
)
