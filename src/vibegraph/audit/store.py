"""Async JSONL audit logger.

Every graph mutation (entity writes, identity conflicts, batch upserts,
edge linking, follow syncs, duplicate merges) lands as one JSON line.
Reads filter by event type and by the handles an event touches, so the
resolution history of a single entity can be replayed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from vibegraph.audit.schemas import ENTITY_EVENT_TYPES
from vibegraph.audit.schemas import AuditEvent
from vibegraph.audit.schemas import AuditEventType
from vibegraph.config import AuditConfig

logger = logging.getLogger(__name__)

# Payload keys that name an entity handle
_HANDLE_KEYS = ("handle", "previous_handle")


def event_handles(event: AuditEvent) -> set[str]:
    """Lowercased handles an event refers to."""
    handles = set()
    for key in _HANDLE_KEYS:
        value = event.payload.get(key)
        if isinstance(value, str) and value:
            handles.add(value.lstrip("@").lower())
    return handles


class AuditLogger:
    """Append-only JSONL audit log.

    Writes and reads share one ``asyncio.Lock`` and run the file I/O in
    ``asyncio.to_thread``, so concurrent batch workers never interleave
    lines.
    """

    def __init__(self, config: AuditConfig) -> None:
        self.config = config
        self._path = Path(config.file_path)
        self._lock = asyncio.Lock()

    async def log(self, event: AuditEvent) -> None:
        if not self.config.enabled:
            return
        async with self._lock:
            await asyncio.to_thread(self._write_line, event.model_dump_json())

    async def record(self, event_type: AuditEventType, **payload: Any) -> None:
        """Build and log an event from keyword payload fields."""
        await self.log(AuditEvent(event_type=event_type, payload=payload))

    def _write_line(self, line: str) -> None:
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    async def read_events(
        self,
        *,
        event_type: AuditEventType | Iterable[AuditEventType] | None = None,
        handle: str | None = None,
        since: float | None = None,
    ) -> list[AuditEvent]:
        """Read events back in write order.

        *event_type* takes one type or several; *handle* keeps events whose
        payload names that handle (case-insensitive, also as the previous
        handle of a rename or conflict).
        """
        if isinstance(event_type, AuditEventType):
            wanted = {event_type}
        elif event_type is not None:
            wanted = set(event_type)
        else:
            wanted = None
        key = handle.lstrip("@").lower() if handle else None

        events = []
        for evt in await self._load():
            if wanted is not None and evt.event_type not in wanted:
                continue
            if key is not None and key not in event_handles(evt):
                continue
            if since is not None and evt.timestamp < since:
                continue
            events.append(evt)
        return events

    async def entity_history(self, handle: str, *, limit: int | None = None) -> list[AuditEvent]:
        """Resolution, rename, conflict and follow-sync events for one handle.

        Returns the most recent *limit* events, oldest first.
        """
        events = await self.read_events(event_type=ENTITY_EVENT_TYPES, handle=handle)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    async def _load(self) -> list[AuditEvent]:
        if not self._path.exists():
            return []
        async with self._lock:
            raw = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        events = []
        for line_no, line in enumerate(raw.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                events.append(AuditEvent.model_validate_json(line))
            except ValidationError:
                logger.warning("Skipping malformed audit line %d in %s", line_no, self._path)
        return events
