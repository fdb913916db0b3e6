"""Batch synchronizer — bulk upserts and edge writes in bounded chunks.

Upserts are pre-filtered against the graph (missing / stale / up-to-date),
split into chunks and written with one server-side merge per chunk. A
failing chunk is replayed item by item through ``IdentityResolver`` so a
single bad record never sinks its neighbours.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import TYPE_CHECKING
from typing import TypeVar

from vibegraph.audit.schemas import AuditEventType
from vibegraph.config import SyncConfig
from vibegraph.errors import PartialBatchError
from vibegraph.graph.resolution import IdentityResolver
from vibegraph.graph.resolution import ResolutionAction
from vibegraph.models.entities import Classification
from vibegraph.models.entities import EdgeType
from vibegraph.models.entities import Entity
from vibegraph.models.entities import TRACKED_PROFILE_FIELDS
from vibegraph.observability import track_latency

if TYPE_CHECKING:
    from vibegraph.audit.store import AuditLogger
    from vibegraph.graph.store import GraphStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class BatchUpsertResult:
    """Outcome of ``upsert_batch``.

    ``created + updated + skipped + len(errors)`` always equals the number
    of input entities.
    """

    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + len(self.errors)

    def raise_for_errors(self) -> None:
        if self.errors:
            raise PartialBatchError(self.errors)


@dataclass
class FreshnessPartition:
    missing: list[Entity] = field(default_factory=list)
    stale: list[Entity] = field(default_factory=list)
    up_to_date: list[Entity] = field(default_factory=list)


@dataclass
class _ChunkOutcome:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers (pure)
# ---------------------------------------------------------------------------


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split *items* into lists of at most *size* elements."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_stale(
    stored: Entity,
    incoming: Entity,
    *,
    max_age: timedelta,
    now: datetime | None = None,
) -> bool:
    """Return ``True`` when *stored* should be rewritten with *incoming*.

    Stale means older than *max_age*, or any tracked profile field that
    *incoming* explicitly carries differs from the stored value.
    """
    now = now or datetime.now(timezone.utc)
    if now - _as_utc(stored.last_updated) > max_age:
        return True
    for name in TRACKED_PROFILE_FIELDS:
        if name not in incoming.model_fields_set:
            continue
        value = getattr(incoming, name)
        if value is None:
            continue
        if name == "classification" and value == Classification.unclassified:
            continue
        if value != getattr(stored, name):
            return True
    return False


def dedupe_by_handle(entities: Iterable[Entity]) -> tuple[list[Entity], int]:
    """Keep the last occurrence per handle; return (unique, dropped_count)."""
    latest: dict[str, Entity] = {}
    total = 0
    for entity in entities:
        total += 1
        latest.pop(entity.handle_lower, None)
        latest[entity.handle_lower] = entity
    return list(latest.values()), total - len(latest)


# ---------------------------------------------------------------------------
# BatchSynchronizer
# ---------------------------------------------------------------------------


class BatchSynchronizer:
    """Drives bulk entity upserts and edge writes."""

    def __init__(
        self,
        graph_store: GraphStore,
        resolver: IdentityResolver,
        config: SyncConfig | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._graph = graph_store
        self._resolver = resolver
        self._config = config or SyncConfig()
        self._audit = audit_logger

    async def partition_by_freshness(
        self,
        entities: Sequence[Entity],
        *,
        now: datetime | None = None,
    ) -> FreshnessPartition:
        """Classify each entity as missing, stale or up-to-date."""
        stored = await self._graph.get_entities_by_handles(
            entity.handle for entity in entities
        )
        max_age = timedelta(hours=self._config.staleness_hours)
        partition = FreshnessPartition()
        for entity in entities:
            existing = stored.get(entity.handle_lower)
            if existing is None:
                partition.missing.append(entity)
            elif is_stale(existing, entity, max_age=max_age, now=now):
                partition.stale.append(entity)
            else:
                partition.up_to_date.append(entity)
        return partition

    async def upsert_batch(
        self,
        entities: Sequence[Entity],
        *,
        skip_fresh: bool = True,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchUpsertResult:
        """Upsert *entities* in chunks; never raises for per-item failures."""
        result = BatchUpsertResult()
        if not entities:
            return result

        async with track_latency("sync.upsert_batch"):
            unique, duplicates = dedupe_by_handle(entities)
            result.skipped += duplicates

            if skip_fresh:
                partition = await self.partition_by_freshness(unique)
                result.skipped += len(partition.up_to_date)
                keep = {e.handle_lower for e in partition.missing + partition.stale}
                to_write = [e for e in unique if e.handle_lower in keep]
            else:
                to_write = unique

            chunks = chunked(to_write, self._config.upsert_chunk_size)
            semaphore = asyncio.Semaphore(max(1, self._config.max_concurrent_chunks))

            async def _guarded(chunk: list[Entity]) -> _ChunkOutcome:
                async with semaphore:
                    if cancel_event is not None and cancel_event.is_set():
                        return _ChunkOutcome(skipped=len(chunk))
                    return await self._process_chunk(chunk)

            outcomes = await asyncio.gather(*(_guarded(chunk) for chunk in chunks))
            for outcome in outcomes:
                result.created += outcome.created
                result.updated += outcome.updated
                result.skipped += outcome.skipped
                result.errors.extend(outcome.errors)
            result.cancelled = cancel_event is not None and cancel_event.is_set()

        logger.info(
            "Batch upsert: %d input, %d created, %d updated, %d skipped, %d errors",
            len(entities),
            result.created,
            result.updated,
            result.skipped,
            len(result.errors),
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.BATCH_UPSERT,
                input=len(entities),
                created=result.created,
                updated=result.updated,
                skipped=result.skipped,
                errors=len(result.errors),
                cancelled=result.cancelled,
            )
        return result

    async def _process_chunk(self, chunk: list[Entity]) -> _ChunkOutcome:
        outcome = _ChunkOutcome()
        try:
            written = await self._graph.bulk_merge(chunk)
        except Exception as exc:
            logger.warning(
                "Bulk merge of %d entities failed, retrying one by one: %s",
                len(chunk),
                exc,
            )
            return await self._process_items(chunk)

        for entity in chunk:
            status = written.get(entity.handle_lower)
            if status == "created":
                outcome.created += 1
            elif status == "updated":
                outcome.updated += 1
            else:
                outcome.errors.append(f"@{entity.handle}: not written by bulk merge")
        return outcome

    async def _process_items(self, chunk: list[Entity]) -> _ChunkOutcome:
        outcome = _ChunkOutcome()
        for entity in chunk:
            try:
                resolved = await self._resolver.resolve_detailed(entity)
            except Exception as exc:
                logger.warning("Upsert of @%s failed: %s", entity.handle, exc)
                outcome.errors.append(f"@{entity.handle}: {exc}")
                continue
            if resolved.action == ResolutionAction.create:
                outcome.created += 1
            else:
                outcome.updated += 1
        return outcome

    # ----- Edges -----

    async def create_edges(
        self,
        edge_type: EdgeType,
        pairs: Sequence[tuple[str, str]],
    ) -> int:
        """Create edges for ``(source_handle, target_handle)`` pairs in batches."""
        created = 0
        async with track_latency("sync.create_edges"):
            for batch in chunked(list(pairs), self._config.edge_batch_size):
                created += await self._graph.create_edges(edge_type, batch)
        return created

    async def delete_edges(
        self,
        edge_type: EdgeType,
        pairs: Sequence[tuple[str, str]],
    ) -> int:
        deleted = 0
        async with track_latency("sync.delete_edges"):
            for batch in chunked(list(pairs), self._config.edge_batch_size):
                deleted += await self._graph.delete_edges(edge_type, batch)
        return deleted
