"""Duplicate-node cleanup for graphs written before the handle key existed.

Legacy nodes may lack ``handle_lower`` and several of them may share a
handle that differs only in case. ``merge_duplicates`` collapses each
group onto its most recently updated node; ``backfill_handle_lower`` then
sets the key so the uniqueness constraint can hold.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING

from vibegraph.audit.schemas import AuditEventType
from vibegraph.graph.store import edge_type_name
from vibegraph.models.entities import EdgeType
from vibegraph.observability import track_latency

if TYPE_CHECKING:
    from neo4j import AsyncDriver

    from vibegraph.audit.store import AuditLogger

logger = logging.getLogger(__name__)

_DUPLICATE_GROUPS = """
MATCH (n:Entity)
WHERE n.handle IS NOT NULL
WITH toLower(n.handle) AS key, n
ORDER BY coalesce(n.last_updated, datetime({epochMillis: 0})) DESC
WITH key, collect(elementId(n)) AS node_ids
WHERE size(node_ids) > 1
RETURN key, node_ids
ORDER BY key
"""

_ABSORB_PROPERTIES = """
MATCH (keep:Entity) WHERE elementId(keep) = $keep_id
MATCH (dup:Entity) WHERE elementId(dup) IN $dup_ids
WITH keep, collect(dup) AS dups
SET keep.entity_id = coalesce(
        keep.entity_id,
        head([d IN dups WHERE d.entity_id IS NOT NULL | d.entity_id])
    ),
    keep.merged_from_ids = coalesce(keep.merged_from_ids, []) + $dup_ids
"""

_DELETE_DUPLICATES = """
MATCH (dup:Entity) WHERE elementId(dup) IN $dup_ids
DETACH DELETE dup
RETURN count(*) AS deleted
"""

_BACKFILL_HANDLE_LOWER = """
MATCH (n:Entity)
WHERE n.handle IS NOT NULL
  AND (n.handle_lower IS NULL OR n.handle_lower <> toLower(n.handle))
SET n.handle_lower = toLower(n.handle)
RETURN count(n) AS updated
"""


def _rewire_queries(rel: str) -> tuple[str, str]:
    outgoing = (
        "MATCH (keep:Entity) WHERE elementId(keep) = $keep_id "
        f"MATCH (dup:Entity)-[:{rel}]->(other:Entity) "
        "WHERE elementId(dup) IN $dup_ids AND NOT elementId(other) IN $dup_ids "
        "AND other <> keep "
        f"MERGE (keep)-[:{rel}]->(other)"
    )
    incoming = (
        "MATCH (keep:Entity) WHERE elementId(keep) = $keep_id "
        f"MATCH (other:Entity)-[:{rel}]->(dup:Entity) "
        "WHERE elementId(dup) IN $dup_ids AND NOT elementId(other) IN $dup_ids "
        "AND other <> keep "
        f"MERGE (other)-[:{rel}]->(keep)"
    )
    return outgoing, incoming


@dataclass
class CleanupResult:
    groups_merged: int = 0
    nodes_deleted: int = 0
    relationships_rewired: int = 0
    handles_backfilled: int = 0
    errors: list[str] = field(default_factory=list)


class DuplicateCleaner:
    """Merges case-insensitive duplicate ``Entity`` nodes."""

    def __init__(
        self,
        driver: AsyncDriver,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._driver = driver
        self._audit = audit_logger

    async def run(self) -> CleanupResult:
        """Merge duplicates, then backfill the handle key."""
        result = await self.merge_duplicates()
        result.handles_backfilled = await self.backfill_handle_lower()
        return result

    async def backfill_handle_lower(self) -> int:
        async with self._driver.session() as session:
            records = await session.run(_BACKFILL_HANDLE_LOWER)
            record = await records.single()
        updated = record["updated"] if record else 0
        if updated:
            logger.info("Backfilled handle_lower on %d nodes", updated)
        return updated

    async def merge_duplicates(self) -> CleanupResult:
        result = CleanupResult()
        async with track_latency("cleanup.merge_duplicates"):
            async with self._driver.session() as session:
                records = await session.run(_DUPLICATE_GROUPS)
                groups = [(r["key"], list(r["node_ids"])) async for r in records]

            for key, node_ids in groups:
                keep_id, dup_ids = node_ids[0], node_ids[1:]
                try:
                    rewired, deleted = await self._merge_group(keep_id, dup_ids)
                except Exception as exc:
                    logger.warning("Failed to merge duplicates of @%s: %s", key, exc)
                    result.errors.append(f"@{key}: {exc}")
                    continue
                result.groups_merged += 1
                result.relationships_rewired += rewired
                result.nodes_deleted += deleted

        logger.info(
            "Duplicate cleanup: %d groups, %d nodes deleted, %d edges rewired",
            result.groups_merged,
            result.nodes_deleted,
            result.relationships_rewired,
        )
        if self._audit is not None and result.groups_merged:
            await self._audit.record(
                AuditEventType.DUPLICATES_MERGED,
                groups=result.groups_merged,
                deleted=result.nodes_deleted,
                rewired=result.relationships_rewired,
            )
        return result

    async def _merge_group(self, keep_id: str, dup_ids: list[str]) -> tuple[int, int]:
        rewired = 0
        params = {"keep_id": keep_id, "dup_ids": dup_ids}
        async with self._driver.session() as session:
            for edge_type in EdgeType:
                for query in _rewire_queries(edge_type_name(edge_type)):
                    records = await session.run(query, **params)
                    summary = await records.consume()
                    rewired += summary.counters.relationships_created
            await (await session.run(_ABSORB_PROPERTIES, **params)).consume()
            records = await session.run(_DELETE_DUPLICATES, **params)
            record = await records.single()
        return rewired, record["deleted"] if record else 0
