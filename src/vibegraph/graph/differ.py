"""Relationship differ — minimal edge changes between two target sets.

``diff_edges`` is a pure, order-preserving set difference. The
``FollowGraphSynchronizer`` applies it to FOLLOWS edges: a profile with
10,000 stored followers and one new follower writes exactly one edge.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING

from vibegraph.audit.schemas import AuditEventType
from vibegraph.graph.sync import BatchSynchronizer
from vibegraph.models.entities import EdgeType
from vibegraph.models.entities import Entity
from vibegraph.observability import track_latency

if TYPE_CHECKING:
    from vibegraph.audit.store import AuditLogger
    from vibegraph.graph.store import GraphStore

logger = logging.getLogger(__name__)

FOLLOWERS = "followers"
FOLLOWING = "following"


@dataclass
class EdgeDiff:
    to_add: list[str] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


def diff_edges(current: Iterable[str], fresh: Iterable[str]) -> EdgeDiff:
    """``to_add = fresh - current``, ``to_remove = current - fresh``.

    Keys compare case-insensitively; output keeps first-seen order and
    drops duplicates.
    """
    current_keys = list(dict.fromkeys(c.lower() for c in current))
    fresh_keys = list(dict.fromkeys(f.lower() for f in fresh))
    current_set = set(current_keys)
    fresh_set = set(fresh_keys)
    return EdgeDiff(
        to_add=[key for key in fresh_keys if key not in current_set],
        to_remove=[key for key in current_keys if key not in fresh_set],
    )


@dataclass
class FollowSyncResult:
    handle: str
    direction: str
    added: int = 0
    removed: int = 0
    unchanged: int = 0
    upserted: int = 0
    errors: list[str] = field(default_factory=list)


class FollowGraphSynchronizer:
    """Incrementally mirrors a profile's follower or following list."""

    def __init__(
        self,
        graph_store: GraphStore,
        synchronizer: BatchSynchronizer,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._graph = graph_store
        self._sync = synchronizer
        self._audit = audit_logger

    async def sync(
        self,
        handle: str,
        fresh: Sequence[Entity],
        direction: str = FOLLOWERS,
    ) -> FollowSyncResult:
        """Bring *handle*'s FOLLOWS edges in *direction* in line with *fresh*.

        The account itself must already exist in the graph. New accounts
        are upserted first, then edges are added, then removed.
        """
        if direction not in (FOLLOWERS, FOLLOWING):
            raise ValueError(f"Invalid direction: {direction!r}")
        key = handle.lstrip("@").lower()
        result = FollowSyncResult(handle=key, direction=direction)

        async with track_latency(f"follows.sync_{direction}"):
            upsert = await self._sync.upsert_batch(fresh)
            result.upserted = upsert.created + upsert.updated
            result.errors.extend(upsert.errors)

            # FOLLOWS points from follower to followed account
            graph_direction = "incoming" if direction == FOLLOWERS else "outgoing"
            current = await self._graph.get_edge_targets(
                key, EdgeType.FOLLOWS, direction=graph_direction
            )
            diff = diff_edges(current, (entity.handle for entity in fresh))
            result.unchanged = len(set(current)) - len(diff.to_remove)

            if diff.to_add:
                result.added = await self._sync.create_edges(
                    EdgeType.FOLLOWS, self._pairs(key, diff.to_add, direction)
                )
            if diff.to_remove:
                result.removed = await self._sync.delete_edges(
                    EdgeType.FOLLOWS, self._pairs(key, diff.to_remove, direction)
                )

        logger.info(
            "Synced %s of @%s: +%d -%d (=%d)",
            direction,
            key,
            result.added,
            result.removed,
            result.unchanged,
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.FOLLOWS_SYNCED,
                handle=key,
                direction=direction,
                added=result.added,
                removed=result.removed,
            )
        return result

    @staticmethod
    def _pairs(key: str, others: list[str], direction: str) -> list[tuple[str, str]]:
        if direction == FOLLOWERS:
            return [(other, key) for other in others]
        return [(key, other) for other in others]
