"""Mutual-connection discovery — intro paths between a user and a prospect.

Two kinds of mutual are found:

- *direct*: someone the prospect follows who follows the user back.
- *organizational*: a follower of the user who shares an organization
  (``WORKS_AT`` / ``WORKED_AT`` / ``AFFILIATED_WITH``) with the prospect,
  or with someone the prospect mutually follows.

Every mutual gets a relevancy score; the combined list is sorted by it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING

from vibegraph.models.connections import MatchSource
from vibegraph.models.connections import MutualConnection
from vibegraph.models.connections import MutualType
from vibegraph.models.connections import OrgConnection
from vibegraph.models.entities import EdgeType
from vibegraph.observability import track_latency

if TYPE_CHECKING:
    from vibegraph.graph.store import GraphStore

logger = logging.getLogger(__name__)

DIRECT_MUTUAL_BASE = 100.0
ORG_MUTUAL_BASE = 50.0
RELATION_WEIGHTS = {
    EdgeType.WORKS_AT: 1.5,
    EdgeType.WORKED_AT: 1.0,
    EdgeType.AFFILIATED_WITH: 0.8,
}
SOURCE_WEIGHTS = {
    MatchSource.prospect_direct: 1.5,
    MatchSource.prospect_following: 1.0,
}
VERIFIED_BONUS = 10.0
HIGH_FOLLOWERS_BONUS = 5.0
HIGH_FOLLOWERS_THRESHOLD = 10_000
EXTRA_ORG_BONUS = 5.0


def relevancy_score(
    mutual_type: MutualType,
    org_connections: Sequence[OrgConnection] = (),
    *,
    verified: bool = False,
    followers_count: int = 0,
) -> float:
    """Score one mutual; higher means a warmer intro path.

    The first organization multiplies the base by its relation and source
    weights; each further organization adds a smaller weighted bonus.
    """
    if mutual_type == MutualType.direct:
        score = DIRECT_MUTUAL_BASE
    else:
        score = ORG_MUTUAL_BASE
        for index, conn in enumerate(org_connections):
            relation_weight = RELATION_WEIGHTS.get(conn.user_relation, 1.0)
            if index == 0:
                score *= relation_weight * SOURCE_WEIGHTS[conn.match_source]
            else:
                score += EXTRA_ORG_BONUS * relation_weight
    if verified:
        score += VERIFIED_BONUS
    if followers_count >= HIGH_FOLLOWERS_THRESHOLD:
        score += HIGH_FOLLOWERS_BONUS
    return round(score, 1)


@dataclass
class MutualsResult:
    direct: list[MutualConnection] = field(default_factory=list)
    organizational: list[MutualConnection] = field(default_factory=list)

    @property
    def combined(self) -> list[MutualConnection]:
        """All mutuals, best score first (ties keep direct before org)."""
        return sorted(
            [*self.direct, *self.organizational],
            key=lambda mutual: mutual.relevancy_score,
            reverse=True,
        )


class MutualFinder:
    """Read-only queries for intro paths over the entity graph."""

    def __init__(self, graph_store: GraphStore) -> None:
        self._graph = graph_store

    async def find_mutuals(self, user: str, prospect: str) -> MutualsResult:
        """Direct and organizational mutuals between *user* and *prospect*.

        Empty when either handle has no node. A follower reachable both
        ways is reported once, as a direct mutual.
        """
        found = await self._graph.get_entities_by_handles([user, prospect])
        user_key = user.strip().lstrip("@").lower()
        prospect_key = prospect.strip().lstrip("@").lower()
        if user_key not in found or prospect_key not in found:
            logger.info(
                "Mutual search skipped, @%s or @%s is not in the graph", user_key, prospect_key
            )
            return MutualsResult()

        async with track_latency("mutuals.find_mutuals"):
            direct_rows, org_direct_rows, org_via_rows = await asyncio.gather(
                self._graph.find_direct_mutuals(user_key, prospect_key),
                self._graph.find_org_mutuals(user_key, prospect_key),
                self._graph.find_org_mutuals(user_key, prospect_key, via_following=True),
            )

        result = MutualsResult(
            direct=[
                MutualConnection(
                    entity=entity,
                    mutual_type=MutualType.direct,
                    relevancy_score=relevancy_score(
                        MutualType.direct,
                        verified=entity.verified,
                        followers_count=entity.followers_count,
                    ),
                )
                for entity in direct_rows
            ]
        )
        seen = {mutual.entity.handle_lower for mutual in result.direct}
        # Matches through the prospect's own organizations take priority
        for entity, connections in [*org_direct_rows, *org_via_rows]:
            if entity.handle_lower in seen:
                continue
            seen.add(entity.handle_lower)
            result.organizational.append(
                MutualConnection(
                    entity=entity,
                    mutual_type=MutualType.organizational,
                    relevancy_score=relevancy_score(
                        MutualType.organizational,
                        connections,
                        verified=entity.verified,
                        followers_count=entity.followers_count,
                    ),
                    org_connections=connections,
                )
            )
        logger.info(
            "Mutuals @%s <-> @%s: %d direct, %d organizational",
            user_key,
            prospect_key,
            len(result.direct),
            len(result.organizational),
        )
        return result
