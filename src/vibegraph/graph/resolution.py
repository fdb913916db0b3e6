"""Identity resolution — the single write path for one ``Entity``.

The handle is the identity; ``entity_id`` is treated as volatile. The
decision is **pure logic** (``decide_resolution``) over the two possible
existing matches; ``IdentityResolver`` performs the lookup and exactly one
write query per call.

Cases:
    1. Handle and id match different nodes -> handle match wins, takes the
       candidate's id; the other node gives the id up.
    2. Only the handle matches -> update in place, adopt the id.
    3. Only the id matches -> upstream rename; update handle and data.
    4. Nothing matches -> create.

Re-using a handle for a genuinely different account therefore merges the
two accounts onto one node. That tie-break is intentional and logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from vibegraph.audit.schemas import AuditEventType
from vibegraph.errors import ConflictError
from vibegraph.models.entities import Entity

if TYPE_CHECKING:
    from vibegraph.audit.store import AuditLogger
    from vibegraph.graph.store import GraphStore

logger = logging.getLogger(__name__)


class ResolutionAction(str, Enum):
    create = "create"
    update_by_handle = "update_by_handle"
    rename = "rename"
    reassign_conflict = "reassign_conflict"


@dataclass
class ResolutionDecision:
    action: ResolutionAction
    target_handle: str | None  # lowercased handle of the node written to
    conflict: ConflictError | None = None


@dataclass
class ResolutionOutcome:
    entity_id: str
    action: ResolutionAction


def decide_resolution(
    candidate: Entity,
    handle_match: Entity | None,
    id_match: Entity | None,
) -> ResolutionDecision:
    """Choose the resolution action for *candidate*."""
    if handle_match is not None and id_match is not None:
        if handle_match.handle_lower != id_match.handle_lower:
            return ResolutionDecision(
                action=ResolutionAction.reassign_conflict,
                target_handle=handle_match.handle_lower,
                conflict=ConflictError(
                    handle=candidate.handle,
                    entity_id=candidate.entity_id or "",
                    displaced_handle=id_match.handle,
                ),
            )
        return ResolutionDecision(
            action=ResolutionAction.update_by_handle,
            target_handle=handle_match.handle_lower,
        )
    if handle_match is not None:
        return ResolutionDecision(
            action=ResolutionAction.update_by_handle,
            target_handle=handle_match.handle_lower,
        )
    if id_match is not None:
        return ResolutionDecision(
            action=ResolutionAction.rename,
            target_handle=id_match.handle_lower,
        )
    return ResolutionDecision(action=ResolutionAction.create, target_handle=None)


class IdentityResolver:
    """Resolves candidates against the graph and writes them."""

    def __init__(
        self,
        graph_store: GraphStore,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._graph = graph_store
        self._audit = audit_logger

    async def resolve(self, candidate: Entity) -> str:
        """Upsert *candidate* and return its authoritative id.

        The returned value is the entity id, or the handle when the
        candidate carries no id. Store errors propagate unchanged.
        """
        outcome = await self.resolve_detailed(candidate)
        return outcome.entity_id

    async def resolve_detailed(self, candidate: Entity) -> ResolutionOutcome:
        """Like ``resolve`` but also report the action taken."""
        handle_match, id_match = await self._graph.find_identity_matches(
            candidate.handle, candidate.entity_id
        )
        decision = decide_resolution(candidate, handle_match, id_match)

        renamed = False
        if decision.action == ResolutionAction.rename and id_match is not None:
            renamed = await self._graph.update_by_entity_id(
                candidate.entity_id or "", candidate
            )
            if renamed:
                logger.info(
                    "Handle change for entity_id=%s: @%s -> @%s",
                    candidate.entity_id,
                    id_match.handle,
                    candidate.handle,
                )
            else:
                logger.warning(
                    "entity_id=%s vanished before rename to @%s, creating by handle",
                    candidate.entity_id,
                    candidate.handle,
                )
                decision = ResolutionDecision(
                    action=ResolutionAction.create, target_handle=None
                )
                id_match = None
        if not renamed:
            # MERGE keeps the create path safe against a concurrent insert
            await self._graph.merge_by_handle(candidate)

        if decision.conflict is not None:
            logger.warning(
                "Identity conflict resolved by handle: %s", decision.conflict
            )

        await self._record(candidate, decision, id_match)
        return ResolutionOutcome(
            entity_id=candidate.entity_id or candidate.handle_lower,
            action=decision.action,
        )

    async def _record(
        self,
        candidate: Entity,
        decision: ResolutionDecision,
        id_match: Entity | None,
    ) -> None:
        if self._audit is None:
            return
        if decision.action == ResolutionAction.create:
            event_type = AuditEventType.ENTITY_CREATED
        elif decision.action == ResolutionAction.rename:
            event_type = AuditEventType.ENTITY_RENAMED
        elif decision.action == ResolutionAction.reassign_conflict:
            event_type = AuditEventType.IDENTITY_CONFLICT
        else:
            event_type = AuditEventType.ENTITY_UPDATED
        payload = {
            "handle": candidate.handle,
            "entity_id": candidate.entity_id,
            "action": decision.action.value,
            "classification": candidate.classification.value,
        }
        if id_match is not None and decision.action != ResolutionAction.update_by_handle:
            payload["previous_handle"] = id_match.handle
        await self._audit.record(event_type, **payload)
