"""Employment and affiliation linking.

Turns the organization mentions of classified individuals into
``WORKS_AT`` / ``WORKED_AT`` / ``AFFILIATED_WITH`` edges:

1. Collect ``(person, org)`` candidates per edge type.
2. Make sure every referenced organization has a node; unknown ones are
   looked up and, failing that, created as minimal *implied* organizations.
3. Drop candidates that already exist (queried for exactly these pairs).
4. Write the remaining edges through the batch synchronizer.

Relationships to an organization that cannot be resolved are dropped with
a warning; the rest of the batch still links.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING

from vibegraph.audit.schemas import AuditEventType
from vibegraph.errors import NotFoundError
from vibegraph.errors import TransientIOError
from vibegraph.graph.resolution import IdentityResolver
from vibegraph.graph.sync import BatchSynchronizer
from vibegraph.models.classification import ClassificationResult
from vibegraph.models.classification import IndividualResult
from vibegraph.models.entities import Classification
from vibegraph.models.entities import EdgeType
from vibegraph.models.entities import Entity
from vibegraph.observability import track_latency

if TYPE_CHECKING:
    from vibegraph.audit.store import AuditLogger
    from vibegraph.graph.store import GraphStore
    from vibegraph.profiles.client import ProfileSource

logger = logging.getLogger(__name__)

_HANDLE_RE = re.compile(r"[A-Za-z0-9_]+")

# Edge type per individual field
AFFILIATION_FIELDS: dict[str, EdgeType] = {
    "current_organizations": EdgeType.WORKS_AT,
    "past_organizations": EdgeType.WORKED_AT,
    "affiliations": EdgeType.AFFILIATED_WITH,
}


def clean_org_handle(raw: str) -> str | None:
    """Normalize an organization mention to a lowercased handle.

    Returns ``None`` for blanks and free text that is not a handle.
    """
    text = raw.strip().lstrip("@").strip().rstrip(".,;:!?)")
    if not text or not _HANDLE_RE.fullmatch(text):
        return None
    return text.lower()


def extract_affiliations(
    results: Iterable[ClassificationResult],
) -> dict[EdgeType, list[tuple[str, str]]]:
    """Build de-duplicated ``(person, org)`` candidates per edge type."""
    candidates: dict[EdgeType, list[tuple[str, str]]] = {
        edge_type: [] for edge_type in AFFILIATION_FIELDS.values()
    }
    seen: set[tuple[EdgeType, str, str]] = set()
    for result in results:
        if not isinstance(result, IndividualResult):
            continue
        person = result.handle.lstrip("@").lower()
        for field_name, edge_type in AFFILIATION_FIELDS.items():
            for mention in getattr(result, field_name):
                org = clean_org_handle(mention)
                if org is None:
                    logger.debug("Ignoring non-handle mention %r of @%s", mention, person)
                    continue
                key = (edge_type, person, org)
                if key in seen:
                    continue
                seen.add(key)
                candidates[edge_type].append((person, org))
    return candidates


@dataclass
class LinkResult:
    organizations_created: int = 0
    edges_created: dict[str, int] = field(default_factory=dict)
    edges_existing: int = 0
    dropped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total_created(self) -> int:
        return sum(self.edges_created.values())


class AffiliationLinker:
    """Creates affiliation edges idempotently."""

    def __init__(
        self,
        graph_store: GraphStore,
        resolver: IdentityResolver,
        synchronizer: BatchSynchronizer,
        profile_source: ProfileSource | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._graph = graph_store
        self._resolver = resolver
        self._sync = synchronizer
        self._profiles = profile_source
        self._audit = audit_logger

    async def extract_and_link(
        self,
        results: Iterable[ClassificationResult],
    ) -> LinkResult:
        link = LinkResult()
        candidates = extract_affiliations(results)
        org_handles = list(
            dict.fromkeys(org for pairs in candidates.values() for _, org in pairs)
        )
        if not org_handles:
            return link

        async with track_latency("linking.extract_and_link"):
            unresolved = await self._ensure_organizations(org_handles, link)

            for edge_type, pairs in candidates.items():
                usable = []
                for person, org in pairs:
                    if org in unresolved:
                        link.dropped.append(
                            f"{edge_type.value} @{person} -> @{org}: {unresolved[org]}"
                        )
                        continue
                    usable.append((person, org))
                if not usable:
                    continue
                existing = await self._graph.existing_edges(edge_type, usable)
                new_pairs = [pair for pair in usable if pair not in existing]
                link.edges_existing += len(usable) - len(new_pairs)
                if new_pairs:
                    link.edges_created[edge_type.value] = await self._sync.create_edges(
                        edge_type, new_pairs
                    )

        for message in link.dropped:
            logger.warning("Dropped relationship %s", message)
        if self._audit is not None and (link.total_created or link.dropped):
            await self._audit.record(
                AuditEventType.EDGES_LINKED,
                created=link.edges_created,
                existing=link.edges_existing,
                dropped=len(link.dropped),
                organizations_created=link.organizations_created,
            )
        return link

    async def _ensure_organizations(
        self,
        org_handles: list[str],
        link: LinkResult,
    ) -> dict[str, str]:
        """Create nodes for unknown organizations.

        Returns a map of organization handles that could not be resolved
        to the reason.
        """
        existing = await self._graph.get_entities_by_handles(org_handles)
        missing = [handle for handle in org_handles if handle not in existing]
        if not missing:
            return {}

        unresolved: dict[str, str] = {}
        candidates: list[Entity] = []
        if self._profiles is None:
            candidates = [_implied_organization(handle) for handle in missing]
        else:
            try:
                lookup = await self._profiles.get_profiles(missing)
            except TransientIOError as exc:
                return {handle: f"lookup failed: {exc}" for handle in missing}
            for handle in missing:
                profile = lookup.found.get(handle)
                if profile is not None:
                    candidates.append(
                        profile.to_entity().model_copy(
                            update={"classification": Classification.organization}
                        )
                    )
                elif handle in lookup.failed:
                    unresolved[handle] = f"lookup failed: {lookup.failed[handle]}"
                else:
                    candidates.append(_implied_organization(handle))

        for candidate in candidates:
            try:
                await self._resolver.resolve(candidate)
            except (TransientIOError, NotFoundError) as exc:
                unresolved[candidate.handle_lower] = str(exc)
                continue
            except Exception as exc:
                # Store errors for one organization only drop its edges
                unresolved[candidate.handle_lower] = f"write failed: {exc}"
                link.errors.append(f"@{candidate.handle}: {exc}")
                continue
            link.organizations_created += 1
        return unresolved


def _implied_organization(handle: str) -> Entity:
    return Entity(
        handle=handle,
        classification=Classification.organization,
        implied=True,
    )
