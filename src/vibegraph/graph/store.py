"""Neo4j-backed graph store — primitive reads and writes on ``Entity`` nodes.

Every node carries the ``Entity`` label and is keyed by ``handle_lower``.
Multi-valued fields are stored as JSON text and parsed on read; a
malformed blob reads as an empty list instead of failing the lookup.

Callers outside the ``graph`` package should go through
``IdentityResolver`` or ``BatchSynchronizer`` for node writes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime
from enum import Enum

from neo4j import AsyncDriver
from neo4j import time as neo4j_time

from vibegraph.models.connections import MatchSource
from vibegraph.models.connections import OrganizationMember
from vibegraph.models.connections import OrgConnection
from vibegraph.models.entities import AFFILIATION_EDGE_TYPES
from vibegraph.models.entities import Classification
from vibegraph.models.entities import Department
from vibegraph.models.entities import EdgeType
from vibegraph.models.entities import Entity
from vibegraph.models.entities import OrgType
from vibegraph.models.entities import Web3Focus
from vibegraph.models.entities import foreign_category_fields

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Query safety guards
# ---------------------------------------------------------------------------

_ALLOWED_EDGE_TYPES = {edge.value for edge in EdgeType}
_ALLOWED_DIRECTIONS = {"outgoing", "incoming"}

JSON_LIST_FIELDS = (
    "current_organizations",
    "past_organizations",
    "affiliations",
    "org_subtype",
)
_ENUM_FIELDS: dict[str, type[Enum]] = {
    "classification": Classification,
    "department": Department,
    "org_type": OrgType,
    "web3_focus": Web3Focus,
}


def _require_allowed(value: str, allowed: set[str], *, field_name: str) -> str:
    if value not in allowed:
        msg = f"Invalid {field_name}: {value!r}"
        raise ValueError(msg)
    return value


def edge_type_name(edge_type: EdgeType | str) -> str:
    value = edge_type.value if isinstance(edge_type, EdgeType) else edge_type
    return _require_allowed(value, _ALLOWED_EDGE_TYPES, field_name="edge type")


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _neo4j_to_python(value: object) -> object:
    """Convert Neo4j temporal types to Python stdlib equivalents."""
    if isinstance(value, neo4j_time.DateTime):
        return value.to_native()
    if isinstance(value, neo4j_time.Date):
        return value.to_native()
    return value


def load_json_list(raw: object) -> list[str]:
    """Parse a stored JSON list blob; anything malformed reads as ``[]``."""
    if raw is None:
        return []
    if isinstance(raw, list):
        return [str(item) for item in raw]
    if not isinstance(raw, str):
        return []
    try:
        decoded = json.loads(raw)
    except ValueError:
        logger.debug("Ignoring malformed JSON blob: %.80r", raw)
        return []
    if not isinstance(decoded, list):
        return []
    return [str(item) for item in decoded if item is not None]


def entity_write_properties(entity: Entity) -> dict:
    """Build the property map written for *entity*.

    - ``None`` values and fields never set on the candidate are dropped so
      a partial candidate never erases stored data.
    - An ``unclassified`` candidate leaves the stored classification alone.
    - A classified candidate explicitly nulls every field of the other
      categories; ``SET n += $props`` removes properties set to null.
    """
    data = entity.model_dump(exclude_none=True, exclude_unset=True)
    data["handle"] = entity.handle
    data["implied"] = entity.implied
    data["last_updated"] = entity.last_updated
    props: dict = {}
    for key, value in data.items():
        if isinstance(value, Enum):
            props[key] = value.value
        elif key in JSON_LIST_FIELDS:
            props[key] = json.dumps(list(value))
        else:
            props[key] = value
    props["handle_lower"] = entity.handle_lower
    if entity.classification == Classification.unclassified:
        props.pop("classification", None)
    for name in foreign_category_fields(entity.classification):
        props[name] = None
    return props


def entity_from_properties(props: dict) -> Entity:
    """Rebuild an ``Entity`` from stored node properties."""
    data = {k: _neo4j_to_python(v) for k, v in props.items()}
    if not data.get("handle"):
        data["handle"] = data.get("handle_lower") or ""
    for name in JSON_LIST_FIELDS:
        if name in data:
            data[name] = load_json_list(data[name])
    for name, enum_cls in _ENUM_FIELDS.items():
        value = data.get(name)
        if value is None:
            continue
        try:
            data[name] = enum_cls(value)
        except ValueError:
            logger.debug("Dropping unknown %s value %r", name, value)
            data.pop(name)
    for name in ("last_updated", "classified_at"):
        value = data.get(name)
        if value is not None and not isinstance(value, datetime):
            data.pop(name)
    fields = Entity.model_fields
    return Entity.model_validate({k: v for k, v in data.items() if k in fields})


def _pairs_param(pairs: Iterable[tuple[str, str]]) -> list[list[str]]:
    return [[source.lower(), target.lower()] for source, target in pairs]


def _handle_key(handle: str) -> str:
    return handle.strip().lstrip("@").lower()


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

_MERGE_BY_HANDLE = """
OPTIONAL MATCH (existing:Entity {handle_lower: $handle_lower})
WITH existing IS NULL AS is_new
OPTIONAL MATCH (stale:Entity {entity_id: $entity_id})
WHERE stale.handle_lower <> $handle_lower
FOREACH (_ IN CASE WHEN stale IS NULL THEN [] ELSE [1] END |
    SET stale.superseded_entity_id = stale.entity_id
    REMOVE stale.entity_id)
WITH DISTINCT is_new
MERGE (e:Entity {handle_lower: $handle_lower})
ON CREATE SET e.created_at = datetime()
SET e += $props
RETURN is_new AS created
"""

_UPDATE_BY_ENTITY_ID = """
MATCH (e:Entity {entity_id: $entity_id})
WITH e LIMIT 1
SET e += $props
RETURN count(e) AS cnt
"""

_BULK_MERGE = """
UNWIND $rows AS row
OPTIONAL MATCH (h:Entity {handle_lower: row.handle_lower})
OPTIONAL MATCH (i:Entity {entity_id: row.entity_id})
WITH row, h, collect(i) AS id_matches
WITH row, h, CASE WHEN size(id_matches) > 0 THEN id_matches[0] ELSE null END AS i
FOREACH (_ IN CASE WHEN h IS NOT NULL AND i IS NOT NULL AND i <> h THEN [1] ELSE [] END |
    SET i.superseded_entity_id = i.entity_id
    REMOVE i.entity_id)
FOREACH (_ IN CASE WHEN h IS NOT NULL THEN [1] ELSE [] END |
    SET h += row.props)
FOREACH (_ IN CASE WHEN h IS NULL AND i IS NOT NULL THEN [1] ELSE [] END |
    SET i += row.props)
FOREACH (_ IN CASE WHEN h IS NULL AND i IS NULL THEN [1] ELSE [] END |
    CREATE (n:Entity)
    SET n = row.props, n.created_at = datetime())
RETURN row.handle_lower AS handle_lower,
       CASE WHEN h IS NULL AND i IS NULL THEN 'created' ELSE 'updated' END AS outcome
"""


_ORG_RELS = "|".join(edge.value for edge in AFFILIATION_EDGE_TYPES)

_ORG_MUTUALS_DIRECT = f"""
MATCH (user:Entity {{handle_lower: $user}})
MATCH (prospect:Entity {{handle_lower: $prospect}})
MATCH (prospect)-[prel:{_ORG_RELS}]->(org:Entity)
MATCH (follower:Entity)-[:FOLLOWS]->(user)
WHERE follower <> user AND follower <> prospect
MATCH (follower)-[frel:{_ORG_RELS}]->(org)
WITH follower, collect(DISTINCT {{
    org_handle: org.handle_lower,
    org_name: org.name,
    user_relation: type(frel),
    prospect_relation: type(prel),
    via_handle: null
}}) AS connections
RETURN properties(follower) AS props, connections,
       coalesce(follower.followers_count, 0) AS followers,
       follower.handle_lower AS handle
ORDER BY followers DESC, handle
"""

_ORG_MUTUALS_VIA_FOLLOWING = f"""
MATCH (user:Entity {{handle_lower: $user}})
MATCH (prospect:Entity {{handle_lower: $prospect}})
MATCH (prospect)-[:FOLLOWS]->(via:Entity)-[:FOLLOWS]->(prospect)
MATCH (via)-[vrel:{_ORG_RELS}]->(org:Entity)
MATCH (follower:Entity)-[:FOLLOWS]->(user)
WHERE follower <> user AND follower <> prospect AND follower <> via
MATCH (follower)-[frel:{_ORG_RELS}]->(org)
MATCH (follower)-[:FOLLOWS]->(via)-[:FOLLOWS]->(follower)
WITH follower, collect(DISTINCT {{
    org_handle: org.handle_lower,
    org_name: org.name,
    user_relation: type(frel),
    prospect_relation: type(vrel),
    via_handle: via.handle_lower
}}) AS connections
RETURN properties(follower) AS props, connections,
       coalesce(follower.followers_count, 0) AS followers,
       follower.handle_lower AS handle
ORDER BY followers DESC, handle
"""


# ---------------------------------------------------------------------------
# GraphStore
# ---------------------------------------------------------------------------


class GraphStore:
    """Async access to ``Entity`` nodes and their edges."""

    def __init__(self, driver: AsyncDriver) -> None:
        self._driver = driver

    # ----- Lookups -----

    async def find_by_handle(self, handle: str) -> Entity | None:
        """Case-insensitive lookup by handle."""
        query = "MATCH (e:Entity {handle_lower: $key}) RETURN properties(e) AS props"
        async with self._driver.session() as session:
            result = await session.run(query, key=handle.lstrip("@").lower())
            record = await result.single()
            if record is None:
                return None
            return entity_from_properties(record["props"])

    async def find_by_entity_id(self, entity_id: str) -> Entity | None:
        query = (
            "MATCH (e:Entity {entity_id: $entity_id}) "
            "RETURN properties(e) AS props LIMIT 1"
        )
        async with self._driver.session() as session:
            result = await session.run(query, entity_id=entity_id)
            record = await result.single()
            if record is None:
                return None
            return entity_from_properties(record["props"])

    async def find_identity_matches(
        self,
        handle: str,
        entity_id: str | None,
    ) -> tuple[Entity | None, Entity | None]:
        """Return ``(handle_match, id_match)`` in a single round trip."""
        query = (
            "OPTIONAL MATCH (h:Entity {handle_lower: $handle_lower}) "
            "OPTIONAL MATCH (i:Entity {entity_id: $entity_id}) "
            "RETURN properties(h) AS handle_props, properties(i) AS id_props "
            "LIMIT 1"
        )
        async with self._driver.session() as session:
            result = await session.run(
                query, handle_lower=handle.lower(), entity_id=entity_id
            )
            record = await result.single()
        if record is None:
            return None, None
        handle_props = record["handle_props"]
        id_props = record["id_props"]
        return (
            entity_from_properties(handle_props) if handle_props else None,
            entity_from_properties(id_props) if id_props else None,
        )

    async def get_entities_by_handles(self, handles: Iterable[str]) -> dict[str, Entity]:
        """Bulk lookup keyed by lowercased handle. Missing handles are absent."""
        keys = list(dict.fromkeys(h.lstrip("@").lower() for h in handles if h))
        if not keys:
            return {}
        query = (
            "UNWIND $keys AS key "
            "MATCH (e:Entity {handle_lower: key}) "
            "RETURN key, properties(e) AS props"
        )
        async with self._driver.session() as session:
            result = await session.run(query, keys=keys)
            return {
                record["key"]: entity_from_properties(record["props"])
                async for record in result
            }

    # ----- Entity writes -----

    async def merge_by_handle(self, entity: Entity) -> bool:
        """Create or update the node keyed by the entity's handle.

        Any *other* node still holding the entity's ``entity_id`` has it
        moved to ``superseded_entity_id`` in the same transaction.
        Returns ``True`` when a node was created.
        """
        props = entity_write_properties(entity)
        async with self._driver.session() as session:
            result = await session.run(
                _MERGE_BY_HANDLE,
                handle_lower=entity.handle_lower,
                entity_id=entity.entity_id,
                props=props,
            )
            record = await result.single()
            return bool(record["created"])

    async def update_by_entity_id(self, entity_id: str, entity: Entity) -> bool:
        """Update the node holding *entity_id* (handle rename path)."""
        props = entity_write_properties(entity)
        async with self._driver.session() as session:
            result = await session.run(
                _UPDATE_BY_ENTITY_ID, entity_id=entity_id, props=props
            )
            record = await result.single()
            return record["cnt"] > 0

    async def bulk_merge(self, entities: list[Entity]) -> dict[str, str]:
        """Merge many entities in one transaction.

        Applies the handle-wins resolution policy server-side. Returns a
        map of ``handle_lower`` to ``"created"`` / ``"updated"``.
        """
        rows = [
            {
                "handle_lower": entity.handle_lower,
                "entity_id": entity.entity_id,
                "props": entity_write_properties(entity),
            }
            for entity in entities
        ]
        if not rows:
            return {}
        async with self._driver.session() as session:
            result = await session.run(_BULK_MERGE, rows=rows)
            return {record["handle_lower"]: record["outcome"] async for record in result}

    # ----- Edges -----

    async def existing_edges(
        self,
        edge_type: EdgeType | str,
        pairs: Iterable[tuple[str, str]],
    ) -> set[tuple[str, str]]:
        """Return which of *pairs* already have an edge of *edge_type*."""
        rel = edge_type_name(edge_type)
        params = _pairs_param(pairs)
        if not params:
            return set()
        query = (
            "UNWIND $pairs AS pair "
            f"MATCH (a:Entity {{handle_lower: pair[0]}})-[:{rel}]->"
            "(b:Entity {handle_lower: pair[1]}) "
            "RETURN DISTINCT a.handle_lower AS source, b.handle_lower AS target"
        )
        async with self._driver.session() as session:
            result = await session.run(query, pairs=params)
            return {(record["source"], record["target"]) async for record in result}

    async def create_edges(
        self,
        edge_type: EdgeType | str,
        pairs: Iterable[tuple[str, str]],
    ) -> int:
        """MERGE edges for *pairs*; returns how many were newly created."""
        rel = edge_type_name(edge_type)
        params = _pairs_param(pairs)
        if not params:
            return 0
        query = (
            "UNWIND $pairs AS pair "
            "MATCH (a:Entity {handle_lower: pair[0]}) "
            "MATCH (b:Entity {handle_lower: pair[1]}) "
            f"MERGE (a)-[r:{rel}]->(b) "
            "ON CREATE SET r.created_at = datetime()"
        )
        async with self._driver.session() as session:
            result = await session.run(query, pairs=params)
            summary = await result.consume()
            return summary.counters.relationships_created

    async def delete_edges(
        self,
        edge_type: EdgeType | str,
        pairs: Iterable[tuple[str, str]],
    ) -> int:
        rel = edge_type_name(edge_type)
        params = _pairs_param(pairs)
        if not params:
            return 0
        query = (
            "UNWIND $pairs AS pair "
            f"MATCH (a:Entity {{handle_lower: pair[0]}})-[r:{rel}]->"
            "(b:Entity {handle_lower: pair[1]}) "
            "DELETE r"
        )
        async with self._driver.session() as session:
            result = await session.run(query, pairs=params)
            summary = await result.consume()
            return summary.counters.relationships_deleted

    async def get_edge_targets(
        self,
        handle: str,
        edge_type: EdgeType | str,
        direction: str = "outgoing",
    ) -> list[str]:
        """Return the lowercased handles on the other end of *handle*'s edges."""
        rel = edge_type_name(edge_type)
        direction = _require_allowed(
            direction, _ALLOWED_DIRECTIONS, field_name="direction"
        )
        if direction == "outgoing":
            pattern = f"(n:Entity {{handle_lower: $key}})-[:{rel}]->(other:Entity)"
        else:
            pattern = f"(other:Entity)-[:{rel}]->(n:Entity {{handle_lower: $key}})"
        query = (
            f"MATCH {pattern} "
            "RETURN other.handle_lower AS handle ORDER BY handle"
        )
        async with self._driver.session() as session:
            result = await session.run(query, key=handle.lstrip("@").lower())
            return [record["handle"] async for record in result]

    # ----- Connection queries -----

    async def find_direct_mutuals(self, user: str, prospect: str) -> list[Entity]:
        """Entities the prospect follows that in turn follow the user.

        Ordered by follower count, largest first.
        """
        query = (
            "MATCH (user:Entity {handle_lower: $user}) "
            "MATCH (prospect:Entity {handle_lower: $prospect}) "
            "MATCH (prospect)-[:FOLLOWS]->(mutual:Entity)-[:FOLLOWS]->(user) "
            "WHERE mutual <> user AND mutual <> prospect "
            "RETURN DISTINCT properties(mutual) AS props, "
            "coalesce(mutual.followers_count, 0) AS followers, "
            "mutual.handle_lower AS handle "
            "ORDER BY followers DESC, handle"
        )
        async with self._driver.session() as session:
            result = await session.run(
                query, user=_handle_key(user), prospect=_handle_key(prospect)
            )
            return [entity_from_properties(record["props"]) async for record in result]

    async def find_org_mutuals(
        self,
        user: str,
        prospect: str,
        *,
        via_following: bool = False,
    ) -> list[tuple[Entity, list[OrgConnection]]]:
        """Followers of the user who share an organization with the prospect.

        With *via_following* the organization is reached through an
        intermediary who mutually follows both the prospect and the
        follower, instead of through the prospect's own relationships.
        """
        query = _ORG_MUTUALS_VIA_FOLLOWING if via_following else _ORG_MUTUALS_DIRECT
        source = (
            MatchSource.prospect_following if via_following else MatchSource.prospect_direct
        )
        async with self._driver.session() as session:
            result = await session.run(
                query, user=_handle_key(user), prospect=_handle_key(prospect)
            )
            rows = [record async for record in result]
        return [
            (
                entity_from_properties(record["props"]),
                [
                    OrgConnection(
                        org_handle=conn["org_handle"],
                        org_name=conn["org_name"],
                        user_relation=EdgeType(conn["user_relation"]),
                        prospect_relation=EdgeType(conn["prospect_relation"]),
                        match_source=source,
                        via_handle=conn["via_handle"],
                    )
                    for conn in record["connections"]
                ],
            )
            for record in rows
        ]

    async def get_organization_members(
        self,
        org: str,
        relations: Iterable[EdgeType | str] = (EdgeType.WORKS_AT,),
    ) -> list[OrganizationMember]:
        """People linked to *org* by any of *relations*, ordered by handle."""
        rels = [edge_type_name(rel) for rel in relations]
        if not rels:
            return []
        query = (
            "MATCH (org:Entity {handle_lower: $org}) "
            "MATCH (person:Entity)-[r]->(org) "
            "WHERE type(r) IN $rels "
            "RETURN properties(person) AS props, type(r) AS relation, "
            "person.handle_lower AS handle "
            "ORDER BY handle, relation"
        )
        async with self._driver.session() as session:
            result = await session.run(query, org=_handle_key(org), rels=rels)
            return [
                OrganizationMember(
                    entity=entity_from_properties(record["props"]),
                    relation=EdgeType(record["relation"]),
                )
                async for record in result
            ]
