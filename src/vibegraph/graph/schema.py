"""Neo4j schema initialization — indexes and constraints.

All statements use ``IF NOT EXISTS`` so they are safe to run repeatedly
(idempotent). The handle key is enforced at the DB level; ``entity_id``
is only indexed because upstream ids drift between sources.
"""

from __future__ import annotations

from neo4j import AsyncDriver

# ---------------------------------------------------------------------------
# Constraint statements (Community Edition: uniqueness only)
# ---------------------------------------------------------------------------

_CONSTRAINTS = [
    "CREATE CONSTRAINT entity_handle_unique IF NOT EXISTS "
    "FOR (n:Entity) REQUIRE n.handle_lower IS UNIQUE",
]

# ---------------------------------------------------------------------------
# Index statements
# ---------------------------------------------------------------------------

_NODE_INDEXES = [
    "CREATE INDEX entity_id IF NOT EXISTS FOR (n:Entity) ON (n.entity_id)",
    "CREATE INDEX entity_handle IF NOT EXISTS FOR (n:Entity) ON (n.handle)",
    "CREATE INDEX entity_classification IF NOT EXISTS FOR (n:Entity) ON (n.classification)",
    "CREATE INDEX entity_last_updated IF NOT EXISTS FOR (n:Entity) ON (n.last_updated)",
]


async def init_schema(driver: AsyncDriver) -> None:
    """Create all indexes and constraints (idempotent).

    Runs each statement in its own transaction to avoid batching issues
    with schema commands in Neo4j.
    """
    async with driver.session() as session:
        for stmt in _CONSTRAINTS + _NODE_INDEXES:
            await session.run(stmt)
