"""Mutual-connection and membership queries against a real Neo4j."""

from __future__ import annotations

import pytest

from vibegraph.graph.mutuals import MutualFinder
from vibegraph.models.connections import MatchSource
from vibegraph.models.entities import Classification
from vibegraph.models.entities import EdgeType
from vibegraph.models.entities import Entity


@pytest.fixture()
async def seeded(resolver, synchronizer):
    for entity in (
        Entity(handle="me"),
        Entity(handle="vip"),
        Entity(handle="Carol", followers_count=20_000, verified=True),
        Entity(handle="dan", followers_count=300),
        Entity(handle="erin", followers_count=50),
        Entity(handle="xavier"),
        Entity(handle="frank"),
        Entity(handle="acme", classification=Classification.organization),
        Entity(handle="dao", classification=Classification.organization),
    ):
        await resolver.resolve(entity)
    await synchronizer.create_edges(
        EdgeType.FOLLOWS,
        [
            ("vip", "carol"),
            ("carol", "me"),
            ("dan", "me"),
            ("erin", "me"),
            ("vip", "xavier"),
            ("xavier", "vip"),
            ("erin", "xavier"),
            ("xavier", "erin"),
        ],
    )
    await synchronizer.create_edges(
        EdgeType.WORKS_AT,
        [("vip", "acme"), ("carol", "acme"), ("dan", "acme"), ("erin", "dao")],
    )
    await synchronizer.create_edges(EdgeType.WORKED_AT, [("frank", "acme")])
    await synchronizer.create_edges(EdgeType.AFFILIATED_WITH, [("xavier", "dao")])


class TestMutualQueries:
    async def test_direct_mutuals(self, graph_store, seeded):
        mutuals = await graph_store.find_direct_mutuals("ME", "@vip")
        assert [entity.handle for entity in mutuals] == ["Carol"]

    async def test_org_mutuals_through_prospect(self, graph_store, seeded):
        rows = await graph_store.find_org_mutuals("me", "vip")
        # carol shares acme too; she is also a direct mutual
        assert [entity.handle_lower for entity, _ in rows] == ["carol", "dan"]
        _, connections = rows[1]
        assert [(c.org_handle, c.user_relation, c.via_handle) for c in connections] == [
            ("acme", EdgeType.WORKS_AT, None)
        ]

    async def test_org_mutuals_via_mutual_follow(self, graph_store, seeded):
        rows = await graph_store.find_org_mutuals("me", "vip", via_following=True)
        assert [entity.handle_lower for entity, _ in rows] == ["erin"]
        (conn,) = rows[0][1]
        assert conn.org_handle == "dao"
        assert conn.via_handle == "xavier"
        assert conn.prospect_relation == EdgeType.AFFILIATED_WITH
        assert conn.match_source == MatchSource.prospect_following

    async def test_finder_dedupes_and_scores(self, graph_store, seeded):
        result = await MutualFinder(graph_store).find_mutuals("me", "vip")
        assert [
            (m.entity.handle_lower, m.mutual_type.value, m.relevancy_score)
            for m in result.combined
        ] == [
            ("carol", "direct", 115.0),
            ("dan", "organizational", 112.5),
            ("erin", "organizational", 75.0),
        ]


class TestOrganizationMembers:
    async def test_current_members(self, graph_store, seeded):
        members = await graph_store.get_organization_members("@ACME")
        assert [(m.entity.handle_lower, m.relation) for m in members] == [
            ("carol", EdgeType.WORKS_AT),
            ("dan", EdgeType.WORKS_AT),
            ("vip", EdgeType.WORKS_AT),
        ]

    async def test_include_past(self, graph_store, seeded):
        members = await graph_store.get_organization_members(
            "acme", [EdgeType.WORKS_AT, EdgeType.WORKED_AT]
        )
        assert ("frank", EdgeType.WORKED_AT) in [
            (m.entity.handle_lower, m.relation) for m in members
        ]

    async def test_no_relations_returns_empty(self, graph_store, seeded):
        assert await graph_store.get_organization_members("acme", []) == []
