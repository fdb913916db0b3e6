"""MCP protocol-level integration tests.

Verifies tool registration and the full configure -> tool -> Neo4j
round trip via ``fastmcp.Client``.
"""

from __future__ import annotations

import json

import pytest
from fastmcp import Client

from tests.helpers.doubles import FakeProfileSource
from tests.helpers.doubles import MockLLMAdapter
from tests.helpers.doubles import make_profile
from vibegraph.config import AuditConfig
from vibegraph.server import configure
from vibegraph.server import mcp
from vibegraph.server import shutdown


def _parse(result) -> dict:
    return json.loads(result.content[0].text)


@pytest.fixture()
def llm() -> MockLLMAdapter:
    return MockLLMAdapter()


@pytest.fixture(autouse=True)
async def _configured(neo4j_container, redis_container, llm, tmp_path):
    await configure(
        neo4j_container,
        redis_url=redis_container,
        llm_adapter=llm,
        profile_source=FakeProfileSource(
            [
                make_profile("alice", description="CEO @acme_labs"),
                make_profile("bob", followers_count=1, friends_count=2),
            ]
        ),
        audit_config=AuditConfig(file_path=str(tmp_path / "audit.jsonl")),
    )
    yield
    await shutdown()


class TestMcpProtocol:
    async def test_list_tools(self):
        async with Client(mcp) as client:
            tools = await client.list_tools()
            names = {t.name for t in tools}
            assert names == {
                "classify_profiles",
                "resolve_entity",
                "get_entity",
                "sync_follows",
                "map_categories",
                "cleanup_duplicates",
                "find_mutuals",
                "get_organization_members",
                "get_entity_history",
            }

    async def test_classify_then_get_roundtrip(self, llm):
        llm.responses = [
            json.dumps(
                {
                    "results": [
                        {
                            "screen_name": "alice",
                            "vibe": "individual",
                            "current_organizations": ["@acme_labs"],
                        }
                    ]
                }
            )
        ]
        async with Client(mcp) as client:
            classified = _parse(
                await client.call_tool(
                    "classify_profiles", {"handles": ["alice", "bob", "nobody"]}
                )
            )
            assert {c["handle"]: c["classification"] for c in classified["classified"]} == {
                "alice": "individual",
                "bob": "spam",
            }
            assert classified["not_found"] == ["nobody"]
            assert classified["edges_created"] == 1

            org = _parse(await client.call_tool("get_entity", {"handle": "ACME_LABS"}))
            assert org["entity"]["classification"] == "organization"
            assert org["entity"]["implied"] is True

    async def test_cleanup_on_clean_graph(self):
        async with Client(mcp) as client:
            data = _parse(await client.call_tool("cleanup_duplicates", {}))
            assert data["status"] == "ok"
            assert data["groups_merged"] == 0

    async def test_sync_follows_requires_profile_api(self):
        async with Client(mcp) as client:
            data = _parse(await client.call_tool("sync_follows", {"handle": "alice"}))
            assert data["error_code"] == "not_configured"
