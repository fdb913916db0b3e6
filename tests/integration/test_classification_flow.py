"""Classification pipeline end to end against Neo4j with a scripted LLM."""

from __future__ import annotations

import json

import pytest

from tests.helpers.doubles import MockLLMAdapter
from tests.helpers.doubles import make_profile
from tests.helpers.doubles import no_sleep
from vibegraph.engine.classification import ClassificationPipeline
from vibegraph.models.classification import ResultSource
from vibegraph.models.entities import Classification
from vibegraph.models.entities import EdgeType

ALICE_ANSWER = json.dumps(
    {
        "results": [
            {
                "screen_name": "alice",
                "vibe": "individual",
                "current_organizations": ["@acme_labs"],
                "past_organizations": ["@oldco"],
                "department": "leadership",
            }
        ]
    }
)


async def _count(driver, query: str) -> int:
    async with driver.session() as session:
        result = await session.run(query)
        return (await result.single())[0]


@pytest.fixture()
def llm() -> MockLLMAdapter:
    return MockLLMAdapter()


@pytest.fixture()
def pipeline(llm, graph_store, resolver, linker, audit_logger) -> ClassificationPipeline:
    return ClassificationPipeline(
        llm,
        graph_store,
        resolver,
        linker=linker,
        audit_logger=audit_logger,
        sleep=no_sleep,
    )


class TestClassificationFlow:
    async def test_person_with_two_employers(self, pipeline, llm, graph_store, neo4j_driver):
        llm.responses = [ALICE_ANSWER]
        run = await pipeline.classify(
            [make_profile("alice", description="CEO @acme_labs, ex-@oldco")]
        )

        assert run.persisted == 1
        assert await _count(neo4j_driver, "MATCH (n:Entity) RETURN count(n)") == 3
        assert await _count(neo4j_driver, "MATCH ()-[r]->() RETURN count(r)") == 2
        assert await graph_store.get_edge_targets("alice", EdgeType.WORKS_AT) == ["acme_labs"]
        assert await graph_store.get_edge_targets("alice", EdgeType.WORKED_AT) == ["oldco"]
        oldco = await graph_store.find_by_handle("oldco")
        assert oldco.implied is True
        assert oldco.classification == Classification.organization

    async def test_second_run_is_cached_and_idempotent(self, pipeline, llm, neo4j_driver):
        profile = make_profile("alice", description="CEO @acme_labs, ex-@oldco")
        llm.responses = [ALICE_ANSWER]
        await pipeline.classify([profile])

        rerun = await pipeline.classify([profile])
        assert len(llm.calls) == 1
        assert rerun.results["alice"].source == ResultSource.cache
        assert await _count(neo4j_driver, "MATCH (n:Entity) RETURN count(n)") == 3
        assert await _count(neo4j_driver, "MATCH ()-[r]->() RETURN count(r)") == 2

    async def test_relinking_creates_nothing_new(self, pipeline, linker, llm, neo4j_driver):
        llm.responses = [ALICE_ANSWER]
        run = await pipeline.classify(
            [make_profile("alice", description="CEO @acme_labs, ex-@oldco")]
        )
        again = await linker.extract_and_link(run.results.values())
        assert again.total_created == 0
        assert await _count(neo4j_driver, "MATCH ()-[r]->() RETURN count(r)") == 2

    async def test_person_named_like_employer(self, pipeline, llm, graph_store, neo4j_driver):
        llm.responses = [
            json.dumps(
                {
                    "results": [
                        {
                            "screen_name": "acme_labs",
                            "vibe": "individual",
                            "current_organizations": ["@acme_labs"],
                            "past_organizations": ["@oldco"],
                        }
                    ]
                }
            )
        ]
        run = await pipeline.classify(
            [make_profile("acme_labs", description="ex-@oldco building @acme_labs protocol")]
        )

        assert run.results["acme_labs"].current_organizations == ["@acme_labs"]
        assert await _count(neo4j_driver, "MATCH (n:Entity) RETURN count(n)") == 2
        assert await _count(neo4j_driver, "MATCH ()-[r]->() RETURN count(r)") == 2
        assert await graph_store.get_edge_targets("acme_labs", EdgeType.WORKS_AT) == ["acme_labs"]
        assert await graph_store.get_edge_targets("acme_labs", EdgeType.WORKED_AT) == ["oldco"]
        stored = await graph_store.find_by_handle("acme_labs")
        assert stored.classification == Classification.individual
