"""Integration conftest — session-scoped testcontainer fixtures.

Neo4j Community Edition and Redis 7 containers, shared across the
integration session. Individual tests clean each database via autouse
fixtures. The whole suite is skipped when Docker is not reachable.
"""

from __future__ import annotations

import asyncio
import logging
import time

import pytest
import redis as sync_redis
from neo4j import AsyncGraphDatabase
from redis.asyncio import Redis
from testcontainers.core.container import DockerContainer

from vibegraph.audit import AuditLogger
from vibegraph.config import AuditConfig
from vibegraph.config import SyncConfig
from vibegraph.graph.linking import AffiliationLinker
from vibegraph.graph.resolution import IdentityResolver
from vibegraph.graph.schema import init_schema
from vibegraph.graph.store import GraphStore
from vibegraph.graph.sync import BatchSynchronizer

logger = logging.getLogger(__name__)


def _start(container: DockerContainer) -> DockerContainer:
    try:
        container.start()
    except Exception as exc:
        pytest.skip(f"Docker not available: {exc}")
    return container


# ---------------------------------------------------------------------------
# Neo4j
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def neo4j_container():
    """Spin up a Neo4j Community container and yield its bolt URI."""
    container = _start(
        DockerContainer("neo4j:community")
        .with_exposed_ports(7687)
        .with_env("NEO4J_AUTH", "none")
    )
    try:
        host = container.get_container_host_ip()
        port = container.get_exposed_port(7687)
        uri = f"bolt://{host}:{port}"

        async def wait_for_neo4j():
            driver = AsyncGraphDatabase.driver(uri)
            max_attempts = 30
            for attempt in range(max_attempts):
                try:
                    await driver.verify_connectivity()
                    await driver.close()
                    return
                except Exception as exc:
                    if attempt == max_attempts - 1:
                        await driver.close()
                        raise
                    logger.debug(
                        "Neo4j not ready (attempt %d/%d): %s",
                        attempt + 1,
                        max_attempts,
                        exc,
                    )
                    time.sleep(1)

        asyncio.run(wait_for_neo4j())

        async def _init():
            driver = AsyncGraphDatabase.driver(uri)
            await init_schema(driver)
            await driver.close()

        asyncio.run(_init())
        yield uri
    finally:
        container.stop()


@pytest.fixture()
async def neo4j_driver(neo4j_container):
    """Yield an async Neo4j driver connected to the test container."""
    driver = AsyncGraphDatabase.driver(neo4j_container)
    yield driver
    await driver.close()


@pytest.fixture(autouse=True)
async def clean_neo4j(neo4j_driver):
    """Wipe all nodes and relationships before each test."""
    async with neo4j_driver.session() as session:
        await session.run("MATCH (n) DETACH DELETE n")
    yield


@pytest.fixture()
def graph_store(neo4j_driver) -> GraphStore:
    return GraphStore(neo4j_driver)


@pytest.fixture()
def audit_logger(tmp_path) -> AuditLogger:
    return AuditLogger(AuditConfig(file_path=str(tmp_path / "audit.jsonl")))


@pytest.fixture()
def resolver(graph_store, audit_logger) -> IdentityResolver:
    return IdentityResolver(graph_store, audit_logger=audit_logger)


@pytest.fixture()
def synchronizer(graph_store, resolver, audit_logger) -> BatchSynchronizer:
    return BatchSynchronizer(
        graph_store,
        resolver,
        config=SyncConfig(upsert_chunk_size=3, edge_batch_size=2),
        audit_logger=audit_logger,
    )


@pytest.fixture()
def linker(graph_store, resolver, synchronizer, audit_logger) -> AffiliationLinker:
    return AffiliationLinker(
        graph_store, resolver, synchronizer, audit_logger=audit_logger
    )


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def redis_container():
    """Spin up a Redis 7 container and yield its URL."""
    container = _start(DockerContainer("redis:7-alpine").with_exposed_ports(6379))
    try:
        host = container.get_container_host_ip()
        port = container.get_exposed_port(6379)
        url = f"redis://{host}:{port}"

        r = sync_redis.Redis(host=host, port=int(port))
        max_attempts = 30
        for attempt in range(max_attempts):
            try:
                r.ping()
                r.close()
                break
            except Exception as exc:
                if attempt == max_attempts - 1:
                    r.close()
                    raise
                logger.debug(
                    "Redis not ready (attempt %d/%d): %s",
                    attempt + 1,
                    max_attempts,
                    exc,
                )
                time.sleep(1)

        yield url
    finally:
        container.stop()


@pytest.fixture()
async def redis_client(redis_container):
    """Yield an async Redis client connected to the test container, flushed."""
    client = Redis.from_url(redis_container)
    await client.flushdb()
    yield client
    await client.flushdb()
    await client.aclose()
