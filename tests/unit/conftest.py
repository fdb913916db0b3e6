"""Unit test fixtures wired to in-memory doubles (no Docker needed)."""

from __future__ import annotations

import pytest

from tests.helpers.doubles import InMemoryGraphStore
from vibegraph.audit import AuditLogger
from vibegraph.config import AuditConfig
from vibegraph.config import SyncConfig
from vibegraph.graph.linking import AffiliationLinker
from vibegraph.graph.resolution import IdentityResolver
from vibegraph.graph.sync import BatchSynchronizer


@pytest.fixture()
def store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture()
def audit_logger(tmp_path) -> AuditLogger:
    return AuditLogger(AuditConfig(file_path=str(tmp_path / "audit.jsonl")))


@pytest.fixture()
def resolver(store, audit_logger) -> IdentityResolver:
    return IdentityResolver(store, audit_logger=audit_logger)


@pytest.fixture()
def synchronizer(store, resolver, audit_logger) -> BatchSynchronizer:
    return BatchSynchronizer(
        store,
        resolver,
        config=SyncConfig(upsert_chunk_size=2, edge_batch_size=2),
        audit_logger=audit_logger,
    )


@pytest.fixture()
def linker(store, resolver, synchronizer, audit_logger) -> AffiliationLinker:
    return AffiliationLinker(store, resolver, synchronizer, audit_logger=audit_logger)
