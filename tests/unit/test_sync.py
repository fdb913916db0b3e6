"""Unit tests for the batch synchronizer and its pure helpers."""

from __future__ import annotations

import asyncio
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from vibegraph.audit import AuditEventType
from vibegraph.errors import PartialBatchError
from vibegraph.graph.sync import BatchUpsertResult
from vibegraph.graph.sync import chunked
from vibegraph.graph.sync import dedupe_by_handle
from vibegraph.graph.sync import is_stale
from vibegraph.models.entities import Classification
from vibegraph.models.entities import EdgeType
from vibegraph.models.entities import Entity

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _entities(*handles: str, **fields) -> list[Entity]:
    return [Entity(handle=h, entity_id=f"id-{h.lower()}", **fields) for h in handles]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestChunked:
    def test_splits_evenly_and_remainder(self):
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunked([], 3) == []

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            chunked([1], 0)


class TestIsStale:
    def test_old_record_is_stale(self):
        stored = Entity(handle="a", last_updated=NOW - timedelta(days=60))
        assert is_stale(stored, Entity(handle="a"), max_age=timedelta(days=45), now=NOW)

    def test_recent_identical_record_is_fresh(self):
        stored = Entity(handle="a", followers_count=5, last_updated=NOW)
        incoming = Entity(handle="a", followers_count=5)
        assert not is_stale(stored, incoming, max_age=timedelta(days=45), now=NOW)

    def test_changed_tracked_field_is_stale(self):
        stored = Entity(handle="a", followers_count=5, last_updated=NOW)
        incoming = Entity(handle="a", followers_count=6)
        assert is_stale(stored, incoming, max_age=timedelta(days=45), now=NOW)

    def test_fields_not_carried_by_incoming_are_ignored(self):
        stored = Entity(handle="a", bio="old", last_updated=NOW)
        incoming = Entity(handle="a")
        assert not is_stale(stored, incoming, max_age=timedelta(days=45), now=NOW)

    def test_unclassified_incoming_does_not_count_as_change(self):
        stored = Entity(
            handle="a", classification=Classification.individual, last_updated=NOW
        )
        incoming = Entity(handle="a", classification=Classification.unclassified)
        assert not is_stale(stored, incoming, max_age=timedelta(days=45), now=NOW)


class TestDedupeByHandle:
    def test_keeps_last_occurrence(self):
        unique, dropped = dedupe_by_handle(
            [Entity(handle="Bob", name="first"), Entity(handle="x"), Entity(handle="bob", name="last")]
        )
        assert dropped == 1
        assert [e.handle_lower for e in unique] == ["x", "bob"]
        assert unique[1].name == "last"


# ---------------------------------------------------------------------------
# upsert_batch
# ---------------------------------------------------------------------------


class TestUpsertBatch:
    async def test_creates_new_entities_in_chunks(self, synchronizer, store):
        result = await synchronizer.upsert_batch(_entities("a", "b", "c", "d", "e"))
        assert result.created == 5
        assert result.total == 5
        assert set(store.nodes) == {"a", "b", "c", "d", "e"}
        # chunk size 2 -> three bulk merges
        assert store.write_calls == 3

    async def test_up_to_date_entities_are_skipped(self, synchronizer, store):
        entities = _entities("a", "b", followers_count=3)
        await synchronizer.upsert_batch(entities)
        writes = store.write_calls
        result = await synchronizer.upsert_batch(_entities("a", "b", followers_count=3))
        assert result.skipped == 2
        assert result.created == result.updated == 0
        assert store.write_calls == writes

    async def test_changed_entities_are_updated(self, synchronizer, store):
        await synchronizer.upsert_batch(_entities("a", followers_count=3))
        result = await synchronizer.upsert_batch(_entities("a", followers_count=4))
        assert result.updated == 1
        assert store.nodes["a"]["followers_count"] == 4

    async def test_skip_fresh_disabled_rewrites(self, synchronizer):
        await synchronizer.upsert_batch(_entities("a"))
        result = await synchronizer.upsert_batch(_entities("a"), skip_fresh=False)
        assert result.updated == 1

    async def test_duplicates_collapse_to_last(self, synchronizer, store):
        result = await synchronizer.upsert_batch(
            [Entity(handle="Bob", name="first"), Entity(handle="bob", name="second")]
        )
        assert result.created == 1
        assert result.skipped == 1
        assert store.nodes["bob"]["name"] == "second"

    async def test_failed_chunk_falls_back_per_item(self, synchronizer, store):
        store.fail_bulk_merge = True
        store.fail_writes_for.add("bad")
        result = await synchronizer.upsert_batch(_entities("a", "bad", "c"))
        assert result.created == 2
        assert len(result.errors) == 1
        assert "@bad" in result.errors[0]
        assert result.total == 3
        with pytest.raises(PartialBatchError):
            result.raise_for_errors()

    async def test_cancellation_stops_new_chunks(self, synchronizer, store):
        cancel = asyncio.Event()
        cancel.set()
        result = await synchronizer.upsert_batch(_entities("a", "b", "c"), cancel_event=cancel)
        assert result.cancelled is True
        assert result.skipped == 3
        assert store.nodes == {}

    async def test_empty_input(self, synchronizer):
        result = await synchronizer.upsert_batch([])
        assert result == BatchUpsertResult()

    async def test_audit_summary(self, synchronizer, audit_logger):
        await synchronizer.upsert_batch(_entities("a", "b"))
        events = await audit_logger.read_events(event_type=AuditEventType.BATCH_UPSERT)
        assert len(events) == 1
        assert events[0].payload["created"] == 2


class TestEdgeWrites:
    async def test_create_and_delete_in_batches(self, synchronizer, store):
        await synchronizer.upsert_batch(_entities("hub", "a", "b", "c"))
        pairs = [("a", "hub"), ("b", "hub"), ("c", "hub")]
        assert await synchronizer.create_edges(EdgeType.FOLLOWS, pairs) == 3
        assert await synchronizer.create_edges(EdgeType.FOLLOWS, pairs) == 0
        assert await synchronizer.delete_edges(EdgeType.FOLLOWS, pairs[:2]) == 2
        assert store.edges["FOLLOWS"] == {("c", "hub")}
