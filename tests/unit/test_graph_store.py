"""Unit tests for graph store serialization helpers and query guards."""

from __future__ import annotations

import json
from datetime import datetime
from datetime import timezone

import pytest

from vibegraph.graph.store import edge_type_name
from vibegraph.graph.store import entity_from_properties
from vibegraph.graph.store import entity_write_properties
from vibegraph.graph.store import load_json_list
from vibegraph.models.entities import Classification
from vibegraph.models.entities import Department
from vibegraph.models.entities import EdgeType
from vibegraph.models.entities import Entity
from vibegraph.models.entities import OrgType
from vibegraph.models.entities import Web3Focus


class TestEdgeTypeGuard:
    def test_accepts_known_types(self):
        assert edge_type_name(EdgeType.WORKS_AT) == "WORKS_AT"
        assert edge_type_name("FOLLOWS") == "FOLLOWS"

    def test_rejects_unknown_type(self):
        with pytest.raises(ValueError, match="Invalid edge type"):
            edge_type_name("KNOWS]->() DETACH DELETE (n")


class TestLoadJsonList:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ('["@a", "@b"]', ["@a", "@b"]),
            (["x"], ["x"]),
            (None, []),
            ("not json", []),
            ('{"a": 1}', []),
            (42, []),
        ],
    )
    def test_parses_or_defaults_to_empty(self, raw, expected):
        assert load_json_list(raw) == expected


class TestEntityWriteProperties:
    def test_individual_nulls_organization_fields(self):
        entity = Entity(
            handle="Alice",
            classification=Classification.individual,
            current_organizations=["@acme"],
            department=Department.engineering,
        )
        props = entity_write_properties(entity)
        assert props["handle"] == "Alice"
        assert props["handle_lower"] == "alice"
        assert props["classification"] == "individual"
        assert props["department"] == "engineering"
        assert json.loads(props["current_organizations"]) == ["@acme"]
        for name in ("org_type", "org_subtype", "web3_focus"):
            assert name in props and props[name] is None

    def test_organization_nulls_individual_fields(self):
        entity = Entity(
            handle="acme",
            classification=Classification.organization,
            org_type=OrgType.defi,
            org_subtype=["lending"],
            web3_focus=Web3Focus.native,
        )
        props = entity_write_properties(entity)
        assert props["org_type"] == "defi"
        assert json.loads(props["org_subtype"]) == ["lending"]
        for name in ("current_organizations", "past_organizations", "affiliations", "department"):
            assert props[name] is None

    def test_unclassified_keeps_stored_classification(self):
        props = entity_write_properties(Entity(handle="bob", name="Bob"))
        assert "classification" not in props
        assert "org_type" not in props
        assert "department" not in props
        assert props["name"] == "Bob"

    def test_unset_and_none_fields_are_not_written(self):
        props = entity_write_properties(Entity(handle="bob", bio=None))
        assert "bio" not in props
        assert "followers_count" not in props
        assert props["implied"] is False
        assert isinstance(props["last_updated"], datetime)


class TestEntityFromProperties:
    def test_round_trips_stored_shape(self):
        stored = {
            "handle": "acme",
            "handle_lower": "acme",
            "classification": "organization",
            "org_type": "defi",
            "org_subtype": '["lending"]',
            "web3_focus": "native",
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "superseded_entity_id": "old",
        }
        entity = entity_from_properties(stored)
        assert entity.classification == Classification.organization
        assert entity.org_subtype == ["lending"]
        assert entity.is_organization_complete

    def test_malformed_values_are_dropped(self):
        entity = entity_from_properties(
            {
                "handle_lower": "bob",
                "classification": "individual",
                "department": "astrology",
                "current_organizations": "{broken",
                "last_updated": "yesterday",
            }
        )
        assert entity.handle == "bob"
        assert entity.department is None
        assert entity.current_organizations == []
