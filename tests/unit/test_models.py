"""Unit tests for entity, profile and classification models."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter
from pydantic import ValidationError

from vibegraph.models import Classification
from vibegraph.models import ClassificationEnvelope
from vibegraph.models import ClassificationResult
from vibegraph.models import Department
from vibegraph.models import Entity
from vibegraph.models import IndividualResult
from vibegraph.models import OrganizationResult
from vibegraph.models import OrgType
from vibegraph.models import Profile
from vibegraph.models import RawClassification
from vibegraph.models import SpamResult
from vibegraph.models import Web3Focus
from vibegraph.models import foreign_category_fields
from vibegraph.models import normalize_handle

# ---------------------------------------------------------------------------
# Entity
# ---------------------------------------------------------------------------


class TestEntity:
    def test_handle_strips_at_sign(self):
        entity = Entity(handle="  @Alice ")
        assert entity.handle == "Alice"
        assert entity.handle_lower == "alice"

    def test_empty_handle_rejected(self):
        with pytest.raises(ValidationError):
            Entity(handle="@")

    def test_numeric_entity_id_becomes_string(self):
        assert Entity(handle="bob", entity_id=12345).entity_id == "12345"
        assert Entity(handle="bob", entity_id="").entity_id is None

    def test_defaults(self):
        entity = Entity(handle="bob")
        assert entity.classification == Classification.unclassified
        assert entity.implied is False
        assert entity.followers_count == 0
        assert entity.last_updated.tzinfo is not None

    def test_individual_drops_organization_fields(self):
        entity = Entity(
            handle="alice",
            classification=Classification.individual,
            department=Department.engineering,
            org_type=OrgType.defi,
            org_subtype=["lending"],
        )
        assert entity.department == Department.engineering
        assert entity.org_type is None
        assert entity.org_subtype is None

    def test_spam_drops_both_categories(self):
        entity = Entity(
            handle="spammer",
            classification=Classification.spam,
            department=Department.marketing,
            web3_focus=Web3Focus.native,
        )
        assert entity.department is None
        assert entity.web3_focus is None

    def test_organization_completeness(self):
        partial = Entity(
            handle="acme",
            classification=Classification.organization,
            org_type=OrgType.defi,
        )
        complete = partial.model_copy(
            update={"org_subtype": ["lending"], "web3_focus": Web3Focus.native}
        )
        assert partial.is_organization_complete is False
        assert complete.is_organization_complete is True


class TestForeignCategoryFields:
    def test_per_classification(self):
        assert "org_type" in foreign_category_fields(Classification.individual)
        assert "department" in foreign_category_fields(Classification.organization)
        spam_fields = foreign_category_fields(Classification.spam)
        assert "org_type" in spam_fields and "department" in spam_fields
        assert foreign_category_fields(Classification.unclassified) == ()


def test_normalize_handle():
    assert normalize_handle(" @@bob ") == "bob"


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class TestProfile:
    def test_to_entity_maps_upstream_fields(self):
        profile = Profile.model_validate(
            {
                "id_str": "42",
                "screen_name": "Bob",
                "name": "Bob B",
                "description": "builder",
                "friends_count": 7,
                "followers_count": 9,
                "profile_image_url_https": "https://img/bob.png",
                "verification_info": {"type": "Business", "reason": "org"},
                "unknown_field": "ignored",
            }
        )
        entity = profile.to_entity()
        assert entity.handle == "Bob"
        assert entity.entity_id == "42"
        assert entity.bio == "builder"
        assert entity.following_count == 7
        assert entity.followers_count == 9
        assert entity.profile_image_url == "https://img/bob.png"
        assert entity.verification_type == "Business"
        assert entity.verification_reason == "org"
        assert profile.is_business_verified is True

    def test_entity_id_falls_back_to_numeric_id(self):
        profile = Profile.model_validate({"id": 77, "screen_name": "x"})
        assert profile.entity_id == "77"
        assert Profile(screen_name="y").entity_id is None


# ---------------------------------------------------------------------------
# Classification models
# ---------------------------------------------------------------------------


class TestRawClassification:
    def test_vibe_synonyms(self):
        assert RawClassification(screen_name="a", vibe="Person").vibe == "individual"
        assert RawClassification(screen_name="a", vibe="company").vibe == "organization"
        assert RawClassification(screen_name="a", vibe="BOT").vibe == "spam"

    def test_unknown_vibe_rejected(self):
        with pytest.raises(ValidationError):
            RawClassification(screen_name="a", vibe="alien")

    def test_aliases_and_coercions(self):
        raw = RawClassification.model_validate(
            {
                "screen_name": "@acme",
                "vibe": "organization",
                "orgType": "defi",
                "orgSubtype": '["lending", "dex"]',
                "web3Focus": "native",
            }
        )
        assert raw.screen_name == "acme"
        assert raw.org_type == "defi"
        assert raw.org_subtype == ["lending", "dex"]
        assert raw.web3_focus == "native"

    def test_comma_separated_mentions_split(self):
        raw = RawClassification.model_validate(
            {"screen_name": "a", "vibe": "individual", "current_organizations": "@x, @y"}
        )
        assert raw.current_organizations == ["@x", "@y"]

    def test_envelope_schema_uses_aliases(self):
        schema = ClassificationEnvelope.model_json_schema(by_alias=True)
        item = schema["$defs"]["RawClassification"]["properties"]
        assert "orgType" in item
        assert "web3Focus" in item


class TestClassificationResultUnion:
    def test_discriminated_union(self):
        adapter = TypeAdapter(ClassificationResult)
        assert isinstance(
            adapter.validate_python({"classification": "individual", "handle": "a"}),
            IndividualResult,
        )
        org = adapter.validate_python({"classification": "organization", "handle": "b"})
        assert isinstance(org, OrganizationResult)
        assert org.org_subtype == ["other"]
        assert isinstance(
            adapter.validate_python({"classification": "spam", "handle": "c"}),
            SpamResult,
        )

    def test_entity_fields_carry_only_own_category(self):
        fields = IndividualResult(handle="a", affiliations=["@x"]).entity_fields()
        assert fields["classification"] == Classification.individual
        assert fields["affiliations"] == ["@x"]
        assert "org_type" not in fields
        assert SpamResult(handle="s").entity_fields() == {
            "classification": Classification.spam
        }
