"""Pydantic models for graph entities and their edges.

Every account in the graph is a single ``Entity`` node keyed by its
case-insensitive handle. Classification-dependent fields are split into
two groups (individual-only and organization-only); an entity only ever
carries the group matching its current classification.
"""

from __future__ import annotations

from datetime import datetime
from datetime import timezone
from enum import Enum

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator
from pydantic import model_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Classification(str, Enum):
    """Top-level category ("vibe") of an account."""

    individual = "individual"
    organization = "organization"
    spam = "spam"
    unclassified = "unclassified"


class OrgType(str, Enum):
    """Canonical organization type."""

    infrastructure = "infrastructure"
    defi = "defi"
    exchange = "exchange"
    investment = "investment"
    service = "service"
    community = "community"
    gaming = "gaming"
    social = "social"
    nft = "nft"
    protocol = "protocol"


class Department(str, Enum):
    """Department an individual works in."""

    engineering = "engineering"
    product = "product"
    marketing = "marketing"
    business = "business"
    operations = "operations"
    research = "research"
    community = "community"
    leadership = "leadership"
    other = "other"


class Web3Focus(str, Enum):
    """How deeply an organization is rooted in web3."""

    native = "native"
    adjacent = "adjacent"
    traditional = "traditional"


class EdgeType(str, Enum):
    """Directed relationship types between entities."""

    FOLLOWS = "FOLLOWS"
    WORKS_AT = "WORKS_AT"
    WORKED_AT = "WORKED_AT"
    AFFILIATED_WITH = "AFFILIATED_WITH"


# Person -> organization relationships
AFFILIATION_EDGE_TYPES = (EdgeType.WORKS_AT, EdgeType.WORKED_AT, EdgeType.AFFILIATED_WITH)


INDIVIDUAL_FIELDS = (
    "current_organizations",
    "past_organizations",
    "affiliations",
    "department",
)
ORGANIZATION_FIELDS = ("org_type", "org_subtype", "web3_focus")

# Fields whose change makes a stored profile stale regardless of age
TRACKED_PROFILE_FIELDS = (
    "handle",
    "name",
    "profile_image_url",
    "bio",
    "location",
    "url",
    "followers_count",
    "following_count",
    "verified",
    "classification",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_handle(value: str) -> str:
    """Strip whitespace and a leading ``@`` from a handle."""
    return value.strip().lstrip("@").strip()


# ---------------------------------------------------------------------------
# Entity
# ---------------------------------------------------------------------------


class Entity(BaseModel):
    """A person, organization or unclassified account in the graph."""

    handle: str = Field(description="Account handle; case-insensitive identity key.")
    entity_id: str | None = Field(
        default=None,
        description="External platform id. Not stable across data sources.",
    )
    classification: Classification = Field(default=Classification.unclassified)

    # Common profile fields
    name: str | None = None
    bio: str | None = None
    location: str | None = None
    url: str | None = None
    profile_image_url: str | None = None
    followers_count: int = 0
    following_count: int = 0
    verified: bool = False
    verification_type: str | None = None
    verification_reason: str | None = None

    # Individual-only
    current_organizations: list[str] | None = None
    past_organizations: list[str] | None = None
    affiliations: list[str] | None = None
    department: Department | None = None

    # Organization-only
    org_type: OrgType | None = None
    org_subtype: list[str] | None = None
    web3_focus: Web3Focus | None = None

    implied: bool = Field(
        default=False,
        description="Minimal organization created from a mention, pending enrichment.",
    )
    classified_at: datetime | None = None
    last_updated: datetime = Field(default_factory=_utcnow)

    @field_validator("handle")
    @classmethod
    def _clean_handle(cls, value: str) -> str:
        cleaned = normalize_handle(value)
        if not cleaned:
            raise ValueError("handle must not be empty")
        return cleaned

    @field_validator("entity_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        if value is None or value == "":
            return None
        if isinstance(value, int):
            return str(value)
        return value

    @model_validator(mode="after")
    def _drop_foreign_category_fields(self) -> Entity:
        for name in foreign_category_fields(self.classification):
            setattr(self, name, None)
        return self

    @property
    def handle_lower(self) -> str:
        return self.handle.lower()

    @property
    def is_organization_complete(self) -> bool:
        return (
            self.org_type is not None
            and bool(self.org_subtype)
            and self.web3_focus is not None
        )


def foreign_category_fields(classification: Classification) -> tuple[str, ...]:
    """Return the fields an entity of *classification* must not carry."""
    if classification == Classification.individual:
        return ORGANIZATION_FIELDS
    if classification == Classification.organization:
        return INDIVIDUAL_FIELDS
    if classification == Classification.spam:
        return INDIVIDUAL_FIELDS + ORGANIZATION_FIELDS
    # Unclassified entities have not been categorized yet; nothing to clear.
    return ()
