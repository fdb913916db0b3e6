"""Classification result models.

Two layers live here:

* ``RawClassification`` / ``ClassificationEnvelope`` describe what the LLM
  is asked to return. They are deliberately loose (free strings) so a
  partially wrong answer still validates and can be coerced downstream.
* ``IndividualResult`` / ``OrganizationResult`` / ``SpamResult`` form the
  normalized tagged union the rest of the system consumes.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Annotated
from typing import Literal
from typing import Union

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator

from vibegraph.models.entities import Classification
from vibegraph.models.entities import Department
from vibegraph.models.entities import OrgType
from vibegraph.models.entities import Web3Focus
from vibegraph.models.entities import normalize_handle

_VIBE_SYNONYMS = {
    "individual": "individual",
    "person": "individual",
    "human": "individual",
    "organization": "organization",
    "organisation": "organization",
    "org": "organization",
    "company": "organization",
    "project": "organization",
    "spam": "spam",
    "bot": "spam",
}

# ---------------------------------------------------------------------------
# LLM-facing schema
# ---------------------------------------------------------------------------


class RawClassification(BaseModel):
    """One profile classification as emitted by the LLM."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    screen_name: str = Field(description="Handle of the classified profile, without '@'.")
    vibe: str = Field(description="One of: individual, organization, spam.")
    current_organizations: list[str] | None = Field(
        default=None,
        description="Individuals only: @handles of current employers.",
    )
    past_organizations: list[str] | None = Field(
        default=None,
        description="Individuals only: @handles of former employers.",
    )
    member_of: list[str] | None = Field(
        default=None,
        description="Individuals only: @handles of non-employment affiliations.",
    )
    department: str | None = Field(
        default=None,
        description="Individuals only: " + ", ".join(d.value for d in Department) + ".",
    )
    org_type: str | None = Field(
        default=None,
        alias="orgType",
        description="Organizations only: " + ", ".join(t.value for t in OrgType) + ".",
    )
    org_subtype: list[str] | None = Field(
        default=None,
        alias="orgSubtype",
        description="Organizations only: free-text category tags.",
    )
    web3_focus: str | None = Field(
        default=None,
        alias="web3Focus",
        description="Organizations only: native, adjacent or traditional.",
    )

    @field_validator("screen_name")
    @classmethod
    def _clean_screen_name(cls, value: str) -> str:
        cleaned = normalize_handle(value)
        if not cleaned:
            raise ValueError("screen_name must not be empty")
        return cleaned

    @field_validator("vibe", mode="before")
    @classmethod
    def _canonical_vibe(cls, value: object) -> str:
        key = str(value or "").strip().lower()
        if key not in _VIBE_SYNONYMS:
            raise ValueError(f"unknown vibe {value!r}")
        return _VIBE_SYNONYMS[key]

    @field_validator(
        "current_organizations", "past_organizations", "member_of", mode="before"
    )
    @classmethod
    def _coerce_handle_list(cls, value: object) -> object:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("org_subtype", mode="before")
    @classmethod
    def _coerce_subtype(cls, value: object) -> object:
        # Stored values and some model answers carry the list as JSON text
        if isinstance(value, str):
            try:
                decoded = json.loads(value)
            except ValueError:
                return [part.strip() for part in value.split(",") if part.strip()]
            if isinstance(decoded, list):
                return [str(item) for item in decoded]
            return [str(decoded)]
        return value


class ClassificationEnvelope(BaseModel):
    """Top-level object the LLM must return."""

    results: list[RawClassification] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Normalized results (tagged union)
# ---------------------------------------------------------------------------


class ResultSource(str, Enum):
    """Where a classification came from."""

    cache = "cache"
    spam_rule = "spam_rule"
    llm = "llm"
    heuristic = "heuristic"
    fallback = "fallback"


class IndividualResult(BaseModel):
    classification: Literal["individual"] = "individual"
    handle: str
    current_organizations: list[str] = Field(default_factory=list)
    past_organizations: list[str] = Field(default_factory=list)
    affiliations: list[str] = Field(default_factory=list)
    department: Department = Department.other
    source: ResultSource = ResultSource.llm

    def entity_fields(self) -> dict:
        return {
            "classification": Classification.individual,
            "current_organizations": list(self.current_organizations),
            "past_organizations": list(self.past_organizations),
            "affiliations": list(self.affiliations),
            "department": self.department,
        }


class OrganizationResult(BaseModel):
    classification: Literal["organization"] = "organization"
    handle: str
    org_type: OrgType = OrgType.service
    org_subtype: list[str] = Field(default_factory=lambda: ["other"])
    web3_focus: Web3Focus = Web3Focus.traditional
    source: ResultSource = ResultSource.llm

    def entity_fields(self) -> dict:
        return {
            "classification": Classification.organization,
            "org_type": self.org_type,
            "org_subtype": list(self.org_subtype),
            "web3_focus": self.web3_focus,
        }


class SpamResult(BaseModel):
    classification: Literal["spam"] = "spam"
    handle: str
    source: ResultSource = ResultSource.spam_rule

    def entity_fields(self) -> dict:
        return {"classification": Classification.spam}


ClassificationResult = Annotated[
    Union[IndividualResult, OrganizationResult, SpamResult],
    Field(discriminator="classification"),
]
