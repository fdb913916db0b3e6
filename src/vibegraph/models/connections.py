"""Mutual-connection and membership read models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel
from pydantic import Field

from vibegraph.models.entities import EdgeType
from vibegraph.models.entities import Entity


class MutualType(str, Enum):
    direct = "direct"
    organizational = "organizational"


class MatchSource(str, Enum):
    # The prospect is linked to the organization itself
    prospect_direct = "prospect_direct"
    # Reached through someone the prospect mutually follows
    prospect_following = "prospect_following"


class OrgConnection(BaseModel):
    """One organization shared by a mutual and the prospect side."""

    model_config = {"frozen": True}

    org_handle: str
    org_name: str | None = None
    user_relation: EdgeType
    prospect_relation: EdgeType
    match_source: MatchSource
    via_handle: str | None = Field(
        default=None,
        description="Intermediary the prospect mutually follows, for indirect matches.",
    )


class MutualConnection(BaseModel):
    entity: Entity
    mutual_type: MutualType
    relevancy_score: float = 0.0
    org_connections: list[OrgConnection] = Field(default_factory=list)


class OrganizationMember(BaseModel):
    entity: Entity
    relation: EdgeType
