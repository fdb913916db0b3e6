"""Input/output models for the MCP tools."""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import Field


class ToolResult(BaseModel):
    status: str = Field(default="ok", description="ok or error.")
    error_code: str | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# classify_profiles
# ---------------------------------------------------------------------------


class ClassifiedProfile(BaseModel):
    handle: str
    classification: str
    source: str
    details: dict = Field(default_factory=dict)


class ClassifyProfilesResult(ToolResult):
    classified: list[ClassifiedProfile] = Field(default_factory=list)
    not_found: list[str] = Field(default_factory=list)
    cached: int = 0
    edges_created: int = 0
    errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# resolve_entity / get_entity
# ---------------------------------------------------------------------------


class ResolveEntityResult(ToolResult):
    handle: str = ""
    entity_id: str | None = None
    action: str | None = None


class GetEntityResult(ToolResult):
    entity: dict | None = None


# ---------------------------------------------------------------------------
# sync_follows
# ---------------------------------------------------------------------------


class SyncFollowsResult(ToolResult):
    handle: str = ""
    direction: str = ""
    added: int = 0
    removed: int = 0
    unchanged: int = 0
    errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# map_categories / cleanup_duplicates
# ---------------------------------------------------------------------------


class CategoryMatchInfo(BaseModel):
    category: str
    is_known: bool
    org_type: str | None = None
    match_type: str


class MapCategoriesResult(ToolResult):
    org_type: str = ""
    matches: list[CategoryMatchInfo] = Field(default_factory=list)


class CleanupDuplicatesResult(ToolResult):
    groups_merged: int = 0
    nodes_deleted: int = 0
    relationships_rewired: int = 0
    handles_backfilled: int = 0
    errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# find_mutuals / get_organization_members
# ---------------------------------------------------------------------------


class MutualInfo(BaseModel):
    handle: str
    name: str | None = None
    mutual_type: str
    relevancy_score: float
    followers_count: int = 0
    verified: bool = False
    org_connections: list[dict] = Field(default_factory=list)


class FindMutualsResult(ToolResult):
    user: str = ""
    prospect: str = ""
    mutuals: list[MutualInfo] = Field(default_factory=list)
    direct_count: int = 0
    org_count: int = 0


class MemberInfo(BaseModel):
    handle: str
    name: str | None = None
    relation: str
    department: str | None = None


class GetOrganizationMembersResult(ToolResult):
    organization: str = ""
    members: list[MemberInfo] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# get_entity_history
# ---------------------------------------------------------------------------


class AuditEventInfo(BaseModel):
    timestamp: float
    event_type: str
    payload: dict = Field(default_factory=dict)


class GetEntityHistoryResult(ToolResult):
    handle: str = ""
    events: list[AuditEventInfo] = Field(default_factory=list)
