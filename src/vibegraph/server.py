"""VibeGraph: FastMCP server exposing the classification and graph tools.

Call ``configure(neo4j_url=...)`` before using the server. A profile API
key enables profile lookups; a Redis URL puts a cache in front of them.
"""

from __future__ import annotations

from time import perf_counter

from fastmcp import FastMCP
from neo4j import AsyncDriver
from neo4j import AsyncGraphDatabase
from pydantic import ValidationError
from redis.asyncio import Redis  # type: ignore[import-untyped]

from vibegraph.audit import AuditLogger
from vibegraph.config import AuditConfig
from vibegraph.config import ClassificationConfig
from vibegraph.config import LLMConfig
from vibegraph.config import ProfileAPIConfig
from vibegraph.config import ProfileCacheConfig
from vibegraph.config import SyncConfig
from vibegraph.engine import ClassificationPipeline
from vibegraph.engine import LLMAdapter
from vibegraph.engine import build_default_category_mapper
from vibegraph.engine import build_llm_adapter
from vibegraph.errors import TransientIOError
from vibegraph.graph import AffiliationLinker
from vibegraph.graph import BatchSynchronizer
from vibegraph.graph import DuplicateCleaner
from vibegraph.graph import FollowGraphSynchronizer
from vibegraph.graph import GraphStore
from vibegraph.graph import IdentityResolver
from vibegraph.graph import MutualFinder
from vibegraph.graph import init_schema
from vibegraph.models.entities import EdgeType
from vibegraph.models.entities import Entity
from vibegraph.models.schemas import AuditEventInfo
from vibegraph.models.schemas import CategoryMatchInfo
from vibegraph.models.schemas import ClassifiedProfile
from vibegraph.models.schemas import ClassifyProfilesResult
from vibegraph.models.schemas import CleanupDuplicatesResult
from vibegraph.models.schemas import FindMutualsResult
from vibegraph.models.schemas import GetEntityHistoryResult
from vibegraph.models.schemas import GetEntityResult
from vibegraph.models.schemas import GetOrganizationMembersResult
from vibegraph.models.schemas import MapCategoriesResult
from vibegraph.models.schemas import MemberInfo
from vibegraph.models.schemas import MutualInfo
from vibegraph.models.schemas import ResolveEntityResult
from vibegraph.models.schemas import SyncFollowsResult
from vibegraph.observability import record_latency
from vibegraph.profiles import CachedProfileSource
from vibegraph.profiles import ProfileCache
from vibegraph.profiles import ProfileClient
from vibegraph.profiles import ProfileSource

mcp = FastMCP("VibeGraph")

# ---------------------------------------------------------------------------
# Server state (set via configure())
# ---------------------------------------------------------------------------

_graph_driver: AsyncDriver | None = None
_redis: Redis | None = None
_graph_store: GraphStore | None = None
_resolver: IdentityResolver | None = None
_pipeline: ClassificationPipeline | None = None
_follow_sync: FollowGraphSynchronizer | None = None
_cleaner: DuplicateCleaner | None = None
_mutual_finder: MutualFinder | None = None
_profile_client: ProfileClient | None = None
_profile_source: ProfileSource | None = None
_audit_logger: AuditLogger | None = None


async def configure(
    neo4j_url: str = "bolt://localhost:7687",
    *,
    neo4j_auth: tuple[str, str] | None = None,
    redis_url: str | None = None,
    llm_config: LLMConfig | None = None,
    llm_adapter: LLMAdapter | None = None,
    profile_api_config: ProfileAPIConfig | None = None,
    profile_source: ProfileSource | None = None,
    profile_cache_config: ProfileCacheConfig | None = None,
    sync_config: SyncConfig | None = None,
    classification_config: ClassificationConfig | None = None,
    audit_config: AuditConfig | None = None,
) -> None:
    """Connect backends and wire the engines.

    Must be called before the MCP tools can function.
    """
    global _graph_driver, _redis, _graph_store, _resolver, _pipeline
    global _follow_sync, _cleaner, _mutual_finder, _profile_client, _profile_source
    global _audit_logger
    await shutdown()

    # Fail fast on LLM misconfiguration before opening connections
    llm_cfg = llm_config or LLMConfig()
    llm = llm_adapter or build_llm_adapter(llm_cfg)

    _audit_logger = AuditLogger(audit_config or AuditConfig())
    _graph_driver = AsyncGraphDatabase.driver(neo4j_url, auth=neo4j_auth)
    await init_schema(_graph_driver)
    _graph_store = GraphStore(_graph_driver)

    api_cfg = profile_api_config or ProfileAPIConfig()
    if api_cfg.api_key:
        _profile_client = ProfileClient(api_cfg)
    source = profile_source or _profile_client
    cache_cfg = profile_cache_config or ProfileCacheConfig()
    if source is not None and redis_url is not None and cache_cfg.enabled:
        _redis = Redis.from_url(redis_url)
        source = CachedProfileSource(source, ProfileCache(_redis, cache_cfg))
    _profile_source = source

    _resolver = IdentityResolver(_graph_store, audit_logger=_audit_logger)
    synchronizer = BatchSynchronizer(
        _graph_store,
        _resolver,
        config=sync_config,
        audit_logger=_audit_logger,
    )
    _pipeline = ClassificationPipeline(
        llm,
        _graph_store,
        _resolver,
        linker=AffiliationLinker(
            _graph_store,
            _resolver,
            synchronizer,
            profile_source=_profile_source,
            audit_logger=_audit_logger,
        ),
        config=classification_config,
        llm_config=llm_cfg,
        category_mapper=build_default_category_mapper(),
        audit_logger=_audit_logger,
    )
    _follow_sync = FollowGraphSynchronizer(
        _graph_store, synchronizer, audit_logger=_audit_logger
    )
    _cleaner = DuplicateCleaner(_graph_driver, audit_logger=_audit_logger)
    _mutual_finder = MutualFinder(_graph_store)


async def shutdown() -> None:
    """Close backend clients and release server resources."""
    global _graph_driver, _redis, _graph_store, _resolver, _pipeline
    global _follow_sync, _cleaner, _mutual_finder, _profile_client, _profile_source
    global _audit_logger
    if _graph_driver is not None:
        try:
            await _graph_driver.close()
        except RuntimeError:
            # Tests may reconfigure across event loops.
            pass
        _graph_driver = None
    if _redis is not None:
        try:
            await _redis.aclose()
        except RuntimeError:
            pass
        _redis = None
    _graph_store = None
    _resolver = None
    _pipeline = None
    _follow_sync = None
    _cleaner = None
    _mutual_finder = None
    _profile_client = None
    _profile_source = None
    _audit_logger = None


def _validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0] if exc.errors() else {}
    return str(err.get("msg", "Invalid input"))


def _not_configured(result_cls, message: str = "Server not configured. Call configure() first."):
    return result_cls(status="error", error_code="not_configured", message=message)


def _details(result) -> dict:
    return result.model_dump(mode="json", exclude={"classification", "handle", "source"})


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool
async def classify_profiles(handles: list[str]) -> ClassifyProfilesResult:
    """Classify accounts as individual, organization or spam and store the result.

    Args:
        handles: Account handles, with or without a leading "@".
    """
    start = perf_counter()
    ok = False
    try:
        if _pipeline is None:
            return _not_configured(ClassifyProfilesResult)
        if _profile_source is None:
            return _not_configured(
                ClassifyProfilesResult, "Profile lookups not configured."
            )
        try:
            lookup = await _profile_source.get_profiles(handles)
        except TransientIOError as exc:
            return ClassifyProfilesResult(
                status="error", error_code="profile_lookup_failed", message=str(exc)
            )

        run = await _pipeline.classify(list(lookup.found.values()))
        ok = True
        return ClassifyProfilesResult(
            classified=[
                ClassifiedProfile(
                    handle=result.handle,
                    classification=result.classification,
                    source=result.source.value,
                    details=_details(result),
                )
                for result in run.results.values()
            ],
            not_found=lookup.not_found,
            cached=run.cached,
            edges_created=run.link.total_created if run.link else 0,
            errors=run.errors
            + [f"@{handle}: {reason}" for handle, reason in lookup.failed.items()],
        )
    finally:
        record_latency(
            operation="mcp.classify_profiles",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def resolve_entity(handle: str, entity_id: str | None = None) -> ResolveEntityResult:
    """Upsert one account by handle, following handle changes by id.

    Args:
        handle: Account handle.
        entity_id: Platform id; looked up from the profile API when omitted.
    """
    start = perf_counter()
    ok = False
    try:
        if _resolver is None:
            return _not_configured(ResolveEntityResult)
        try:
            candidate = Entity(handle=handle, entity_id=entity_id)
        except ValidationError as exc:
            return ResolveEntityResult(
                status="error",
                error_code="validation_error",
                message=_validation_message(exc),
            )
        if entity_id is None and _profile_source is not None:
            try:
                profile = await _profile_source.get_profile(candidate.handle)
            except TransientIOError as exc:
                return ResolveEntityResult(
                    status="error",
                    error_code="profile_lookup_failed",
                    message=str(exc),
                    handle=candidate.handle,
                )
            if profile is not None:
                candidate = profile.to_entity()

        outcome = await _resolver.resolve_detailed(candidate)
        ok = True
        return ResolveEntityResult(
            handle=candidate.handle,
            entity_id=outcome.entity_id,
            action=outcome.action.value,
        )
    finally:
        record_latency(
            operation="mcp.resolve_entity",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def get_entity(handle: str) -> GetEntityResult:
    """Fetch a stored account by handle (case-insensitive)."""
    start = perf_counter()
    ok = False
    try:
        if _graph_store is None:
            return _not_configured(GetEntityResult)
        entity = await _graph_store.find_by_handle(handle)
        ok = True
        if entity is None:
            return GetEntityResult(
                status="error",
                error_code="not_found",
                message=f"No entity with handle @{handle.lstrip('@')}",
            )
        return GetEntityResult(entity=entity.model_dump(mode="json", exclude_none=True))
    finally:
        record_latency(
            operation="mcp.get_entity",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def sync_follows(handle: str, direction: str = "followers") -> SyncFollowsResult:
    """Mirror an account's followers or following list into FOLLOWS edges.

    Args:
        handle: Account whose list is synchronized.
        direction: "followers" or "following".
    """
    start = perf_counter()
    ok = False
    try:
        if _follow_sync is None or _resolver is None:
            return _not_configured(SyncFollowsResult)
        if _profile_client is None or _profile_source is None:
            return _not_configured(SyncFollowsResult, "Profile API not configured.")
        if direction not in ("followers", "following"):
            return SyncFollowsResult(
                status="error",
                error_code="invalid_direction",
                message="direction must be 'followers' or 'following'.",
            )
        try:
            profile = await _profile_source.get_profile(handle)
            if profile is None or profile.entity_id is None:
                return SyncFollowsResult(
                    status="error",
                    error_code="not_found",
                    message=f"Profile @{handle.lstrip('@')} not found",
                )
            await _resolver.resolve(profile.to_entity())
            if direction == "followers":
                listed = await _profile_client.list_followers(profile.entity_id)
            else:
                listed = await _profile_client.list_following(profile.entity_id)
        except TransientIOError as exc:
            return SyncFollowsResult(
                status="error", error_code="profile_lookup_failed", message=str(exc)
            )

        result = await _follow_sync.sync(
            profile.screen_name, [p.to_entity() for p in listed], direction
        )
        ok = True
        return SyncFollowsResult(
            handle=result.handle,
            direction=result.direction,
            added=result.added,
            removed=result.removed,
            unchanged=result.unchanged,
            errors=result.errors,
        )
    finally:
        record_latency(
            operation="mcp.sync_follows",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def map_categories(categories: list[str]) -> MapCategoriesResult:
    """Map free-text organization categories to a canonical org type."""
    start = perf_counter()
    ok = False
    try:
        mapper = build_default_category_mapper()
        matches = []
        for category in categories:
            match = mapper.validate_category(category)
            matches.append(
                CategoryMatchInfo(
                    category=category,
                    is_known=match.is_known,
                    org_type=match.org_type.value if match.org_type else None,
                    match_type=match.match_type,
                )
            )
        ok = True
        return MapCategoriesResult(
            org_type=mapper.map_to_org_type(categories).value,
            matches=matches,
        )
    finally:
        record_latency(
            operation="mcp.map_categories",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def cleanup_duplicates() -> CleanupDuplicatesResult:
    """Merge accounts stored more than once under case variants of a handle."""
    start = perf_counter()
    ok = False
    try:
        if _cleaner is None:
            return _not_configured(CleanupDuplicatesResult)
        result = await _cleaner.run()
        ok = not result.errors
        return CleanupDuplicatesResult(
            status="ok" if ok else "error",
            error_code=None if ok else "partial_failure",
            groups_merged=result.groups_merged,
            nodes_deleted=result.nodes_deleted,
            relationships_rewired=result.relationships_rewired,
            handles_backfilled=result.handles_backfilled,
            errors=result.errors,
        )
    finally:
        record_latency(
            operation="mcp.cleanup_duplicates",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def find_mutuals(user: str, prospect: str, limit: int = 50) -> FindMutualsResult:
    """Find intro paths from a user to a prospect.

    Direct mutuals are accounts the prospect follows that follow the user.
    Organizational mutuals are followers of the user who share an
    organization with the prospect or with someone the prospect mutually
    follows. Results are sorted by relevancy score.

    Args:
        user: The account looking for an introduction.
        prospect: The account to be introduced to.
        limit: Maximum number of mutuals returned.
    """
    start = perf_counter()
    ok = False
    try:
        if _mutual_finder is None:
            return _not_configured(FindMutualsResult)
        if limit < 1:
            return FindMutualsResult(
                status="error",
                error_code="validation_error",
                message="limit must be at least 1.",
            )
        result = await _mutual_finder.find_mutuals(user, prospect)
        ok = True
        return FindMutualsResult(
            user=user.lstrip("@").lower(),
            prospect=prospect.lstrip("@").lower(),
            mutuals=[
                MutualInfo(
                    handle=mutual.entity.handle,
                    name=mutual.entity.name,
                    mutual_type=mutual.mutual_type.value,
                    relevancy_score=mutual.relevancy_score,
                    followers_count=mutual.entity.followers_count,
                    verified=mutual.entity.verified,
                    org_connections=[
                        conn.model_dump(mode="json") for conn in mutual.org_connections
                    ],
                )
                for mutual in result.combined[:limit]
            ],
            direct_count=len(result.direct),
            org_count=len(result.organizational),
        )
    finally:
        record_latency(
            operation="mcp.find_mutuals",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def get_organization_members(
    organization: str, include_past: bool = False
) -> GetOrganizationMembersResult:
    """List the people who work (or worked) at an organization.

    Args:
        organization: Organization handle.
        include_past: Also list WORKED_AT relationships.
    """
    start = perf_counter()
    ok = False
    try:
        if _graph_store is None:
            return _not_configured(GetOrganizationMembersResult)
        relations = [EdgeType.WORKS_AT]
        if include_past:
            relations.append(EdgeType.WORKED_AT)
        members = await _graph_store.get_organization_members(organization, relations)
        ok = True
        return GetOrganizationMembersResult(
            organization=organization.lstrip("@").lower(),
            members=[
                MemberInfo(
                    handle=member.entity.handle,
                    name=member.entity.name,
                    relation=member.relation.value,
                    department=member.entity.department.value
                    if member.entity.department
                    else None,
                )
                for member in members
            ],
        )
    finally:
        record_latency(
            operation="mcp.get_organization_members",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def get_entity_history(handle: str, limit: int = 50) -> GetEntityHistoryResult:
    """Replay the audit trail of one account, oldest first.

    Covers creation, updates, renames, identity conflicts and follow syncs.

    Args:
        handle: Account handle; also matches events where it was the
            previous handle.
        limit: Maximum number of most recent events returned.
    """
    start = perf_counter()
    ok = False
    try:
        if _audit_logger is None:
            return _not_configured(GetEntityHistoryResult)
        events = await _audit_logger.entity_history(handle, limit=max(0, limit))
        ok = True
        return GetEntityHistoryResult(
            handle=handle.lstrip("@").lower(),
            events=[
                AuditEventInfo(
                    timestamp=event.timestamp,
                    event_type=event.event_type.value,
                    payload=event.payload,
                )
                for event in events
            ],
        )
    finally:
        record_latency(
            operation="mcp.get_entity_history",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )
