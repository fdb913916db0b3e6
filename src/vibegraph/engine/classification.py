"""Classification pipeline.

Per profile::

    cached (fresh and complete) -> done
    otherwise -> spam rule | LLM request -> parse ladder -> normalize
    -> persist through the identity resolver -> affiliation linking

LLM calls go through the ``LLMAdapter`` protocol so providers can be
swapped and tests can inject a mock.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import TYPE_CHECKING
from typing import Protocol

from vibegraph.audit.schemas import AuditEventType
from vibegraph.config import ClassificationConfig
from vibegraph.config import LLMConfig
from vibegraph.engine.category_mapper import CategoryMapper
from vibegraph.engine.category_mapper import build_default_category_mapper
from vibegraph.engine.parsing import ClassificationParser
from vibegraph.engine.prompt_builder import SYSTEM_PROMPT
from vibegraph.engine.prompt_builder import build_classification_prompt
from vibegraph.engine.prompt_builder import response_format
from vibegraph.errors import TransientIOError
from vibegraph.graph.sync import chunked
from vibegraph.models.classification import ClassificationResult
from vibegraph.models.classification import IndividualResult
from vibegraph.models.classification import OrganizationResult
from vibegraph.models.classification import RawClassification
from vibegraph.models.classification import ResultSource
from vibegraph.models.classification import SpamResult
from vibegraph.models.entities import Classification
from vibegraph.models.entities import Department
from vibegraph.models.entities import Entity
from vibegraph.models.entities import OrgType
from vibegraph.models.entities import Web3Focus
from vibegraph.models.entities import normalize_handle
from vibegraph.models.profiles import Profile
from vibegraph.observability import track_latency

if TYPE_CHECKING:
    from vibegraph.audit.store import AuditLogger
    from vibegraph.graph.linking import AffiliationLinker
    from vibegraph.graph.linking import LinkResult
    from vibegraph.graph.resolution import IdentityResolver
    from vibegraph.graph.store import GraphStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# LLM adapter protocol
# ---------------------------------------------------------------------------


class LLMAdapter(Protocol):
    """Protocol for LLM provider adapters.

    Concrete implementations live in ``llm_adapters``. Tests use a
    ``MockLLMAdapter``.
    """

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        response_format: dict | None = None,
        temperature: float = 0.1,
        max_tokens: int = 8192,
        timeout_seconds: float = 60.0,
    ) -> str: ...


class LLMError(TransientIOError):
    """Raised by LLM adapters when a call fails."""


# ---------------------------------------------------------------------------
# Cache freshness
# ---------------------------------------------------------------------------


def is_classification_fresh(
    entity: Entity,
    *,
    max_age: timedelta,
    now: datetime | None = None,
) -> bool:
    """Return ``True`` when the stored classification can be reused.

    Organizations missing any of their three sub-fields are never fresh.
    """
    if entity.classification == Classification.unclassified:
        return False
    if entity.classified_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    classified_at = entity.classified_at
    if classified_at.tzinfo is None:
        classified_at = classified_at.replace(tzinfo=timezone.utc)
    if now - classified_at > max_age:
        return False
    if entity.classification == Classification.organization:
        return entity.is_organization_complete
    return True


def result_from_entity(entity: Entity) -> ClassificationResult:
    """Rebuild a classification result from a stored entity."""
    if entity.classification == Classification.organization:
        return OrganizationResult(
            handle=entity.handle,
            org_type=entity.org_type or OrgType.service,
            org_subtype=entity.org_subtype or ["other"],
            web3_focus=entity.web3_focus or Web3Focus.traditional,
            source=ResultSource.cache,
        )
    if entity.classification == Classification.spam:
        return SpamResult(handle=entity.handle, source=ResultSource.cache)
    return IndividualResult(
        handle=entity.handle,
        current_organizations=entity.current_organizations or [],
        past_organizations=entity.past_organizations or [],
        affiliations=entity.affiliations or [],
        department=entity.department or Department.other,
        source=ResultSource.cache,
    )


def is_spam_profile(profile: Profile, threshold: int) -> bool:
    return profile.followers_count < threshold and profile.friends_count < threshold


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

_FALLBACK_ORG_RE = re.compile(
    r"\b(protocol|platform|ecosystem|foundation|dao|fund|vc)\b", re.IGNORECASE
)


def fallback_result(profile: Profile) -> ClassificationResult:
    """Bio keyword classification used when the LLM gave nothing usable."""
    if _FALLBACK_ORG_RE.search(profile.description or ""):
        return OrganizationResult(
            handle=profile.screen_name,
            org_type=OrgType.service,
            org_subtype=["other"],
            web3_focus=Web3Focus.traditional,
            source=ResultSource.fallback,
        )
    return IndividualResult(
        handle=profile.screen_name,
        department=Department.other,
        source=ResultSource.fallback,
    )


def _enum_or(enum_cls, value: str | None, default):
    if value:
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    return default


def _clean_mentions(values: list[str] | None, *, seen: set[str]) -> list[str]:
    cleaned = []
    for value in values or []:
        mention = value.strip()
        key = normalize_handle(mention).lower()
        if not key or key in seen:
            continue
        seen.add(key)
        cleaned.append(mention)
    return cleaned


def normalize_result(
    raw: RawClassification,
    *,
    mapper: CategoryMapper,
    source: ResultSource = ResultSource.llm,
) -> ClassificationResult:
    """Coerce one raw LLM result into the typed union with defaults."""
    if raw.vibe == Classification.spam.value:
        return SpamResult(handle=raw.screen_name, source=source)

    if raw.vibe == Classification.organization.value:
        subtype = [s.strip() for s in raw.org_subtype or [] if s and s.strip()]
        org_type = _enum_or(OrgType, raw.org_type, None)
        if org_type is None:
            categories = [c for c in [raw.org_type, *subtype] if c]
            org_type = (
                mapper.map_to_org_type(categories) if categories else OrgType.service
            )
        return OrganizationResult(
            handle=raw.screen_name,
            org_type=org_type,
            org_subtype=subtype or ["other"],
            web3_focus=_enum_or(Web3Focus, raw.web3_focus, Web3Focus.traditional),
            source=source,
        )

    # A mention belongs to the first list it appears in
    seen: set[str] = set()
    return IndividualResult(
        handle=raw.screen_name,
        current_organizations=_clean_mentions(raw.current_organizations, seen=seen),
        past_organizations=_clean_mentions(raw.past_organizations, seen=seen),
        affiliations=_clean_mentions(raw.member_of, seen=seen),
        department=_enum_or(Department, raw.department, Department.other),
        source=source,
    )


def _referenced(result: IndividualResult) -> set[str]:
    return {
        normalize_handle(m).lower()
        for m in (
            *result.current_organizations,
            *result.past_organizations,
            *result.affiliations,
        )
    }


def normalize_batch(
    raw_results: Sequence[RawClassification],
    profiles: Sequence[Profile],
    *,
    mapper: CategoryMapper,
    source: ResultSource = ResultSource.llm,
) -> dict[str, ClassificationResult]:
    """Normalize a parsed batch, keyed by lowercased requested handle.

    Results for handles outside the request are dropped. Organizations the
    model classified for mentioned handles are added to the affiliations
    of the individuals whose bio mentions them, when not referenced yet.
    """
    requested = {p.screen_name.lower(): p for p in profiles}
    results: dict[str, ClassificationResult] = {}
    extra_orgs: list[str] = []
    for raw in raw_results:
        key = raw.screen_name.lower()
        if key not in requested:
            if raw.vibe == Classification.organization.value:
                extra_orgs.append(raw.screen_name)
            else:
                logger.debug("Dropping result for unrequested handle @%s", raw.screen_name)
            continue
        if key in results:
            continue
        results[key] = normalize_result(raw, mapper=mapper, source=source)

    for org in extra_orgs:
        mention = f"@{org.lower()}"
        for key, result in results.items():
            if not isinstance(result, IndividualResult):
                continue
            bio = (requested[key].description or "").lower()
            if not re.search(re.escape(mention) + r"\b", bio):
                continue
            if org.lower() not in _referenced(result):
                result.affiliations.append(f"@{org}")
    return results


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


@dataclass
class ClassificationRunResult:
    results: dict[str, ClassificationResult] = field(default_factory=dict)
    cached: int = 0
    spam: int = 0
    llm_classified: int = 0
    fallback: int = 0
    persisted: int = 0
    parse_stages: list[str] = field(default_factory=list)
    link: LinkResult | None = None
    errors: list[str] = field(default_factory=list)


class ClassificationPipeline:
    """Classifies profiles and persists the outcome."""

    def __init__(
        self,
        llm: LLMAdapter,
        graph_store: GraphStore,
        resolver: IdentityResolver,
        *,
        linker: AffiliationLinker | None = None,
        config: ClassificationConfig | None = None,
        llm_config: LLMConfig | None = None,
        category_mapper: CategoryMapper | None = None,
        parser: ClassificationParser | None = None,
        audit_logger: AuditLogger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._llm = llm
        self._graph = graph_store
        self._resolver = resolver
        self._linker = linker
        self._config = config or ClassificationConfig()
        self._llm_config = llm_config or LLMConfig()
        self._mapper = category_mapper or build_default_category_mapper()
        self._parser = parser or ClassificationParser()
        self._audit = audit_logger
        self._sleep = sleep

    async def classify(self, profiles: Sequence[Profile]) -> ClassificationRunResult:
        run = ClassificationRunResult()
        unique = list({p.screen_name.lower(): p for p in profiles}.values())
        if not unique:
            return run

        async with track_latency("classification.classify"):
            stored = await self._graph.get_entities_by_handles(
                [p.screen_name for p in unique]
            )
            max_age = timedelta(days=self._config.freshness_days)
            now = datetime.now(timezone.utc)

            pending: list[Profile] = []
            fresh: dict[str, ClassificationResult] = {}
            for profile in unique:
                key = profile.screen_name.lower()
                entity = stored.get(key)
                if entity is not None and is_classification_fresh(
                    entity, max_age=max_age, now=now
                ):
                    run.results[key] = result_from_entity(entity)
                    run.cached += 1
                elif is_spam_profile(profile, self._config.spam_follower_threshold):
                    fresh[key] = SpamResult(handle=profile.screen_name)
                    run.spam += 1
                else:
                    pending.append(profile)

            for batch in chunked(pending, max(1, self._config.llm_batch_size)):
                batch_results, stage = await self._classify_batch(batch)
                run.parse_stages.append(stage)
                for profile in batch:
                    key = profile.screen_name.lower()
                    result = batch_results.get(key)
                    if result is None:
                        result = fallback_result(profile)
                    if result.source == ResultSource.fallback:
                        run.fallback += 1
                    else:
                        run.llm_classified += 1
                    fresh[key] = result

            by_handle = {p.screen_name.lower(): p for p in unique}
            for key, result in fresh.items():
                run.results[key] = result
                try:
                    await self._resolver.resolve(
                        _entity_for(by_handle[key], result, classified_at=now)
                    )
                except Exception as exc:
                    logger.warning("Failed to persist classification for @%s: %s", key, exc)
                    run.errors.append(f"@{key}: {exc}")
                    continue
                run.persisted += 1

            if self._linker is not None and self._config.link_affiliations:
                try:
                    run.link = await self._linker.extract_and_link(fresh.values())
                except Exception as exc:
                    logger.warning("Affiliation linking failed: %s", exc)
                    run.errors.append(f"linking: {exc}")
                else:
                    run.errors.extend(run.link.errors)

        logger.info(
            "Classified %d profiles: cached=%d spam=%d llm=%d fallback=%d errors=%d",
            len(unique),
            run.cached,
            run.spam,
            run.llm_classified,
            run.fallback,
            len(run.errors),
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.CLASSIFICATION_RUN,
                profiles=len(unique),
                cached=run.cached,
                spam=run.spam,
                llm_classified=run.llm_classified,
                fallback=run.fallback,
                persisted=run.persisted,
                parse_stages=run.parse_stages,
                errors=len(run.errors),
            )
        return run

    async def _classify_batch(
        self, batch: list[Profile]
    ) -> tuple[dict[str, ClassificationResult], str]:
        raw = await self._request(build_classification_prompt(batch))
        if raw is None:
            logger.warning(
                "LLM unavailable for %d profiles, using bio fallback", len(batch)
            )
            return {p.screen_name.lower(): fallback_result(p) for p in batch}, "fallback"

        outcome = self._parser.parse(raw, batch)
        source = (
            ResultSource.heuristic
            if outcome.stage == "keyword_heuristic"
            else ResultSource.llm
        )
        return (
            normalize_batch(outcome.results, batch, mapper=self._mapper, source=source),
            outcome.stage,
        )

    async def _request(self, prompt: str) -> str | None:
        """Call the LLM, retrying on errors and empty answers."""
        cfg = self._llm_config
        attempts = self._config.max_retries + 1
        for attempt in range(attempts):
            try:
                raw = await self._llm.complete(
                    prompt,
                    system_prompt=SYSTEM_PROMPT,
                    response_format=response_format() if cfg.structured_output else None,
                    temperature=cfg.temperature,
                    max_tokens=cfg.max_tokens,
                    timeout_seconds=cfg.timeout_seconds,
                )
            except LLMError as exc:
                logger.warning("LLM call failed (attempt %d/%d): %s", attempt + 1, attempts, exc)
            else:
                if raw and raw.strip():
                    return raw
                logger.warning("Empty LLM response (attempt %d/%d)", attempt + 1, attempts)
            if attempt + 1 < attempts:
                await self._sleep(self._config.retry_backoff_seconds)
        return None


def _entity_for(
    profile: Profile,
    result: ClassificationResult,
    *,
    classified_at: datetime,
) -> Entity:
    data = profile.to_entity().model_dump(exclude_unset=True)
    data.update(result.entity_fields())
    data["classified_at"] = classified_at
    return Entity.model_validate(data)
