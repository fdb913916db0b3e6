"""Free-text category tags to canonical ``OrgType``.

Three matching tiers, tried in order over *all* given categories before
moving to the next tier:

    1. Exact match on the normalized tag
    2. Fuzzy match on separator and plural/singular variants
    3. Anchored regex over whitespace/hyphen/underscore variants

The mapper is immutable once built. ``build_default_category_mapper``
returns a process-wide instance to inject into consumers.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType

from vibegraph.models.entities import OrgType

DEFAULT_ORG_TYPE = OrgType.protocol

# ---------------------------------------------------------------------------
# Category definitions
# ---------------------------------------------------------------------------

CATEGORY_DEFINITIONS: Mapping[OrgType, tuple[str, ...]] = MappingProxyType(
    {
        OrgType.infrastructure: (
            "chain", "infrastructure", "layer-1", "layer2", "rollup", "zk_rollup",
            "sidechain", "Bridge", "bridge aggregator", "Cross Chain Bridge",
            "Canonical Bridge", "Oracle", "Developer Tools", "tool",
            "video infrastructure", "iot blockchain", "interface", "mev", "Privacy",
            "Security Extension", "Domains", "wallet", "Wallets", "DePIN",
        ),
        OrgType.defi: (
            "rwa", "basis trading", "onchain capital allocator", "yield aggregator",
            "farm", "Token Locker", "cedeFi", "cdp", "cdp manager", "derivatives",
            "options", "Algo-Stables", "stablecoin issuer",
            "partially algorithmic stablecoin", "reserve currency", "anchor btc",
            "leveraged trading", "indexes", "options vault", "synthetics",
            "uncollateralized lending", "Yield", "liquid staking", "liquid restaking",
            "restaked btc", "staking pool", "Liquidity manager",
            "Liquidity Automation", "volume boosting", "dca tools", "nft lending",
            "decentralized btc", "collateral management", "leveraged farming",
            "nftfi", "un-collateralized lending", "yield lottery", "yield farming",
            "lending", "ponzi", "dor", "RWA Lending", "Restaking",
            "Dual-Token Stablecoin", "Liquidations", "Staking Rental",
        ),
        OrgType.exchange: (
            "Dexs", "DEX aggregator", "CEX", "trading app", "otc marketplace",
            "Launchpad",
        ),
        OrgType.investment: (
            "VC", "Venture Capital", "Fund", "Private Investment Platform",
        ),
        OrgType.service: ("Event Hosting", "Services", "support", "enterprise"),
        OrgType.community: (
            "DAO Service provider", "dao", "Governance Incentives",
            "Treasury Manager", "Builders House", "Advocacy", "foundation",
            "charity fundraising", "international economic forum",
            "anonymous league", "mascot",
        ),
        OrgType.gaming: ("gaming",),
        OrgType.social: (
            "soFi", "social matching app", "telegram bot", "meme", "social",
            "information",
        ),
        OrgType.nft: ("nft marketplace", "nft launchpad", "nft", "nft project"),
        OrgType.protocol: (
            "Prediction Market", "risk curators", "insurance", "bug bounty",
            "portfolio tracker", "coins tracker", "ai agents", "Payments",
            "Chain Bribes",
        ),
    }
)

_SEPARATORS_RE = re.compile(r"[_\s-]+")


def normalize_category(value: str) -> str:
    """Lowercase, trim, and collapse ``_``/``-``/whitespace runs to one space."""
    return _SEPARATORS_RE.sub(" ", value.lower().strip())


def _fuzzy_variants(category: str) -> list[str]:
    lower = category.lower()
    variants = [
        category,
        lower,
        re.sub(r"[_-]", " ", lower),
        re.sub(r"\s+", "_", lower),
        re.sub(r"\s+", "-", lower),
        re.sub(r"\s+", "", lower),
    ]
    if lower.endswith("s") and len(lower) > 3:
        variants.append(lower[:-1])
    else:
        variants.append(lower + "s")
    return list(dict.fromkeys(variants))


def _needs_pattern(category: str) -> bool:
    return any(sep in category for sep in (" ", "-", "_"))


def _build_pattern(category: str) -> re.Pattern[str]:
    # re.escape also escapes spaces and hyphens, so split on separators first
    parts = [re.escape(part) for part in _SEPARATORS_RE.split(category) if part]
    return re.compile("^" + r"[\s_-]+".join(parts) + "$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CategoryMatch:
    """Result of validating one category tag."""

    is_known: bool
    org_type: OrgType | None
    match_type: str  # "exact", "fuzzy", "pattern", "none"


class CategoryMapper:
    """Immutable lookup from category tags to ``OrgType``."""

    __slots__ = ("_exact", "_fuzzy", "_patterns", "_total_categories")

    def __init__(
        self,
        definitions: Mapping[OrgType, Iterable[str]] = CATEGORY_DEFINITIONS,
    ) -> None:
        exact: dict[str, OrgType] = {}
        fuzzy: dict[str, OrgType] = {}
        patterns: list[tuple[re.Pattern[str], OrgType]] = []
        total = 0
        for org_type, categories in definitions.items():
            for category in categories:
                total += 1
                exact[normalize_category(category)] = org_type
                for variant in _fuzzy_variants(category):
                    fuzzy[normalize_category(variant)] = org_type
                if _needs_pattern(category):
                    patterns.append((_build_pattern(category), org_type))

        self._exact: Mapping[str, OrgType] = MappingProxyType(exact)
        self._fuzzy: Mapping[str, OrgType] = MappingProxyType(fuzzy)
        self._patterns: tuple[tuple[re.Pattern[str], OrgType], ...] = tuple(patterns)
        self._total_categories = total

    def map_to_org_type(
        self,
        categories: Iterable[str] | None,
        *,
        default: OrgType = DEFAULT_ORG_TYPE,
    ) -> OrgType:
        """Map raw category tags to a single ``OrgType``."""
        cleaned = [c for c in (categories or ()) if isinstance(c, str) and c.strip()]
        if not cleaned:
            return default

        normalized = [normalize_category(c) for c in cleaned]
        for key in normalized:
            if key in self._exact:
                return self._exact[key]
        for key in normalized:
            if key in self._fuzzy:
                return self._fuzzy[key]
        for category in cleaned:
            for pattern, org_type in self._patterns:
                if pattern.match(category.strip()):
                    return org_type
        return default

    def validate_category(self, category: str) -> CategoryMatch:
        key = normalize_category(category)
        if key in self._exact:
            return CategoryMatch(True, self._exact[key], "exact")
        if key in self._fuzzy:
            return CategoryMatch(True, self._fuzzy[key], "fuzzy")
        for pattern, org_type in self._patterns:
            if pattern.match(category.strip()):
                return CategoryMatch(True, org_type, "pattern")
        return CategoryMatch(False, None, "none")

    def mapping_stats(self) -> dict[str, int]:
        return {
            "exact_mappings": len(self._exact),
            "fuzzy_mappings": len(self._fuzzy),
            "patterns": len(self._patterns),
            "total_categories": self._total_categories,
        }


@lru_cache(maxsize=1)
def build_default_category_mapper() -> CategoryMapper:
    """Return the shared mapper built from ``CATEGORY_DEFINITIONS``."""
    return CategoryMapper()
