"""Defensive parsing of LLM classification output.

An ordered chain of strategies, each tried only when the previous one did
not yield schema-valid output:

    1. ``DirectDecode``        plain ``json.loads``
    2. ``SanitizedDecode``     code fences, control characters, smart
                               quotes and trailing commas removed
    3. ``TruncationRepair``    unterminated strings and brackets closed,
                               cutting back to earlier value boundaries
    4. ``ResultsArrayExtract`` the ``results`` array or individual result
                               objects pulled out by pattern search
    5. ``KeywordHeuristic``    one best-guess result per profile from
                               keyword evidence; never fails

Every decoding strategy is a small object with a ``decode(raw)`` method
returning decoded JSON or ``None``.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from pydantic import ValidationError

from vibegraph.errors import OutputValidationError
from vibegraph.models.classification import RawClassification
from vibegraph.models.profiles import Profile

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema validation
# ---------------------------------------------------------------------------


def validate_payload(data: object) -> list[RawClassification] | None:
    """Validate decoded JSON against the envelope shape.

    Accepts ``{"results": [...]}``, a bare list, or a single result
    object. Invalid items are dropped; the payload is rejected only when
    it has items and none of them validate.
    """
    if isinstance(data, dict) and isinstance(data.get("results"), list):
        items = data["results"]
    elif isinstance(data, list):
        items = data
    elif isinstance(data, dict) and "screen_name" in data:
        items = [data]
    else:
        return None

    results: list[RawClassification] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            results.append(RawClassification.model_validate(item))
        except ValidationError as exc:
            logger.debug("Dropping invalid classification item: %s", exc.errors()[:1])
    if items and not results:
        return None
    return results


# ---------------------------------------------------------------------------
# Decoding strategies
# ---------------------------------------------------------------------------


class DecodeStrategy(Protocol):
    name: str

    def decode(self, raw: str) -> object | None: ...


def _loads(text: str) -> object | None:
    try:
        return json.loads(text)
    except ValueError:
        return None


class DirectDecode:
    name = "direct"

    def decode(self, raw: str) -> object | None:
        return _loads(raw.strip())


_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*(?:```|$)", re.DOTALL)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_QUOTE_TRANSLATION = str.maketrans(
    {
        "“": '"',
        "”": '"',
        "„": '"',
        "‘": "'",
        "’": "'",
    }
)


def sanitize(raw: str) -> str:
    """Strip fences, control characters and smart quotes; trim to the JSON body."""
    text = raw.strip()
    fence = _CODE_FENCE_RE.search(text)
    if fence:
        text = fence.group(1)
    text = text.translate(_QUOTE_TRANSLATION)
    # Raw newlines/tabs inside strings are invalid JSON; outside they are whitespace
    text = _CONTROL_RE.sub("", text).replace("\r", " ").replace("\n", " ").replace("\t", " ")
    starts = [pos for pos in (text.find("{"), text.find("[")) if pos != -1]
    if starts:
        text = text[min(starts) :]
    return text.strip()


class SanitizedDecode:
    name = "sanitized"

    def decode(self, raw: str) -> object | None:
        text = sanitize(raw)
        end = max(text.rfind("}"), text.rfind("]"))
        if end != -1:
            text = text[: end + 1]
        return _loads(_TRAILING_COMMA_RE.sub(r"\1", text))


@dataclass
class _ScanState:
    stack: list[str]
    in_string: bool


def _scan(text: str) -> tuple[_ScanState, list[tuple[int, list[str]]]]:
    """Track open brackets; also return comma positions with their stack."""
    stack: list[str] = []
    cuts: list[tuple[int, list[str]]] = []
    in_string = False
    escaped = False
    for pos, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]":
            if stack:
                stack.pop()
        elif char == ",":
            cuts.append((pos, list(stack)))
    return _ScanState(stack=stack, in_string=in_string), cuts


def _close(text: str, stack: list[str], in_string: bool) -> str:
    if in_string:
        text += '"'
    text = text.rstrip().rstrip(",").rstrip()
    if text.endswith(":"):
        text += " null"
    return text + "".join(reversed(stack))


class TruncationRepair:
    """Close output that was cut off mid-structure."""

    name = "truncation_repair"

    def __init__(self, max_cut_attempts: int = 50) -> None:
        self._max_cut_attempts = max_cut_attempts

    def decode(self, raw: str) -> object | None:
        text = _TRAILING_COMMA_RE.sub(r"\1", sanitize(raw))
        if not text or text[0] not in "{[":
            return None
        state, cuts = _scan(text)
        if not state.stack and not state.in_string:
            return None

        data = _loads(_close(text, state.stack, state.in_string))
        if data is not None:
            return data
        # Cut back to earlier value boundaries until something closes cleanly
        for pos, stack in reversed(cuts[-self._max_cut_attempts :]):
            data = _loads(_close(text[:pos], stack, False))
            if data is not None:
                return data
        return None


_RESULTS_ARRAY_RE = re.compile(r'"results"\s*:\s*(\[.*\])', re.DOTALL)
_RESULT_OBJECT_RE = re.compile(r'\{[^{}]*"screen_name"[^{}]*\}', re.DOTALL)


class ResultsArrayExtract:
    """Pull the results out of a malformed envelope."""

    name = "results_extract"

    def decode(self, raw: str) -> object | None:
        text = sanitize(raw)
        match = _RESULTS_ARRAY_RE.search(text)
        if match:
            data = _loads(_TRAILING_COMMA_RE.sub(r"\1", match.group(1)))
            if isinstance(data, list):
                return data
        objects = []
        for obj in _RESULT_OBJECT_RE.findall(text):
            data = _loads(_TRAILING_COMMA_RE.sub(r"\1", obj))
            if isinstance(data, dict):
                objects.append(data)
        return objects or None


DEFAULT_STRATEGIES: tuple[DecodeStrategy, ...] = (
    DirectDecode(),
    SanitizedDecode(),
    TruncationRepair(),
    ResultsArrayExtract(),
)

# ---------------------------------------------------------------------------
# Keyword heuristic (final stage)
# ---------------------------------------------------------------------------

_INDIVIDUAL_WORDS = frozenset(
    {
        "individual", "person", "founder", "cofounder", "co-founder", "ceo",
        "cto", "coo", "engineer", "developer", "dev", "researcher", "designer",
        "builder", "head", "lead", "analyst", "ambassador", "trader", "writer",
        "i", "i'm", "my", "he", "she", "his", "her",
    }
)
_ORGANIZATION_WORDS = frozenset(
    {
        "organization", "organisation", "company", "protocol", "platform",
        "network", "foundation", "dao", "official", "exchange", "labs", "fund",
        "ecosystem", "project", "team", "we", "our", "chain", "capital",
        "ventures",
    }
)
_SPAM_WORDS = frozenset({"spam", "bot", "scam", "giveaway", "airdrop"})
_WORD_RE = re.compile(r"[a-z][a-z0-9'-]*")


def _score(text: str) -> tuple[int, int, int]:
    words = _WORD_RE.findall(text.lower())
    return (
        sum(1 for w in words if w in _INDIVIDUAL_WORDS),
        sum(1 for w in words if w in _ORGANIZATION_WORDS),
        sum(1 for w in words if w in _SPAM_WORDS),
    )


def _window_for(raw: str, profile: Profile, others: Sequence[str]) -> str | None:
    lowered = raw.lower()
    start = lowered.find(profile.screen_name.lower())
    if start == -1:
        return None
    end = len(raw)
    for other in others:
        pos = lowered.find(other, start + len(profile.screen_name))
        if pos != -1:
            end = min(end, pos)
    return raw[start : min(end, start + 600)]


class KeywordHeuristic:
    """Best-guess classification from keyword evidence.

    Looks at the part of the raw answer that talks about each profile;
    when the answer never mentions the profile, looks at its bio instead.
    """

    name = "keyword_heuristic"

    def classify(self, raw: str, profiles: Sequence[Profile]) -> list[RawClassification]:
        handles = [p.screen_name.lower() for p in profiles]
        results = []
        for profile in profiles:
            others = [h for h in handles if h != profile.screen_name.lower()]
            window = _window_for(raw, profile, others)
            if window is None:
                window = profile.description or ""
            individual, organization, spam = _score(window)
            if spam > max(individual, organization):
                vibe = "spam"
            elif organization > individual:
                vibe = "organization"
            else:
                vibe = "individual"
            results.append(RawClassification(screen_name=profile.screen_name, vibe=vibe))
        return results


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


@dataclass
class ParseOutcome:
    results: list[RawClassification]
    stage: str


class ClassificationParser:
    """Runs the strategy chain; always returns a result per profile when all fail."""

    def __init__(
        self,
        strategies: Sequence[DecodeStrategy] = DEFAULT_STRATEGIES,
        heuristic: KeywordHeuristic | None = None,
    ) -> None:
        self._strategies = tuple(strategies)
        self._heuristic = heuristic or KeywordHeuristic()

    def decode(self, raw: str) -> ParseOutcome:
        """Run the decoding strategies only.

        Raises ``OutputValidationError`` when none yields schema-valid output.
        """
        for strategy in self._strategies:
            data = strategy.decode(raw)
            if data is None:
                continue
            results = validate_payload(data)
            if results is not None:
                logger.debug("Parsed LLM output with strategy %s", strategy.name)
                return ParseOutcome(results=results, stage=strategy.name)
        raise OutputValidationError(
            f"no strategy produced valid output from {len(raw)} characters"
        )

    def parse(self, raw: str, profiles: Sequence[Profile]) -> ParseOutcome:
        try:
            return self.decode(raw)
        except OutputValidationError as exc:
            logger.info(
                "LLM output unparseable (%s), using keyword heuristic for %d profiles",
                exc,
                len(profiles),
            )
        return ParseOutcome(
            results=self._heuristic.classify(raw, profiles),
            stage=self._heuristic.name,
        )
