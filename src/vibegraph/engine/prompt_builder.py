"""Prompt construction for LLM-based profile classification.

Builds the system instructions, the per-batch user prompt and the JSON
schema sent as ``response_format``. Separate module because the wording
evolves independently of the pipeline.
"""

from __future__ import annotations

import json
from collections.abc import Sequence

from vibegraph.models.classification import ClassificationEnvelope
from vibegraph.models.entities import Department
from vibegraph.models.entities import OrgType
from vibegraph.models.entities import Web3Focus
from vibegraph.models.profiles import Profile

SYSTEM_PROMPT = f"""Classify Web3/crypto social profiles.

For each profile decide its vibe:
- individual: a person.
- organization: a company, protocol, fund, DAO, community or project account.
- spam: bots, scams, empty or throwaway accounts.

ORGANIZATION MENTIONS (individuals only)
List every @handle in the bio, then put each one in exactly one list:
- current_organizations is the default: roles ("CEO @org"), verbs
  ("building @org"), consecutive mentions ("@a @b"), anything without an
  explicit past marker.
- past_organizations only with explicit markers: "ex-@org", "formerly @org",
  "prev @org", "fka @org", "@org alum", "was at @org", "left @org", or a
  "Past:" section.
- member_of only for clear non-employment ties: universities, investments
  ("backed @org", "LP @org"), NFT or community membership ("holder",
  "member of @org").
Never drop a mention. Never list the profile's own handle. Keep the original
casing and the leading "@".

FIELDS
- department (individuals): {"|".join(d.value for d in Department)}
- orgType (organizations): {"|".join(t.value for t in OrgType)}
- orgSubtype (organizations): short free-text category tags
- web3Focus (organizations): {"|".join(w.value for w in Web3Focus)}

Return one result per profile, using the exact screen_name given."""


def response_schema() -> dict:
    """JSON schema of the envelope the model must return."""
    return ClassificationEnvelope.model_json_schema(by_alias=True)


def response_format() -> dict:
    """OpenAI-compatible ``response_format`` payload."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": "profile_classifications",
            "schema": response_schema(),
        },
    }


def _format_profile(profile: Profile) -> str:
    bio = " ".join((profile.description or "").split()) or "No bio"
    return f"@{profile.screen_name}: {bio}"


def build_classification_prompt(profiles: Sequence[Profile]) -> str:
    """Build the user prompt for one batch of profiles."""
    lines = "\n".join(_format_profile(p) for p in profiles)
    schema = json.dumps(response_schema(), indent=2)
    return (
        f"Classify these {len(profiles)} profiles:\n\n"
        f"{lines}\n\n"
        "Return ONLY a JSON object conforming to this schema:\n\n"
        f"```json\n{schema}\n```\n"
    )
