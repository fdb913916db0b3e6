"""Unit tests for classification prompt construction."""

from __future__ import annotations

from tests.helpers.doubles import make_profile
from vibegraph.engine.prompt_builder import SYSTEM_PROMPT
from vibegraph.engine.prompt_builder import build_classification_prompt
from vibegraph.engine.prompt_builder import response_format
from vibegraph.engine.prompt_builder import response_schema


class TestSystemPrompt:
    def test_lists_allowed_values(self):
        assert "defi" in SYSTEM_PROMPT
        assert "engineering" in SYSTEM_PROMPT or "research" in SYSTEM_PROMPT
        assert "native" in SYSTEM_PROMPT

    def test_describes_mention_rules(self):
        assert "past_organizations" in SYSTEM_PROMPT
        assert "member_of" in SYSTEM_PROMPT
        assert "own handle" in SYSTEM_PROMPT


class TestUserPrompt:
    def test_one_line_per_profile(self):
        prompt = build_classification_prompt(
            [
                make_profile("alice", description="CEO   @acme\nex-@oldco"),
                make_profile("bob"),
            ]
        )
        assert "Classify these 2 profiles" in prompt
        assert "@alice: CEO @acme ex-@oldco" in prompt
        assert "@bob: No bio" in prompt

    def test_embeds_schema(self):
        prompt = build_classification_prompt([make_profile("alice")])
        assert '"results"' in prompt
        assert "```json" in prompt


class TestResponseFormat:
    def test_schema_uses_aliases(self):
        schema = response_schema()
        props = schema["$defs"]["RawClassification"]["properties"]
        assert "orgType" in props
        assert "screen_name" in props

    def test_json_schema_wrapper(self):
        payload = response_format()
        assert payload["type"] == "json_schema"
        assert payload["json_schema"]["name"] == "profile_classifications"
        assert "properties" in payload["json_schema"]["schema"]
