"""Unit tests for concrete LLM adapters and provider factory."""

from __future__ import annotations

import json

import pytest

from vibegraph.config import LLMConfig
from vibegraph.engine.classification import LLMError
from vibegraph.engine.llm_adapters import NoopLLMAdapter
from vibegraph.engine.llm_adapters import OpenAICompatibleLLMAdapter
from vibegraph.engine.llm_adapters import build_llm_adapter
from vibegraph.engine.llm_adapters import extract_content
from vibegraph.models.classification import ClassificationEnvelope
from vibegraph.server import configure


class TestBuildLLMAdapter:
    def test_openai_provider_requires_api_key(self) -> None:
        with pytest.raises(ValueError, match="api_key is required"):
            build_llm_adapter(LLMConfig(provider="openai", api_key=None))

    def test_openai_provider_uses_configured_endpoint(self) -> None:
        adapter = build_llm_adapter(
            LLMConfig(provider="OpenAI", api_key="k", base_url="https://api.x.ai/v1/")
        )
        assert isinstance(adapter, OpenAICompatibleLLMAdapter)
        assert adapter._base_url == "https://api.x.ai/v1"

    def test_noop_provider_is_supported(self) -> None:
        adapter = build_llm_adapter(LLMConfig(provider="noop"))
        assert isinstance(adapter, NoopLLMAdapter)

    def test_unsupported_provider_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unsupported llm_config.provider"):
            build_llm_adapter(LLMConfig(provider="anthropic"))


class TestNoopLLMAdapter:
    async def test_noop_returns_valid_empty_envelope(self) -> None:
        raw = await NoopLLMAdapter().complete("irrelevant")
        envelope = ClassificationEnvelope.model_validate(json.loads(raw))
        assert envelope.results == []


class TestOpenAICompatibleAdapter:
    def test_payload_includes_system_prompt_and_schema(self) -> None:
        adapter = OpenAICompatibleLLMAdapter(model="grok-3-mini", api_key="test")
        payload = adapter.build_payload(
            "classify",
            system_prompt="rules",
            response_format={"type": "json_schema"},
            temperature=0.1,
            max_tokens=100,
        )
        assert payload["model"] == "grok-3-mini"
        assert payload["messages"] == [
            {"role": "system", "content": "rules"},
            {"role": "user", "content": "classify"},
        ]
        assert payload["response_format"] == {"type": "json_schema"}

    def test_payload_without_optional_parts(self) -> None:
        adapter = OpenAICompatibleLLMAdapter(model="m", api_key="test")
        payload = adapter.build_payload(
            "hi", system_prompt=None, response_format=None, temperature=0.0, max_tokens=5
        )
        assert payload["messages"] == [{"role": "user", "content": "hi"}]
        assert "response_format" not in payload

    async def test_complete_uses_sync_path_via_thread(self, monkeypatch) -> None:
        adapter = OpenAICompatibleLLMAdapter(model="gpt-4", api_key="test")

        def _fake_sync(payload: dict, *, timeout_seconds: float) -> str:
            assert payload["messages"][-1]["content"] == "hello"
            assert payload["temperature"] == 0.3
            assert payload["max_tokens"] == 77
            assert timeout_seconds == 11.0
            return '{"ok": true}'

        monkeypatch.setattr(adapter, "_complete_sync", _fake_sync)

        result = await adapter.complete(
            "hello",
            temperature=0.3,
            max_tokens=77,
            timeout_seconds=11.0,
        )
        assert result == '{"ok": true}'


class TestExtractContent:
    def test_returns_message_content(self) -> None:
        body = json.dumps({"choices": [{"message": {"content": '{"results": []}'}}]})
        assert extract_content(body) == '{"results": []}'

    def test_null_content_is_empty(self) -> None:
        body = json.dumps({"choices": [{"message": {"content": None}}]})
        assert extract_content(body) == ""

    @pytest.mark.parametrize(
        "body",
        ["not json", json.dumps({"choices": []}), json.dumps({"choices": [{"message": {"content": 3}}]})],
    )
    def test_malformed_bodies_raise(self, body) -> None:
        with pytest.raises(LLMError):
            extract_content(body)


class TestServerLLMConfigGuard:
    async def test_configure_fails_fast_without_openai_api_key(self) -> None:
        with pytest.raises(ValueError, match="api_key is required"):
            await configure(
                neo4j_url="bolt://localhost:7687",
                llm_config=LLMConfig(provider="openai", api_key=None),
            )
