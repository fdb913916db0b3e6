"""Concrete LLM adapters and factory helpers."""

from __future__ import annotations

import asyncio
import json
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.request import Request
from urllib.request import urlopen

from vibegraph.config import LLMConfig
from vibegraph.engine.classification import LLMAdapter
from vibegraph.engine.classification import LLMError


class NoopLLMAdapter(LLMAdapter):
    """Deterministic adapter that returns an empty classification envelope."""

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        response_format: dict | None = None,
        temperature: float = 0.1,
        max_tokens: int = 8192,
        timeout_seconds: float = 60.0,
    ) -> str:
        del prompt, system_prompt, response_format, temperature, max_tokens, timeout_seconds
        return '{"results":[]}'


class OpenAICompatibleLLMAdapter(LLMAdapter):
    """OpenAI-compatible chat-completions adapter (OpenAI, xAI, ...)."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        response_format: dict | None = None,
        temperature: float = 0.1,
        max_tokens: int = 8192,
        timeout_seconds: float = 60.0,
    ) -> str:
        return await asyncio.to_thread(
            self._complete_sync,
            self.build_payload(
                prompt,
                system_prompt=system_prompt,
                response_format=response_format,
                temperature=temperature,
                max_tokens=max_tokens,
            ),
            timeout_seconds=timeout_seconds,
        )

    def build_payload(
        self,
        prompt: str,
        *,
        system_prompt: str | None,
        response_format: dict | None,
        temperature: float,
        max_tokens: int,
    ) -> dict:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        payload: dict = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format is not None:
            payload["response_format"] = response_format
        return payload

    def _complete_sync(self, payload: dict, *, timeout_seconds: float) -> str:
        request = Request(
            url=f"{self._base_url}/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise LLMError(f"provider HTTP {exc.code}: {detail[:200]}") from exc
        except URLError as exc:
            raise LLMError(f"provider network error: {exc.reason}") from exc
        except OSError as exc:
            raise LLMError(f"provider IO error: {exc}") from exc

        return extract_content(raw)


def extract_content(raw: str) -> str:
    """Return ``choices[0].message.content`` from a chat-completions body."""
    try:
        data = json.loads(raw)
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise LLMError("provider response missing choices[0].message.content") from exc

    if isinstance(content, str):
        return content
    if content is None:
        return ""
    raise LLMError("provider response content must be a string")


def build_llm_adapter(config: LLMConfig) -> LLMAdapter:
    """Create a concrete adapter from ``LLMConfig``."""

    provider = config.provider.strip().lower()
    if provider == "openai":
        if not config.api_key:
            raise ValueError("llm_config.api_key is required when provider='openai'")
        return OpenAICompatibleLLMAdapter(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
        )
    if provider == "noop":
        return NoopLLMAdapter()
    raise ValueError(
        f"Unsupported llm_config.provider '{config.provider}'. "
        "Supported providers: openai, noop."
    )
