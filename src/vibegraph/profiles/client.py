"""Profile-lookup API client.

Blocking ``urllib`` calls run in ``asyncio.to_thread``. Not-found lookups
return ``None``; HTTP 429 is retried with exponential backoff; every
other failure surfaces as ``ProfileAPIError``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import field
from typing import Protocol
from typing import runtime_checkable
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.parse import quote
from urllib.parse import urlencode
from urllib.request import Request
from urllib.request import urlopen

from pydantic import ValidationError

from vibegraph.config import ProfileAPIConfig
from vibegraph.errors import TransientIOError
from vibegraph.models.entities import normalize_handle
from vibegraph.models.profiles import Profile
from vibegraph.models.profiles import ProfilePage
from vibegraph.observability import track_latency

logger = logging.getLogger(__name__)


class ProfileAPIError(TransientIOError):
    """Raised when the profile-lookup API cannot serve a request."""


@dataclass
class ProfileLookupResult:
    """Outcome of a multi-handle lookup, keyed by lowercased handle."""

    found: dict[str, Profile] = field(default_factory=dict)
    not_found: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class ProfileSource(Protocol):
    """Anything that can look profiles up by handle."""

    async def get_profile(self, handle: str) -> Profile | None: ...

    async def get_profiles(self, handles: Iterable[str]) -> ProfileLookupResult: ...


async def lookup_in_groups(
    fetch: Callable[[str], Awaitable[Profile | None]],
    handles: Iterable[str],
    *,
    group_size: int,
    max_concurrency: int,
    delay_seconds: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ProfileLookupResult:
    """Fetch *handles* in parallel groups with a pause between groups."""
    keys = list(dict.fromkeys(normalize_handle(h).lower() for h in handles if h))
    result = ProfileLookupResult()
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _one(key: str) -> None:
        async with semaphore:
            try:
                profile = await fetch(key)
            except TransientIOError as exc:
                result.failed[key] = str(exc)
                return
        if profile is None:
            result.not_found.append(key)
        else:
            result.found[key] = profile

    step = max(1, group_size)
    for start in range(0, len(keys), step):
        if start:
            await sleep(delay_seconds)
        await asyncio.gather(*(_one(key) for key in keys[start : start + step]))
    return result


class ProfileClient:
    """HTTP client for the profile-lookup API."""

    def __init__(
        self,
        config: ProfileAPIConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not config.api_key:
            raise ValueError("profile_api_config.api_key is required")
        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._sleep = sleep

    # ----- Public API -----

    async def get_profile(self, handle: str) -> Profile | None:
        """Look up one profile; ``None`` when the account does not exist."""
        key = normalize_handle(handle)
        async with track_latency("profiles.get_profile"):
            data = await self._get_json(f"/twitter/user/{quote(key)}")
        if not data or (not data.get("id") and not data.get("id_str")):
            return None
        try:
            return Profile.model_validate(data)
        except ValidationError as exc:
            raise ProfileAPIError(f"unexpected profile payload for @{key}") from exc

    async def get_profiles(self, handles: Iterable[str]) -> ProfileLookupResult:
        return await lookup_in_groups(
            self.get_profile,
            handles,
            group_size=self._config.lookup_batch_size,
            max_concurrency=self._config.max_concurrency,
            delay_seconds=self._config.inter_batch_delay_seconds,
            sleep=self._sleep,
        )

    async def list_followers(self, entity_id: str) -> list[Profile]:
        return await self._list_all(
            "/twitter/followers/list", entity_id, size_param="limit"
        )

    async def list_following(self, entity_id: str) -> list[Profile]:
        return await self._list_all(
            "/twitter/friends/list", entity_id, size_param="count"
        )

    # ----- Pagination -----

    async def fetch_page(
        self,
        path: str,
        entity_id: str,
        *,
        size_param: str,
        cursor: str | None = None,
    ) -> ProfilePage:
        params = {"user_id": entity_id, size_param: self._config.page_size}
        if cursor and cursor != "0":
            params["cursor"] = cursor
        data = await self._get_json(path, params) or {}
        users: list[Profile] = []
        for raw in data.get("users") or []:
            try:
                users.append(Profile.model_validate(raw))
            except ValidationError:
                logger.debug("Skipping malformed user in %s page", path)
        next_cursor = data.get("next_cursor_str") or data.get("next_cursor")
        return ProfilePage(
            users=users,
            next_cursor=str(next_cursor) if next_cursor else None,
        )

    async def _list_all(
        self, path: str, entity_id: str, *, size_param: str
    ) -> list[Profile]:
        profiles: list[Profile] = []
        cursor: str | None = None
        async with track_latency(f"profiles.list{path.replace('/', '.')}"):
            for _ in range(self._config.max_pages):
                page = await self.fetch_page(
                    path, entity_id, size_param=size_param, cursor=cursor
                )
                profiles.extend(page.users)
                if not page.next_cursor or page.next_cursor == "0" or not page.users:
                    break
                cursor = page.next_cursor
        return profiles

    # ----- Transport -----

    async def _get_json(self, path: str, params: dict | None = None) -> dict | None:
        url = f"{self._base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        for attempt in range(self._config.max_retries + 1):
            status, body = await asyncio.to_thread(self._request_sync, url)
            if status == 404:
                return None
            if status == 429 and attempt < self._config.max_retries:
                delay = self._config.backoff_base_seconds * (2**attempt)
                logger.info("Rate limited on %s, retrying in %.1fs", path, delay)
                await self._sleep(delay)
                continue
            if status != 200:
                raise ProfileAPIError(f"profile API HTTP {status}: {body[:200]}")
            try:
                data = json.loads(body)
            except ValueError as exc:
                raise ProfileAPIError("profile API returned invalid JSON") from exc
            if not isinstance(data, dict):
                raise ProfileAPIError("profile API returned a non-object payload")
            return data
        raise ProfileAPIError(f"profile API rate limit persisted for {path}")

    def _request_sync(self, url: str) -> tuple[int, str]:
        request = Request(
            url=url,
            headers={
                "Authorization": f"Bearer {self._config.api_key}",
                "Accept": "application/json",
            },
            method="GET",
        )
        try:
            with urlopen(request, timeout=self._config.timeout_seconds) as response:
                status, raw = response.status, response.read()
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            return exc.code, detail
        except URLError as exc:
            raise ProfileAPIError(f"profile API network error: {exc.reason}") from exc
        except OSError as exc:
            raise ProfileAPIError(f"profile API IO error: {exc}") from exc
        try:
            return status, raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProfileAPIError("profile API returned a body that is not UTF-8") from exc
