"""Redis-backed profile cache.

Profiles are stored as JSON strings keyed by
``{prefix}:profile:{handle_lower}`` with a TTL. A sentinel value records
confirmed not-found lookups so they are not retried on every pass.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pydantic import ValidationError
from redis.asyncio import Redis  # type: ignore[import-untyped]

from vibegraph.config import ProfileCacheConfig
from vibegraph.models.entities import normalize_handle
from vibegraph.models.profiles import Profile
from vibegraph.profiles.client import ProfileLookupResult
from vibegraph.profiles.client import ProfileSource

logger = logging.getLogger(__name__)

_NOT_FOUND = "__not_found__"


class ProfileCache:
    """TTL cache of profile payloads in Redis."""

    def __init__(self, redis: Redis, config: ProfileCacheConfig | None = None) -> None:
        self._redis = redis
        self._config = config or ProfileCacheConfig()

    def _key(self, handle: str) -> str:
        return f"{self._config.key_prefix}:profile:{normalize_handle(handle).lower()}"

    async def get(self, handle: str) -> Profile | None:
        """Return the cached profile, or ``None`` on miss or not-found marker."""
        raw = await self._redis.get(self._key(handle))
        if raw is None:
            return None
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        if text == _NOT_FOUND:
            return None
        try:
            return Profile.model_validate_json(text)
        except ValidationError:
            logger.warning("Dropping corrupt cached profile for @%s", handle)
            await self._redis.delete(self._key(handle))
            return None

    async def is_known_missing(self, handle: str) -> bool:
        raw = await self._redis.get(self._key(handle))
        if raw is None:
            return False
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        return text == _NOT_FOUND

    async def set(self, profile: Profile) -> None:
        await self._redis.set(
            self._key(profile.screen_name),
            profile.model_dump_json(),
            ex=self._config.ttl_seconds,
        )

    async def mark_missing(self, handle: str) -> None:
        await self._redis.set(self._key(handle), _NOT_FOUND, ex=self._config.ttl_seconds)

    async def invalidate(self, handle: str) -> None:
        await self._redis.delete(self._key(handle))


class CachedProfileSource:
    """Read-through cache in front of another ``ProfileSource``."""

    def __init__(self, source: ProfileSource, cache: ProfileCache) -> None:
        self._source = source
        self._cache = cache

    async def get_profile(self, handle: str) -> Profile | None:
        cached = await self._cache.get(handle)
        if cached is not None:
            return cached
        if await self._cache.is_known_missing(handle):
            return None
        profile = await self._source.get_profile(handle)
        if profile is None:
            await self._cache.mark_missing(handle)
        else:
            await self._cache.set(profile)
        return profile

    async def get_profiles(self, handles: Iterable[str]) -> ProfileLookupResult:
        result = ProfileLookupResult()
        misses: list[str] = []
        for handle in dict.fromkeys(normalize_handle(h).lower() for h in handles if h):
            cached = await self._cache.get(handle)
            if cached is not None:
                result.found[handle] = cached
            elif await self._cache.is_known_missing(handle):
                result.not_found.append(handle)
            else:
                misses.append(handle)
        if not misses:
            return result

        fetched = await self._source.get_profiles(misses)
        for key, profile in fetched.found.items():
            await self._cache.set(profile)
            result.found[key] = profile
        for key in fetched.not_found:
            await self._cache.mark_missing(key)
            result.not_found.append(key)
        result.failed.update(fetched.failed)
        return result
