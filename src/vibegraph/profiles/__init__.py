"""Profiles domain — profile-lookup API client and Redis cache."""

from vibegraph.profiles.cache import CachedProfileSource
from vibegraph.profiles.cache import ProfileCache
from vibegraph.profiles.client import ProfileAPIError
from vibegraph.profiles.client import ProfileClient
from vibegraph.profiles.client import ProfileLookupResult
from vibegraph.profiles.client import ProfileSource
from vibegraph.profiles.client import lookup_in_groups

__all__ = [
    "CachedProfileSource",
    "ProfileAPIError",
    "ProfileCache",
    "ProfileClient",
    "ProfileLookupResult",
    "ProfileSource",
    "lookup_in_groups",
]
