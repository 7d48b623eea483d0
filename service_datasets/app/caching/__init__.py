"""
Origin-fetch caching package.

``CacheStore`` holds raw origin payloads under a per-class TTL;
``ResourceFetcher`` decides when to serve, revalidate or fall back to them.
"""

from .cache_store import CacheEntry, CacheStore
from .resource_fetcher import (
    FetchedResource,
    FetchOutcome,
    FetchProvenance,
    ResourceClass,
    ResourceFetcher,
    ResourceNotFound,
    UpstreamUnavailable,
    cache_key,
)

__all__ = [
    "CacheEntry",
    "CacheStore",
    "FetchedResource",
    "FetchOutcome",
    "FetchProvenance",
    "ResourceClass",
    "ResourceFetcher",
    "ResourceNotFound",
    "UpstreamUnavailable",
    "cache_key",
]
