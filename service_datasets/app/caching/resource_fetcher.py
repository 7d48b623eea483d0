"""
Resource fetcher: answers "current bytes for resource X" from cache or origin.

Policy in short: a fresh entry is served without contacting the origin; an
absent or expired entry is (re)validated against the origin; whenever the
origin cannot supply an update, any cached copy, however old, is served as
stale. Only a first-ever fetch with no fallback surfaces a failure.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Mapping, Optional, Tuple, Union

from shared.logging import get_logger

from ..adapters.origin_client import OriginClient, OriginTransportError
from .cache_store import CacheEntry, CacheStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class ResourceClass(str, Enum):
    """Resource categories; the class selects the TTL."""

    MANIFEST = "manifest"
    DAILY_DATA = "daily_data"


@dataclass(frozen=True)
class FetchProvenance:
    """How one fetch result was obtained."""

    cache_hit: bool
    served_stale: bool
    upstream_status: Optional[int]
    source: str


@dataclass(frozen=True)
class FetchedResource:
    body: bytes
    etag: Optional[str]
    last_modified: Optional[str]
    content_type: Optional[str]
    provenance: FetchProvenance


@dataclass(frozen=True)
class ResourceNotFound:
    """The origin says the resource does not exist and nothing is cached."""

    source: str
    path: str


@dataclass(frozen=True)
class UpstreamUnavailable:
    """The origin failed (error status or transport) and nothing is cached.

    ``status_code`` is None when no response was received at all.
    """

    source: str
    path: str
    status_code: Optional[int] = None


FetchOutcome = Union[FetchedResource, ResourceNotFound, UpstreamUnavailable]


def cache_key(source: str, path: str) -> Tuple[str, str]:
    """Cache key for a resource identity."""
    return (source, path)


class ResourceFetcher:
    """Orchestrates the origin client and the cache store."""

    def __init__(
        self,
        origin: OriginClient,
        store: CacheStore,
        ttls: Mapping[ResourceClass, float],
        *,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        missing = [resource_class.value for resource_class in ResourceClass if resource_class not in ttls]
        if missing:
            raise ValueError(f"Missing TTL for resource classes: {', '.join(missing)}")

        self.origin = origin
        self.store = store
        self.ttls = dict(ttls)
        self.metrics = metrics
        self.logger = get_logger("datasets.fetcher")

    def ttl_for(self, resource_class: ResourceClass) -> float:
        return self.ttls[resource_class]

    def invalidate(self) -> None:
        """Drop every cached entry."""
        self.store.clear()
        self.logger.info("Origin cache invalidated")
        self._record_cache_size()

    async def fetch(self, resource_class: ResourceClass, source: str, path: str) -> FetchOutcome:
        """Return the current bytes for a resource, or a categorized failure."""
        start = time.perf_counter()
        result, outcome = await self._resolve(resource_class, source, path)
        self._record_fetch_metrics(resource_class, outcome, time.perf_counter() - start)
        return result

    async def _resolve(self, resource_class: ResourceClass, source: str, path: str) -> Tuple[FetchOutcome, str]:
        key = cache_key(source, path)
        cached = self.store.get_allowing_stale(key)
        remaining = self.store.remaining_freshness(key)

        if cached is not None and remaining > 0:
            self.logger.debug("Cache hit", source=source, path=path, remaining_seconds=round(remaining, 3))
            status = cached.status_code if cached.status_code is not None else 200
            return self._served(cached, source, cache_hit=True, stale=False, status=status), "fresh_hit"

        try:
            response = await self.origin.fetch(path, etag=cached.etag if cached is not None else None)
        except OriginTransportError as exc:
            self.logger.warning("Origin unreachable", source=source, path=path, error=exc.reason)
            return self._fallback(key, cached, source, path, None)

        status = response.status_code

        if status == 304 and cached is not None:
            revalidated = replace(cached, status_code=status)
            self.store.set(key, revalidated, self.ttl_for(resource_class))
            self.logger.debug("Cache revalidated", source=source, path=path, etag=cached.etag)
            return self._served(revalidated, source, cache_hit=True, stale=False, status=status), "revalidated"

        if status == 404:
            if cached is None:
                self.logger.info("Resource not found upstream", source=source, path=path)
                return ResourceNotFound(source=source, path=path), "not_found"
            return self._fallback(key, cached, source, path, status)

        if 200 <= status < 300:
            entry = CacheEntry(
                body=response.body,
                etag=response.header("etag"),
                last_modified=response.header("last-modified"),
                content_type=response.header("content-type"),
                status_code=status,
            )
            self.store.set(key, entry, self.ttl_for(resource_class))
            self._record_cache_size()
            self.logger.info(
                "Fetched resource from origin",
                source=source,
                path=path,
                status_code=status,
                bytes=len(entry.body),
                etag=entry.etag,
            )
            return self._served(entry, source, cache_hit=False, stale=False, status=status), "fetched"

        # >= 400, a 304 we never asked for, or anything else unexpected
        self.logger.warning("Origin returned error status", source=source, path=path, status_code=status)
        return self._fallback(key, cached, source, path, status)

    def _fallback(
        self,
        key: Tuple[str, str],
        cached: Optional[CacheEntry],
        source: str,
        path: str,
        status: Optional[int],
    ) -> Tuple[FetchOutcome, str]:
        """Serve the cached copy as stale, or report the origin as unavailable."""
        if cached is None:
            return UpstreamUnavailable(source=source, path=path, status_code=status), "unavailable"

        if status is not None:
            cached = replace(cached, status_code=status)
            self.store.update_entry(key, cached)

        self.logger.warning("Serving stale cache entry", source=source, path=path, upstream_status=status)
        return self._served(cached, source, cache_hit=True, stale=True, status=status), "stale_served"

    @staticmethod
    def _served(
        entry: CacheEntry,
        source: str,
        *,
        cache_hit: bool,
        stale: bool,
        status: Optional[int],
    ) -> FetchedResource:
        return FetchedResource(
            body=entry.body,
            etag=entry.etag,
            last_modified=entry.last_modified,
            content_type=entry.content_type,
            provenance=FetchProvenance(
                cache_hit=cache_hit,
                served_stale=stale,
                upstream_status=status,
                source=source,
            ),
        )

    def _record_fetch_metrics(self, resource_class: ResourceClass, outcome: str, duration: float) -> None:
        if self.metrics:
            self.metrics.record_origin_fetch(resource_class.value, outcome, duration)

    def _record_cache_size(self) -> None:
        if self.metrics:
            self.metrics.set_cache_entries(len(self.store))
