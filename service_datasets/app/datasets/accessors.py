"""
Typed access to dataset manifests and daily row-sets.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from shared.errors import MalformedUpstreamDataError
from shared.logging import get_logger

from ..caching.resource_fetcher import (
    FetchedResource,
    FetchProvenance,
    ResourceClass,
    ResourceFetcher,
    ResourceNotFound,
    UpstreamUnavailable,
)
from .models import ROW_ADAPTERS, Dataset, DatasetRow, Manifest


@dataclass(frozen=True)
class ManifestResult:
    manifest: Manifest
    etag: Optional[str]
    updated_at: str
    provenance: FetchProvenance


@dataclass(frozen=True)
class DailyRowsResult:
    rows: Tuple[DatasetRow, ...]
    etag: Optional[str]
    last_modified: Optional[str]
    provenance: FetchProvenance


ManifestOutcome = Union[ManifestResult, ResourceNotFound, UpstreamUnavailable]
DailyRowsOutcome = Union[DailyRowsResult, ResourceNotFound, UpstreamUnavailable]


class DatasetAccessor:
    """Thin typed wrapper over the resource fetcher.

    Fetch failures come back as ``ResourceNotFound`` / ``UpstreamUnavailable``;
    bytes that do not parse raise ``MalformedUpstreamDataError``.
    """

    def __init__(self, fetcher: ResourceFetcher) -> None:
        self.fetcher = fetcher
        self.logger = get_logger("datasets.accessor")

    async def get_manifest(self, dataset: Dataset) -> ManifestOutcome:
        path = dataset.manifest_path()
        result = await self.fetcher.fetch(ResourceClass.MANIFEST, f"manifest:{dataset.value}", path)
        if not isinstance(result, FetchedResource):
            return result

        try:
            manifest = Manifest.model_validate_json(result.body)
        except PydanticValidationError as exc:
            self.logger.error("Malformed manifest", dataset=dataset.value, path=path, errors=exc.error_count())
            raise MalformedUpstreamDataError(path, _summarize(exc)) from exc

        return ManifestResult(
            manifest=manifest,
            etag=result.etag,
            updated_at=manifest.updated_at,
            provenance=result.provenance,
        )

    async def get_daily_rows(self, dataset: Dataset, date: str) -> DailyRowsOutcome:
        path = dataset.daily_path(date)
        result = await self.fetcher.fetch(ResourceClass.DAILY_DATA, f"{dataset.value}:{date}", path)
        if not isinstance(result, FetchedResource):
            return result

        try:
            rows = ROW_ADAPTERS[dataset].validate_json(result.body)
        except PydanticValidationError as exc:
            self.logger.error(
                "Malformed daily data", dataset=dataset.value, date=date, path=path, errors=exc.error_count()
            )
            raise MalformedUpstreamDataError(path, _summarize(exc)) from exc

        return DailyRowsResult(
            rows=tuple(rows),
            etag=result.etag,
            last_modified=result.last_modified,
            provenance=result.provenance,
        )

    def invalidate_cache(self) -> None:
        self.fetcher.invalidate()


def _summarize(exc: PydanticValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
    return f"{location}: {first.get('msg', 'invalid payload')}"
