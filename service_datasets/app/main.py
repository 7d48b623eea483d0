"""
Datasets access service: read-only façade over the lending/borrowing datasets.
"""

from typing import Any, Dict, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.base_service import BaseService, CORS_HEADERS
from shared.config import DatasetsConfig
from shared.errors import MalformedUpstreamDataError

from service_datasets.app.adapters.origin_client import OriginClient
from service_datasets.app.caching.cache_store import CacheStore
from service_datasets.app.caching.resource_fetcher import ResourceClass, ResourceFetcher
from service_datasets.app.datasets.accessors import DatasetAccessor, ManifestResult
from service_datasets.app.datasets.models import Dataset
from service_datasets.app.routes import build_dataset_router
from service_datasets.app.routes.helpers import CACHE_CONTROL, JSON_MEDIA_TYPE, record_provenance


class DatasetsService(BaseService):
    """Datasets service implementation."""

    def __init__(self, config: Optional[DatasetsConfig] = None, *, origin: Optional[OriginClient] = None):
        super().__init__("datasets", config)

        self.origin = origin or OriginClient(
            self.config.raw_base,
            self.config.github_owner,
            self.config.github_repo,
            self.config.github_branch,
            timeout=self.config.origin_timeout_seconds,
        )
        self.cache_store = CacheStore(self.config.cache_max_entries)
        self.fetcher = ResourceFetcher(
            self.origin,
            self.cache_store,
            {
                ResourceClass.MANIFEST: self.config.manifest_ttl_seconds,
                ResourceClass.DAILY_DATA: self.config.data_ttl_seconds,
            },
            metrics=self.metrics,
        )
        self.accessor = DatasetAccessor(self.fetcher)

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.origin.close()

        self._setup_dataset_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.datasets_service = self

    def invalidate_cache(self) -> None:
        """Clear the origin cache (tests and operational reset only)."""
        self.accessor.invalidate_cache()

    def _setup_dataset_routes(self):
        """Set up health and dataset routes."""

        @self.app.api_route("/v1/health", methods=["GET", "HEAD"])
        async def health(request: Request):
            """Report when each dataset was last updated; 206 if one is unavailable."""
            payload: Dict[str, Any] = {"ok": True}
            status_code = 200

            for dataset, field in ((Dataset.LENDING, "lendingUpdatedAt"), (Dataset.BORROWING, "borrowingUpdatedAt")):
                try:
                    outcome = await self.accessor.get_manifest(dataset)
                except MalformedUpstreamDataError as exc:
                    self.logger.warning("Manifest unavailable for health", dataset=dataset.value, error=exc.message)
                    status_code = 206
                    continue

                match outcome:
                    case ManifestResult(updated_at=updated_at, provenance=provenance):
                        record_provenance(request, provenance)
                        payload[field] = updated_at
                    case failure:
                        self.logger.warning("Manifest unavailable for health", dataset=dataset.value, outcome=repr(failure))
                        status_code = 206

            headers = {**CORS_HEADERS, "Cache-Control": CACHE_CONTROL}
            if request.method == "HEAD":
                return Response(status_code=status_code, media_type=JSON_MEDIA_TYPE, headers=headers)
            return JSONResponse(status_code=status_code, content=payload, media_type=JSON_MEDIA_TYPE, headers=headers)

        self.app.include_router(build_dataset_router(lambda: self.accessor))


def create_app(config: Optional[DatasetsConfig] = None):
    """Create FastAPI application."""
    service = DatasetsService(config)
    return service.app


def main() -> None:
    service = DatasetsService()
    service.run()


if __name__ == "__main__":
    main()
