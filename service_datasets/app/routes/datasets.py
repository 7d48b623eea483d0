"""
Route registration for the dataset endpoints.
"""

from __future__ import annotations

from typing import Callable, Literal, Optional

from fastapi import APIRouter, Query, Request, Response

from ..datasets.accessors import DatasetAccessor
from ..datasets.models import Dataset
from .helpers import ISO_DATE_PATTERN, MAX_PER_PAGE, handle_all, handle_dates, handle_latest


def build_dataset_router(accessor_provider: Callable[[], DatasetAccessor]) -> APIRouter:
    """Create ``/v1/{dataset}/latest|all|dates`` routes for every dataset.

    ``accessor_provider`` is resolved per request so tests can swap the
    accessor on a live service.
    """
    router = APIRouter()
    for dataset in Dataset:
        _register_dataset_routes(router, dataset, accessor_provider)
    return router


def _register_dataset_routes(
    router: APIRouter,
    dataset: Dataset,
    accessor_provider: Callable[[], DatasetAccessor],
) -> None:
    prefix = f"/v1/{dataset.value}"

    async def latest(
        request: Request,
        protocol: Optional[str] = Query(default=None, min_length=1),
        format: Optional[Literal["json", "ndjson"]] = Query(default=None),
    ) -> Response:
        return await handle_latest(
            accessor_provider(),
            dataset,
            request,
            protocol=protocol,
            query_format=format,
            default_format="json",
        )

    async def all_rows(
        request: Request,
        protocol: Optional[str] = Query(default=None, min_length=1),
        date_from: Optional[str] = Query(default=None, alias="from", pattern=ISO_DATE_PATTERN),
        date_to: Optional[str] = Query(default=None, alias="to", pattern=ISO_DATE_PATTERN),
        format: Optional[Literal["json", "ndjson"]] = Query(default=None),
        page: Optional[int] = Query(default=None, ge=1),
        per_page: Optional[int] = Query(default=None, ge=1, le=MAX_PER_PAGE),
    ) -> Response:
        return await handle_all(
            accessor_provider(),
            dataset,
            request,
            protocol=protocol,
            date_from=date_from,
            date_to=date_to,
            query_format=format,
            page=page,
            per_page=per_page,
            default_format="ndjson",
        )

    async def dates(request: Request) -> Response:
        return await handle_dates(accessor_provider(), dataset, request)

    router.add_api_route(f"{prefix}/latest", latest, methods=["GET", "HEAD"], name=f"{dataset.value}_latest")
    router.add_api_route(f"{prefix}/all", all_rows, methods=["GET", "HEAD"], name=f"{dataset.value}_all")
    router.add_api_route(f"{prefix}/dates", dates, methods=["GET", "HEAD"], name=f"{dataset.value}_dates")
