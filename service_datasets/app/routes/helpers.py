"""
Request handling shared by the lending and borrowing routes.

Handlers ask the dataset accessor for typed data, record the fetch provenance
on the request for the completion log line, and render JSON or NDJSON.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence, Union

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.base_service import CORS_HEADERS, error_response
from shared.errors import ValidationError

from ..caching.resource_fetcher import FetchProvenance, ResourceNotFound, UpstreamUnavailable
from ..datasets.accessors import DailyRowsResult, DatasetAccessor, ManifestResult
from ..datasets.models import Dataset, DatasetRow, Manifest


OutputFormat = Literal["json", "ndjson"]

ISO_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 1000
MAX_PER_PAGE = 10000
MAX_CONCURRENT_DAY_FETCHES = 8

CACHE_CONTROL = "public, max-age=300, stale-while-revalidate=86400"
JSON_MEDIA_TYPE = "application/json; charset=utf-8"
NDJSON_MEDIA_TYPE = "application/x-ndjson; charset=utf-8"


def record_provenance(request: Request, provenance: FetchProvenance) -> None:
    """Attach one fetch's provenance to the request for the completion log."""
    fetches = getattr(request.state, "upstream_fetches", None)
    if fetches is not None:
        fetches.append(provenance)


def resolve_format(request: Request, query_format: Optional[str], default_format: OutputFormat) -> OutputFormat:
    if query_format:
        return "ndjson" if query_format == "ndjson" else "json"
    accept = request.headers.get("accept", "")
    if "application/x-ndjson" in accept:
        return "ndjson"
    if "application/json" in accept:
        return "json"
    return default_format


def resolve_range(manifest: Manifest, date_from: Optional[str], date_to: Optional[str]) -> Dict[str, str]:
    """Default an open range to the manifest bounds; reject inverted ranges."""
    start = date_from or manifest.first_date
    end = date_to or manifest.last_date
    if start and end and start > end:
        raise ValidationError("`from` must be less than or equal to `to`")

    bounds: Dict[str, str] = {}
    if start:
        bounds["from"] = start
    if end:
        bounds["to"] = end
    return bounds


def in_range(date: str, bounds: Dict[str, str]) -> bool:
    if "from" in bounds and date < bounds["from"]:
        return False
    if "to" in bounds and date > bounds["to"]:
        return False
    return True


def response_headers(etag: Optional[str] = None) -> Dict[str, str]:
    headers = dict(CORS_HEADERS)
    headers["Cache-Control"] = CACHE_CONTROL
    headers["Vary"] = "Accept"
    if etag:
        headers["ETag"] = etag
    return headers


def media_type_for(output_format: OutputFormat) -> str:
    return NDJSON_MEDIA_TYPE if output_format == "ndjson" else JSON_MEDIA_TYPE


def head_response(output_format: OutputFormat, etag: Optional[str] = None, status_code: int = 200) -> Response:
    return Response(status_code=status_code, media_type=media_type_for(output_format), headers=response_headers(etag))


def json_response(content: Any, etag: Optional[str] = None) -> JSONResponse:
    return JSONResponse(content=content, media_type=JSON_MEDIA_TYPE, headers=response_headers(etag))


def ndjson_response(header: Dict[str, Any], rows: Iterable[DatasetRow], etag: Optional[str] = None) -> Response:
    lines = [_dumps(header)]
    lines.extend(_dumps(row.to_payload()) for row in rows)
    return Response(content="\n".join(lines) + "\n", media_type=NDJSON_MEDIA_TYPE, headers=response_headers(etag))


def not_modified(request: Request, etag: Optional[str]) -> bool:
    client_etag = request.headers.get("if-none-match")
    return bool(client_etag and etag and client_etag == etag)


def filter_rows(rows: Sequence[DatasetRow], protocol: Optional[str]) -> List[DatasetRow]:
    if not protocol:
        return list(rows)
    return [row for row in rows if row.protocol == protocol]


def fetch_failure(
    outcome: Union[ResourceNotFound, UpstreamUnavailable],
    not_found_message: str,
    unavailable_message: str,
) -> JSONResponse:
    """Map a fetch failure onto a 404 or 502 error response."""
    match outcome:
        case ResourceNotFound():
            return error_response(404, not_found_message)
        case UpstreamUnavailable(status_code=status_code):
            return error_response(502, unavailable_message, {"upstreamStatus": status_code})


async def handle_latest(
    accessor: DatasetAccessor,
    dataset: Dataset,
    request: Request,
    *,
    protocol: Optional[str],
    query_format: Optional[str],
    default_format: OutputFormat = "json",
) -> Response:
    match await accessor.get_manifest(dataset):
        case ManifestResult() as manifest_result:
            record_provenance(request, manifest_result.provenance)
        case failure:
            return fetch_failure(failure, "Manifest not found", "Upstream manifest unavailable")

    manifest = manifest_result.manifest
    latest_date = manifest.latest
    if not latest_date:
        return error_response(404, "No data available for latest date")

    output_format = resolve_format(request, query_format, default_format)

    match await accessor.get_daily_rows(dataset, latest_date):
        case DailyRowsResult() as day:
            record_provenance(request, day.provenance)
        case failure:
            return fetch_failure(failure, f"Data not found for {latest_date}", "Upstream data unavailable")

    rows = filter_rows(day.rows, protocol)
    envelope: Dict[str, Any] = {
        "dataset": dataset.value,
        "asOfDate": latest_date,
        "updatedAt": manifest.updated_at,
        "filters": _filters(protocol),
        "count": len(rows),
    }

    etag = day.etag or manifest_result.etag
    if not_modified(request, etag):
        return Response(status_code=304, headers=response_headers(etag))

    if request.method == "HEAD":
        return head_response(output_format, etag)

    if output_format == "ndjson":
        return ndjson_response(envelope, rows, etag)

    return json_response({**envelope, "data": [row.to_payload() for row in rows]}, etag)


async def handle_all(
    accessor: DatasetAccessor,
    dataset: Dataset,
    request: Request,
    *,
    protocol: Optional[str],
    date_from: Optional[str],
    date_to: Optional[str],
    query_format: Optional[str],
    page: Optional[int],
    per_page: Optional[int],
    default_format: OutputFormat = "ndjson",
) -> Response:
    match await accessor.get_manifest(dataset):
        case ManifestResult() as manifest_result:
            record_provenance(request, manifest_result.provenance)
        case failure:
            return fetch_failure(failure, "Manifest not found", "Upstream manifest unavailable")

    bounds = resolve_range(manifest_result.manifest, date_from, date_to)
    output_format = resolve_format(request, query_format, default_format)
    filters = _filters(protocol)
    page = page or DEFAULT_PAGE
    per_page = per_page or DEFAULT_PER_PAGE

    dates = [date for date in manifest_result.manifest.dates if in_range(date, bounds)]
    outcomes = await _fetch_days(accessor, dataset, dates)

    rows: List[DatasetRow] = []
    for date, outcome in zip(dates, outcomes):
        match outcome:
            case DailyRowsResult() as day:
                record_provenance(request, day.provenance)
                rows.extend(filter_rows(day.rows, protocol))
            case failure:
                return fetch_failure(failure, f"Data not found for {date}", "Upstream data unavailable")

    if request.method == "HEAD":
        return head_response(output_format)

    if output_format == "ndjson":
        return ndjson_response({"dataset": dataset.value, "range": bounds, "filters": filters}, rows)

    start = (page - 1) * per_page
    return json_response(
        {
            "dataset": dataset.value,
            "range": bounds,
            "filters": filters,
            "page": page,
            "perPage": per_page,
            "total": len(rows),
            "data": [row.to_payload() for row in rows[start:start + per_page]],
        }
    )


async def handle_dates(accessor: DatasetAccessor, dataset: Dataset, request: Request) -> Response:
    match await accessor.get_manifest(dataset):
        case ManifestResult() as manifest_result:
            record_provenance(request, manifest_result.provenance)
        case failure:
            return fetch_failure(failure, "Manifest not found", "Upstream manifest unavailable")

    etag = manifest_result.etag
    if not_modified(request, etag):
        return Response(status_code=304, headers=response_headers(etag))

    if request.method == "HEAD":
        return head_response("json", etag)

    manifest = manifest_result.manifest
    return json_response(
        {
            "dataset": dataset.value,
            "latest": manifest.latest,
            "updatedAt": manifest.updated_at,
            "dates": list(manifest.dates),
        },
        etag,
    )


async def _fetch_days(accessor: DatasetAccessor, dataset: Dataset, dates: Sequence[str]) -> List[Any]:
    """Fetch daily row-sets with bounded concurrency; results keep date order."""
    limit = asyncio.Semaphore(MAX_CONCURRENT_DAY_FETCHES)

    async def fetch_one(date: str):
        async with limit:
            return await accessor.get_daily_rows(dataset, date)

    return await asyncio.gather(*(fetch_one(date) for date in dates))


def _filters(protocol: Optional[str]) -> Dict[str, str]:
    return {"protocol": protocol} if protocol else {}


def _dumps(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
