"""
Unit tests for the dataset HTTP routes.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from service_datasets.app.caching.resource_fetcher import FetchProvenance, ResourceNotFound, UpstreamUnavailable
from service_datasets.app.datasets.accessors import DailyRowsResult, ManifestResult
from service_datasets.app.datasets.models import BorrowingRow, Dataset, LendingRow, Manifest
from service_datasets.app.main import DatasetsService
from service_datasets.app.routes.helpers import MAX_CONCURRENT_DAY_FETCHES
from shared.config import DatasetsConfig
from shared.errors import MalformedUpstreamDataError


HIT = FetchProvenance(cache_hit=True, served_stale=False, upstream_status=200, source="test")

DATES = ("2025-09-28", "2025-09-29", "2025-09-30")


def _manifest(dataset: Dataset, latest="2025-09-30", dates=DATES) -> ManifestResult:
    manifest = Manifest(latest=latest, dates=dates, updated_at="2025-09-30T06:00:00Z", schema_version=1)
    return ManifestResult(manifest=manifest, etag=f'"{dataset.value}-manifest"', updated_at=manifest.updated_at, provenance=HIT)


def _lending_rows(date: str) -> DailyRowsResult:
    rows = tuple(
        LendingRow.model_validate(
            {
                "protocol": protocol,
                "date": date,
                "poolId": f"{protocol.lower()}-pool",
                "poolName": f"{protocol} Pool",
                "collateralSymbol": "ETH",
                "collateralUsdValue": "1000",
            }
        )
        for protocol in ("Vesu", "Ekubo")
    )
    return DailyRowsResult(rows=rows, etag=f'"lending-{date}"', last_modified=None, provenance=HIT)


def _borrowing_rows(date: str) -> DailyRowsResult:
    row = BorrowingRow.model_validate(
        {
            "protocol": "Vesu",
            "date": date,
            "poolId": "vesu-pool",
            "poolName": "Vesu Pool",
            "collateralSymbol": "ETH",
            "debtSymbol": "USDC",
            "rebatePercent": "0.5",
        }
    )
    return DailyRowsResult(rows=(row,), etag=f'"borrowing-{date}"', last_modified=None, provenance=HIT)


def _daily(dataset: Dataset, date: str) -> DailyRowsResult:
    return _lending_rows(date) if dataset is Dataset.LENDING else _borrowing_rows(date)


def _ndjson(response):
    return [json.loads(line) for line in response.text.splitlines() if line]


class TestDatasetRoutes:
    """Test cases for the /v1 dataset endpoints."""

    @pytest.fixture
    def service(self):
        """Create a DatasetsService with a mocked accessor."""
        service = DatasetsService(DatasetsConfig(github_owner="acme", github_repo="incentives"))
        accessor = MagicMock()
        accessor.get_manifest = AsyncMock(side_effect=_manifest)
        accessor.get_daily_rows = AsyncMock(side_effect=_daily)
        service.accessor = accessor
        return service

    @pytest.fixture
    def accessor(self, service):
        return service.accessor

    @pytest.fixture
    def client(self, service):
        return TestClient(service.app)

    def test_latest_returns_json_envelope(self, client, accessor):
        response = client.get("/v1/lending/latest")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.headers["etag"] == '"lending-2025-09-30"'
        assert response.headers["cache-control"] == "public, max-age=300, stale-while-revalidate=86400"
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["vary"] == "Accept"

        data = response.json()
        assert data["dataset"] == "lending"
        assert data["asOfDate"] == "2025-09-30"
        assert data["updatedAt"] == "2025-09-30T06:00:00Z"
        assert data["filters"] == {}
        assert data["count"] == 2
        assert data["data"][0]["poolId"] == "vesu-pool"
        accessor.get_daily_rows.assert_awaited_once_with(Dataset.LENDING, "2025-09-30")

    def test_latest_filters_by_protocol(self, client):
        response = client.get("/v1/lending/latest", params={"protocol": "Ekubo"})

        data = response.json()
        assert data["filters"] == {"protocol": "Ekubo"}
        assert data["count"] == 1
        assert [row["protocol"] for row in data["data"]] == ["Ekubo"]

    def test_latest_ndjson_via_query(self, client):
        response = client.get("/v1/borrowing/latest", params={"format": "ndjson"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        header, *rows = _ndjson(response)
        assert header["dataset"] == "borrowing"
        assert header["count"] == 1
        assert rows[0]["debtSymbol"] == "USDC"

    def test_latest_ndjson_via_accept_header(self, client):
        response = client.get("/v1/lending/latest", headers={"Accept": "application/x-ndjson"})

        assert response.headers["content-type"].startswith("application/x-ndjson")
        assert len(_ndjson(response)) == 3

    def test_latest_not_modified(self, client):
        response = client.get("/v1/lending/latest", headers={"If-None-Match": '"lending-2025-09-30"'})

        assert response.status_code == 304
        assert response.content == b""
        assert response.headers["etag"] == '"lending-2025-09-30"'

    def test_latest_stale_validator_returns_body(self, client):
        response = client.get("/v1/lending/latest", headers={"If-None-Match": '"lending-2025-09-29"'})

        assert response.status_code == 200
        assert response.json()["count"] == 2

    def test_head_latest(self, client):
        response = client.head("/v1/lending/latest")

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["etag"] == '"lending-2025-09-30"'

    def test_latest_without_latest_date(self, client, accessor):
        accessor.get_manifest.side_effect = lambda dataset: _manifest(dataset, latest=None, dates=())

        response = client.get("/v1/lending/latest")

        assert response.status_code == 404
        assert response.json() == {"error": "No data available for latest date", "code": 404}

    def test_latest_missing_manifest(self, client, accessor):
        accessor.get_manifest.side_effect = None
        accessor.get_manifest.return_value = ResourceNotFound(source="manifest:lending", path="meta/lending_manifest.json")

        response = client.get("/v1/lending/latest")

        assert response.status_code == 404
        assert response.json() == {"error": "Manifest not found", "code": 404}

    def test_latest_upstream_unavailable(self, client, accessor):
        accessor.get_daily_rows.side_effect = None
        accessor.get_daily_rows.return_value = UpstreamUnavailable(
            source="lending:2025-09-30", path="data/lending/2025-09-30.json", status_code=503
        )

        response = client.get("/v1/lending/latest")

        assert response.status_code == 502
        assert response.json() == {
            "error": "Upstream data unavailable",
            "code": 502,
            "details": {"upstreamStatus": 503},
        }

    def test_malformed_upstream_data(self, client, accessor):
        accessor.get_daily_rows.side_effect = MalformedUpstreamDataError(
            "data/lending/2025-09-30.json", "<root>: Invalid JSON"
        )

        response = client.get("/v1/lending/latest")

        assert response.status_code == 502
        body = response.json()
        assert body["code"] == 502
        assert body["error"].startswith("Failed to parse JSON from data/lending/2025-09-30.json")
        assert body["details"] == {"path": "data/lending/2025-09-30.json"}

    def test_all_defaults_to_ndjson(self, client, accessor):
        response = client.get("/v1/lending/all")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        header, *rows = _ndjson(response)
        assert header == {
            "dataset": "lending",
            "range": {"from": "2025-09-28", "to": "2025-09-30"},
            "filters": {},
        }
        assert [row["date"] for row in rows] == [
            "2025-09-28", "2025-09-28", "2025-09-29", "2025-09-29", "2025-09-30", "2025-09-30",
        ]
        assert accessor.get_daily_rows.await_count == 3

    def test_all_respects_date_range(self, client, accessor):
        response = client.get("/v1/lending/all", params={"from": "2025-09-29", "protocol": "Vesu"})

        header, *rows = _ndjson(response)
        assert header["range"] == {"from": "2025-09-29", "to": "2025-09-30"}
        assert header["filters"] == {"protocol": "Vesu"}
        assert [row["date"] for row in rows] == ["2025-09-29", "2025-09-30"]
        assert accessor.get_daily_rows.await_count == 2

    def test_all_json_pagination(self, client):
        response = client.get("/v1/lending/all", params={"format": "json", "page": 2, "per_page": 4})

        assert response.status_code == 200
        data = response.json()
        assert data["page"] == 2
        assert data["perPage"] == 4
        assert data["total"] == 6
        assert [row["date"] for row in data["data"]] == ["2025-09-30", "2025-09-30"]

    def test_all_inverted_range(self, client, accessor):
        response = client.get("/v1/lending/all", params={"from": "2025-09-30", "to": "2025-09-28"})

        assert response.status_code == 400
        assert response.json() == {"error": "`from` must be less than or equal to `to`", "code": 400}
        accessor.get_daily_rows.assert_not_awaited()

    @pytest.mark.parametrize(
        "params",
        [
            {"from": "30-09-2025"},
            {"page": 0},
            {"per_page": 10001},
            {"format": "csv"},
            {"protocol": ""},
        ],
    )
    def test_all_invalid_query(self, client, params):
        response = client.get("/v1/lending/all", params=params)

        assert response.status_code == 400
        assert response.json()["code"] == 400

    def test_all_bounds_concurrent_day_fetches(self, client, accessor):
        dates = tuple(f"2025-08-{day:02d}" for day in range(1, 31))
        accessor.get_manifest.side_effect = lambda dataset: _manifest(dataset, latest=dates[-1], dates=dates)
        in_flight = {"now": 0, "peak": 0}

        async def daily(dataset, date):
            in_flight["now"] += 1
            in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
            await asyncio.sleep(0.01)
            in_flight["now"] -= 1
            return _daily(dataset, date)

        accessor.get_daily_rows.side_effect = daily

        response = client.get("/v1/lending/all", params={"format": "json", "per_page": 100})

        assert response.status_code == 200
        assert response.json()["total"] == 60
        assert [row["date"] for row in response.json()["data"][::2]] == list(dates)
        assert accessor.get_daily_rows.await_count == 30
        assert 1 < in_flight["peak"] <= MAX_CONCURRENT_DAY_FETCHES

    def test_all_missing_day(self, client, accessor):
        def daily(dataset, date):
            if date == "2025-09-29":
                return ResourceNotFound(source=f"lending:{date}", path=f"data/lending/{date}.json")
            return _daily(dataset, date)

        accessor.get_daily_rows.side_effect = daily

        response = client.get("/v1/lending/all")

        assert response.status_code == 404
        assert response.json() == {"error": "Data not found for 2025-09-29", "code": 404}

    def test_dates(self, client):
        response = client.get("/v1/borrowing/dates")

        assert response.status_code == 200
        assert response.headers["etag"] == '"borrowing-manifest"'
        assert response.json() == {
            "dataset": "borrowing",
            "latest": "2025-09-30",
            "updatedAt": "2025-09-30T06:00:00Z",
            "dates": list(DATES),
        }

    def test_dates_not_modified(self, client):
        response = client.get("/v1/borrowing/dates", headers={"If-None-Match": '"borrowing-manifest"'})

        assert response.status_code == 304

    def test_dates_manifest_unavailable(self, client, accessor):
        accessor.get_manifest.side_effect = None
        accessor.get_manifest.return_value = UpstreamUnavailable(
            source="manifest:borrowing", path="meta/borrowing_manifest.json", status_code=None
        )

        response = client.get("/v1/borrowing/dates")

        assert response.status_code == 502
        assert response.json()["error"] == "Upstream manifest unavailable"

    def test_unknown_route(self, client):
        response = client.get("/v1/staking/latest")

        assert response.status_code == 404
        assert response.json() == {"error": "Not Found", "code": 404}


class TestHealthRoute:
    """Test cases for /v1/health."""

    @pytest.fixture
    def service(self):
        service = DatasetsService(DatasetsConfig(github_owner="acme", github_repo="incentives"))
        service.accessor = MagicMock()
        service.accessor.get_manifest = AsyncMock(side_effect=_manifest)
        return service

    @pytest.fixture
    def client(self, service):
        return TestClient(service.app)

    def test_health_ok(self, client):
        response = client.get("/v1/health")

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "lendingUpdatedAt": "2025-09-30T06:00:00Z",
            "borrowingUpdatedAt": "2025-09-30T06:00:00Z",
        }

    def test_health_partial_when_manifest_missing(self, client, service):
        def manifest(dataset):
            if dataset is Dataset.BORROWING:
                return ResourceNotFound(source="manifest:borrowing", path="meta/borrowing_manifest.json")
            return _manifest(dataset)

        service.accessor.get_manifest.side_effect = manifest

        response = client.get("/v1/health")

        assert response.status_code == 206
        assert response.json() == {"ok": True, "lendingUpdatedAt": "2025-09-30T06:00:00Z"}

    def test_health_partial_when_manifest_malformed(self, client, service):
        service.accessor.get_manifest.side_effect = MalformedUpstreamDataError("meta/lending_manifest.json", "bad")

        response = client.get("/v1/health")

        assert response.status_code == 206
        assert response.json() == {"ok": True}

    def test_metrics_endpoint(self, client):
        client.get("/v1/health")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
