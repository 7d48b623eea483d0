"""
Base service class for Datasets Access Layer services.

Assembles the FastAPI application every service shares: CORS, one
``request.completed`` log line per request, Prometheus exposition and the
``{"error", "code"}`` error body.
"""

import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import DatasetsConfig, get_config
from shared.errors import AccessLayerException, ErrorResponse
from shared.logging import bind_request, clear_context, configure_logging, get_logger
from shared.metrics import get_metrics_collector


CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


def error_response(status_code: int, message: str, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    """Build the canonical ``{"error", "code"}`` JSON error body."""
    body = ErrorResponse(error=message, code=status_code, details=details or None)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=CORS_HEADERS,
    )


def route_label(request: Request) -> str:
    """Route template for metric labels; unmatched paths share one label."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, config: Optional[DatasetsConfig] = None):
        self.service_name = service_name
        self.config = config or get_config()
        configure_logging(service_name, self.config.log_level, json_output=self.config.is_production)

        self.logger = get_logger(f"{service_name}.service")
        self.metrics = get_metrics_collector(service_name)

        self.app = FastAPI(
            title=f"{service_name.title()} Service",
            description=f"Datasets Access Layer - {service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
        )
        self._install_middleware()
        self._install_common_routes()
        self._install_error_handlers()

    def _install_middleware(self):
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "HEAD", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["ETag"],
        )

        @self.app.middleware("http")
        async def log_request(request: Request, call_next):
            started = time.perf_counter()
            bind_request(request.headers.get("X-Request-ID"))
            # Routes append one FetchProvenance per origin-cache lookup
            request.state.upstream_fetches = []

            try:
                response = await call_next(request)
                elapsed = time.perf_counter() - started

                self.metrics.record_http_request(request.method, route_label(request), response.status_code, elapsed)
                self.logger.info(
                    "request.completed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(elapsed * 1000, 2),
                    bytes_sent=int(response.headers.get("content-length") or 0),
                    **self._summarize_fetches(request.state.upstream_fetches),
                )
                return response
            finally:
                clear_context()

    @staticmethod
    def _summarize_fetches(fetches: List[Any]) -> Dict[str, Any]:
        """Aggregate the provenance of every origin fetch one request triggered."""
        statuses = [str(fetch.upstream_status) for fetch in fetches if fetch.upstream_status is not None]
        return {
            "cache_hit": bool(fetches) and all(fetch.cache_hit for fetch in fetches),
            "served_stale": any(fetch.served_stale for fetch in fetches),
            "upstream_status": ",".join(statuses) or None,
            "cache_sources": [fetch.source for fetch in fetches],
        }

    def _install_common_routes(self):
        @self.app.get("/metrics", include_in_schema=False)
        async def metrics_endpoint():
            return Response(content=self.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    def _install_error_handlers(self):
        @self.app.exception_handler(AccessLayerException)
        async def access_layer_exception_handler(request: Request, exc: AccessLayerException):
            self.logger.warning(
                "request.failed",
                path=request.url.path,
                code=exc.code,
                message=exc.message,
                details=exc.details,
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump(exclude_none=True),
                headers=CORS_HEADERS,
            )

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            """Report the first invalid query parameter as a 400."""
            errors = exc.errors()
            message = "Invalid query parameters"
            if errors:
                location = ".".join(str(part) for part in errors[0].get("loc", ())[1:])
                message = f"{location}: {errors[0].get('msg', message)}" if location else errors[0].get("msg", message)
            self.metrics.record_error("VALIDATION_ERROR")
            return error_response(400, message)

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            message = "Not Found" if exc.status_code == 404 else str(exc.detail)
            return error_response(exc.status_code, message)

        @self.app.exception_handler(Exception)
        async def unhandled_exception_handler(request: Request, exc: Exception):
            self.logger.error("request.crashed", path=request.url.path, error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return error_response(500, "Internal Server Error")

    def run(self):
        """Serve the application with uvicorn."""
        import uvicorn

        uvicorn.run(self.app, host=self.config.host, port=self.config.port, log_level=self.config.log_level.lower())
