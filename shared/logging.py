"""
Shared logging configuration for the Datasets Access Layer.

Loggers are named ``<service>.<component>`` (``datasets.fetcher``,
``datasets.origin``); the component processor splits that name into fields.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import structlog

# Request-scoped fields bound by the HTTP middleware
request_context_var: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})


def configure_logging(service_name: str, log_level: str = "info", *, json_output: bool = True) -> None:
    """Configure structured logging for a service.

    JSON lines in production, the structlog console renderer otherwise.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=_processors(service_name) + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)


def _processors(service_name: str) -> List[Any]:
    def add_service_name(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_component,
        add_service_name,
        add_request_context,
    ]


def add_component(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Split ``datasets.fetcher`` into ``service`` and ``component`` fields."""
    service, _, component = event_dict.get("logger", "").partition(".")
    if component:
        event_dict["service"] = service
        event_dict["component"] = component
    return event_dict


def add_request_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in request_context_var.get().items():
        event_dict.setdefault(key, value)
    return event_dict


def bind_request(request_id: Optional[str] = None, **fields: Any) -> str:
    """Bind a request id (generated when absent) and extra fields to the current context."""
    request_id = request_id or uuid.uuid4().hex
    request_context_var.set({"request_id": request_id, **fields})
    return request_id


def clear_context() -> None:
    request_context_var.set({})


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
