"""Structured logging setup and the request-context middleware."""
import logging
import re
import sys
import time
import uuid
from typing import Any

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from metergate.config import settings

# Event keys whose values are credentials
SECRET_FIELDS = frozenset({"apikey", "api_key", "key", "authorization", "token", "access_token"})

_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def mask_secret(value: Any) -> str:
    """Keep a short prefix of a credential so log lines stay correlatable."""
    text = str(value)
    return f"{text[:6]}***" if len(text) > 10 else "***"


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor masking credential fields, including inside ``query_params``."""
    for field in SECRET_FIELDS.intersection(event_dict):
        event_dict[field] = mask_secret(event_dict[field])
    params = event_dict.get("query_params")
    if isinstance(params, dict):
        event_dict["query_params"] = {
            name: mask_secret(value) if name.lower() in SECRET_FIELDS else value for name, value in params.items()
        }
    return event_dict


def setup_logging() -> None:
    """Configure structlog for the process; JSON in production, console otherwise."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.app_env == "production":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=settings.debug))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)


def _incoming_request_id(request: Request) -> str | None:
    value = request.headers.get("x-request-id")
    if value and _REQUEST_ID_PATTERN.match(value):
        return value
    return None


def get_request_id(request: Request) -> str:
    """Request ID bound by ``LoggingMiddleware``, or the caller's header when running without it."""
    return getattr(request.state, "request_id", None) or _incoming_request_id(request) or str(uuid.uuid4())


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds request_id, path and method into the structlog context for the request.

    A well-formed ``X-Request-ID`` from the caller is reused; otherwise a new
    one is generated. Either way it is echoed on the response.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _incoming_request_id(request) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
            client_host=request.client.host if request.client else None,
        )

        logger = structlog.get_logger(__name__)
        logger.info("request_started", query_params=dict(request.query_params))
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception("request_failed", exc_info=exc)
            raise

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response
