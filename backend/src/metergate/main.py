"""FastAPI application entry point."""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from metergate.config import settings
from metergate.database import AsyncSessionLocal
from metergate.exceptions import GateError, MeterGateError
from metergate.middleware.logging import LoggingMiddleware, get_request_id, setup_logging
from metergate.middleware.metrics import MetricsMiddleware
from metergate.schemas.error import ErrorDetail, error_response
from metergate.services.endpoint_catalog import EndpointCatalogService

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    # Startup
    logger.info("application_starting", env=settings.app_env)
    try:
        async with AsyncSessionLocal() as session:
            await EndpointCatalogService(session).ensure_seeded()
            await session.commit()
    except SQLAlchemyError as exc:
        # Catalog is also seeded lazily on first listing
        logger.warning("endpoint_catalog_seed_failed", error=str(exc))
    yield
    # Shutdown
    logger.info("application_shutting_down")


# Create FastAPI application
app = FastAPI(
    title="MeterGate",
    description="Metered REST API marketplace with API keys, daily quotas and manual billing",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add metrics and request logging middleware
app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)

# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Serve uploaded payment proofs
app.mount(
    settings.payment_proof_url_prefix,
    StaticFiles(directory=settings.payment_proof_dir, check_dir=False),
    name="payment-proofs",
)


def _with_request_id(request: Request, response: JSONResponse) -> JSONResponse:
    response.headers["X-Request-ID"] = get_request_id(request)
    return response


# Exception handlers with the {status, code, message} envelope
@app.exception_handler(MeterGateError)
async def metergate_exception_handler(request: Request, exc: MeterGateError) -> JSONResponse:
    """
    Handle domain errors raised by services and the access gate.

    Gate errors also report ``remaining_limit``.
    """
    remaining_limit = exc.remaining_limit if isinstance(exc, GateError) else None

    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_rejected",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        status_code=exc.status_code,
    )

    return _with_request_id(
        request,
        error_response(
            exc.status_code,
            exc.message,
            remaining_limit=remaining_limit,
            headers=getattr(exc, "headers", None),
            **exc.extra,
        ),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTPExceptions from dependencies and routing (401, 404, 405)."""
    message = exc.detail if isinstance(exc.detail, str) else "Request could not be processed."
    return _with_request_id(
        request,
        error_response(exc.status_code, message, headers=getattr(exc, "headers", None)),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle Pydantic validation errors with structured response.

    Returns 400 with field-level validation errors.
    """
    details = []
    for error in exc.errors():
        loc = [str(part) for part in error["loc"]]
        if loc and loc[0] in ("body", "query", "path", "header", "form"):
            loc = loc[1:]
        details.append(ErrorDetail(field=".".join(loc) or "request", message=error["msg"]).model_dump())

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        error_count=len(details),
    )

    return _with_request_id(
        request,
        error_response(
            status.HTTP_400_BAD_REQUEST,
            details[0]["message"] if len(details) == 1 else "Request validation failed.",
            details=details,
        ),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle database errors without exposing internal details."""
    logger.error(
        "database_error",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error_message=str(exc),
    )
    return _with_request_id(
        request,
        error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error."),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all other uncaught exceptions.

    Logs full stack trace for debugging but returns safe error message to client.
    """
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        exception_type=type(exc).__name__,
        exc_info=exc,
    )
    return _with_request_id(
        request,
        error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            str(exc) if settings.debug else "Internal server error.",
        ),
    )


# Root endpoint
@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "service": "MeterGate",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs",
    }


# Include routers
from metergate.api import public  # noqa: E402
from metergate.api.v1 import (  # noqa: E402
    accounts,
    admin_api_keys,
    admin_apis,
    admin_audit,
    admin_invoices,
    admin_subscriptions,
    admin_users,
    api_keys,
    billing,
    health,
)

app.include_router(health.router, tags=["Health"])
app.include_router(public.router)
app.include_router(accounts.router, prefix="/v1")
app.include_router(api_keys.router, prefix="/v1")
app.include_router(billing.router, prefix="/v1")
app.include_router(admin_users.router, prefix="/v1")
app.include_router(admin_api_keys.router, prefix="/v1")
app.include_router(admin_invoices.router, prefix="/v1")
app.include_router(admin_subscriptions.router, prefix="/v1")
app.include_router(admin_apis.router, prefix="/v1")
app.include_router(admin_audit.router, prefix="/v1")
