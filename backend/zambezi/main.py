"""
FastAPI application entry point with health endpoints and checkout routing.

This module provides the main FastAPI application instance with CORS and
rate limit configuration, health check endpoints, global exception handling
and the checkout, payment and webhook routers. The lifespan starts the
overdue invoice sweep and closes database and provider connections on
shutdown.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from zambezi.api.v1 import checkout_router, payments_router, webhooks_router
from zambezi.api.v1.webhooks import handle_webhook
from zambezi.core.config import get_settings
from zambezi.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from zambezi.database.connection import (
    check_database_health,
    close_database_connections,
    get_session,
)
from zambezi.services.invoices.service import InvoiceService
from zambezi.services.payments.registry import get_gateway_clients

# Configure logging before application initialization
configure_logging()
logger = get_logger(__name__)

settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.environment != "test",
)


async def sweep_overdue_invoices():
    """
    Background task marking unpaid invoices past their due date overdue.
    """
    while True:
        try:
            async with get_session() as session:
                count = await InvoiceService(session).mark_overdue_invoices()
                logger.info("Overdue invoice sweep completed", invoices_marked=count)
        except Exception as e:
            logger.error(
                "Failed to sweep overdue invoices",
                error=str(e),
                error_type=type(e).__name__,
            )
        await asyncio.sleep(settings.invoice_overdue_sweep_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance

    Yields:
        None during application runtime
    """
    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    sweep_task = None
    with log_performance(logger, "application_startup"):
        if settings.enable_background_tasks:
            sweep_task = asyncio.create_task(sweep_overdue_invoices())
            logger.info("Background task started for overdue invoice sweep")

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        if sweep_task is not None:
            sweep_task.cancel()
            try:
                await sweep_task
            except asyncio.CancelledError:
                pass
            logger.info("Background tasks stopped")
        await get_gateway_clients().aclose()
        await close_database_connections()
        logger.info("Resources cleaned up successfully")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Zambezi Meats checkout and payment API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

# Providers retry on 429, so webhooks are never rate limited
limiter.exempt(handle_webhook)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """
    Middleware for request logging and correlation ID management.

    Sets request ID for correlation, logs request details, and measures
    response time. Clears context after request processing.

    Args:
        request: Incoming HTTP request
        call_next: Next middleware or route handler

    Returns:
        HTTP response with X-Request-ID header
    """
    request_id = set_request_id(request.headers.get("X-Request-ID"))

    logger.info(
        "Request received",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        with log_performance(
            logger,
            "request_processing",
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response
    except Exception as e:
        logger.error(
            "Request failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        clear_context()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle request validation errors with structured error response.

    Args:
        request: HTTP request that caused validation error
        exc: Validation exception with error details

    Returns:
        JSON response with validation error details
    """
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=exc.errors(),
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "Request validation failed",
            "details": jsonable_encoder(exc.errors()),
            "request_id": get_request_id(),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions with structured error response.

    Args:
        request: HTTP request that caused exception
        exc: Exception that was raised

    Returns:
        JSON response with a generic error message
    """
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
            "request_id": get_request_id(),
        },
    )


@app.get(
    "/health",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Health check endpoint",
)
async def health_check() -> dict[str, str]:
    """Always 200 while the process is serving requests."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get(
    "/ready",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Readiness check endpoint",
)
async def readiness_check():
    """
    Readiness check endpoint for orchestration.

    Returns:
        Readiness status, 503 when the database is unreachable
    """
    database_ready = await check_database_health(max_retries=1)

    if not database_ready:
        logger.warning("Readiness check failed", dependencies_ready=False)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "service": settings.app_name,
                "dependencies_ready": False,
                "database": "unhealthy",
            },
        )

    return {
        "status": "ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "dependencies_ready": True,
        "database": "healthy",
    }


@app.get(
    "/live",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Liveness check endpoint",
)
async def liveness_check() -> dict[str, str]:
    return {
        "status": "alive",
        "service": settings.app_name,
        "version": settings.app_version,
    }


app.include_router(checkout_router, prefix=settings.api_v1_prefix)
app.include_router(payments_router, prefix=settings.api_v1_prefix)
app.include_router(webhooks_router, prefix=settings.api_v1_prefix)
