"""
Main FastAPI application.

FX platform API with:
- Account and conversion endpoints
- Payment endpoints backed by the transactional outbox
- In-process exchange venue endpoints
- Request ID tracking and structured logging
- Prometheus metrics and health probes
"""
import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fx_platform import __version__
from fx_platform.config import get_settings
from fx_platform.database.connection import close_db, init_db
from fx_platform.integrations.exchange_client import HttpExchangeClient
from fx_platform.monitoring.logging import setup_logging

from .dependencies import get_exchange_client, get_outbox_publisher
from .routes import account_router, exchange_router, monitoring_router, payment_router

settings = get_settings()
setup_logging(settings)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Initializes the database, runs the outbox publisher in the background
    when enabled, and shuts both down on exit.
    """
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        remote_exchange=settings.uses_remote_exchange,
    )

    try:
        await init_db()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    publisher_task: Optional[asyncio.Task] = None
    if settings.outbox_publisher_enabled:
        publisher_task = asyncio.create_task(get_outbox_publisher().start())

    yield

    logger.info("application_shutdown")
    if publisher_task is not None:
        get_outbox_publisher().stop()
        await publisher_task
        get_outbox_publisher().event_stream.close()

    exchange_client = get_exchange_client()
    if isinstance(exchange_client, HttpExchangeClient):
        await exchange_client.aclose()

    await close_db()
    logger.info("database_connections_closed")


# Create FastAPI application
app = FastAPI(
    title="FX Platform",
    description=(
        "Multi-currency balances with atomic conversions through an exchange venue, "
        "and payment events delivered through a transactional outbox."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Add request ID to all requests for tracing.

    Reuses an incoming ``X-Request-ID`` header when present.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )
        return response

    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.time() - start_time,
        )
        raise

    finally:
        structlog.contextvars.clear_contextvars()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "reason": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


# Include routers
app.include_router(account_router)
app.include_router(payment_router)
app.include_router(exchange_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": __version__,
        "status": "operational",
        "environment": settings.app_env,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


def run() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "fx_platform.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
