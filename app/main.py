"""
StockAPI - Indonesian stock market data API

Main FastAPI application entry point.
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse
import structlog

from app.api import admin_router, auth_router, stocks_router, system_router
from app.core import posthog
from app.core.cache import close_redis
from app.core.config import Settings, get_settings
from app.core.database import Database
from app.core.errors import register_exception_handlers
from app.core.usage import usage_middleware

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)
logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
) -> FastAPI:
    """
    Build the application.

    The database handle is created here (or injected, e.g. by tests) and
    attached to ``app.state.db``; request handlers reach it through get_db.
    """
    settings = settings or get_settings()
    database = database or Database.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """Application lifespan manager."""
        # Startup
        logger.info("Starting StockAPI", version=settings.api_version, env=settings.environment)
        if settings.auto_create_tables:
            await database.create_all()
        yield
        # Shutdown
        logger.info("Shutting down StockAPI")
        await database.dispose()
        await close_redis()
        posthog.shutdown()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description=settings.api_description,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.db = database

    # Innermost first: usage audit must see request.state set by the auth gate
    app.middleware("http")(usage_middleware)

    # Request logging middleware
    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Log all requests with timing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        response.headers["X-Request-ID"] = request_id
        return response

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins.split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-Quota-Limit-Day",
            "X-Quota-Remaining-Day",
            "X-Quota-Limit-Month",
            "X-Quota-Remaining-Month",
            "Retry-After",
        ],
    )

    register_exception_handlers(app)

    app.include_router(system_router)
    app.include_router(auth_router)
    app.include_router(stocks_router)
    app.include_router(admin_router)

    return app


app = create_app()
