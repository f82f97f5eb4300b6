"""
BuilderLink: FastAPI Application Entry Point

- Async lifespan that wires repositories, locks and publishers from settings
- CORS, timeout, and structured-logging middleware
- Domain error → HTTP status mapping
- Health-check endpoints (liveness + deep readiness)
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from builderlink.config import Settings, get_settings
from builderlink.errors import MatchEngineError
from builderlink.services.match_service import MatchService
from builderlink.services.scenario_service import ScenarioService

logger: structlog.stdlib.BoundLogger = structlog.get_logger("builderlink")


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------

def configure_logging(log_level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

def build_services(settings: Settings, redis_client=None) -> tuple[MatchService, ScenarioService]:
    """Build the service graph for the configured storage backend."""
    if settings.STORAGE_BACKEND == "memory":
        from builderlink.repositories.memory import (
            InMemoryMatchRepository,
            InMemoryScenarioResponseStore,
        )

        repository = InMemoryMatchRepository()
        scenario_store = InMemoryScenarioResponseStore()
    else:
        from builderlink.database import get_session_factory
        from builderlink.repositories.sql import SqlMatchRepository, SqlScenarioResponseStore

        session_factory = get_session_factory()
        repository = SqlMatchRepository(session_factory)
        scenario_store = SqlScenarioResponseStore(session_factory)

    lock_manager = None
    publisher = None
    if redis_client is not None:
        from builderlink.utils.events import RedisEventPublisher
        from builderlink.utils.locks import RedisLockManager

        lock_manager = RedisLockManager(
            redis_client, timeout=settings.MATCH_LOCK_TIMEOUT_SECONDS
        )
        publisher = RedisEventPublisher(redis_client, settings.MATCH_EVENTS_CHANNEL)

    scenario_service = ScenarioService(store=scenario_store, lock_manager=lock_manager)
    match_service = MatchService(
        repository,
        scenario_service=scenario_service,
        lock_manager=lock_manager,
        publisher=publisher,
    )
    return match_service, scenario_service


async def _connect_redis(settings: Settings):
    import redis.asyncio as aioredis

    client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    # Verify connectivity
    await client.ping()
    logger.info("redis_connected", url=settings.REDIS_URL)
    return client


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of long-lived resources."""
    settings = get_settings()
    logger.info(
        "startup_begin",
        environment=settings.ENVIRONMENT,
        storage_backend=settings.STORAGE_BACKEND,
    )

    redis_client = None
    if getattr(app.state, "match_service", None) is None:
        if settings.REDIS_URL:
            redis_client = await _connect_redis(settings)
        app.state.match_service, app.state.scenario_service = build_services(
            settings, redis_client
        )
    app.state.redis = redis_client
    logger.info("startup_complete")

    yield

    logger.info("shutdown_begin")
    if redis_client is not None:
        await redis_client.aclose()
        logger.info("redis_closed")
    if settings.STORAGE_BACKEND == "sql":
        from builderlink.database import get_engine

        await get_engine().dispose()
        logger.info("database_pool_closed")
    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware classes
# ---------------------------------------------------------------------------

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Abort requests that exceed a configurable wall-clock timeout."""

    def __init__(self, app, timeout_seconds: float = 30.0) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=504,
                content={"detail": "Request timed out", "type": "Timeout"},
            )


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------

async def match_engine_error_handler(request: Request, exc: MatchEngineError) -> JSONResponse:
    logger.info(
        "request_rejected",
        path=request.url.path,
        error_type=type(exc).__name__,
        status=exc.status_code,
        context={k: str(v) for k, v in exc.context.items()},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "type": type(exc).__name__},
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    match_service: MatchService | None = None,
    scenario_service: ScenarioService | None = None,
) -> FastAPI:
    """Build the application.  Passing services skips the settings-driven
    wiring in the lifespan, which is how the test suite uses it."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="BuilderLink Match Engine",
        description="Founder/builder compatibility scoring and match lifecycle",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )
    app.state.match_service = match_service
    app.state.scenario_service = scenario_service
    app.state.redis = None

    # -- Middleware (applied in reverse order: last added runs first) ----- #
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(TimeoutMiddleware, timeout_seconds=30.0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(MatchEngineError, match_engine_error_handler)

    # -- Health-check endpoints ------------------------------------------- #

    @app.get("/health", tags=["health"])
    async def health_liveness() -> dict:
        """Lightweight liveness probe."""
        return {"status": "healthy"}

    @app.get("/health/deep", tags=["health"])
    async def health_deep(request: Request) -> dict:
        """Deep readiness probe: verifies database and Redis connectivity."""
        result: dict = {"status": "healthy", "database": "connected", "redis": "connected"}

        if get_settings().STORAGE_BACKEND == "sql":
            try:
                from builderlink.database import get_engine

                async with get_engine().connect() as conn:
                    await conn.execute(text("SELECT 1"))
            except Exception as exc:
                logger.error("health_db_failure", error=str(exc))
                result["database"] = f"error: {exc}"
                result["status"] = "degraded"
        else:
            result["database"] = "in_memory"

        redis = request.app.state.redis
        if redis is None:
            result["redis"] = "not_configured"
        else:
            try:
                await redis.ping()
            except Exception as exc:
                logger.error("health_redis_failure", error=str(exc))
                result["redis"] = f"error: {exc}"
                result["status"] = "degraded"

        return result

    # -- API router -------------------------------------------------------- #
    from builderlink.api.router import router as api_router

    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()
