"""
Applicability Screening Service - Main Application
==================================================

FastAPI application exposing the applicability screening engine.

Version: 0.1.0
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.config import CacheBackend, settings
from shared.database.kafka import KafkaClient
from shared.database.postgres import PostgresClient
from shared.database.redis import RedisClient
from shared.logging import get_logger, setup_logging
from shared.models.common import ErrorResponse, HealthResponse

from services.applicability.routes import screening, streams
from services.applicability.services.cache import create_cache
from services.applicability.services.locations import LocationAggregator
from services.applicability.services.matcher import ApplicabilityMatcher
from services.applicability.services.store import PostgresRegulationStore
from services.applicability.services.streamer import ResultStreamer, kafka_publisher

# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="applicability",
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "applicability_starting",
        environment=settings.environment.value,
        port=settings.applicability_port,
        cache_backend=settings.screening.cache_backend.value,
    )

    # Startup
    try:
        PostgresClient.get_engine()
        logger.info("postgres_connected")

        if settings.screening.cache_backend == CacheBackend.REDIS:
            RedisClient.get_client()
            logger.info("redis_connected")

        matcher = ApplicabilityMatcher(PostgresRegulationStore(), create_cache())
        app.state.matcher = matcher
        app.state.streamer = ResultStreamer(
            matcher,
            publisher=kafka_publisher if settings.screening.publish_events else None,
        )
        app.state.aggregator = LocationAggregator(matcher)

    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("applicability_shutting_down")
    await app.state.streamer.close()
    await PostgresClient.close()
    await RedisClient.close()
    await KafkaClient.close()


# Create FastAPI application
app = FastAPI(
    title="RegScreen Applicability Service",
    description="Adaptive regulatory applicability screening",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins_list,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request) -> HealthResponse:
    """
    Service health check.

    Reports the regulation store and whichever optional backends are enabled.
    """
    components: dict[str, dict[str, Any]] = {}

    matcher = getattr(request.app.state, "matcher", None)
    if matcher is not None:
        components["regulation_store"] = await matcher.store.health_check()
        cache_stats = matcher.cache.stats()
        components["screening_cache"] = {"status": "healthy", "size": cache_stats.size}

    if settings.screening.cache_backend == CacheBackend.REDIS:
        components["redis"] = await RedisClient.health_check()

    if settings.screening.publish_events:
        components["kafka"] = await KafkaClient.health_check()

    all_healthy = bool(components) and all(
        c.get("status") == "healthy" for c in components.values()
    )

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        service="applicability",
        version="0.1.0",
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "RegScreen Applicability Service",
        "version": "0.1.0",
        "docs": "/docs",
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(
    screening.router,
    prefix="/api/v1/screening",
    tags=["Screening"],
)

app.include_router(
    streams.router,
    prefix="/api/v1/streams",
    tags=["Streams"],
)


# ============================================================================
# Error Handlers
# ============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    error = ErrorResponse(error=str(exc.detail), status_code=exc.status_code, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=error.model_dump(mode="json"))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    error = ErrorResponse(
        error="Internal server error",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        path=request.url.path,
    )
    return JSONResponse(status_code=error.status_code, content=error.model_dump(mode="json"))


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.applicability.main:app",
        host="0.0.0.0",
        port=settings.applicability_port,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
