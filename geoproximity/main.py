import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .api.v1.endpoints import router as proximity_router
from .config import get_settings, validate_environment_configuration
from .dependencies import close_service_container, get_service_container, init_service_container
from .exceptions import ConfigurationError, ProximityServiceError
from .logging_config import setup_logging
from .models import ErrorResponse

# Setup structured logging based on environment
setup_logging(
    level=os.environ.get('LOG_LEVEL', 'INFO'),
    service_name="geo-proximity"
)
logger = logging.getLogger(__name__)

_START_TIME = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the proximity core before accepting traffic.

    Configuration errors and an unreachable backing store abort startup;
    the index is rebuilt from persisted records before the first request.
    """
    logger.info("Starting Geo Proximity Service...", extra={"event": "startup_begin"})

    try:
        settings = get_settings()
        setup_logging(level=settings.LOG_LEVEL, use_json=settings.use_json_logs, service_name="geo-proximity")
        validate_environment_configuration(settings)

        container = init_service_container(settings)
        indexed = container.warm_up()

        logger.info(
            "Geo Proximity Service started successfully",
            extra={
                "event": "startup_complete",
                "records_indexed": indexed,
                "backing_store": settings.BACKING_STORE,
                "cell_size_m": settings.GRID_CELL_SIZE_M
            }
        )

        yield  # App ready for traffic

    except ConfigurationError as e:
        logger.critical(f"Invalid configuration, refusing to start: {e}", extra={"event": "startup_failed"})
        raise
    except Exception as e:
        logger.error(
            "Failed to start Geo Proximity Service",
            extra={"event": "startup_failed", "error_type": type(e).__name__},
            exc_info=True
        )
        raise

    # Shutdown
    logger.info("Shutting down Geo Proximity Service...", extra={"event": "shutdown_begin"})
    try:
        await close_service_container()
        logger.info("Geo Proximity Service shut down successfully", extra={"event": "shutdown_complete"})
    except Exception:
        logger.error("Error during shutdown", extra={"event": "shutdown_failed"}, exc_info=True)


# Create rate limiter for API protection
limiter = Limiter(key_func=get_remote_address)

# Create FastAPI application
app = FastAPI(
    title="Geo Proximity Service",
    description="Register entities at a latitude/longitude and find everything within a radius of a point",
    version="1.0.0",
    lifespan=lifespan
)

# Add rate limiting error handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ProximityServiceError)
async def proximity_error_handler(request: Request, exc: ProximityServiceError) -> JSONResponse:
    """Last-resort mapping for domain errors an endpoint did not translate."""
    logger.error(f"Unhandled proximity error on {request.url.path}: {exc}")
    body = ErrorResponse(error=type(exc).__name__, details=exc.message)
    return JSONResponse(status_code=500, content=body.model_dump())


# Add CORS middleware
settings = get_settings()
cors_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()] if settings.CORS_ORIGINS else ["*"]

logger.info(f"CORS configured for origins: {cors_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "HEAD"],
    allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
    expose_headers=["Content-Length", "Content-Type"],
    max_age=86400  # 24 hours
)

# Include routers
app.include_router(proximity_router, prefix="/api")

logger.info("API routes registered:")
logger.info("  Entity endpoints: /api/v1/entities/*")
logger.info("  Search endpoints: /api/v1/search")


@app.get("/health", tags=["health"])
async def health_check():
    """Health check with index and store statistics."""
    health_response = {
        "status": "healthy",
        "service": "Geo Proximity Service",
        "version": "1.0.0",
        "uptime_seconds": int(time.time() - _START_TIME),
        "last_check": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime()),
    }

    try:
        container = get_service_container()
    except RuntimeError:
        health_response["status"] = "starting"
        return health_response

    health_response["index"] = container.index.get_stats()
    health_response["store"] = container.store.get_stats()
    health_response["thread_pool"] = container.thread_pool_service.get_pool_stats()
    if health_response["index"]["entries"] != health_response["store"]["records"]:
        health_response["status"] = "degraded"
    return health_response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
